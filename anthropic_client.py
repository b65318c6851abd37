"""Thin wrapper around the Anthropic Messages API for JSON-only analysis prompts."""

from __future__ import annotations

import logging
import os

import anthropic

DEFAULT_CLAUDE_MODEL = "claude-sonnet-4-5"

LOGGER = logging.getLogger(__name__)


def claude_complete(system: str, prompt: str, max_tokens: int = 4096) -> str:
    """Send one system + user turn to Claude and return the concatenated text reply.

    Raises RuntimeError when ANTHROPIC_API_KEY is missing or the reply has no text.
    """
    api_key = os.getenv("ANTHROPIC_API_KEY")
    if not api_key:
        raise RuntimeError("ANTHROPIC_API_KEY environment variable is required")

    model = os.getenv("CLAUDE_MODEL", DEFAULT_CLAUDE_MODEL)
    client = anthropic.Anthropic(api_key=api_key)
    LOGGER.debug("Calling Claude model=%s max_tokens=%s", model, max_tokens)
    response = client.messages.create(
        model=model,
        max_tokens=max_tokens,
        system=system,
        messages=[{"role": "user", "content": prompt}],
    )

    text = "".join(
        block.text for block in response.content if getattr(block, "type", None) == "text"
    )
    if not text:
        raise RuntimeError("Claude returned an empty response")
    return text
