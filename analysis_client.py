"""LLM-backed text analysis: paper analysis, age-targeted summaries, code and visualizations."""

from __future__ import annotations

import json
import logging
import os
from json import JSONDecodeError
from typing import Any

from openai import OpenAI

from anthropic_client import claude_complete

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_OPENAI_TEMPERATURE = "0.3"
MAX_ATTEMPTS = 2
MAX_TEXT_CHARS = 30000

LOGGER = logging.getLogger(__name__)

_ANALYSIS_SYSTEM_PROMPT = """You are a research analyst reviewing an academic paper.
Respond ONLY with valid JSON following the schema below. No prose, no markdown.

{
  "complexity_score": <number 1-10>,
  "technical_depth": "basic|intermediate|advanced|expert",
  "domain_primary": "",
  "domain_secondary": [""],
  "key_methodologies": [""],
  "estimated_background_required": "",
  "recommended_prerequisites": [""],
  "analysis_confidence": <number 0-1>,
  "paper_metadata": {
    "title": "",
    "estimated_pages": <int>,
    "estimated_citations": <int>,
    "publication_year": <int>,
    "research_quality": ""
  }
}"""

_ANALYSIS_KEYS: frozenset[str] = frozenset({"complexity_score", "domain_primary"})

_SUMMARY_SYSTEM_PROMPT = """You explain research papers to readers of a given age.
Respond ONLY with valid JSON following the schema below. No prose, no markdown.

{
  "executive_summary": "",
  "what_is_this_about": "",
  "why_should_i_care": "",
  "real_world_examples": [""],
  "fun_facts": [""],
  "career_connections": [""],
  "discussion_questions": [""],
  "vocabulary_simplified": {"term": "plain explanation"}
}"""

_SUMMARY_KEYS: frozenset[str] = frozenset({"executive_summary"})

_CODE_SYSTEM_PROMPT = """You turn research methodologies into documented, runnable code.
Respond ONLY with valid JSON following the schema below. No prose, no markdown.

{
  "main_implementation": "",
  "functions": [""],
  "classes": [""],
  "imports": [""],
  "usage_example": "",
  "dependencies": [""]
}"""

_CODE_KEYS: frozenset[str] = frozenset({"main_implementation"})

_VISUALIZATION_SYSTEM_PROMPT = """You design data visualizations that explain research papers.
Respond ONLY with valid JSON following the schema below. No prose, no markdown.

{
  "title": "",
  "chart_type": "",
  "x_axis": "",
  "y_axis": "",
  "data": [{}],
  "narrative": ""
}"""

_VISUALIZATION_KEYS: frozenset[str] = frozenset({"title", "data"})


class AnalysisServiceError(RuntimeError):
    """The analysis service could not produce a usable result."""


def analyze_text(title: str, text: str) -> dict[str, Any]:
    """Produce the structured analysis record for a paper's extracted text."""
    prompt = f"Title: {title}\n\nPaper text:\n{text[:MAX_TEXT_CHARS]}"
    return _complete_json(_ANALYSIS_SYSTEM_PROMPT, prompt, _ANALYSIS_KEYS, label=f"analysis title={title!r}")


def generate_summary(analysis: dict[str, Any], text: str, target_age: int) -> dict[str, Any]:
    prompt = (
        f"Target reader age: {target_age}\n"
        f"Research domain: {analysis.get('domain_primary', 'Unknown')}\n"
        f"Complexity score: {analysis.get('complexity_score', 'Unknown')}/10\n\n"
        f"Paper text:\n{text[:MAX_TEXT_CHARS]}"
    )
    return _complete_json(_SUMMARY_SYSTEM_PROMPT, prompt, _SUMMARY_KEYS, label=f"summary age={target_age}")


def generate_code(analysis: dict[str, Any], language: str, framework: str) -> dict[str, Any]:
    prompt = (
        f"Language: {language}\n"
        f"Framework: {framework}\n"
        f"Domain: {analysis.get('domain_primary', 'Unknown')}\n"
        f"Methodologies: {', '.join(_as_str_list(analysis.get('key_methodologies')))}"
    )
    return _complete_json(_CODE_SYSTEM_PROMPT, prompt, _CODE_KEYS, label=f"code {language}/{framework}")


def generate_visualization(analysis: dict[str, Any], visualization_type: str) -> dict[str, Any]:
    prompt = (
        f"Visualization type: {visualization_type}\n"
        f"Domain: {analysis.get('domain_primary', 'Unknown')}\n"
        f"Analysis:\n{json.dumps(analysis)[:MAX_TEXT_CHARS]}"
    )
    return _complete_json(
        _VISUALIZATION_SYSTEM_PROMPT,
        prompt,
        _VISUALIZATION_KEYS,
        label=f"visualization type={visualization_type}",
    )


def _complete_json(system: str, prompt: str, required_keys: frozenset[str], label: str) -> dict[str, Any]:
    provider = os.getenv("ANALYSIS_PROVIDER", "openai").strip().lower()
    if provider not in {"openai", "anthropic"}:
        raise AnalysisServiceError(f"Unsupported ANALYSIS_PROVIDER: {provider}")

    client: OpenAI | None = None
    if provider == "openai":
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise AnalysisServiceError("OPENAI_API_KEY environment variable is required")
        client = OpenAI(api_key=api_key)

    LOGGER.info("Requesting %s from provider=%s", label, provider)
    last_error: Exception | None = None

    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            if client is not None:
                content = _call_openai(client, system, prompt)
            else:
                content = claude_complete(system, prompt)
            parsed = _parse_json_object(content)
            if not required_keys.issubset(parsed.keys()):
                missing = sorted(required_keys - parsed.keys())
                raise RuntimeError(f"Response missing keys: {missing}")
            LOGGER.info("Completed %s on attempt %s", label, attempt)
            return parsed
        except Exception as exc:
            last_error = exc
            LOGGER.warning("Failed %s on attempt %s/%s: %s", label, attempt, MAX_ATTEMPTS, exc)

    raise AnalysisServiceError(f"Analysis service failed for {label}: {last_error}") from last_error


def _call_openai(client: OpenAI, system: str, prompt: str) -> str:
    response = client.chat.completions.create(
        model=os.getenv("OPENAI_MODEL", DEFAULT_OPENAI_MODEL),
        temperature=float(os.getenv("OPENAI_TEMPERATURE", DEFAULT_OPENAI_TEMPERATURE)),
        response_format={"type": "json_object"},
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ],
    )
    content = response.choices[0].message.content
    if not content:
        raise RuntimeError("OpenAI returned an empty response")
    return content


def _parse_json_object(content: str) -> dict[str, Any]:
    """Parse possibly noisy model output into a strict JSON object."""
    try:
        parsed = json.loads(content)
    except JSONDecodeError:
        parsed = _extract_first_json_object(content)

    if not isinstance(parsed, dict):
        raise RuntimeError("Expected a JSON object from the model response")
    return parsed


def _extract_first_json_object(content: str) -> dict[str, Any]:
    """Extract the first decodable JSON object from an arbitrary string (e.g. fenced markdown)."""
    decoder = json.JSONDecoder()
    for index, char in enumerate(content):
        if char != "{":
            continue
        try:
            candidate, _ = decoder.raw_decode(content[index:])
        except JSONDecodeError:
            continue
        if isinstance(candidate, dict):
            return candidate
    raise RuntimeError("Could not extract a JSON object from the model response")


def _as_str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]
