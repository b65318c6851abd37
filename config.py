"""
Hosted Backend Configuration

Provides Supabase connection settings from environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from urllib.parse import urlparse

PLACEHOLDER_ANON_KEY = "your_supabase_anon_key_here"

DEFAULT_REMOTE_CACHE_TTL_SECONDS = 300.0
DEFAULT_REMOTE_REQUEST_TIMEOUT_SECONDS = 30.0


def remote_cache_ttl_seconds() -> float:
    return float(os.getenv("REMOTE_CACHE_TTL_SECONDS", str(DEFAULT_REMOTE_CACHE_TTL_SECONDS)))


def remote_request_timeout_seconds() -> float:
    return float(os.getenv("REMOTE_REQUEST_TIMEOUT_SECONDS", str(DEFAULT_REMOTE_REQUEST_TIMEOUT_SECONDS)))


def is_valid_backend_url(url: str | None) -> bool:
    """Accept only absolute URLs that point at Supabase or a local instance."""
    if not url:
        return False
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        return False
    return "supabase.co" in url or "localhost" in url


@dataclass(frozen=True, slots=True)
class SupabaseConfig:
    url: str | None = None
    anon_key: str | None = None
    access_token: str | None = None

    @classmethod
    def from_env(cls) -> SupabaseConfig:
        return cls(
            url=os.getenv("SUPABASE_URL"),
            anon_key=os.getenv("SUPABASE_ANON_KEY"),
            access_token=os.getenv("SUPABASE_ACCESS_TOKEN"),
        )

    @property
    def is_configured(self) -> bool:
        return (
            is_valid_backend_url(self.url)
            and bool(self.anon_key)
            and self.anon_key != PLACEHOLDER_ANON_KEY
        )

    @property
    def base_url(self) -> str:
        return (self.url or "").rstrip("/")

    def headers(self, access_token: str | None = None) -> dict[str, str]:
        """Request headers; the anon key doubles as bearer when no user token is present."""
        token = access_token or self.access_token or self.anon_key or ""
        return {
            "apikey": self.anon_key or "",
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
