"""Supabase (PostgREST) adapter for the hosted research workspace tables."""

from __future__ import annotations

import errno
import json
import logging
import time
from typing import Any

import requests

from cache import TTLCache
from config import SupabaseConfig, remote_cache_ttl_seconds, remote_request_timeout_seconds
from models import CodeGeneration, Notification, Paper, SimilarPaperRecord, Summary, Visualization

MAX_ATTEMPTS = 3
RETRY_BASE_DELAY_SECONDS = 1.0
NOTIFICATIONS_LIMIT = 50

# Matched case-insensitively against the exception type, message and code.
_RETRYABLE_TOKENS: tuple[str, ...] = (
    "network",
    "timeout",
    "timed out",
    "econnreset",
    "connection reset",
    "enotfound",
    "name or service not known",
    "temporary failure in name resolution",
)
_RETRYABLE_ERRNOS: frozenset[int] = frozenset({errno.ECONNRESET, errno.ETIMEDOUT})
_RETRYABLE_TYPES: tuple[type[BaseException], ...] = (requests.ConnectionError, requests.Timeout, TimeoutError)

LOGGER = logging.getLogger(__name__)


class RemoteStoreError(RuntimeError):
    """A hosted-backend call failed; `retryable` tells whether retries were attempted."""

    def __init__(
        self,
        message: str,
        original_error: Exception | None = None,
        retryable: bool = False,
        attempts: int = 1,
    ) -> None:
        super().__init__(message)
        self.original_error = original_error
        self.retryable = retryable
        self.attempts = attempts


def is_retryable_error(exc: BaseException) -> bool:
    """Return True for transient failures: connection reset, DNS failure, timeout."""
    current: BaseException | None = exc
    seen: set[int] = set()
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, _RETRYABLE_TYPES):
            return True
        haystack = f"{type(current).__name__} {current} {getattr(current, 'code', '') or ''}".lower()
        if any(token in haystack for token in _RETRYABLE_TOKENS):
            return True
        if getattr(current, "errno", None) in _RETRYABLE_ERRNOS:
            return True
        current = current.__cause__ or current.__context__
    return False


class SupabaseStore:
    """CRUD wrappers over the backend tables.

    Inserts return the full materialized row. `list_papers` is cached per user
    id for `cache.ttl_seconds`; entries expire by TTL only unless
    `invalidate_on_write` is set.
    """

    def __init__(
        self,
        config: SupabaseConfig,
        cache: TTLCache | None = None,
        invalidate_on_write: bool = False,
        session: requests.Session | None = None,
        timeout: float | None = None,
        access_token: str | None = None,
    ) -> None:
        self.config = config
        self.cache = cache if cache is not None else TTLCache(remote_cache_ttl_seconds())
        self.invalidate_on_write = invalidate_on_write
        self.session = session
        self.timeout = timeout if timeout is not None else remote_request_timeout_seconds()
        self.access_token = access_token

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    # ------------------ Papers ------------------

    def list_papers(self, user_id: str | None) -> list[Paper]:
        if not self.is_configured:
            LOGGER.warning("Supabase not configured, returning no papers")
            return []

        cache_key = _cache_key("list_papers", user_id)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return list(cached)

        rows = self._request_with_retry(
            method="GET",
            table="research_papers",
            params={"select": "*", "order": "created_at.desc"},
        )
        papers = tuple(Paper.from_row(row) for row in _as_rows(rows))
        self.cache.set(cache_key, papers)
        LOGGER.info("Fetched %s papers from Supabase for user_id=%s", len(papers), user_id)
        return list(papers)

    def save_paper(self, fields: dict[str, Any], user_id: str | None) -> Paper:
        row = {
            "user_id": user_id,
            "title": fields.get("title", ""),
            "content": fields.get("content", ""),
            "filename": fields.get("filename", ""),
            "analysis": fields.get("analysis") or {},
        }
        if fields.get("file_size") is not None:
            row["file_size"] = fields["file_size"]

        paper = Paper.from_row(self._insert("research_papers", row))
        if self.invalidate_on_write:
            self.cache.invalidate(_cache_key("list_papers", user_id))
        LOGGER.info("Saved paper to Supabase id=%s title=%s", paper.id, paper.title)
        return paper

    def get_paper(self, paper_id: str) -> Paper | None:
        """Fetch one paper by id, bypassing the `list_papers` cache."""
        if not self.is_configured:
            return None

        rows = _as_rows(
            self._request_with_retry(
                method="GET",
                table="research_papers",
                params={"select": "*", "id": f"eq.{paper_id}", "limit": "1"},
            )
        )
        return Paper.from_row(rows[0]) if rows else None

    # ------------------ Summaries ------------------

    def get_summary(self, paper_id: str, target_age: int) -> Summary | None:
        """Latest summary for (paper_id, target_age), or None when there is none yet."""
        if not self.is_configured:
            return None

        rows = _as_rows(
            self._request_with_retry(
                method="GET",
                table="summaries",
                params={
                    "select": "*",
                    "paper_id": f"eq.{paper_id}",
                    "target_age": f"eq.{target_age}",
                    "order": "created_at.desc",
                    "limit": "1",
                },
            )
        )
        return Summary.from_row(rows[0]) if rows else None

    def save_summary(self, paper_id: str, target_age: int, content: dict[str, Any], user_id: str | None) -> Summary:
        row = {"paper_id": paper_id, "user_id": user_id, "target_age": target_age, "content": content}
        summary = Summary.from_row(self._insert("summaries", row))
        LOGGER.info("Saved summary to Supabase paper_id=%s target_age=%s", paper_id, target_age)
        return summary

    # ------------------ Code Generations ------------------

    def save_code_generation(self, paper_id: str, payload: dict[str, Any], user_id: str) -> CodeGeneration:
        row = {
            "paper_id": paper_id,
            "user_id": user_id,
            "language": payload.get("language", ""),
            "framework": payload.get("framework", ""),
            "code_content": payload.get("code_content") or {},
        }
        return CodeGeneration.from_row(self._insert("code_generations", row))

    # ------------------ Visualizations ------------------

    def save_visualization(self, paper_id: str, payload: dict[str, Any], user_id: str) -> Visualization:
        row = {
            "paper_id": paper_id,
            "user_id": user_id,
            "visualization_type": payload.get("visualization_type", ""),
            "config": payload.get("config") or {},
        }
        return Visualization.from_row(self._insert("visualizations", row))

    def list_visualizations(self, paper_id: str) -> list[Visualization]:
        if not self.is_configured:
            return []
        rows = self._request_with_retry(
            method="GET",
            table="visualizations",
            params={"select": "*", "paper_id": f"eq.{paper_id}", "order": "created_at.desc"},
        )
        return [Visualization.from_row(row) for row in _as_rows(rows)]

    # ------------------ Notifications ------------------

    def get_notifications(self) -> list[Notification]:
        if not self.is_configured:
            return []
        rows = self._request_with_retry(
            method="GET",
            table="notifications",
            params={"select": "*", "order": "created_at.desc", "limit": str(NOTIFICATIONS_LIMIT)},
        )
        return [Notification.from_row(row) for row in _as_rows(rows)]

    def save_notification(self, user_id: str, title: str, message: str) -> Notification:
        row = {"user_id": user_id, "title": title, "message": message, "read": False}
        return Notification.from_row(self._insert("notifications", row))

    def mark_notification_read(self, notification_id: str) -> None:
        if not self.is_configured:
            return
        self._request_with_retry(
            method="PATCH",
            table="notifications",
            params={"id": f"eq.{notification_id}"},
            json_payload={"read": True},
        )

    # ------------------ Similar Papers ------------------

    def save_similar_papers(
        self,
        paper_id: str,
        user_id: str,
        similar_papers: list[dict[str, Any]],
        search_query: str,
    ) -> SimilarPaperRecord:
        row = {
            "paper_id": paper_id,
            "user_id": user_id,
            "similar_papers": similar_papers,
            "search_query": search_query,
        }
        return SimilarPaperRecord.from_row(self._insert("similar_papers", row))

    def get_similar_papers(self, paper_id: str) -> SimilarPaperRecord | None:
        if not self.is_configured:
            return None
        rows = _as_rows(
            self._request_with_retry(
                method="GET",
                table="similar_papers",
                params={"select": "*", "paper_id": f"eq.{paper_id}", "order": "created_at.desc", "limit": "1"},
            )
        )
        return SimilarPaperRecord.from_row(rows[0]) if rows else None

    # ------------------ Transport ------------------

    def _insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        if not self.is_configured:
            raise RemoteStoreError(
                "Supabase is not configured. Set SUPABASE_URL and SUPABASE_ANON_KEY."
            )

        rows = _as_rows(
            self._request_with_retry(
                method="POST",
                table=table,
                json_payload=[row],
                prefer="return=representation",
            )
        )
        if not rows:
            raise RemoteStoreError(f"Supabase insert into {table} returned no row")
        return rows[0]

    def _request_with_retry(
        self,
        *,
        method: str,
        table: str,
        params: dict[str, str] | None = None,
        json_payload: Any = None,
        prefer: str | None = None,
    ) -> Any:
        """Send a PostgREST request, retrying transient failures with exponential backoff."""
        headers = self.config.headers(self.access_token)
        if prefer:
            headers["Prefer"] = prefer
        url = f"{self.config.base_url}/rest/v1/{table}"
        http = self.session or requests

        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                response = http.request(
                    method=method,
                    url=url,
                    headers=headers,
                    params=params,
                    json=json_payload,
                    timeout=self.timeout,
                )
                response.raise_for_status()
                if not response.content:
                    return None
                return response.json()
            except requests.RequestException as exc:
                retryable = is_retryable_error(exc)
                if not retryable or attempt >= MAX_ATTEMPTS:
                    raise RemoteStoreError(
                        f"Supabase {method} {table} failed after {attempt} attempts: {exc}{_response_detail(exc)}",
                        original_error=exc,
                        retryable=retryable,
                        attempts=attempt,
                    ) from exc

                delay_seconds = RETRY_BASE_DELAY_SECONDS * 2 ** (attempt - 1)
                LOGGER.warning(
                    "Supabase %s %s failed on attempt %s/%s, retrying in %.1fs: %s",
                    method,
                    table,
                    attempt,
                    MAX_ATTEMPTS,
                    delay_seconds,
                    exc,
                )
                time.sleep(delay_seconds)
            except ValueError as exc:
                raise RemoteStoreError(
                    f"Supabase {method} {table} returned invalid JSON: {exc}",
                    original_error=exc,
                    attempts=attempt,
                ) from exc

        raise RemoteStoreError(f"Supabase {method} {table} failed")


def _cache_key(operation: str, user_id: str | None) -> str:
    return f"{operation}_{json.dumps({'userId': user_id})}"


def _as_rows(value: Any) -> list[dict[str, Any]]:
    if isinstance(value, dict):
        return [value]
    if isinstance(value, list):
        return [row for row in value if isinstance(row, dict)]
    return []


def _response_detail(exc: requests.RequestException) -> str:
    if not isinstance(exc, requests.HTTPError) or exc.response is None:
        return ""
    try:
        return f" {json.dumps(exc.response.json())}"
    except ValueError:
        return f" {exc.response.text}"
