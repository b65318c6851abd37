"""Shared typed models for the research workspace."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def parse_timestamp(raw: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp into an aware UTC datetime, or None."""
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=UTC)
    if not isinstance(raw, str) or not raw.strip():
        return None

    # Supabase and JavaScript clients emit a trailing Z.
    value = raw.strip().replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_dict_or_none(value: Any) -> dict[str, Any] | None:
    return value if isinstance(value, dict) else None


@dataclass(frozen=True, slots=True)
class Paper:
    """Research paper in the common layout shared by both storage modes."""

    id: str
    owner_id: str | None
    title: str
    content: str
    filename: str
    analysis: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    file_size: int | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Paper:
        file_size = row.get("file_size")
        return cls(
            id=str(row.get("id", "")),
            owner_id=row.get("user_id"),
            title=_as_str(row.get("title")),
            content=_as_str(row.get("content")),
            filename=_as_str(row.get("filename")),
            analysis=_as_dict(row.get("analysis")),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
            file_size=file_size if isinstance(file_size, int) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.owner_id,
            "title": self.title,
            "content": self.content,
            "filename": self.filename,
            "analysis": self.analysis,
            "file_size": self.file_size,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True, slots=True)
class Summary:
    id: str
    paper_id: str
    owner_id: str | None
    target_age: int
    content: dict[str, Any] | None
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Summary:
        return cls(
            id=str(row.get("id", "")),
            paper_id=str(row.get("paper_id", "")),
            owner_id=row.get("user_id"),
            target_age=int(row.get("target_age") or 0),
            content=_as_dict_or_none(row.get("content")),
            created_at=parse_timestamp(row.get("created_at")),
        )


@dataclass(frozen=True, slots=True)
class CodeGeneration:
    id: str
    paper_id: str
    owner_id: str | None
    language: str
    framework: str
    code_content: dict[str, Any]
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> CodeGeneration:
        return cls(
            id=str(row.get("id", "")),
            paper_id=str(row.get("paper_id", "")),
            owner_id=row.get("user_id"),
            language=_as_str(row.get("language")),
            framework=_as_str(row.get("framework")),
            code_content=_as_dict(row.get("code_content")),
            created_at=parse_timestamp(row.get("created_at")),
        )


@dataclass(frozen=True, slots=True)
class Visualization:
    id: str
    paper_id: str
    owner_id: str | None
    visualization_type: str
    config: dict[str, Any]
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Visualization:
        return cls(
            id=str(row.get("id", "")),
            paper_id=str(row.get("paper_id", "")),
            owner_id=row.get("user_id"),
            visualization_type=_as_str(row.get("visualization_type")),
            config=_as_dict(row.get("config")),
            created_at=parse_timestamp(row.get("created_at")),
        )


@dataclass(frozen=True, slots=True)
class GuestSession:
    """On-device pseudo-user, created lazily the first time local mode needs an id."""

    user_id: str
    display_name: str = "Guest"
    created_at: str = ""
    mode: str = "guest"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GuestSession | None:
        user_id = data.get("user_id")
        if not isinstance(user_id, str) or not user_id:
            return None
        return cls(
            user_id=user_id,
            display_name=_as_str(data.get("display_name")) or "Guest",
            created_at=_as_str(data.get("created_at")),
            mode=_as_str(data.get("mode")) or "guest",
        )

    def to_dict(self) -> dict[str, str]:
        return {
            "user_id": self.user_id,
            "display_name": self.display_name,
            "created_at": self.created_at,
            "mode": self.mode,
        }


@dataclass(frozen=True, slots=True)
class Notification:
    id: str
    owner_id: str | None
    title: str
    message: str
    read: bool
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Notification:
        return cls(
            id=str(row.get("id", "")),
            owner_id=row.get("user_id"),
            title=_as_str(row.get("title")),
            message=_as_str(row.get("message")),
            read=bool(row.get("read")),
            created_at=parse_timestamp(row.get("created_at")),
        )


@dataclass(frozen=True, slots=True)
class SimilarPaperRecord:
    id: str
    paper_id: str
    owner_id: str | None
    similar_papers: list[dict[str, Any]]
    search_query: str
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> SimilarPaperRecord:
        similar = row.get("similar_papers")
        return cls(
            id=str(row.get("id", "")),
            paper_id=str(row.get("paper_id", "")),
            owner_id=row.get("user_id"),
            similar_papers=[s for s in similar if isinstance(s, dict)] if isinstance(similar, list) else [],
            search_query=_as_str(row.get("search_query")),
            created_at=parse_timestamp(row.get("created_at")),
        )
