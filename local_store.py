"""On-device key/value persistence for papers and their derived artifacts."""

from __future__ import annotations

import json
import logging
import os
import random
import time
from pathlib import Path
from typing import Any, Protocol

from models import utc_now_iso

DEFAULT_LOCAL_STORAGE_PATH = "~/.scout_research/local_storage.json"
DEFAULT_LOCAL_STORAGE_QUOTA_BYTES = 5 * 1024 * 1024

STORAGE_KEYS: dict[str, str] = {
    "papers": "research_papers",
    "summaries_prefix": "summaries_",  # + paper id
    "code_prefix": "code_",  # + paper id
    "visualizations_prefix": "visualizations_",  # + paper id
    "guest_session": "sr_guest_session",
}

LOGGER = logging.getLogger(__name__)


class LocalStorageError(RuntimeError):
    """Raised when the on-device store cannot be read or written."""


class KeyValueStorage(Protocol):
    """Flat string-keyed store holding serialized text values."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...

    def clear(self) -> None: ...


class MemoryStorage:
    """Dict-backed storage that lives for the lifetime of the process."""

    def __init__(self, quota_bytes: int | None = None) -> None:
        self._items: dict[str, str] = {}
        self._quota_bytes = quota_bytes

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self._quota_bytes is not None:
            used = sum(len(k) + len(v) for k, v in self._items.items() if k != key)
            if used + len(key) + len(value) > self._quota_bytes:
                raise LocalStorageError(f"Local storage quota exceeded writing key={key}")
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def clear(self) -> None:
        self._items.clear()


class JsonFileStorage:
    """Durable storage: one JSON object of text values, rewritten on every write."""

    def __init__(self, path: str | Path | None = None, quota_bytes: int | None = None) -> None:
        # Read here rather than at import: the CLI loads .env after importing.
        self.path = Path(path or os.path.expanduser(os.getenv("LOCAL_STORAGE_PATH", DEFAULT_LOCAL_STORAGE_PATH)))
        self.quota_bytes = (
            quota_bytes
            if quota_bytes is not None
            else int(os.getenv("LOCAL_STORAGE_QUOTA_BYTES", str(DEFAULT_LOCAL_STORAGE_QUOTA_BYTES)))
        )

    def get_item(self, key: str) -> str | None:
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        items = self._load()
        items[key] = value
        self._dump(items)

    def remove_item(self, key: str) -> None:
        items = self._load()
        if key in items:
            del items[key]
            self._dump(items)

    def clear(self) -> None:
        if self.path.exists():
            self._dump({})

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open(encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            raise LocalStorageError(f"Could not read local storage at {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise LocalStorageError(f"Local storage at {self.path} is not a JSON object")
        return data

    def _dump(self, items: dict[str, Any]) -> None:
        serialized = json.dumps(items, ensure_ascii=False)
        if len(serialized.encode("utf-8")) > self.quota_bytes:
            raise LocalStorageError(
                f"Local storage quota exceeded ({self.quota_bytes} bytes) at {self.path}"
            )
        # The file holds every scope; replace it whole so a failed write leaves the old copy intact.
        tmp_path = self.path.with_name(f"{self.path.name}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as fh:
                fh.write(serialized)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise LocalStorageError(f"Could not write local storage at {self.path}: {exc}") from exc


def generate_local_id() -> str:
    """Local ids are `<epoch millis>_<0..9999>`; never comparable with server ids."""
    return f"{int(time.time() * 1000)}_{random.randint(0, 9999)}"


class LocalStore:
    """Collections of records serialized as JSON arrays, newest first.

    Every save is a read-modify-write of the whole collection for its scope.
    Two interleaved saves to one scope lose the earlier write.
    """

    def __init__(self, storage: KeyValueStorage) -> None:
        self.storage = storage

    # ---- papers ----

    def list_papers(self) -> list[dict[str, Any]]:
        return self._read(STORAGE_KEYS["papers"])

    def get_paper(self, paper_id: str) -> dict[str, Any] | None:
        return next((p for p in self.list_papers() if p.get("id") == paper_id), None)

    def save_paper(self, fields: dict[str, Any]) -> dict[str, Any]:
        record = {
            "title": fields.get("title", ""),
            "content": fields.get("content", ""),
            "filename": fields.get("filename", ""),
            "analysis": fields.get("analysis") or {},
            "id": generate_local_id(),
            "upload_date": utc_now_iso(),
        }
        self._prepend(STORAGE_KEYS["papers"], record)
        LOGGER.info("Saved local paper id=%s title=%s", record["id"], record["title"])
        return record

    # ---- summaries ----

    def list_summaries(self, paper_id: str) -> list[dict[str, Any]]:
        return self._read(STORAGE_KEYS["summaries_prefix"] + paper_id)

    def save_summary(self, paper_id: str, target_age: int, content: dict[str, Any]) -> dict[str, Any]:
        record = {
            "paper_id": paper_id,
            "target_age": target_age,
            "content": content,
            "id": generate_local_id(),
            "created_at": utc_now_iso(),
        }
        self._prepend(STORAGE_KEYS["summaries_prefix"] + paper_id, record)
        LOGGER.info("Saved local summary for paper_id=%s target_age=%s", paper_id, target_age)
        return record

    # ---- code generations ----

    def list_code(self, paper_id: str) -> list[dict[str, Any]]:
        return self._read(STORAGE_KEYS["code_prefix"] + paper_id)

    def save_code(self, paper_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        record = {"id": generate_local_id(), "paper_id": paper_id, "created_at": utc_now_iso(), **payload}
        self._prepend(STORAGE_KEYS["code_prefix"] + paper_id, record)
        LOGGER.info("Saved local code generation for paper_id=%s", paper_id)
        return record

    # ---- visualizations ----

    def list_visualizations(self, paper_id: str) -> list[dict[str, Any]]:
        return self._read(STORAGE_KEYS["visualizations_prefix"] + paper_id)

    def save_visualization(self, paper_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        record = {"id": generate_local_id(), "paper_id": paper_id, "created_at": utc_now_iso(), **payload}
        self._prepend(STORAGE_KEYS["visualizations_prefix"] + paper_id, record)
        LOGGER.info("Saved local visualization for paper_id=%s", paper_id)
        return record

    def _read(self, key: str) -> list[dict[str, Any]]:
        raw = self.storage.get_item(key)
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise LocalStorageError(f"Corrupt local collection key={key}: {exc}") from exc
        if not isinstance(data, list):
            raise LocalStorageError(f"Local collection key={key} is not a list")
        return [item for item in data if isinstance(item, dict)]

    def _prepend(self, key: str, record: dict[str, Any]) -> None:
        items = self._read(key)
        items.insert(0, record)
        try:
            serialized = json.dumps(items, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise LocalStorageError(f"Could not serialize local collection key={key}: {exc}") from exc
        self.storage.set_item(key, serialized)
