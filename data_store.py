"""Unified data store: routes every call to the hosted backend or on-device storage."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from config import SupabaseConfig
from identity import GUEST_MARKER, IdentityResolver, SupabaseIdentityProvider
from local_store import JsonFileStorage, KeyValueStorage, LocalStore
from models import CodeGeneration, Paper, Visualization, parse_timestamp
from remote_store import SupabaseStore

LOGGER = logging.getLogger(__name__)


class StorageBackend(Protocol):
    """Capability set shared by the remote and local variants."""

    mode: str
    user_id: str

    def list_papers(self) -> list[Paper]: ...

    def get_paper(self, paper_id: str) -> Paper | None: ...

    def save_paper(self, fields: dict[str, Any]) -> Paper: ...

    def get_summary(self, paper_id: str, target_age: int) -> dict[str, Any] | None: ...

    def save_summary(self, paper_id: str, target_age: int, content: dict[str, Any]) -> dict[str, Any]: ...

    def save_code(self, paper_id: str, payload: dict[str, Any]) -> CodeGeneration: ...

    def save_visualization(self, paper_id: str, payload: dict[str, Any]) -> Visualization: ...

    def list_visualizations(self, paper_id: str) -> list[Visualization]: ...


def paper_from_local(record: dict[str, Any], owner_id: str) -> Paper:
    """Reshape a local paper record into the common Paper layout."""
    uploaded = parse_timestamp(record.get("upload_date"))
    analysis = record.get("analysis")
    return Paper(
        id=str(record.get("id", "")),
        owner_id=owner_id,
        title=record.get("title") or "",
        content=record.get("content") or "",
        filename=record.get("filename") or "",
        analysis=analysis if isinstance(analysis, dict) else {},
        created_at=uploaded,
        updated_at=uploaded,
    )


def _code_from_local(record: dict[str, Any], owner_id: str) -> CodeGeneration:
    return CodeGeneration.from_row({**record, "user_id": owner_id})


def _visualization_from_local(record: dict[str, Any], owner_id: str) -> Visualization:
    return Visualization.from_row({**record, "user_id": owner_id})


class RemoteBackend:
    mode = "remote"

    def __init__(self, store: SupabaseStore, user_id: str, local: LocalStore) -> None:
        self.store = store
        self.user_id = user_id
        self.local = local

    def list_papers(self) -> list[Paper]:
        return self.store.list_papers(self.user_id)

    def get_paper(self, paper_id: str) -> Paper | None:
        return self.store.get_paper(paper_id)

    def save_paper(self, fields: dict[str, Any]) -> Paper:
        return self.store.save_paper(fields, user_id=self.user_id)

    def get_summary(self, paper_id: str, target_age: int) -> dict[str, Any] | None:
        record = self.store.get_summary(paper_id, target_age)
        return record.content if record else None

    def save_summary(self, paper_id: str, target_age: int, content: dict[str, Any]) -> dict[str, Any]:
        saved = self.store.save_summary(paper_id, target_age, content, user_id=self.user_id)
        return saved.content if saved.content is not None else content

    def save_code(self, paper_id: str, payload: dict[str, Any]) -> CodeGeneration:
        return self.store.save_code_generation(paper_id, payload, user_id=self.user_id or GUEST_MARKER)

    def save_visualization(self, paper_id: str, payload: dict[str, Any]) -> Visualization:
        return self.store.save_visualization(paper_id, payload, user_id=self.user_id or GUEST_MARKER)

    def list_visualizations(self, paper_id: str) -> list[Visualization]:
        # Remote listing is not routed: visualizations are read from this device in both modes.
        LOGGER.debug("Listing visualizations from local storage in remote mode paper_id=%s", paper_id)
        return [_visualization_from_local(r, self.user_id) for r in self.local.list_visualizations(paper_id)]


class LocalBackend:
    mode = "local"

    def __init__(self, local: LocalStore, guest_id: str) -> None:
        self.local = local
        self.user_id = guest_id

    def list_papers(self) -> list[Paper]:
        return [paper_from_local(r, self.user_id) for r in self.local.list_papers()]

    def get_paper(self, paper_id: str) -> Paper | None:
        record = self.local.get_paper(paper_id)
        return paper_from_local(record, self.user_id) if record else None

    def save_paper(self, fields: dict[str, Any]) -> Paper:
        return paper_from_local(self.local.save_paper(fields), self.user_id)

    def get_summary(self, paper_id: str, target_age: int) -> dict[str, Any] | None:
        found = next(
            (s for s in self.local.list_summaries(paper_id) if s.get("target_age") == target_age),
            None,
        )
        return found.get("content") if found else None

    def save_summary(self, paper_id: str, target_age: int, content: dict[str, Any]) -> dict[str, Any]:
        return self.local.save_summary(paper_id, target_age, content)["content"]

    def save_code(self, paper_id: str, payload: dict[str, Any]) -> CodeGeneration:
        return _code_from_local(self.local.save_code(paper_id, payload), self.user_id)

    def save_visualization(self, paper_id: str, payload: dict[str, Any]) -> Visualization:
        return _visualization_from_local(self.local.save_visualization(paper_id, payload), self.user_id)

    def list_visualizations(self, paper_id: str) -> list[Visualization]:
        return [_visualization_from_local(r, self.user_id) for r in self.local.list_visualizations(paper_id)]


class DataStore:
    """The only persistence entry point for callers.

    Each call resolves identity afresh: an authenticated principal routes the
    whole call to the hosted backend, anything else routes it to this device.
    Records written in one mode are never migrated to the other, and a failed
    remote call is raised rather than retried locally.
    """

    def __init__(self, identity: IdentityResolver, remote: SupabaseStore, local: LocalStore) -> None:
        self.identity = identity
        self.remote = remote
        self.local = local

    @classmethod
    def from_env(cls, storage: KeyValueStorage | None = None) -> DataStore:
        config = SupabaseConfig.from_env()
        provider = SupabaseIdentityProvider(config)
        storage = storage if storage is not None else JsonFileStorage()
        remote = SupabaseStore(config, access_token=provider.access_token)
        provider.subscribe(lambda _event, token: setattr(remote, "access_token", token))
        return cls(
            identity=IdentityResolver(provider, storage),
            remote=remote,
            local=LocalStore(storage),
        )

    def resolve_backend(self) -> RemoteBackend | LocalBackend:
        remote_id = self.identity.remote_user_id()
        if remote_id:
            LOGGER.debug("Routing to remote backend user_id=%s", remote_id)
            return RemoteBackend(self.remote, remote_id, self.local)
        guest_id = self.identity.guest_user_id()
        LOGGER.debug("Routing to local backend guest_id=%s", guest_id)
        return LocalBackend(self.local, guest_id)

    def get_current_user_id(self) -> str:
        return self.resolve_backend().user_id

    def get_papers(self) -> list[Paper]:
        return self.resolve_backend().list_papers()

    def get_paper(self, paper_id: str) -> Paper | None:
        return self.resolve_backend().get_paper(paper_id)

    def save_paper(
        self,
        title: str,
        content: str,
        filename: str,
        analysis: dict[str, Any],
        file_size: int | None = None,
    ) -> Paper:
        fields = {"title": title, "content": content, "filename": filename, "analysis": analysis}
        if file_size is not None:
            fields["file_size"] = file_size
        return self.resolve_backend().save_paper(fields)

    def get_summary(self, paper_id: str, target_age: int) -> dict[str, Any] | None:
        """Summary content for the paper and audience age, or None if not generated yet."""
        return self.resolve_backend().get_summary(paper_id, target_age)

    def save_summary(self, paper_id: str, target_age: int, content: dict[str, Any]) -> dict[str, Any]:
        return self.resolve_backend().save_summary(paper_id, target_age, content)

    def save_code_generation(self, paper_id: str, payload: dict[str, Any]) -> CodeGeneration:
        return self.resolve_backend().save_code(paper_id, payload)

    def save_visualization(self, paper_id: str, payload: dict[str, Any]) -> Visualization:
        return self.resolve_backend().save_visualization(paper_id, payload)

    def get_visualizations(self, paper_id: str) -> list[Visualization]:
        return self.resolve_backend().list_visualizations(paper_id)

    def sign_out(self) -> None:
        self.identity.sign_out()
