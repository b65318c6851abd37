from __future__ import annotations

import json
import re
from pathlib import Path
from unittest.mock import patch

import pytest

from local_store import STORAGE_KEYS, JsonFileStorage, LocalStorageError, LocalStore, MemoryStorage

_LOCAL_ID = re.compile(r"^\d+_\d{1,4}$")


@pytest.fixture
def store() -> LocalStore:
    return LocalStore(MemoryStorage())


def test_list_papers_empty_when_nothing_saved(store: LocalStore) -> None:
    assert store.list_papers() == []


def test_save_paper_assigns_id_and_upload_date(store: LocalStore) -> None:
    record = store.save_paper({
        "title": "Test Paper",
        "content": "Test content",
        "filename": "test.pdf",
        "analysis": {"complexity_score": 5},
    })

    assert _LOCAL_ID.match(record["id"])
    assert record["upload_date"]
    assert record["title"] == "Test Paper"
    assert store.list_papers() == [record]


def test_save_paper_prepends_newest_first(store: LocalStore) -> None:
    first = store.save_paper({"title": "First", "content": "", "filename": "a.txt", "analysis": {}})
    second = store.save_paper({"title": "Second", "content": "", "filename": "b.txt", "analysis": {}})

    titles = [p["title"] for p in store.list_papers()]
    assert titles == ["Second", "First"]
    assert store.get_paper(first["id"]) == first
    assert store.get_paper(second["id"]) == second


def test_get_paper_returns_none_for_unknown_id(store: LocalStore) -> None:
    assert store.get_paper("missing") is None


def test_summaries_are_scoped_per_paper(store: LocalStore) -> None:
    store.save_summary("paper-a", 12, {"executive_summary": "A"})
    store.save_summary("paper-b", 12, {"executive_summary": "B"})

    assert [s["content"]["executive_summary"] for s in store.list_summaries("paper-a")] == ["A"]
    assert [s["content"]["executive_summary"] for s in store.list_summaries("paper-b")] == ["B"]
    assert store.storage.get_item(STORAGE_KEYS["summaries_prefix"] + "paper-a") is not None


def test_save_code_keeps_payload_fields(store: LocalStore) -> None:
    record = store.save_code("p1", {"language": "python", "framework": "pytorch", "code_content": {"main_implementation": "x"}})

    assert record["paper_id"] == "p1"
    assert record["language"] == "python"
    assert _LOCAL_ID.match(record["id"])
    assert store.list_code("p1") == [record]


def test_save_visualization_round_trips_through_storage(store: LocalStore) -> None:
    store.save_visualization("p1", {"visualization_type": "chart", "config": {"title": "One"}})
    store.save_visualization("p1", {"visualization_type": "chart", "config": {"title": "Two"}})

    titles = [v["config"]["title"] for v in store.list_visualizations("p1")]
    assert titles == ["Two", "One"]
    assert store.list_visualizations("p2") == []


def test_save_rewrites_whole_collection(store: LocalStore) -> None:
    store.save_paper({"title": "One", "content": "", "filename": "", "analysis": {}})
    store.save_paper({"title": "Two", "content": "", "filename": "", "analysis": {}})

    raw = store.storage.get_item(STORAGE_KEYS["papers"])
    assert [p["title"] for p in json.loads(raw)] == ["Two", "One"]


def test_corrupt_collection_raises(store: LocalStore) -> None:
    store.storage.set_item(STORAGE_KEYS["papers"], "{not json")
    with pytest.raises(LocalStorageError, match="Corrupt"):
        store.list_papers()


def test_unserializable_record_raises_and_keeps_previous_collection(store: LocalStore) -> None:
    store.save_paper({"title": "Kept", "content": "", "filename": "", "analysis": {}})

    with pytest.raises(LocalStorageError, match="serialize"):
        store.save_paper({"title": "Bad", "content": "", "filename": "", "analysis": {"when": object()}})

    assert [p["title"] for p in store.list_papers()] == ["Kept"]


def test_memory_storage_quota_exceeded() -> None:
    store = LocalStore(MemoryStorage(quota_bytes=64))
    with pytest.raises(LocalStorageError, match="quota"):
        store.save_paper({"title": "x" * 100, "content": "", "filename": "", "analysis": {}})


def test_json_file_storage_persists_across_instances(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "storage.json"
    LocalStore(JsonFileStorage(path)).save_paper({"title": "Durable", "content": "", "filename": "", "analysis": {}})

    reopened = LocalStore(JsonFileStorage(path))
    assert [p["title"] for p in reopened.list_papers()] == ["Durable"]


def test_json_file_storage_remove_and_clear(tmp_path: Path) -> None:
    storage = JsonFileStorage(tmp_path / "storage.json")
    storage.set_item("a", "1")
    storage.set_item("b", "2")

    storage.remove_item("a")
    assert storage.get_item("a") is None
    assert storage.get_item("b") == "2"

    storage.clear()
    assert storage.get_item("b") is None


def test_json_file_storage_quota(tmp_path: Path) -> None:
    storage = JsonFileStorage(tmp_path / "storage.json", quota_bytes=20)
    with pytest.raises(LocalStorageError, match="quota"):
        storage.set_item("key", "x" * 50)
    assert not (tmp_path / "storage.json").exists()


def test_json_file_storage_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "storage.json"
    path.write_text("[1, 2", encoding="utf-8")
    with pytest.raises(LocalStorageError, match="Could not read"):
        JsonFileStorage(path).get_item("anything")


def test_json_file_storage_path_from_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOCAL_STORAGE_PATH", str(tmp_path / "env.json"))
    storage = JsonFileStorage()
    storage.set_item("k", "v")
    assert (tmp_path / "env.json").exists()


def test_json_file_storage_failed_write_keeps_previous_file(tmp_path: Path) -> None:
    path = tmp_path / "storage.json"
    storage = JsonFileStorage(path)
    storage.set_item(STORAGE_KEYS["guest_session"], '{"user_id": "guest_1_1"}')
    storage.set_item(STORAGE_KEYS["papers"], "[]")

    with patch("local_store.os.replace", side_effect=OSError("disk full")):
        with pytest.raises(LocalStorageError, match="Could not write"):
            storage.set_item(STORAGE_KEYS["papers"], '[{"title": "lost"}]')

    assert storage.get_item(STORAGE_KEYS["papers"]) == "[]"
    assert storage.get_item(STORAGE_KEYS["guest_session"]) == '{"user_id": "guest_1_1"}'
    assert not (tmp_path / "storage.json.tmp").exists()
