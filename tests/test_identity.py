from __future__ import annotations

import json
import re
from unittest.mock import MagicMock, patch

import pytest
import requests

from config import SupabaseConfig
from identity import (
    GUEST_MARKER,
    IdentityProviderError,
    IdentityResolver,
    SupabaseIdentityProvider,
)
from local_store import STORAGE_KEYS, LocalStorageError, MemoryStorage

_GUEST_ID = re.compile(r"^guest_\d+_\d+$")

_CONFIG = SupabaseConfig(
    url="https://project.supabase.co",
    anon_key="anon-key",
    access_token="user-token",
)


class _StubProvider:
    def __init__(self, user_id: str | None = None, error: Exception | None = None) -> None:
        self.user_id = user_id
        self.error = error
        self.signed_out = False

    def current_user_id(self) -> str | None:
        if self.error is not None:
            raise self.error
        return self.user_id

    def sign_out(self) -> None:
        self.signed_out = True
        self.user_id = None


def _mock_resp(status_code: int = 200, payload: object = None) -> MagicMock:
    mock = MagicMock()
    mock.status_code = status_code
    mock.json.return_value = payload
    mock.text = json.dumps(payload)
    return mock


# ---------------------------------------------------------------------------
# SupabaseIdentityProvider
# ---------------------------------------------------------------------------

def test_provider_returns_none_when_not_configured() -> None:
    provider = SupabaseIdentityProvider(SupabaseConfig())
    with patch("identity.requests.get") as mock_get:
        assert provider.current_user_id() is None
    mock_get.assert_not_called()


def test_provider_returns_none_without_access_token() -> None:
    config = SupabaseConfig(url="https://project.supabase.co", anon_key="anon-key")
    with patch("identity.requests.get") as mock_get:
        assert SupabaseIdentityProvider(config).current_user_id() is None
    mock_get.assert_not_called()


def test_provider_returns_user_id() -> None:
    with patch("identity.requests.get", return_value=_mock_resp(payload={"id": "user-1"})) as mock_get:
        assert SupabaseIdentityProvider(_CONFIG).current_user_id() == "user-1"

    _, kwargs = mock_get.call_args
    assert kwargs["headers"]["Authorization"] == "Bearer user-token"
    assert kwargs["headers"]["apikey"] == "anon-key"


def test_provider_treats_401_as_signed_out() -> None:
    with patch("identity.requests.get", return_value=_mock_resp(401, {"msg": "expired"})):
        assert SupabaseIdentityProvider(_CONFIG).current_user_id() is None


def test_provider_raises_on_server_error() -> None:
    with patch("identity.requests.get", return_value=_mock_resp(500, {"msg": "down"})):
        with pytest.raises(IdentityProviderError, match="HTTP 500"):
            SupabaseIdentityProvider(_CONFIG).current_user_id()


def test_provider_raises_on_transport_error() -> None:
    with patch("identity.requests.get", side_effect=requests.ConnectionError("ECONNRESET")):
        with pytest.raises(IdentityProviderError):
            SupabaseIdentityProvider(_CONFIG).current_user_id()


def test_provider_notifies_subscribers_and_unsubscribes() -> None:
    provider = SupabaseIdentityProvider(_CONFIG)
    events: list[tuple[str, str | None]] = []
    unsubscribe = provider.subscribe(lambda event, token: events.append((event, token)))

    provider.set_access_token("new-token")
    provider.sign_out()
    unsubscribe()
    provider.set_access_token("ignored")

    assert events == [("SIGNED_IN", "new-token"), ("SIGNED_OUT", None)]
    assert provider.access_token == "ignored"


# ---------------------------------------------------------------------------
# IdentityResolver
# ---------------------------------------------------------------------------

def test_resolver_prefers_remote_identity() -> None:
    resolver = IdentityResolver(_StubProvider(user_id="remote-1"), MemoryStorage())
    assert resolver.current_user_id() == "remote-1"


def test_resolver_generates_guest_when_provider_fails() -> None:
    storage = MemoryStorage()
    resolver = IdentityResolver(_StubProvider(error=RuntimeError("No auth")), storage)

    user_id = resolver.current_user_id()

    assert _GUEST_ID.match(user_id)
    stored = json.loads(storage.get_item(STORAGE_KEYS["guest_session"]))
    assert stored["user_id"] == user_id
    assert stored["mode"] == "guest"
    assert stored["display_name"] == "Guest"


def test_consecutive_calls_return_same_id() -> None:
    resolver = IdentityResolver(_StubProvider(), MemoryStorage())
    assert resolver.current_user_id() == resolver.current_user_id()


def test_guest_id_stable_across_resolvers_sharing_storage() -> None:
    storage = MemoryStorage()
    first = IdentityResolver(_StubProvider(), storage).guest_user_id()
    second = IdentityResolver(_StubProvider(), storage).guest_user_id()
    assert first == second


def test_sign_out_in_local_mode_clears_guest_session() -> None:
    storage = MemoryStorage()
    resolver = IdentityResolver(_StubProvider(), storage)
    before = resolver.guest_user_id()

    resolver.sign_out()

    assert storage.get_item(STORAGE_KEYS["guest_session"]) is None
    after = resolver.guest_user_id()
    assert _GUEST_ID.match(after)
    assert storage.get_item(STORAGE_KEYS["guest_session"]) is not None
    # A fresh session was created; the old one is gone.
    assert json.loads(storage.get_item(STORAGE_KEYS["guest_session"]))["user_id"] == after
    assert before.startswith("guest_")


def test_sign_out_in_remote_mode_keeps_guest_session() -> None:
    storage = MemoryStorage()
    provider = _StubProvider(user_id="remote-1")
    resolver = IdentityResolver(provider, storage)
    guest = resolver.guest_user_id()

    resolver.sign_out()

    assert provider.signed_out is True
    assert resolver.guest_user_id() == guest


def test_guest_user_id_falls_back_to_marker_on_storage_failure() -> None:
    storage = MagicMock()
    storage.get_item.return_value = None
    storage.set_item.side_effect = LocalStorageError("quota exceeded")

    resolver = IdentityResolver(_StubProvider(), storage)
    assert resolver.current_user_id() == GUEST_MARKER


def test_guest_user_id_falls_back_to_marker_on_corrupt_record() -> None:
    storage = MemoryStorage()
    storage.set_item(STORAGE_KEYS["guest_session"], "{broken")
    assert IdentityResolver(_StubProvider(), storage).guest_user_id() == GUEST_MARKER


def test_guest_record_without_user_id_is_replaced() -> None:
    storage = MemoryStorage()
    storage.set_item(STORAGE_KEYS["guest_session"], json.dumps({"display_name": "Guest"}))

    user_id = IdentityResolver(_StubProvider(), storage).guest_user_id()

    assert _GUEST_ID.match(user_id)


def test_provider_timeout_read_from_env_at_construction(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REMOTE_REQUEST_TIMEOUT_SECONDS", "4")
    provider = SupabaseIdentityProvider(_CONFIG)

    with patch("identity.requests.get", return_value=_mock_resp(payload={"id": "user-1"})) as mock_get:
        provider.current_user_id()

    assert mock_get.call_args.kwargs["timeout"] == 4.0
