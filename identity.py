"""Identity resolution: hosted-backend principal when available, persistent guest otherwise."""

from __future__ import annotations

import json
import logging
import random
import time
from typing import Callable, Protocol

import requests

from config import SupabaseConfig, remote_request_timeout_seconds
from local_store import STORAGE_KEYS, KeyValueStorage, LocalStorageError
from models import GuestSession, utc_now_iso

GUEST_MARKER = "guest"

LOGGER = logging.getLogger(__name__)

AuthListener = Callable[[str, str | None], None]


class IdentityProviderError(RuntimeError):
    """Raised when the identity provider cannot answer (transport or server failure)."""


class IdentityProvider(Protocol):
    def current_user_id(self) -> str | None: ...

    def sign_out(self) -> None: ...


class SupabaseIdentityProvider:
    """Resolves the signed-in principal from a Supabase access token.

    The token itself is obtained elsewhere; this class only asks the backend
    who it belongs to. Subscribers are told about token changes with
    ("SIGNED_IN" | "SIGNED_OUT", token).
    """

    def __init__(self, config: SupabaseConfig, timeout: float | None = None) -> None:
        self.config = config
        self.timeout = timeout if timeout is not None else remote_request_timeout_seconds()
        self._access_token = config.access_token
        self._listeners: list[AuthListener] = []

    @property
    def access_token(self) -> str | None:
        return self._access_token

    def current_user_id(self) -> str | None:
        if not self.config.is_configured or not self._access_token:
            return None

        try:
            response = requests.get(
                f"{self.config.base_url}/auth/v1/user",
                headers=self.config.headers(self._access_token),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise IdentityProviderError(f"Identity provider request failed: {exc}") from exc

        if response.status_code in (401, 403):
            return None
        if response.status_code >= 400:
            raise IdentityProviderError(
                f"Identity provider returned HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise IdentityProviderError("Identity provider returned non-JSON body") from exc

        user_id = body.get("id") if isinstance(body, dict) else None
        return user_id if isinstance(user_id, str) and user_id else None

    def set_access_token(self, token: str | None) -> None:
        self._access_token = token or None
        self._notify("SIGNED_IN" if self._access_token else "SIGNED_OUT")

    def sign_out(self) -> None:
        self.set_access_token(None)

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """Register for auth-state changes; returns the unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: str) -> None:
        for listener in list(self._listeners):
            listener(event, self._access_token)


def generate_guest_id() -> str:
    return f"guest_{int(time.time() * 1000)}_{random.randint(0, 9999)}"


class IdentityResolver:
    """Total identity lookup: never raises, always yields some user id."""

    def __init__(self, provider: IdentityProvider, storage: KeyValueStorage) -> None:
        self.provider = provider
        self.storage = storage

    def remote_user_id(self) -> str | None:
        """Authenticated principal, or None when absent or when the provider fails."""
        try:
            return self.provider.current_user_id()
        except Exception as exc:
            LOGGER.warning("Identity provider unavailable, treating as signed out: %s", exc)
            return None

    def guest_session(self) -> GuestSession:
        """Return the persisted guest session, creating and persisting one if absent."""
        raw = self.storage.get_item(STORAGE_KEYS["guest_session"])
        if raw:
            data = json.loads(raw)
            existing = GuestSession.from_dict(data) if isinstance(data, dict) else None
            if existing is not None:
                return existing

        session = GuestSession(user_id=generate_guest_id(), created_at=utc_now_iso())
        self.storage.set_item(STORAGE_KEYS["guest_session"], json.dumps(session.to_dict()))
        LOGGER.info("Created guest session user_id=%s", session.user_id)
        return session

    def guest_user_id(self) -> str:
        try:
            return self.guest_session().user_id
        except (LocalStorageError, ValueError) as exc:
            LOGGER.warning("Guest session unavailable, using shared guest marker: %s", exc)
            return GUEST_MARKER

    def current_user_id(self) -> str:
        return self.remote_user_id() or self.guest_user_id()

    def sign_out(self) -> None:
        """Sign out of the hosted backend, or forget the guest session in local mode."""
        if self.remote_user_id():
            self.provider.sign_out()
            LOGGER.info("Signed out of hosted backend")
            return
        self.storage.remove_item(STORAGE_KEYS["guest_session"])
        LOGGER.info("Cleared guest session")
