"""PocketBase user authentication state used to gate sync."""

from __future__ import annotations

import base64
import json
import logging
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from .events import Signal, Unsubscribe

if TYPE_CHECKING:
    from .sync.remote import PocketBaseClient

logger = logging.getLogger("taskdown.auth")

ClientProvider = Callable[[], Optional["PocketBaseClient"]]


@dataclass(frozen=True)
class AuthStatus:
    """Snapshot of the authentication state."""

    is_authenticated: bool = False
    user: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def email(self) -> str:
        return str((self.user or {}).get("email", ""))


class AuthService:
    """Holds the auth token and persists it between runs."""

    def __init__(self, token_path: Path, client_provider: ClientProvider):
        self.token_path = token_path
        self._client_provider = client_provider
        self._token: Optional[str] = None
        self._status = AuthStatus()
        self.changed: Signal[AuthStatus] = Signal("auth_changed")

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def is_authenticated(self) -> bool:
        return self._status.is_authenticated and _token_valid(self._token)

    def get_status(self) -> AuthStatus:
        return self._status

    def on_auth_change(self, callback: Callable[[AuthStatus], None]) -> Unsubscribe:
        return self.changed.subscribe(callback)

    def load(self) -> None:
        """Restore a previously saved session if its token is still valid."""
        if not self.token_path.exists():
            return
        try:
            data = json.loads(self.token_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable auth file %s: %s", self.token_path, exc)
            return
        token = data.get("token")
        if not _token_valid(token):
            logger.info("Stored auth token expired; login required.")
            return
        self._token = token
        self._update(is_authenticated=True, user=data.get("user"), error=None)

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        client = self._require_client()
        from .sync.remote import RemoteError

        try:
            data = await client.auth_with_password(email, password)
        except RemoteError as exc:
            self._update(error=str(exc))
            raise
        self._token = data.get("token")
        user = data.get("record") or {}
        self._save(user)
        self._update(is_authenticated=True, user=user, error=None)
        logger.info("Logged in as %s", user.get("email", email))
        return user

    async def logout(self) -> None:
        self._token = None
        try:
            self.token_path.unlink()
        except FileNotFoundError:
            pass
        self._update(is_authenticated=False, user=None, error=None)
        logger.info("Logged out")

    async def refresh(self) -> bool:
        """Renew the token; a rejected refresh logs the user out."""
        client = self._client_provider()
        if client is None or not self._token:
            return False
        from .sync.remote import RemoteAuthError, RemoteError

        try:
            data = await client.auth_refresh(self._token)
        except RemoteAuthError as exc:
            logger.warning("Auth refresh rejected: %s", exc)
            await self.logout()
            return False
        except RemoteError as exc:
            logger.warning("Auth refresh failed: %s", exc)
            self._update(error=str(exc))
            return False
        self._token = data.get("token", self._token)
        user = data.get("record") or self._status.user or {}
        self._save(user)
        self._update(is_authenticated=True, user=user, error=None)
        return True

    def _require_client(self) -> "PocketBaseClient":
        client = self._client_provider()
        if client is None:
            raise RuntimeError("Sync backend not configured. Enable sync and set sync.server_url first.")
        return client

    def _save(self, user: Dict[str, Any]) -> None:
        self.token_path.parent.mkdir(parents=True, exist_ok=True)
        self.token_path.write_text(
            json.dumps({"token": self._token, "user": user}, indent=2),
            encoding="utf-8",
        )
        try:
            self.token_path.chmod(0o600)
        except OSError:
            logger.debug("Could not restrict permissions on %s", self.token_path)

    def _update(self, **changes: Any) -> None:
        self._status = replace(self._status, **changes)
        self.changed.publish(self._status)


def _token_valid(token: Optional[str]) -> bool:
    """True when the JWT is present and its ``exp`` claim (if any) is in the future."""
    if not token:
        return False
    parts = token.split(".")
    if len(parts) != 3:
        # Opaque token; let the server decide.
        return True
    try:
        padded = parts[1] + "=" * (-len(parts[1]) % 4)
        claims = json.loads(base64.urlsafe_b64decode(padded))
    except (ValueError, json.JSONDecodeError):
        return False
    exp = claims.get("exp")
    return exp is None or float(exp) > time.time()


__all__ = ["AuthService", "AuthStatus"]
