"""Access/refresh credential handling with transparent renewal.

State machine::

    ABSENT ──authenticate──▶ VALID ──clock passes expiry──▶ EXPIRED
                               ▲                               │ request needs a token
                               │ refresh ok                    ▼
                               └────────────────────────── REFRESHING
                                                               │ refresh rejected (400/401)
                                                               ▼
                                                            FAILED  (credentials purged)

``authorized_fetch`` is the only way requests to the entries API are sent.
Per original call it performs at most one refresh and at most one re-issue
of the request, so a permanently invalid refresh token cannot loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable

import httpx
import jwt

from medialog.errors import (
    AuthorizationError,
    NetworkError,
    ServerError,
    raise_for_response,
    response_object,
)
from medialog.models.base import utc_now
from medialog.storage.backends import StorageBackend
from medialog.sync.config_loader import CredentialConfig, get_sync_config

logger = logging.getLogger("medialog.auth")

CREDENTIALS_KEY = "media-logbook-credentials"


class CredentialState(str, Enum):
    ABSENT = "absent"
    VALID = "valid"
    EXPIRED = "expired"
    REFRESHING = "refreshing"
    FAILED = "failed"


@dataclass
class Credential:
    """Token pair returned by login (refresh keeps the refresh token).

    Attributes:
        access_token:  Bearer token for API calls.
        expires_at:    UTC datetime when the access_token expires.
        refresh_token: Long-lived token used to obtain a new access_token.
        user_id:       Owner id taken from the access token claims.
    """

    access_token: str
    expires_at: datetime | None = None
    refresh_token: str | None = None
    user_id: str | None = None

    def is_expired(self, now: datetime, buffer_seconds: int = 0) -> bool:
        if self.expires_at is None:
            return False
        return now >= self.expires_at - timedelta(seconds=buffer_seconds)

    def to_json(self) -> str:
        data = asdict(self)
        data["expires_at"] = self.expires_at.isoformat() if self.expires_at else None
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str) -> "Credential":
        data = json.loads(raw)
        expires_at = data.get("expires_at")
        return cls(
            access_token=data["access_token"],
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
            refresh_token=data.get("refresh_token"),
            user_id=data.get("user_id"),
        )


def _token_claims(token: str) -> dict:
    """Read a JWT's claims without verifying it; the server does the verifying."""
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return {}


class CredentialManager:
    """Holds the current credential and renews it when needed.

    Usage::

        manager = CredentialManager(http_client, backend)
        await manager.authenticate("jeff", "hunter2")
        response = await manager.authorized_fetch(
            http_client.build_request("GET", "/entries", params={"list": "backlog"})
        )
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        backend: StorageBackend,
        config: CredentialConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
        on_reauth_required: Callable[[], None] | None = None,
    ) -> None:
        """Initialize the manager and restore any persisted credential.

        Args:
            http_client:        Client whose base_url points at the API root.
            backend:            Where the credential blob is persisted.
            config:             Expiry settings (defaults to sync_config.yaml).
            clock:              Returns the current aware UTC time.
            on_reauth_required: Called when the user must sign in again.
        """
        self._client = http_client
        self._backend = backend
        self._config = config or get_sync_config().credentials
        self._clock = clock
        self._on_reauth_required = on_reauth_required
        self._refresh_lock = asyncio.Lock()
        self._refreshing = False
        self._failed = False
        self._credential = self._load()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> CredentialState:
        if self._refreshing:
            return CredentialState.REFRESHING
        if self._failed:
            return CredentialState.FAILED
        if self._credential is None:
            return CredentialState.ABSENT
        if self._credential.is_expired(self._clock(), self._config.expiry_buffer_seconds):
            return CredentialState.EXPIRED
        return CredentialState.VALID

    @property
    def credential(self) -> Credential | None:
        return self._credential

    @property
    def user_id(self) -> str | None:
        return self._credential.user_id if self._credential else None

    @property
    def is_authenticated(self) -> bool:
        return self._credential is not None

    def _load(self) -> Credential | None:
        raw = self._backend.get(CREDENTIALS_KEY)
        if not raw:
            return None
        try:
            return Credential.from_json(raw)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Discarding unreadable stored credential: %s", exc)
            self._backend.delete(CREDENTIALS_KEY)
            return None

    def store(self, credential: Credential) -> None:
        """Persist *credential* as the current one (Absent/Failed → Valid)."""
        self._credential = credential
        self._failed = False
        self._backend.set(CREDENTIALS_KEY, credential.to_json())

    def purge(self) -> None:
        """Forget every stored credential."""
        self._credential = None
        self._backend.delete(CREDENTIALS_KEY)

    def _build_credential(
        self, access_token: str, refresh_token: str | None, expires_in: object = None
    ) -> Credential:
        now = self._clock()
        claims = _token_claims(access_token)
        try:
            if expires_in is not None:
                expires_at = now + timedelta(seconds=int(expires_in))
            elif "exp" in claims:
                expires_at = datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc)
            else:
                expires_at = now + timedelta(seconds=self._config.default_access_ttl_seconds)
        except (TypeError, ValueError, OverflowError) as exc:
            raise ServerError(f"Token response has an unusable expiry: {exc}") from exc
        user_id = claims.get("userId") or claims.get("sub")
        return Credential(
            access_token=access_token,
            expires_at=expires_at,
            refresh_token=refresh_token,
            user_id=str(user_id) if user_id else None,
        )

    def _fail(self, reason: str) -> AuthorizationError:
        """Enter FAILED: purge credentials and ask for a fresh sign-in."""
        logger.warning("Credential failed (%s); re-authentication required", reason)
        self.purge()
        self._failed = True
        self._notify_reauth()
        return AuthorizationError(reason, 401)

    def _notify_reauth(self) -> None:
        if self._on_reauth_required is None:
            return
        try:
            self._on_reauth_required()
        except Exception:
            logger.exception("on_reauth_required callback failed")

    # ------------------------------------------------------------------
    # Primary authentication
    # ------------------------------------------------------------------

    async def authenticate(self, username: str, password: str) -> Credential:
        """Sign in with username/password.

        Args:
            username: Account name.
            password: Account password.

        Returns:
            The new, persisted Credential.

        Raises:
            AuthorizationError: Bad username or password.
            NetworkError:       The server could not be reached.
        """
        logger.info("Authenticating %s", username)
        try:
            response = await self._client.post(
                "/auth/login", json={"username": username, "password": password}
            )
        except httpx.TransportError as exc:
            raise NetworkError(f"Login request failed: {exc}") from exc
        raise_for_response(response)

        data = response_object(response)
        access_token = data.get("access_token")
        if not access_token:
            raise ServerError("Login response did not include an access token")
        credential = self._build_credential(
            access_token, data.get("refresh_token"), data.get("expires_in")
        )
        self.store(credential)
        return credential

    async def sign_out(self, revoke_all: bool = False) -> None:
        """Revoke refresh tokens server-side (best effort) and purge locally.

        Args:
            revoke_all: Also sign out every other device of this account.
        """
        credential = self._credential
        if credential is not None:
            try:
                response = await self._client.post(
                    "/auth/signout",
                    json={"revokeAll": revoke_all},
                    headers={"Authorization": f"Bearer {credential.access_token}"},
                )
                if not response.is_success:
                    logger.warning("Server sign-out returned %d", response.status_code)
            except httpx.TransportError as exc:
                logger.warning("Server sign-out failed, clearing locally anyway: %s", exc)
        self.purge()
        self._failed = False
        logger.info("Signed out")

    # ------------------------------------------------------------------
    # Renewal
    # ------------------------------------------------------------------

    async def refresh(self, stale_token: str | None = None) -> Credential:
        """Exchange the refresh token for a new access token.

        Concurrent callers share one refresh: a caller whose *stale_token* has
        already been replaced gets the new credential without another call.

        Args:
            stale_token: The access token the caller saw rejected or expired.

        Returns:
            The renewed Credential.

        Raises:
            AuthorizationError: No refresh token, or the server rejected it (FAILED).
            NetworkError:       Transport failure; the credential is kept (EXPIRED).
        """
        async with self._refresh_lock:
            current = self._credential
            if current is None or not current.refresh_token:
                raise self._fail("no refresh token available")
            if stale_token is not None and current.access_token != stale_token:
                return current

            self._refreshing = True
            try:
                response = await self._client.post(
                    "/auth/refresh", json={"refresh_token": current.refresh_token}
                )
            except httpx.TransportError as exc:
                raise NetworkError(f"Token refresh failed: {exc}") from exc
            finally:
                self._refreshing = False

            if response.status_code in (400, 401):
                raise self._fail("refresh token rejected")
            raise_for_response(response)

            data = response_object(response)
            access_token = data.get("access_token")
            if not access_token:
                raise ServerError("Refresh response did not include an access token")
            renewed = self._build_credential(
                access_token,
                data.get("refresh_token") or current.refresh_token,
                data.get("expires_in"),
            )
            self.store(renewed)
            logger.info("Access token refreshed (expires %s)", renewed.expires_at)
            return renewed

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _send(self, request: httpx.Request, access_token: str) -> httpx.Response:
        request.headers["Authorization"] = f"Bearer {access_token}"
        try:
            return await self._client.send(request)
        except httpx.TransportError as exc:
            raise NetworkError(
                f"{request.method} {request.url.path} failed: {exc}"
            ) from exc

    async def authorized_fetch(self, request: httpx.Request) -> httpx.Response:
        """Send *request* with the current access token.

        On a 401 the token is refreshed once and the request re-issued once.
        Any response other than 401 is returned as-is for the caller to map.

        Raises:
            AuthorizationError: Not signed in, refresh rejected, or still 401 after retry.
            NetworkError:       Transport failure.
        """
        credential = self._credential
        if credential is None:
            self._notify_reauth()
            raise AuthorizationError("Not signed in", 401)

        refreshed = False
        if (
            credential.is_expired(self._clock(), self._config.expiry_buffer_seconds)
            and credential.refresh_token
        ):
            credential = await self.refresh(stale_token=credential.access_token)
            refreshed = True

        response = await self._send(request, credential.access_token)
        if response.status_code != 401:
            return response

        if refreshed or not credential.refresh_token:
            raise self._fail("access token rejected")

        logger.info("%s %s returned 401, refreshing once", request.method, request.url.path)
        credential = await self.refresh(stale_token=credential.access_token)
        retry = self._client.build_request(
            request.method, request.url, headers=request.headers, content=request.content
        )
        response = await self._send(retry, credential.access_token)
        if response.status_code == 401:
            raise self._fail("access token rejected after refresh")
        return response
