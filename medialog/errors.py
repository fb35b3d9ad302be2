"""Error taxonomy shared by the sync engine.

Every failure that crosses a module boundary is one of the ``SyncError``
subclasses below, so callers can decide between "retry later", "ask the user
to sign in again" and "show the server's message" without inspecting httpx
internals.

    NetworkError        — transport failure or timeout (transient)
    AuthorizationError  — 401 after the single refresh-and-retry, or no credential
    ValidationError     — any other 4xx; the server's message is kept verbatim
    NotFoundError       — 404, typically an entry deleted on another device
    ServerError         — 5xx or a success response with a malformed body
"""

from __future__ import annotations

import logging

import httpx

logger = logging.getLogger("medialog.errors")


class SyncError(Exception):
    """Base class for all sync engine errors.

    Attributes:
        detail:      Human-readable message (the server's ``error`` field when present).
        status_code: HTTP status of the failing response, if there was one.
    """

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


class NetworkError(SyncError):
    """The request never produced an HTTP response."""


class AuthorizationError(SyncError):
    """The caller must authenticate again."""


class ValidationError(SyncError):
    """The request was rejected as malformed; retrying will not help."""


class NotFoundError(SyncError):
    """The target no longer exists remotely."""


class ServerError(SyncError):
    """The server failed or answered with something we cannot use."""


def _response_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        detail = body.get("error") or body.get("detail") or body.get("message")
        if detail:
            return str(detail)
    return response.reason_phrase


def error_for_response(response: httpx.Response) -> SyncError:
    """Map a non-2xx response to the matching ``SyncError`` subclass.

    Args:
        response: The failing httpx response.

    Returns:
        An (unraised) SyncError carrying the status code and server message.
    """
    status = response.status_code
    detail = _response_detail(response)
    if status == 401:
        return AuthorizationError(detail, status)
    if status == 404:
        return NotFoundError(detail, status)
    if 400 <= status < 500:
        return ValidationError(detail, status)
    return ServerError(detail, status)


def raise_for_response(response: httpx.Response) -> None:
    """Raise the mapped ``SyncError`` if *response* is not a success."""
    if response.is_success:
        return
    error = error_for_response(response)
    logger.debug(
        "%s %s failed: %d %s",
        response.request.method,
        response.request.url.path,
        response.status_code,
        error.detail,
    )
    raise error


def response_object(response: httpx.Response) -> dict:
    """Return the JSON object body of a success response.

    Raises:
        ServerError: The body is not JSON, or not a JSON object.
    """
    request = response.request
    try:
        data = response.json()
    except ValueError as exc:
        raise ServerError(
            f"{request.method} {request.url.path} returned a non-JSON body", response.status_code
        ) from exc
    if not isinstance(data, dict):
        raise ServerError(
            f"{request.method} {request.url.path} returned {type(data).__name__}, expected an object",
            response.status_code,
        )
    return data
