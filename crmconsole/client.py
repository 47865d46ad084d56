# crmconsole/client.py
"""
HTTP client for the CRM backend REST API.

Every outbound call goes through APIClient._request, which is the single place
where responses are classified into the console's error taxonomy:

- no response at all          -> TransportFailure
- 401 on an authenticated call -> session teardown hook, then SessionExpired
- 401 on login/register        -> InvalidCredentials (no teardown)
- 400 / 404 / 409              -> BadRequest / NotFound / Conflict
- anything else >= 400         -> ServerError

CREDENTIALS: the backend issues an HttpOnly session cookie on login. The
client only carries that cookie in its jar; it never reads a token out of a
response body and never sets an Authorization header.
"""

from __future__ import annotations

import logging
import threading
from http.cookiejar import LoadError, MozillaCookieJar
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

import httpx


logger = logging.getLogger(__name__)

GENERIC_FAILURE = "Please try again later."
TRANSPORT_FAILURE = "Could not reach the server, please try again."


# =============================================================================
# ERRORS
# =============================================================================

class APIError(Exception):
    """Base class for every failure reported by the API client."""

    status_code: Optional[int] = None

    def __init__(self, message: Optional[str] = None, *, status_code: Optional[int] = None,
                 server_message: Optional[str] = None):
        self.server_message = server_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message or server_message or GENERIC_FAILURE)

    @property
    def user_message(self) -> str:
        """Server-provided text when present, else the fallback string."""
        return self.server_message or GENERIC_FAILURE


class TransportFailure(APIError):
    """No response was received (DNS, refused connection, timeout)."""

    @property
    def user_message(self) -> str:
        return TRANSPORT_FAILURE


class SessionExpired(APIError):
    """401 on an authenticated request; the session has been torn down."""
    status_code = 401


class InvalidCredentials(APIError):
    """401 from the credential exchange itself."""
    status_code = 401

    @property
    def user_message(self) -> str:
        return self.server_message or "Invalid phone number or password."


class BadRequest(APIError):
    status_code = 400


class NotFound(APIError):
    status_code = 404


class Conflict(APIError):
    status_code = 409


class ServerError(APIError):
    """Unclassified failure status."""


_STATUS_ERRORS = {
    400: BadRequest,
    404: NotFound,
    409: Conflict,
}


def _server_message(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        if isinstance(message, str) and message.strip():
            return message.strip()
    return None


def unwrap(response: httpx.Response) -> Any:
    """Every list/detail response is wrapped as {"data": T}."""
    if response.status_code == 204 or not response.content:
        return None
    body = response.json()
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


# =============================================================================
# COOKIE PERSISTENCE
# =============================================================================

class PersistentCookieJar(MozillaCookieJar):
    """
    Cookie jar mirrored to disk so the backend session cookie outlives a
    console restart, the way a browser keeps it.
    """

    def __init__(self, path: Optional[Path] = None):
        super().__init__(str(path) if path else None)
        self._save_lock = threading.Lock()
        if path and Path(path).exists():
            try:
                self.load(ignore_discard=True, ignore_expires=False)
            except (LoadError, OSError):
                logger.warning("Discarding unreadable cookie file %s", path)
                self.clear()

    def persist(self) -> None:
        if not self.filename:
            return
        with self._save_lock:
            Path(self.filename).parent.mkdir(parents=True, exist_ok=True)
            self.save(ignore_discard=True, ignore_expires=False)

    def wipe(self) -> None:
        self.clear()
        self.persist()


# =============================================================================
# CLIENT
# =============================================================================

class SessionBinding(Protocol):
    """What the client needs from the session that issued it."""

    def is_current(self, epoch: int) -> bool: ...

    def expire(self, epoch: int, *, reason: str = "") -> bool: ...


class APIClient:
    """
    HTTP client wrapper bound to one session epoch.

    Once the session that issued this client has been torn down (logout or a
    401 seen by any client of the same epoch) the client refuses to send
    further authenticated requests.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 15.0,
        cookies: Optional[PersistentCookieJar] = None,
        session: Optional[SessionBinding] = None,
        epoch: int = 0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.cookies = cookies if cookies is not None else PersistentCookieJar()
        self.session = session
        self.epoch = epoch
        self.client = httpx.Client(
            timeout=timeout,
            cookies=self.cookies,
            transport=transport,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
        )

    def __enter__(self) -> "APIClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def is_live(self) -> bool:
        return self.session is None or self.session.is_current(self.epoch)

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict] = None,
        json: Optional[Dict] = None,
        authenticated: bool = True,
    ) -> httpx.Response:
        if authenticated and not self.is_live:
            raise SessionExpired("Session has ended")

        if params:
            params = {k: v for k, v in params.items() if v is not None and v != ""}

        try:
            response = self.client.request(
                method,
                f"{self.base_url}{path}",
                params=params or None,
                json=json,
            )
        except httpx.TransportError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise TransportFailure(str(exc)) from exc

        self.cookies.persist()

        if response.is_success:
            return response

        message = _server_message(response)
        status = response.status_code

        if status == 401:
            if not authenticated:
                raise InvalidCredentials(server_message=message)
            if self.session is not None:
                self.session.expire(self.epoch, reason=f"{method} {path} returned 401")
            raise SessionExpired("Authorization failed", server_message=message)

        error_cls = _STATUS_ERRORS.get(status, ServerError)
        raise error_cls(status_code=status, server_message=message)

    def get(self, path: str, params: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self._request("GET", path, params=params, **kwargs)

    def post(self, path: str, json: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self._request("POST", path, json=json, **kwargs)

    def put(self, path: str, json: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self._request("PUT", path, json=json, **kwargs)

    def delete(self, path: str, **kwargs) -> httpx.Response:
        return self._request("DELETE", path, **kwargs)

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()
