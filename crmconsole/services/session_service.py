# Overview: Service-layer operations for the operator session; owns the login state machine.

"""
Operator Session Lifecycle

States:
- UNKNOWN          initial, before the cached identity has been checked
- AUTHENTICATED    identity known and the backend cookie accepted
- UNAUTHENTICATED  logged out, either explicitly or after a 401

PERSISTENCE: one durable key (identity.json) holds the serialized operator
identity and nothing secret. The backend's session cookie lives in the cookie
jar next to it and is only ever handled by the HTTP transport.

VISITORS: every browser visitor that logs in gets its own key, identity file
and cookie jar. A request without a known key has no session at all.

401 HANDLING: every APIClient is issued for a session epoch. The first 401
seen for the live epoch tears the session down and bumps the epoch; any other
in-flight request of the same epoch that also gets a 401 finds the epoch
already retired and does nothing. Clients of a retired epoch refuse to send
authenticated requests, so a stale identity is never reused.
"""

from __future__ import annotations

import json
import logging
import re
import secrets
import shutil
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

import httpx

from ..client import APIClient, APIError, PersistentCookieJar


logger = logging.getLogger(__name__)

IDENTITY_FILE = "identity.json"
COOKIE_FILE = "cookies.txt"
VISITOR_DIR = "visitors"

# Keys are issued by secrets.token_urlsafe and double as directory names
VISITOR_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]{16,64}$")

ROLES = ("admin", "manager", "staff")


class SessionState(Enum):
    UNKNOWN = "unknown"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


@dataclass(frozen=True)
class CurrentUser:
    id: int
    phone: str
    role: str
    created_at: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict) -> "CurrentUser":
        return cls(
            id=int(data["id"]),
            phone=str(data["phone"]),
            role=data.get("role") or "staff",
            created_at=data.get("createdAt"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "phone": self.phone,
            "role": self.role,
            "createdAt": self.created_at,
        }


class IdentityCache:
    """The single persisted key: current operator identity, or absent."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[CurrentUser]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return CurrentUser.from_api(data)
        except (ValueError, KeyError, TypeError, OSError):
            logger.warning("Failed to parse cached identity, discarding it")
            self.clear()
            return None

    def save(self, user: CurrentUser) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(user.to_dict()), encoding="utf-8")
        tmp.replace(self.path)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


class SessionManager:
    """
    One operator session: identity, backend cookie jar and epoch.

    Browser visitors each get their own through SessionRegistry; the CLI
    keeps one at the root of the state directory.
    """

    def __init__(
        self,
        state_dir: Path,
        *,
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        state_dir = Path(state_dir)
        self.cache = IdentityCache(state_dir / IDENTITY_FILE)
        self.cookies = PersistentCookieJar(state_dir / COOKIE_FILE)
        self.timeout = timeout
        self.transport = transport

        self._lock = threading.RLock()
        self._restore_lock = threading.Lock()
        self._state = SessionState.UNKNOWN
        self._restoring = False
        self._user: Optional[CurrentUser] = None
        self._epoch = 0
        self.teardown_count = 0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def state(self) -> SessionState:
        # Still UNKNOWN to everyone else while the startup probe is in flight.
        if self._restoring:
            return SessionState.UNKNOWN
        return self._state

    @property
    def user(self) -> Optional[CurrentUser]:
        return self._user

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def is_authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED

    def is_current(self, epoch: int) -> bool:
        with self._lock:
            return epoch == self._epoch and self._state is SessionState.AUTHENTICATED

    def client(self, base_url: str) -> APIClient:
        """API client bound to the session as it stands right now."""
        return APIClient(
            base_url,
            timeout=self.timeout,
            cookies=self.cookies,
            session=self,
            epoch=self._epoch,
            transport=self.transport,
        )

    def anonymous_client(self, base_url: str) -> APIClient:
        """Client for the credential exchange; never triggers teardown."""
        return APIClient(
            base_url,
            timeout=self.timeout,
            cookies=self.cookies,
            transport=self.transport,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def restore(self, probe: Callable[[APIClient], object], base_url: str) -> SessionState:
        """
        UNKNOWN -> AUTHENTICATED | UNAUTHENTICATED.

        With a cached identity, `probe` is called with a client for that
        identity; it succeeding restores the session and any error discards
        the cache. Without a cached identity no request is made.
        """
        cached = self.cache.load()
        if cached is None:
            with self._lock:
                self._user = None
                self._state = SessionState.UNAUTHENTICATED
            logger.info("No cached identity; starting logged out")
            return self._state

        with self._lock:
            # Provisionally live so the probe's client is allowed to send.
            self._restoring = True
            self._user = cached
            self._state = SessionState.AUTHENTICATED
            probe_client = self.client(base_url)

        try:
            probe(probe_client)
        except APIError as exc:
            with self._lock:
                if self._epoch == probe_client.epoch:
                    self._teardown(reason=f"session probe failed: {exc}")
            return self._state
        except Exception:
            logger.exception("Session probe raised unexpectedly")
            with self._lock:
                if self._epoch == probe_client.epoch:
                    self._teardown(reason="session probe errored")
            return self._state
        finally:
            self._restoring = False
            probe_client.close()

        logger.info("Restored session for %s", cached.phone)
        return self._state

    def try_restore(self, probe: Callable[[APIClient], object], base_url: str) -> bool:
        """
        Run restore() unless another thread already is.

        Returns False when restoration is in progress elsewhere; the caller
        should show the neutral placeholder rather than guess a state.
        """
        if not self._restore_lock.acquire(blocking=False):
            return False
        try:
            if self._state is SessionState.UNKNOWN:
                self.restore(probe, base_url)
            return True
        finally:
            self._restore_lock.release()

    def login(self, user: CurrentUser) -> None:
        """Persist the non-secret identity returned by the credential exchange."""
        with self._lock:
            self.cache.save(user)
            self._user = user
            self._state = SessionState.AUTHENTICATED
            self._epoch += 1
        logger.info("Operator %s logged in (%s)", user.phone, user.role)

    def logout(self) -> None:
        with self._lock:
            self._teardown(reason="explicit logout")

    def expire(self, epoch: int, *, reason: str = "") -> bool:
        """
        401 path. Idempotent: returns True only for the caller that actually
        tore the session down.
        """
        with self._lock:
            if epoch != self._epoch or self._state is not SessionState.AUTHENTICATED:
                return False
            logger.warning("Session expired: %s", reason or "authorization failure")
            self._teardown(reason=reason or "authorization failure")
            return True

    def _teardown(self, *, reason: str) -> None:
        self.cache.clear()
        self.cookies.wipe()
        was_authenticated = self._state is SessionState.AUTHENTICATED
        self._user = None
        self._state = SessionState.UNAUTHENTICATED
        self._epoch += 1
        if was_authenticated:
            self.teardown_count += 1
        logger.info("Session cleared (%s)", reason)


class SessionRegistry:
    """
    Operator sessions keyed by visitor.

    A key is issued at login and carried in the visitor's signed Flask
    session cookie. Each key owns a directory under <state_dir>/visitors/
    holding that visitor's identity and backend cookies, so one visitor's
    login never authorizes another. After a console restart a key is
    recognised again only while its identity file survives.
    """

    def __init__(
        self,
        state_dir: Path,
        *,
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.root = Path(state_dir) / VISITOR_DIR
        self.timeout = timeout
        self.transport = transport
        self._lock = threading.Lock()
        self._managers: dict[str, SessionManager] = {}
        self._retired_teardowns = 0

    def _manager(self, key: str) -> SessionManager:
        return SessionManager(self.root / key, timeout=self.timeout, transport=self.transport)

    @staticmethod
    def is_valid_key(key: Optional[str]) -> bool:
        return isinstance(key, str) and VISITOR_KEY_PATTERN.match(key) is not None

    def issue(self) -> tuple[str, SessionManager]:
        """Fresh key and an empty session for a login attempt."""
        key = secrets.token_urlsafe(24)
        manager = self._manager(key)
        with self._lock:
            self._managers[key] = manager
        return key, manager

    def get(self, key: Optional[str]) -> Optional[SessionManager]:
        """The session for `key`, or None when the key is missing or unknown."""
        if not self.is_valid_key(key):
            return None
        with self._lock:
            manager = self._managers.get(key)
            if manager is None and (self.root / key / IDENTITY_FILE).exists():
                # Left behind by a previous console run; restored on first use
                manager = self._managers[key] = self._manager(key)
            return manager

    def discard(self, key: Optional[str]) -> None:
        if not self.is_valid_key(key):
            return
        with self._lock:
            manager = self._managers.pop(key, None)
            if manager is not None:
                self._retired_teardowns += manager.teardown_count
        try:
            shutil.rmtree(self.root / key)
        except FileNotFoundError:
            pass
        logger.debug("Visitor session %s discarded", key[:6])

    @property
    def active_count(self) -> int:
        with self._lock:
            return sum(1 for m in self._managers.values() if m.is_authenticated)

    @property
    def teardown_count(self) -> int:
        with self._lock:
            return self._retired_teardowns + sum(m.teardown_count for m in self._managers.values())
