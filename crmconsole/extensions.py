# Overview: Per-app extension instances: visitor sessions, dashboards and request-bound API clients.

from __future__ import annotations

import threading
from pathlib import Path
from typing import Optional

from flask import Flask, current_app, g, has_request_context, request
from flask import session as visitor_cookie

from .client import APIClient
from .config import resolve_api_base_url
from .services.dashboard_service import DashboardService
from .services.session_service import SessionManager, SessionRegistry


# Name of the visitor key inside Flask's signed session cookie
VISITOR_KEY = "crm_visitor"


class DashboardRegistry:
    """Dashboard range and snapshot, one per visitor key."""

    def __init__(self):
        self._lock = threading.Lock()
        self._services: dict[str, DashboardService] = {}

    def for_key(self, key: str) -> DashboardService:
        with self._lock:
            service = self._services.get(key)
            if service is None:
                service = self._services[key] = DashboardService()
            return service

    def discard(self, key: Optional[str]) -> None:
        with self._lock:
            self._services.pop(key, None)


def init_sessions(app: Flask) -> SessionRegistry:
    state_dir = Path(app.config.get("CRM_STATE_DIR") or app.instance_path)
    options = {
        "timeout": app.config["CRM_REQUEST_TIMEOUT"],
        "transport": app.config.get("CRM_HTTP_TRANSPORT"),
    }
    registry = SessionRegistry(state_dir, **options)
    app.extensions["crm_sessions"] = registry
    app.extensions["crm_dashboards"] = DashboardRegistry()
    # The CLI runs as the local operator, apart from any browser visitor
    app.extensions["crm_cli_session"] = SessionManager(state_dir, **options)
    return registry


def get_registry() -> SessionRegistry:
    return current_app.extensions["crm_sessions"]


def get_cli_session() -> SessionManager:
    return current_app.extensions["crm_cli_session"]


def visitor_key() -> Optional[str]:
    return visitor_cookie.get(VISITOR_KEY)


def get_session() -> Optional[SessionManager]:
    """
    The requesting visitor's own operator session, or None when the request
    carries no key or a key this console does not know.
    """
    if "crm_visitor" not in g:
        g.crm_visitor = get_registry().get(visitor_key())
    return g.crm_visitor


def get_dashboard() -> Optional[DashboardService]:
    if get_session() is None:
        return None
    return current_app.extensions["crm_dashboards"].for_key(visitor_key())


def begin_visitor(key: str, manager: SessionManager) -> None:
    """Bind a freshly logged-in session to this visitor, replacing any old one."""
    previous = visitor_key()
    if previous and previous != key:
        end_visitor()
    visitor_cookie[VISITOR_KEY] = key
    g.crm_visitor = manager


def end_visitor() -> None:
    """Forget the visitor's key and drop everything held for it."""
    key = visitor_cookie.pop(VISITOR_KEY, None)
    g.crm_visitor = None
    if key:
        current_app.extensions["crm_dashboards"].discard(key)
        get_registry().discard(key)


def api_base_url() -> str:
    host_url = request.host_url if has_request_context() else None
    return resolve_api_base_url(current_app.config, host_url)


def get_api() -> APIClient:
    """
    API client for the current request, bound to the visitor's live session
    epoch. Closed at teardown of the app context.
    """
    if "crm_api" not in g:
        g.crm_api = get_session().client(api_base_url())
    return g.crm_api


def close_api(exc=None) -> None:
    client = g.pop("crm_api", None)
    if client is not None:
        client.close()
