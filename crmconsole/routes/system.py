# crmconsole/routes/system.py
"""
Console entry point and health endpoint.

/healthz never touches the backend and is reachable without a session, so it
reports counts and states only, never who is logged in.
"""

import time

from flask import Blueprint, current_app, jsonify, redirect, url_for

from ..extensions import api_base_url, get_registry, get_session
from ..services.session_service import SessionState


system_bp = Blueprint("system", __name__)

STARTED_AT = time.time()


@system_bp.get("/")
def root():
    return redirect(url_for("dashboard.index"))


@system_bp.get("/healthz")
def healthz():
    session = get_session()
    registry = get_registry()
    state = session.state if session is not None else SessionState.UNAUTHENTICATED
    return jsonify({
        "status": "healthy",
        "environment": current_app.config["CONSOLE_ENV"],
        "api_base_url": api_base_url(),
        "session": {
            "state": state.value,
            "active": registry.active_count,
            "teardowns": registry.teardown_count,
        },
        "uptime_seconds": round(time.time() - STARTED_AT, 1),
    }), 200
