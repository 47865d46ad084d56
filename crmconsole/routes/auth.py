# Overview: Console routes for login, logout and registration; drives the session state machine.

"""
Authentication views

SECURITY:
- every login runs on a freshly issued visitor key with an empty cookie jar;
  a wrong password discards it and never disturbs an existing session
- the key is only bound to the visitor's signed cookie after the backend
  accepted the credentials
- only the identity returned by the backend is persisted; the backend's
  HttpOnly cookie stays in the cookie jar
- `next` is only honored for same-origin paths
"""

from flask import Blueprint, flash, make_response, redirect, render_template, request, url_for

from ..decorators import login_redirect, no_store, restoring_page, safe_next
from ..extensions import api_base_url, begin_visitor, end_visitor, get_registry, get_session
from ..services import auth_service
from ..services.auth_service import AuthError
from ..services.session_service import ROLES, SessionState
from ..validation import ValidationError


auth_bp = Blueprint("auth", __name__)


def _landing(next_path=None):
    return no_store(redirect(safe_next(next_path) or url_for("dashboard.index"), code=303))


def _pending_or_landing(session, next_path=None):
    """Placeholder or redirect for a visitor whose session is not logged out."""
    if session is None:
        return None
    if session.state is SessionState.UNKNOWN:
        return restoring_page()
    if session.is_authenticated:
        return _landing(next_path)
    return None


@auth_bp.route("/login", methods=["GET", "POST"])
def login():
    next_path = request.values.get("next")
    early = _pending_or_landing(get_session(), next_path)
    if early is not None:
        return early

    if request.method == "GET":
        return no_store(make_response(render_template("login.html", next=next_path, form={})))

    form = {"phone": request.form.get("phone", "")}
    registry = get_registry()
    key, candidate = registry.issue()
    try:
        with candidate.anonymous_client(api_base_url()) as api:
            user = auth_service.login(api, request.form.get("phone"), request.form.get("password"))
    except (ValidationError, AuthError) as exc:
        registry.discard(key)
        body = render_template("login.html", next=next_path, form=form, error=str(exc))
        return no_store(make_response(body, 400))

    candidate.login(user)
    begin_visitor(key, candidate)
    flash(f"Welcome back, {user.phone}", "success")
    return _landing(next_path)


@auth_bp.route("/register", methods=["GET", "POST"])
def register():
    early = _pending_or_landing(get_session())
    if early is not None:
        return early

    if request.method == "GET":
        return render_template("register.html", form={}, roles=ROLES)

    form = {
        "phone": request.form.get("phone", ""),
        "role": request.form.get("role", ""),
    }
    registry = get_registry()
    key, candidate = registry.issue()
    try:
        with candidate.anonymous_client(api_base_url()) as api:
            user = auth_service.register(
                api,
                request.form.get("phone"),
                request.form.get("password"),
                confirm=request.form.get("confirm"),
                role=request.form.get("role") or None,
            )
    except (ValidationError, AuthError) as exc:
        registry.discard(key)
        return render_template("register.html", form=form, roles=ROLES, error=str(exc)), 400

    candidate.login(user)
    begin_visitor(key, candidate)
    flash("Account created", "success")
    return _landing()


@auth_bp.post("/logout")
def logout():
    """
    Best-effort backend logout, then local teardown. The local teardown
    always happens, even when the backend cannot be reached.
    """
    session = get_session()
    if session is not None:
        if session.is_authenticated:
            with session.anonymous_client(api_base_url()) as api:
                auth_service.logout(api)
        session.logout()
    end_visitor()
    flash("You have been logged out", "info")
    return login_redirect()
