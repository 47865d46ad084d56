# Overview: Request decorators for console views; gates pages on the operator session.

from functools import wraps
from urllib.parse import urlsplit

from flask import g, make_response, redirect, render_template, request, url_for

from .extensions import get_api, get_session
from .services.session_service import SessionState


# Seconds between reloads of the placeholder while the session is being checked
RESTORE_REFRESH_SECONDS = 1


def no_store(response):
    response.headers["Cache-Control"] = "no-store"
    return response


def restoring_page():
    """
    Neutral blank page shown while the session state is still UNKNOWN.
    Never the login form, never protected content.
    """
    response = make_response(render_template("restoring.html", refresh=RESTORE_REFRESH_SECONDS))
    return no_store(response)


def safe_next(target: str | None) -> str | None:
    """Only same-origin paths are followed after login."""
    if not target:
        return None
    parts = urlsplit(target)
    if parts.scheme or parts.netloc or not target.startswith("/") or target.startswith("//"):
        return None
    return target


def login_redirect(next_path: str | None = None):
    """
    303 to the login view. no-store keeps the browser from replaying a
    protected page on back-navigation after logout.
    """
    next_path = safe_next(next_path)
    target = url_for("auth.login", next=next_path) if next_path else url_for("auth.login")
    return no_store(redirect(target, code=303))


def require_session(f):
    """
    Require an authenticated operator.

    Sets the following Flask g attributes:
    - g.current_user: the CurrentUser restored or logged in
    - g.api: APIClient bound to the live session epoch

    STATES (of the requesting visitor's own session):
    - AUTHENTICATED: the view runs
    - UNKNOWN: neutral placeholder that reloads itself
    - UNAUTHENTICATED, or no session for this visitor: redirect to login,
      remembering where the operator was
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        session = get_session()
        state = session.state if session is not None else SessionState.UNAUTHENTICATED

        if state is SessionState.UNKNOWN:
            return restoring_page()

        if state is not SessionState.AUTHENTICATED:
            return login_redirect(request.full_path.rstrip("?"))

        g.current_user = session.user
        g.api = get_api()

        response = make_response(f(*args, **kwargs))
        return no_store(response)

    return decorated_function
