# Overview: Service-layer operations for auth; credential exchange and session verification calls.

"""
Credential exchange against the backend auth endpoints.

SECURITY:
- login/register go out with authenticated=False, so a 401 means bad
  credentials and never tears down an existing session
- the response may carry a token and expiry next to the user; the console
  keeps neither. The backend's HttpOnly cookie is the credential and only the
  non-secret identity is persisted.
"""

from __future__ import annotations

import logging

from crmconsole.client import APIClient, APIError, InvalidCredentials, unwrap
from crmconsole.services.session_service import ROLES, CurrentUser
from crmconsole.validation import ValidationError


logger = logging.getLogger(__name__)

PASSWORD_MIN_LENGTH = 6


class AuthError(Exception):
    """Raised when the credential exchange fails for a reason the operator can act on."""


def _credentials(phone: str | None, password: str | None) -> dict:
    phone = (phone or "").strip()
    if not phone:
        raise ValidationError("Phone is required", "phone")
    if not password:
        raise ValidationError("Password is required", "password")
    return {"phone": phone, "password": password}


def _user_from(data) -> CurrentUser:
    # {user, token?, expiresAt} or the bare user
    if isinstance(data, dict) and isinstance(data.get("user"), dict):
        data = data["user"]
    try:
        return CurrentUser.from_api(data)
    except (KeyError, TypeError, ValueError) as exc:
        raise AuthError("Unexpected response from the server.") from exc


def login(api: APIClient, phone: str | None, password: str | None) -> CurrentUser:
    payload = _credentials(phone, password)
    try:
        data = unwrap(api.post("/api/auth/login", json=payload, authenticated=False))
    except InvalidCredentials as exc:
        raise AuthError(exc.user_message) from exc
    except APIError as exc:
        raise AuthError(exc.user_message) from exc
    return _user_from(data)


def register(
    api: APIClient,
    phone: str | None,
    password: str | None,
    *,
    confirm: str | None = None,
    role: str | None = None,
) -> CurrentUser:
    payload = _credentials(phone, password)
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters", "password")
    if confirm is not None and confirm != password:
        raise ValidationError("Passwords do not match", "confirm")
    if role:
        if role not in ROLES:
            raise ValidationError(f"Role must be one of: {', '.join(ROLES)}", "role")
        payload["role"] = role
    try:
        data = unwrap(api.post("/api/auth/register", json=payload, authenticated=False))
    except APIError as exc:
        raise AuthError(exc.user_message) from exc
    return _user_from(data)


def make_probe(path: str):
    """Startup probe: any successful response means the cookie is still good."""
    def probe(api: APIClient):
        return api.get(path)
    return probe


def logout(api: APIClient) -> None:
    """Best effort. Local teardown happens regardless of the outcome."""
    try:
        api.post("/api/auth/logout", authenticated=False)
    except APIError as exc:
        logger.info("Backend logout failed, continuing with local logout: %s", exc)
