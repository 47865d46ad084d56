# crmconsole/config.py
from __future__ import annotations
import os


DEV_API_BASE_URL = "http://localhost:3000"


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Signed cookie carrying the visitor key; never sent on cross-site POSTs
    SESSION_COOKIE_NAME = "crm_console"
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"

    # "development" points at a local backend; "production" is same-origin
    CONSOLE_ENV = os.environ.get("CONSOLE_ENV", "production")

    # Explicit API host; empty means derive from CONSOLE_ENV
    CRM_API_BASE_URL = os.environ.get("CRM_API_BASE_URL", "")

    CRM_REQUEST_TIMEOUT = float(os.environ.get("CRM_REQUEST_TIMEOUT", "15"))

    # Lightweight verification endpoint used to restore a cached session
    CRM_SESSION_PROBE_PATH = os.environ.get("CRM_SESSION_PROBE_PATH", "/api/auth/verify")

    # Per-visitor identity files and cookie jars live here (defaults to the instance folder)
    CRM_STATE_DIR = os.environ.get("CRM_STATE_DIR", "")

    CRM_STORE_STATUSES = tuple(
        s.strip() for s in os.environ.get("CRM_STORE_STATUSES", "open,closed").split(",") if s.strip()
    )

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


def resolve_api_base_url(config, request_host_url: str | None = None) -> str:
    """
    Work out which host the API client talks to.

    - CRM_API_BASE_URL always wins
    - development falls back to the fixed local backend port
    - production is same-origin: the host the console itself was reached on
    """
    explicit = (config.get("CRM_API_BASE_URL") or "").strip()
    if explicit:
        return explicit.rstrip("/")
    if config.get("CONSOLE_ENV") == "development":
        return DEV_API_BASE_URL
    if request_host_url:
        return request_host_url.rstrip("/")
    return DEV_API_BASE_URL
