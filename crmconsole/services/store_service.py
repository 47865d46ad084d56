from __future__ import annotations

from crmconsole.client import APIClient, APIError, BadRequest, Conflict, NotFound, SessionExpired, unwrap
from crmconsole.models import Store
from crmconsole.validation import changed_fields, store_policy, validate_form


DUPLICATE_CODE = "Store code already exists, choose another code."
HAS_DEPENDENTS = "This store still has employees or fulfillment records and cannot be deleted."
STORE_MISSING = "Store no longer exists."


class StoreError(Exception):
    """Raised when store operations fail."""

    def __init__(self, message: str, *, reason: str = "failed"):
        super().__init__(message)
        self.reason = reason


def list_stores(api: APIClient) -> list[Store]:
    try:
        rows = unwrap(api.get("/api/stores")) or []
    except SessionExpired:
        raise
    except APIError as exc:
        raise StoreError(exc.user_message) from exc
    return [Store.from_api(row) for row in rows]


def create_store(api: APIClient, form: dict, *, statuses: tuple[str, ...]) -> Store:
    # Raises ValidationError before anything is sent.
    payload = validate_form(form, store_policy(statuses))
    if payload.get("status") is None and statuses:
        payload["status"] = statuses[0]
    payload = {k: v for k, v in payload.items() if v is not None}
    try:
        return Store.from_api(unwrap(api.post("/api/stores", json=payload)))
    except SessionExpired:
        raise
    except Conflict as exc:
        raise StoreError(DUPLICATE_CODE, reason="duplicate_code") from exc
    except APIError as exc:
        raise StoreError(exc.user_message) from exc


def update_store(api: APIClient, store: Store, form: dict, *, statuses: tuple[str, ...]) -> Store | None:
    """
    Send only the fields that changed. Returns None when nothing did, in which
    case no request is made.
    """
    cleaned = validate_form(form, store_policy(statuses))
    patch = changed_fields(store.form_values(), cleaned)
    if not patch:
        return None
    try:
        return Store.from_api(unwrap(api.put(f"/api/stores/{store.id}", json=patch)))
    except SessionExpired:
        raise
    except Conflict as exc:
        raise StoreError(DUPLICATE_CODE, reason="duplicate_code") from exc
    except NotFound as exc:
        raise StoreError(STORE_MISSING, reason="not_found") from exc
    except APIError as exc:
        raise StoreError(exc.user_message) from exc


def delete_store(api: APIClient, store_id: int) -> None:
    try:
        api.delete(f"/api/stores/{store_id}")
    except SessionExpired:
        raise
    except BadRequest as exc:
        # The backend refuses while employees or fulfillments still point here.
        raise StoreError(HAS_DEPENDENTS, reason="has_dependents") from exc
    except NotFound as exc:
        raise StoreError(STORE_MISSING, reason="not_found") from exc
    except APIError as exc:
        raise StoreError(exc.user_message) from exc


def find_store(stores: list[Store], store_id: int | None) -> Store | None:
    if store_id is None:
        return None
    for store in stores:
        if store.id == store_id:
            return store
    return None


STATUS_LABELS = {"open": "Open", "closed": "Closed", "active": "Active", "inactive": "Inactive"}


def status_label(value: str | None) -> str:
    if not value:
        return "-"
    return STATUS_LABELS.get(value, value)
