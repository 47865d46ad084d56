from __future__ import annotations

from crmconsole.client import APIClient, APIError, NotFound, SessionExpired, unwrap
from crmconsole.models import Customer
from crmconsole.validation import CUSTOMER_POLICY, validate_form


CUSTOMER_MISSING = "Customer no longer exists."

GENDER_LABELS = {"male": "Male", "female": "Female", "other": "Other"}
STATUS_LABELS = {"active": "Active", "inactive": "Inactive"}


class CustomerError(Exception):
    """Raised when customer operations fail."""


def list_customers(
    api: APIClient,
    *,
    q: str | None = None,
    store_id: int | None = None,
    owner_employee_id: int | None = None,
    limit: int | None = None,
    offset: int | None = None,
) -> list[Customer]:
    params = {
        "q": (q or "").strip() or None,
        "storeId": store_id,
        "ownerEmployeeId": owner_employee_id,
        "limit": limit,
        "offset": offset,
    }
    try:
        rows = unwrap(api.get("/api/customers", params=params)) or []
    except SessionExpired:
        raise
    except APIError as exc:
        raise CustomerError(exc.user_message) from exc
    return [Customer.from_api(row) for row in rows]


def _payload(form: dict) -> dict:
    payload = validate_form(form, CUSTOMER_POLICY)
    if payload.get("status") is None:
        payload["status"] = "active"
    return payload


def create_customer(api: APIClient, form: dict) -> Customer:
    payload = {k: v for k, v in _payload(form).items() if v is not None}
    try:
        return Customer.from_api(unwrap(api.post("/api/customers", json=payload)))
    except SessionExpired:
        raise
    except APIError as exc:
        raise CustomerError(exc.user_message) from exc


def update_customer(api: APIClient, customer_id: int, form: dict) -> Customer:
    payload = _payload(form)
    try:
        return Customer.from_api(unwrap(api.put(f"/api/customers/{customer_id}", json=payload)))
    except SessionExpired:
        raise
    except NotFound as exc:
        raise CustomerError(CUSTOMER_MISSING) from exc
    except APIError as exc:
        raise CustomerError(exc.user_message) from exc


def gender_label(value: str | None) -> str:
    if not value:
        return "-"
    return GENDER_LABELS.get(value, value)


def status_label(value: str | None) -> str:
    if not value:
        return "-"
    return STATUS_LABELS.get(value, value)
