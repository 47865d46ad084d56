from __future__ import annotations

from crmconsole.client import APIClient, APIError, NotFound, SessionExpired, unwrap
from crmconsole.models import Fulfillment
from crmconsole.validation import (
    FULFILLMENT_CREATE_POLICY,
    FULFILLMENT_STATUSES,
    FULFILLMENT_UPDATE_POLICY,
    ValidationError,
    enforce_rules_fulfillment,
    validate_form,
)


DEFAULT_CURRENCY = "CNY"
FULFILLMENT_MISSING = "Fulfillment record no longer exists."

STATUS_LABELS = {
    "ordered": "Ordered",
    "fulfilled": "Fulfilled",
    "refunded": "Refunded",
}


class FulfillmentError(Exception):
    """Raised when fulfillment operations fail."""


def list_fulfillments(
    api: APIClient,
    *,
    status: str | None = None,
    store_id: int | None = None,
    employee_id: int | None = None,
    customer_id: int | None = None,
    limit: int | None = None,
    offset: int | None = None,
) -> list[Fulfillment]:
    if status and status not in FULFILLMENT_STATUSES:
        raise ValidationError(f"Unknown status filter: {status}", "status")
    params = {
        "status": status or None,
        "storeId": store_id,
        "employeeId": employee_id,
        "customerId": customer_id,
        "limit": limit,
        "offset": offset,
    }
    try:
        rows = unwrap(api.get("/api/fulfillments", params=params)) or []
    except SessionExpired:
        raise
    except APIError as exc:
        raise FulfillmentError(exc.user_message) from exc
    return [Fulfillment.from_api(row) for row in rows]


def create_fulfillment(api: APIClient, form: dict) -> Fulfillment:
    payload = validate_form(form, FULFILLMENT_CREATE_POLICY)
    enforce_rules_fulfillment(payload)
    if payload.get("currency") is None:
        payload["currency"] = DEFAULT_CURRENCY
    if payload.get("status") is None:
        payload["status"] = "ordered"
    payload = {k: v for k, v in payload.items() if v is not None}
    try:
        return Fulfillment.from_api(unwrap(api.post("/api/fulfillments", json=payload)))
    except SessionExpired:
        raise
    except APIError as exc:
        raise FulfillmentError(exc.user_message) from exc


def update_fulfillment(api: APIClient, fulfillment_id: int, form: dict) -> Fulfillment:
    """Only status, note, channel and paidAt are editable once recorded."""
    payload = validate_form(form, FULFILLMENT_UPDATE_POLICY, partial=True)
    try:
        return Fulfillment.from_api(unwrap(api.put(f"/api/fulfillments/{fulfillment_id}", json=payload)))
    except SessionExpired:
        raise
    except NotFound as exc:
        raise FulfillmentError(FULFILLMENT_MISSING) from exc
    except APIError as exc:
        raise FulfillmentError(exc.user_message) from exc


def status_label(value: str | None) -> str:
    if not value:
        return "-"
    return STATUS_LABELS.get(value, value)


def format_amount(amount: float | str | None, currency: str = DEFAULT_CURRENCY) -> str:
    try:
        value = float(amount or 0)
    except (TypeError, ValueError):
        value = 0.0
    return f"{currency} {value:.2f}"
