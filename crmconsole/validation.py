from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from crmconsole.time_utils import parse_iso_date, parse_iso_datetime


# Backend column limits for stores
STORE_CODE_MAX = 30
STORE_NAME_MAX = 120

CUSTOMER_GENDERS = ("male", "female", "other")
CUSTOMER_STATUSES = ("active", "inactive")
FULFILLMENT_STATUSES = ("ordered", "fulfilled", "refunded")


class ValidationError(ValueError):
    """Client-side input problem; the backend is never contacted."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


@dataclass(frozen=True)
class FormPolicy:
    """
    Client-side form rules, checked before anything is sent:
    - writable_fields: keys a form may submit (everything else is dropped)
    - required: fields that must be present and non-blank on create
    - max_lengths: string limits mirrored from the backend schema
    - choices: enumerated values
    - integer_fields / number_fields / date_fields / datetime_fields: coercions
    """
    writable_fields: frozenset[str]
    required: frozenset[str] = frozenset()
    max_lengths: dict[str, int] = field(default_factory=dict)
    choices: dict[str, tuple[str, ...]] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    integer_fields: frozenset[str] = frozenset()
    number_fields: frozenset[str] = frozenset()
    date_fields: frozenset[str] = frozenset()
    datetime_fields: frozenset[str] = frozenset()

    def label(self, key: str) -> str:
        return self.labels.get(key, key)


def _coerce(policy: FormPolicy, key: str, value: Any) -> Any:
    name = policy.label(key)

    if key in policy.integer_fields:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        try:
            return int(str(value).strip())
        except ValueError:
            raise ValidationError(f"{name} must be a whole number", key)

    if key in policy.number_fields:
        try:
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                number = float(value)
            else:
                number = float(str(value).strip())
        except (ValueError, OverflowError):
            raise ValidationError(f"{name} must be a number", key)
        # nan and inf parse as floats but cannot be sent as JSON
        if not math.isfinite(number):
            raise ValidationError(f"{name} must be a number", key)
        return number

    if key in policy.date_fields:
        try:
            return parse_iso_date(str(value)).isoformat()
        except ValueError:
            raise ValidationError(f"{name} must be a date (YYYY-MM-DD)", key)

    if key in policy.datetime_fields:
        try:
            return parse_iso_datetime(str(value)).isoformat(timespec="minutes")
        except ValueError:
            raise ValidationError(f"{name} must be a date and time", key)

    return value


def validate_form(payload: dict | None, policy: FormPolicy, *, partial: bool = False) -> dict:
    """
    Validates + normalizes submitted form data.

    - strings are stripped and blank strings become None
    - keys outside writable_fields are dropped
    - partial=False enforces `required`; partial=True only checks provided keys
    Returns the cleaned dict; None values are kept so edits can clear a field.
    """
    payload = payload or {}
    cleaned: dict = {}

    for key, raw in payload.items():
        if key not in policy.writable_fields:
            continue
        value = raw.strip() if isinstance(raw, str) else raw
        if value == "":
            value = None
        cleaned[key] = value

    for key in sorted(policy.required):
        if partial and key not in cleaned:
            continue
        if cleaned.get(key) is None:
            raise ValidationError(f"{policy.label(key)} is required", key)

    for key, value in list(cleaned.items()):
        if value is None:
            continue

        limit = policy.max_lengths.get(key)
        if limit is not None and isinstance(value, str) and len(value) > limit:
            raise ValidationError(f"{policy.label(key)} cannot exceed {limit} characters", key)

        allowed = policy.choices.get(key)
        if allowed is not None and value not in allowed:
            raise ValidationError(f"{policy.label(key)} must be one of: {', '.join(allowed)}", key)

        cleaned[key] = _coerce(policy, key, value)

    return cleaned


def changed_fields(original: dict, cleaned: dict) -> dict:
    """
    Minimal update payload: keys whose value differs from the original record.
    A field the operator emptied is sent as None only if it had a value.
    """
    patch = {}
    for key, value in cleaned.items():
        before = original.get(key)
        if before == "":
            before = None
        if value != before:
            patch[key] = value
    return patch


def store_policy(statuses: tuple[str, ...]) -> FormPolicy:
    return FormPolicy(
        writable_fields=frozenset({"code", "name", "city", "address", "status"}),
        required=frozenset({"code", "name"}),
        max_lengths={"code": STORE_CODE_MAX, "name": STORE_NAME_MAX},
        choices={"status": statuses},
        labels={"code": "Store code", "name": "Store name", "status": "Status"},
    )


CUSTOMER_POLICY = FormPolicy(
    writable_fields=frozenset({
        "name", "phone", "gender", "birthday", "source",
        "preferredStoreId", "ownerEmployeeId", "status",
    }),
    required=frozenset({"name", "phone"}),
    choices={"gender": CUSTOMER_GENDERS, "status": CUSTOMER_STATUSES},
    labels={
        "name": "Name",
        "phone": "Phone",
        "gender": "Gender",
        "birthday": "Birthday",
        "preferredStoreId": "Preferred store",
        "ownerEmployeeId": "Owner",
        "status": "Status",
    },
    integer_fields=frozenset({"preferredStoreId", "ownerEmployeeId"}),
    date_fields=frozenset({"birthday"}),
)


FULFILLMENT_CREATE_POLICY = FormPolicy(
    writable_fields=frozenset({
        "customerId", "storeId", "employeeId", "amount", "currency",
        "status", "channel", "note", "paidAt",
    }),
    required=frozenset({"customerId", "storeId", "amount"}),
    choices={"status": FULFILLMENT_STATUSES},
    labels={
        "customerId": "Customer",
        "storeId": "Store",
        "employeeId": "Employee",
        "amount": "Amount",
        "status": "Status",
        "paidAt": "Paid at",
    },
    integer_fields=frozenset({"customerId", "storeId", "employeeId"}),
    number_fields=frozenset({"amount"}),
    datetime_fields=frozenset({"paidAt"}),
)

# Edits only touch the lifecycle fields; the money and parties are fixed.
FULFILLMENT_UPDATE_POLICY = FormPolicy(
    writable_fields=frozenset({"status", "channel", "note", "paidAt"}),
    choices={"status": FULFILLMENT_STATUSES},
    labels=FULFILLMENT_CREATE_POLICY.labels,
    datetime_fields=frozenset({"paidAt"}),
)


def enforce_rules_fulfillment(cleaned: dict) -> None:
    amount = cleaned.get("amount")
    if amount is not None and amount < 0:
        raise ValidationError("Amount must be >= 0", "amount")
