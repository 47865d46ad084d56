# Overview: Reference collections (stores, employees, customers) shaped for dropdowns.

from __future__ import annotations

from typing import Any, Callable

from crmconsole.client import APIClient, APIError, SessionExpired, unwrap
from crmconsole.models import Employee, Option
from crmconsole.services import customer_service, store_service
from crmconsole.services.concurrency import FetchResult


class DictionaryError(Exception):
    """Raised when a reference collection cannot be loaded."""


# Failures a dropdown source reports instead of raising
LOAD_ERRORS = (APIError, DictionaryError, store_service.StoreError, customer_service.CustomerError)


def list_employees(api: APIClient, store_id: int | None = None) -> list[Employee]:
    params = {"storeId": store_id} if store_id else None
    try:
        rows = unwrap(api.get("/api/employees", params=params)) or []
    except SessionExpired:
        raise
    except APIError as exc:
        raise DictionaryError(exc.user_message) from exc
    return [Employee.from_api(row) for row in rows]


def store_options(api: APIClient) -> list[Option]:
    return [Option(id=s.id, label=s.name) for s in store_service.list_stores(api)]


def employee_options(api: APIClient, store_id: int | None = None) -> list[Option]:
    return [Option(id=e.id, label=e.name) for e in list_employees(api, store_id)]


def customer_options(api: APIClient) -> list[Option]:
    return [
        Option(id=c.id, label=f"{c.name} - {c.phone}")
        for c in customer_service.list_customers(api)
    ]


def option_sources(api: APIClient, *names: str) -> dict[str, Callable[[], Any]]:
    """Fetch callables for the named dropdowns, ready for fetch_parallel."""
    sources = {
        "stores": lambda: store_options(api),
        "employees": lambda: employee_options(api),
        "customers": lambda: customer_options(api),
    }
    return {name: sources[name] for name in names}


def collect_options(results: dict[str, FetchResult], *names: str) -> tuple[dict[str, list[Option]], list[str]]:
    """
    Split fetch results into dropdown lists and page warnings.
    A source that failed yields an empty list and a warning.
    """
    options: dict[str, list[Option]] = {}
    warnings: list[str] = []
    for name in names:
        result = results[name]
        options[name] = result.unwrap(default=[])
        if not result.ok:
            warnings.append(f"Could not load {name}: {result.error}")
    return options, warnings


def option_label(options: list[Option], value, fallback: str = "-") -> str:
    if value in (None, ""):
        return "-"
    for option in options:
        if option.id == value:
            return option.label
    return fallback
