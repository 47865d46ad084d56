# Overview: Console routes for customer records; search, create and edit.

from flask import Blueprint, flash, g, redirect, render_template, request, url_for

from ..decorators import require_session
from ..services import customer_service, dictionary_service
from ..services.concurrency import fetch_parallel, raise_session_errors
from ..services.customer_service import CustomerError
from ..validation import CUSTOMER_GENDERS, CUSTOMER_STATUSES, ValidationError


customers_bp = Blueprint("customers", __name__, url_prefix="/customers")

CUSTOMER_FIELDS = (
    "name", "phone", "gender", "birthday", "source",
    "preferredStoreId", "ownerEmployeeId", "status",
)
DROPDOWNS = ("stores", "employees")
PAGE_ERRORS = (CustomerError, *dictionary_service.LOAD_ERRORS)

BLANK_FORM = {key: "" for key in CUSTOMER_FIELDS} | {"status": "active"}


def _submitted_form() -> dict:
    return {key: request.form.get(key, "") for key in CUSTOMER_FIELDS}


def _render(q, *, dialog=None, editing=None, form=None, form_error=None, status=200):
    """
    Customer list, dropdown sources and (optionally) the open dialog.
    The list and both dictionaries are fetched concurrently.
    """
    api = g.api
    results = fetch_parallel(
        captures=PAGE_ERRORS,
        customers=lambda: customer_service.list_customers(api, q=q),
        **dictionary_service.option_sources(api, *DROPDOWNS),
    )
    raise_session_errors(results)
    options, warnings = dictionary_service.collect_options(results, *DROPDOWNS)

    listing = results["customers"]
    customers = listing.unwrap(default=[])

    if dialog == "edit" and editing is None:
        editing = next((c for c in customers if c.id == request.args.get("id", type=int)), None)
        if editing is None:
            flash(customer_service.CUSTOMER_MISSING, "error")
            return redirect(url_for("customers.index", q=q or None))
        form = editing.form_values()

    body = render_template(
        "customers.html",
        q=q or "",
        customers=customers,
        load_error=None if listing.ok else str(listing.error),
        warnings=warnings,
        options=options,
        dialog=dialog,
        editing=editing,
        form=form or dict(BLANK_FORM),
        form_error=form_error,
        genders=CUSTOMER_GENDERS,
        statuses=CUSTOMER_STATUSES,
        gender_label=customer_service.gender_label,
        status_label=customer_service.status_label,
        option_label=dictionary_service.option_label,
    )
    return body, status


@customers_bp.get("")
@require_session
def index():
    q = (request.args.get("q") or "").strip()
    dialog = request.args.get("dialog")
    if dialog not in ("new", "edit"):
        dialog = None
    return _render(q, dialog=dialog)


@customers_bp.post("")
@require_session
def create_customer():
    q = (request.args.get("q") or "").strip()
    form = _submitted_form()
    try:
        customer = customer_service.create_customer(g.api, form)
    except (ValidationError, CustomerError) as exc:
        return _render(q, dialog="new", form=form, form_error=str(exc), status=400)

    flash(f'Customer "{customer.name}" created', "success")
    return redirect(url_for("customers.index", q=q or None), code=303)


@customers_bp.post("/<int:customer_id>")
@require_session
def update_customer(customer_id: int):
    q = (request.args.get("q") or "").strip()
    form = _submitted_form()
    try:
        customer = customer_service.update_customer(g.api, customer_id, form)
    except (ValidationError, CustomerError) as exc:
        editing = {"id": customer_id}
        return _render(q, dialog="edit", editing=editing, form=form, form_error=str(exc), status=400)

    flash(f'Customer "{customer.name}" updated', "success")
    return redirect(url_for("customers.index", q=q or None), code=303)
