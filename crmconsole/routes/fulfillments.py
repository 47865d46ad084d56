# Overview: Console routes for fulfillment records; status filter, create and lifecycle edits.

from flask import Blueprint, flash, g, redirect, render_template, request, url_for

from ..decorators import require_session
from ..services import dictionary_service, fulfillment_service
from ..services.concurrency import fetch_parallel, raise_session_errors
from ..services.fulfillment_service import DEFAULT_CURRENCY, FulfillmentError
from ..validation import FULFILLMENT_STATUSES, ValidationError


fulfillments_bp = Blueprint("fulfillments", __name__, url_prefix="/fulfillments")

CREATE_FIELDS = (
    "customerId", "storeId", "employeeId", "amount", "currency",
    "status", "channel", "note", "paidAt",
)
EDIT_FIELDS = ("status", "channel", "note", "paidAt")
DROPDOWNS = ("customers", "stores", "employees")
PAGE_ERRORS = (FulfillmentError, *dictionary_service.LOAD_ERRORS)


def _blank_form() -> dict:
    form = {key: "" for key in CREATE_FIELDS}
    form["currency"] = DEFAULT_CURRENCY
    form["status"] = "ordered"
    return form


def _status_filter() -> str:
    status = (request.args.get("status") or "").strip()
    return status if status in FULFILLMENT_STATUSES else ""


def _render(status_filter, *, dialog=None, editing_id=None, form=None, form_error=None, status=200):
    api = g.api
    results = fetch_parallel(
        captures=PAGE_ERRORS,
        fulfillments=lambda: fulfillment_service.list_fulfillments(api, status=status_filter or None),
        **dictionary_service.option_sources(api, *DROPDOWNS),
    )
    raise_session_errors(results)
    options, warnings = dictionary_service.collect_options(results, *DROPDOWNS)

    listing = results["fulfillments"]
    fulfillments = listing.unwrap(default=[])

    editing = None
    if dialog == "edit":
        editing = next((f for f in fulfillments if f.id == editing_id), None)
        if editing is None:
            flash(fulfillment_service.FULFILLMENT_MISSING, "error")
            return redirect(url_for("fulfillments.index", status=status_filter or None))
        if form is None:
            form = editing.form_values()

    body = render_template(
        "fulfillments.html",
        status_filter=status_filter,
        fulfillments=fulfillments,
        load_error=None if listing.ok else str(listing.error),
        warnings=warnings,
        options=options,
        dialog=dialog,
        editing=editing,
        form=form or _blank_form(),
        form_error=form_error,
        statuses=FULFILLMENT_STATUSES,
        status_label=fulfillment_service.status_label,
        format_amount=fulfillment_service.format_amount,
    )
    return body, status


@fulfillments_bp.get("")
@require_session
def index():
    dialog = request.args.get("dialog")
    if dialog not in ("new", "edit"):
        dialog = None
    return _render(_status_filter(), dialog=dialog, editing_id=request.args.get("id", type=int))


@fulfillments_bp.post("")
@require_session
def create_fulfillment():
    status_filter = _status_filter()
    form = {key: request.form.get(key, "") for key in CREATE_FIELDS}
    try:
        fulfillment_service.create_fulfillment(g.api, form)
    except (ValidationError, FulfillmentError) as exc:
        return _render(status_filter, dialog="new", form=form, form_error=str(exc), status=400)

    flash("Fulfillment record created", "success")
    return redirect(url_for("fulfillments.index", status=status_filter or None), code=303)


@fulfillments_bp.post("/<int:fulfillment_id>")
@require_session
def update_fulfillment(fulfillment_id: int):
    status_filter = _status_filter()
    form = {key: request.form.get(key, "") for key in EDIT_FIELDS}
    try:
        fulfillment_service.update_fulfillment(g.api, fulfillment_id, form)
    except (ValidationError, FulfillmentError) as exc:
        return _render(status_filter, dialog="edit", editing_id=fulfillment_id,
                       form=form, form_error=str(exc), status=400)

    flash("Fulfillment record updated", "success")
    return redirect(url_for("fulfillments.index", status=status_filter or None), code=303)
