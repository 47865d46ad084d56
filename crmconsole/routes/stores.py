# Overview: Console routes for store configuration; list, create/edit dialog and guarded delete.

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, url_for

from ..decorators import require_session
from ..services import store_service
from ..services.store_service import StoreError
from ..validation import STORE_CODE_MAX, STORE_NAME_MAX, ValidationError


stores_bp = Blueprint("stores", __name__, url_prefix="/config")

STORE_FIELDS = ("code", "name", "city", "address", "status")


def _statuses() -> tuple:
    return tuple(current_app.config["CRM_STORE_STATUSES"])


def _blank_form() -> dict:
    statuses = _statuses()
    return {"code": "", "name": "", "city": "", "address": "", "status": statuses[0] if statuses else ""}


def _submitted_form() -> dict:
    return {key: request.form.get(key, "") for key in STORE_FIELDS}


def _render(*, stores=None, load_error=None, dialog=None, editing=None, form=None,
            form_error=None, deleting=None, status=200):
    if stores is None and load_error is None:
        try:
            stores = store_service.list_stores(g.api)
        except StoreError as exc:
            load_error = str(exc)
            stores = []
    body = render_template(
        "stores.html",
        stores=stores or [],
        load_error=load_error,
        dialog=dialog,
        editing=editing,
        form=form or _blank_form(),
        form_error=form_error,
        deleting=deleting,
        statuses=_statuses(),
        status_label=store_service.status_label,
        code_max=STORE_CODE_MAX,
        name_max=STORE_NAME_MAX,
    )
    return body, status


@stores_bp.get("")
@require_session
def index():
    """
    Store list. The dialog state lives in the query string:
    - ?dialog=new
    - ?dialog=edit&id=<store id>
    - ?confirm_delete=<store id>
    """
    try:
        stores = store_service.list_stores(g.api)
    except StoreError as exc:
        return _render(stores=[], load_error=str(exc))

    dialog = request.args.get("dialog")
    if dialog == "new":
        return _render(stores=stores, dialog="new")

    if dialog == "edit":
        store = store_service.find_store(stores, request.args.get("id", type=int))
        if store is None:
            flash(store_service.STORE_MISSING, "error")
            return redirect(url_for("stores.index"))
        return _render(stores=stores, dialog="edit", editing=store, form=store.form_values())

    delete_id = request.args.get("confirm_delete", type=int)
    if delete_id is not None:
        store = store_service.find_store(stores, delete_id)
        if store is None:
            flash(store_service.STORE_MISSING, "error")
            return redirect(url_for("stores.index"))
        return _render(stores=stores, deleting=store)

    return _render(stores=stores)


@stores_bp.post("")
@require_session
def create_store():
    form = _submitted_form()
    try:
        store = store_service.create_store(g.api, form, statuses=_statuses())
    except (ValidationError, StoreError) as exc:
        status = 409 if getattr(exc, "reason", None) == "duplicate_code" else 400
        return _render(dialog="new", form=form, form_error=str(exc), status=status)

    flash(f'Store "{store.name}" created', "success")
    return redirect(url_for("stores.index"), code=303)


@stores_bp.post("/<int:store_id>")
@require_session
def update_store(store_id: int):
    form = _submitted_form()
    try:
        stores = store_service.list_stores(g.api)
    except StoreError as exc:
        flash(str(exc), "error")
        return redirect(url_for("stores.index"), code=303)

    store = store_service.find_store(stores, store_id)
    if store is None:
        flash(store_service.STORE_MISSING, "error")
        return redirect(url_for("stores.index"), code=303)

    try:
        updated = store_service.update_store(g.api, store, form, statuses=_statuses())
    except (ValidationError, StoreError) as exc:
        status = 409 if getattr(exc, "reason", None) == "duplicate_code" else 400
        return _render(stores=stores, dialog="edit", editing=store, form=form,
                       form_error=str(exc), status=status)

    if updated is None:
        flash("No changes to save", "info")
    else:
        flash(f'Store "{updated.name}" updated', "success")
    return redirect(url_for("stores.index"), code=303)


@stores_bp.post("/<int:store_id>/delete")
@require_session
def delete_store(store_id: int):
    try:
        store_service.delete_store(g.api, store_id)
    except StoreError as exc:
        current_app.logger.info("Store %s not deleted: %s", store_id, exc.reason)
        flash(str(exc), "error")
        return redirect(url_for("stores.index"), code=303)

    flash("Store deleted", "success")
    return redirect(url_for("stores.index"), code=303)
