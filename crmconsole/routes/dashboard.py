# Overview: Console route for the sales dashboard; range controls, metric toggle and recent activity.

from flask import Blueprint, flash, g, redirect, render_template, request, url_for

from ..decorators import require_session
from ..extensions import get_dashboard
from ..services import customer_service, fulfillment_service
from ..services.dashboard_service import (
    CHART_HEIGHT,
    CHART_WIDTH,
    DashboardError,
    Metric,
    RangeSelection,
    trend_points,
)
from ..validation import ValidationError


dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/dashboard")


@dashboard_bp.get("")
@require_session
def index():
    """
    Range controls: ?range=7|30 or ?startDate=&endDate=. Exactly one applies.

    ?metric= only changes which series is drawn. Metric links carry
    cached=1 so the snapshot already on screen is reused without a fetch.
    """
    service = get_dashboard()
    metric = Metric.parse(request.args.get("metric"))

    try:
        selection = RangeSelection.from_args(request.args)
    except ValidationError as exc:
        flash(str(exc), "error")
        current = service.selection
        return redirect(url_for("dashboard.index", metric=metric.value, **current.query_params()))

    load_error = None
    reuse = request.args.get("cached") == "1" and service.selection == selection and service.snapshot is not None
    if reuse:
        aggregate = service.snapshot
    else:
        try:
            aggregate = service.refresh(g.api, selection)
        except DashboardError as exc:
            aggregate = None
            load_error = str(exc)

    # A newer range request may have taken over while this one was in flight.
    selection = service.selection
    loading = aggregate is None and load_error is None

    start, end = selection.window()
    return render_template(
        "dashboard.html",
        selection=selection,
        window_start=start,
        window_end=end,
        metric=metric,
        metrics=list(Metric),
        aggregate=aggregate,
        points=trend_points(aggregate, metric) if aggregate else [],
        chart_width=CHART_WIDTH,
        chart_height=CHART_HEIGHT,
        load_error=load_error,
        loading=loading,
        format_amount=fulfillment_service.format_amount,
        order_status_label=fulfillment_service.status_label,
        customer_status_label=customer_service.status_label,
    )
