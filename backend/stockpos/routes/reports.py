from flask import Blueprint, current_app, g, jsonify, request

from stockpos.decorators import require_auth, require_role
from stockpos.identity import ROLE_ADMIN
from stockpos.services import reporting_service
from stockpos.time_utils import date_range
from stockpos.validation import coerce_int


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _range_from_args():
    """start/end are local calendar days (YYYY-MM-DD), end day inclusive."""
    return date_range(
        request.args.get("start"),
        request.args.get("end"),
        current_app.config["STORE_TIMEZONE"],
        default_days=current_app.config["REPORT_DEFAULT_DAYS"],
    )


def _limit_from_args() -> int:
    raw = request.args.get("limit")
    if raw is None:
        return current_app.config["REPORT_DEFAULT_LIMIT"]
    return coerce_int(raw, "limit")


@reports_bp.get("/summary")
@require_auth
@require_role(ROLE_ADMIN)
def summary_report():
    try:
        rng = _range_from_args()
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    return jsonify(reporting_service.summary(rng)), 200


@reports_bp.get("/top-movers")
@require_auth
@require_role(ROLE_ADMIN)
def top_movers_report():
    try:
        rng = _range_from_args()
        limit = _limit_from_args()
        rows = reporting_service.top_movers(rng, limit)
    except (ValueError, reporting_service.ReportError) as exc:
        return jsonify({"error": str(exc)}), 400

    return jsonify({**rng.to_dict(), "limit": limit, "rows": rows}), 200


@reports_bp.get("/bottom-movers")
@require_auth
@require_role(ROLE_ADMIN)
def bottom_movers_report():
    try:
        rng = _range_from_args()
        limit = _limit_from_args()
        rows = reporting_service.bottom_movers(rng, limit)
    except (ValueError, reporting_service.ReportError) as exc:
        return jsonify({"error": str(exc)}), 400

    return jsonify({**rng.to_dict(), "limit": limit, "rows": rows}), 200


@reports_bp.get("/low-stock")
@require_auth
def low_stock_report():
    rows = reporting_service.low_stock()
    return jsonify({"count": len(rows), "rows": rows}), 200


@reports_bp.get("/overview")
@require_auth
@require_role(ROLE_ADMIN)
def overview_report():
    """All report sections at once; a failing section does not fail the others."""
    try:
        rng = _range_from_args()
        limit = _limit_from_args()
        report = reporting_service.overview(rng, limit)
    except (ValueError, reporting_service.ReportError) as exc:
        return jsonify({"error": str(exc)}), 400

    return jsonify(report), 200


@reports_bp.get("/dashboard")
@require_auth
def dashboard_report():
    """Landing figures for the caller: catalog size, low stock, own sales today and this month."""
    try:
        report = reporting_service.dashboard(
            g.identity.user_id,
            current_app.config["STORE_TIMEZONE"],
        )
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    return jsonify(report), 200
