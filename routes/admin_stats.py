"""Admin compliance calendar endpoints.

``/calendar`` aggregates EOD or memo submissions per day of a month grid and
``/day-details`` lists who submitted and who missed on one day.
"""

from datetime import date, datetime, time as dt_time, timedelta

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required
from sqlalchemy.exc import SQLAlchemyError

from compliance import (
    AssignmentRow,
    ComplianceInputError,
    ReportType,
    SubmissionRow,
    build_calendar_stats,
    build_day_details,
    calendar_window,
    local_today,
    normalize_report_type,
    parse_day,
    parse_month,
)
from extensions import db
from models import EODReport, Memo, Project, ProjectAssignment, RoleEnum, User
from routes.helpers import app_timezone, json_error, require_admin
from schemas import DayDetailSchema, DayStatSchema

bp = Blueprint("admin_stats", __name__, url_prefix="/api/admin/stats")

day_stats_schema = DayStatSchema(many=True)
day_details_schema = DayDetailSchema(many=True)

_REPORT_MODELS = {
    ReportType.EOD: EODReport,
    ReportType.MEMO: Memo,
}


# ---------------------------------------------------------------------------
# Data fetch
# ---------------------------------------------------------------------------

def _day_bounds(start: date, end: date) -> tuple[datetime, datetime]:
    return datetime.combine(start, dt_time.min), datetime.combine(end + timedelta(days=1), dt_time.min)


def _fetch_reports(model, start: date, end: date) -> list[SubmissionRow]:
    """Reports of ``model`` dated within ``start``..``end`` from non-admin users."""

    lower, upper = _day_bounds(start, end)
    rows = (
        db.session.query(
            model.id,
            model.user_id,
            model.project_id,
            model.report_date,
            model.created_at,
            User.name.label("user_name"),
            Project.name.label("project_name"),
        )
        .join(User, model.user_id == User.id)
        .join(Project, model.project_id == Project.id)
        .filter(User.role != RoleEnum.admin)
        .filter(model.report_date >= lower, model.report_date < upper)
        .all()
    )
    return [
        SubmissionRow(
            id=str(row.id),
            user_id=str(row.user_id),
            project_id=str(row.project_id),
            report_date=row.report_date,
            created_at=row.created_at,
            user_name=row.user_name,
            project_name=row.project_name,
        )
        for row in rows
    ]


def _fetch_assignments() -> list[AssignmentRow]:
    rows = (
        db.session.query(
            ProjectAssignment.user_id,
            ProjectAssignment.project_id,
            ProjectAssignment.assigned_at,
            ProjectAssignment.is_active,
            ProjectAssignment.last_activated_at,
            User.name.label("user_name"),
            Project.name.label("project_name"),
        )
        .join(User, ProjectAssignment.user_id == User.id)
        .join(Project, ProjectAssignment.project_id == Project.id)
        .filter(User.role != RoleEnum.admin)
        .all()
    )
    return [
        AssignmentRow(
            user_id=str(row.user_id),
            project_id=str(row.project_id),
            assigned_at=row.assigned_at,
            is_active=bool(row.is_active),
            last_activated_at=row.last_activated_at,
            user_name=row.user_name,
            project_name=row.project_name,
        )
        for row in rows
    ]


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@bp.get("/calendar")
@jwt_required()
def calendar_stats():
    error = require_admin()
    if error:
        return error

    month_param = request.args.get("month")
    if not month_param:
        return json_error("Month is required", 400)

    try:
        month_start = parse_month(month_param)
        report_type = normalize_report_type(request.args.get("type"))
    except ComplianceInputError as exc:
        return json_error(str(exc), 400)

    start, end = calendar_window(month_start)
    try:
        eods = _fetch_reports(EODReport, start, end)
        memos = _fetch_reports(Memo, start, end)
        assignments = _fetch_assignments()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Admin stats error for month %s", month_param)
        return json_error("Failed to fetch stats", 500)

    tz = app_timezone()
    stats = build_calendar_stats(
        month_start,
        report_type,
        eods,
        memos,
        assignments,
        today=local_today(tz),
        tz=tz,
    )
    return jsonify(day_stats_schema.dump(stats))


@bp.get("/day-details")
@jwt_required()
def day_details():
    error = require_admin()
    if error:
        return error

    date_param = request.args.get("date")
    if not date_param:
        return json_error("Date is required", 400)

    try:
        target_day = parse_day(date_param)
        report_type = normalize_report_type(request.args.get("type"))
    except ComplianceInputError as exc:
        return json_error(str(exc), 400)

    tz = app_timezone()
    today = local_today(tz)
    if target_day > today:
        return jsonify([])

    try:
        assignments = _fetch_assignments()
        submissions = _fetch_reports(_REPORT_MODELS[report_type], target_day, target_day)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Day details error for %s", date_param)
        return json_error("Failed to fetch day details", 500)

    rows = build_day_details(target_day, submissions, assignments, today=today, tz=tz)
    return jsonify(day_details_schema.dump(rows))
