from datetime import date, datetime, time as dt_time, timedelta

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required
from marshmallow import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from compliance import local_today
from extensions import db
from models import EODReport, Project, User
from routes.helpers import (
    app_timezone,
    current_user,
    find_assignment,
    get_by_id,
    is_admin_request,
    json_error,
    parse_uuid,
)
from schemas import EODCreateSchema, EODReportSchema, EODUpdateSchema, first_error_message

bp = Blueprint("eods", __name__, url_prefix="/api/eods")

eod_schema = EODReportSchema()
eods_schema = EODReportSchema(many=True)
eod_create_schema = EODCreateSchema()
eod_update_schema = EODUpdateSchema()


# ---------------------------------------------------------------------------
# Shared report helpers (also used by the memo endpoints)
# ---------------------------------------------------------------------------

def _day_start(day: date) -> datetime:
    return datetime.combine(day, dt_time.min)


def _day_range_filter(model, start: date, end: date):
    return (
        model.report_date >= _day_start(start),
        model.report_date < _day_start(end + timedelta(days=1)),
    )


def _resolve_report_owner(data: dict):
    """Return ``(user, project, error_response)`` for a report submission.

    Admins may file on behalf of ``userId``; everyone else files for
    themselves and must hold an active assignment on the project.
    """

    requester = current_user()
    if requester is None:
        return None, None, json_error("Unauthorized", 401)

    owner = requester
    requested_owner = data.get("user_id")
    if requested_owner is not None and requested_owner != requester.id:
        if not is_admin_request():
            return None, None, json_error("You can only submit reports for yourself", 403)
        owner = db.session.get(User, requested_owner)
        if owner is None:
            return None, None, json_error("User not found", 404)

    project = db.session.get(Project, data["project_id"])
    if project is None:
        return None, None, json_error("Project not found", 404)

    if not is_admin_request():
        assignment = find_assignment(owner.id, project.id)
        if assignment is None or not assignment.is_active:
            return None, None, json_error("You are not assigned to this project", 403)

    return owner, project, None


def _load_owned_report(model, report_id: str):
    """Return ``(report, error_response)`` for the caller's report."""

    report = get_by_id(model, report_id)
    if report is None:
        return None, json_error("Report not found", 404)
    if not is_admin_request():
        requester = current_user()
        if requester is None or requester.id != report.user_id:
            return None, json_error("You can only access your own reports", 403)
    return report, None


def _filtered_report_query(model):
    """Apply ``userId``, ``projectId``, ``from`` and ``to`` query filters.

    Non-admin callers are restricted to their own reports.
    """

    query = model.query
    if is_admin_request():
        user_id = parse_uuid(request.args.get("userId"))
        if user_id is not None:
            query = query.filter(model.user_id == user_id)
    else:
        requester = current_user()
        query = query.filter(model.user_id == (requester.id if requester else None))

    project_id = parse_uuid(request.args.get("projectId"))
    if project_id is not None:
        query = query.filter(model.project_id == project_id)

    from_value = request.args.get("from")
    to_value = request.args.get("to")
    if from_value:
        query = query.filter(model.report_date >= _day_start(date.fromisoformat(from_value)))
    if to_value:
        query = query.filter(
            model.report_date < _day_start(date.fromisoformat(to_value) + timedelta(days=1))
        )

    return query.order_by(model.report_date.desc(), model.created_at.desc())


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@bp.get("")
@jwt_required()
def list_eods():
    try:
        reports = _filtered_report_query(EODReport).all()
    except ValueError:
        return json_error("Dates must use YYYY-MM-DD format", 400)
    return jsonify(eods_schema.dump(reports))


@bp.post("")
@jwt_required()
def create_eod():
    try:
        data = eod_create_schema.load(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return json_error(first_error_message(exc), 400)

    owner, project, error = _resolve_report_owner(data)
    if error:
        return error

    report_day = data["report_date"]
    existing = EODReport.query.filter(
        EODReport.user_id == owner.id,
        EODReport.project_id == project.id,
        *_day_range_filter(EODReport, report_day, report_day),
    ).first()
    if existing:
        return json_error("EOD already exists for this date", 409)

    report = EODReport(
        user_id=owner.id,
        project_id=project.id,
        report_date=_day_start(report_day),
        client_update=data.get("client_update"),
        actual_update=data["actual_update"],
        hours_spent=data.get("hours_spent"),
    )
    db.session.add(report)
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to create EOD")
        return json_error("Failed to create EOD", 500)

    return jsonify(eod_schema.dump(report)), 201


@bp.get("/weekly")
@jwt_required()
def weekly_eods():
    """Current week's EODs (Monday to today) for one user and project."""

    project_id = parse_uuid(request.args.get("projectId"))
    user_id = parse_uuid(request.args.get("userId"))
    if project_id is None or user_id is None:
        return json_error("projectId and userId are required", 400)

    if not is_admin_request():
        requester = current_user()
        if requester is None or requester.id != user_id:
            return json_error("You can only access your own reports", 403)

    today = local_today(app_timezone())
    week_start = today - timedelta(days=today.weekday())

    reports = (
        EODReport.query.filter(
            EODReport.project_id == project_id,
            EODReport.user_id == user_id,
            *_day_range_filter(EODReport, week_start, today),
        )
        .order_by(EODReport.report_date.asc())
        .all()
    )

    return jsonify(
        {
            "data": eods_schema.dump(reports),
            "meta": {
                "weekStart": week_start.isoformat(),
                "weekEnd": today.isoformat(),
                "total": len(reports),
            },
        }
    )


@bp.get("/<string:report_id>")
@jwt_required()
def get_eod(report_id: str):
    report, error = _load_owned_report(EODReport, report_id)
    if error:
        return error
    return jsonify(eod_schema.dump(report))


@bp.patch("/<string:report_id>")
@jwt_required()
def update_eod(report_id: str):
    report, error = _load_owned_report(EODReport, report_id)
    if error:
        return error

    try:
        data = eod_update_schema.load(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return json_error(first_error_message(exc), 400)

    for field, value in data.items():
        setattr(report, field, value)
    db.session.commit()

    return jsonify(eod_schema.dump(report))


@bp.delete("/<string:report_id>")
@jwt_required()
def delete_eod(report_id: str):
    report, error = _load_owned_report(EODReport, report_id)
    if error:
        return error

    db.session.delete(report)
    db.session.commit()
    return jsonify({"msg": "EOD deleted"})
