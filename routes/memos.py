from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required
from marshmallow import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import MEMO_SHORT_MAX_LENGTH, Memo, MemoType
from routes.eods import (
    _day_range_filter,
    _day_start,
    _filtered_report_query,
    _load_owned_report,
    _resolve_report_owner,
)
from routes.helpers import json_error
from schemas import MemoCreateSchema, MemoSchema, MemoUpdateSchema, first_error_message

bp = Blueprint("memos", __name__, url_prefix="/api/memos")

memo_schema = MemoSchema()
memos_schema = MemoSchema(many=True)
memo_create_schema = MemoCreateSchema()
memo_update_schema = MemoUpdateSchema()


@bp.get("")
@jwt_required()
def list_memos():
    memo_type = None
    memo_type_value = (request.args.get("memoType") or "").strip().lower()
    if memo_type_value:
        try:
            memo_type = MemoType(memo_type_value)
        except ValueError:
            return json_error("memoType must be one of: short, universal", 400)

    try:
        query = _filtered_report_query(Memo)
    except ValueError:
        return json_error("Dates must use YYYY-MM-DD format", 400)
    if memo_type is not None:
        query = query.filter(Memo.memo_type == memo_type)
    return jsonify(memos_schema.dump(query.all()))


@bp.post("")
@jwt_required()
def create_memo():
    try:
        data = memo_create_schema.load(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return json_error(first_error_message(exc), 400)

    owner, project, error = _resolve_report_owner(data)
    if error:
        return error

    memo_type = MemoType(data["memo_type"])
    report_day = data["report_date"]
    # A short and a universal memo may share a day; the compliance
    # calendar counts them once.
    existing = Memo.query.filter(
        Memo.user_id == owner.id,
        Memo.project_id == project.id,
        Memo.memo_type == memo_type,
        *_day_range_filter(Memo, report_day, report_day),
    ).first()
    if existing:
        return json_error("Memo already exists for this date", 409)

    memo = Memo(
        user_id=owner.id,
        project_id=project.id,
        report_date=_day_start(report_day),
        memo_content=data["memo_content"],
        memo_type=memo_type,
    )
    db.session.add(memo)
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to create memo")
        return json_error("Failed to create memo", 500)

    return jsonify(memo_schema.dump(memo)), 201


@bp.get("/<string:memo_id>")
@jwt_required()
def get_memo(memo_id: str):
    memo, error = _load_owned_report(Memo, memo_id)
    if error:
        return error
    return jsonify(memo_schema.dump(memo))


@bp.patch("/<string:memo_id>")
@jwt_required()
def update_memo(memo_id: str):
    memo, error = _load_owned_report(Memo, memo_id)
    if error:
        return error

    try:
        data = memo_update_schema.load(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return json_error(first_error_message(exc), 400)

    content = data.get("memo_content")
    if content is not None:
        if memo.memo_type == MemoType.short and len(content) > MEMO_SHORT_MAX_LENGTH:
            return json_error(f"Max {MEMO_SHORT_MAX_LENGTH} characters", 400)
        memo.memo_content = content
    db.session.commit()

    return jsonify(memo_schema.dump(memo))


@bp.delete("/<string:memo_id>")
@jwt_required()
def delete_memo(memo_id: str):
    memo, error = _load_owned_report(Memo, memo_id)
    if error:
        return error

    db.session.delete(memo)
    db.session.commit()
    return jsonify({"msg": "Memo deleted"})
