from datetime import datetime

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import decode_token, jwt_required
from flask_jwt_extended.exceptions import JWTExtendedException
from flask_socketio import join_room, leave_room
from jwt.exceptions import PyJWTError
from sqlalchemy import and_, func, or_
from sqlalchemy.exc import SQLAlchemyError

from chat_events import NullPublisher, create_message, project_room, serialise_message
from extensions import db, socketio
from models import ChatGroup, Message, Project, ProjectAssignment, RoleEnum
from routes.helpers import (
    current_user,
    find_assignment,
    get_by_id,
    is_admin_request,
    json_error,
    parse_uuid,
)

bp = Blueprint("chat", __name__, url_prefix="/api/chat")

DEFAULT_MESSAGE_LIMIT = 50
MAX_MESSAGE_LIMIT = 200


def _chat_publisher():
    return current_app.extensions.get("chat_publisher") or NullPublisher()


def _load_project_for_member(project_id: str):
    """Return ``(project, user, error_response)`` for a chat participant."""

    user = current_user()
    if user is None:
        return None, None, json_error("Unauthorized", 401)

    project = get_by_id(Project, project_id)
    if project is None:
        return None, None, json_error("Project not found", 404)

    if not is_admin_request() and find_assignment(user.id, project.id) is None:
        return None, None, json_error("You are not a member of this project", 403)

    return project, user, None


@bp.get("/<string:project_id>/messages")
@jwt_required()
def list_messages(project_id: str):
    project, _, error = _load_project_for_member(project_id)
    if error:
        return error

    limit = request.args.get("limit", type=int) or DEFAULT_MESSAGE_LIMIT
    limit = max(1, min(limit, MAX_MESSAGE_LIMIT))

    messages = (
        Message.query.join(ChatGroup)
        .filter(ChatGroup.project_id == project.id)
        .order_by(Message.created_at.desc())
        .limit(limit)
        .all()
    )
    messages.reverse()
    return jsonify([serialise_message(message) for message in messages])


@bp.post("/<string:project_id>/messages")
@jwt_required()
def post_message(project_id: str):
    project, user, error = _load_project_for_member(project_id)
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    content = (payload.get("content") or "").strip()
    if not content:
        return json_error("Message content is required", 400)

    try:
        message = create_message(project, user, content, _chat_publisher())
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to send message to project %s", project_id)
        return json_error("Failed to send message", 500)

    return jsonify(serialise_message(message)), 201


@bp.get("/unread-counts")
@jwt_required()
def unread_counts():
    """Messages from other senders newer than the caller's read marker, per project.

    Admins get every project with a chat group; everyone else gets each of
    their assignments, active or not.
    """

    user = current_user()
    if user is None:
        return json_error("Unauthorized", 401)

    others_since_read = and_(
        Message.group_id == ChatGroup.id,
        Message.sender_id != user.id,
        or_(
            ProjectAssignment.last_read_at.is_(None),
            Message.created_at > ProjectAssignment.last_read_at,
        ),
    )

    if is_admin_request():
        query = (
            db.session.query(ChatGroup.project_id, func.count(Message.id))
            .select_from(ChatGroup)
            .outerjoin(
                ProjectAssignment,
                and_(
                    ProjectAssignment.project_id == ChatGroup.project_id,
                    ProjectAssignment.user_id == user.id,
                ),
            )
            .outerjoin(Message, others_since_read)
            .group_by(ChatGroup.project_id)
        )
    else:
        query = (
            db.session.query(ProjectAssignment.project_id, func.count(Message.id))
            .select_from(ProjectAssignment)
            .outerjoin(ChatGroup, ChatGroup.project_id == ProjectAssignment.project_id)
            .outerjoin(Message, others_since_read)
            .filter(ProjectAssignment.user_id == user.id)
            .group_by(ProjectAssignment.project_id)
        )

    try:
        rows = query.all()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to fetch unread counts for user %s", user.id)
        return json_error("Failed to fetch unread counts", 500)

    return jsonify({str(project_id): count for project_id, count in rows})


@bp.post("/<string:project_id>/read")
@jwt_required()
def mark_read(project_id: str):
    project, user, error = _load_project_for_member(project_id)
    if error:
        return error

    assignment = find_assignment(user.id, project.id)
    if assignment is None:
        return json_error("Assignment not found", 404)

    assignment.last_read_at = datetime.utcnow()
    db.session.commit()
    return jsonify({"success": True, "lastReadAt": assignment.last_read_at.isoformat()})


# ---------------------------------------------------------------------------
# Socket.IO room membership
# ---------------------------------------------------------------------------

@socketio.on("join-project")
def join_project(data):
    """Subscribe the socket to a project's room after checking the token."""

    payload = data or {}
    try:
        claims = decode_token(payload.get("token") or "")
    except (JWTExtendedException, PyJWTError):
        return {"ok": False, "error": "Unauthorized"}

    project_id = parse_uuid(payload.get("projectId"))
    user_id = parse_uuid(claims.get("sub"))
    if project_id is None or user_id is None:
        return {"ok": False, "error": "projectId is required"}

    if claims.get("role") != RoleEnum.admin.value and find_assignment(user_id, project_id) is None:
        return {"ok": False, "error": "You are not a member of this project"}

    join_room(project_room(project_id))
    return {"ok": True}


@socketio.on("leave-project")
def leave_project(data):
    project_id = parse_uuid((data or {}).get("projectId"))
    if project_id is not None:
        leave_room(project_room(project_id))
    return {"ok": True}
