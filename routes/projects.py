"""Projects and the user-project assignments the compliance calendar reads."""

from datetime import datetime

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required
from marshmallow import ValidationError
from sqlalchemy import asc
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import Client, Project, ProjectAssignment, ProjectStatus, User
from routes.helpers import (
    current_user,
    find_assignment,
    get_by_id,
    is_admin_request,
    json_error,
    parse_uuid,
    require_admin,
)
from schemas import AssignmentSchema, ProjectCreateSchema, ProjectSchema, first_error_message

bp = Blueprint("projects", __name__, url_prefix="/api/projects")

project_schema = ProjectSchema()
projects_schema = ProjectSchema(many=True)
project_create_schema = ProjectCreateSchema()
assignment_schema = AssignmentSchema()
assignments_schema = AssignmentSchema(many=True)


def _serialise_assignment_state(assignment: ProjectAssignment) -> dict:
    return {
        "assignedAt": assignment.assigned_at.isoformat() if assignment.assigned_at else None,
        "isActive": bool(assignment.is_active),
        "lastActivatedAt": (
            assignment.last_activated_at.isoformat() if assignment.last_activated_at else None
        ),
    }


@bp.get("")
@jwt_required()
def list_projects():
    """Admins see every project; other users see their assignments."""

    if is_admin_request():
        projects = Project.query.order_by(asc(Project.name)).all()
        return jsonify(projects_schema.dump(projects))

    user = current_user()
    if user is None:
        return json_error("User not found", 404)

    assignments = (
        ProjectAssignment.query.join(Project)
        .filter(ProjectAssignment.user_id == user.id)
        .order_by(asc(Project.name))
        .all()
    )
    payload = []
    for assignment in assignments:
        item = project_schema.dump(assignment.project)
        item.update(_serialise_assignment_state(assignment))
        payload.append(item)
    return jsonify(payload)


@bp.post("")
@jwt_required()
def create_project():
    error = require_admin()
    if error:
        return error

    try:
        data = project_create_schema.load(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return json_error(first_error_message(exc), 400)

    if db.session.get(Client, data["client_id"]) is None:
        return json_error("Client not found", 404)

    status = ProjectStatus(data.pop("status", ProjectStatus.active.value))
    project = Project(status=status, **data)
    db.session.add(project)
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to create project")
        return json_error("Failed to create project", 500)

    return jsonify(project_schema.dump(project)), 201


@bp.get("/<string:project_id>")
@jwt_required()
def get_project(project_id: str):
    project = get_by_id(Project, project_id)
    if project is None:
        return json_error("Project not found", 404)

    payload = project_schema.dump(project)
    if is_admin_request():
        payload["assignments"] = assignments_schema.dump(project.assignments)
    return jsonify(payload)


@bp.patch("/<string:project_id>")
@jwt_required()
def update_project(project_id: str):
    error = require_admin()
    if error:
        return error

    project = get_by_id(Project, project_id)
    if project is None:
        return json_error("Project not found", 404)

    try:
        data = project_create_schema.load(request.get_json(silent=True) or {}, partial=True)
    except ValidationError as exc:
        return json_error(first_error_message(exc), 400)

    if "client_id" in data and db.session.get(Client, data["client_id"]) is None:
        return json_error("Client not found", 404)
    if "status" in data:
        data["status"] = ProjectStatus(data["status"])

    for field, value in data.items():
        setattr(project, field, value)
    db.session.commit()

    return jsonify(project_schema.dump(project))


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------

@bp.post("/<string:project_id>/assignments")
@jwt_required()
def assign_user(project_id: str):
    """Assign a user to the project, reactivating an existing assignment."""

    error = require_admin()
    if error:
        return error

    project = get_by_id(Project, project_id)
    if project is None:
        return json_error("Project not found", 404)

    payload = request.get_json(silent=True) or {}
    user = get_by_id(User, payload.get("userId"))
    if user is None:
        return json_error("User not found", 404)

    now = datetime.utcnow()
    assignment = find_assignment(user.id, project.id)
    created = assignment is None
    if created:
        assignment = ProjectAssignment(
            user_id=user.id,
            project_id=project.id,
            assigned_at=now,
            is_active=True,
            last_read_at=now,
        )
        db.session.add(assignment)
    elif not assignment.is_active:
        assignment.is_active = True
        assignment.last_activated_at = now

    db.session.commit()
    return jsonify(assignment_schema.dump(assignment)), 201 if created else 200


@bp.delete("/<string:project_id>/assignments/<string:user_id>")
@jwt_required()
def unassign_user(project_id: str, user_id: str):
    error = require_admin()
    if error:
        return error

    assignment = find_assignment(parse_uuid(user_id), parse_uuid(project_id))
    if assignment is None:
        return json_error("Assignment not found", 404)

    db.session.delete(assignment)
    db.session.commit()
    return jsonify({"msg": "Assignment removed"})


@bp.get("/<string:project_id>/assignment")
@jwt_required()
def get_assignment(project_id: str):
    user_param = request.args.get("userId")
    if not user_param:
        return json_error("User ID is required", 400)

    assignment = find_assignment(parse_uuid(user_param), parse_uuid(project_id))
    if assignment is None:
        return json_error("Assignment not found", 404)

    return jsonify(_serialise_assignment_state(assignment))


@bp.patch("/<string:project_id>/assignment/toggle-active")
@jwt_required()
def toggle_assignment(project_id: str):
    """Activate or deactivate an assignment.

    Admins may toggle any assignment; other users only their own.
    """

    payload = request.get_json(silent=True) or {}
    target_user_id = parse_uuid(payload.get("userId"))
    if target_user_id is None:
        return json_error("User ID is required", 400)
    if "isActive" not in payload:
        return json_error("isActive is required", 400)
    is_active = payload.get("isActive")
    if not isinstance(is_active, bool):
        return json_error("isActive must be a boolean", 400)

    requester = current_user()
    if requester is None:
        return json_error("Unauthorized", 401)
    if not is_admin_request() and requester.id != target_user_id:
        return json_error("You can only manage your own active projects", 403)

    project = get_by_id(Project, project_id)
    if project is None:
        return json_error("Project not found", 404)
    if project.status != ProjectStatus.active:
        return json_error(
            f"Cannot activate project because it is {project.status.value}", 403
        )

    assignment = find_assignment(target_user_id, project.id)
    if assignment is None:
        return json_error("Assignment not found", 404)

    assignment.is_active = is_active
    if is_active:
        assignment.last_activated_at = datetime.utcnow()

    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Error toggling assignment for project %s", project_id)
        return json_error("Failed to update assignment", 500)

    return jsonify({"success": True, "isActive": bool(assignment.is_active)})
