"""Shared request helpers for the API blueprints."""

from __future__ import annotations

import uuid
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import current_app, jsonify
from flask_jwt_extended import get_jwt, get_jwt_identity

from extensions import db
from models import ProjectAssignment, RoleEnum, User

UTC_ZONE = ZoneInfo("UTC")


def json_error(message: str, status: int):
    return jsonify({"error": message}), status


def require_role(*roles):
    claims = get_jwt()
    try:
        current_role = RoleEnum(claims.get("role"))
    except (ValueError, TypeError):
        return False
    return current_role in roles


def require_admin() -> Any:
    """Return an error response unless the caller is an admin."""

    if not require_role(RoleEnum.admin):
        return json_error("Admins only", 403)
    return None


def is_admin_request() -> bool:
    return require_role(RoleEnum.admin)


def parse_uuid(value) -> uuid.UUID | None:
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value).strip())
    except (TypeError, ValueError):
        return None


def current_user() -> User | None:
    identity = parse_uuid(get_jwt_identity())
    if identity is None:
        return None
    return db.session.get(User, identity)


def find_assignment(user_id, project_id) -> ProjectAssignment | None:
    return ProjectAssignment.query.filter_by(user_id=user_id, project_id=project_id).one_or_none()


def app_timezone():
    """Zone used for "today" and for rendering submission times."""

    name = current_app.config.get("APP_TIMEZONE") or "UTC"
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        current_app.logger.warning("Unknown APP_TIMEZONE %r; falling back to UTC", name)
        return UTC_ZONE


def get_by_id(model, raw_id):
    """Load ``model`` by a UUID path parameter; None when malformed or missing."""

    identifier = parse_uuid(raw_id)
    if identifier is None:
        return None
    return db.session.get(model, identifier)
