"""Administrative endpoints for managing application users."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_jwt_extended import get_jwt_identity, jwt_required
from marshmallow import ValidationError
from sqlalchemy import asc, func

from extensions import db
from models import RoleEnum, User
from routes.helpers import get_by_id, json_error, parse_uuid, require_admin
from schemas import UserCreateSchema, UserSchema, first_error_message


bp = Blueprint("users", __name__, url_prefix="/api/users")

user_schema = UserSchema()
users_schema = UserSchema(many=True)
user_create_schema = UserCreateSchema()


def _normalise_email(value: str | None) -> str:
    return (value or "").strip().lower()


def _email_taken(email: str, *, exclude_id=None) -> bool:
    query = User.query.filter(func.lower(User.email) == email.lower())
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    return query.first() is not None


@bp.get("")
@bp.get("/")
@jwt_required()
def list_users():
    """Return a list of all users for administrative management."""

    error = require_admin()
    if error:
        return error

    users = User.query.order_by(asc(User.name)).all()
    return jsonify(users_schema.dump(users))


@bp.post("")
@bp.post("/")
@jwt_required()
def create_user():
    """Create a new application user."""

    error = require_admin()
    if error:
        return error

    try:
        data = user_create_schema.load(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return json_error(first_error_message(exc), 400)

    if _email_taken(data["email"]):
        return json_error("Email already registered", 409)

    user = User(
        name=data["name"],
        email=data["email"],
        role=RoleEnum(data["role"]),
        active=data["active"],
    )
    user.set_password(data["password"])
    db.session.add(user)
    db.session.commit()

    return jsonify(user_schema.dump(user)), 201


@bp.patch("/<string:user_id>")
@jwt_required()
def update_user(user_id: str):
    """Update the selected user's details."""

    error = require_admin()
    if error:
        return error

    user = get_by_id(User, user_id)
    if not user:
        return json_error("User not found", 404)

    payload = request.get_json(silent=True) or {}

    name = (payload.get("name") or user.name or "").strip()
    email = _normalise_email(payload.get("email")) or user.email
    role_value = payload.get("role") or user.role.value
    active = bool(payload.get("active", user.active))
    password = (payload.get("password") or "").strip()

    if not name or not email:
        return json_error("Name and email are required", 400)

    try:
        role = RoleEnum(role_value)
    except ValueError:
        return json_error("Invalid role", 400)

    if _email_taken(email, exclude_id=user.id):
        return json_error("Email already registered", 409)

    is_self = parse_uuid(get_jwt_identity()) == user.id
    if is_self and (not active or role != RoleEnum.admin):
        return json_error("You cannot deactivate or demote your own account.", 400)

    user.name = name
    user.email = email
    user.role = role
    user.active = active

    if password:
        user.set_password(password)

    db.session.commit()

    return jsonify(user_schema.dump(user))
