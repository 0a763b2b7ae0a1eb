from flask import Blueprint, request, jsonify
from flask_jwt_extended import (
    create_access_token,
    jwt_required,
    set_access_cookies,
    unset_jwt_cookies,
)
from sqlalchemy import func

from models import User
from routes.helpers import current_user, json_error
from schemas import UserSchema

bp = Blueprint("auth", __name__, url_prefix="/api/auth")

user_schema = UserSchema()


@bp.post("/login")
def login():
    payload = request.get_json(silent=True)
    if not payload:
        payload = request.form.to_dict() if request.form else {}

    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""

    if not email or not password:
        return json_error("Email and password are required", 400)

    u = User.query.filter(func.lower(User.email) == email).first()
    if not u or not u.check_password(password) or not u.active:
        return json_error("Invalid email or password", 401)

    token = create_access_token(identity=str(u.id), additional_claims={"role": u.role.value})
    response = jsonify(access_token=token, user=user_schema.dump(u))
    set_access_cookies(response, token)
    return response


@bp.post("/logout")
def logout():
    response = jsonify({"msg": "Logged out"})
    unset_jwt_cookies(response)
    return response


@bp.get("/me")
@jwt_required()
def me():
    u = current_user()
    if u is None or not u.active:
        return json_error("User not found", 404)
    return jsonify(user_schema.dump(u))
