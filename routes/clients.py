from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required
from marshmallow import ValidationError
from sqlalchemy import asc
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import Client, Project
from routes.helpers import get_by_id, json_error, require_admin
from schemas import ClientCreateSchema, ClientSchema, first_error_message

bp = Blueprint("clients", __name__, url_prefix="/api/clients")

client_schema = ClientSchema()
clients_schema = ClientSchema(many=True)
client_create_schema = ClientCreateSchema()


@bp.get("")
@jwt_required()
def list_clients():
    clients = Client.query.order_by(asc(Client.name)).all()
    return jsonify(clients_schema.dump(clients))


@bp.post("")
@jwt_required()
def create_client():
    error = require_admin()
    if error:
        return error

    try:
        data = client_create_schema.load(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return json_error(first_error_message(exc), 400)

    client = Client(**data)
    db.session.add(client)
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to create client")
        return json_error("Failed to create client", 500)

    return jsonify(client_schema.dump(client)), 201


@bp.get("/<string:client_id>")
@jwt_required()
def get_client(client_id: str):
    client = get_by_id(Client, client_id)
    if client is None:
        return json_error("Client not found", 404)
    return jsonify(client_schema.dump(client))


@bp.patch("/<string:client_id>")
@jwt_required()
def update_client(client_id: str):
    error = require_admin()
    if error:
        return error

    client = get_by_id(Client, client_id)
    if client is None:
        return json_error("Client not found", 404)

    try:
        data = client_create_schema.load(request.get_json(silent=True) or {}, partial=True)
    except ValidationError as exc:
        return json_error(first_error_message(exc), 400)

    for field, value in data.items():
        setattr(client, field, value)
    db.session.commit()

    return jsonify(client_schema.dump(client))


@bp.delete("/<string:client_id>")
@jwt_required()
def delete_client(client_id: str):
    error = require_admin()
    if error:
        return error

    client = get_by_id(Client, client_id)
    if client is None:
        return json_error("Client not found", 404)

    if Project.query.filter_by(client_id=client.id).count():
        return json_error("Client still has projects", 409)

    db.session.delete(client)
    db.session.commit()
    return jsonify({"msg": "Client deleted"})
