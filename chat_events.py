"""Project chat message creation and real-time fan-out."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Protocol

from flask import current_app

from extensions import db
from models import ChatGroup, Message, Project, User

NEW_MESSAGE_EVENT = "new-message"


class EventPublisher(Protocol):
    def publish(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        ...


class NullPublisher:
    """Publisher used when real-time delivery is disabled."""

    def publish(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        return None


class SocketIOPublisher:
    """Emit events to Socket.IO rooms through a ``flask_socketio.SocketIO``."""

    def __init__(self, socketio):
        self._socketio = socketio

    def publish(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        self._socketio.emit(event, payload, to=room)


def project_room(project_id) -> str:
    return f"project:{project_id}"


def serialise_message(message: Message) -> Dict[str, Any]:
    sender = message.sender
    return {
        "id": str(message.id),
        "groupId": str(message.group_id),
        "senderId": str(message.sender_id),
        "senderName": sender.name if sender else None,
        "content": message.content,
        "createdAt": message.created_at.isoformat() if message.created_at else None,
    }


def get_or_create_group(project: Project) -> ChatGroup:
    group = ChatGroup.query.filter_by(project_id=project.id).one_or_none()
    if group is None:
        group = ChatGroup(name=project.name, project_id=project.id)
        db.session.add(group)
        db.session.flush()
    return group


def create_message(
    project: Project,
    sender: User,
    content: str,
    publisher: EventPublisher,
) -> Message:
    """Persist a chat message and announce it to the project's room.

    The message is committed before publishing; a publisher failure is logged
    and does not undo the write.
    """

    group = get_or_create_group(project)
    message = Message(
        sender_id=sender.id,
        group_id=group.id,
        content=content,
        created_at=datetime.utcnow(),
    )
    db.session.add(message)
    db.session.commit()

    try:
        publisher.publish(project_room(project.id), NEW_MESSAGE_EVENT, serialise_message(message))
    except Exception:
        current_app.logger.warning("Failed to publish chat message %s", message.id, exc_info=True)

    return message
