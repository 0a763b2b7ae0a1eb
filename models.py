import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import UniqueConstraint
from sqlalchemy.types import CHAR, TypeDecorator

from extensions import db
from werkzeug.security import generate_password_hash, check_password_hash


class GUID(TypeDecorator):
    """Platform-independent GUID type."""

    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):  # pragma: no cover - SQLAlchemy hook
        # Identifiers are stored as CHAR(36) on every backend so SQLite test
        # databases and PostgreSQL share the same migrations.
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):  # pragma: no cover - SQLAlchemy hook
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return str(value)
        return str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):  # pragma: no cover - SQLAlchemy hook
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class RoleEnum(str, Enum):
    admin = "admin"
    developer = "developer"
    manager = "manager"


class ProjectStatus(str, Enum):
    active = "active"
    completed = "completed"
    on_hold = "on-hold"


class MemoType(str, Enum):
    short = "short"
    universal = "universal"


MEMO_SHORT_MAX_LENGTH = 140


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.Enum(RoleEnum), nullable=False, default=RoleEnum.developer)
    active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def set_password(self, pw): self.password_hash = generate_password_hash(pw)
    def check_password(self, pw): return check_password_hash(self.password_hash, pw)

    @property
    def is_admin(self) -> bool:
        return self.role == RoleEnum.admin


class Client(db.Model):
    __tablename__ = "clients"

    id = db.Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200))
    description = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"<Client {self.name}>"


class Project(db.Model):
    __tablename__ = "projects"

    id = db.Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = db.Column(db.String(200), nullable=False)
    client_id = db.Column(GUID(), db.ForeignKey("clients.id"), nullable=False, index=True)
    status = db.Column(
        db.Enum(
            ProjectStatus,
            values_callable=_enum_values,
            name="projectstatus",
            validate_strings=True,
        ),
        nullable=False,
        default=ProjectStatus.active,
    )
    total_time = db.Column(db.String(40))
    completed_time = db.Column(db.String(40))
    description = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    client = db.relationship("Client", backref=db.backref("projects", lazy="dynamic"))


class ProjectAssignment(db.Model):
    """A user's membership in a project.

    ``is_active`` reflects the current state only; ``last_activated_at`` records
    the most recent reactivation and is informational.
    """

    __tablename__ = "user_project_assignments"
    __table_args__ = (
        UniqueConstraint("user_id", "project_id", name="uq_user_project_assignment"),
    )

    id = db.Column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id = db.Column(GUID(), db.ForeignKey("users.id"), nullable=False, index=True)
    project_id = db.Column(
        GUID(), db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    assigned_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    last_activated_at = db.Column(db.DateTime, nullable=True)
    last_read_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = db.relationship("User", backref=db.backref("assignments", cascade="all,delete-orphan"))
    project = db.relationship(
        "Project",
        backref=db.backref("assignments", cascade="all,delete-orphan"),
    )


class EODReport(db.Model):
    """End-of-day update filed by a developer for one project and day."""

    __tablename__ = "eod_reports"

    id = db.Column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id = db.Column(GUID(), db.ForeignKey("users.id"), nullable=False, index=True)
    project_id = db.Column(
        GUID(), db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    report_date = db.Column(db.DateTime, nullable=False, index=True)
    client_update = db.Column(db.Text)
    actual_update = db.Column(db.Text, nullable=False)
    hours_spent = db.Column(db.Numeric(5, 2))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = db.relationship("User")
    project = db.relationship(
        "Project",
        backref=db.backref("eod_reports", cascade="all,delete-orphan", lazy="dynamic"),
    )


class Memo(db.Model):
    __tablename__ = "memos"

    id = db.Column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id = db.Column(GUID(), db.ForeignKey("users.id"), nullable=False, index=True)
    project_id = db.Column(
        GUID(), db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    report_date = db.Column(db.DateTime, nullable=False, index=True)
    memo_content = db.Column(db.Text)
    memo_type = db.Column(
        db.Enum(
            MemoType,
            values_callable=_enum_values,
            name="memotype",
            validate_strings=True,
        ),
        nullable=False,
        default=MemoType.short,
    )
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = db.relationship("User")
    project = db.relationship(
        "Project",
        backref=db.backref("memos", cascade="all,delete-orphan", lazy="dynamic"),
    )


class ChatGroup(db.Model):
    __tablename__ = "chat_groups"

    id = db.Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = db.Column(db.String(200), nullable=False)
    project_id = db.Column(
        GUID(), db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    project = db.relationship(
        "Project",
        backref=db.backref("chat_group", uselist=False, cascade="all,delete-orphan"),
    )


class Message(db.Model):
    __tablename__ = "messages"

    id = db.Column(GUID(), primary_key=True, default=uuid.uuid4)
    sender_id = db.Column(GUID(), db.ForeignKey("users.id"), nullable=False)
    group_id = db.Column(
        GUID(), db.ForeignKey("chat_groups.id", ondelete="CASCADE"), nullable=False, index=True
    )
    content = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    sender = db.relationship("User")
    group = db.relationship(
        "ChatGroup",
        backref=db.backref("messages", cascade="all,delete-orphan", lazy="dynamic"),
    )
