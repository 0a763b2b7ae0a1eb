import calendar
import os
from datetime import date as dt_date, datetime, time as dt_time, timedelta
from typing import Optional, Tuple

import click
from alembic import command
from alembic.config import Config as AlembicConfig
from alembic.script import ScriptDirectory
from flask import Flask, jsonify
from sqlalchemy import func, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import OperationalError, ProgrammingError

from chat_events import NullPublisher, SocketIOPublisher
from config import Config, _env_sqlalchemy_database_uri, current_database_url
from extensions import db, migrate, jwt, socketio
from models import (
    ChatGroup,
    Client,
    EODReport,
    Memo,
    MemoType,
    Message,
    Project,
    ProjectAssignment,
    ProjectStatus,
    RoleEnum,
    User,
)
from routes import (
    admin_stats,
    auth,
    chat,
    clients,
    eods,
    memos,
    projects,
    users,
)


if os.name != "nt":  # pragma: no cover - platform dependent import
    import fcntl  # type: ignore[import-not-found]
else:  # pragma: no cover - Windows fallback
    fcntl = None  # type: ignore[assignment]


def _ensure_sqlite_directory(database_url: str | None) -> None:
    """Create the parent folder of a file-backed SQLite database.

    Server databases (PostgreSQL) are expected to be provisioned already.
    """

    if not database_url:
        return

    url = make_url(database_url)
    if not (url.get_backend_name() or "").lower().startswith("sqlite"):
        return

    database_path = url.database
    if not database_path or database_path == ":memory:":
        return

    directory = os.path.dirname(os.path.abspath(database_path))
    if directory:
        os.makedirs(directory, exist_ok=True)


def _run_database_migrations(app: Flask) -> None:
    """Apply Alembic migrations if the schema is not up-to-date."""

    database_uri = app.config.get("SQLALCHEMY_DATABASE_URI")
    if not database_uri:
        return

    if database_uri.startswith("sqlite") and ":memory:" in database_uri:
        return

    migrations_dir = os.path.join(app.root_path, "migrations")
    alembic_ini = os.path.join(migrations_dir, "alembic.ini")
    if not os.path.exists(alembic_ini):
        return

    config = AlembicConfig(alembic_ini)
    config.set_main_option("script_location", migrations_dir)

    script = ScriptDirectory.from_config(config)
    head_revision = script.get_current_head()
    if not head_revision:
        return

    def _current_revision() -> str | None:
        try:
            with db.engine.connect() as connection:
                return connection.execute(text("SELECT version_num FROM alembic_version")).scalar()
        except (OperationalError, ProgrammingError):
            return None

    with app.app_context():
        # Flask-SQLAlchemy resolves relative SQLite paths against the instance
        # folder, so hand Alembic the engine's URL rather than the raw setting.
        engine_url = db.engine.url.render_as_string(hide_password=False)
        config.set_main_option("sqlalchemy.url", engine_url.replace("%", "%%"))

        if _current_revision() == head_revision:
            return

        lock_path = os.path.join(app.instance_path, "alembic.lock")
        os.makedirs(app.instance_path, exist_ok=True)
        lock_file = open(lock_path, "w")
        try:
            if fcntl is not None:
                fcntl.flock(lock_file, fcntl.LOCK_EX)

            if _current_revision() == head_revision:
                return

            app.logger.info("Applying database migrations…")
            try:
                command.upgrade(config, "head")
            except Exception:
                if _current_revision() != head_revision:
                    raise
        finally:
            if fcntl is not None:
                fcntl.flock(lock_file, fcntl.LOCK_UN)
            lock_file.close()


def create_app():
    app = Flask(__name__)
    app.config.from_object(Config)
    database_url = _env_sqlalchemy_database_uri() or current_database_url()
    _ensure_sqlite_directory(database_url)
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    db.init_app(app)
    migrate.init_app(app, db)
    _run_database_migrations(app)
    jwt.init_app(app)
    socketio.init_app(
        app,
        cors_allowed_origins=app.config["CORS_ALLOWED_ORIGINS"],
        message_queue=app.config.get("SOCKETIO_MESSAGE_QUEUE"),
    )

    if app.config.get("CHAT_PUBLISH_ENABLED", True):
        app.extensions["chat_publisher"] = SocketIOPublisher(socketio)
    else:
        app.extensions["chat_publisher"] = NullPublisher()

    @jwt.additional_claims_loader
    def add_claims(identity):
        u = db.session.get(User, identity) if identity else None
        return {"role": u.role.value if u else None}

    app.register_blueprint(auth.bp)
    app.register_blueprint(users.bp)
    app.register_blueprint(clients.bp)
    app.register_blueprint(projects.bp)
    app.register_blueprint(eods.bp)
    app.register_blueprint(memos.bp)
    app.register_blueprint(chat.bp)
    app.register_blueprint(admin_stats.bp)

    @app.get("/api/health")
    def health(): return jsonify({"ok": True})

    return app


app = create_app()


def _normalize_email(value: str) -> str:
    return (value or "").strip().lower()


def _ensure_admin_user(
    flask_app=None,
    *,
    email: Optional[str] = None,
    password: Optional[str] = None,
    name: Optional[str] = None,
    ensure_if_missing: bool = True,
    force_reset: bool = False,
) -> Tuple[str, str]:
    """Ensure an admin user exists and optionally reset its password.

    Returns a tuple of (status, normalized_email) where status is one of
    ``{"created", "reset", "updated", "skipped"}``.
    """

    target_app = flask_app or globals().get("app")
    if target_app is None:
        return "skipped", _normalize_email(email)

    normalized_email = _normalize_email(email or os.getenv("ADMIN_EMAIL", "admin@tracker.local"))
    password = password or os.getenv("ADMIN_PASSWORD", "Admin@123")
    provided_name = name if name is not None else os.getenv("ADMIN_NAME")
    target_name = (provided_name or "").strip() or None

    with target_app.app_context():
        try:
            admin = User.query.filter(func.lower(User.email) == normalized_email).first()
        except (OperationalError, ProgrammingError):
            # Tables might not be ready yet (e.g. before migrations run)
            db.session.rollback()
            return "skipped", normalized_email

        if admin:
            status = "skipped"
            if admin.role != RoleEnum.admin:
                admin.role = RoleEnum.admin
                status = "updated"
            if target_name and admin.name != target_name:
                admin.name = target_name
                status = "updated"
            if force_reset:
                admin.set_password(password)
                status = "reset"

            if status != "skipped":
                db.session.commit()
            return status, normalized_email

        if not ensure_if_missing:
            return "skipped", normalized_email

        if not force_reset:
            # Avoid creating duplicate admins when one already exists
            existing_admin = User.query.filter_by(role=RoleEnum.admin).first()
            if existing_admin:
                return "skipped", normalized_email

        admin = User(
            name=target_name or "Admin",
            email=normalized_email,
            role=RoleEnum.admin,
            active=True,
        )
        admin.set_password(password)
        db.session.add(admin)
        db.session.commit()
        return "created", normalized_email


def _bootstrap_admin_user(flask_app=None):
    status, normalized_email = _ensure_admin_user(
        flask_app=flask_app,
        force_reset=os.getenv("RUN_SEED_ADMIN") == "1",
    )
    target_app = flask_app or app
    if status == "created":
        target_app.logger.info("Admin created: %s", normalized_email)
    elif status == "reset":
        target_app.logger.info("Admin password reset: %s", normalized_email)
    elif status == "updated":
        target_app.logger.info("Admin role updated: %s", normalized_email)


# Call the hook at startup (idempotent)
_bootstrap_admin_user(flask_app=app)


# ---- CLI: seed or reset admin ----
@app.cli.command("seed-admin")
@click.option("--email", default="admin@tracker.local", help="Admin email")
@click.option("--password", default="Admin@123", help="Admin password")
@click.option("--name", default="Admin", help="Admin display name")
def seed_admin(email, password, name):
    """Create or reset the admin user."""
    with app.app_context():
        status, normalized_email = _ensure_admin_user(
            flask_app=app,
            email=email,
            password=password,
            name=name,
            ensure_if_missing=True,
            force_reset=True,
        )

        if status == "created":
            click.echo(f"✅ Admin created: {normalized_email}")
        elif status == "reset":
            click.echo(f"✅ Admin password reset: {normalized_email}")
        elif status == "updated":
            click.echo(f"✅ Admin role updated: {normalized_email}")
        else:
            click.echo(f"ℹ️ Admin already up-to-date: {normalized_email}")


def _ensure_developer(email: str, name: str) -> User:
    user = User.query.filter(func.lower(User.email) == email.lower()).first()
    if user is None:
        user = User(name=name, email=email, role=RoleEnum.developer, active=True)
        user.set_password("Password!1")
        db.session.add(user)
    return user


# ---- CLI: seed compliance calendar demo ----
@app.cli.command("seed-demo")
@click.option("--month", "period", help="Target month in YYYY-MM format (defaults to current month)")
def seed_demo(period):
    """Populate a demo project with assignments, EODs and memos for one month."""

    with app.app_context():
        if period:
            try:
                anchor = datetime.strptime(f"{period}-01", "%Y-%m-%d").date()
            except ValueError as exc:  # pragma: no cover - CLI validation
                raise click.BadParameter("Month must use YYYY-MM format.") from exc
        else:
            anchor = dt_date.today().replace(day=1)

        month_end = anchor.replace(day=calendar.monthrange(anchor.year, anchor.month)[1])
        last_day = min(month_end, dt_date.today())

        client = Client.query.filter_by(name="Demo Client").first()
        if client is None:
            client = Client(name="Demo Client", email="demo@client.example")
            db.session.add(client)
            db.session.flush()

        project = Project.query.filter_by(name="Demo Project").first()
        if project is None:
            project = Project(name="Demo Project", client_id=client.id, status=ProjectStatus.active)
            db.session.add(project)
            db.session.flush()

        developers = [
            _ensure_developer("ada@tracker.local", "Ada"),
            _ensure_developer("linus@tracker.local", "Linus"),
            _ensure_developer("grace@tracker.local", "Grace"),
        ]
        db.session.flush()

        assigned_at = datetime.combine(anchor, dt_time(9, 0))
        for developer in developers:
            assignment = ProjectAssignment.query.filter_by(
                user_id=developer.id, project_id=project.id
            ).one_or_none()
            if assignment is None:
                db.session.add(
                    ProjectAssignment(
                        user_id=developer.id,
                        project_id=project.id,
                        assigned_at=assigned_at,
                        is_active=True,
                    )
                )

        created = 0
        day = anchor
        while day <= last_day:
            if day.weekday() < 5:
                report_date = datetime.combine(day, dt_time.min)
                for index, developer in enumerate(developers):
                    # Every third developer skips odd days so the calendar shows misses.
                    if index == 2 and day.day % 2:
                        continue
                    exists = EODReport.query.filter_by(
                        user_id=developer.id, project_id=project.id, report_date=report_date
                    ).first()
                    if exists:
                        continue
                    submitted_at = datetime.combine(day, dt_time(17, 30 + index))
                    db.session.add(
                        EODReport(
                            user_id=developer.id,
                            project_id=project.id,
                            report_date=report_date,
                            actual_update=f"Worked on demo tasks ({day.isoformat()})",
                            created_at=submitted_at,
                        )
                    )
                    db.session.add(
                        Memo(
                            user_id=developer.id,
                            project_id=project.id,
                            report_date=report_date,
                            memo_content="Progressing as planned.",
                            memo_type=MemoType.short,
                            created_at=submitted_at,
                        )
                    )
                    created += 1
            day += timedelta(days=1)

        db.session.commit()
        click.echo(f"✅ Seeded {created} EOD/memo pairs between {anchor} and {last_day}.")


__all__ = [
    "app",
    "create_app",
    "db",
    "ChatGroup",
    "Client",
    "EODReport",
    "Memo",
    "MemoType",
    "Message",
    "Project",
    "ProjectAssignment",
    "ProjectStatus",
    "RoleEnum",
    "User",
]


if __name__ == "__main__":
    socketio.run(app, debug=True, port=int(os.getenv("PORT", 5000)))
