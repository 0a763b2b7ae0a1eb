from datetime import date, datetime

from marshmallow import (
    EXCLUDE,
    Schema,
    ValidationError,
    fields,
    pre_load,
    validates,
    validates_schema,
)
from marshmallow.validate import Length, OneOf, Range

from compliance import day_key
from models import MEMO_SHORT_MAX_LENGTH, MemoType, ProjectStatus, RoleEnum


# --- helpers ---------------------------------------------------------------

PROJECT_STATUS_VALUES = [status.value for status in ProjectStatus]
MEMO_TYPE_VALUES = [memo_type.value for memo_type in MemoType]


def _parse_flexible_date(v, *, label="reportDate"):
    """Return a date from YYYY-MM-DD, an ISO timestamp or MM/DD/YYYY; None if empty."""
    if not v:
        return None
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, date):
        return v
    if isinstance(v, str):
        v = v.strip()
        try:
            return datetime.fromisoformat(v.replace("Z", "+00:00")).date()
        except ValueError:
            pass
        for fmt in ("%Y-%m-%d", "%m/%d/%Y"):
            try:
                return datetime.strptime(v, fmt).date()
            except ValueError:
                continue
    raise ValidationError(f"Invalid date for {label}. Please use YYYY-MM-DD.")


def _iso_or_none(value):
    return value.isoformat() if value is not None else None


def _enum_value(value):
    return getattr(value, "value", value)


# --- users / clients / projects --------------------------------------------

class UserSchema(Schema):
    id = fields.UUID()
    name = fields.Str()
    email = fields.Str()
    role = fields.Function(lambda obj: _enum_value(obj.role))
    active = fields.Function(lambda obj: bool(obj.active))


class ClientSchema(Schema):
    id = fields.UUID(dump_only=True)
    name = fields.Str()
    email = fields.Str(allow_none=True)
    description = fields.Str(allow_none=True)
    created_at = fields.DateTime(data_key="createdAt", dump_only=True)
    updated_at = fields.DateTime(data_key="updatedAt", dump_only=True)


class ClientCreateSchema(Schema):
    """Validate JSON -> Python for client creates/updates."""

    class Meta:
        unknown = EXCLUDE

    name = fields.Str(required=True, validate=Length(min=1, max=200))
    email = fields.Email(allow_none=True)
    description = fields.Str(allow_none=True)

    @pre_load
    def strip_strings(self, in_data, **kwargs):
        data = dict(in_data or {})
        for key in ("name", "email", "description"):
            value = data.get(key)
            if isinstance(value, str):
                data[key] = value.strip() or None
        if data.get("name") is None:
            data.pop("name", None)
        return data


class ProjectSchema(Schema):
    """Serialize DB model -> JSON for the UI."""
    id = fields.UUID(dump_only=True)
    name = fields.Str()
    client_id = fields.UUID(data_key="clientId")
    client_name = fields.Function(
        lambda obj: obj.client.name if obj.client else None, data_key="clientName"
    )
    status = fields.Function(lambda obj: _enum_value(obj.status))
    total_time = fields.Str(data_key="totalTime", allow_none=True)
    completed_time = fields.Str(data_key="completedTime", allow_none=True)
    description = fields.Str(allow_none=True)
    created_at = fields.DateTime(data_key="createdAt", dump_only=True)
    updated_at = fields.DateTime(data_key="updatedAt", dump_only=True)


class ProjectCreateSchema(Schema):
    """Validate JSON -> Python for project creates/updates from the UI."""

    class Meta:
        unknown = EXCLUDE

    name = fields.Str(required=True, validate=Length(min=1, max=200))
    client_id = fields.UUID(required=True, data_key="clientId")
    status = fields.Str(validate=OneOf(PROJECT_STATUS_VALUES))
    total_time = fields.Str(data_key="totalTime", allow_none=True)
    completed_time = fields.Str(data_key="completedTime", allow_none=True)
    description = fields.Str(allow_none=True)

    @pre_load
    def normalize_inputs(self, in_data, **kwargs):
        data = dict(in_data or {})
        name = data.get("name")
        if isinstance(name, str):
            data["name"] = name.strip()
        status = data.get("status")
        if isinstance(status, str):
            data["status"] = status.strip().lower().replace("_", "-")
        return data


class AssignmentSchema(Schema):
    id = fields.UUID()
    user_id = fields.UUID(data_key="userId")
    project_id = fields.UUID(data_key="projectId")
    user_name = fields.Function(lambda obj: obj.user.name if obj.user else None, data_key="userName")
    assigned_at = fields.DateTime(data_key="assignedAt")
    is_active = fields.Bool(data_key="isActive")
    last_activated_at = fields.DateTime(data_key="lastActivatedAt", allow_none=True)


# --- reports ---------------------------------------------------------------

class _ReportDumpSchema(Schema):
    id = fields.UUID()
    user_id = fields.UUID(data_key="userId")
    project_id = fields.UUID(data_key="projectId")
    user_name = fields.Function(lambda obj: obj.user.name if obj.user else None, data_key="userName")
    project_name = fields.Function(
        lambda obj: obj.project.name if obj.project else None, data_key="projectName"
    )
    report_date = fields.Function(
        lambda obj: _iso_or_none(day_key(obj.report_date)) if obj.report_date else None,
        data_key="reportDate",
    )
    created_at = fields.DateTime(data_key="createdAt")
    updated_at = fields.DateTime(data_key="updatedAt")


class EODReportSchema(_ReportDumpSchema):
    client_update = fields.Str(data_key="clientUpdate", allow_none=True)
    actual_update = fields.Str(data_key="actualUpdate")
    hours_spent = fields.Float(data_key="hoursSpent", allow_none=True)


class MemoSchema(_ReportDumpSchema):
    memo_content = fields.Str(data_key="memoContent", allow_none=True)
    memo_type = fields.Function(lambda obj: _enum_value(obj.memo_type), data_key="memoType")


class _ReportLoadSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    project_id = fields.UUID(required=True, data_key="projectId")
    user_id = fields.UUID(data_key="userId", allow_none=True)
    report_date = fields.Date(required=True, data_key="reportDate")

    @pre_load
    def normalize_report_date(self, in_data, **kwargs):
        data = dict(in_data or {})
        raw = data.get("reportDate")
        if raw:
            try:
                parsed = _parse_flexible_date(raw)
            except ValidationError as exc:
                raise ValidationError(exc.messages, field_name="reportDate") from exc
            data["reportDate"] = parsed.isoformat()
        return data


class EODCreateSchema(_ReportLoadSchema):
    client_update = fields.Str(data_key="clientUpdate", allow_none=True)
    actual_update = fields.Str(
        required=True,
        data_key="actualUpdate",
        validate=Length(min=1, error="Internal update required"),
    )
    hours_spent = fields.Float(
        data_key="hoursSpent",
        allow_none=True,
        validate=Range(min=0.25, max=24, error="Hours spent must be between 0.25 and 24"),
    )


class EODUpdateSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    client_update = fields.Str(data_key="clientUpdate", allow_none=True)
    actual_update = fields.Str(
        data_key="actualUpdate",
        validate=Length(min=1, error="Internal update required"),
    )
    hours_spent = fields.Float(
        data_key="hoursSpent",
        allow_none=True,
        validate=Range(min=0.25, max=24, error="Hours spent must be between 0.25 and 24"),
    )


class MemoCreateSchema(_ReportLoadSchema):
    memo_content = fields.Str(
        required=True,
        data_key="memoContent",
        validate=Length(min=1, error="Memo content required"),
    )
    memo_type = fields.Str(
        data_key="memoType",
        load_default=MemoType.short.value,
        validate=OneOf(MEMO_TYPE_VALUES),
    )

    @validates_schema
    def validate_short_length(self, data, **kwargs):
        if data.get("memo_type", MemoType.short.value) != MemoType.short.value:
            return
        content = data.get("memo_content") or ""
        if len(content) > MEMO_SHORT_MAX_LENGTH:
            raise ValidationError(
                f"Max {MEMO_SHORT_MAX_LENGTH} characters", field_name="memoContent"
            )


class MemoUpdateSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    memo_content = fields.Str(
        data_key="memoContent",
        validate=Length(min=1, error="Memo content required"),
    )


# --- users (admin payloads) -------------------------------------------------

class UserCreateSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    name = fields.Str(required=True, validate=Length(min=1, max=120))
    email = fields.Email(required=True)
    password = fields.Str(required=True, validate=Length(min=1), load_only=True)
    role = fields.Str(load_default=RoleEnum.developer.value)
    active = fields.Bool(load_default=True)

    @pre_load
    def normalize_inputs(self, in_data, **kwargs):
        data = dict(in_data or {})
        if isinstance(data.get("name"), str):
            data["name"] = data["name"].strip()
        if isinstance(data.get("email"), str):
            data["email"] = data["email"].strip().lower()
        return data

    @validates("role")
    def validate_role(self, value, **kwargs):
        if value not in {role.value for role in RoleEnum}:
            raise ValidationError("Invalid role")


# --- compliance output ------------------------------------------------------

class DayStatSchema(Schema):
    date = fields.Date()
    submitted_count = fields.Int(data_key="submittedCount")
    missed_count = fields.Int(data_key="missedCount")
    user_count = fields.Int(data_key="userCount")
    project_count = fields.Int(data_key="projectCount")
    is_weekend = fields.Bool(data_key="isWeekend")
    is_future = fields.Bool(data_key="isFuture")


class DayDetailSchema(Schema):
    user = fields.Str()
    project = fields.Str()
    submitted_at = fields.Str(data_key="submittedAt")
    status = fields.Str()
    id = fields.Str(allow_none=True)
    project_id = fields.Str(data_key="projectId")
    user_id = fields.Str(data_key="userId")
    is_active = fields.Bool(data_key="isActive")


def first_error_message(exc: ValidationError) -> str:
    """Flatten a marshmallow error into a single human readable message."""

    messages = exc.messages
    while isinstance(messages, dict) and messages:
        messages = next(iter(messages.values()))
    while isinstance(messages, list) and messages:
        messages = messages[0]
    return str(messages) if messages else "Invalid payload"
