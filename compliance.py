"""EOD and memo compliance aggregation for the admin calendar.

Everything in this module works on plain snapshots of assignment and report
rows so the rules can be exercised without a database. The HTTP layer in
``routes.admin_stats`` fetches the snapshots and serialises the results.

Eligibility rule: an assignment counts towards a day when it is currently
active and was assigned on or before that calendar day in the application
zone. ``last_activated_at`` is carried on the snapshot but never consulted.
"""

from __future__ import annotations

import calendar
import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import Iterable, Sequence

_MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")

STATUS_SUBMITTED = "submitted"
STATUS_MISSED = "missed"
MISSING_TIME_PLACEHOLDER = "-"


class ComplianceInputError(ValueError):
    """Raised when a month, day or report type parameter cannot be used."""


class ReportType(str, Enum):
    EOD = "eod"
    MEMO = "memo"


@dataclass(frozen=True)
class AssignmentRow:
    user_id: str
    project_id: str
    assigned_at: datetime
    is_active: bool
    last_activated_at: datetime | None = None
    user_name: str = ""
    project_name: str = ""

    @property
    def pair(self) -> tuple[str, str]:
        return self.user_id, self.project_id


@dataclass(frozen=True)
class SubmissionRow:
    id: str
    user_id: str
    project_id: str
    report_date: datetime
    created_at: datetime | None = None
    user_name: str = ""
    project_name: str = ""

    @property
    def pair(self) -> tuple[str, str]:
        return self.user_id, self.project_id


@dataclass(frozen=True)
class DayStat:
    date: date
    submitted_count: int
    missed_count: int
    user_count: int
    project_count: int
    is_weekend: bool
    is_future: bool


@dataclass(frozen=True)
class DayDetailRow:
    user: str
    project: str
    submitted_at: str
    status: str
    id: str | None
    project_id: str
    user_id: str
    is_active: bool


# ---------------------------------------------------------------------------
# Parameter parsing
# ---------------------------------------------------------------------------

def parse_month(value: str | None) -> date:
    """Return the first day of a ``YYYY-MM`` month string."""

    text = (value or "").strip()
    match = _MONTH_PATTERN.match(text)
    if not match:
        raise ComplianceInputError("Month must use YYYY-MM format")

    year, month = (int(part) for part in match.groups())
    if month < 1 or month > 12 or year < 1:
        raise ComplianceInputError("Month must use YYYY-MM format")
    return date(year, month, 1)


def parse_day(value: str | None) -> date:
    """Return the calendar day of a ``YYYY-MM-DD`` string."""

    text = (value or "").strip()
    try:
        return date.fromisoformat(text)
    except ValueError as exc:
        raise ComplianceInputError("Date must use YYYY-MM-DD format") from exc


def normalize_report_type(value: str | None) -> ReportType:
    """Resolve the ``type`` query parameter; a missing value means EOD."""

    text = (value or "").strip().lower()
    if not text:
        return ReportType.EOD
    try:
        return ReportType(text)
    except ValueError as exc:
        raise ComplianceInputError("Type must be one of: eod, memo") from exc


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------

def day_key(value: date | datetime) -> date:
    """Calendar day of ``value`` with any time-of-day discarded."""

    if isinstance(value, datetime):
        return value.date()
    return value


def calendar_window(month_start: date) -> tuple[date, date]:
    """Sunday-to-Saturday grid covering the whole month."""

    last_day = calendar.monthrange(month_start.year, month_start.month)[1]
    month_end = month_start.replace(day=last_day)

    # date.weekday(): Monday == 0 .. Sunday == 6
    start = month_start - timedelta(days=(month_start.weekday() + 1) % 7)
    end = month_end + timedelta(days=(5 - month_end.weekday()) % 7)
    return start, end


def iter_days(start: date, end: date) -> Iterable[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5


def local_today(tz: tzinfo) -> date:
    return datetime.now(tz).date()


def _in_zone(value: datetime, tz: tzinfo) -> datetime:
    # Naive timestamps are stored in UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(tz)


def local_day(value: date | datetime, tz: tzinfo) -> date:
    """Calendar day of a stored timestamp as seen in ``tz``."""

    if isinstance(value, datetime):
        return _in_zone(value, tz).date()
    return value


def is_eligible(assignment: AssignmentRow, day: date, tz: tzinfo = timezone.utc) -> bool:
    return bool(assignment.is_active) and local_day(assignment.assigned_at, tz) <= day


def format_submitted_at(created_at: datetime | None, tz: tzinfo) -> str:
    """Render a submission timestamp as ``h:mm AM`` in ``tz``."""

    if created_at is None:
        return MISSING_TIME_PLACEHOLDER

    value = _in_zone(created_at, tz)

    hour = value.hour % 12 or 12
    meridiem = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {meridiem}"


def _group_by_day(rows: Iterable[SubmissionRow]) -> dict[date, list[SubmissionRow]]:
    grouped: dict[date, list[SubmissionRow]] = defaultdict(list)
    for row in rows:
        grouped[day_key(row.report_date)].append(row)
    return grouped


# ---------------------------------------------------------------------------
# Monthly aggregation
# ---------------------------------------------------------------------------

def build_calendar_stats(
    month_start: date,
    report_type: ReportType,
    eods: Sequence[SubmissionRow],
    memos: Sequence[SubmissionRow],
    assignments: Sequence[AssignmentRow],
    today: date,
    tz: tzinfo = timezone.utc,
) -> list[DayStat]:
    """Return one :class:`DayStat` per day of the month's calendar grid.

    Assignment times are bucketed into days in ``tz``, the same zone that
    decides ``today``.
    """

    start, end = calendar_window(month_start)
    eods_by_day = _group_by_day(eods)
    memos_by_day = _group_by_day(memos)

    stats: list[DayStat] = []
    for day in iter_days(start, end):
        weekend = is_weekend(day)
        future = day > today

        day_eods = eods_by_day.get(day, [])
        day_memos = memos_by_day.get(day, [])
        current = day_eods if report_type == ReportType.EOD else day_memos

        # Several memo rows (short and universal) collapse into one pair.
        submitted_pairs = {row.pair for row in current}

        eod_users = {row.user_id for row in day_eods}
        memo_users = {row.user_id for row in day_memos}
        users_submitted_both = eod_users & memo_users

        eligible = [a for a in assignments if is_eligible(a, day, tz)]

        missed = 0
        if not future and not weekend:
            eligible_pairs = {a.pair for a in eligible}
            missed = len(eligible_pairs - submitted_pairs)

        stats.append(
            DayStat(
                date=day,
                submitted_count=0 if future else len(submitted_pairs),
                missed_count=missed,
                user_count=0 if future else len(users_submitted_both),
                project_count=0 if future else len({a.project_id for a in eligible}),
                is_weekend=weekend,
                is_future=future,
            )
        )

    return stats


# ---------------------------------------------------------------------------
# Day drill-down
# ---------------------------------------------------------------------------

def _detail_sort_key(row: DayDetailRow) -> tuple[int, str, str]:
    rank = 0 if row.status == STATUS_SUBMITTED else 1
    return rank, row.user.casefold(), row.user


def build_day_details(
    target_day: date,
    submissions: Sequence[SubmissionRow],
    assignments: Sequence[AssignmentRow],
    today: date,
    tz: tzinfo,
) -> list[DayDetailRow]:
    """Roster of who submitted and who missed on ``target_day``.

    Submissions whose pair no longer has an active assignment are still
    listed (``is_active`` false) so a day's history survives deactivation.
    """

    if target_day > today:
        return []

    day_submissions = sorted(
        (row for row in submissions if day_key(row.report_date) == target_day),
        key=lambda row: row.created_at or datetime.min,
    )
    by_pair: dict[tuple[str, str], SubmissionRow] = {}
    for row in day_submissions:
        by_pair.setdefault(row.pair, row)

    results: list[DayDetailRow] = []
    active_pairs: set[tuple[str, str]] = set()

    for assignment in assignments:
        if not is_eligible(assignment, target_day, tz) or assignment.pair in active_pairs:
            continue
        active_pairs.add(assignment.pair)

        submission = by_pair.get(assignment.pair)
        results.append(
            DayDetailRow(
                user=assignment.user_name,
                project=assignment.project_name,
                submitted_at=(
                    format_submitted_at(submission.created_at, tz)
                    if submission
                    else MISSING_TIME_PLACEHOLDER
                ),
                status=STATUS_SUBMITTED if submission else STATUS_MISSED,
                id=submission.id if submission else None,
                project_id=assignment.project_id,
                user_id=assignment.user_id,
                is_active=True,
            )
        )

    for pair, submission in by_pair.items():
        if pair in active_pairs:
            continue
        results.append(
            DayDetailRow(
                user=submission.user_name,
                project=submission.project_name,
                submitted_at=format_submitted_at(submission.created_at, tz),
                status=STATUS_SUBMITTED,
                id=submission.id,
                project_id=submission.project_id,
                user_id=submission.user_id,
                is_active=False,
            )
        )

    results.sort(key=_detail_sort_key)
    return results
