from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from compliance import (
    AssignmentRow,
    ComplianceInputError,
    ReportType,
    STATUS_MISSED,
    STATUS_SUBMITTED,
    SubmissionRow,
    build_calendar_stats,
    build_day_details,
    calendar_window,
    format_submitted_at,
    is_eligible,
    normalize_report_type,
    parse_day,
    parse_month,
)

UTC = ZoneInfo("UTC")
TODAY = date(2026, 10, 18)


def _assignment(user="u1", project="p1", assigned=datetime(2026, 1, 5, 9, 0), active=True, **kwargs):
    return AssignmentRow(
        user_id=user,
        project_id=project,
        assigned_at=assigned,
        is_active=active,
        user_name=kwargs.pop("user_name", user.upper()),
        project_name=kwargs.pop("project_name", project.upper()),
        **kwargs,
    )


def _submission(day, user="u1", project="p1", created=None, report_id=None, user_name=None):
    return SubmissionRow(
        id=report_id or f"{user}-{project}-{day.isoformat()}",
        user_id=user,
        project_id=project,
        report_date=datetime.combine(day, datetime.min.time()),
        created_at=created,
        user_name=user_name or user.upper(),
        project_name=project.upper(),
    )


def _stats_by_day(stats):
    return {stat.date: stat for stat in stats}


def test_parse_month_accepts_year_month():
    assert parse_month("2026-01") == date(2026, 1, 1)
    assert parse_month(" 2024-12 ") == date(2024, 12, 1)


@pytest.mark.parametrize("value", ["", None, "2026-13", "2026-1", "01-2026", "2026-01-05"])
def test_parse_month_rejects_malformed_values(value):
    with pytest.raises(ComplianceInputError):
        parse_month(value)


def test_parse_day_rejects_malformed_value():
    assert parse_day("2026-01-13") == date(2026, 1, 13)
    with pytest.raises(ComplianceInputError):
        parse_day("13/01/2026")


def test_report_type_defaults_to_eod_and_rejects_unknown():
    assert normalize_report_type(None) is ReportType.EOD
    assert normalize_report_type("  ") is ReportType.EOD
    assert normalize_report_type("MEMO") is ReportType.MEMO
    with pytest.raises(ComplianceInputError):
        normalize_report_type("weekly")


def test_calendar_window_pads_to_sunday_through_saturday():
    # January 2026 starts on a Thursday and ends on a Saturday.
    assert calendar_window(date(2026, 1, 1)) == (date(2025, 12, 28), date(2026, 1, 31))
    # February 2026 starts on a Sunday and ends on a Saturday.
    assert calendar_window(date(2026, 2, 1)) == (date(2026, 2, 1), date(2026, 2, 28))
    # March 2026 starts on a Sunday and ends on a Tuesday.
    assert calendar_window(date(2026, 3, 1)) == (date(2026, 3, 1), date(2026, 4, 4))


def test_calendar_stats_cover_every_grid_day():
    stats = build_calendar_stats(date(2026, 1, 1), ReportType.EOD, [], [], [], TODAY)
    assert len(stats) == 35
    assert stats[0].date == date(2025, 12, 28)
    assert stats[-1].date == date(2026, 1, 31)


def test_weekday_without_submission_counts_as_missed():
    stats = _stats_by_day(
        build_calendar_stats(date(2026, 1, 1), ReportType.EOD, [], [], [_assignment()], TODAY)
    )
    tuesday = stats[date(2026, 1, 13)]
    assert tuesday.missed_count == 1
    assert tuesday.submitted_count == 0
    assert tuesday.project_count == 1
    assert tuesday.is_weekend is False


def test_weekend_never_reports_misses():
    stats = _stats_by_day(
        build_calendar_stats(date(2026, 1, 1), ReportType.EOD, [], [], [_assignment()], TODAY)
    )
    saturday = stats[date(2026, 1, 10)]
    assert saturday.is_weekend is True
    assert saturday.missed_count == 0
    assert saturday.project_count == 1
    assert stats[date(2026, 1, 11)].missed_count == 0


def test_days_before_assignment_are_not_eligible():
    stats = _stats_by_day(
        build_calendar_stats(date(2026, 1, 1), ReportType.EOD, [], [], [_assignment()], TODAY)
    )
    assert stats[date(2026, 1, 2)].missed_count == 0
    assert stats[date(2026, 1, 2)].project_count == 0
    # Assigned late in the day still counts for that calendar day.
    assert stats[date(2026, 1, 5)].missed_count == 1


def test_short_and_universal_memos_count_once():
    day = date(2026, 1, 13)
    memos = [
        _submission(day, report_id="short"),
        _submission(day, report_id="universal"),
    ]
    stats = _stats_by_day(
        build_calendar_stats(date(2026, 1, 1), ReportType.MEMO, [], memos, [_assignment()], TODAY)
    )
    assert stats[day].submitted_count == 1
    assert stats[day].missed_count == 0


def test_report_type_selects_the_counted_submissions():
    day = date(2026, 1, 13)
    eods = [_submission(day)]
    eod_stats = _stats_by_day(
        build_calendar_stats(date(2026, 1, 1), ReportType.EOD, eods, [], [_assignment()], TODAY)
    )
    memo_stats = _stats_by_day(
        build_calendar_stats(date(2026, 1, 1), ReportType.MEMO, eods, [], [_assignment()], TODAY)
    )
    assert eod_stats[day].submitted_count == 1
    assert eod_stats[day].missed_count == 0
    assert memo_stats[day].submitted_count == 0
    assert memo_stats[day].missed_count == 1


def test_user_count_requires_both_eod_and_memo():
    day = date(2026, 1, 13)
    eods = [_submission(day, user="u1"), _submission(day, user="u2")]
    memos = [_submission(day, user="u1")]
    stats = _stats_by_day(
        build_calendar_stats(date(2026, 1, 1), ReportType.EOD, eods, memos, [], TODAY)
    )
    assert stats[day].user_count == 1


def test_future_days_are_zeroed():
    today = date(2026, 1, 13)
    day = date(2026, 1, 14)
    eods = [_submission(day)]
    stats = _stats_by_day(
        build_calendar_stats(date(2026, 1, 1), ReportType.EOD, eods, eods, [_assignment()], today)
    )
    future = stats[day]
    assert future.is_future is True
    assert (
        future.submitted_count,
        future.missed_count,
        future.user_count,
        future.project_count,
    ) == (0, 0, 0, 0)
    assert stats[today].is_future is False


def test_inactive_assignment_is_never_eligible():
    inactive = _assignment(active=False)
    assert not is_eligible(inactive, date(2026, 1, 13))
    stats = _stats_by_day(
        build_calendar_stats(date(2026, 1, 1), ReportType.EOD, [], [], [inactive], TODAY)
    )
    assert stats[date(2026, 1, 13)].missed_count == 0


def test_last_activated_at_does_not_gate_eligibility():
    assignment = _assignment(last_activated_at=datetime(2026, 1, 20, 8, 0))
    assert is_eligible(assignment, date(2026, 1, 13))


def test_assignment_day_is_taken_in_the_given_zone():
    kolkata = ZoneInfo("Asia/Kolkata")
    # 20:00 UTC on the 12th is already the 13th in Kolkata.
    assignment = _assignment(assigned=datetime(2026, 1, 12, 20, 0))

    assert is_eligible(assignment, date(2026, 1, 12))
    assert not is_eligible(assignment, date(2026, 1, 12), kolkata)
    assert is_eligible(assignment, date(2026, 1, 13), kolkata)

    stats = _stats_by_day(
        build_calendar_stats(
            date(2026, 1, 1), ReportType.EOD, [], [], [assignment], TODAY, tz=kolkata
        )
    )
    assert stats[date(2026, 1, 12)].missed_count == 0
    assert stats[date(2026, 1, 13)].missed_count == 1

    rows = build_day_details(date(2026, 1, 12), [], [assignment], TODAY, kolkata)
    assert rows == []


def test_format_submitted_at_uses_twelve_hour_clock():
    assert format_submitted_at(datetime(2026, 1, 13, 14, 32), UTC) == "2:32 PM"
    assert format_submitted_at(datetime(2026, 1, 13, 0, 5), UTC) == "12:05 AM"
    assert format_submitted_at(datetime(2026, 1, 13, 12, 0), UTC) == "12:00 PM"
    assert format_submitted_at(None, UTC) == "-"


def test_format_submitted_at_converts_naive_utc_to_zone():
    colombo = ZoneInfo("Asia/Colombo")
    assert format_submitted_at(datetime(2026, 1, 13, 9, 2), colombo) == "2:32 PM"


def test_day_details_marks_submitted_and_missed():
    day = date(2026, 1, 13)
    assignments = [
        _assignment(user="u1", user_name="bob"),
        _assignment(user="u2", user_name="Alice"),
    ]
    submissions = [_submission(day, user="u1", created=datetime(2026, 1, 13, 14, 32))]

    rows = build_day_details(day, submissions, assignments, TODAY, UTC)

    assert [(row.user, row.status) for row in rows] == [
        ("bob", STATUS_SUBMITTED),
        ("Alice", STATUS_MISSED),
    ]
    assert rows[0].submitted_at == "2:32 PM"
    assert rows[0].is_active is True
    assert rows[1].submitted_at == "-"
    assert rows[1].id is None


def test_day_details_keeps_history_for_inactive_pairs():
    day = date(2026, 1, 13)
    assignments = [_assignment(active=False)]
    submissions = [_submission(day, created=datetime(2026, 1, 13, 10, 0))]

    rows = build_day_details(day, submissions, assignments, TODAY, UTC)

    assert len(rows) == 1
    assert rows[0].status == STATUS_SUBMITTED
    assert rows[0].is_active is False


def test_day_details_sorts_each_group_by_user_name():
    day = date(2026, 1, 13)
    assignments = [
        _assignment(user="u1", user_name="carol"),
        _assignment(user="u2", user_name="Bob"),
        _assignment(user="u3", user_name="alice"),
        _assignment(user="u4", user_name="dave"),
    ]
    submissions = [
        _submission(day, user="u1", user_name="carol", created=datetime(2026, 1, 13, 9, 0)),
        _submission(day, user="u3", user_name="alice", created=datetime(2026, 1, 13, 9, 5)),
    ]

    rows = build_day_details(day, submissions, assignments, TODAY, UTC)

    assert [row.user for row in rows] == ["alice", "carol", "Bob", "dave"]
    assert [row.status for row in rows] == [
        STATUS_SUBMITTED,
        STATUS_SUBMITTED,
        STATUS_MISSED,
        STATUS_MISSED,
    ]


def test_day_details_uses_earliest_submission_per_pair():
    day = date(2026, 1, 13)
    submissions = [
        _submission(day, report_id="late", created=datetime(2026, 1, 13, 18, 0)),
        _submission(day, report_id="early", created=datetime(2026, 1, 13, 8, 15)),
    ]

    rows = build_day_details(day, submissions, [_assignment()], TODAY, UTC)

    assert len(rows) == 1
    assert rows[0].id == "early"
    assert rows[0].submitted_at == "8:15 AM"


def test_day_details_for_future_day_is_empty():
    day = date(2026, 1, 14)
    rows = build_day_details(day, [_submission(day)], [_assignment()], date(2026, 1, 13), UTC)
    assert rows == []
