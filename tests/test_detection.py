"""
DB-level tests for detection.py — summary refresh, insight persistence and
de-duplication against an in-memory database.

Fixture history for employee 3 (all same-day sick reports, "illness"):
  2026-01-07, 2026-02-11, 2026-03-04   (all Wednesdays)
which fires frequency, short_notice and recurring_reason as of TODAY.
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import logging
from datetime import date

import pytest

from absence_insights import detection
from absence_insights.detection import (
    analyze_after_absence,
    analyze_tenant,
    detect_new_insights,
    update_employee_summary,
)
from absence_insights.queries.absences import fetch_absences, fetch_summary
from absence_insights.queries.insights import fetch_employee_insights, insight_exists

from conftest import add_holiday, add_leave, scalar

TODAY = date(2026, 3, 18)


@pytest.fixture
def history(org):
    ids = [
        add_leave(org, 3, "2026-01-07"),
        add_leave(org, 3, "2026-02-11"),
        add_leave(org, 3, "2026-03-04"),
    ]
    return org, ids


# ── queries feeding the detectors ──────────────────────────────────────────────

class TestFetchAbsences:
    def test_excludes_cancelled_and_non_absence_leave(self, org):
        keep = add_leave(org, 3, "2026-02-11")
        add_leave(org, 3, "2026-02-12", status="cancelled")
        add_holiday(org, 3, "2026-02-16", "2026-02-20")
        bereavement = add_leave(org, 3, "2026-03-02", category="bereavement")
        rows = fetch_absences(org, 1, 3, date(2025, 3, 18))
        assert [r["id"] for r in rows] == [bereavement, keep]

    def test_pending_absences_count(self, org):
        pending = add_leave(org, 3, "2026-02-11", status="pending")
        assert [r["id"] for r in fetch_absences(org, 1, 3, date(2025, 3, 18))] == [pending]

    def test_window_and_duration(self, org):
        add_leave(org, 3, "2025-01-06")
        recent = add_leave(org, 3, "2026-02-02", "2026-02-04")
        rows = fetch_absences(org, 1, 3, date(2025, 3, 18))
        assert [r["id"] for r in rows] == [recent]
        assert rows[0]["duration_days"] == 3

    def test_other_tenant_invisible(self, org):
        add_leave(org, 20, "2026-02-11", tenant_id=2)
        assert fetch_absences(org, 1, 20, date(2025, 3, 18)) == []


# ── summary ────────────────────────────────────────────────────────────────────

class TestUpdateSummary:
    def test_writes_row(self, history):
        conn, _ = history
        update_employee_summary(conn, 1, 3, TODAY)
        row = fetch_summary(conn, 1, 3)
        assert row["total_absences_12m"] == 3
        assert row["total_sick_days_12m"] == 3
        assert row["bradford_factor"] == 27
        assert row["same_day_reports_12m"] == 3
        assert row["last_absence_date"] == "2026-03-04"
        assert row["last_absence_reason"] == "illness"
        assert row["calculated_at"] is not None

    def test_second_run_updates_in_place(self, history):
        conn, _ = history
        update_employee_summary(conn, 1, 3, TODAY)
        add_leave(conn, 3, "2026-03-16", "2026-03-17")
        update_employee_summary(conn, 1, 3, TODAY)
        assert scalar(conn, "SELECT COUNT(*) FROM absence_summaries WHERE employee_id = 3") == 1
        row = fetch_summary(conn, 1, 3)
        assert row["total_absences_12m"] == 4
        assert row["bradford_factor"] == 16 * 5
        assert row["last_absence_duration"] == 2

    def test_old_absence_only_sets_last_absence(self, org):
        add_leave(org, 4, "2024-06-03", "2024-06-05", reason="injury")
        summary = update_employee_summary(org, 1, 4, TODAY)
        assert summary["bradford_factor"] == 0
        assert summary["last_absence_date"] == "2024-06-03"
        assert summary["last_absence_reason"] == "injury"

    def test_team_and_company_averages(self, org):
        add_leave(org, 4, "2026-02-16", "2026-02-20")     # 5 days
        add_leave(org, 3, "2026-02-02", "2026-02-04")     # 3 days

        first = update_employee_summary(org, 1, 4, TODAY)
        assert first["team_avg_sick_days"] == 5.0
        assert first["company_avg_sick_days"] == 5.0

        second = update_employee_summary(org, 1, 3, TODAY)
        assert second["team_avg_sick_days"] == 4.0
        assert second["company_avg_sick_days"] == 4.0

        admin = update_employee_summary(org, 1, 1, TODAY)
        assert admin["team_avg_sick_days"] is None
        assert admin["company_avg_sick_days"] == 2.7

    def test_other_team_not_averaged_in(self, org):
        add_leave(org, 4, "2026-02-16", "2026-02-20")
        update_employee_summary(org, 1, 4, TODAY)
        outside = update_employee_summary(org, 1, 5, TODAY)
        assert outside["team_avg_sick_days"] == 0.0
        assert outside["company_avg_sick_days"] == 2.5


# ── detection + persistence ────────────────────────────────────────────────────

class TestAnalyzeAfterAbsence:
    def test_saves_insights(self, history):
        conn, ids = history
        saved = analyze_after_absence(conn, 1, 3, TODAY)
        assert [i["pattern_type"] for i in saved] == [
            "frequency", "short_notice", "recurring_reason",
        ]
        assert all(i["status"] == "new" and i["employee_id"] == 3 for i in saved)

        stored = fetch_employee_insights(conn, 1, 3)
        assert len(stored) == 3
        frequency = next(i for i in stored if i["pattern_type"] == "frequency")
        assert frequency["detection_date"] == "2026-03-18"
        assert frequency["period_start"] == "2025-12-18"
        assert frequency["pattern_data"]["count"] == 3
        assert sorted(frequency["related_absence_ids"]) == sorted(ids)

    def test_also_refreshes_summary(self, history):
        conn, _ = history
        analyze_after_absence(conn, 1, 3, TODAY)
        assert fetch_summary(conn, 1, 3)["bradford_factor"] == 27

    def test_rerun_creates_nothing(self, history):
        conn, _ = history
        analyze_after_absence(conn, 1, 3, TODAY)
        assert analyze_after_absence(conn, 1, 3, TODAY) == []
        assert scalar(conn, "SELECT COUNT(*) FROM absence_insights") == 3

    def test_dismissed_pattern_can_recur(self, history):
        conn, _ = history
        analyze_after_absence(conn, 1, 3, TODAY)
        conn.execute(
            "UPDATE absence_insights SET status = 'dismissed' WHERE pattern_type = 'frequency'"
        )
        conn.commit()
        again = analyze_after_absence(conn, 1, 3, TODAY)
        assert [i["pattern_type"] for i in again] == ["frequency"]

    def test_no_absences(self, org):
        assert analyze_after_absence(org, 1, 4, TODAY) == []
        assert fetch_summary(org, 1, 4)["total_absences_12m"] == 0

    def test_post_holiday_from_db(self, org):
        add_holiday(org, 4, "2026-02-16", "2026-02-20")
        add_holiday(org, 4, "2025-11-10", "2025-11-14")
        add_holiday(org, 4, "2025-07-07", "2025-07-11", status="rejected")
        add_leave(org, 4, "2026-02-22")
        add_leave(org, 4, "2025-11-14")
        add_leave(org, 4, "2025-07-12")
        kinds = [i["pattern_type"] for i in detect_new_insights(org, 1, 4, TODAY)]
        assert "post_holiday" in kinds
        post = next(i for i in detect_new_insights(org, 1, 4, TODAY)
                    if i["pattern_type"] == "post_holiday")
        assert len(post["pattern_data"]["occurrences"]) == 2

    def test_failure_is_logged_not_raised(self, history, monkeypatch, caplog):
        conn, _ = history

        def boom(*args, **kwargs):
            raise RuntimeError("detector exploded")

        monkeypatch.setattr(detection, "detect_new_insights", boom)
        with caplog.at_level(logging.ERROR, logger="absence_insights.detection"):
            assert analyze_after_absence(conn, 1, 3, TODAY) == []
        assert "Error analyzing absence patterns for employee 3" in caplog.text
        assert scalar(conn, "SELECT COUNT(*) FROM absence_insights") == 0


class TestInsightExists:
    @pytest.fixture
    def recorded(self, history):
        conn, _ = history
        analyze_after_absence(conn, 1, 3, TODAY)    # frequency period_start 2025-12-18
        return conn

    def test_same_period(self, recorded):
        assert insight_exists(recorded, 1, 3, "frequency", "2025-12-18")

    def test_within_thirty_days(self, recorded):
        assert insight_exists(recorded, 1, 3, "frequency", "2026-01-10")

    def test_beyond_thirty_days(self, recorded):
        assert not insight_exists(recorded, 1, 3, "frequency", "2026-01-20")

    def test_other_type_or_employee(self, recorded):
        assert not insight_exists(recorded, 1, 3, "monday_friday", "2025-12-18")
        assert not insight_exists(recorded, 1, 4, "frequency", "2025-12-18")
        assert not insight_exists(recorded, 2, 3, "frequency", "2025-12-18")

    def test_dismissed_does_not_count(self, recorded):
        recorded.execute("UPDATE absence_insights SET status = 'dismissed'")
        recorded.commit()
        assert not insight_exists(recorded, 1, 3, "frequency", "2025-12-18")


class TestAnalyzeTenant:
    def test_every_employee_in_tenant(self, history):
        conn, _ = history
        results = analyze_tenant(conn, 1, TODAY, verbose=False)
        assert sorted(results) == [1, 2, 3, 4, 5, 9]
        assert len(results[3]) == 3
        assert results[4] == []
        assert scalar(conn, "SELECT COUNT(*) FROM absence_summaries WHERE tenant_id = 1") == 6
        assert scalar(conn, "SELECT COUNT(*) FROM absence_summaries WHERE tenant_id = 2") == 0

    def test_prints_progress(self, history, capsys):
        conn, _ = history
        analyze_tenant(conn, 1, TODAY)
        out = capsys.readouterr().out
        assert "Analysing 6 employees in tenant 1" in out
        assert "employee 3: frequency, short_notice, recurring_reason" in out
