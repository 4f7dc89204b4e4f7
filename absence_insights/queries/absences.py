"""
Leave-history and summary queries — DB I/O only.
"""
from __future__ import annotations

import sqlite3
from datetime import date
from typing import Optional

from absence_insights.db import row_to_dict

# Categories that count towards absence pattern analysis. Hard-coded, never user-derived.
_ABSENCE_CATEGORIES = "absence_category IN ('sick', 'bereavement', 'compassionate')"

_ABSENCE_FIELDS = """
    id, absence_category, sick_reason, leave_start_date, leave_end_date,
    status, notice_days, created_at,
    CAST(julianday(leave_end_date) - julianday(leave_start_date) + 1 AS INTEGER) AS duration_days
"""


def fetch_absences(
    conn:        sqlite3.Connection,
    tenant_id:   int,
    employee_id: int,
    since:       date,
) -> list[dict]:
    """Pattern-relevant absences starting on/after `since`, most recent first."""
    rows = conn.execute(
        f"""
        SELECT {_ABSENCE_FIELDS}
        FROM leave_requests
        WHERE tenant_id = ?
          AND employee_id = ?
          AND {_ABSENCE_CATEGORIES}
          AND leave_start_date >= ?
          AND status != 'cancelled'
        ORDER BY leave_start_date DESC, id DESC
        """,
        (tenant_id, employee_id, since.isoformat()),
    ).fetchall()
    return [row_to_dict(r) for r in rows]


def fetch_holidays(
    conn:        sqlite3.Connection,
    tenant_id:   int,
    employee_id: int,
    since:       date,
) -> list[dict]:
    """Approved annual leave ending on/after `since`, latest end date first."""
    rows = conn.execute(
        """
        SELECT id, leave_start_date, leave_end_date
        FROM leave_requests
        WHERE tenant_id = ?
          AND employee_id = ?
          AND absence_category = 'annual'
          AND status = 'approved'
          AND leave_end_date >= ?
        ORDER BY leave_end_date DESC, id DESC
        """,
        (tenant_id, employee_id, since.isoformat()),
    ).fetchall()
    return [row_to_dict(r) for r in rows]


def fetch_last_absence(
    conn:        sqlite3.Connection,
    tenant_id:   int,
    employee_id: int,
) -> Optional[dict]:
    row = conn.execute(
        f"""
        SELECT {_ABSENCE_FIELDS}
        FROM leave_requests
        WHERE tenant_id = ?
          AND employee_id = ?
          AND {_ABSENCE_CATEGORIES}
          AND status != 'cancelled'
        ORDER BY leave_start_date DESC, id DESC
        LIMIT 1
        """,
        (tenant_id, employee_id),
    ).fetchone()
    return row_to_dict(row) if row else None


def fetch_related_absences(conn: sqlite3.Connection, absence_ids: list[int]) -> list[dict]:
    if not absence_ids:
        return []
    placeholders = ", ".join("?" for _ in absence_ids)
    rows = conn.execute(
        f"""
        SELECT id, leave_start_date, leave_end_date, absence_category, sick_reason, notice_days
        FROM leave_requests
        WHERE id IN ({placeholders})
        ORDER BY leave_start_date DESC
        """,
        list(absence_ids),
    ).fetchall()
    return [row_to_dict(r) for r in rows]


# ── Employees ─────────────────────────────────────────────────────────────────

def employee_exists(conn: sqlite3.Connection, tenant_id: int, employee_id: int) -> bool:
    row = conn.execute(
        "SELECT id FROM users WHERE id = ? AND tenant_id = ?",
        (employee_id, tenant_id),
    ).fetchone()
    return row is not None


def fetch_tenant_employee_ids(conn: sqlite3.Connection, tenant_id: int) -> list[int]:
    rows = conn.execute(
        "SELECT id FROM users WHERE tenant_id = ? ORDER BY id", (tenant_id,)
    ).fetchall()
    return [r["id"] for r in rows]


def fetch_peer_sick_days(
    conn:        sqlite3.Connection,
    tenant_id:   int,
    employee_id: int,
) -> tuple[Optional[list[float]], list[float]]:
    """
    12-month sick days of the employee's peers, from existing summaries.

    Returns (team, company): team is everyone else sharing the employee's
    line manager (None when the employee has no manager), company is
    everyone else in the tenant.
    """
    company = conn.execute(
        """
        SELECT total_sick_days_12m FROM absence_summaries
        WHERE tenant_id = ? AND employee_id != ?
        """,
        (tenant_id, employee_id),
    ).fetchall()

    me = conn.execute("SELECT manager_id FROM users WHERE id = ?", (employee_id,)).fetchone()
    if me is None or me["manager_id"] is None:
        return None, [r["total_sick_days_12m"] for r in company]

    team = conn.execute(
        """
        SELECT s.total_sick_days_12m
        FROM absence_summaries s
        JOIN users u ON u.id = s.employee_id
        WHERE s.tenant_id = ?
          AND s.employee_id != ?
          AND u.manager_id = ?
        """,
        (tenant_id, employee_id, me["manager_id"]),
    ).fetchall()
    return ([r["total_sick_days_12m"] for r in team],
            [r["total_sick_days_12m"] for r in company])


# ── Summaries ─────────────────────────────────────────────────────────────────

_SUMMARY_COLUMNS = [
    "total_sick_days_12m",
    "total_absences_12m",
    "avg_duration_12m",
    "monday_absences_12m",
    "friday_absences_12m",
    "same_day_reports_12m",
    "bradford_factor",
    "last_absence_date",
    "last_absence_duration",
    "last_absence_reason",
    "team_avg_sick_days",
    "company_avg_sick_days",
]


def upsert_summary(
    conn:        sqlite3.Connection,
    tenant_id:   int,
    employee_id: int,
    summary:     dict,
) -> None:
    """Insert or replace the employee's summary row (one per tenant+employee)."""
    cols = ", ".join(_SUMMARY_COLUMNS)
    marks = ", ".join("?" for _ in _SUMMARY_COLUMNS)
    updates = ",\n            ".join(f"{c} = excluded.{c}" for c in _SUMMARY_COLUMNS)
    conn.execute(
        f"""
        INSERT INTO absence_summaries (
            tenant_id, employee_id, {cols}, bradford_updated_at, calculated_at
        ) VALUES (?, ?, {marks}, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
        ON CONFLICT (tenant_id, employee_id) DO UPDATE SET
            {updates},
            bradford_updated_at = CURRENT_TIMESTAMP,
            calculated_at = CURRENT_TIMESTAMP
        """,
        (tenant_id, employee_id, *[summary.get(c) for c in _SUMMARY_COLUMNS]),
    )
    conn.commit()


def fetch_summary(
    conn:        sqlite3.Connection,
    tenant_id:   int,
    employee_id: int,
) -> Optional[dict]:
    row = conn.execute(
        "SELECT * FROM absence_summaries WHERE tenant_id = ? AND employee_id = ?",
        (tenant_id, employee_id),
    ).fetchone()
    return row_to_dict(row) if row else None
