"""
Absence insight queries — DB I/O only.

Manager scoping: when `manager_id` is given, only insights about that
manager's direct reports are visible. Admins pass None.
"""
from __future__ import annotations

import json
import sqlite3
from datetime import date, timedelta
from typing import Optional

from absence_insights.db import row_to_dict

# Sort ranks — hard-coded SQL fragments, never user-derived.
_STATUS_RANK = """
    CASE ai.status
        WHEN 'new'            THEN 1
        WHEN 'pending_review' THEN 2
        WHEN 'reviewed'       THEN 3
        WHEN 'action_taken'   THEN 4
        ELSE 5
    END
"""
_PRIORITY_RANK = """
    CASE ai.priority
        WHEN 'high'   THEN 1
        WHEN 'medium' THEN 2
        ELSE 3
    END
"""
_REPORTS_OF = "ai.employee_id IN (SELECT id FROM users WHERE manager_id = ?)"

# Marker for columns stamped with the DB clock.
NOW = object()

# Columns a status transition may set, besides status itself.
_TRANSITION_FIELDS = {
    "reviewed_by", "reviewed_at", "review_notes",
    "action_taken", "action_by", "action_at", "follow_up_date",
}


def _decode(row) -> dict:
    d = row_to_dict(row)
    if isinstance(d.get("pattern_data"), str):
        d["pattern_data"] = json.loads(d["pattern_data"])
    if isinstance(d.get("related_absence_ids"), str):
        d["related_absence_ids"] = json.loads(d["related_absence_ids"])
    return d


def _scope(
    tenant_id:    int,
    manager_id:   Optional[int] = None,
    status:       Optional[str] = None,
    priority:     Optional[str] = None,
    pattern_type: Optional[str] = None,
    employee_id:  Optional[int] = None,
) -> tuple[str, list]:
    clauses = ["ai.tenant_id = ?"]
    params: list = [tenant_id]
    if manager_id is not None:
        clauses.append(_REPORTS_OF)
        params.append(manager_id)
    for column, value in (
        ("ai.status",       status),
        ("ai.priority",     priority),
        ("ai.pattern_type", pattern_type),
        ("ai.employee_id",  employee_id),
    ):
        if value is not None and value != "":
            clauses.append(f"{column} = ?")
            params.append(value)
    return "WHERE " + " AND ".join(clauses), params


# ── Detection support ─────────────────────────────────────────────────────────

def insight_exists(
    conn:         sqlite3.Connection,
    tenant_id:    int,
    employee_id:  int,
    pattern_type: str,
    period_start: str,
) -> bool:
    """
    True when a live (non-dismissed) insight of the same type already covers
    a period starting no more than 30 days before `period_start`.
    """
    row = conn.execute(
        """
        SELECT id FROM absence_insights
        WHERE tenant_id = ?
          AND employee_id = ?
          AND pattern_type = ?
          AND period_start >= date(?, '-30 days')
          AND status NOT IN ('dismissed')
        LIMIT 1
        """,
        (tenant_id, employee_id, pattern_type, period_start),
    ).fetchone()
    return row is not None


def insert_insights(
    conn:           sqlite3.Connection,
    tenant_id:      int,
    employee_id:    int,
    insights:       list[dict],
    detection_date: date,
) -> list[dict]:
    """Persist candidate insights; returns them with id, tenant and employee attached."""
    saved = []
    for insight in insights:
        cur = conn.execute(
            """
            INSERT INTO absence_insights (
                tenant_id, employee_id, pattern_type, priority, detection_date,
                period_start, period_end, pattern_data, related_absence_ids, summary
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                tenant_id,
                employee_id,
                insight["pattern_type"],
                insight["priority"],
                detection_date.isoformat(),
                insight["period_start"],
                insight["period_end"],
                json.dumps(insight["pattern_data"]),
                json.dumps(insight["related_absence_ids"]),
                insight["summary"],
            ),
        )
        saved.append({
            **insight,
            "id":          cur.lastrowid,
            "tenant_id":   tenant_id,
            "employee_id": employee_id,
            "status":      "new",
        })
    conn.commit()
    return saved


# ── Listing ──────────────────────────────────────────────────────────────────

def list_insights(
    conn:       sqlite3.Connection,
    tenant_id:  int,
    manager_id: Optional[int] = None,
    limit:      int = 50,
    offset:     int = 0,
    **filters,
) -> list[dict]:
    where, params = _scope(tenant_id, manager_id, **filters)
    rows = conn.execute(
        f"""
        SELECT ai.*,
               u.full_name         AS employee_name,
               u.employee_number,
               reviewer.full_name  AS reviewed_by_name
        FROM absence_insights ai
        JOIN users u             ON ai.employee_id = u.id
        LEFT JOIN users reviewer ON ai.reviewed_by = reviewer.id
        {where}
        ORDER BY {_STATUS_RANK}, {_PRIORITY_RANK}, ai.detection_date DESC, ai.id DESC
        LIMIT ? OFFSET ?
        """,
        [*params, limit, offset],
    ).fetchall()
    return [_decode(r) for r in rows]


def count_by_status(
    conn:       sqlite3.Connection,
    tenant_id:  int,
    manager_id: Optional[int] = None,
    **filters,
) -> dict[str, int]:
    where, params = _scope(tenant_id, manager_id, **filters)
    rows = conn.execute(
        f"SELECT ai.status, COUNT(*) AS cnt FROM absence_insights ai {where} GROUP BY ai.status",
        params,
    ).fetchall()
    return {r["status"]: r["cnt"] for r in rows}


def fetch_employee_insights(
    conn:        sqlite3.Connection,
    tenant_id:   int,
    employee_id: int,
) -> list[dict]:
    rows = conn.execute(
        """
        SELECT ai.*, reviewer.full_name AS reviewed_by_name
        FROM absence_insights ai
        LEFT JOIN users reviewer ON ai.reviewed_by = reviewer.id
        WHERE ai.tenant_id = ? AND ai.employee_id = ?
        ORDER BY ai.detection_date DESC, ai.id DESC
        """,
        (tenant_id, employee_id),
    ).fetchall()
    return [_decode(r) for r in rows]


def fetch_pending_follow_ups(
    conn:       sqlite3.Connection,
    tenant_id:  int,
    manager_id: Optional[int] = None,
    today:      Optional[date] = None,
) -> list[dict]:
    """Actioned insights whose follow-up falls due within the next 7 days (or is overdue)."""
    horizon = (today or date.today()) + timedelta(days=7)
    manager_sql = f"AND {_REPORTS_OF}" if manager_id is not None else ""
    params: list = [tenant_id, horizon.isoformat()]
    if manager_id is not None:
        params.append(manager_id)
    rows = conn.execute(
        f"""
        SELECT ai.*,
               u.full_name        AS employee_name,
               u.employee_number,
               actioner.full_name AS action_by_name
        FROM absence_insights ai
        JOIN users u             ON ai.employee_id = u.id
        LEFT JOIN users actioner ON ai.action_by = actioner.id
        WHERE ai.tenant_id = ?
          AND ai.follow_up_date IS NOT NULL
          AND ai.follow_up_date <= ?
          AND ai.status = 'action_taken'
          {manager_sql}
        ORDER BY ai.follow_up_date ASC
        """,
        params,
    ).fetchall()
    return [_decode(r) for r in rows]


# ── Single insight ────────────────────────────────────────────────────────────

def fetch_insight(
    conn:       sqlite3.Connection,
    tenant_id:  int,
    insight_id: int,
) -> Optional[dict]:
    row = conn.execute(
        """
        SELECT ai.*,
               u.full_name        AS employee_name,
               u.employee_number,
               u.email            AS employee_email,
               reviewer.full_name AS reviewed_by_name,
               actioner.full_name AS action_by_name
        FROM absence_insights ai
        JOIN users u             ON ai.employee_id = u.id
        LEFT JOIN users reviewer ON ai.reviewed_by = reviewer.id
        LEFT JOIN users actioner ON ai.action_by = actioner.id
        WHERE ai.id = ? AND ai.tenant_id = ?
        """,
        (insight_id, tenant_id),
    ).fetchone()
    return _decode(row) if row else None


def fetch_review_history(conn: sqlite3.Connection, insight_id: int) -> list[dict]:
    rows = conn.execute(
        """
        SELECT h.*, u.full_name AS changed_by_name
        FROM insight_review_history h
        JOIN users u ON h.changed_by = u.id
        WHERE h.insight_id = ?
        ORDER BY h.created_at DESC, h.id DESC
        """,
        (insight_id,),
    ).fetchall()
    return [row_to_dict(r) for r in rows]


def transition_insight(
    conn:       sqlite3.Connection,
    insight:    dict,
    new_status: str,
    changed_by: int,
    notes:      Optional[str],
    fields:     dict,
) -> dict:
    """
    Move an insight to `new_status`, recording the change in the review
    history. `fields` sets the review/action columns; a value of NOW
    stamps CURRENT_TIMESTAMP.
    """
    unknown = set(fields) - _TRANSITION_FIELDS
    if unknown:
        raise ValueError(f"Cannot set insight fields: {sorted(unknown)}")

    conn.execute(
        """
        INSERT INTO insight_review_history (insight_id, previous_status, new_status, changed_by, notes)
        VALUES (?, ?, ?, ?, ?)
        """,
        (insight["id"], insight["status"], new_status, changed_by, notes),
    )

    assignments = ["status = ?", "updated_at = CURRENT_TIMESTAMP"]
    params: list = [new_status]
    for column, value in fields.items():
        if value is NOW:
            assignments.append(f"{column} = CURRENT_TIMESTAMP")
        else:
            assignments.append(f"{column} = ?")
            params.append(value)
    conn.execute(
        f"UPDATE absence_insights SET {', '.join(assignments)} WHERE id = ?",
        [*params, insight["id"]],
    )
    conn.commit()

    row = conn.execute("SELECT * FROM absence_insights WHERE id = ?", (insight["id"],)).fetchone()
    return _decode(row)


# ── Access ────────────────────────────────────────────────────────────────────

def is_direct_report(conn: sqlite3.Connection, employee_id: int, manager_id: int) -> bool:
    row = conn.execute(
        "SELECT id FROM users WHERE id = ? AND manager_id = ?",
        (employee_id, manager_id),
    ).fetchone()
    return row is not None


# ── Dashboard ────────────────────────────────────────────────────────────────

def fetch_dashboard(
    conn:       sqlite3.Connection,
    tenant_id:  int,
    manager_id: Optional[int] = None,
    today:      Optional[date] = None,
) -> dict:
    """
    Raw dashboard aggregates:
      overview               — pending/new/high-priority/recent counts
      pattern_breakdown      — open insights per pattern type
      high_priority_insights — 5 most recent open high-priority insights
      top_bradford_scores    — 10 highest non-zero Bradford factors
    """
    recent_cutoff = ((today or date.today()) - timedelta(days=7)).isoformat()
    manager_sql = f"AND {_REPORTS_OF}" if manager_id is not None else ""
    scope = [tenant_id] + ([manager_id] if manager_id is not None else [])

    overview = conn.execute(
        f"""
        SELECT
            COALESCE(SUM(CASE WHEN status IN ('new', 'pending_review') THEN 1 ELSE 0 END), 0)
                AS pending_count,
            COALESCE(SUM(CASE WHEN status = 'new' THEN 1 ELSE 0 END), 0)
                AS new_count,
            COALESCE(SUM(CASE WHEN priority = 'high'
                               AND status NOT IN ('dismissed', 'action_taken') THEN 1 ELSE 0 END), 0)
                AS high_priority_count,
            COALESCE(SUM(CASE WHEN detection_date >= ? THEN 1 ELSE 0 END), 0)
                AS recent_count
        FROM absence_insights ai
        WHERE ai.tenant_id = ? {manager_sql}
        """,
        [recent_cutoff, *scope],
    ).fetchone()

    breakdown = conn.execute(
        f"""
        SELECT pattern_type, COUNT(*) AS count
        FROM absence_insights ai
        WHERE ai.tenant_id = ?
          AND status NOT IN ('dismissed', 'action_taken')
          {manager_sql}
        GROUP BY pattern_type
        ORDER BY count DESC, pattern_type
        """,
        scope,
    ).fetchall()

    high_priority = conn.execute(
        f"""
        SELECT ai.id, ai.employee_id, ai.pattern_type, ai.priority, ai.summary,
               ai.detection_date, u.full_name AS employee_name
        FROM absence_insights ai
        JOIN users u ON ai.employee_id = u.id
        WHERE ai.tenant_id = ?
          AND ai.priority = 'high'
          AND ai.status NOT IN ('dismissed', 'action_taken')
          {manager_sql}
        ORDER BY ai.detection_date DESC, ai.id DESC
        LIMIT 5
        """,
        scope,
    ).fetchall()

    summary_manager_sql = (
        "AND s.employee_id IN (SELECT id FROM users WHERE manager_id = ?)"
        if manager_id is not None else ""
    )
    top_bradford = conn.execute(
        f"""
        SELECT s.employee_id, s.bradford_factor, s.total_absences_12m, s.total_sick_days_12m,
               u.full_name AS employee_name, u.employee_number
        FROM absence_summaries s
        JOIN users u ON s.employee_id = u.id
        WHERE s.tenant_id = ?
          AND s.bradford_factor > 0
          {summary_manager_sql}
        ORDER BY s.bradford_factor DESC
        LIMIT 10
        """,
        scope,
    ).fetchall()

    return {
        "overview":               row_to_dict(overview),
        "pattern_breakdown":      [row_to_dict(r) for r in breakdown],
        "high_priority_insights": [row_to_dict(r) for r in high_priority],
        "top_bradford_scores":    [row_to_dict(r) for r in top_bradford],
    }
