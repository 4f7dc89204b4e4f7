"""
Database helpers shared across queries and routers.
No analysis logic lives here — only I/O primitives and the schema.
"""
from __future__ import annotations

import os
import sqlite3
from pathlib import Path

DATA_DIR = Path(__file__).parent.parent / "data"
DB_PATH  = Path(os.environ.get("ABSENCE_INSIGHTS_DB", DATA_DIR / "headoffice.db"))

ABSENCE_CATEGORIES = (
    "annual", "sick", "maternity", "paternity", "adoption", "shared_parental",
    "parental", "bereavement", "jury_duty", "public_duties", "compassionate",
    "toil", "unpaid",
)
SICK_REASONS   = ("illness", "medical_appointment", "injury", "mental_health",
                  "hospital", "covid", "other")
LEAVE_STATUSES = ("pending", "approved", "rejected", "cancelled")

PATTERN_TYPES     = ("frequency", "monday_friday", "post_holiday", "duration_trend",
                     "short_notice", "recurring_reason")
INSIGHT_STATUSES  = ("new", "pending_review", "reviewed", "action_taken", "dismissed")
INSIGHT_PRIORITIES = ("low", "medium", "high")


def _in(values: tuple) -> str:
    return ", ".join(f"'{v}'" for v in values)


DDL = f"""
CREATE TABLE IF NOT EXISTS users (
    id              INTEGER PRIMARY KEY,
    tenant_id       INTEGER NOT NULL,
    full_name       TEXT    NOT NULL,
    employee_number TEXT,
    email           TEXT,
    role_name       TEXT    NOT NULL DEFAULT 'Employee',
    manager_id      INTEGER REFERENCES users(id)
);

CREATE TABLE IF NOT EXISTS leave_requests (
    id               INTEGER PRIMARY KEY,
    tenant_id        INTEGER NOT NULL,
    employee_id      INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    leave_start_date TEXT    NOT NULL,
    leave_end_date   TEXT    NOT NULL,
    absence_category TEXT    NOT NULL DEFAULT 'annual'
                     CHECK (absence_category IN ({_in(ABSENCE_CATEGORIES)})),
    sick_reason      TEXT    CHECK (sick_reason IS NULL OR sick_reason IN ({_in(SICK_REASONS)})),
    status           TEXT    NOT NULL DEFAULT 'pending'
                     CHECK (status IN ({_in(LEAVE_STATUSES)})),
    notice_days      INTEGER,
    created_at       TEXT    NOT NULL DEFAULT CURRENT_TIMESTAMP,
    CHECK (leave_end_date >= leave_start_date)
);

CREATE TABLE IF NOT EXISTS absence_insights (
    id                  INTEGER PRIMARY KEY,
    tenant_id           INTEGER NOT NULL,
    employee_id         INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    pattern_type        TEXT    NOT NULL CHECK (pattern_type IN ({_in(PATTERN_TYPES)})),
    priority            TEXT    NOT NULL DEFAULT 'medium'
                        CHECK (priority IN ({_in(INSIGHT_PRIORITIES)})),
    status              TEXT    NOT NULL DEFAULT 'new'
                        CHECK (status IN ({_in(INSIGHT_STATUSES)})),
    detection_date      TEXT    NOT NULL DEFAULT (date('now')),
    period_start        TEXT    NOT NULL,
    period_end          TEXT    NOT NULL,
    pattern_data        TEXT    NOT NULL DEFAULT '{{}}',   -- JSON
    related_absence_ids TEXT    NOT NULL DEFAULT '[]',   -- JSON list of leave_requests.id
    summary             TEXT    NOT NULL,
    reviewed_by         INTEGER REFERENCES users(id),
    reviewed_at         TEXT,
    review_notes        TEXT,
    action_taken        TEXT,
    action_by           INTEGER REFERENCES users(id),
    action_at           TEXT,
    follow_up_date      TEXT,
    created_at          TEXT    NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at          TEXT    NOT NULL DEFAULT CURRENT_TIMESTAMP,
    CHECK (period_end >= period_start)
);

CREATE TABLE IF NOT EXISTS absence_summaries (
    id                    INTEGER PRIMARY KEY,
    tenant_id             INTEGER NOT NULL,
    employee_id           INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    total_sick_days_12m   REAL    NOT NULL DEFAULT 0,
    total_absences_12m    INTEGER NOT NULL DEFAULT 0,
    avg_duration_12m      REAL    NOT NULL DEFAULT 0,
    monday_absences_12m   INTEGER NOT NULL DEFAULT 0,
    friday_absences_12m   INTEGER NOT NULL DEFAULT 0,
    same_day_reports_12m  INTEGER NOT NULL DEFAULT 0,
    bradford_factor       INTEGER NOT NULL DEFAULT 0,
    bradford_updated_at   TEXT,
    last_absence_date     TEXT,
    last_absence_duration INTEGER,
    last_absence_reason   TEXT,
    team_avg_sick_days    REAL,
    company_avg_sick_days REAL,
    calculated_at         TEXT    NOT NULL DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (tenant_id, employee_id)
);

CREATE TABLE IF NOT EXISTS insight_review_history (
    id              INTEGER PRIMARY KEY,
    insight_id      INTEGER NOT NULL REFERENCES absence_insights(id) ON DELETE CASCADE,
    previous_status TEXT    NOT NULL,
    new_status      TEXT    NOT NULL,
    changed_by      INTEGER NOT NULL REFERENCES users(id),
    notes           TEXT,
    created_at      TEXT    NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS audit_logs (
    id            INTEGER PRIMARY KEY,
    tenant_id     INTEGER,
    user_id       INTEGER,
    action        TEXT    NOT NULL,
    resource_type TEXT,
    resource_id   INTEGER,
    old_values    TEXT,   -- JSON
    new_values    TEXT,   -- JSON
    created_at    TEXT    NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_leave_employee         ON leave_requests(tenant_id, employee_id);
CREATE INDEX IF NOT EXISTS idx_leave_dates            ON leave_requests(leave_start_date, leave_end_date);
CREATE INDEX IF NOT EXISTS idx_absence_insights_emp   ON absence_insights(tenant_id, employee_id);
CREATE INDEX IF NOT EXISTS idx_absence_insights_state ON absence_insights(tenant_id, status);
CREATE INDEX IF NOT EXISTS idx_absence_insights_type  ON absence_insights(pattern_type);
CREATE INDEX IF NOT EXISTS idx_absence_summaries_bf   ON absence_summaries(bradford_factor DESC);
CREATE INDEX IF NOT EXISTS idx_review_history_insight ON insight_review_history(insight_id);
"""


def row_to_dict(row) -> dict:
    return dict(row)


def init_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(DDL)
    conn.commit()


def connect(db_path: Path | str = DB_PATH) -> sqlite3.Connection:
    """
    Open the HR database. Tables must already exist, see init_db().

    Connections may be handed across FastAPI's worker threads, so the
    same-thread check is disabled; each request still owns its connection.
    """
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(db_path: Path | str = DB_PATH) -> None:
    """Create missing tables and indexes. Run once per process, not per request."""
    conn = connect(db_path)
    try:
        init_schema(conn)
    finally:
        conn.close()


def get_db():
    """FastAPI dependency: one connection per request, always closed."""
    conn = connect(DB_PATH)
    try:
        yield conn
    finally:
        conn.close()
