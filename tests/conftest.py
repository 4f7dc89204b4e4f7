"""
Shared fixtures and helpers for absence-insights tests.

All DB tests run against a fresh in-memory SQLite database with the real
schema. No running server required — route tests go through TestClient
with the DB dependency pointed at the in-memory connection.
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import sqlite3
from datetime import date

import pytest

from absence_insights.db import connect, init_schema


# --------------------------------------------------------------------------
# DB helpers
# --------------------------------------------------------------------------

def make_db() -> sqlite3.Connection:
    """In-memory DB with the full schema."""
    conn = connect(":memory:")
    init_schema(conn)
    return conn


def add_user(conn, user_id, name=None, role="Employee", manager_id=None, tenant_id=1):
    conn.execute(
        """
        INSERT INTO users (id, tenant_id, full_name, employee_number, email, role_name, manager_id)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (user_id, tenant_id, name or f"User {user_id}", f"E{user_id:04d}",
         f"user{user_id}@example.com", role, manager_id),
    )
    conn.commit()


def add_leave(conn, employee_id, start, end=None, category="sick", reason="illness",
              status="approved", notice_days=0, tenant_id=1) -> int:
    """Insert a leave request; dates may be date objects or ISO strings."""
    start = start.isoformat() if isinstance(start, date) else start
    end = end.isoformat() if isinstance(end, date) else (end or start)
    cur = conn.execute(
        """
        INSERT INTO leave_requests (
            tenant_id, employee_id, leave_start_date, leave_end_date,
            absence_category, sick_reason, status, notice_days
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (tenant_id, employee_id, start, end, category,
         reason if category == "sick" else None, status, notice_days),
    )
    conn.commit()
    return cur.lastrowid


def add_holiday(conn, employee_id, start, end, status="approved", tenant_id=1) -> int:
    return add_leave(conn, employee_id, start, end, category="annual",
                     status=status, notice_days=30, tenant_id=tenant_id)


def scalar(conn: sqlite3.Connection, sql: str, params: tuple = ()):
    """Run a scalar query and return the single value."""
    row = conn.execute(sql, params).fetchone()
    return row[0] if row else None


# --------------------------------------------------------------------------
# Fixtures
# --------------------------------------------------------------------------

@pytest.fixture
def conn():
    c = make_db()
    yield c
    c.close()


@pytest.fixture
def org(conn):
    """
    Tenant 1:  1 Admin, 2 Manager (reports: 3, 4), 5 Employee under manager 9.
    Tenant 2:  20 Admin.
    """
    add_user(conn, 1, "Ada Admin", role="Admin")
    add_user(conn, 2, "Max Manager", role="Manager")
    add_user(conn, 9, "Other Manager", role="Manager")
    add_user(conn, 3, "Erin Employee", manager_id=2)
    add_user(conn, 4, "Sam Staff", manager_id=2)
    add_user(conn, 5, "Pat Outside", manager_id=9)
    add_user(conn, 20, "Tenant Two Admin", role="Admin", tenant_id=2)
    return conn
