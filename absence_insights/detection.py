"""
Absence insight detection pass.

Refreshes an employee's rolling absence summary (Bradford Factor and
friends) and records any newly detected absence patterns. Runs after an
absence is recorded, from the admin "run detection" endpoint, or in bulk
from the command line.

Usage:
    python3 -m absence_insights.detection --tenant 1 --employee 42
    python3 -m absence_insights.detection --tenant 1 --all
    python3 -m absence_insights.detection --db data/headoffice.db --tenant 1 --all
"""
from __future__ import annotations

import argparse
import logging
import sqlite3
import time
from datetime import date
from pathlib import Path

from absence_insights.analytics.absence_patterns import detect_patterns, months_ago
from absence_insights.analytics.absence_summary import compute_summary, peer_averages
from absence_insights.db import DB_PATH, connect, init_db
from absence_insights.queries.absences import (
    fetch_absences,
    fetch_holidays,
    fetch_last_absence,
    fetch_peer_sick_days,
    fetch_tenant_employee_ids,
    upsert_summary,
)
from absence_insights.queries.insights import insert_insights, insight_exists

logger = logging.getLogger(__name__)


def update_employee_summary(
    conn:        sqlite3.Connection,
    tenant_id:   int,
    employee_id: int,
    today:       date | None = None,
) -> dict:
    """Recompute and upsert the 12-month summary row; returns what was written."""
    today = today or date.today()
    absences = fetch_absences(conn, tenant_id, employee_id, months_ago(today, 12))
    last     = fetch_last_absence(conn, tenant_id, employee_id)

    summary = compute_summary(absences, last)
    team, company = fetch_peer_sick_days(conn, tenant_id, employee_id)
    summary.update(peer_averages(summary["total_sick_days_12m"], team, company))

    upsert_summary(conn, tenant_id, employee_id, summary)
    return summary


def detect_new_insights(
    conn:        sqlite3.Connection,
    tenant_id:   int,
    employee_id: int,
    today:       date | None = None,
) -> list[dict]:
    """Run the detectors and drop patterns already covered by a live insight."""
    today = today or date.today()
    window_start = months_ago(today, 12)
    absences = fetch_absences(conn, tenant_id, employee_id, window_start)
    holidays = fetch_holidays(conn, tenant_id, employee_id, window_start)

    return [
        insight for insight in detect_patterns(absences, holidays, today)
        if not insight_exists(conn, tenant_id, employee_id,
                              insight["pattern_type"], insight["period_start"])
    ]


def save_insights(
    conn:        sqlite3.Connection,
    tenant_id:   int,
    employee_id: int,
    insights:    list[dict],
    today:       date | None = None,
) -> list[dict]:
    return insert_insights(conn, tenant_id, employee_id, insights, today or date.today())


def analyze_after_absence(
    conn:        sqlite3.Connection,
    tenant_id:   int,
    employee_id: int,
    today:       date | None = None,
) -> list[dict]:
    """
    Full pass for one employee: summary, detection, persistence.

    Pattern analysis must never block the operation that triggered it, so
    any failure is logged and an empty list returned.
    """
    try:
        update_employee_summary(conn, tenant_id, employee_id, today)
        insights = detect_new_insights(conn, tenant_id, employee_id, today)
        if not insights:
            return []
        saved = save_insights(conn, tenant_id, employee_id, insights, today)
        logger.info("Created %d insight(s) for employee %s", len(saved), employee_id)
        return saved
    except Exception:
        logger.exception("Error analyzing absence patterns for employee %s", employee_id)
        conn.rollback()
        return []


def analyze_tenant(
    conn:      sqlite3.Connection,
    tenant_id: int,
    today:     date | None = None,
    verbose:   bool = True,
) -> dict[int, list[dict]]:
    """Run the full pass for every employee in a tenant."""
    t0 = time.time()
    employee_ids = fetch_tenant_employee_ids(conn, tenant_id)
    if verbose:
        print(f"Analysing {len(employee_ids)} employees in tenant {tenant_id} ...", flush=True)

    results = {}
    for employee_id in employee_ids:
        results[employee_id] = analyze_after_absence(conn, tenant_id, employee_id, today)
        if verbose and results[employee_id]:
            kinds = ", ".join(i["pattern_type"] for i in results[employee_id])
            print(f"  employee {employee_id}: {kinds}", flush=True)

    if verbose:
        total = sum(len(v) for v in results.values())
        print(f"  Done. {total} new insight(s) in {round(time.time()-t0,1)}s\n")
    return results


# ── CLI ───────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")

    parser = argparse.ArgumentParser(description="Detect absence patterns and refresh Bradford summaries.")
    parser.add_argument("--db", default=str(DB_PATH), help="Path to the HR SQLite database")
    parser.add_argument("--tenant", type=int, default=1, help="Tenant id")
    parser.add_argument("--employee", type=int, help="Analyse a single employee")
    parser.add_argument("--all", action="store_true", help="Analyse every employee in the tenant")
    args = parser.parse_args()

    init_db(Path(args.db))
    conn = connect(Path(args.db))
    try:
        if args.all:
            analyze_tenant(conn, args.tenant)
        elif args.employee is not None:
            saved = analyze_after_absence(conn, args.tenant, args.employee)
            print(f"{len(saved)} new insight(s) for employee {args.employee}")
            for insight in saved:
                print(f"  [{insight['priority']}] {insight['summary']}")
        else:
            parser.print_help()
    finally:
        conn.close()
