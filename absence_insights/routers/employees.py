import sqlite3

from fastapi import APIRouter, Depends, HTTPException

from absence_insights.auth import Principal, ensure_can_view, require_roles
from absence_insights.db import get_db
from absence_insights.detection import analyze_after_absence
from absence_insights.queries.absences import employee_exists, fetch_summary
from absence_insights.queries.insights import fetch_employee_insights

router = APIRouter(prefix="/api/absence-insights")


@router.get("/employee/{employee_id}")
def employee_insights(
    employee_id: int,
    principal: Principal     = Depends(require_roles("Admin", "Manager")),
    conn: sqlite3.Connection = Depends(get_db),
):
    ensure_can_view(conn, principal, employee_id)
    return {
        "insights": fetch_employee_insights(conn, principal.tenant_id, employee_id),
        "summary":  fetch_summary(conn, principal.tenant_id, employee_id),
    }


@router.post("/run-detection/{employee_id}")
def run_detection(
    employee_id: int,
    principal: Principal     = Depends(require_roles("Admin")),
    conn: sqlite3.Connection = Depends(get_db),
):
    if not employee_exists(conn, principal.tenant_id, employee_id):
        raise HTTPException(status_code=404, detail="Employee not found")

    insights = analyze_after_absence(conn, principal.tenant_id, employee_id)
    return {
        "message":  f"Pattern detection complete. {len(insights)} new insight(s) generated.",
        "insights": insights,
    }
