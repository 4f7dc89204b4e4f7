"""
/api/absence-insights — HR review workflow for detected absence patterns.
"""
from __future__ import annotations

import sqlite3
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from absence_insights.analytics.absence_summary import bradford_band
from absence_insights.auth import Principal, ensure_can_view, require_roles
from absence_insights.db import get_db
from absence_insights.queries.absences import fetch_related_absences, fetch_summary
from absence_insights.queries.audit import log_action
from absence_insights.queries.insights import (
    NOW,
    count_by_status,
    fetch_dashboard,
    fetch_insight,
    fetch_pending_follow_ups,
    fetch_review_history,
    list_insights,
    transition_insight,
)

router = APIRouter(prefix="/api/absence-insights")

reviewer = require_roles("Admin", "Manager")


@router.get("")
def get_insights(
    status:       Optional[str] = Query(None),
    priority:     Optional[str] = Query(None),
    pattern_type: Optional[str] = Query(None),
    employee_id:  Optional[int] = Query(None),
    limit:        int           = Query(50, ge=1, le=500),
    offset:       int           = Query(0, ge=0),
    principal: Principal        = Depends(reviewer),
    conn: sqlite3.Connection    = Depends(get_db),
):
    filters = {
        "status":       status,
        "priority":     priority,
        "pattern_type": pattern_type,
        "employee_id":  employee_id,
    }
    insights = list_insights(conn, principal.tenant_id, principal.manager_scope,
                             limit=limit, offset=offset, **filters)
    counts = count_by_status(conn, principal.tenant_id, principal.manager_scope, **filters)
    return {
        "insights": insights,
        "counts":   counts,
        "pagination": {
            "limit":  limit,
            "offset": offset,
            "total":  sum(counts.values()),
        },
    }


@router.get("/dashboard")
def get_dashboard(
    principal: Principal     = Depends(reviewer),
    conn: sqlite3.Connection = Depends(get_db),
):
    result = fetch_dashboard(conn, principal.tenant_id, principal.manager_scope)
    for row in result["top_bradford_scores"]:
        row["bradford_band"] = bradford_band(row["bradford_factor"])
    return result


@router.get("/follow-ups/pending")
def get_pending_follow_ups(
    principal: Principal     = Depends(reviewer),
    conn: sqlite3.Connection = Depends(get_db),
):
    return {"follow_ups": fetch_pending_follow_ups(conn, principal.tenant_id,
                                                   principal.manager_scope)}


@router.get("/{insight_id}")
def get_insight(
    insight_id: int,
    principal: Principal     = Depends(reviewer),
    conn: sqlite3.Connection = Depends(get_db),
):
    insight = fetch_insight(conn, principal.tenant_id, insight_id)
    if insight is None:
        raise HTTPException(status_code=404, detail="Insight not found")
    ensure_can_view(conn, principal, insight["employee_id"])

    insight["related_absences"] = fetch_related_absences(conn, insight["related_absence_ids"])
    insight["review_history"]   = fetch_review_history(conn, insight_id)
    insight["employee_summary"] = fetch_summary(conn, principal.tenant_id, insight["employee_id"])
    return {"insight": insight}


# ── Status transitions ────────────────────────────────────────────────────────

class ReviewRequest(BaseModel):
    notes: Optional[str] = None


class ActionRequest(BaseModel):
    action_taken:   Optional[str]  = None
    follow_up_date: Optional[date] = None


class DismissRequest(BaseModel):
    reason: Optional[str] = None


def _load_for_update(conn: sqlite3.Connection, principal: Principal, insight_id: int) -> dict:
    insight = fetch_insight(conn, principal.tenant_id, insight_id)
    if insight is None:
        raise HTTPException(status_code=404, detail="Insight not found")
    ensure_can_view(conn, principal, insight["employee_id"])
    return insight


@router.put("/{insight_id}/review")
def review_insight(
    insight_id: int,
    req: Optional[ReviewRequest] = None,
    principal: Principal         = Depends(reviewer),
    conn: sqlite3.Connection     = Depends(get_db),
):
    req = req or ReviewRequest()
    insight = _load_for_update(conn, principal, insight_id)
    updated = transition_insight(conn, insight, "reviewed", principal.id, req.notes, {
        "reviewed_by":  principal.id,
        "reviewed_at":  NOW,
        "review_notes": req.notes,
    })
    log_action(conn, principal.tenant_id, principal.id, "INSIGHT_REVIEWED",
               "absence_insights", insight_id, insight, updated)
    return {"insight": updated, "message": "Insight marked as reviewed"}


@router.put("/{insight_id}/action")
def record_action(
    insight_id: int,
    req: Optional[ActionRequest] = None,
    principal: Principal         = Depends(reviewer),
    conn: sqlite3.Connection     = Depends(get_db),
):
    req = req or ActionRequest()
    if not req.action_taken:
        raise HTTPException(status_code=400, detail="Action description required")

    insight = _load_for_update(conn, principal, insight_id)
    updated = transition_insight(conn, insight, "action_taken", principal.id, req.action_taken, {
        "action_taken":   req.action_taken,
        "action_by":      principal.id,
        "action_at":      NOW,
        "follow_up_date": req.follow_up_date.isoformat() if req.follow_up_date else None,
    })
    log_action(conn, principal.tenant_id, principal.id, "INSIGHT_ACTION_TAKEN",
               "absence_insights", insight_id, insight, updated)
    return {"insight": updated, "message": "Action recorded"}


@router.put("/{insight_id}/dismiss")
def dismiss_insight(
    insight_id: int,
    req: Optional[DismissRequest] = None,
    principal: Principal          = Depends(reviewer),
    conn: sqlite3.Connection      = Depends(get_db),
):
    reason = (req.reason if req else None) or "Dismissed by reviewer"
    insight = _load_for_update(conn, principal, insight_id)
    updated = transition_insight(conn, insight, "dismissed", principal.id, reason, {
        "reviewed_by":  principal.id,
        "reviewed_at":  NOW,
        "review_notes": reason,
    })
    log_action(conn, principal.tenant_id, principal.id, "INSIGHT_DISMISSED",
               "absence_insights", insight_id, insight, updated)
    return {"insight": updated, "message": "Insight dismissed"}
