"""
Absence Pattern Detector — derives wellbeing/compliance insights from an
employee's leave history.

Algorithm: independent threshold rules over the last 12 months of absences.
Each detector takes the pre-fetched absence rows (start date descending)
and returns either None or one candidate insight:
  { pattern_type, priority, period_start, period_end,
    pattern_data, related_absence_ids, summary }

Detectors never touch the DB. De-duplication against already-recorded
insights happens in the caller (see detection.py).
"""
from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import date, timedelta
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)

THRESHOLDS = {
    "frequency": {
        "absences_per_90_days": 3,
        "absences_per_year":    6,
    },
    "monday_friday": {
        "percentage":   50,
        "min_absences": 4,
    },
    "post_holiday": {
        "occurrences": 2,
        "days_after":  2,     # absence must start within N days of the holiday ending
    },
    "duration_trend": {
        "increase_percentage": 50,
        "min_periods":         2,
    },
    "short_notice": {
        "same_day_count": 3,
        "percentage":     40,
    },
    "recurring_reason": {
        "min_count": 3,
    },
}

REASON_LABELS = {
    "illness":             "General illness",
    "injury":              "Injury",
    "mental_health":       "Mental health",
    "medical_appointment": "Medical appointments",
    "other":               "Other reasons",
}

MONDAY, FRIDAY = 0, 4


# ── helpers ──────────────────────────────────────────────────────────────────

def _as_date(value) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _round_half_up(value: float, ndigits: int = 0) -> float:
    """Round like a spreadsheet would (2.5 → 3), not banker's rounding."""
    factor = 10 ** ndigits
    return math.floor(value * factor + 0.5) / factor


def _pct(part: int, whole: int) -> int:
    return int(_round_half_up(part / whole * 100)) if whole else 0


def months_ago(today: date, months: int) -> date:
    """Same day-of-month `months` calendar months back, clamped to month end."""
    month_index = today.year * 12 + (today.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    next_month = date(year + (month == 12), month % 12 + 1, 1)
    last_day = (next_month - timedelta(days=1)).day
    return date(year, month, min(today.day, last_day))


def duration_days(absence: dict) -> int:
    """Calendar days covered by an absence (inclusive); 1 when unknown."""
    if absence.get("duration_days"):
        return int(absence["duration_days"])
    start, end = absence.get("leave_start_date"), absence.get("leave_end_date")
    if start is None or end is None:
        return 1
    return (_as_date(end) - _as_date(start)).days + 1 or 1


def _since(absences: list[dict], cutoff: date) -> list[dict]:
    return [a for a in absences if _as_date(a["leave_start_date"]) >= cutoff]


def _is_same_day(absence: dict) -> bool:
    notice = absence.get("notice_days")
    return notice is not None and int(notice) <= 0


# ── individual detectors ──────────────────────────────────────────────────────

def detect_frequency(absences: list[dict], today: date) -> Optional[dict]:
    """
    Frequency: 3+ absences starting in the last 90 days.
    """
    threshold = THRESHOLDS["frequency"]["absences_per_90_days"]
    period_start = today - timedelta(days=90)
    recent = _since(absences, period_start)

    if len(recent) < threshold:
        return None

    count = len(recent)
    return {
        "pattern_type": "frequency",
        "priority":     "high" if count >= 5 else "medium",
        "period_start": period_start.isoformat(),
        "period_end":   today.isoformat(),
        "pattern_data": {
            "count":       count,
            "period_days": 90,
            "threshold":   threshold,
        },
        "related_absence_ids": [a["id"] for a in recent],
        "summary": f"{count} absences in the last 90 days (threshold: {threshold})",
    }


def detect_monday_friday(absences: list[dict], today: date) -> Optional[dict]:
    """
    Weekend extension: half or more of the last six months' absences start
    on a Monday or a Friday. Needs at least 4 absences to say anything.
    """
    min_absences = THRESHOLDS["monday_friday"]["min_absences"]
    if len(absences) < min_absences:
        return None

    period_start = months_ago(today, 6)
    recent = _since(absences, period_start)
    if len(recent) < min_absences:
        return None

    mondays = [a for a in recent if _as_date(a["leave_start_date"]).weekday() == MONDAY]
    fridays = [a for a in recent if _as_date(a["leave_start_date"]).weekday() == FRIDAY]
    adjacent = len(mondays) + len(fridays)
    percentage = _pct(adjacent, len(recent))

    if percentage < THRESHOLDS["monday_friday"]["percentage"]:
        return None

    return {
        "pattern_type": "monday_friday",
        "priority":     "high" if percentage >= 70 else "medium",
        "period_start": period_start.isoformat(),
        "period_end":   today.isoformat(),
        "pattern_data": {
            "monday_count":   len(mondays),
            "friday_count":   len(fridays),
            "total_absences": len(recent),
            "percentage":     percentage,
        },
        "related_absence_ids": [
            a["id"] for a in recent
            if _as_date(a["leave_start_date"]).weekday() in (MONDAY, FRIDAY)
        ],
        "summary": (f"{percentage}% of absences ({adjacent}/{len(recent)}) "
                    f"fall on Monday or Friday"),
    }


def detect_post_holiday(absences: list[dict], holidays: list[dict],
                        today: date) -> Optional[dict]:
    """
    Post-holiday: absent within 2 days of returning from approved annual
    leave on 2+ occasions. Each holiday contributes at most one occurrence.
    """
    if not holidays:
        return None

    days_window = THRESHOLDS["post_holiday"]["days_after"]
    occurrences = []
    for holiday in holidays:
        holiday_end = _as_date(holiday["leave_end_date"])
        for absence in absences:
            absence_start = _as_date(absence["leave_start_date"])
            days_after = (absence_start - holiday_end).days
            if 0 <= days_after <= days_window:
                occurrences.append({
                    "holiday_end":   holiday_end.isoformat(),
                    "absence_start": absence_start.isoformat(),
                    "absence_id":    absence["id"],
                    "days_after":    days_after,
                })
                break

    threshold = THRESHOLDS["post_holiday"]["occurrences"]
    if len(occurrences) < threshold:
        return None

    return {
        "pattern_type": "post_holiday",
        "priority":     "high" if len(occurrences) >= 3 else "medium",
        "period_start": months_ago(today, 12).isoformat(),
        "period_end":   today.isoformat(),
        "pattern_data": {
            "occurrences": occurrences,
            "threshold":   threshold,
            "days_window": days_window,
        },
        "related_absence_ids": [o["absence_id"] for o in occurrences],
        "summary": (f"Absent within {days_window} day(s) of returning from annual "
                    f"leave on {len(occurrences)} occasions"),
    }


def quarterly_durations(absences: list[dict]) -> list[dict]:
    """Average absence length per calendar quarter, oldest quarter first."""
    quarters: dict[str, dict] = defaultdict(lambda: {"total_days": 0, "count": 0})
    for absence in absences:
        start = _as_date(absence["leave_start_date"])
        key = f"{start.year}-Q{(start.month - 1) // 3 + 1}"
        quarters[key]["total_days"] += duration_days(absence)
        quarters[key]["count"] += 1

    return [
        {"period": period,
         "avg_days": _round_half_up(q["total_days"] / q["count"], 1)}
        for period, q in sorted(quarters.items())
    ]


def _trend_slope(periods: list[dict]) -> float:
    """Least-squares slope of the quarterly averages (days per quarter)."""
    y = np.array([p["avg_days"] for p in periods], dtype=float)
    x = np.arange(len(y), dtype=float)
    slope, _intercept = np.polyfit(x, y, 1)
    return round(float(slope), 2)


def detect_duration_trend(absences: list[dict], today: date) -> Optional[dict]:
    """
    Duration trend: average absence length in the latest quarter is 50%+
    above the earliest quarter in the window.
    """
    periods = quarterly_durations(absences)
    if len(periods) < THRESHOLDS["duration_trend"]["min_periods"]:
        return None

    first_avg = periods[0]["avg_days"]
    last_avg  = periods[-1]["avg_days"]
    if first_avg <= 0 or last_avg <= first_avg:
        return None

    increase = int(_round_half_up((last_avg - first_avg) / first_avg * 100))
    if increase < THRESHOLDS["duration_trend"]["increase_percentage"]:
        return None

    return {
        "pattern_type": "duration_trend",
        "priority":     "high" if increase >= 100 else "medium",
        "period_start": months_ago(today, 12).isoformat(),
        "period_end":   today.isoformat(),
        "pattern_data": {
            "periods":                periods,
            "first_period_avg":       first_avg,
            "last_period_avg":        last_avg,
            "increase_percentage":    increase,
            "slope_days_per_quarter": _trend_slope(periods),
        },
        "related_absence_ids": [a["id"] for a in absences],
        "summary": (f"Average absence duration increased by {increase}% "
                    f"(from {first_avg} to {last_avg} days)"),
    }


def detect_short_notice(absences: list[dict], today: date) -> Optional[dict]:
    """
    Short notice: frequent same-day reporting (notice_days <= 0) in the last
    90 days, by absolute count or by share of recent absences.
    """
    period_start = today - timedelta(days=90)
    recent = _since(absences, period_start)
    if len(recent) < 3:
        return None

    same_day = [a for a in recent if _is_same_day(a)]
    percentage = _pct(len(same_day), len(recent))

    limits = THRESHOLDS["short_notice"]
    if len(same_day) < limits["same_day_count"] and percentage < limits["percentage"]:
        return None

    return {
        "pattern_type": "short_notice",
        "priority":     "high" if percentage >= 60 else "medium",
        "period_start": period_start.isoformat(),
        "period_end":   today.isoformat(),
        "pattern_data": {
            "same_day_count":       len(same_day),
            "total_absences":       len(recent),
            "percentage":           percentage,
            "threshold_count":      limits["same_day_count"],
            "threshold_percentage": limits["percentage"],
        },
        "related_absence_ids": [a["id"] for a in same_day],
        "summary": (f"{len(same_day)} same-day absence reports "
                    f"({percentage}% of recent absences)"),
    }


def detect_recurring_reason(absences: list[dict], today: date) -> Optional[dict]:
    """
    Recurring reason: the same sick reason cited 3+ times in 12 months.
    Reasons are considered in the order they first appear (most recent first).
    """
    min_count = THRESHOLDS["recurring_reason"]["min_count"]
    sick = [a for a in absences
            if a.get("absence_category") == "sick" and a.get("sick_reason")]
    if len(sick) < min_count:
        return None

    by_reason: dict[str, list] = {}
    for absence in sick:
        by_reason.setdefault(absence["sick_reason"], []).append(absence["id"])

    for reason, ids in by_reason.items():
        if len(ids) < min_count:
            continue
        label = REASON_LABELS.get(reason, reason)
        return {
            "pattern_type": "recurring_reason",
            "priority":     "high" if len(ids) >= 5 else "low",
            "period_start": months_ago(today, 12).isoformat(),
            "period_end":   today.isoformat(),
            "pattern_data": {
                "reason":              reason,
                "reason_label":        label,
                "count":               len(ids),
                "total_sick_absences": len(sick),
            },
            "related_absence_ids": ids,
            "summary": f'{len(ids)} absences citing "{label}" in the last 12 months',
        }
    return None


# ── main entry point ─────────────────────────────────────────────────────────

DETECTORS = [
    ("frequency",        lambda ab, hol, today: detect_frequency(ab, today)),
    ("monday_friday",    lambda ab, hol, today: detect_monday_friday(ab, today)),
    ("post_holiday",     detect_post_holiday),
    ("duration_trend",   lambda ab, hol, today: detect_duration_trend(ab, today)),
    ("short_notice",     lambda ab, hol, today: detect_short_notice(ab, today)),
    ("recurring_reason", lambda ab, hol, today: detect_recurring_reason(ab, today)),
]


def detect_patterns(
    absences: list[dict],
    holidays: list[dict],
    today:    date | None = None,
) -> list[dict]:
    """
    Run every detector against one employee's history.

    absences — sick/bereavement/compassionate absences from the last
               12 months, start date descending, cancelled excluded
    holidays — approved annual leave ending in the last 12 months,
               end date descending

    Returns the fired candidate insights in detector order.
    """
    if not absences:
        return []

    today = today or date.today()
    insights = []
    for pattern_type, detector_fn in DETECTORS:
        try:
            insight = detector_fn(absences, holidays, today)
        except Exception:
            logger.exception("Absence detector %s failed", pattern_type)
            continue
        if insight:
            insights.append(insight)
    return insights
