"""
Rolling absence statistics — pure functions.

Bradford Factor: B = S² × D where S is the number of absence spells and
D the total days absent over a rolling 12 months. Frequent short absences
score far higher than one long absence of the same total length.
"""
from __future__ import annotations

from typing import Optional

import numpy as np

from .absence_patterns import FRIDAY, MONDAY, _as_date, _round_half_up, duration_days

BRADFORD_BANDS = [
    (500, "high"),
    (200, "medium"),
    (0,   "low"),
]


def bradford_factor(spells: int, total_days: int) -> int:
    return spells * spells * total_days


def bradford_band(score: int) -> str:
    for floor, band in BRADFORD_BANDS:
        if score >= floor:
            return band
    return "low"


def compute_summary(absences: list[dict], last_absence: Optional[dict]) -> dict:
    """
    Summary row for one employee.

    absences     — the 12-month absence set (same rows the detectors see)
    last_absence — most recent absence of any age, or None
    """
    spells = len(absences)
    durations = [duration_days(a) for a in absences]
    total_days = sum(durations)
    starts = [_as_date(a["leave_start_date"]) for a in absences]

    return {
        "total_absences_12m":    spells,
        "total_sick_days_12m":   total_days,
        "avg_duration_12m":      _round_half_up(total_days / spells, 2) if spells else 0,
        "monday_absences_12m":   sum(1 for d in starts if d.weekday() == MONDAY),
        "friday_absences_12m":   sum(1 for d in starts if d.weekday() == FRIDAY),
        "same_day_reports_12m":  sum(
            1 for a in absences
            if a.get("notice_days") is not None and int(a["notice_days"]) <= 0
        ),
        "bradford_factor":       bradford_factor(spells, total_days),
        "last_absence_date":     (_as_date(last_absence["leave_start_date"]).isoformat()
                                  if last_absence else None),
        "last_absence_duration": duration_days(last_absence) if last_absence else None,
        "last_absence_reason":   last_absence.get("sick_reason") if last_absence else None,
    }


def _mean(values: list[float]) -> Optional[float]:
    if not values:
        return None
    return _round_half_up(float(np.mean(values)), 1)


def peer_averages(
    own_days:     float,
    team_days:    Optional[list[float]],
    company_days: list[float],
) -> dict:
    """
    Mean 12-month sick days for the employee's team and whole tenant,
    the employee included. No manager → no team average.
    """
    return {
        "team_avg_sick_days":    (_mean(list(team_days) + [own_days])
                                  if team_days is not None else None),
        "company_avg_sick_days": _mean(list(company_days) + [own_days]),
    }
