"""
absence_insights — absence pattern detection for HR wellbeing review

  queries/    DB I/O only (parameterised SQLite)
  analytics/  pure functions: pattern detectors, Bradford summary
  routers/    FastAPI endpoints under /api/absence-insights
  detection   the per-employee pass tying them together (also a CLI)

Usage:
    uvicorn absence_insights.main:app
    python3 -m absence_insights.detection --tenant 1 --all
"""
