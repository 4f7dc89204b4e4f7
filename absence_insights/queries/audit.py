"""
Audit trail writes — DB I/O only.
"""
from __future__ import annotations

import json
import logging
import sqlite3
from typing import Optional

logger = logging.getLogger(__name__)


def log_action(
    conn:          sqlite3.Connection,
    tenant_id:     int,
    user_id:       int,
    action:        str,
    resource_type: str,
    resource_id:   int,
    old_values:    Optional[dict] = None,
    new_values:    Optional[dict] = None,
) -> None:
    """Record an audit event. A failed audit write is logged, never raised."""
    try:
        conn.execute(
            """
            INSERT INTO audit_logs (
                tenant_id, user_id, action, resource_type, resource_id,
                old_values, new_values
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                tenant_id, user_id, action, resource_type, resource_id,
                json.dumps(old_values, default=str) if old_values is not None else None,
                json.dumps(new_values, default=str) if new_values is not None else None,
            ),
        )
        conn.commit()
    except sqlite3.Error:
        logger.exception("Audit log write failed: %s %s/%s", action, resource_type, resource_id)
