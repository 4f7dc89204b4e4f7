"""
Request identity and role checks.

The upstream gateway authenticates the session and forwards the user and
tenant as headers; here we only resolve them against `users` and enforce
roles. Tenant defaults to 1 for single-tenant installs.
"""
from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException

from absence_insights.db import get_db
from absence_insights.queries.insights import is_direct_report


@dataclass
class Principal:
    id:        int
    tenant_id: int
    role_name: str
    full_name: str

    @property
    def is_manager(self) -> bool:
        return self.role_name == "Manager"

    @property
    def manager_scope(self) -> Optional[int]:
        """Manager id to scope queries by; None for unscoped (Admin) access."""
        return self.id if self.is_manager else None


def get_principal(
    x_user_id:   Optional[str] = Header(None),
    x_tenant_id: int           = Header(1),
    conn: sqlite3.Connection   = Depends(get_db),
) -> Principal:
    try:
        user_id = int(x_user_id)
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Not authenticated")
    row = conn.execute(
        "SELECT id, tenant_id, role_name, full_name FROM users WHERE id = ? AND tenant_id = ?",
        (user_id, x_tenant_id),
    ).fetchone()
    if row is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return Principal(
        id=row["id"],
        tenant_id=row["tenant_id"],
        role_name=row["role_name"],
        full_name=row["full_name"],
    )


def require_roles(*roles: str):
    """Dependency factory: allow only principals whose role is in `roles`."""
    def dependency(principal: Principal = Depends(get_principal)) -> Principal:
        if principal.role_name not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return principal
    return dependency


def ensure_can_view(conn: sqlite3.Connection, principal: Principal, employee_id: int) -> None:
    """Managers may only see their direct reports."""
    if principal.is_manager and not is_direct_report(conn, employee_id, principal.id):
        raise HTTPException(status_code=403, detail="Access denied")
