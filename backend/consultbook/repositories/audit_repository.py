# backend/consultbook/repositories/audit_repository.py
"""
Repository helpers for audit_log persistence and querying.
"""

from __future__ import annotations

from typing import Optional, cast

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from ..models.audit_log import AuditLog


class AuditRepository:
    """Persist and query audit trail entries."""

    def __init__(self, db: Session):
        self.db = db

    def write(self, audit: AuditLog) -> AuditLog:
        """Persist a new audit row inside the active transaction."""
        self.db.add(audit)
        self.db.flush()
        return audit

    def list_for_entity(
        self, entity_type: str, entity_id: str, action: Optional[str] = None
    ) -> list[AuditLog]:
        """Audit rows for one entity, oldest first."""
        stmt: Select[tuple[AuditLog]] = (
            select(AuditLog)
            .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.occurred_at.asc())
        )
        if action is not None:
            stmt = stmt.where(AuditLog.action == action)
        return cast(list[AuditLog], list(self.db.execute(stmt).scalars().all()))
