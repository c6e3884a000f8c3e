# backend/consultbook/models/audit_log.py
"""
Audit trail for administrative and lifecycle actions on bookings and disputes.
"""

from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy import Column, String
from sqlalchemy.sql import func
import ulid

from ..core.enums import RoleName
from ..database import Base
from .types import JSONDocument, UTCDateTime, now_utc


class AuditLog(Base):
    """Persistence model for audit trail entries."""

    __tablename__ = "audit_log"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    entity_type = Column(String(50), nullable=False, index=True)
    entity_id = Column(String(64), nullable=False, index=True)
    action = Column(String(40), nullable=False)
    actor_id = Column(String(26), nullable=True)
    actor_role = Column(String(30), nullable=True)
    occurred_at = Column(
        UTCDateTime(),
        nullable=False,
        default=now_utc,
        server_default=func.now(),
    )
    before = Column(JSONDocument(), nullable=True)
    after = Column(JSONDocument(), nullable=True)

    @classmethod
    def from_change(
        cls,
        entity_type: str,
        entity_id: str,
        action: str,
        actor_id: str | None,
        actor_role: RoleName | str | None,
        before: Mapping[str, Any] | None,
        after: Mapping[str, Any] | None,
    ) -> "AuditLog":
        """Factory helper to build an AuditLog instance from change metadata."""
        role_value = actor_role.value if isinstance(actor_role, RoleName) else actor_role
        return cls(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            actor_role=role_value,
            before=dict(before) if before is not None else None,
            after=dict(after) if after is not None else None,
        )
