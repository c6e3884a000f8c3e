# backend/consultbook/repositories/dispute_repository.py
"""Dispute Repository."""

import logging
from typing import List, Optional, cast

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session, joinedload

from ..core.constants import DEFAULT_QUERY_LIMIT
from ..core.exceptions import RepositoryException
from ..models.dispute import Dispute, DisputeStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class DisputeRepository(BaseRepository[Dispute]):
    def __init__(self, db: Session):
        super().__init__(db, Dispute)
        self.logger = logging.getLogger(__name__)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(joinedload(Dispute.booking))

    def get_for_update(self, dispute_id: str) -> Optional[Dispute]:
        try:
            stmt = select(Dispute).where(Dispute.id == dispute_id).with_for_update()
            return cast(Optional[Dispute], self.db.execute(stmt).scalar_one_or_none())
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking dispute {dispute_id}: {str(e)}")
            raise RepositoryException(f"Failed to load dispute: {str(e)}")

    def list_for_user(self, user_id: str, limit: int = DEFAULT_QUERY_LIMIT) -> List[Dispute]:
        """Disputes the user raised, newest first."""
        try:
            return cast(
                List[Dispute],
                self.db.query(Dispute)
                .filter(Dispute.user_id == user_id)
                .order_by(Dispute.created_at.desc())
                .limit(limit)
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing disputes for {user_id}: {str(e)}")
            raise RepositoryException(f"Failed to list disputes: {str(e)}")

    def list_all(
        self,
        *,
        status: Optional[DisputeStatus] = None,
        limit: int = DEFAULT_QUERY_LIMIT,
        offset: int = 0,
    ) -> List[Dispute]:
        try:
            query = self.db.query(Dispute)
            if status is not None:
                query = query.filter(Dispute.status == status.value)
            return cast(
                List[Dispute],
                query.order_by(Dispute.created_at.desc()).offset(offset).limit(limit).all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing disputes: {str(e)}")
            raise RepositoryException(f"Failed to list disputes: {str(e)}")
