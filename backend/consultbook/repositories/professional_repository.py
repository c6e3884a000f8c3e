# backend/consultbook/repositories/professional_repository.py
"""Directory projection: users and professional profiles."""

import logging
from typing import Optional, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.professional import ProfessionalProfile
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ProfessionalProfileRepository(BaseRepository[ProfessionalProfile]):
    def __init__(self, db: Session):
        super().__init__(db, ProfessionalProfile)
        self.logger = logging.getLogger(__name__)

    def get_by_user_id(self, user_id: str) -> Optional[ProfessionalProfile]:
        try:
            return cast(
                Optional[ProfessionalProfile],
                self.db.query(ProfessionalProfile)
                .filter(ProfessionalProfile.user_id == user_id)
                .first(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading profile for {user_id}: {str(e)}")
            raise RepositoryException(f"Failed to load professional profile: {str(e)}")
