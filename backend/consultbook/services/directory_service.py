# backend/consultbook/services/directory_service.py
"""
Directory Service.

Read-only view of users and professional profiles as the booking engine
needs them. Profiles are kept by the directory collaborator; this service
only resolves and parses them.
"""

from dataclasses import dataclass
from decimal import Decimal
import logging
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..core.enums import RoleName
from ..core.exceptions import NotFoundException, ServiceException
from ..models.user import User
from ..repositories.factory import RepositoryFactory
from ..schemas.schedule import WeeklySchedule
from .base import BaseService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProfessionalInfo:
    user_id: str
    session_price: Decimal
    currency: str
    timezone: str
    schedule: Optional[WeeklySchedule]


@dataclass(frozen=True)
class Principal:
    """Authenticated actor with its role resolved once."""

    id: str
    role: RoleName
    email: str = ""
    name: str = ""


class DirectoryService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.user_repository = RepositoryFactory.create_base_repository(db, User)
        self.profile_repository = RepositoryFactory.create_professional_profile_repository(db)

    def get_user(self, user_id: str) -> Principal:
        user = self.user_repository.get_by_id(user_id, load_relationships=False)
        if user is None:
            raise NotFoundException(f"User {user_id} not found", code="USER_NOT_FOUND")
        return Principal(
            id=user.id,
            role=RoleName.parse(user.role),
            email=user.email or "",
            name=user.name or "",
        )

    def find_user(self, user_id: str) -> Optional[Principal]:
        try:
            return self.get_user(user_id)
        except NotFoundException:
            return None

    def get_professional(self, professional_id: str) -> ProfessionalInfo:
        """
        Resolve the professional's price, timezone and parsed schedule.

        Raises:
            NotFoundException: No profile exists for ``professional_id``
            ServiceException: The stored schedule document is invalid
        """
        profile = self.profile_repository.get_by_user_id(professional_id)
        if profile is None:
            raise NotFoundException(
                f"Professional {professional_id} not found", code="PROFESSIONAL_NOT_FOUND"
            )
        try:
            schedule = WeeklySchedule.parse(profile.schedule)
        except ValidationError as exc:
            self.logger.error(
                "Stored schedule for professional %s is invalid: %s", professional_id, exc
            )
            raise ServiceException(
                "Professional schedule is invalid", code="INVALID_SCHEDULE"
            ) from exc
        return ProfessionalInfo(
            user_id=profile.user_id,
            session_price=Decimal(profile.session_price),
            currency=profile.currency,
            timezone=profile.timezone,
            schedule=schedule,
        )
