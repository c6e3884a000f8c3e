# backend/consultbook/models/user.py
"""
User projection read by the booking engine.

Accounts are owned by the identity service; this table only carries what the
engine needs to authorise and notify participants.
"""

from sqlalchemy import Column, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import RoleName
from ..database import Base
from .types import UTCDateTime, now_utc


class User(Base):
    __tablename__ = "users"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False, default="")
    role = Column(String(20), nullable=False, default=RoleName.CLIENT.value)
    timezone = Column(String(50), nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, default=now_utc, server_default=func.now())

    professional_profile = relationship(
        "ProfessionalProfile", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )

    @property
    def role_name(self) -> RoleName:
        return RoleName.parse(self.role)

    def __repr__(self) -> str:
        return f"<User {self.id} role={self.role}>"
