# backend/consultbook/models/professional.py
"""
Professional profile: session price, timezone and the recurring weekly schedule.

The schedule is stored as the JSON document professionals submit; it is
parsed into ``WeeklySchedule`` by the directory service before the engine
reads it.
"""

from sqlalchemy import CheckConstraint, Column, ForeignKey, Numeric, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base
from .types import JSONDocument, UTCDateTime, now_utc


class ProfessionalProfile(Base):
    __tablename__ = "professional_profiles"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id = Column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    session_price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="BDT")
    timezone = Column(String(50), nullable=False, default="Asia/Dhaka")
    schedule = Column(JSONDocument(), nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, default=now_utc, server_default=func.now())
    updated_at = Column(UTCDateTime(), nullable=True, onupdate=now_utc)

    user = relationship("User", back_populates="professional_profile")

    __table_args__ = (
        CheckConstraint("session_price >= 0", name="ck_professional_profiles_price_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<ProfessionalProfile user={self.user_id} tz={self.timezone}>"
