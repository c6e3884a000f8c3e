# backend/tests/conftest.py
"""
Pytest configuration.

Every test runs against a fresh in-memory SQLite database shared through a
``StaticPool``. Services get a controllable clock so hold expiry can be
exercised without sleeping.
"""

import os
import tempfile

# Set testing mode BEFORE any consultbook imports
os.environ["IS_TESTING"] = "true"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("INVOICE_DIR", tempfile.mkdtemp(prefix="consultbook-invoices-"))

from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterator, Optional

from fastapi.testclient import TestClient
import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from consultbook.core.config import settings

settings.is_testing = True

from consultbook.api.dependencies.database import get_db
from consultbook.auth import create_access_token
from consultbook.core.enums import PaymentMethod, RoleName
from consultbook.database import Base
from consultbook.integrations.gateways import CashGateway
from consultbook.main import app
from consultbook.models.booking import Booking, BookingStatus
from consultbook.models.professional import ProfessionalProfile
from consultbook.models.user import User
from consultbook.services.booking_service import BookingService
from consultbook.services.conflict_checker import ConflictChecker
from consultbook.services.dispute_service import DisputeService
from consultbook.services.invoice_service import InvoiceService
from consultbook.services.notification_service import NotificationService
from consultbook.services.payment_service import PaymentService
from consultbook.services.slot_service import SlotService

from .support import MONDAY_MORNING, NINE_LOCAL, SESSION_PRICE, FixedClock, RecordingGateway

# ============================================================================
# Database
# ============================================================================


@pytest.fixture
def engine() -> Iterator[Engine]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


@pytest.fixture
def db(session_factory: sessionmaker) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# ============================================================================
# Users
# ============================================================================


def _add_user(db: Session, email: str, name: str, role: RoleName) -> User:
    user = User(email=email, name=name, role=role.value)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def client_user(db: Session) -> User:
    return _add_user(db, "client@example.com", "Rahim Client", RoleName.CLIENT)


@pytest.fixture
def other_client(db: Session) -> User:
    return _add_user(db, "other@example.com", "Karim Other", RoleName.CLIENT)


@pytest.fixture
def professional_user(db: Session) -> User:
    user = _add_user(db, "pro@example.com", "Dr. Professional", RoleName.PROFESSIONAL)
    db.add(
        ProfessionalProfile(
            user_id=user.id,
            session_price=SESSION_PRICE,
            currency="BDT",
            timezone="Asia/Dhaka",
            schedule=MONDAY_MORNING,
        )
    )
    db.commit()
    return user


@pytest.fixture
def moderator_user(db: Session) -> User:
    return _add_user(db, "mod@example.com", "Moderator", RoleName.MODERATOR)


# ============================================================================
# Services
# ============================================================================


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def conflict_checker(db: Session, clock: FixedClock) -> ConflictChecker:
    return ConflictChecker(db, clock=clock)


@pytest.fixture
def notifications(db: Session) -> NotificationService:
    return NotificationService(db)


@pytest.fixture
def slot_service(db: Session, conflict_checker: ConflictChecker) -> SlotService:
    return SlotService(db, conflict_checker=conflict_checker)


@pytest.fixture
def booking_service(
    db: Session, conflict_checker: ConflictChecker, notifications: NotificationService
) -> BookingService:
    return BookingService(db, conflict_checker=conflict_checker, notifications=notifications)


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def invoice_service(db: Session, tmp_path) -> InvoiceService:
    return InvoiceService(db, output_dir=str(tmp_path / "invoices"))


@pytest.fixture
def payment_service(
    db: Session,
    gateway: RecordingGateway,
    booking_service: BookingService,
    conflict_checker: ConflictChecker,
    notifications: NotificationService,
    invoice_service: InvoiceService,
) -> PaymentService:
    def factory(method: PaymentMethod):
        return CashGateway() if PaymentMethod(method) is PaymentMethod.CASH else gateway

    return PaymentService(
        db,
        gateway_factory=factory,
        booking_service=booking_service,
        conflict_checker=conflict_checker,
        notifications=notifications,
        invoice_service=invoice_service,
    )


@pytest.fixture
def dispute_service(
    db: Session,
    booking_service: BookingService,
    payment_service: PaymentService,
    notifications: NotificationService,
) -> DisputeService:
    return DisputeService(
        db,
        booking_service=booking_service,
        payment_service=payment_service,
        notifications=notifications,
    )


@pytest.fixture
def make_booking(
    db: Session, client_user: User, professional_user: User, clock: FixedClock
) -> Callable[..., Booking]:
    """Insert a booking row directly, bypassing the service checks."""

    def _make(
        start: datetime = NINE_LOCAL,
        minutes: int = 60,
        status: BookingStatus = BookingStatus.PENDING,
        user: Optional[User] = None,
        created_at: Optional[datetime] = None,
    ) -> Booking:
        booking = Booking(
            user_id=(user or client_user).id,
            professional_id=professional_user.id,
            start_time=start,
            end_time=start + timedelta(minutes=minutes),
            price=SESSION_PRICE,
            currency="BDT",
            status=status.value,
            created_at=created_at or clock(),
        )
        db.add(booking)
        db.commit()
        return booking

    return _make


# ============================================================================
# HTTP
# ============================================================================


@pytest.fixture
def client(session_factory: sessionmaker) -> Iterator[TestClient]:
    def override_get_db() -> Iterator[Session]:
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> Callable[[User], Dict[str, str]]:
    def _headers(user: User) -> Dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return _headers
