"""
Double-booking guarantees under concurrent writers and mixed operations.

The race test runs on a file-backed SQLite database so each thread gets its
own connection, unlike the shared in-memory engine the other tests use.
"""

from datetime import datetime, timezone
from itertools import combinations
import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from consultbook.core.enums import RoleName
from consultbook.core.exceptions import BookingConflictException
from consultbook.database import Base
from consultbook.models.booking import Booking, BookingStatus
from consultbook.models.professional import ProfessionalProfile
from consultbook.models.user import User
from consultbook.services.booking_service import BookingService
from consultbook.services.conflict_checker import ConflictChecker

from tests.support import (
    ELEVEN_LOCAL,
    MONDAY_MORNING,
    NINE_LOCAL,
    SESSION_PRICE,
    TEN_LOCAL,
    FixedClock,
)


def _assert_no_live_overlap(db, conflict_checker):
    live = [b for b in db.query(Booking).all() if conflict_checker.is_live(b)]
    for first, second in combinations(live, 2):
        if first.professional_id != second.professional_id:
            continue
        overlaps = first.start_time < second.end_time and second.start_time < first.end_time
        assert not overlaps, f"{first.id} and {second.id} overlap"


@pytest.fixture
def file_sessions(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'bookings.db'}",
        connect_args={"check_same_thread": False, "timeout": 10},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def race_parties(file_sessions):
    session = file_sessions()
    try:
        professional = User(
            email="pro@example.com", name="Dr. Race", role=RoleName.PROFESSIONAL.value
        )
        first = User(email="first@example.com", name="First Client", role=RoleName.CLIENT.value)
        second = User(email="second@example.com", name="Second Client", role=RoleName.CLIENT.value)
        session.add_all([professional, first, second])
        session.flush()
        session.add(
            ProfessionalProfile(
                user_id=professional.id,
                session_price=SESSION_PRICE,
                currency="BDT",
                timezone="Asia/Dhaka",
                schedule=MONDAY_MORNING,
            )
        )
        session.commit()
        return professional.id, [first.id, second.id]
    finally:
        session.close()


class TestConcurrentCreate:
    def test_two_threads_same_range_exactly_one_wins(self, file_sessions, race_parties):
        professional_id, client_ids = race_parties
        clock = FixedClock(datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc))
        barrier = threading.Barrier(len(client_ids))
        outcomes = []
        outcomes_lock = threading.Lock()

        def attempt(client_id):
            session = file_sessions()
            try:
                service = BookingService(
                    session, conflict_checker=ConflictChecker(session, clock=clock)
                )
                barrier.wait()
                try:
                    booking = service.create(client_id, professional_id, NINE_LOCAL, TEN_LOCAL)
                    outcome = ("booked", booking.id)
                except BookingConflictException as exc:
                    outcome = ("conflict", exc.code)
                except Exception as exc:
                    outcome = ("error", repr(exc))
                with outcomes_lock:
                    outcomes.append(outcome)
            finally:
                session.close()

        threads = [threading.Thread(target=attempt, args=(cid,)) for cid in client_ids]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        kinds = sorted(kind for kind, _ in outcomes)
        assert kinds == ["booked", "conflict"], outcomes
        assert [code for kind, code in outcomes if kind == "conflict"] == ["BOOKING_CONFLICT"]

        session = file_sessions()
        try:
            bookings = session.query(Booking).all()
            assert len(bookings) == 1
            assert bookings[0].status == BookingStatus.PENDING.value
        finally:
            session.close()


class TestMixedOperations:
    def test_live_bookings_never_overlap(
        self, db, booking_service, conflict_checker, client_user, other_client,
        professional_user, moderator_user, clock,
    ):
        pro = professional_user.id
        first = booking_service.create(client_user.id, pro, NINE_LOCAL, TEN_LOCAL)
        booking_service.update_status(first.id, BookingStatus.CONFIRMED, pro)
        held = booking_service.create(other_client.id, pro, TEN_LOCAL, ELEVEN_LOCAL)
        _assert_no_live_overlap(db, conflict_checker)

        with pytest.raises(BookingConflictException):
            booking_service.reschedule(
                first.id, TEN_LOCAL, ELEVEN_LOCAL, pro, RoleName.PROFESSIONAL
            )
        with pytest.raises(BookingConflictException):
            booking_service.create(other_client.id, pro, NINE_LOCAL, TEN_LOCAL)
        _assert_no_live_overlap(db, conflict_checker)

        # The unpaid hold lapses and stops blocking
        clock.advance(minutes=16)
        assert conflict_checker.is_hold_expired(db.get(Booking, held.id))
        booking_service.reschedule(
            first.id, TEN_LOCAL, ELEVEN_LOCAL, moderator_user.id, RoleName.MODERATOR
        )
        _assert_no_live_overlap(db, conflict_checker)

        refill = booking_service.create(other_client.id, pro, NINE_LOCAL, TEN_LOCAL)
        with pytest.raises(BookingConflictException):
            booking_service.create(client_user.id, pro, TEN_LOCAL, ELEVEN_LOCAL)
        booking_service.cancel(refill.id, other_client.id)
        booking_service.create(client_user.id, pro, NINE_LOCAL, TEN_LOCAL)
        _assert_no_live_overlap(db, conflict_checker)

        live = conflict_checker.find_conflicts(pro, NINE_LOCAL, ELEVEN_LOCAL)
        assert len(live) == 2
