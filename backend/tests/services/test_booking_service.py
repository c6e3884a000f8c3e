from datetime import timedelta

import pytest

from consultbook.core.enums import NotificationKind, RoleName
from consultbook.core.exceptions import (
    BookingConflictException,
    ForbiddenException,
    InvalidRangeException,
    InvalidStateException,
    NotFoundException,
    OutsideAvailabilityException,
    ValidationException,
)
from consultbook.models.audit_log import AuditLog
from consultbook.models.booking import Booking, BookingStatus
from consultbook.models.event_outbox import EventOutbox

from tests.support import (
    ELEVEN_LOCAL,
    NINE_LOCAL,
    SESSION_PRICE,
    TEN_LOCAL,
    queued_notifications,
)


def _events(db, booking_id):
    return [
        e.event_type
        for e in db.query(EventOutbox)
        .filter(EventOutbox.aggregate_id == booking_id)
        .order_by(EventOutbox.created_at, EventOutbox.id)
        .all()
    ]


class TestCreateBooking:
    def test_creates_pending_hold_with_snapshot_price(
        self, db, booking_service, client_user, professional_user, clock
    ):
        booking = booking_service.create(
            client_user.id, professional_user.id, NINE_LOCAL, TEN_LOCAL, notes="first visit"
        )
        assert booking.status == BookingStatus.PENDING.value
        assert booking.price == SESSION_PRICE
        assert booking.currency == "BDT"
        assert booking.created_at == clock()
        assert "booking.created" in _events(db, booking.id)

    def test_fifteen_minutes_is_the_minimum(self, booking_service, client_user, professional_user):
        booking = booking_service.create(
            client_user.id, professional_user.id, NINE_LOCAL, NINE_LOCAL + timedelta(minutes=15)
        )
        assert booking.duration == timedelta(minutes=15)

    def test_fourteen_minutes_is_invalid_range(
        self, booking_service, client_user, professional_user
    ):
        with pytest.raises(InvalidRangeException):
            booking_service.create(
                client_user.id,
                professional_user.id,
                TEN_LOCAL,
                TEN_LOCAL + timedelta(minutes=14),
            )

    def test_inverted_range(self, booking_service, client_user, professional_user):
        with pytest.raises(InvalidRangeException):
            booking_service.create(client_user.id, professional_user.id, TEN_LOCAL, NINE_LOCAL)

    def test_unknown_professional(self, booking_service, client_user, other_client):
        with pytest.raises(NotFoundException):
            booking_service.create(client_user.id, other_client.id, NINE_LOCAL, TEN_LOCAL)

    def test_outside_schedule(self, booking_service, client_user, professional_user):
        with pytest.raises(OutsideAvailabilityException):
            booking_service.create(
                client_user.id,
                professional_user.id,
                ELEVEN_LOCAL + timedelta(minutes=30),
                ELEVEN_LOCAL + timedelta(minutes=90),
            )

    def test_identical_requests_one_wins_one_conflicts(
        self, db, booking_service, client_user, other_client, professional_user
    ):
        first = booking_service.create(client_user.id, professional_user.id, NINE_LOCAL, TEN_LOCAL)
        with pytest.raises(BookingConflictException) as exc_info:
            booking_service.create(other_client.id, professional_user.id, NINE_LOCAL, TEN_LOCAL)
        assert exc_info.value.details["conflicting_booking_ids"] == [first.id]
        assert db.query(Booking).count() == 1

    def test_expired_hold_frees_the_range(
        self, db, booking_service, client_user, other_client, professional_user, clock
    ):
        booking_service.create(client_user.id, professional_user.id, NINE_LOCAL, TEN_LOCAL)
        clock.advance(minutes=16)
        second = booking_service.create(
            other_client.id, professional_user.id, NINE_LOCAL, TEN_LOCAL
        )
        assert second.status == BookingStatus.PENDING.value
        assert db.query(Booking).count() == 2


class TestCancelBooking:
    def test_client_cancels_and_professional_is_notified(
        self, db, booking_service, make_booking, client_user, professional_user
    ):
        booking = make_booking(status=BookingStatus.CONFIRMED)
        cancelled = booking_service.cancel(booking.id, client_user.id, "schedule clash")

        assert cancelled.status == BookingStatus.CANCELLED.value
        assert cancelled.cancelled_by == client_user.id
        assert cancelled.cancellation_reason == "schedule clash"
        notices = queued_notifications(db, NotificationKind.BOOKING_STATUS_CHANGED)
        assert [n.payload["recipient"] for n in notices] == [professional_user.id]
        audit = db.query(AuditLog).filter(AuditLog.entity_id == booking.id).one()
        assert audit.action == "cancel"
        assert audit.before["status"] == BookingStatus.CONFIRMED.value
        assert audit.after["status"] == BookingStatus.CANCELLED.value

    def test_outsider_cannot_cancel(self, booking_service, make_booking, other_client):
        booking = make_booking()
        with pytest.raises(ForbiddenException):
            booking_service.cancel(booking.id, other_client.id)

    @pytest.mark.parametrize("status", [BookingStatus.CANCELLED, BookingStatus.COMPLETED])
    def test_terminal_booking_cannot_be_cancelled(
        self, booking_service, make_booking, client_user, status
    ):
        booking = make_booking(status=status)
        with pytest.raises(InvalidStateException):
            booking_service.cancel(booking.id, client_user.id)

    def test_unknown_booking(self, booking_service, client_user):
        with pytest.raises(NotFoundException):
            booking_service.cancel("01HZZZZZZZZZZZZZZZZZZZZZZZ", client_user.id)


class TestUpdateStatus:
    def test_professional_confirms_pending(
        self, db, booking_service, make_booking, professional_user, client_user
    ):
        booking = make_booking()
        updated = booking_service.update_status(
            booking.id, BookingStatus.CONFIRMED, professional_user.id
        )
        assert updated.status == BookingStatus.CONFIRMED.value
        confirmed = queued_notifications(db, NotificationKind.BOOKING_CONFIRMED)[0]
        assert confirmed.payload["recipient"] == client_user.id

    def test_professional_completes_paid(self, booking_service, make_booking, professional_user):
        booking = make_booking(status=BookingStatus.PAID)
        updated = booking_service.update_status(
            booking.id, BookingStatus.COMPLETED, professional_user.id
        )
        assert updated.status == BookingStatus.COMPLETED.value

    def test_client_cannot_change_status(self, booking_service, make_booking, client_user):
        booking = make_booking()
        with pytest.raises(ForbiddenException):
            booking_service.update_status(booking.id, BookingStatus.CONFIRMED, client_user.id)

    def test_cannot_set_paid_directly(self, booking_service, make_booking, professional_user):
        booking = make_booking()
        with pytest.raises(ValidationException):
            booking_service.update_status(booking.id, BookingStatus.PAID, professional_user.id)

    def test_disallowed_transition(self, booking_service, make_booking, professional_user):
        booking = make_booking(status=BookingStatus.CANCELLED)
        with pytest.raises(InvalidStateException):
            booking_service.update_status(
                booking.id, BookingStatus.CONFIRMED, professional_user.id
            )


class TestReschedule:
    def test_moving_inside_own_range_is_not_a_conflict(
        self, booking_service, make_booking, professional_user
    ):
        booking = make_booking(status=BookingStatus.CONFIRMED)
        moved = booking_service.reschedule(
            booking.id,
            NINE_LOCAL + timedelta(minutes=30),
            TEN_LOCAL + timedelta(minutes=30),
            professional_user.id,
            RoleName.PROFESSIONAL,
        )
        assert moved.start_time == NINE_LOCAL + timedelta(minutes=30)
        assert moved.status == BookingStatus.CONFIRMED.value

    def test_conflict_with_other_live_booking(
        self, booking_service, make_booking, professional_user, other_client
    ):
        booking = make_booking(status=BookingStatus.CONFIRMED)
        make_booking(start=TEN_LOCAL, user=other_client)
        with pytest.raises(BookingConflictException):
            booking_service.reschedule(
                booking.id, TEN_LOCAL, ELEVEN_LOCAL, professional_user.id, RoleName.PROFESSIONAL
            )

    def test_client_cannot_reschedule(self, booking_service, make_booking, client_user):
        booking = make_booking(status=BookingStatus.CONFIRMED)
        with pytest.raises(ForbiddenException):
            booking_service.reschedule(
                booking.id, TEN_LOCAL, ELEVEN_LOCAL, client_user.id, RoleName.CLIENT
            )

    def test_moderator_may_override_ownership(
        self, db, booking_service, make_booking, moderator_user, client_user, professional_user
    ):
        booking = make_booking(status=BookingStatus.CONFIRMED)
        moved = booking_service.reschedule(
            booking.id, TEN_LOCAL, ELEVEN_LOCAL, moderator_user.id, RoleName.MODERATOR
        )
        assert moved.start_time == TEN_LOCAL
        recipients = {
            e.payload["recipient"]
            for e in queued_notifications(db, NotificationKind.BOOKING_RESCHEDULED)
        }
        assert recipients == {client_user.id, professional_user.id}

    def test_only_confirmed_bookings_move(
        self, booking_service, make_booking, professional_user
    ):
        booking = make_booking(status=BookingStatus.PENDING)
        with pytest.raises(InvalidStateException):
            booking_service.reschedule(
                booking.id, TEN_LOCAL, ELEVEN_LOCAL, professional_user.id, RoleName.PROFESSIONAL
            )


class TestQueries:
    def test_participants_only(self, booking_service, make_booking, client_user, other_client):
        booking = make_booking()
        assert booking_service.get_booking_for_user(booking.id, client_user.id).id == booking.id
        with pytest.raises(ForbiddenException):
            booking_service.get_booking_for_user(booking.id, other_client.id)

    def test_list_filters_by_status(
        self, booking_service, make_booking, client_user, professional_user
    ):
        pending = make_booking()
        make_booking(start=TEN_LOCAL, status=BookingStatus.CONFIRMED)
        listed = booking_service.list_bookings_for_user(client_user.id, BookingStatus.PENDING)
        assert [b.id for b in listed] == [pending.id]
        assert len(booking_service.list_bookings_for_user(professional_user.id)) == 2
