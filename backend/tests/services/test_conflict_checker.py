from datetime import timedelta

from consultbook.models.booking import BookingStatus

from tests.support import NINE_LOCAL, TEN_LOCAL


class TestLivePredicate:
    def test_pending_hold_is_live_within_window(self, conflict_checker, make_booking, clock):
        booking = make_booking()
        clock.advance(minutes=15)
        assert conflict_checker.is_live(booking)
        assert not conflict_checker.is_hold_expired(booking)

    def test_pending_hold_expires_after_window(self, conflict_checker, make_booking, clock):
        booking = make_booking()
        clock.advance(minutes=16)
        assert not conflict_checker.is_live(booking)
        assert conflict_checker.is_hold_expired(booking)

    def test_paid_and_confirmed_block_regardless_of_age(
        self, conflict_checker, make_booking, clock
    ):
        paid = make_booking(status=BookingStatus.PAID)
        confirmed = make_booking(start=TEN_LOCAL, status=BookingStatus.CONFIRMED)
        clock.advance(days=3)
        assert conflict_checker.is_live(paid)
        assert conflict_checker.is_live(confirmed)
        assert not conflict_checker.is_hold_expired(confirmed)

    def test_cancelled_never_blocks(self, conflict_checker, make_booking):
        assert not conflict_checker.is_live(make_booking(status=BookingStatus.CANCELLED))


class TestFindConflicts:
    def test_half_open_ranges_touching_do_not_conflict(
        self, conflict_checker, make_booking, professional_user
    ):
        make_booking(start=NINE_LOCAL)
        assert not conflict_checker.has_conflict(
            professional_user.id, TEN_LOCAL, TEN_LOCAL + timedelta(hours=1)
        )

    def test_overlap_detected(self, conflict_checker, make_booking, professional_user):
        booking = make_booking(start=NINE_LOCAL)
        conflicts = conflict_checker.find_conflicts(
            professional_user.id,
            NINE_LOCAL + timedelta(minutes=30),
            TEN_LOCAL + timedelta(minutes=30),
        )
        assert [b.id for b in conflicts] == [booking.id]

    def test_expired_hold_no_longer_conflicts_at_t_plus_16(
        self, conflict_checker, make_booking, professional_user, clock
    ):
        make_booking(start=NINE_LOCAL)
        clock.advance(minutes=16)
        assert not conflict_checker.has_conflict(professional_user.id, NINE_LOCAL, TEN_LOCAL)

    def test_excluded_booking_is_ignored(
        self, conflict_checker, make_booking, professional_user
    ):
        booking = make_booking(status=BookingStatus.CONFIRMED)
        assert not conflict_checker.has_conflict(
            professional_user.id, NINE_LOCAL, TEN_LOCAL, exclude_booking_id=booking.id
        )

    def test_other_professional_is_independent(
        self, conflict_checker, make_booking, client_user
    ):
        make_booking(status=BookingStatus.CONFIRMED)
        assert not conflict_checker.has_conflict(client_user.id, NINE_LOCAL, TEN_LOCAL)
