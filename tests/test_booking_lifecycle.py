"""
Tests for the booking lifecycle: quote, confirm, entry, exit and cancellation
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from parkgo.core.exceptions import (
    AuthorizationError,
    ExpiredToken,
    InsufficientBalanceError,
    InsufficientCapacityError,
    InvalidStateError,
    InvalidToken,
    NotFoundError,
    ValidationError,
    WrongType,
)
from parkgo.models import BookingStatus, TransactionStatus, TransactionType, UserRole, VehicleClass
from parkgo.services.balance_ledger import BalanceLedger
from parkgo.services.booking_service import BookingService, billable_hours
from parkgo.services.facility_service import SlotSpec


@pytest.fixture
def quote(services, db_session, clock):
    async def _quote(user_id, facility_id, vehicle_class=VehicleClass.CAR, duration_hours=2):
        booking = await services.bookings.create_booking(
            db_session,
            user_id=user_id,
            facility_id=facility_id,
            vehicle_class=vehicle_class,
            start_time=clock.now + timedelta(hours=1),
            duration_hours=duration_hours
        )
        return booking.id
    return _quote


@pytest.fixture
def confirmed(services, db_session, quote):
    async def _confirmed(user_id, facility_id, vehicle_class=VehicleClass.CAR, duration_hours=2):
        booking_id = await quote(user_id, facility_id, vehicle_class, duration_hours)
        await services.bookings.confirm_booking(db_session, booking_id, user_id)
        return booking_id
    return _confirmed


@pytest.fixture
def parked(services, db_session, confirmed):
    """Confirmed booking admitted by its owner; returns (booking_id, exit_token)"""
    async def _parked(user_id, facility_id, vehicle_class=VehicleClass.CAR, duration_hours=2):
        booking_id = await confirmed(user_id, facility_id, vehicle_class, duration_hours)
        issued = await services.bookings.generate_entry_token(db_session, booking_id, user_id)
        entry = await services.bookings.scan_entry(db_session, issued.token, user_id)
        return booking_id, entry.exit_token
    return _parked


class TestBillableHours:

    @pytest.mark.parametrize("minutes,expected", [(0, 1), (1, 1), (60, 1), (61, 2), (195, 4), (240, 4)])
    def test_rounds_up_with_minimum(self, clock, minutes, expected):
        """Test partial hours are billed whole and a visit costs at least an hour"""
        assert billable_hours(clock.now, clock.now + timedelta(minutes=minutes)) == expected


class TestCreateBooking:
    """A pending booking is only a price quote"""

    @pytest.mark.asyncio
    async def test_create_quotes_price(self, services, db_session, driver_id, facility_id, quote,
                                       read_booking, read_slot, read_balance):
        """Test cost is rate times duration and nothing is reserved"""
        booking_id = await quote(driver_id, facility_id, duration_hours=3)

        booking = await read_booking(booking_id)
        assert booking.status == BookingStatus.PENDING
        assert booking.cost == 45000
        assert booking.entry_token is None
        assert await read_slot(facility_id) == (1, 1)
        assert await read_balance(driver_id) == 100000

    @pytest.mark.asyncio
    async def test_zero_duration_rejected(self, services, db_session, driver_id, facility_id, clock):
        """Test a booking must last at least an hour"""
        with pytest.raises(ValidationError):
            await services.bookings.create_booking(
                db_session, driver_id, facility_id, VehicleClass.CAR, clock.now, 0
            )

    @pytest.mark.asyncio
    async def test_no_rate_for_class(self, services, db_session, driver_id, owner_id, make_facility, clock):
        """Test a class the facility does not price cannot be booked"""
        cars_only = await make_facility(owner_id, motorcycle=None)

        with pytest.raises(ValidationError) as exc_info:
            await services.bookings.create_booking(
                db_session, driver_id, cars_only, VehicleClass.MOTORCYCLE, clock.now, 1
            )
        assert exc_info.value.details["field"] == "vehicle_class"

    @pytest.mark.asyncio
    async def test_unknown_facility(self, services, db_session, driver_id, clock):
        """Test booking a facility that does not exist"""
        with pytest.raises(NotFoundError):
            await services.bookings.create_booking(db_session, driver_id, uuid4(), VehicleClass.CAR, clock.now, 1)

    @pytest.mark.asyncio
    async def test_create_rejected_when_full(self, driver_id, make_user, facility_id, confirmed, quote):
        """Test quoting is refused once every slot is held"""
        await confirmed(driver_id, facility_id)
        other_id = await make_user(balance=100000, name="Other")

        with pytest.raises(InsufficientCapacityError):
            await quote(other_id, facility_id)


class TestConfirmBooking:
    """Reserve, debit and record happen together or not at all"""

    @pytest.mark.asyncio
    async def test_confirm_pays_and_reserves(self, services, db_session, driver_id, facility_id, quote,
                                             read_slot, read_balance, count_transactions, clock):
        """Test confirming debits the cost, takes a slot and records the payment"""
        booking_id = await quote(driver_id, facility_id)

        booking = await services.bookings.confirm_booking(db_session, booking_id, driver_id)

        assert booking.status == BookingStatus.CONFIRMED
        assert booking.confirmed_at == clock.now
        assert await read_balance(driver_id) == 70000
        assert await read_slot(facility_id) == (1, 0)
        assert await count_transactions(driver_id, TransactionType.PAYMENT, amount=30000) == 1
        assert await count_transactions(driver_id, TransactionType.SALDO_DEBIT, amount=30000) == 1

    @pytest.mark.asyncio
    async def test_every_registered_facility_is_payable(self, services, db_session, driver_id, owner_id,
                                                        read_balance, read_slot):
        """Test a facility at the lowest accepted rate can be booked and confirmed"""
        with pytest.raises(ValidationError):
            await services.facilities.create_facility(
                db_session, owner_id, "Free Lot", [SlotSpec(VehicleClass.CAR, 1, 0)]
            )
        facility = await services.facilities.create_facility(
            db_session, owner_id, "Cheap Lot", [SlotSpec(VehicleClass.CAR, 1, 1)]
        )
        facility_id = facility.id
        booking = await services.bookings.create_booking(
            db_session, driver_id, facility_id, VehicleClass.CAR, services.clock.now, 2
        )

        confirmed = await services.bookings.confirm_booking(db_session, booking.id, driver_id)

        assert confirmed.status == BookingStatus.CONFIRMED
        assert await read_balance(driver_id) == 99998
        assert await read_slot(facility_id) == (1, 0)

    @pytest.mark.asyncio
    async def test_store_refuses_zero_rate(self, owner_id, make_facility):
        """Test an unpriced slot cannot be written even bypassing the service"""
        with pytest.raises(IntegrityError):
            await make_facility(owner_id, car=(1, 0))

    @pytest.mark.asyncio
    async def test_insufficient_balance_changes_nothing(
        self, services, db_session, make_user, facility_id, quote,
        read_slot, read_balance, read_booking, count_transactions
    ):
        """Test a failed confirm leaves balance, inventory, ledger and status untouched"""
        poor_id = await make_user(balance=10000, name="Poor")
        booking_id = await quote(poor_id, facility_id)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await services.bookings.confirm_booking(db_session, booking_id, poor_id)

        assert exc_info.value.status_code == 402
        assert await read_balance(poor_id) == 10000
        assert await read_slot(facility_id) == (1, 1)
        assert (await read_booking(booking_id)).status == BookingStatus.PENDING
        assert await count_transactions(poor_id) == 0

    @pytest.mark.asyncio
    async def test_last_slot_goes_to_first_confirm(
        self, services, db_session, driver_id, make_user, facility_id, quote,
        read_slot, read_balance, read_booking
    ):
        """Test two quotes for one slot: the second confirm is refused and not charged"""
        other_id = await make_user(balance=100000, name="Other")
        first = await quote(driver_id, facility_id)
        second = await quote(other_id, facility_id)

        await services.bookings.confirm_booking(db_session, first, driver_id)
        assert await read_slot(facility_id) == (1, 0)

        with pytest.raises(InsufficientCapacityError):
            await services.bookings.confirm_booking(db_session, second, other_id)

        assert await read_balance(other_id) == 100000
        assert (await read_booking(second)).status == BookingStatus.PENDING
        assert await read_slot(facility_id) == (1, 0)

    @pytest.mark.asyncio
    async def test_confirm_twice(self, services, db_session, driver_id, facility_id, confirmed, read_balance):
        """Test a booking is paid for once"""
        booking_id = await confirmed(driver_id, facility_id)

        with pytest.raises(InvalidStateError):
            await services.bookings.confirm_booking(db_session, booking_id, driver_id)
        assert await read_balance(driver_id) == 70000

    @pytest.mark.asyncio
    async def test_confirm_by_someone_else(self, services, db_session, driver_id, make_user, facility_id, quote):
        """Test only the booking owner can pay for it"""
        booking_id = await quote(driver_id, facility_id)
        stranger_id = await make_user(balance=100000, name="Stranger")

        with pytest.raises(AuthorizationError):
            await services.bookings.confirm_booking(db_session, booking_id, stranger_id)


class TestEntry:

    @pytest.mark.asyncio
    async def test_entry_token_requires_confirmation(self, services, db_session, driver_id, facility_id, quote):
        """Test pending bookings get no entry token"""
        booking_id = await quote(driver_id, facility_id)

        with pytest.raises(InvalidStateError):
            await services.bookings.generate_entry_token(db_session, booking_id, driver_id)

    @pytest.mark.asyncio
    async def test_entry_token_is_reused_while_valid(
        self, services, db_session, driver_id, facility_id, confirmed, clock
    ):
        """Test asking twice returns the same token until it expires"""
        booking_id = await confirmed(driver_id, facility_id)

        first = await services.bookings.generate_entry_token(db_session, booking_id, driver_id)
        second = await services.bookings.generate_entry_token(db_session, booking_id, driver_id)
        assert first.token == second.token

        clock.advance(hours=25)
        renewed = await services.bookings.generate_entry_token(db_session, booking_id, driver_id)
        assert renewed.token != first.token
        assert services.tokens.is_still_valid(renewed.token, "entry")

    @pytest.mark.asyncio
    async def test_scan_entry_by_owner(self, services, db_session, driver_id, facility_id, confirmed, clock):
        """Test scanning admits the vehicle and mints the exit token"""
        booking_id = await confirmed(driver_id, facility_id)
        issued = await services.bookings.generate_entry_token(db_session, booking_id, driver_id)
        clock.advance(minutes=30)

        result = await services.bookings.scan_entry(db_session, issued.token, driver_id)

        assert result.booking.status == BookingStatus.ACTIVE
        assert result.booking.entry_time == clock.now
        assert result.booking.exit_token == result.exit_token
        assert services.tokens.verify(result.exit_token, "exit").booking_id == booking_id

    @pytest.mark.asyncio
    async def test_scan_entry_by_facility_owner(
        self, services, db_session, driver_id, owner_id, facility_id, confirmed
    ):
        """Test the facility operator can scan a customer in"""
        booking_id = await confirmed(driver_id, facility_id)
        issued = await services.bookings.generate_entry_token(db_session, booking_id, driver_id)

        result = await services.bookings.scan_entry(db_session, issued.token, owner_id)

        assert result.booking.status == BookingStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_scan_entry_by_stranger(
        self, services, db_session, driver_id, make_user, facility_id, confirmed, read_booking
    ):
        """Test an unrelated user cannot scan"""
        booking_id = await confirmed(driver_id, facility_id)
        issued = await services.bookings.generate_entry_token(db_session, booking_id, driver_id)
        stranger_id = await make_user(role=UserRole.LANDOWNER, name="Stranger")

        with pytest.raises(AuthorizationError):
            await services.bookings.scan_entry(db_session, issued.token, stranger_id)
        assert (await read_booking(booking_id)).status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_scan_entry_twice(self, services, db_session, driver_id, facility_id, confirmed):
        """Test an entry token admits once"""
        booking_id = await confirmed(driver_id, facility_id)
        issued = await services.bookings.generate_entry_token(db_session, booking_id, driver_id)
        await services.bookings.scan_entry(db_session, issued.token, driver_id)

        with pytest.raises(InvalidStateError):
            await services.bookings.scan_entry(db_session, issued.token, driver_id)

    @pytest.mark.asyncio
    async def test_scan_entry_expired(self, services, db_session, driver_id, facility_id, confirmed, clock):
        """Test an expired entry token is refused"""
        booking_id = await confirmed(driver_id, facility_id)
        issued = await services.bookings.generate_entry_token(db_session, booking_id, driver_id)
        clock.advance(hours=24)

        with pytest.raises(ExpiredToken):
            await services.bookings.scan_entry(db_session, issued.token, driver_id)

    @pytest.mark.asyncio
    async def test_scan_entry_with_exit_token(self, services, db_session, driver_id, facility_id, parked):
        """Test an exit token does not open the entry gate"""
        _, exit_token = await parked(driver_id, facility_id)

        with pytest.raises(WrongType):
            await services.bookings.scan_entry(db_session, exit_token, driver_id)

    @pytest.mark.asyncio
    async def test_scan_entry_with_superseded_token(
        self, services, db_session, driver_id, facility_id, confirmed, clock
    ):
        """Test only the token stored on the booking is honoured"""
        booking_id = await confirmed(driver_id, facility_id)
        booking = await services.bookings.get_booking(db_session, booking_id, driver_id)
        forged = services.tokens.issue_entry(booking)
        await services.bookings.generate_entry_token(db_session, booking_id, driver_id)

        with pytest.raises(InvalidToken):
            await services.bookings.scan_entry(db_session, forged, driver_id)


class TestExit:

    @pytest.mark.asyncio
    async def test_exit_within_duration(
        self, services, db_session, driver_id, facility_id, parked, clock,
        read_slot, read_balance, count_transactions
    ):
        """Test leaving on time completes with no overtime and frees the slot"""
        booking_id, exit_token = await parked(driver_id, facility_id)
        clock.advance(hours=1, minutes=40)

        result = await services.bookings.scan_exit(db_session, exit_token, driver_id)

        assert result.booking.status == BookingStatus.COMPLETED
        assert result.booking.exit_time == clock.now
        assert result.elapsed_hours == 2
        assert result.booking.total_duration_hours == 2
        assert result.overtime_charge == 0
        assert result.overtime_paid is True
        assert await read_slot(facility_id) == (1, 1)
        assert await read_balance(driver_id) == 70000
        assert await count_transactions(driver_id, TransactionType.OVERTIME_PAYMENT) == 0

    @pytest.mark.asyncio
    async def test_overtime_is_charged(
        self, services, db_session, driver_id, facility_id, parked, clock,
        read_slot, read_balance, count_transactions
    ):
        """Test 3h15m on a 2h booking at 15000/h bills two extra hours"""
        booking_id, _ = await parked(driver_id, facility_id, duration_hours=2)
        clock.advance(hours=3, minutes=15)
        # The first exit token has expired by now
        issued = await services.bookings.generate_exit_token(db_session, booking_id, driver_id)

        result = await services.bookings.scan_exit(db_session, issued.token, driver_id)

        assert result.elapsed_hours == 4
        assert result.overtime_hours == 2
        assert result.overtime_charge == 30000
        assert result.overtime_paid is True
        assert result.booking.status == BookingStatus.COMPLETED
        assert result.booking.overtime_charge == 30000
        assert await read_balance(driver_id) == 40000
        assert await read_slot(facility_id) == (1, 1)
        assert await count_transactions(
            driver_id, TransactionType.OVERTIME_PAYMENT, status=TransactionStatus.SUCCESS, amount=30000
        ) == 1

    @pytest.mark.asyncio
    async def test_unpaid_overtime_still_completes(
        self, services, db_session, make_user, facility_id, parked, clock,
        read_slot, read_balance, read_booking, count_transactions
    ):
        """Test a failed overtime debit does not keep the car inside"""
        exact_id = await make_user(balance=30000, name="Exact")
        booking_id, _ = await parked(exact_id, facility_id, duration_hours=2)
        clock.advance(hours=3, minutes=15)
        issued = await services.bookings.generate_exit_token(db_session, booking_id, exact_id)

        result = await services.bookings.scan_exit(db_session, issued.token, exact_id)

        assert result.overtime_charge == 30000
        assert result.overtime_paid is False
        assert result.booking.status == BookingStatus.COMPLETED
        booking = await read_booking(booking_id)
        assert booking.status == BookingStatus.COMPLETED
        assert booking.overtime_charge == 30000
        assert await read_balance(exact_id) == 0
        assert await read_slot(facility_id) == (1, 1)
        assert await count_transactions(
            exact_id, TransactionType.OVERTIME_PAYMENT, status=TransactionStatus.FAILED
        ) == 1

    @pytest.mark.asyncio
    async def test_unpaid_overtime_not_in_revenue(
        self, services, db_session, make_user, owner_id, facility_id, parked, clock
    ):
        """Test the facility revenue only counts overtime actually collected"""
        exact_id = await make_user(balance=30000, name="Exact")
        booking_id, _ = await parked(exact_id, facility_id, duration_hours=2)
        clock.advance(hours=3, minutes=15)
        issued = await services.bookings.generate_exit_token(db_session, booking_id, exact_id)
        await services.bookings.scan_exit(db_session, issued.token, exact_id)

        summary = await services.bookings.facility_bookings(db_session, facility_id, owner_id)

        assert summary.counts[BookingStatus.COMPLETED.value] == 1
        assert summary.revenue == 30000

    @pytest.mark.asyncio
    async def test_paid_overtime_in_revenue(
        self, services, db_session, driver_id, owner_id, facility_id, parked, clock
    ):
        """Test collected overtime is added to the booking cost"""
        booking_id, _ = await parked(driver_id, facility_id, duration_hours=2)
        clock.advance(hours=3, minutes=15)
        issued = await services.bookings.generate_exit_token(db_session, booking_id, driver_id)
        await services.bookings.scan_exit(db_session, issued.token, driver_id)

        summary = await services.bookings.facility_bookings(db_session, facility_id, owner_id)

        assert summary.revenue == 60000

    @pytest.mark.asyncio
    async def test_store_error_during_overtime_charge(
        self, services, db_session, driver_id, facility_id, parked, clock,
        read_slot, read_balance, read_booking, count_transactions
    ):
        """Test a store failure on the overtime debit still reports a completed exit"""
        class StoreFailingLedger(BalanceLedger):
            async def debit(self, db, user_id, amount, **kwargs):
                raise IntegrityError("INSERT INTO transactions", {}, Exception("constraint failed"))

        bookings = BookingService(
            tokens=services.tokens,
            inventory=services.inventory,
            ledger=StoreFailingLedger(clock=clock),
            transactions=services.transactions,
            manager=services.manager,
            clock=clock
        )
        booking_id, _ = await parked(driver_id, facility_id, duration_hours=2)
        clock.advance(hours=3, minutes=15)
        issued = await bookings.generate_exit_token(db_session, booking_id, driver_id)

        result = await bookings.scan_exit(db_session, issued.token, driver_id)

        assert result.overtime_paid is False
        assert result.booking.status == BookingStatus.COMPLETED
        assert (await read_booking(booking_id)).overtime_charge == 30000
        assert await read_balance(driver_id) == 70000
        assert await read_slot(facility_id) == (1, 1)
        assert await count_transactions(
            driver_id, TransactionType.OVERTIME_PAYMENT, status=TransactionStatus.FAILED
        ) == 1

    @pytest.mark.asyncio
    async def test_exit_token_expired(self, services, db_session, driver_id, facility_id, parked, clock):
        """Test a stale exit token is refused"""
        _, exit_token = await parked(driver_id, facility_id)
        clock.advance(hours=2)

        with pytest.raises(ExpiredToken):
            await services.bookings.scan_exit(db_session, exit_token, driver_id)

    @pytest.mark.asyncio
    async def test_replaced_exit_token_refused(self, services, db_session, driver_id, facility_id, parked):
        """Test a regenerated exit token retires the previous one"""
        booking_id, old_token = await parked(driver_id, facility_id)
        await services.bookings.generate_exit_token(db_session, booking_id, driver_id)

        with pytest.raises(InvalidToken):
            await services.bookings.scan_exit(db_session, old_token, driver_id)

    @pytest.mark.asyncio
    async def test_exit_token_requires_active(self, services, db_session, driver_id, facility_id, confirmed):
        """Test exit tokens are only issued to parked bookings"""
        booking_id = await confirmed(driver_id, facility_id)

        with pytest.raises(InvalidStateError):
            await services.bookings.generate_exit_token(db_session, booking_id, driver_id)

    @pytest.mark.asyncio
    async def test_exit_twice(self, services, db_session, driver_id, facility_id, parked, read_slot):
        """Test a completed booking cannot exit again or free a second slot"""
        _, exit_token = await parked(driver_id, facility_id)
        await services.bookings.scan_exit(db_session, exit_token, driver_id)

        with pytest.raises(InvalidStateError):
            await services.bookings.scan_exit(db_session, exit_token, driver_id)
        assert await read_slot(facility_id) == (1, 1)


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancel_pending(
        self, services, db_session, driver_id, facility_id, quote, read_slot, read_balance, count_transactions, clock
    ):
        """Test cancelling a quote moves no money and no inventory"""
        booking_id = await quote(driver_id, facility_id)

        booking = await services.bookings.cancel_booking(db_session, booking_id, driver_id)

        assert booking.status == BookingStatus.CANCELLED
        assert booking.cancelled_at == clock.now
        assert await read_slot(facility_id) == (1, 1)
        assert await read_balance(driver_id) == 100000
        assert await count_transactions(driver_id, TransactionType.CANCELLATION, amount=0) == 1

    @pytest.mark.asyncio
    async def test_owner_cannot_cancel_confirmed(self, services, db_session, driver_id, facility_id, confirmed):
        """Test paid bookings are not cancellable by their owner"""
        booking_id = await confirmed(driver_id, facility_id)

        with pytest.raises(InvalidStateError):
            await services.bookings.cancel_booking(db_session, booking_id, driver_id)

    @pytest.mark.asyncio
    async def test_admin_cancel_releases_slot(
        self, services, db_session, driver_id, facility_id, confirmed, read_slot, read_balance
    ):
        """Test an administrative cancel frees the slot without refunding"""
        booking_id = await confirmed(driver_id, facility_id)

        booking = await services.bookings.admin_cancel(db_session, booking_id)

        assert booking.status == BookingStatus.CANCELLED
        assert await read_slot(facility_id) == (1, 1)
        assert await read_balance(driver_id) == 70000

    @pytest.mark.asyncio
    async def test_admin_cancel_pending_keeps_inventory(
        self, services, db_session, driver_id, facility_id, quote, read_slot
    ):
        """Test cancelling a quote never releases a slot it did not hold"""
        booking_id = await quote(driver_id, facility_id)

        await services.bookings.admin_cancel(db_session, booking_id)

        assert await read_slot(facility_id) == (1, 1)

    @pytest.mark.asyncio
    async def test_admin_cancel_closed_booking(self, services, db_session, driver_id, facility_id, parked):
        """Test completed bookings stay completed"""
        booking_id, exit_token = await parked(driver_id, facility_id)
        await services.bookings.scan_exit(db_session, exit_token, driver_id)

        with pytest.raises(InvalidStateError):
            await services.bookings.admin_cancel(db_session, booking_id)


class TestQueries:

    @pytest.mark.asyncio
    async def test_facility_bookings_summary(
        self, services, db_session, driver_id, owner_id, make_user, facility_id, parked, quote
    ):
        """Test per-status counts and revenue from completed bookings"""
        booking_id, exit_token = await parked(driver_id, facility_id, duration_hours=2)
        await services.bookings.scan_exit(db_session, exit_token, driver_id)
        other_id = await make_user(balance=100000, name="Other")
        await quote(other_id, facility_id, VehicleClass.MOTORCYCLE)

        summary = await services.bookings.facility_bookings(db_session, facility_id, owner_id)

        assert len(summary.bookings) == 2
        assert summary.counts["completed"] == 1
        assert summary.counts["pending"] == 1
        assert summary.counts["active"] == 0
        assert summary.revenue == 30000

    @pytest.mark.asyncio
    async def test_facility_bookings_owner_only(self, services, db_session, driver_id, facility_id):
        """Test drivers cannot list a facility's bookings"""
        with pytest.raises(AuthorizationError):
            await services.bookings.facility_bookings(db_session, facility_id, driver_id)

    @pytest.mark.asyncio
    async def test_list_user_bookings(self, services, db_session, driver_id, facility_id, quote, confirmed):
        """Test listing with and without a status filter"""
        await quote(driver_id, facility_id, VehicleClass.MOTORCYCLE)
        await confirmed(driver_id, facility_id)

        everything = await services.bookings.list_user_bookings(db_session, driver_id)
        pending = await services.bookings.list_user_bookings(db_session, driver_id, BookingStatus.PENDING)

        assert len(everything) == 2
        assert [b.vehicle_class for b in pending] == [VehicleClass.MOTORCYCLE]


class TestInventoryConsistency:

    @pytest.mark.asyncio
    async def test_available_tracks_holders(
        self, services, db_session, make_user, facility_id, quote, confirmed, parked, read_slot
    ):
        """Test available = capacity - (confirmed + active) through a mixed sequence"""
        users = [await make_user(balance=100000, name=f"Rider{i}") for i in range(3)]
        mc = VehicleClass.MOTORCYCLE

        first = await confirmed(users[0], facility_id, mc)
        assert await read_slot(facility_id, mc) == (5, 4)

        _, exit_token = await parked(users[1], facility_id, mc)
        assert await read_slot(facility_id, mc) == (5, 3)

        pending = await quote(users[2], facility_id, mc)
        assert await read_slot(facility_id, mc) == (5, 3)

        await services.bookings.scan_exit(db_session, exit_token, users[1])
        assert await read_slot(facility_id, mc) == (5, 4)

        await services.bookings.cancel_booking(db_session, pending, users[2])
        await services.bookings.admin_cancel(db_session, first)
        assert await read_slot(facility_id, mc) == (5, 5)

        adjustments = await services.inventory.reconcile(db_session, facility_id)
        assert not any(adjustment.drifted for adjustment in adjustments)
