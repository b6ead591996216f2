"""
Booking lifecycle: pending -> confirmed -> active -> completed, with
cancellation side branches.

A pending booking is only a price quote. The slot is reserved and the cost is
debited together when the booking is confirmed.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select, update, and_, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from parkgo.core.database import db_manager, DatabaseManager
from parkgo.core.exceptions import (
    AuthorizationError,
    InsufficientBalanceError,
    InsufficientCapacityError,
    InvalidStateError,
    InvalidToken,
    NotFoundError,
    ParkGoException,
    ValidationError,
)
from parkgo.core.metrics import BOOKING_REJECTIONS, OVERTIME_CHARGE_FAILURES, record_transition
from parkgo.models.base import utcnow
from parkgo.models.booking import Booking, BookingStatus, SLOT_HOLDING_STATUSES, TERMINAL_STATUSES
from parkgo.models.facility import Facility, VehicleClass
from parkgo.models.transaction import Transaction, TransactionType, TransactionStatus, PaymentMethod
from parkgo.services.access_token_service import AccessTokenService, AccessTokenType
from parkgo.services.balance_ledger import BalanceLedger, balance_ledger
from parkgo.services.slot_inventory import SlotInventoryService, slot_inventory
from parkgo.services.transaction_ledger import TransactionLedger, transaction_ledger

logger = logging.getLogger(__name__)

SECONDS_PER_HOUR = 3600


@dataclass
class TokenResult:
    booking: Booking
    token: str


@dataclass
class EntryResult:
    booking: Booking
    exit_token: str


@dataclass
class ExitResult:
    booking: Booking
    elapsed_hours: int
    overtime_hours: int
    overtime_charge: int
    overtime_paid: bool


@dataclass
class FacilityBookings:
    bookings: List[Booking]
    counts: Dict[str, int] = field(default_factory=dict)
    revenue: int = 0


def billable_hours(entered_at: datetime, left_at: datetime) -> int:
    """Whole hours parked, rounded up, never less than one"""
    seconds = (left_at - entered_at).total_seconds()
    return max(1, math.ceil(seconds / SECONDS_PER_HOUR))


class BookingService:
    """
    Booking state machine
    """

    def __init__(
        self,
        tokens: Optional[AccessTokenService] = None,
        inventory: SlotInventoryService = slot_inventory,
        ledger: BalanceLedger = balance_ledger,
        transactions: TransactionLedger = transaction_ledger,
        manager: DatabaseManager = db_manager,
        clock: Callable[[], datetime] = utcnow
    ):
        self.clock = clock
        self.tokens = tokens or AccessTokenService(clock=clock)
        self.inventory = inventory
        self.balance_ledger = ledger
        self.transactions = transactions
        self.db_manager = manager
        self.logger = logging.getLogger(__name__)

    # Lookups

    async def _get_booking(self, db: AsyncSession, booking_id: UUID, for_update: bool = False) -> Booking:
        stmt = (
            select(Booking)
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await db.execute(stmt)
        booking = result.scalar_one_or_none()
        if not booking:
            raise NotFoundError("Booking", booking_id)
        return booking

    async def _get_facility(self, db: AsyncSession, facility_id: UUID) -> Facility:
        result = await db.execute(select(Facility).where(Facility.id == facility_id))
        facility = result.scalar_one_or_none()
        if not facility:
            raise NotFoundError("Facility", facility_id)
        return facility

    def _require_owner(self, booking: Booking, user_id: UUID) -> None:
        if booking.user_id != user_id:
            raise AuthorizationError("Booking belongs to another user")

    async def _require_owner_or_operator(self, db: AsyncSession, booking: Booking, caller_id: UUID) -> None:
        if booking.user_id == caller_id:
            return
        facility = await self._get_facility(db, booking.facility_id)
        if facility.owner_id != caller_id:
            raise AuthorizationError("Only the booking owner or the facility owner may do this")

    async def _transition(
        self,
        db: AsyncSession,
        booking: Booking,
        from_status: BookingStatus,
        to_status: BookingStatus,
        **values
    ) -> Booking:
        """Compare-and-set the booking status, failing if it moved meanwhile"""
        result = await db.execute(
            update(Booking)
            .where(and_(Booking.id == booking.id, Booking.status == from_status))
            .values(status=to_status, updated_at=self.clock(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidStateError(
                f"Booking is no longer {from_status.value}",
                current_state=booking.status.value if booking.status else None
            )
        await db.refresh(booking)

        record_transition(from_status, to_status)
        self.logger.info(
            "Booking status changed",
            extra={"booking_id": str(booking.id), "from_status": from_status.value, "to_status": to_status.value}
        )
        return booking

    async def _record_cancellation(self, db: AsyncSession, booking: Booking, description: str) -> None:
        await self.transactions.record(
            db,
            user_id=booking.user_id,
            booking_id=booking.id,
            tx_type=TransactionType.CANCELLATION,
            amount=0,
            payment_method=PaymentMethod.SALDO,
            status=TransactionStatus.SUCCESS,
            description=description,
        )

    # Create

    async def create_booking(
        self,
        db: AsyncSession,
        user_id: UUID,
        facility_id: UUID,
        vehicle_class: VehicleClass,
        start_time: datetime,
        duration_hours: int
    ) -> Booking:
        """
        Quote a booking. Nothing is reserved and no money moves.
        """
        if duration_hours is None or duration_hours < 1:
            raise ValidationError("Duration must be at least 1 hour", field="duration_hours")
        if start_time.tzinfo is None:
            start_time = start_time.replace(tzinfo=timezone.utc)

        return await self.db_manager.run_atomic(
            db, self._create, user_id, facility_id, VehicleClass(vehicle_class), start_time, duration_hours
        )

    async def _create(self, db, user_id, facility_id, vehicle_class, start_time, duration_hours) -> Booking:
        await self._get_facility(db, facility_id)
        try:
            slot = await self.inventory.get_slot(db, facility_id, vehicle_class)
        except NotFoundError:
            raise ValidationError(
                f"Facility has no {vehicle_class.value} rate",
                field="vehicle_class"
            )
        if slot.hourly_rate < 1:
            raise ValidationError(
                f"Facility has no {vehicle_class.value} rate",
                field="vehicle_class"
            )

        holding = await self.inventory.count_holding(db, facility_id, vehicle_class)
        if slot.available <= 0 or holding >= slot.capacity:
            BOOKING_REJECTIONS.labels(operation="create", reason="capacity").inc()
            raise InsufficientCapacityError(facility_id, vehicle_class.value)

        booking = Booking(
            user_id=user_id,
            facility_id=facility_id,
            vehicle_class=vehicle_class,
            start_time=start_time,
            duration_hours=duration_hours,
            cost=slot.hourly_rate * duration_hours,
            status=BookingStatus.PENDING,
            overtime_charge=0,
        )
        db.add(booking)
        await db.flush()

        self.logger.info(
            "Booking created",
            extra={"booking_id": str(booking.id), "user_id": str(user_id), "cost": booking.cost}
        )
        return booking

    # Confirm

    async def confirm_booking(self, db: AsyncSession, booking_id: UUID, user_id: UUID) -> Booking:
        """
        Pay for a pending booking from the balance. Reserving the slot,
        debiting the cost and recording the payment happen as one unit.
        """
        try:
            return await self.db_manager.run_atomic(db, self._confirm, booking_id, user_id)
        except InsufficientCapacityError:
            BOOKING_REJECTIONS.labels(operation="confirm", reason="capacity").inc()
            raise
        except InsufficientBalanceError:
            BOOKING_REJECTIONS.labels(operation="confirm", reason="balance").inc()
            raise

    async def _confirm(self, db: AsyncSession, booking_id: UUID, user_id: UUID) -> Booking:
        booking = await self._get_booking(db, booking_id, for_update=True)
        self._require_owner(booking, user_id)
        if booking.status != BookingStatus.PENDING:
            raise InvalidStateError("Only pending bookings can be confirmed", current_state=booking.status.value)

        await self.inventory.reserve(db, booking.facility_id, booking.vehicle_class)
        await self.balance_ledger.debit(
            db,
            user_id,
            booking.cost,
            booking_id=booking.id,
            description=f"Booking {booking.id} paid from balance"
        )
        await self.transactions.record(
            db,
            user_id=user_id,
            booking_id=booking.id,
            tx_type=TransactionType.PAYMENT,
            amount=booking.cost,
            payment_method=PaymentMethod.SALDO,
            status=TransactionStatus.SUCCESS,
            description=f"Payment for booking {booking.id}",
        )
        return await self._transition(
            db, booking, BookingStatus.PENDING, BookingStatus.CONFIRMED,
            confirmed_at=self.clock()
        )

    # Entry

    async def generate_entry_token(self, db: AsyncSession, booking_id: UUID, user_id: UUID) -> TokenResult:
        """
        Entry token for a confirmed booking. A still-valid token is returned
        unchanged.
        """
        return await self.db_manager.run_atomic(db, self._generate_entry_token, booking_id, user_id)

    async def _generate_entry_token(self, db: AsyncSession, booking_id: UUID, user_id: UUID) -> TokenResult:
        booking = await self._get_booking(db, booking_id, for_update=True)
        self._require_owner(booking, user_id)
        if booking.status != BookingStatus.CONFIRMED:
            raise InvalidStateError(
                "Entry tokens are only issued for confirmed bookings",
                current_state=booking.status.value
            )

        if self.tokens.is_still_valid(booking.entry_token, AccessTokenType.ENTRY):
            return TokenResult(booking=booking, token=booking.entry_token)

        booking.entry_token = self.tokens.issue_entry(booking)
        booking.updated_at = self.clock()
        await db.flush()
        self.logger.info("Entry token issued", extra={"booking_id": str(booking.id)})
        return TokenResult(booking=booking, token=booking.entry_token)

    async def scan_entry(self, db: AsyncSession, token: str, caller_id: UUID) -> EntryResult:
        """
        Admit a vehicle: confirmed -> active, with the exit token minted
        straight away.
        """
        claims = self.tokens.verify(token, AccessTokenType.ENTRY)
        return await self.db_manager.run_atomic(db, self._scan_entry, token, claims, caller_id)

    async def _scan_entry(self, db: AsyncSession, token: str, claims, caller_id: UUID) -> EntryResult:
        booking = await self._get_booking(db, claims.booking_id, for_update=True)
        if booking.facility_id != claims.facility_id or booking.entry_token != token:
            raise InvalidToken("Entry token does not match this booking")
        await self._require_owner_or_operator(db, booking, caller_id)
        if booking.status != BookingStatus.CONFIRMED:
            raise InvalidStateError("Booking is not awaiting entry", current_state=booking.status.value)

        exit_token = self.tokens.issue_exit(booking)
        booking = await self._transition(
            db, booking, BookingStatus.CONFIRMED, BookingStatus.ACTIVE,
            entry_time=self.clock(),
            exit_token=exit_token
        )
        return EntryResult(booking=booking, exit_token=exit_token)

    # Exit

    async def generate_exit_token(self, db: AsyncSession, booking_id: UUID, user_id: UUID) -> TokenResult:
        """Fresh exit token for an active booking, replacing the stored one"""
        return await self.db_manager.run_atomic(db, self._generate_exit_token, booking_id, user_id)

    async def _generate_exit_token(self, db: AsyncSession, booking_id: UUID, user_id: UUID) -> TokenResult:
        booking = await self._get_booking(db, booking_id, for_update=True)
        self._require_owner(booking, user_id)
        if booking.status != BookingStatus.ACTIVE:
            raise InvalidStateError(
                "Exit tokens are only issued for active bookings",
                current_state=booking.status.value
            )

        booking.exit_token = self.tokens.issue_exit(booking)
        booking.updated_at = self.clock()
        await db.flush()
        self.logger.info("Exit token issued", extra={"booking_id": str(booking.id)})
        return TokenResult(booking=booking, token=booking.exit_token)

    async def scan_exit(self, db: AsyncSession, token: str, caller_id: UUID) -> ExitResult:
        """
        Let a vehicle out: active -> completed and the slot goes back to the
        pool. Overtime is charged afterwards; if that fails the booking still
        completes and the unpaid amount stays on ``overtime_charge``.
        """
        claims = self.tokens.verify(token, AccessTokenType.EXIT)
        result = await self.db_manager.run_atomic(db, self._complete, token, claims, caller_id)

        if result.overtime_charge > 0:
            booking_id = result.booking.id
            result.overtime_paid = await self._charge_overtime(
                db, result.booking.user_id, booking_id, result.overtime_charge
            )
            # A rolled back charge expires the instance; load it again
            async with self.db_manager.transaction(db):
                result.booking = await self._get_booking(db, booking_id)
        return result

    async def _complete(self, db: AsyncSession, token: str, claims, caller_id: UUID) -> ExitResult:
        booking = await self._get_booking(db, claims.booking_id, for_update=True)
        if booking.facility_id != claims.facility_id or booking.exit_token != token:
            raise InvalidToken("Exit token does not match this booking")
        await self._require_owner_or_operator(db, booking, caller_id)
        if booking.status != BookingStatus.ACTIVE:
            raise InvalidStateError("Booking is not parked", current_state=booking.status.value)

        now = self.clock()
        elapsed = billable_hours(booking.entry_time, now)
        overtime_hours = max(0, elapsed - booking.duration_hours)
        overtime_charge = 0
        if overtime_hours:
            slot = await self.inventory.get_slot(db, booking.facility_id, booking.vehicle_class)
            overtime_charge = overtime_hours * slot.hourly_rate

        booking = await self._transition(
            db, booking, BookingStatus.ACTIVE, BookingStatus.COMPLETED,
            exit_time=now,
            total_duration_hours=elapsed,
            overtime_charge=overtime_charge
        )
        await self.inventory.release(db, booking.facility_id, booking.vehicle_class)

        return ExitResult(
            booking=booking,
            elapsed_hours=elapsed,
            overtime_hours=overtime_hours,
            overtime_charge=overtime_charge,
            overtime_paid=overtime_charge == 0
        )

    async def _charge_overtime(self, db: AsyncSession, user_id: UUID, booking_id: UUID, amount: int) -> bool:
        log_extra = {"booking_id": str(booking_id), "amount": amount}
        try:
            await self.db_manager.run_atomic(db, self._debit_overtime, user_id, booking_id, amount)
            return True
        except ParkGoException as e:
            OVERTIME_CHARGE_FAILURES.labels(reason=e.code).inc()
            self.logger.warning(
                "Overtime charge failed, booking completed unpaid",
                extra={**log_extra, "error_code": e.code}
            )
        except SQLAlchemyError as e:
            OVERTIME_CHARGE_FAILURES.labels(reason="STORE_ERROR").inc()
            self.logger.error(
                f"Overtime charge failed in the store, booking completed unpaid: {e}",
                extra={**log_extra, "error_code": "STORE_ERROR"}
            )

        # The exit has already committed; overtime_charge still holds the amount owed
        try:
            await self.db_manager.run_atomic(db, self._record_unpaid_overtime, user_id, booking_id, amount)
        except SQLAlchemyError as e:
            self.logger.error(f"Could not record unpaid overtime: {e}", extra=log_extra)
        return False

    async def _debit_overtime(self, db: AsyncSession, user_id: UUID, booking_id: UUID, amount: int):
        return await self.balance_ledger.debit(
            db,
            user_id,
            amount,
            tx_type=TransactionType.OVERTIME_PAYMENT,
            booking_id=booking_id,
            description=f"Overtime for booking {booking_id}"
        )

    async def _record_unpaid_overtime(self, db: AsyncSession, user_id: UUID, booking_id: UUID, amount: int):
        return await self.transactions.record(
            db,
            user_id=user_id,
            booking_id=booking_id,
            tx_type=TransactionType.OVERTIME_PAYMENT,
            amount=amount,
            payment_method=PaymentMethod.SALDO,
            status=TransactionStatus.FAILED,
            description=f"Unpaid overtime for booking {booking_id}",
        )

    # Cancel

    async def cancel_booking(self, db: AsyncSession, booking_id: UUID, user_id: UUID) -> Booking:
        """Owner cancel, pending bookings only. Nothing to give back."""
        return await self.db_manager.run_atomic(db, self._cancel, booking_id, user_id)

    async def _cancel(self, db: AsyncSession, booking_id: UUID, user_id: UUID) -> Booking:
        booking = await self._get_booking(db, booking_id, for_update=True)
        self._require_owner(booking, user_id)
        if booking.status != BookingStatus.PENDING:
            raise InvalidStateError("Only pending bookings can be cancelled", current_state=booking.status.value)

        booking = await self._transition(
            db, booking, BookingStatus.PENDING, BookingStatus.CANCELLED,
            cancelled_at=self.clock()
        )
        await self._record_cancellation(db, booking, f"Booking {booking.id} cancelled by owner")
        return booking

    async def admin_cancel(self, db: AsyncSession, booking_id: UUID) -> Booking:
        """
        Administrative cancel of any non-terminal booking. A held slot is
        returned to the pool; the balance is never refunded.
        """
        return await self.db_manager.run_atomic(db, self._admin_cancel, booking_id)

    async def _admin_cancel(self, db: AsyncSession, booking_id: UUID) -> Booking:
        booking = await self._get_booking(db, booking_id, for_update=True)
        if booking.status in TERMINAL_STATUSES:
            raise InvalidStateError("Booking is already closed", current_state=booking.status.value)

        previous = booking.status
        booking = await self._transition(
            db, booking, previous, BookingStatus.CANCELLED,
            cancelled_at=self.clock()
        )
        if previous in SLOT_HOLDING_STATUSES:
            await self.inventory.release(db, booking.facility_id, booking.vehicle_class)
        await self._record_cancellation(db, booking, f"Booking {booking.id} cancelled by administrator")
        return booking

    # Queries

    async def get_booking(self, db: AsyncSession, booking_id: UUID, caller_id: UUID) -> Booking:
        async with self.db_manager.transaction(db):
            booking = await self._get_booking(db, booking_id)
            await self._require_owner_or_operator(db, booking, caller_id)
        return booking

    async def list_user_bookings(
        self,
        db: AsyncSession,
        user_id: UUID,
        status: Optional[BookingStatus] = None
    ) -> List[Booking]:
        conditions = [Booking.user_id == user_id]
        if status is not None:
            conditions.append(Booking.status == status)

        async with self.db_manager.transaction(db):
            result = await db.execute(
                select(Booking).where(and_(*conditions)).order_by(Booking.created_at.desc())
            )
            return list(result.scalars().all())

    async def facility_bookings(self, db: AsyncSession, facility_id: UUID, caller_id: UUID) -> FacilityBookings:
        """
        Bookings at a facility with per-status counts and completed revenue.
        Overtime only counts once its ledger entry has succeeded.
        """
        async with self.db_manager.transaction(db):
            facility = await self._get_facility(db, facility_id)
            if facility.owner_id != caller_id:
                raise AuthorizationError("Only the facility owner may list its bookings")

            result = await db.execute(
                select(Booking)
                .where(Booking.facility_id == facility_id)
                .order_by(Booking.created_at.desc())
            )
            bookings = list(result.scalars().all())

            overtime = await db.execute(
                select(Transaction.booking_id, func.sum(Transaction.amount))
                .join(Booking, Booking.id == Transaction.booking_id)
                .where(
                    Booking.facility_id == facility_id,
                    Booking.status == BookingStatus.COMPLETED,
                    Transaction.type == TransactionType.OVERTIME_PAYMENT,
                    Transaction.status == TransactionStatus.SUCCESS
                )
                .group_by(Transaction.booking_id)
            )
            overtime_paid = {booking_id: amount for booking_id, amount in overtime.all()}

        counts = {status.value: 0 for status in BookingStatus}
        revenue = 0
        for booking in bookings:
            counts[booking.status.value] += 1
            if booking.status == BookingStatus.COMPLETED:
                revenue += booking.cost + (overtime_paid.get(booking.id) or 0)
        return FacilityBookings(bookings=bookings, counts=counts, revenue=revenue)


booking_service = BookingService()
