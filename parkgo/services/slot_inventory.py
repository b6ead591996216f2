"""
Per-facility, per-vehicle-class capacity and availability counters
"""

import logging
from dataclasses import dataclass
from typing import List
from uuid import UUID

from sqlalchemy import select, update, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from parkgo.core.database import db_manager, DatabaseManager
from parkgo.core.exceptions import NotFoundError, InsufficientCapacityError
from parkgo.models.booking import Booking, SLOT_HOLDING_STATUSES
from parkgo.models.facility import SlotInventory, VehicleClass

logger = logging.getLogger(__name__)


@dataclass
class InventoryAdjustment:
    vehicle_class: VehicleClass
    capacity: int
    before: int
    after: int

    @property
    def drifted(self) -> bool:
        return self.before != self.after


class SlotInventoryService:
    """
    Guarded reserve/release of slots plus drift repair.

    Every counter change is a single conditional UPDATE, so concurrent units
    on the same row cannot push ``available`` outside ``[0, capacity]``.
    Callers are expected to run these inside an open transaction.
    """

    def __init__(self, manager: DatabaseManager = db_manager):
        self.db_manager = manager
        self.logger = logging.getLogger(__name__)

    async def get_slot(
        self,
        db: AsyncSession,
        facility_id: UUID,
        vehicle_class: VehicleClass,
        for_update: bool = False
    ) -> SlotInventory:
        stmt = select(SlotInventory).where(
            and_(
                SlotInventory.facility_id == facility_id,
                SlotInventory.vehicle_class == vehicle_class
            )
        ).execution_options(populate_existing=True)
        if for_update:
            stmt = stmt.with_for_update()

        result = await db.execute(stmt)
        slot = result.scalar_one_or_none()
        if not slot:
            raise NotFoundError(f"{VehicleClass(vehicle_class).value} slots for facility", facility_id)
        return slot

    async def count_holding(
        self,
        db: AsyncSession,
        facility_id: UUID,
        vehicle_class: VehicleClass
    ) -> int:
        """Number of bookings currently holding a slot of this class"""
        result = await db.execute(
            select(func.count(Booking.id)).where(
                and_(
                    Booking.facility_id == facility_id,
                    Booking.vehicle_class == vehicle_class,
                    Booking.status.in_(SLOT_HOLDING_STATUSES)
                )
            )
        )
        return result.scalar_one()

    async def reserve(self, db: AsyncSession, facility_id: UUID, vehicle_class: VehicleClass) -> None:
        """Take one slot out of the pool, rejecting when none is left"""
        result = await db.execute(
            update(SlotInventory)
            .where(
                and_(
                    SlotInventory.facility_id == facility_id,
                    SlotInventory.vehicle_class == vehicle_class,
                    SlotInventory.available > 0
                )
            )
            .values(available=SlotInventory.available - 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Distinguish an unknown class from an exhausted one
            await self.get_slot(db, facility_id, vehicle_class)
            raise InsufficientCapacityError(facility_id, VehicleClass(vehicle_class).value)

        self.logger.info(
            "Slot reserved",
            extra={"facility_id": str(facility_id), "vehicle_class": VehicleClass(vehicle_class).value}
        )

    async def release(self, db: AsyncSession, facility_id: UUID, vehicle_class: VehicleClass) -> bool:
        """
        Return one slot to the pool. Never exceeds capacity; a release that
        would is dropped with a warning and reported as False.
        """
        result = await db.execute(
            update(SlotInventory)
            .where(
                and_(
                    SlotInventory.facility_id == facility_id,
                    SlotInventory.vehicle_class == vehicle_class,
                    SlotInventory.available < SlotInventory.capacity
                )
            )
            .values(available=SlotInventory.available + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.logger.warning(
                "Slot release capped at capacity",
                extra={"facility_id": str(facility_id), "vehicle_class": VehicleClass(vehicle_class).value}
            )
            return False

        self.logger.info(
            "Slot released",
            extra={"facility_id": str(facility_id), "vehicle_class": VehicleClass(vehicle_class).value}
        )
        return True

    async def reconcile(self, db: AsyncSession, facility_id: UUID) -> List[InventoryAdjustment]:
        """
        Recompute ``available`` for every class of a facility from the bookings
        currently holding slots.
        """
        return await self.db_manager.run_atomic(db, self._reconcile, facility_id)

    async def _reconcile(self, db: AsyncSession, facility_id: UUID) -> List[InventoryAdjustment]:
        result = await db.execute(
            select(SlotInventory)
            .where(SlotInventory.facility_id == facility_id)
            .order_by(SlotInventory.vehicle_class)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        slots = result.scalars().all()
        if not slots:
            raise NotFoundError("Facility", facility_id)

        adjustments = []
        for slot in slots:
            holding = await self.count_holding(db, facility_id, slot.vehicle_class)
            target = min(max(slot.capacity - holding, 0), slot.capacity)
            adjustment = InventoryAdjustment(
                vehicle_class=slot.vehicle_class,
                capacity=slot.capacity,
                before=slot.available,
                after=target
            )
            if adjustment.drifted:
                if holding > slot.capacity:
                    self.logger.warning(
                        "More bookings hold slots than the facility has",
                        extra={"facility_id": str(facility_id), "holding": holding, "capacity": slot.capacity}
                    )
                self.logger.warning(
                    "Inventory drift repaired",
                    extra={
                        "facility_id": str(facility_id),
                        "vehicle_class": slot.vehicle_class.value,
                        "before": adjustment.before,
                        "after": adjustment.after
                    }
                )
                slot.available = target
            adjustments.append(adjustment)

        await db.flush()
        return adjustments


slot_inventory = SlotInventoryService()
