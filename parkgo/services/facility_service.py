"""
Facility registration and inventory repair
"""

import logging
from dataclasses import dataclass
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from parkgo.core.database import db_manager, DatabaseManager
from parkgo.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from parkgo.models.facility import Facility, SlotInventory, VehicleClass
from parkgo.models.user import UserRole
from parkgo.services.slot_inventory import InventoryAdjustment, SlotInventoryService, slot_inventory

logger = logging.getLogger(__name__)


@dataclass
class SlotSpec:
    vehicle_class: VehicleClass
    capacity: int
    hourly_rate: int


class FacilityService:
    def __init__(self, inventory: SlotInventoryService = slot_inventory, manager: DatabaseManager = db_manager):
        self.inventory = inventory
        self.db_manager = manager
        self.logger = logging.getLogger(__name__)

    async def create_facility(
        self,
        db: AsyncSession,
        owner_id: UUID,
        name: str,
        slots: List[SlotSpec],
        address: Optional[str] = None
    ) -> Facility:
        """Register a facility; every class starts fully available"""
        if not slots:
            raise ValidationError("A facility needs at least one vehicle class", field="slots")
        classes = [VehicleClass(spec.vehicle_class) for spec in slots]
        if len(set(classes)) != len(classes):
            raise ValidationError("Each vehicle class may appear only once", field="slots")
        for spec in slots:
            if spec.capacity < 0:
                raise ValidationError("Capacity must not be negative", field="slots")
            if spec.hourly_rate < 1:
                raise ValidationError("Hourly rate must be at least 1", field="slots")

        async with self.db_manager.transaction(db):
            facility = Facility(owner_id=owner_id, name=name, address=address)
            facility.inventory = [
                SlotInventory(
                    vehicle_class=VehicleClass(spec.vehicle_class),
                    capacity=spec.capacity,
                    available=spec.capacity,
                    hourly_rate=spec.hourly_rate,
                )
                for spec in slots
            ]
            db.add(facility)
            await db.flush()

        self.logger.info("Facility created", extra={"facility_id": str(facility.id), "owner_id": str(owner_id)})
        return facility

    async def get_facility(self, db: AsyncSession, facility_id: UUID) -> Facility:
        async with self.db_manager.transaction(db):
            result = await db.execute(
                select(Facility)
                .where(Facility.id == facility_id)
                .execution_options(populate_existing=True)
            )
            facility = result.scalar_one_or_none()
        if not facility:
            raise NotFoundError("Facility", facility_id)
        return facility

    async def reconcile_inventory(self, db: AsyncSession, facility_id: UUID, caller) -> List[InventoryAdjustment]:
        """Repair availability drift; facility owner or admin only"""
        facility = await self.get_facility(db, facility_id)
        if facility.owner_id != caller.id and caller.role != UserRole.ADMIN:
            raise AuthorizationError("Only the facility owner may reconcile its inventory")
        return await self.inventory.reconcile(db, facility_id)


facility_service = FacilityService()
