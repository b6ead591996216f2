"""
Facility schemas
"""

from pydantic import Field
from typing import List, Optional
from uuid import UUID

from parkgo.schemas.base import BaseSchema, IDSchema, TimestampSchema
from parkgo.models.facility import VehicleClass


class SlotCreate(BaseSchema):
    vehicle_class: VehicleClass
    capacity: int = Field(..., ge=0)
    hourly_rate: int = Field(..., ge=1)


class FacilityCreate(BaseSchema):
    """Facility creation schema"""
    name: str = Field(..., min_length=1, max_length=255)
    address: Optional[str] = None
    slots: List[SlotCreate] = Field(..., min_length=1)


class SlotResponse(BaseSchema):
    vehicle_class: VehicleClass
    capacity: int
    available: int
    hourly_rate: int


class FacilityResponse(IDSchema, TimestampSchema):
    """Facility with its slot inventory"""
    owner_id: UUID
    name: str
    address: Optional[str] = None
    inventory: List[SlotResponse]


class InventoryAdjustmentResponse(BaseSchema):
    vehicle_class: VehicleClass
    capacity: int
    before: int
    after: int
    drifted: bool
