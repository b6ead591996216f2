"""
Booking schemas
"""

from pydantic import Field
from typing import Dict, List, Optional
from uuid import UUID
from datetime import datetime

from parkgo.schemas.base import BaseSchema, IDSchema, TimestampSchema
from parkgo.models.booking import BookingStatus
from parkgo.models.facility import VehicleClass


class BookingCreate(BaseSchema):
    """Booking creation schema"""
    facility_id: UUID
    vehicle_class: VehicleClass
    start_time: datetime
    duration_hours: int = Field(..., ge=1, le=24 * 30)


class BookingResponse(IDSchema, TimestampSchema):
    """Booking response schema"""
    user_id: UUID
    facility_id: UUID
    vehicle_class: VehicleClass
    start_time: datetime
    duration_hours: int
    cost: int
    status: BookingStatus
    entry_time: Optional[datetime] = None
    exit_time: Optional[datetime] = None
    total_duration_hours: Optional[int] = None
    overtime_charge: int = 0
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class AccessTokenResponse(BaseSchema):
    booking_id: UUID
    token: str
    token_type: str


class ScanRequest(BaseSchema):
    token: str = Field(..., min_length=1)


class EntryScanResponse(BaseSchema):
    booking: BookingResponse
    exit_token: str


class ExitScanResponse(BaseSchema):
    booking: BookingResponse
    elapsed_hours: int
    overtime_hours: int
    overtime_charge: int
    overtime_paid: bool


class FacilityBookingsResponse(BaseSchema):
    bookings: List[BookingResponse]
    counts: Dict[str, int]
    revenue: int
