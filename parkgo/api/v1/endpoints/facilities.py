"""
Facility endpoints
"""

from typing import Any, List
from uuid import UUID
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from parkgo.api.deps import get_booking_service, get_facility_service
from parkgo.core.database import get_session
from parkgo.core.exceptions import AuthorizationError
from parkgo.core.security import get_current_user
from parkgo.models.user import User, UserRole
from parkgo.schemas.booking import BookingResponse, FacilityBookingsResponse
from parkgo.schemas.facility import FacilityCreate, FacilityResponse, InventoryAdjustmentResponse
from parkgo.services.booking_service import BookingService
from parkgo.services.facility_service import FacilityService, SlotSpec

router = APIRouter()


@router.post("/", response_model=FacilityResponse, status_code=status.HTTP_201_CREATED)
async def create_facility(
    facility_data: FacilityCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    service: FacilityService = Depends(get_facility_service)
) -> Any:
    """
    Register a facility owned by the caller
    """
    if current_user.role not in (UserRole.LANDOWNER, UserRole.ADMIN):
        raise AuthorizationError("Only landowners can register facilities")

    return await service.create_facility(
        db,
        owner_id=current_user.id,
        name=facility_data.name,
        address=facility_data.address,
        slots=[
            SlotSpec(vehicle_class=slot.vehicle_class, capacity=slot.capacity, hourly_rate=slot.hourly_rate)
            for slot in facility_data.slots
        ]
    )


@router.get("/{facility_id}", response_model=FacilityResponse)
async def get_facility(
    facility_id: UUID,
    db: AsyncSession = Depends(get_session),
    service: FacilityService = Depends(get_facility_service)
) -> Any:
    return await service.get_facility(db, facility_id)


@router.get("/{facility_id}/bookings", response_model=FacilityBookingsResponse)
async def list_facility_bookings(
    facility_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    service: BookingService = Depends(get_booking_service)
) -> Any:
    """
    Bookings at a facility with per-status counts and completed revenue
    """
    result = await service.facility_bookings(db, facility_id, current_user.id)
    return FacilityBookingsResponse(
        bookings=[BookingResponse.model_validate(booking) for booking in result.bookings],
        counts=result.counts,
        revenue=result.revenue
    )


@router.post("/{facility_id}/reconcile", response_model=List[InventoryAdjustmentResponse])
async def reconcile_inventory(
    facility_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    service: FacilityService = Depends(get_facility_service)
) -> Any:
    """
    Recompute availability from the bookings currently holding slots
    """
    return await service.reconcile_inventory(db, facility_id, current_user)
