"""
Booking endpoints
"""

from typing import Any, List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from parkgo.api.deps import get_booking_service
from parkgo.core.database import get_session
from parkgo.core.redis import RateLimiter
from parkgo.core.security import get_current_user, require_admin
from parkgo.models.booking import BookingStatus
from parkgo.models.user import User
from parkgo.schemas.booking import (
    AccessTokenResponse,
    BookingCreate,
    BookingResponse,
    EntryScanResponse,
    ExitScanResponse,
    ScanRequest,
)
from parkgo.services.access_token_service import AccessTokenType
from parkgo.services.booking_service import BookingService

router = APIRouter()

booking_rate_limit = RateLimiter("bookings", "RATE_LIMIT_BOOKING_PER_MINUTE")


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    current_user: User = Depends(booking_rate_limit),
    db: AsyncSession = Depends(get_session),
    service: BookingService = Depends(get_booking_service)
) -> Any:
    """
    Quote a booking; nothing is reserved until it is confirmed
    """
    return await service.create_booking(
        db,
        user_id=current_user.id,
        facility_id=booking_data.facility_id,
        vehicle_class=booking_data.vehicle_class,
        start_time=booking_data.start_time,
        duration_hours=booking_data.duration_hours
    )


@router.get("/", response_model=List[BookingResponse])
async def list_my_bookings(
    status_filter: Optional[BookingStatus] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    service: BookingService = Depends(get_booking_service)
) -> Any:
    return await service.list_user_bookings(db, current_user.id, status_filter)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    service: BookingService = Depends(get_booking_service)
) -> Any:
    return await service.get_booking(db, booking_id, current_user.id)


@router.post("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    service: BookingService = Depends(get_booking_service)
) -> Any:
    """
    Pay for a pending booking from the balance and reserve its slot
    """
    return await service.confirm_booking(db, booking_id, current_user.id)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    service: BookingService = Depends(get_booking_service)
) -> Any:
    """
    Cancel a pending booking
    """
    return await service.cancel_booking(db, booking_id, current_user.id)


@router.post("/{booking_id}/admin-cancel", response_model=BookingResponse)
async def admin_cancel_booking(
    booking_id: UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    service: BookingService = Depends(get_booking_service)
) -> Any:
    """
    Cancel any open booking, returning a held slot to the pool
    """
    return await service.admin_cancel(db, booking_id)


@router.post("/{booking_id}/entry-token", response_model=AccessTokenResponse)
async def generate_entry_token(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    service: BookingService = Depends(get_booking_service)
) -> Any:
    result = await service.generate_entry_token(db, booking_id, current_user.id)
    return AccessTokenResponse(booking_id=result.booking.id, token=result.token,
                               token_type=AccessTokenType.ENTRY.value)


@router.post("/{booking_id}/exit-token", response_model=AccessTokenResponse)
async def generate_exit_token(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    service: BookingService = Depends(get_booking_service)
) -> Any:
    result = await service.generate_exit_token(db, booking_id, current_user.id)
    return AccessTokenResponse(booking_id=result.booking.id, token=result.token,
                               token_type=AccessTokenType.EXIT.value)


@router.post("/scan/entry", response_model=EntryScanResponse)
async def scan_entry(
    scan: ScanRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    service: BookingService = Depends(get_booking_service)
) -> Any:
    """
    Admit a vehicle; answers with the exit token for the same booking
    """
    result = await service.scan_entry(db, scan.token, current_user.id)
    return EntryScanResponse(
        booking=BookingResponse.model_validate(result.booking),
        exit_token=result.exit_token
    )


@router.post("/scan/exit", response_model=ExitScanResponse)
async def scan_exit(
    scan: ScanRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    service: BookingService = Depends(get_booking_service)
) -> Any:
    """
    Let a vehicle out and bill any overtime
    """
    result = await service.scan_exit(db, scan.token, current_user.id)
    return ExitScanResponse(
        booking=BookingResponse.model_validate(result.booking),
        elapsed_hours=result.elapsed_hours,
        overtime_hours=result.overtime_hours,
        overtime_charge=result.overtime_charge,
        overtime_paid=result.overtime_paid
    )
