"""
Service dependencies for the API layer.

Endpoints resolve services through these functions so they can be swapped
with ``app.dependency_overrides``.
"""

from parkgo.services.booking_service import BookingService, booking_service
from parkgo.services.facility_service import FacilityService, facility_service
from parkgo.services.transaction_ledger import TransactionLedger, transaction_ledger


def get_booking_service() -> BookingService:
    return booking_service


def get_transaction_ledger() -> TransactionLedger:
    return transaction_ledger


def get_facility_service() -> FacilityService:
    return facility_service
