"""
Database models
"""

from parkgo.models.user import User, UserRole
from parkgo.models.facility import Facility, SlotInventory, VehicleClass
from parkgo.models.booking import Booking, BookingStatus
from parkgo.models.transaction import (
    Transaction,
    TransactionType,
    TransactionStatus,
    PaymentMethod,
    ReconciliationSource,
)

__all__ = [
    "User",
    "UserRole",
    "Facility",
    "SlotInventory",
    "VehicleClass",
    "Booking",
    "BookingStatus",
    "Transaction",
    "TransactionType",
    "TransactionStatus",
    "PaymentMethod",
    "ReconciliationSource",
]
