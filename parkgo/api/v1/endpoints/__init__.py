"""
API endpoints module
"""

from . import auth, bookings, facilities, transactions, health

__all__ = [
    "auth",
    "bookings",
    "facilities",
    "transactions",
    "health",
]
