"""
Main API Router
Aggregates all API endpoints for v1
"""

from fastapi import APIRouter
from parkgo.api.v1.endpoints import (
    auth,
    bookings,
    facilities,
    transactions,
    health
)

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["authentication"])
api_router.include_router(facilities.router, prefix="/facilities", tags=["facilities"])
api_router.include_router(bookings.router, prefix="/bookings", tags=["bookings"])
api_router.include_router(transactions.router, prefix="/transactions", tags=["transactions"])
api_router.include_router(health.router, prefix="/health", tags=["health"])
