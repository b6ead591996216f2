"""
Booking model
"""

from sqlalchemy import Column, Text, ForeignKey, Enum, Integer, Uuid, CheckConstraint
from sqlalchemy.orm import relationship
import enum

from parkgo.models.base import BaseModel, UTCDateTime
from parkgo.models.facility import VehicleClass


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses that hold a slot out of the facility's available pool
SLOT_HOLDING_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.ACTIVE)
TERMINAL_STATUSES = (BookingStatus.COMPLETED, BookingStatus.CANCELLED)


class Booking(BaseModel):
    """
    One reservation of one vehicle-class slot at one facility
    """
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("duration_hours >= 1", name="ck_bookings_duration"),
        CheckConstraint("cost >= 0", name="ck_bookings_cost"),
    )

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    facility_id = Column(Uuid(as_uuid=True), ForeignKey("facilities.id"), nullable=False, index=True)
    vehicle_class = Column(Enum(VehicleClass), nullable=False)
    start_time = Column(UTCDateTime(), nullable=False)
    duration_hours = Column(Integer, nullable=False)
    cost = Column(Integer, nullable=False)
    status = Column(
        Enum(BookingStatus),
        default=BookingStatus.PENDING,
        nullable=False,
        index=True
    )
    entry_token = Column(Text)
    exit_token = Column(Text)
    entry_time = Column(UTCDateTime())
    exit_time = Column(UTCDateTime())
    total_duration_hours = Column(Integer)
    overtime_charge = Column(Integer, default=0, nullable=False)
    confirmed_at = Column(UTCDateTime())
    cancelled_at = Column(UTCDateTime())

    # Relationships
    user = relationship("User", back_populates="bookings")
    facility = relationship("Facility")
    transactions = relationship("Transaction", back_populates="booking")

    def __repr__(self):
        return f"<Booking(id={self.id}, status={self.status}, class={self.vehicle_class}, cost={self.cost})>"
