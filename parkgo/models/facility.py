"""
Facility and SlotInventory models
"""

from sqlalchemy import (
    Column, String, Text, ForeignKey, Enum, Integer, Uuid,
    CheckConstraint, UniqueConstraint
)
from sqlalchemy.orm import relationship
import enum

from parkgo.models.base import BaseModel


class VehicleClass(str, enum.Enum):
    CAR = "car"
    MOTORCYCLE = "motorcycle"


class Facility(BaseModel):
    """
    Physical parking location
    """
    __tablename__ = "facilities"

    owner_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    address = Column(Text)

    # Relationships
    owner = relationship("User", back_populates="facilities")
    inventory = relationship(
        "SlotInventory",
        back_populates="facility",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="SlotInventory.vehicle_class"
    )

    def slot(self, vehicle_class: VehicleClass):
        for entry in self.inventory:
            if entry.vehicle_class == vehicle_class:
                return entry
        return None

    def __repr__(self):
        return f"<Facility(id={self.id}, name={self.name})>"


class SlotInventory(BaseModel):
    """
    Capacity, availability and hourly rate for one vehicle class of a facility
    """
    __tablename__ = "slot_inventories"
    __table_args__ = (
        UniqueConstraint("facility_id", "vehicle_class", name="uq_slot_inventory_facility_class"),
        CheckConstraint("capacity >= 0", name="ck_slot_inventory_capacity"),
        CheckConstraint("available >= 0 AND available <= capacity", name="ck_slot_inventory_available"),
        CheckConstraint("hourly_rate >= 1", name="ck_slot_inventory_rate"),
    )

    facility_id = Column(Uuid(as_uuid=True), ForeignKey("facilities.id"), nullable=False, index=True)
    vehicle_class = Column(Enum(VehicleClass), nullable=False)
    capacity = Column(Integer, nullable=False)
    available = Column(Integer, nullable=False)
    hourly_rate = Column(Integer, nullable=False)

    # Relationships
    facility = relationship("Facility", back_populates="inventory")

    def __repr__(self):
        return (
            f"<SlotInventory(facility_id={self.facility_id}, class={self.vehicle_class}, "
            f"available={self.available}/{self.capacity})>"
        )
