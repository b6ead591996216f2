"""
User model
"""

from sqlalchemy import Column, String, Boolean, Enum, Integer, CheckConstraint
from sqlalchemy.orm import relationship
import enum

from parkgo.models.base import BaseModel


class UserRole(str, enum.Enum):
    USER = "user"
    LANDOWNER = "landowner"
    ADMIN = "admin"


class User(BaseModel):
    """
    User model for authentication, profile and spendable balance.

    ``balance`` is written only by the balance ledger, always next to a
    transaction record describing the movement.
    """
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_users_balance_non_negative"),
    )

    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=False)
    phone = Column(String(20))
    role = Column(
        Enum(UserRole),
        default=UserRole.USER,
        nullable=False
    )
    is_active = Column(Boolean, default=True, nullable=False)
    balance = Column(Integer, default=0, nullable=False)

    # Relationships
    bookings = relationship("Booking", back_populates="user")
    transactions = relationship("Transaction", back_populates="user")
    facilities = relationship("Facility", back_populates="owner")

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
