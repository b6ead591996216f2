"""
Transaction model
"""

from sqlalchemy import Column, String, Text, ForeignKey, Enum, Integer, Uuid, CheckConstraint
from sqlalchemy.orm import relationship
import enum

from parkgo.models.base import BaseModel, UTCDateTime


class TransactionType(str, enum.Enum):
    TOP_UP = "top-up"
    PAYMENT = "payment"
    SALDO_DEBIT = "saldo_debit"
    SALDO_CREDIT = "saldo_credit"
    CANCELLATION = "cancellation"
    OVERTIME_PAYMENT = "overtime_payment"


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class PaymentMethod(str, enum.Enum):
    SALDO = "saldo"
    BCA_VA = "bca_va"
    BNI_VA = "bni_va"
    BRI_VA = "bri_va"
    MANDIRI_VA = "mandiri_va"
    PERMATA_VA = "permata_va"
    QRIS = "qris"
    GOPAY = "gopay"

    @property
    def is_virtual_account(self) -> bool:
        return self.value.endswith("_va")

    @property
    def bank_code(self):
        if self.is_virtual_account:
            return self.value.split("_")[0]
        return None


class ReconciliationSource(str, enum.Enum):
    WEBHOOK = "webhook"
    POLL = "poll"
    SIMULATION = "simulation"
    CHARGE = "charge"


class Transaction(BaseModel):
    """
    One ledger entry. ``correlation_id`` is shared with the payment gateway
    and is the key every reconciliation path looks the entry up by.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_transactions_amount"),
    )

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    booking_id = Column(Uuid(as_uuid=True), ForeignKey("bookings.id"), index=True)
    correlation_id = Column(String(64), unique=True, nullable=False, index=True)
    type = Column(Enum(TransactionType), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    payment_method = Column(Enum(PaymentMethod), nullable=False)
    status = Column(
        Enum(TransactionStatus),
        default=TransactionStatus.PENDING,
        nullable=False,
        index=True
    )
    va_number = Column(String(64))
    bank_code = Column(String(20))
    redirect_url = Column(Text)
    qr_payload = Column(Text)
    description = Column(Text)
    reconciled_by = Column(Enum(ReconciliationSource))
    completed_at = Column(UTCDateTime())

    # Relationships
    user = relationship("User", back_populates="transactions")
    booking = relationship("Booking", back_populates="transactions")

    def __repr__(self):
        return (
            f"<Transaction(id={self.id}, correlation_id={self.correlation_id}, type={self.type}, "
            f"amount={self.amount}, status={self.status})>"
        )
