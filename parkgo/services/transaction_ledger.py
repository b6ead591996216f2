"""
Transaction ledger and payment reconciliation.

Webhook pushes, client polls and operator simulations all funnel into
``TransactionLedger.reconcile``, which applies a gateway outcome to a pending
transaction at most once:

1. lock the transaction by correlation id
2. already ``success`` (or ``failed``): no-op
3. map the gateway state; still pending: no-op
4. on success of a top-up, credit the balance and append ``saldo_credit``
5. compare-and-set the status from ``pending`` last

Any failure in 4 or 5 rolls the whole unit back, so the transaction stays
``pending`` and reconciliation can simply be run again.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional
from uuid import UUID

from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from parkgo.config import settings
from parkgo.core.database import db_manager, DatabaseManager
from parkgo.core.exceptions import (
    AuthorizationError,
    ConcurrencyError,
    GatewayUnavailableError,
    NotFoundError,
    ValidationError,
    WebhookSignatureError,
)
from parkgo.core.metrics import RECONCILIATIONS
from parkgo.models.base import utcnow
from parkgo.models.transaction import (
    Transaction,
    TransactionType,
    TransactionStatus,
    PaymentMethod,
    ReconciliationSource,
)
from parkgo.services.balance_ledger import BalanceLedger, balance_ledger, new_correlation_id
from parkgo.services.payment_gateway import (
    ChargeRequest,
    PaymentGateway,
    payment_gateway,
    simulated_charge,
)

logger = logging.getLogger(__name__)

SUCCESS_STATES = {"capture", "settlement"}
FAILURE_STATES = {"deny", "cancel", "expire", "failure"}


def map_gateway_status(transaction_status: Optional[str], fraud_status: Optional[str] = None) -> TransactionStatus:
    """
    Collapse a gateway state into a ledger status.

    capture/settlement succeed unless fraud screening challenged (stay pending)
    or denied (fail) them; deny/cancel/expire/failure fail; anything else,
    including unknown states, stays pending.
    """
    state = (transaction_status or "").lower()
    fraud = (fraud_status or "").lower()

    if state in SUCCESS_STATES:
        if fraud == "challenge":
            return TransactionStatus.PENDING
        if fraud == "deny":
            return TransactionStatus.FAILED
        return TransactionStatus.SUCCESS
    if state in FAILURE_STATES:
        return TransactionStatus.FAILED
    return TransactionStatus.PENDING


@dataclass
class ReconciliationResult:
    transaction: Transaction
    applied: bool
    credit: Optional[Transaction] = None
    gateway_unavailable: bool = False

    @property
    def status(self) -> TransactionStatus:
        return self.transaction.status


@dataclass
class TopUpResult:
    transaction: Transaction
    simulated: bool = False


class TransactionLedger:
    """
    Append-only money movement records plus gateway reconciliation
    """

    def __init__(
        self,
        gateway: PaymentGateway = payment_gateway,
        ledger: BalanceLedger = balance_ledger,
        manager: DatabaseManager = db_manager,
        clock: Callable[[], datetime] = utcnow
    ):
        self.gateway = gateway
        self.balance_ledger = ledger
        self.db_manager = manager
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    # Records

    async def record(
        self,
        db: AsyncSession,
        *,
        user_id: UUID,
        tx_type: TransactionType,
        amount: int,
        payment_method: PaymentMethod,
        status: TransactionStatus = TransactionStatus.PENDING,
        booking_id: Optional[UUID] = None,
        description: Optional[str] = None,
        correlation_id: Optional[str] = None,
        va_number: Optional[str] = None,
        bank_code: Optional[str] = None,
        redirect_url: Optional[str] = None,
        qr_payload: Optional[str] = None
    ) -> Transaction:
        """Append a ledger entry without touching any balance"""
        transaction = Transaction(
            user_id=user_id,
            booking_id=booking_id,
            correlation_id=correlation_id or new_correlation_id(TransactionType(tx_type).name.replace("_", "")),
            type=tx_type,
            amount=amount,
            payment_method=payment_method,
            status=status,
            description=description,
            va_number=va_number,
            bank_code=bank_code,
            redirect_url=redirect_url,
            qr_payload=qr_payload,
            completed_at=self.clock() if status != TransactionStatus.PENDING else None,
        )
        db.add(transaction)
        await db.flush()
        return transaction

    async def get_by_correlation_id(
        self,
        db: AsyncSession,
        correlation_id: str,
        for_update: bool = False
    ) -> Transaction:
        stmt = (
            select(Transaction)
            .where(Transaction.correlation_id == correlation_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await db.execute(stmt)
        transaction = result.scalar_one_or_none()
        if not transaction:
            raise NotFoundError("Transaction", correlation_id)
        return transaction

    async def get_transaction(self, db: AsyncSession, correlation_id: str, user_id: UUID) -> Transaction:
        async with self.db_manager.transaction(db):
            transaction = await self.get_by_correlation_id(db, correlation_id)
        if transaction.user_id != user_id:
            raise AuthorizationError("Transaction belongs to another user")
        return transaction

    async def list_transactions(
        self,
        db: AsyncSession,
        user_id: UUID,
        tx_type: Optional[TransactionType] = None,
        status: Optional[TransactionStatus] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Transaction]:
        conditions = [Transaction.user_id == user_id]
        if tx_type is not None:
            conditions.append(Transaction.type == tx_type)
        if status is not None:
            conditions.append(Transaction.status == status)

        async with self.db_manager.transaction(db):
            result = await db.execute(
                select(Transaction)
                .where(and_(*conditions))
                .order_by(Transaction.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())

    async def get_balance(self, db: AsyncSession, user_id: UUID) -> int:
        async with self.db_manager.transaction(db):
            return await self.balance_ledger.get_balance(db, user_id)

    # Reconciliation

    async def reconcile(
        self,
        db: AsyncSession,
        correlation_id: str,
        gateway_status: str,
        fraud_status: Optional[str] = None,
        source: ReconciliationSource = ReconciliationSource.WEBHOOK,
        gross_amount: Optional[str] = None
    ) -> ReconciliationResult:
        """
        Apply a gateway outcome to the transaction with ``correlation_id``.
        Safe to call any number of times from any source.
        """
        return await self.db_manager.run_atomic(
            db, self._reconcile, correlation_id, gateway_status, fraud_status, source, gross_amount
        )

    async def _reconcile(
        self,
        db: AsyncSession,
        correlation_id: str,
        gateway_status: str,
        fraud_status: Optional[str],
        source: ReconciliationSource,
        gross_amount: Optional[str] = None
    ) -> ReconciliationResult:
        source = ReconciliationSource(source)
        transaction = await self.get_by_correlation_id(db, correlation_id, for_update=True)

        if transaction.status == TransactionStatus.SUCCESS:
            RECONCILIATIONS.labels(source=source.value, outcome="already_applied").inc()
            self.logger.info(
                "Reconciliation skipped, transaction already successful",
                extra={"correlation_id": correlation_id, "source": source.value}
            )
            return ReconciliationResult(transaction=transaction, applied=False)

        if gross_amount is not None and _parse_amount(gross_amount) != transaction.amount:
            RECONCILIATIONS.labels(source=source.value, outcome="amount_mismatch").inc()
            self.logger.warning(
                "Gateway amount does not match transaction",
                extra={"correlation_id": correlation_id, "gross_amount": gross_amount,
                       "amount": transaction.amount}
            )
            raise ValidationError("Notification amount does not match transaction", field="gross_amount")

        new_status = map_gateway_status(gateway_status, fraud_status)

        if new_status == TransactionStatus.PENDING:
            RECONCILIATIONS.labels(source=source.value, outcome="pending").inc()
            return ReconciliationResult(transaction=transaction, applied=False)

        if transaction.status == TransactionStatus.FAILED:
            RECONCILIATIONS.labels(source=source.value, outcome="ignored").inc()
            self.logger.warning(
                "Ignoring gateway update for failed transaction",
                extra={"correlation_id": correlation_id, "gateway_status": gateway_status,
                       "source": source.value}
            )
            return ReconciliationResult(transaction=transaction, applied=False)

        credit = None
        if new_status == TransactionStatus.SUCCESS and transaction.type == TransactionType.TOP_UP:
            credit = await self.balance_ledger.credit(
                db,
                transaction.user_id,
                transaction.amount,
                description=f"Top up {transaction.correlation_id} settled"
            )

        # Status goes last, and only from pending
        result = await db.execute(
            update(Transaction)
            .where(
                and_(
                    Transaction.id == transaction.id,
                    Transaction.status == TransactionStatus.PENDING
                )
            )
            .values(
                status=new_status,
                reconciled_by=source,
                completed_at=self.clock(),
                updated_at=self.clock()
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrencyError("Transaction status changed during reconciliation")

        await db.refresh(transaction)

        RECONCILIATIONS.labels(source=source.value, outcome=new_status.value).inc()
        self.logger.info(
            "Transaction reconciled",
            extra={
                "correlation_id": correlation_id,
                "status": new_status.value,
                "source": source.value,
                "credited": credit.amount if credit else 0
            }
        )
        return ReconciliationResult(transaction=transaction, applied=True, credit=credit)

    async def check_status(self, db: AsyncSession, correlation_id: str, user_id: UUID) -> ReconciliationResult:
        """
        Client-driven poll. A gateway outage leaves the transaction pending.
        """
        transaction = await self.get_transaction(db, correlation_id, user_id)
        if transaction.status != TransactionStatus.PENDING:
            return ReconciliationResult(transaction=transaction, applied=False)

        try:
            status = await self.gateway.query_status(correlation_id)
        except GatewayUnavailableError as e:
            RECONCILIATIONS.labels(source=ReconciliationSource.POLL.value, outcome="gateway_unavailable").inc()
            self.logger.warning(
                "Gateway unavailable during poll, transaction left pending",
                extra={"correlation_id": correlation_id, "error": e.message}
            )
            return ReconciliationResult(transaction=transaction, applied=False, gateway_unavailable=True)

        return await self.reconcile(
            db,
            correlation_id,
            status.transaction_status,
            status.fraud_status,
            source=ReconciliationSource.POLL
        )

    async def simulate_success(self, db: AsyncSession, correlation_id: str, user_id: UUID) -> ReconciliationResult:
        """
        Operator/test-only settlement, enabled by PAYMENT_SIMULATION_ENABLED
        """
        if not settings.PAYMENT_SIMULATION_ENABLED:
            raise AuthorizationError("Payment simulation is disabled")

        await self.get_transaction(db, correlation_id, user_id)
        return await self.reconcile(
            db,
            correlation_id,
            "settlement",
            "accept",
            source=ReconciliationSource.SIMULATION
        )

    async def handle_notification(self, db: AsyncSession, payload: dict) -> ReconciliationResult:
        """
        Gateway push notification. The signature is checked before anything
        is looked up.
        """
        if not self.gateway.verify_notification(payload):
            RECONCILIATIONS.labels(source=ReconciliationSource.WEBHOOK.value, outcome="bad_signature").inc()
            self.logger.warning(
                "Rejected notification with invalid signature",
                extra={"correlation_id": payload.get("order_id")}
            )
            raise WebhookSignatureError()

        return await self.reconcile(
            db,
            payload["order_id"],
            payload.get("transaction_status"),
            payload.get("fraud_status"),
            source=ReconciliationSource.WEBHOOK,
            gross_amount=payload.get("gross_amount")
        )

    # Top-ups

    async def create_top_up(self, db: AsyncSession, user, amount: int, method: PaymentMethod) -> TopUpResult:
        """
        Open a pending top-up with the gateway and record its routing details
        """
        if amount < settings.MIN_TOP_UP_AMOUNT:
            raise ValidationError(
                f"Minimum top up is {settings.MIN_TOP_UP_AMOUNT}",
                field="amount"
            )
        method = PaymentMethod(method)
        if method == PaymentMethod.SALDO:
            raise ValidationError("Top ups must be paid through the payment gateway", field="payment_method")

        request = ChargeRequest(
            correlation_id=new_correlation_id("TOPUP"),
            amount=amount,
            method=method,
            customer_name=user.full_name,
            customer_email=user.email,
        )

        try:
            charge = await self.gateway.create_charge(request)
        except GatewayUnavailableError:
            charge = simulated_charge(request) if settings.PAYMENT_SIMULATION_ENABLED else None
            if charge is None:
                raise
            self.logger.warning(
                "Gateway unavailable, issuing simulated payment details",
                extra={"correlation_id": request.correlation_id, "payment_method": method.value}
            )

        transaction = await self.db_manager.run_atomic(db, self._open_top_up, user.id, request, charge)
        return TopUpResult(transaction=transaction, simulated=charge.simulated)

    async def _open_top_up(self, db: AsyncSession, user_id: UUID, request: ChargeRequest, charge) -> Transaction:
        description = f"Top up balance by {request.amount}"
        if charge.simulated:
            description += " (simulation)"

        transaction = await self.record(
            db,
            user_id=user_id,
            tx_type=TransactionType.TOP_UP,
            amount=request.amount,
            payment_method=request.method,
            correlation_id=request.correlation_id,
            description=description,
            va_number=charge.va_number,
            bank_code=charge.bank_code,
            redirect_url=charge.redirect_url,
            qr_payload=charge.qr_payload,
        )
        self.logger.info(
            "Top up opened",
            extra={"correlation_id": request.correlation_id, "amount": request.amount,
                   "payment_method": request.method.value}
        )

        if map_gateway_status(charge.transaction_status, charge.fraud_status) != TransactionStatus.PENDING:
            result = await self._reconcile(
                db,
                request.correlation_id,
                charge.transaction_status,
                charge.fraud_status,
                ReconciliationSource.CHARGE
            )
            transaction = result.transaction
        return transaction


def _parse_amount(value) -> Optional[int]:
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return None


transaction_ledger = TransactionLedger()
