"""
Test configuration and fixtures
"""

import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select, func, update

# Set test environment before the application reads its settings
os.environ["APP_ENV"] = "testing"
os.environ["SECRET_KEY"] = "test-secret-key-for-parkgo-at-least-32-chars"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-key-for-parkgo-at-least-32"
os.environ["ACCESS_TOKEN_SECRET"] = "test-access-token-secret-for-parkgo-entry"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./parkgo_test.db"
os.environ["PAYMENT_SERVER_KEY"] = "SB-Mid-server-test-key"
os.environ["PAYMENT_SIMULATION_ENABLED"] = "true"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["LOG_DIR"] = ""

from parkgo.core.database import Base, DatabaseManager, create_engine, create_session_factory
from parkgo.core.exceptions import GatewayUnavailableError
from parkgo.core.security import create_access_token, hash_password
from parkgo.models import (
    Booking,
    BookingStatus,
    Facility,
    SlotInventory,
    Transaction,
    TransactionType,
    User,
    UserRole,
    VehicleClass,
)
from parkgo.services.access_token_service import AccessTokenService
from parkgo.services.balance_ledger import BalanceLedger
from parkgo.services.booking_service import BookingService
from parkgo.services.facility_service import FacilityService
from parkgo.services.payment_gateway import (
    ChargeResult,
    GatewayStatus,
    MidtransGateway,
    notification_signature,
)
from parkgo.services.slot_inventory import SlotInventoryService
from parkgo.services.transaction_ledger import TransactionLedger

SERVER_KEY = os.environ["PAYMENT_SERVER_KEY"]
START = datetime(2025, 1, 6, 8, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable replacement for the wall clock"""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeGateway:
    """In-memory payment gateway speaking the adapter contract"""

    def __init__(self, server_key: str = SERVER_KEY):
        self.server_key = server_key
        self.charges = []
        self.charge_status = "pending"
        self.statuses: Dict[str, str] = {}
        self.fraud: Dict[str, str] = {}
        self.unavailable = False
        self.status_queries = 0

    async def create_charge(self, request):
        if self.unavailable:
            raise GatewayUnavailableError()
        self.charges.append(request)
        result = ChargeResult(transaction_status=self.charge_status)
        if request.method.is_virtual_account:
            result.va_number = "8808000012345678"
            result.bank_code = request.method.bank_code.upper()
        else:
            result.qr_payload = "00020101021226"
        return result

    async def query_status(self, correlation_id: str):
        self.status_queries += 1
        if self.unavailable:
            raise GatewayUnavailableError()
        return GatewayStatus(
            correlation_id=correlation_id,
            transaction_status=self.statuses.get(correlation_id, "pending"),
            fraud_status=self.fraud.get(correlation_id),
        )

    def verify_notification(self, payload) -> bool:
        return MidtransGateway(server_key=self.server_key).verify_notification(payload)

    def notification(self, correlation_id: str, amount: int, status: str = "settlement",
                     fraud_status: Optional[str] = "accept", gross_amount: Optional[str] = None) -> dict:
        status_code = "200" if status in ("capture", "settlement") else "202"
        gross_amount = gross_amount or f"{amount}.00"
        payload = {
            "order_id": correlation_id,
            "status_code": status_code,
            "gross_amount": gross_amount,
            "transaction_status": status,
            "payment_type": "bank_transfer",
            "signature_key": notification_signature(correlation_id, status_code, gross_amount, self.server_key),
        }
        if fraud_status:
            payload["fraud_status"] = fraud_status
        return payload


@dataclass
class Services:
    clock: FakeClock
    gateway: FakeGateway
    manager: DatabaseManager
    tokens: AccessTokenService
    inventory: SlotInventoryService
    ledger: BalanceLedger
    transactions: TransactionLedger
    bookings: BookingService
    facilities: FacilityService


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite database per test"""
    test_engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'parkgo.db'}", testing=True)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def services(clock, gateway):
    manager = DatabaseManager(retry_attempts=1, retry_backoff=0.01)
    tokens = AccessTokenService(clock=clock)
    inventory = SlotInventoryService(manager)
    ledger = BalanceLedger(clock=clock)
    transactions = TransactionLedger(gateway=gateway, ledger=ledger, manager=manager, clock=clock)
    bookings = BookingService(
        tokens=tokens,
        inventory=inventory,
        ledger=ledger,
        transactions=transactions,
        manager=manager,
        clock=clock
    )
    facilities = FacilityService(inventory=inventory, manager=manager)
    return Services(
        clock=clock,
        gateway=gateway,
        manager=manager,
        tokens=tokens,
        inventory=inventory,
        ledger=ledger,
        transactions=transactions,
        bookings=bookings,
        facilities=facilities,
    )


# Seeding helpers

@pytest.fixture
def make_user(session_factory):
    async def _make_user(balance: int = 0, role: UserRole = UserRole.USER, name: str = "Driver") -> UUID:
        async with session_factory() as session:
            async with session.begin():
                user = User(
                    email=f"{name.lower()}_{uuid4().hex[:8]}@example.com",
                    password_hash=hash_password("Secret123!"),
                    full_name=name,
                    role=role,
                    is_active=True,
                    balance=balance,
                )
                session.add(user)
                await session.flush()
                return user.id
    return _make_user


@pytest.fixture
def make_facility(session_factory):
    async def _make_facility(owner_id: UUID, car=(1, 15000), motorcycle=(5, 5000)) -> UUID:
        async with session_factory() as session:
            async with session.begin():
                facility = Facility(owner_id=owner_id, name="Central Parking", address="Jl. Sudirman 1")
                slots = []
                if car:
                    slots.append(SlotInventory(vehicle_class=VehicleClass.CAR, capacity=car[0],
                                               available=car[0], hourly_rate=car[1]))
                if motorcycle:
                    slots.append(SlotInventory(vehicle_class=VehicleClass.MOTORCYCLE, capacity=motorcycle[0],
                                               available=motorcycle[0], hourly_rate=motorcycle[1]))
                facility.inventory = slots
                session.add(facility)
                await session.flush()
                return facility.id
    return _make_facility


@pytest_asyncio.fixture
async def owner_id(make_user):
    return await make_user(role=UserRole.LANDOWNER, name="Owner")


@pytest_asyncio.fixture
async def driver_id(make_user):
    return await make_user(balance=100000, name="Driver")


@pytest_asyncio.fixture
async def facility_id(make_facility, owner_id):
    return await make_facility(owner_id)


@pytest.fixture
def insert_booking(session_factory):
    """Write a booking row directly, bypassing the lifecycle"""
    async def _insert_booking(user_id: UUID, facility_id: UUID, vehicle_class: VehicleClass,
                              status: BookingStatus, start_time: datetime, duration_hours: int = 1) -> UUID:
        async with session_factory() as session:
            async with session.begin():
                booking = Booking(
                    user_id=user_id,
                    facility_id=facility_id,
                    vehicle_class=vehicle_class,
                    start_time=start_time,
                    duration_hours=duration_hours,
                    cost=0,
                    status=status,
                    overtime_charge=0,
                )
                session.add(booking)
                await session.flush()
                return booking.id
    return _insert_booking


@pytest.fixture
def set_available(session_factory):
    """Force an availability counter, simulating drift"""
    async def _set_available(facility_id: UUID, vehicle_class: VehicleClass, available: int) -> None:
        async with session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(SlotInventory)
                    .where(
                        SlotInventory.facility_id == facility_id,
                        SlotInventory.vehicle_class == vehicle_class
                    )
                    .values(available=available)
                )
    return _set_available


# Read-back helpers, each in a fresh session

@pytest.fixture
def read_slot(session_factory):
    async def _read_slot(facility_id: UUID, vehicle_class: VehicleClass = VehicleClass.CAR):
        async with session_factory() as session:
            result = await session.execute(
                select(SlotInventory.capacity, SlotInventory.available).where(
                    SlotInventory.facility_id == facility_id,
                    SlotInventory.vehicle_class == vehicle_class
                )
            )
            capacity, available = result.one()
            return capacity, available
    return _read_slot


@pytest.fixture
def load_user(session_factory):
    async def _load_user(user_id: UUID) -> User:
        async with session_factory() as session:
            return await session.get(User, user_id)
    return _load_user


@pytest.fixture
def read_balance(session_factory):
    async def _read_balance(user_id: UUID) -> int:
        async with session_factory() as session:
            result = await session.execute(select(User.balance).where(User.id == user_id))
            return result.scalar_one()
    return _read_balance


@pytest.fixture
def read_booking(session_factory):
    async def _read_booking(booking_id: UUID) -> Booking:
        async with session_factory() as session:
            result = await session.execute(select(Booking).where(Booking.id == booking_id))
            return result.scalar_one()
    return _read_booking


@pytest.fixture
def count_transactions(session_factory):
    async def _count(user_id: UUID, tx_type: Optional[TransactionType] = None, **filters) -> int:
        async with session_factory() as session:
            stmt = select(func.count(Transaction.id)).where(Transaction.user_id == user_id)
            if tx_type is not None:
                stmt = stmt.where(Transaction.type == tx_type)
            for column, value in filters.items():
                stmt = stmt.where(getattr(Transaction, column) == value)
            result = await session.execute(stmt)
            return result.scalar_one()
    return _count


# HTTP client

@pytest_asyncio.fixture
async def client(session_factory, services):
    """Test client with the database and services swapped for test instances"""
    from parkgo.main import app
    from parkgo.core.database import get_session
    from parkgo.api.deps import get_booking_service, get_facility_service, get_transaction_ledger

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_booking_service] = lambda: services.bookings
    app.dependency_overrides[get_transaction_ledger] = lambda: services.transactions
    app.dependency_overrides[get_facility_service] = lambda: services.facilities

    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _auth_headers(user_id: UUID) -> dict:
        token = create_access_token({"sub": str(user_id)})
        return {"Authorization": f"Bearer {token}"}
    return _auth_headers
