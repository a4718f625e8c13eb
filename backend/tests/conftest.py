"""Pytest configuration and fixtures."""

from decimal import Decimal
from typing import Any, List, Tuple

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.pool import NullPool

from pos_core.api.deps import (
    get_order_service,
    get_payment_service,
    get_stock_service,
    get_table_service,
)
from pos_core.core.rbac import UserRole
from pos_core.core.security import create_access_token
from pos_core.db.base import Base
from pos_core.db.session import build_engine, build_session_factory
from pos_core.main import app
from pos_core.models import Product, RestaurantTable
from pos_core.schemas.order import OrderCreate
from pos_core.services.order_number_service import OrderNumberGenerator
from pos_core.services.order_service import OrderService
from pos_core.services.payment_service import PaymentService
from pos_core.services.stock_service import StockService
from pos_core.services.table_service import TableService


class RecordingBroadcaster:
    """Stands in for EventBroadcaster and keeps every call."""

    def __init__(self):
        self.calls: List[Tuple[str, tuple]] = []

    def names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))

    def broadcast_order_created(self, order, pending_order_count):
        self._record("order-created", order, pending_order_count)

    def broadcast_order_updated(self, order, pending_order_count):
        self._record("order-updated", order, pending_order_count)

    def broadcast_order_status_updated(self, order_id, status, order, pending_order_count):
        self._record("order-status-updated", order_id, status, order, pending_order_count)

    def broadcast_order_deleted(self, order_id, pending_order_count):
        self._record("order-deleted", order_id, pending_order_count)

    def broadcast_table_status_changed(self, table_id, status):
        self._record("table-status-changed", table_id, status)

    def broadcast_payment_received(self, payment):
        self._record("payment-received", payment)


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """File-backed SQLite engine, one database per test."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'pos-test.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def count_rows(session_factory):
    """Return an async helper counting rows of a model, optionally filtered."""

    async def _count(model, *criteria) -> int:
        async with session_factory() as session:
            query = select(func.count()).select_from(model)
            if criteria:
                query = query.where(*criteria)
            return (await session.execute(query)).scalar_one()

    return _count


@pytest.fixture
def fetch(session_factory):
    """Return an async helper that re-reads one row in a fresh session."""

    async def _fetch(model, pk):
        async with session_factory() as session:
            return await session.get(model, pk)

    return _fetch


@pytest_asyncio.fixture
async def seed(session_factory):
    """Two products and two tables."""
    async with session_factory() as session:
        burger = Product(name="Burger", sku="BRG-1", price=Decimal("5.00"), stock_quantity=50)
        cola = Product(name="Cola", sku="COLA-1", price=Decimal("3.00"), stock_quantity=100,
                       image_url="/uploads/cola.png")
        t1 = RestaurantTable(table_number="T1", capacity=4, location="Main Floor", display_order=1)
        t2 = RestaurantTable(table_number="T2", capacity=2, location="Patio", display_order=2)
        session.add_all([burger, cola, t1, t2])
        await session.commit()
        return {"burger": burger.id, "cola": cola.id, "t1": t1.id, "t2": t2.id}


@pytest.fixture
def order_service(session_factory, broadcaster):
    return OrderService(
        session_factory,
        broadcaster=broadcaster,
        numbers=OrderNumberGenerator(prefix="ORD", strategy="counter"),
        tax_rate_percent=10,
    )


@pytest.fixture
def table_service(session_factory, broadcaster):
    return TableService(session_factory, broadcaster=broadcaster)


@pytest.fixture
def payment_service(session_factory):
    return PaymentService(session_factory)


@pytest.fixture
def stock_service(session_factory):
    return StockService(session_factory)


@pytest.fixture
def sample_order(seed):
    """Scenario order: 2 burgers at 5.00 and 1 cola at 3.00 on table T1."""
    return OrderCreate(
        table_id=seed["t1"],
        items=[
            {"product_id": seed["burger"], "product_name": "Burger", "quantity": 2, "unit_price": "5.00"},
            {"product_id": seed["cola"], "product_name": "Cola", "quantity": 1, "unit_price": "3.00"},
        ],
        notes="no onions",
    )


def make_token(role: UserRole, user_id: int = 7, username: str = "tester") -> str:
    return create_access_token(data={"sub": str(user_id), "username": username, "role": role.value})


@pytest.fixture
def auth_headers() -> dict:
    """Cashier authentication headers."""
    return {"Authorization": f"Bearer {make_token(UserRole.CASHIER)}"}


@pytest.fixture
def manager_headers() -> dict:
    return {"Authorization": f"Bearer {make_token(UserRole.MANAGER, user_id=2, username='boss')}"}


@pytest.fixture
def admin_headers() -> dict:
    return {"Authorization": f"Bearer {make_token(UserRole.ADMIN, user_id=1, username='admin')}"}


@pytest_asyncio.fixture
async def client(order_service, table_service, payment_service, stock_service):
    """HTTP client bound to the test database through service overrides."""
    app.dependency_overrides[get_order_service] = lambda: order_service
    app.dependency_overrides[get_table_service] = lambda: table_service
    app.dependency_overrides[get_payment_service] = lambda: payment_service
    app.dependency_overrides[get_stock_service] = lambda: stock_service
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as test_client:
        yield test_client
    app.dependency_overrides.clear()
