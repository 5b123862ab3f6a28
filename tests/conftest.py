"""
Pytest configuration and fixtures.

Every test gets its own SQLite database file so concurrent sessions see real
row-level contention instead of a shared in-memory connection.
"""
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncGenerator, List

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from order_fulfillment.config import Settings
from order_fulfillment.core.inventory import InventoryLedger
from order_fulfillment.core.order_workflow import OrderWorkflow
from order_fulfillment.database.connection import build_engine, create_session_factory
from order_fulfillment.database.models import Base, Category, Product, User
from order_fulfillment.integrations.payment_gateway import ScriptedPaymentGateway


@dataclass
class SeedData:
    """Identifiers of the rows created by the ``seed`` fixture."""

    user_id: int
    other_user_id: int
    category_id: int
    keyboard_id: int
    mouse_id: int
    cable_id: int


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}",
        app_name="order-fulfillment-test",
        app_env="test",
        log_level="DEBUG",
        payment_gateway="simulated",
        payment_retry_max_attempts=3,
        payment_retry_base_delay=0.1,
        payment_simulated_latency=0.0,
        payment_simulated_failure_rate=0.0,
    )


@pytest_asyncio.fixture
async def test_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, Any]:
    """Create a file-backed SQLite engine with fresh tables."""
    engine = build_engine(test_settings, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory configured like the application's."""
    return create_session_factory(test_engine)


@pytest_asyncio.fixture
async def test_db(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, Any]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def seed(session_factory: async_sessionmaker[AsyncSession]) -> SeedData:
    """Seed two users, one category and three products."""
    async with session_factory() as session:
        user = User(email="ada@example.com", name="Ada")
        other_user = User(email="grace@example.com", name="Grace")
        category = Category(name="Peripherals")
        session.add_all([user, other_user, category])
        await session.flush()

        keyboard = Product(
            name="Keyboard", price=Decimal("49.99"), stock=10, category_id=category.id
        )
        mouse = Product(name="Mouse", price=Decimal("19.50"), stock=5, category_id=category.id)
        cable = Product(name="Cable", price=Decimal("5.00"), stock=1)
        session.add_all([keyboard, mouse, cable])
        await session.commit()

        return SeedData(
            user_id=user.id,
            other_user_id=other_user.id,
            category_id=category.id,
            keyboard_id=keyboard.id,
            mouse_id=mouse.id,
            cable_id=cable.id,
        )


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    """Sleep that returns immediately and records the delays."""
    return RecordingSleep()


@pytest.fixture
def payment_gateway() -> ScriptedPaymentGateway:
    """Gateway that always succeeds."""
    return ScriptedPaymentGateway.always_succeeding()


@pytest.fixture
def inventory() -> InventoryLedger:
    return InventoryLedger()


@pytest.fixture
def workflow(
    payment_gateway: ScriptedPaymentGateway,
    inventory: InventoryLedger,
    test_settings: Settings,
    recording_sleep: RecordingSleep,
) -> OrderWorkflow:
    """Workflow engine with a scripted gateway and no real sleeping."""
    return OrderWorkflow(
        payment_gateway=payment_gateway,
        inventory=inventory,
        settings=test_settings,
        sleep=recording_sleep,
    )
