"""
Pytest configuration and shared test fixtures.

Every test gets its own file-backed SQLite database so that concurrent
sessions behave like separate connections to one store. The API client
talks to the real application with the database dependency pointed at that
file.
"""

import os
import tempfile
from decimal import Decimal
from pathlib import Path
from typing import AsyncGenerator, Awaitable, Callable, Optional
from uuid import UUID

# Settings are cached on first use; pin the test environment before any
# application import.
_SHARED_DB = Path(tempfile.mkdtemp(prefix="mtaani-gas-tests-")) / "app.db"
os.environ["APP_ENVIRONMENT"] = "test"
os.environ["APP_DATABASE_URL"] = f"sqlite+aiosqlite:///{_SHARED_DB}"
os.environ["APP_PAYMENT_SIMULATION_DELAY_SECONDS"] = "0"
os.environ["APP_RATE_LIMIT_ENABLED"] = "false"
os.environ["APP_LOG_LEVEL"] = "WARNING"

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool  # noqa: E402

from mtaani_gas.core.security import create_access_token  # noqa: E402
from mtaani_gas.database.connection import get_db  # noqa: E402
from mtaani_gas.database.models import Base, CartItem, Product, User, UserRole  # noqa: E402
from mtaani_gas.main import app  # noqa: E402
from mtaani_gas.services.orders.enums import OrderPaymentMethod  # noqa: E402
from mtaani_gas.services.orders.service import OrderService  # noqa: E402


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """
    Create an engine on a fresh SQLite file with the full schema.

    Yields:
        AsyncEngine: Engine bound to the per-test database file
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory configured like the application's."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Provide a session for arranging data and calling services directly.

    Yields:
        AsyncSession: Session on the per-test database
    """
    async with session_factory() as session:
        yield session


# ============================================================================
# API Client Fixtures
# ============================================================================


@pytest.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, None]:
    """
    Asynchronous client for the application backed by the test database.

    Yields:
        AsyncClient: Client sending requests through the ASGI app
    """

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> Callable[[User], dict[str, str]]:
    """Build the bearer header for a user."""

    def _auth_headers(user: User) -> dict[str, str]:
        token = create_access_token(user.id, role=user.role.value)
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers


# ============================================================================
# Data Factories
# ============================================================================


@pytest.fixture
def make_user(db_session: AsyncSession) -> Callable[..., Awaitable[User]]:
    """Factory inserting committed users."""
    counter = {"n": 0}

    async def _make_user(
        role: UserRole = UserRole.CLIENT,
        location: Optional[str] = None,
        name: Optional[str] = None,
        is_active: bool = True,
    ) -> User:
        counter["n"] += 1
        user = User(
            name=name or f"{role.value.title()} {counter['n']}",
            email=f"{role.value}{counter['n']}@example.com",
            phone=f"07000000{counter['n']:02d}",
            role=role,
            location=location,
            is_active=is_active,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make_user


@pytest.fixture
def make_product(db_session: AsyncSession) -> Callable[..., Awaitable[Product]]:
    """Factory inserting committed catalog products."""

    async def _make_product(
        name: str = "6kg Gas Cylinder Refill",
        price: str = "1200.00",
        stock: int = 10,
    ) -> Product:
        product = Product(name=name, price=Decimal(price), stock=stock, is_active=True)
        db_session.add(product)
        await db_session.commit()
        return product

    return _make_product


@pytest.fixture
def add_to_cart(db_session: AsyncSession) -> Callable[..., Awaitable[CartItem]]:
    """Factory putting a product line into a customer's cart."""

    async def _add_to_cart(user: User, product: Product, quantity: int = 1) -> CartItem:
        line = CartItem(user_id=user.id, product_id=product.id, quantity=quantity)
        db_session.add(line)
        await db_session.commit()
        return line

    return _add_to_cart


@pytest.fixture
async def customer(make_user) -> User:
    """Customer living in Kasarani."""
    return await make_user(UserRole.CLIENT, location="Kasarani, Nairobi", name="Wanjiku")


@pytest.fixture
async def dealer(make_user) -> User:
    """Active dealer serving Kasarani."""
    return await make_user(UserRole.DEALER, location="Kasarani, Nairobi", name="Kasarani Gas")


@pytest.fixture
async def other_dealer(make_user) -> User:
    """Second active dealer serving Kasarani."""
    return await make_user(UserRole.DEALER, location="Kasarani, Nairobi", name="Mwiki Energy")


@pytest.fixture
async def product(make_product) -> Product:
    """Cylinder refill with ten units in stock."""
    return await make_product()


@pytest.fixture
def place_order(db_session: AsyncSession, add_to_cart) -> Callable[..., Awaitable[UUID]]:
    """Factory placing an order from a fresh cart through the order service."""

    async def _place_order(
        user: User,
        product: Product,
        quantity: int = 1,
        delivery_location: str = "Kasarani, Nairobi",
        payment_method: OrderPaymentMethod = OrderPaymentMethod.CASH,
    ) -> UUID:
        await add_to_cart(user, product, quantity)
        result = await OrderService(db_session).create_order_from_cart(
            user_id=user.id,
            delivery_location=delivery_location,
            payment_method=payment_method,
        )
        return UUID(result["order_id"])

    return _place_order
