import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

sys.path.append(str(Path(__file__).parents[1] / "src"))

from ledgersync.categorization.cache import shared_cache
from ledgersync.models import BankAccount, MainCategory, SubCategory, User
from ledgersync.models.base import BaseModel
from ledgersync.schemas.aggregator import ProviderTransaction

TEST_DATABASE_URL = "sqlite+aiosqlite://"

TAXONOMY: dict[str, list[str]] = {
    "Food & Dining": ["Restaurants", "Groceries", "Fast Food", "Coffee"],
    "Transportation": ["Fuel", "Ride Share", "Public Transit", "Parking", "Other Transport"],
    "Shopping": ["Online", "Clothing", "Electronics", "Other Shopping"],
    "Entertainment": ["Streaming", "Events", "Other Entertainment"],
    "Health & Fitness": ["Healthcare", "Fitness"],
    "Bills & Utilities": ["Rent", "Insurance", "Taxes", "Energy", "Phone", "Internet", "Other Bills"],
    "Banking": ["ATM", "Transfer", "Fees"],
    "Income": ["Salary", "Bonus", "Refunds", "Other Income"],
    "Other": ["Uncategorized", "Miscellaneous"],
}
TAXONOMY_PAIRS = [(main, sub) for main, subs in TAXONOMY.items() for sub in subs]

NOW = datetime(2024, 2, 1, 12, 0, tzinfo=timezone.utc)


def build_transaction(
    id: str = "tx-1",
    unscaled: str = "-1250",
    scale: str = "2",
    account_id: str = "ext-acc-1",
    booked: str = "2024-01-15",
    status: str = "BOOKED",
    display: str | None = "Card payment",
    original: str | None = None,
    merchant_name: str | None = None,
    mcc: str | None = None,
    pfm_name: str | None = None,
    **extra: Any,
) -> ProviderTransaction:
    """Build a provider transaction from its wire (camelCase) shape."""
    payload: dict[str, Any] = {
        "id": id,
        "accountId": account_id,
        "amount": {"currencyCode": "EUR", "value": {"scale": scale, "unscaledValue": unscaled}},
        "dates": {"booked": booked},
        "descriptions": {"display": display, "original": original or display},
        "status": status,
    }
    if merchant_name or mcc:
        payload["merchantInformation"] = {"merchantName": merchant_name, "merchantCategoryCode": mcc}
    if pfm_name:
        payload["categories"] = {"pfm": {"id": f"pfm-{pfm_name}", "name": pfm_name}}
    payload.update(extra)
    return ProviderTransaction.model_validate(payload)


@pytest.fixture
def make_transaction():
    """Factory for provider transactions."""
    return build_transaction


@pytest.fixture(autouse=True)
def fresh_shared_cache():
    """Each test gets its own database, so drop whatever the shared cache loaded."""
    shared_cache.invalidate()
    yield
    shared_cache.invalidate()


@pytest.fixture
def category_repo():
    """Patch the repository the categorization cache loads from."""
    with patch("ledgersync.categorization.cache.CategoryRepository") as repo_cls:
        repo = repo_cls.return_value
        repo.get_global_rules = AsyncMock(return_value=[])
        repo.get_user_rules = AsyncMock(return_value=[])
        repo.get_mcc_mappings = AsyncMock(return_value=[])
        repo.get_taxonomy = AsyncMock(return_value=list(TAXONOMY_PAIRS))
        yield repo


@pytest.fixture
async def db_engine():
    """In-memory database with all tables; one per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(BaseModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine) -> AsyncSession:
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def test_user(db_session: AsyncSession) -> User:
    user = User(id=uuid4(), email="test@example.com", full_name="Test User")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
async def another_user(db_session: AsyncSession) -> User:
    user = User(id=uuid4(), email="another@example.com", full_name="Another User")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
async def bank_account(db_session: AsyncSession, test_user: User) -> BankAccount:
    account = BankAccount(
        id=uuid4(),
        user_id=test_user.id,
        external_account_id="ext-acc-1",
        account_name="Main checking",
        account_type="CHECKING",
        institution_id="inst-1",
        credentials_id="cred-1",
        iban="FR7630006000011234567890189",
        balance=150000,
        currency="EUR",
    )
    db_session.add(account)
    await db_session.commit()
    return account


@pytest.fixture
async def seeded_taxonomy(db_session: AsyncSession) -> dict[str, list[str]]:
    """Store TAXONOMY in the main/sub category tables."""
    for main_order, (main_name, subs) in enumerate(TAXONOMY.items()):
        main = MainCategory(id=uuid4(), name=main_name, sort_order=main_order)
        db_session.add(main)
        for sub_order, sub_name in enumerate(subs):
            db_session.add(
                SubCategory(id=uuid4(), main_category_id=main.id, name=sub_name, sort_order=sub_order)
            )
    await db_session.commit()
    return TAXONOMY


@pytest.fixture
def taxonomy() -> dict[str, list[str]]:
    return {main: list(subs) for main, subs in TAXONOMY.items()}


@pytest.fixture
def now() -> datetime:
    return NOW
