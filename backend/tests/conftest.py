import asyncio
import os
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

# The import-time engine must not need a running PostgreSQL in tests.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from promo_engine.core.config import settings
from promo_engine.db.base import Base
from promo_engine.db.session import build_engine, get_session
from promo_engine.main import app
from promo_engine.models import Promotion, PromotionScope, PromotionTarget, PromotionType


def _init_models(engine: AsyncEngine) -> None:
    async def _create() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(_create())


def _dispose(engine: AsyncEngine) -> None:
    try:
        asyncio.run(engine.dispose())
    except RuntimeError:
        loop = asyncio.new_event_loop()
        try:
            loop.run_until_complete(engine.dispose())
        finally:
            loop.close()


@pytest.fixture(scope="module")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def session_factory() -> Generator[async_sessionmaker, None, None]:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    _init_models(engine)
    yield async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    _dispose(engine)


@pytest.fixture
def file_session_factory(tmp_path) -> Generator[async_sessionmaker, None, None]:
    """File-backed database opened with BEGIN IMMEDIATE, for concurrent writers."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'promotions.db'}")
    _init_models(engine)
    yield async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    _dispose(engine)


@pytest.fixture
def client(session_factory: async_sessionmaker) -> Generator[TestClient, None, None]:
    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    test_client = TestClient(app)
    yield test_client
    test_client.close()
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Admin-Token": settings.admin_api_token}


@pytest.fixture
def seed_promotion():
    """Insert a promotion that is live right now unless told otherwise."""

    def _seed(session_factory: async_sessionmaker, **overrides) -> Promotion:
        now = datetime.now(timezone.utc)
        targets = overrides.pop("targets", [])
        values = {
            "code": "SALE20",
            "name": "Sale 20",
            "scope": PromotionScope.GLOBAL_ORDER,
            "type": PromotionType.PERCENTAGE,
            "value": Decimal("20"),
            "start_date": now - timedelta(days=1),
            "end_date": now + timedelta(days=7),
            "is_active": True,
        }
        values.update(overrides)

        async def _insert() -> Promotion:
            async with session_factory() as session:
                promotion = Promotion(
                    **values,
                    targets=[
                        PromotionTarget(
                            product_id=t["product_id"],
                            variant_id=t.get("variant_id"),
                            specific_value=t.get("specific_value"),
                            position=idx,
                        )
                        for idx, t in enumerate(targets)
                    ],
                )
                session.add(promotion)
                await session.commit()
                return promotion

        return asyncio.run(_insert())

    return _seed
