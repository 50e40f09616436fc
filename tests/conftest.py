from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import storefront.persistence.pg as pg
from storefront.core.config import get_settings
from storefront.core.security import Actor, create_customer_token
from storefront.persistence.models import Base, OrderModel, ProductModel, SizeVariantModel


@pytest.fixture(scope="session")
def test_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    return tmp_path_factory.mktemp("db") / "test.sqlite"


@pytest.fixture(scope="session", autouse=True)
def configure_test_engine(test_db_path: Path):
    engine = pg.create_engine_from_url(f"sqlite+pysqlite:///{test_db_path}")
    TestSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

    pg.engine = engine
    pg.SessionLocal = TestSessionLocal

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(autouse=True)
def clean_tables(configure_test_engine):
    with configure_test_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    yield


@pytest.fixture()
def client(configure_test_engine):
    from storefront.main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture()
def session(configure_test_engine):
    with pg.session_scope() as s:
        yield s


@pytest.fixture()
def admin() -> Actor:
    return Actor(type="admin", id="admin-test")


@pytest.fixture()
def auth_headers():
    settings = get_settings()
    return {
        "admin": {"X-API-Key": settings.admin_api_key},
        "system": {"X-API-Key": settings.system_api_key},
        "alice": {"Authorization": f"Bearer {create_customer_token('user-alice')}"},
        "bob": {"Authorization": f"Bearer {create_customer_token('user-bob')}"},
    }


@pytest.fixture()
def make_product():
    def _make(sku: str = "TEE", price_cents: int = 2500, sizes: dict[str, int] | None = None) -> dict:
        with pg.session_scope() as s:
            product = ProductModel(sku=sku, name=f"{sku} product", price_cents=price_cents)
            product.sizes = [SizeVariantModel(label=label, stock=stock) for label, stock in (sizes or {}).items()]
            s.add(product)
            s.flush()
            return {
                "product_id": product.product_id,
                "sizes": {v.label: v.size_variant_id for v in product.sizes},
            }

    return _make


@pytest.fixture()
def make_order():
    def _make(user_id: str = "user-alice", status: str = "PENDING", subtotal_cents: int = 5000) -> str:
        with pg.session_scope() as s:
            order = OrderModel(
                user_id=user_id,
                status=status,
                subtotal_cents=subtotal_cents,
                total_cents=subtotal_cents,
                created_at=datetime.now(timezone.utc),
            )
            s.add(order)
            s.flush()
            return order.order_id

    return _make
