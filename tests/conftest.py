import itertools
import os
import tempfile
from collections.abc import Callable, Generator
from decimal import Decimal
from pathlib import Path
from typing import Any

# The application factory reads settings once; point it at a scratch database
# before anything from the package is imported.
os.environ.setdefault(
    "BOOKSTORE_DATABASE_URL", f"sqlite:///{Path(tempfile.mkdtemp()) / 'bookstore.sqlite3'}"
)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from bookstore_core import catalog, ledger, locations, models, promotions
from bookstore_core.api.deps import get_db
from bookstore_core.app import create_app
from bookstore_core.authz import Actor, Role
from bookstore_core.database import create_db_engine, init_database, make_session_factory

ADMIN = Actor(user_id="admin-1", role=Role.ADMIN)
WAREHOUSE = Actor(user_id="wh-1", role=Role.WAREHOUSE)
FINANCE = Actor(user_id="fin-1", role=Role.FINANCE)
ALICE = Actor(user_id="alice")
BOB = Actor(user_id="bob")


@pytest.fixture(name="db_url")
def db_url_fixture(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'test.db'}"


@pytest.fixture(name="db_engine")
def db_engine_fixture(db_url: str) -> Generator[Any, None, None]:
    engine = create_db_engine(db_url, lock_timeout=5)
    init_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="session_factory")
def session_factory_fixture(db_engine) -> sessionmaker[Session]:  # type: ignore[no-untyped-def]
    return make_session_factory(db_engine)


@pytest.fixture(name="session")
def session_fixture(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    with session_factory() as session:
        yield session


@pytest.fixture(name="client")
def client_fixture(session_factory: sessionmaker[Session]):  # type: ignore[annotations]
    app = create_app()

    def get_db_override() -> Generator[Session, None, None]:
        with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = get_db_override

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture(name="make_book")
def make_book_fixture(session_factory: sessionmaker[Session]) -> Callable[..., models.Book]:
    isbns = itertools.count(1)

    def _make(title: str = "Dune", price: str = "10.00", stock: int = 10) -> models.Book:
        with session_factory() as session:
            return catalog.create_book(
                session,
                ADMIN,
                title=title,
                author="Frank Herbert",
                isbn=f"978-0-{next(isbns):06d}",
                price=Decimal(price),
                stock=stock,
            )

    return _make


@pytest.fixture(name="make_store")
def make_store_fixture(session_factory: sessionmaker[Session]) -> Callable[..., models.Store]:
    codes = itertools.count(1)

    def _make(is_active: bool = True) -> models.Store:
        with session_factory() as session:
            return locations.create_store(
                session,
                ADMIN,
                code=f"ST-{next(codes):03d}",
                name="Downtown",
                city="Springfield",
                state="IL",
                is_active=is_active,
            )

    return _make


@pytest.fixture(name="make_warehouse")
def make_warehouse_fixture(session_factory: sessionmaker[Session]) -> Callable[..., models.Warehouse]:
    codes = itertools.count(1)

    def _make(stock: dict[int, int] | None = None) -> models.Warehouse:
        with session_factory() as session:
            warehouse = locations.create_warehouse(session, ADMIN, code=f"WH-{next(codes):03d}", name="Central")
            for book_id, quantity in (stock or {}).items():
                ledger.set_warehouse_stock(session, ADMIN, warehouse.id, book_id, quantity)
            return warehouse

    return _make


@pytest.fixture(name="make_promotion")
def make_promotion_fixture(session_factory: sessionmaker[Session]) -> Callable[..., models.PromotionCode]:
    def _make(code: str = "SAVE10", **overrides: Any) -> models.PromotionCode:
        fields: dict[str, Any] = {
            "name": "Ten off",
            "discount_type": models.DiscountType.PERCENT,
            "discount_value": Decimal("10"),
            "min_subtotal": Decimal("20.00"),
            "max_discount_amount": Decimal("5.00"),
        }
        fields.update(overrides)
        with session_factory() as session:
            return promotions.create_promotion(session, ADMIN, code=code, **fields)

    return _make


@pytest.fixture(name="read")
def read_fixture(session_factory: sessionmaker[Session]) -> Callable[..., Any]:
    """Fetch a fresh copy of a row in a short-lived session."""

    def _read(model: Any, ident: Any) -> Any:
        with session_factory() as session:
            return session.get(model, ident)

    return _read
