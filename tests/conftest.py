import itertools

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from retail_stock.database import get_db, init_db
from retail_stock.main import app
from retail_stock.models.movement import MovementType
from retail_stock.models.product import Product
from retail_stock.schemas.batch import BatchCreate
from retail_stock.services import batch_registry, batch_service, movement_service
from retail_stock.services.movement_service import PlanLine


@pytest.fixture
def engine(tmp_path):
    # A file database so that separate sessions see each other's commits
    engine = create_engine(f"sqlite:///{tmp_path / 'stock.db'}", connect_args={"check_same_thread": False})
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_product(db):
    counter = itertools.count(1)

    def _make(name="Fresh Milk 1L", code=None):
        product = Product(code=code or f"P{next(counter):04d}", name=name)
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


@pytest.fixture
def make_batch(db):
    """Create a batch; initial stock is received on hand, then moved to the shelf."""
    counter = itertools.count(1)

    def _make(product, expiry_date=None, on_shelf=0, on_hand=0, code=None, **kwargs):
        batch = batch_service.create_batch(
            db,
            BatchCreate(
                product_id=product.id,
                batch_code=code or f"lot-{next(counter):04d}",
                expiry_date=expiry_date,
                quantity=on_hand + on_shelf,
                **kwargs,
            ),
        )
        if on_shelf:
            result = movement_service.apply(
                db, MovementType.TRANSFER, [PlanLine(batch_id=batch.id, quantity=on_shelf)], reason="Shelf stock"
            )
            result.raise_for_failure()
            db.commit()
            db.refresh(batch)
        return batch

    return _make


@pytest.fixture
def balance(db):
    def _balance(batch_id):
        detail = batch_registry.get_inventory_detail(db, batch_id)
        return detail.quantity_on_hand, detail.quantity_on_shelf

    return _balance
