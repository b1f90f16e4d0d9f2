"""Pytest configuration and fixtures for service layer tests."""

import os

os.environ.setdefault("COOP_TRACE_ENV", "testing")

import logging
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, scoped_session

from src.models.base import Base
from src.services.database import create_database_engine
from src.services.logging_utils import ROOT_LOGGER_NAME


@pytest.fixture(autouse=True)
def restore_service_logger():
    """Undo level and handler changes made by configure_logging()."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    level = root.level
    handlers = list(root.handlers)
    propagate = root.propagate

    yield root

    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
    root.setLevel(level)
    root.propagate = propagate


@pytest.fixture(scope="function")
def test_db():
    """Provide a clean test database for each test function.

    This fixture:
    1. Creates an in-memory SQLite database
    2. Creates all tables
    3. Provides the database to the test
    4. Drops all tables after the test completes
    """
    # Create in-memory SQLite database for testing
    engine = create_engine("sqlite:///:memory:", echo=False)

    # Create all tables
    Base.metadata.create_all(engine)

    # Create session factory
    session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    Session = scoped_session(session_factory)

    # Monkey-patch the global session factory for tests
    import src.services.database as db_module

    original_get_session = db_module.get_session_factory
    db_module.get_session_factory = lambda: Session

    # Provide database to test
    yield Session

    # Cleanup
    Session.remove()
    Base.metadata.drop_all(engine)
    engine.dispose()

    # Restore original session factory
    db_module.get_session_factory = original_get_session


@pytest.fixture(scope="function")
def file_db(tmp_path):
    """Provide a file-backed SQLite database shared by several threads.

    Each service call gets its own session and connection, so concurrent
    writers contend for the database lock the way they do in production.
    """
    engine = create_database_engine(f"sqlite:///{tmp_path / 'trace.db'}")
    Base.metadata.create_all(engine)
    session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    import src.services.database as db_module

    original_get_session = db_module.get_session_factory
    db_module.get_session_factory = lambda: session_factory

    yield session_factory

    Base.metadata.drop_all(engine)
    engine.dispose()
    db_module.get_session_factory = original_get_session


# =============================================================================
# Reference data
# =============================================================================


def _seed_reference_data(session):
    from src.models import Farmer, FarmerGroup, Product, Shelter

    group = FarmerGroup(name="Kelompok Tani Maju")
    farmers = [
        Farmer(name="Ahmad", village="Sukamaju", district="Kintamani"),
        Farmer(name="Siti", village="Batur", district="Kintamani"),
        Farmer(name="Wayan", village="Catur", district="Bangli"),
    ]
    raw = Product(name="Wet Cocoa Beans", sku="KB-WET", unit="kg")
    finished = Product(name="Fermented Cocoa Beans", sku="KF-DRY", unit="kg")
    shelter = Shelter(name="Shelter Kintamani", code="SH01")
    other_shelter = Shelter(name="Shelter Bangli", code="SH02")

    # Flush one at a time so farmer ids follow list order
    for farmer in farmers:
        session.add(farmer)
        session.flush()
    session.add(group)
    farmers[0].group = group
    farmers[2].group = group
    session.add_all([raw, finished, shelter, other_shelter])
    session.commit()

    return SimpleNamespace(
        farmer_ids=[f.id for f in farmers],
        raw_product_id=raw.id,
        product_id=finished.id,
        shelter_id=shelter.id,
        other_shelter_id=other_shelter.id,
    )


@pytest.fixture(scope="function")
def reference_data(test_db):
    """Seed products, shelters and farmers into the in-memory database."""
    return _seed_reference_data(test_db())


def _purchase_factory(session_factory, reference_data):
    from src.models import PurchaseTransaction

    counter = {"n": 0}

    def make_purchase(
        farmer_index=0,
        quantity="100",
        price_per_unit="10000",
        status="completed",
        product_id=None,
        shelter_id=None,
    ):
        counter["n"] += 1
        quantity = Decimal(str(quantity))
        price = Decimal(str(price_per_unit))
        session = session_factory()
        try:
            txn = PurchaseTransaction(
                transaction_code=f"PT-{counter['n']:04d}",
                farmer_id=reference_data.farmer_ids[farmer_index],
                product_id=product_id or reference_data.raw_product_id,
                shelter_id=shelter_id or reference_data.shelter_id,
                quantity=quantity,
                price_per_unit=price,
                total_amount=quantity * price,
                status=status,
            )
            session.add(txn)
            session.commit()
            return txn.id
        finally:
            session.close()

    return make_purchase


@pytest.fixture(scope="function")
def make_purchase(test_db, reference_data):
    """Factory creating a completed purchase transaction; returns its id."""
    return _purchase_factory(test_db, reference_data)


def _closed_batch_factory(make_purchase, reference_data):
    from src.services import batch_service
    from src.services.dto import BatchClosure

    def make_closed_batch(output_weight, input_cost, farmer_indexes=(0,), quality=None):
        """Close a batch whose unit cost is input_cost / output_weight."""
        input_cost = Decimal(str(input_cost))
        share = input_cost / len(farmer_indexes)
        txn_ids = [
            make_purchase(farmer_index=i, quantity="1000", price_per_unit=share / 1000)
            for i in farmer_indexes
        ]
        batch = batch_service.open_batch(
            reference_data.raw_product_id, reference_data.shelter_id, txn_ids
        )
        batch_service.advance_batch(batch.id)
        return batch_service.advance_batch(
            batch.id,
            BatchClosure(
                output_weight=Decimal(str(output_weight)),
                product_id=reference_data.product_id,
                quality=quality,
            ),
        )

    return make_closed_batch


@pytest.fixture(scope="function")
def make_closed_batch(make_purchase, reference_data):
    """Factory producing closed batches with a chosen output weight and cost."""
    return _closed_batch_factory(make_purchase, reference_data)


@pytest.fixture(scope="function")
def file_reference_data(file_db):
    return _seed_reference_data(file_db())


@pytest.fixture(scope="function")
def file_make_closed_batch(file_db, file_reference_data):
    return _closed_batch_factory(
        _purchase_factory(file_db, file_reference_data), file_reference_data
    )
