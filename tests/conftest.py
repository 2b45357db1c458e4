"""Test configuration and fixtures for BerryRecord."""

from dotenv import load_dotenv
import pytest
import os
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from berryrecord.core.metadata import registry
from berryrecord.database import Database, set_active_database
from tests.models import Base
from tests.spies import FakeDatabase

# Try to load environment variables from .env file
load_dotenv()


@pytest.fixture(scope="function")
def engine():
    """Create a test database engine for each test function."""
    test_db_url = os.getenv('BERRYRECORD_TEST_DATABASE_URL')

    if test_db_url:
        engine = create_engine(test_db_url, future=True, pool_pre_ping=True)
        # Ensure a clean slate before tests: drop then create all tables
        Base.metadata.drop_all(engine)
        Base.metadata.create_all(engine)
        is_external_db = True
    else:
        # In-memory SQLite shared by every connection of this engine
        engine = create_engine(
            "sqlite://",
            future=True,
            poolclass=StaticPool,
            connect_args={'check_same_thread': False},
        )
        Base.metadata.create_all(engine)
        is_external_db = False

    yield engine

    if is_external_db:
        Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(engine):
    """Database bound to the test engine and installed as the active database."""
    database = Database(engine)
    registry.clear()
    set_active_database(database)
    yield database
    database.close()
    set_active_database(None)
    registry.clear()


@pytest.fixture(scope="function")
def fake_db():
    """Database stand-in with a static schema and spy collaborators; no SQL is executed."""
    database = FakeDatabase()
    registry.clear()
    set_active_database(database)
    yield database
    set_active_database(None)
    registry.clear()


# Import fixtures from fixtures module
from tests.fixtures import (  # noqa: E402
    populated_db,
)
