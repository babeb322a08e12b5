import os
import tempfile
from datetime import date, time

import pytest

# The app module builds its DatabaseManager on import; keep that one out of the way.
os.environ['DATABASE_URL'] = f"sqlite:///{tempfile.mkdtemp()}/import.db"
os.environ['STATUS_POLLER_ENABLED'] = 'false'
os.environ['SEED_DEMO_DATA'] = 'false'

from database_manager import DatabaseManager  # noqa: E402

SHOW_DATE = date(2025, 1, 10)

SMALL_HALL = {"sections": [{"name": "North", "price": 100, "rows": [{"seats": 3}]}]}

BIG_HALL = {
    "sections": [
        {"name": "North", "price": 100, "rows": 2, "seatsPerRow": 10},
        {"name": "South", "price": 120, "rows": [{"seats": 10}, {"seats": 10}]},
    ]
}


@pytest.fixture
def db(tmp_path):
    manager = DatabaseManager(f"sqlite:///{tmp_path / 'boxoffice.db'}", lock_timeout=5)
    yield manager
    manager.dispose()


@pytest.fixture
def small_layout(db):
    return db.create_layout("Test Hall", SMALL_HALL)


@pytest.fixture
def big_layout(db):
    return db.create_layout("Big Hall", BIG_HALL)


@pytest.fixture
def show(db, small_layout):
    """Show S on 2025-01-10 whose layout has seats NA1, NA2, NA3."""
    return db.create_show("Kalari Night", SHOW_DATE, time(19, 0), 250,
                          layout_id=small_layout["id"])


@pytest.fixture
def big_show(db, big_layout):
    return db.create_show("Kalari Matinee", SHOW_DATE, time(15, 0), 200,
                          layout_id=big_layout["id"])


@pytest.fixture
def client(db, monkeypatch):
    import app as app_module

    monkeypatch.setattr(app_module, 'db', db)
    app_module.app.config['TESTING'] = True
    return app_module.app.test_client()
