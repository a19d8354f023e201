"""
Pytest fixtures for the event inventory backend tests.

Provides test database setup, catalogue/event fixtures, and test client.
"""

import pytest
from eventstock import create_app
from eventstock.extensions import db
from eventstock.models import Category, Event, Item


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def engine(app):
    """The app's checkout engine."""
    return app.extensions["checkout_engine"]


@pytest.fixture(scope='function')
def durable_category(db_session):
    category = Category(name="Shelter", is_consumable=False)
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def consumable_category(db_session):
    category = Category(name="Consumables", is_consumable=True)
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def tent(db_session, durable_category):
    """20 tents on hand, version 0."""
    item = Item(name="Tent", category_id=durable_category.id, quantity=20, version=0)
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def candles(db_session, consumable_category):
    """100 candles on hand, version 0."""
    item = Item(name="Candles", category_id=consumable_category.id, quantity=100, version=0)
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def event(db_session):
    event = Event(name="Diwali 2026")
    db_session.add(event)
    db_session.commit()
    return event


@pytest.fixture(scope='function')
def operator_headers():
    return {"X-User-Id": "alice", "X-User-Role": "operator"}


@pytest.fixture(scope='function')
def admin_headers():
    return {"X-User-Id": "root", "X-User-Role": "admin"}
