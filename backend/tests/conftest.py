"""
Pytest fixtures for Campus Cart backend tests.

Provides the test app on in-memory SQLite, a per-test table wipe, seed
items, and a notifier that records what it was asked to send.
"""

import pytest

from campus_cart import create_app
from campus_cart.extensions import db
from campus_cart.models import Item
from campus_cart.services.notification_service import EXTENSION_KEY, Notifier


SELLER_ID = 1
BUYER_ID = 2
OTHER_BUYER_ID = 3
OUTSIDER_ID = 99


class RecordingNotifier(Notifier):
    """Keeps sent notifications in memory; can be told to fail."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def reset(self):
        self.sent = []
        self.fail = False

    def notify(self, user_id, kind, title, body, context_data=None):
        if self.fail:
            raise RuntimeError("notifier unavailable")
        self.sent.append({"user_id": user_id, "kind": kind, "data": dict(context_data or {})})

    def kinds_for(self, user_id):
        return [n["kind"] for n in self.sent if n["user_id"] == user_id]


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(
        {
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
            'SQLALCHEMY_TRACK_MODIFICATIONS': False,
            'RETRY_BACKOFF_BASE': 0,
        },
        notifier=RecordingNotifier(),
    )

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
def notifier(app):
    """The app's recording notifier, emptied for each test."""
    recorder = app.extensions[EXTENSION_KEY]
    recorder.reset()
    yield recorder
    recorder.reset()


@pytest.fixture(scope='function')
def make_item(db_session):
    """Factory: persist an item and return its id."""
    def _make(seller_id=SELLER_ID, **overrides):
        fields = {
            "title": "Desk lamp",
            "price_cents": 5000,
            "condition": "good",
            "is_negotiable": True,
        }
        fields.update(overrides)
        item = Item(seller_id=seller_id, **fields)
        db_session.add(item)
        db_session.commit()
        return item.id

    return _make


@pytest.fixture(scope='function')
def item_id(make_item):
    """Active, negotiable item owned by SELLER_ID."""
    return make_item()


def auth_headers(user_id, role=None):
    headers = {"X-User-Id": str(user_id)}
    if role:
        headers["X-User-Role"] = role
    return headers
