from datetime import datetime

import pytest
from werkzeug.security import generate_password_hash

from app import create_app
from auth import Identity
from config import TestConfig
from models import User, db
from store import get_store

PASSWORD = "secret123"


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
    app.extensions["auth_unsubscribe"]()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def store(app):
    return app.extensions["ticket_store"]


@pytest.fixture
def gateway(app):
    return app.extensions["payment_gateway"]


@pytest.fixture
def layout(app):
    return app.extensions["stadium_layout"]


def make_user(app, email, admin=False):
    with app.app_context():
        user = User(email=email, password_hash=generate_password_hash(PASSWORD), is_admin=admin)
        db.session.add(user)
        db.session.commit()
        return Identity.from_user(user)


def make_match(app, **overrides):
    data = {
        "home_team": "Gor Mahia",
        "away_team": "AFC Leopards",
        "match_date": datetime(2026, 11, 1, 15, 0),
        "venue": "Nyayo National Stadium",
        "ticket_price": 1000,
        "total_seats": 20,
    }
    data.update(overrides)
    with app.app_context():
        match, error = get_store().create_match(data)
        assert error is None
        return match


def login(client, email):
    return client.post("/login", data={"email": email, "password": PASSWORD})


@pytest.fixture
def fan(app):
    return make_user(app, "fan@example.com")


@pytest.fixture
def admin_user(app):
    return make_user(app, "ops@example.com", admin=True)


@pytest.fixture
def match(app):
    return make_match(app)
