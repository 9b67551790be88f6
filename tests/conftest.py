import random
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from app import create_app
from tests.fakes import FakeSupabase

JWT_SECRET = "test-jwt-secret"

# Wednesday
NOW = datetime(2024, 6, 12, 10, 0, tzinfo=timezone.utc)

USERS = [
    {"id": "user-admin", "email": "admin@clinic.test", "role": "admin", "is_active": True},
    {"id": "user-provider", "email": "dr.lee@clinic.test", "phone": "+15550100", "role": "provider", "is_active": True},
    {"id": "user-reviewer", "email": "review@clinic.test", "role": "reviewer", "is_active": True},
    {"id": "user-inactive", "email": "gone@clinic.test", "role": "staff", "is_active": False},
]


class FixedClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def make_token(user_id, secret=JWT_SECRET, expires_in=3600):
    payload = {
        "sub": user_id,
        "aud": "authenticated",
        "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(user_id):
    return {"Authorization": f"Bearer {make_token(user_id)}"}


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def db():
    return FakeSupabase({"users": USERS})


@pytest.fixture
def app(db):
    app = create_app("testing", supabase_client=db)
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()
