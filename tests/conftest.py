import os

# Point the application engine at an in-memory database before anything imports it
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RUN_MAINTENANCE_JOBS", "false")

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from gatekeeper.core.database import Base
from gatekeeper.models.credential import RFIDKey
from gatekeeper.models.lock import Lock
from gatekeeper.models.permission import UserPermission
from gatekeeper.models.tenancy import Address, City
from gatekeeper.models.user import User

NOW = datetime(2026, 5, 1, 12, 0, 0)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def make_city(db, name):
    city = City(name=name)
    address = Address(label=f"{name} HQ", city=city)
    db.add_all([city, address])
    db.commit()
    return city, address


def make_user(db, username, role="USER", city=None, **fields):
    user = User(
        email=f"{username}@example.com",
        username=username,
        first_name=username.title(),
        password_hash=fields.pop("password_hash", "hash"),
        role=role,
        city_id=city.id if city else None,
        **fields,
    )
    db.add(user)
    db.commit()
    return user


def make_lock(db, address, name="Front door", **fields):
    lock = Lock(name=name, device_id=f"dev-{name.lower().replace(' ', '-')}", address_id=address.id, **fields)
    db.add(lock)
    db.commit()
    return lock


@pytest.fixture
def world(db):
    """One city with an active, online lock and a holder allowed through it since yesterday."""
    city, address = make_city(db, "Springfield")
    lock = make_lock(db, address)
    holder = make_user(db, "homer", city=city)
    key = RFIDKey(card_id="CARD-1", user_id=holder.id, is_active=True)
    grant = UserPermission(
        user_id=holder.id,
        lock_id=lock.id,
        can_access=True,
        valid_from=NOW - timedelta(days=1),
    )
    db.add_all([key, grant])
    db.commit()
    return SimpleNamespace(city=city, address=address, lock=lock, holder=holder, key=key, grant=grant)


class RecordingPublisher:
    def __init__(self):
        self.events = []

    def emit_to_tenant(self, city_id, event, payload):
        self.events.append((city_id, event, payload))


class FailingPublisher:
    def emit_to_tenant(self, city_id, event, payload):
        raise RuntimeError("broker down")


@pytest.fixture
def publisher():
    return RecordingPublisher()
