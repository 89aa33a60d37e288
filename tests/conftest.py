import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AVAILABILITY_CACHE_BACKEND", "memory")

import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from agenda.db.session import build_engine
from agenda.models import Client, Provider, Service
from agenda.db.base import Base
from agenda.services.provider_config import AvailabilityConfigCache

# Monday 2026-11-02, before opening hours in UTC.
NOW = datetime(2026, 11, 2, 6, 0, tzinfo=timezone.utc)

BUSINESS_WEEK = [
    {"weekday": weekday, "open": "09:00", "close": "17:00"} for weekday in range(1, 6)
]


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'agenda.db'}", lock_timeout_seconds=5)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def cache():
    return AvailabilityConfigCache(ttl_seconds=300)


@pytest.fixture
def make_provider(session_factory):
    def _make(**overrides):
        values = {
            "tenant_id": uuid.uuid4(),
            "full_name": "Ana Costa",
            "timezone": "UTC",
            "weekly_availability": BUSINESS_WEEK,
            "slot_interval_minutes": 30,
            "max_advance_days": 7,
            "auto_confirm": False,
        }
        values.update(overrides)
        with session_factory() as session, session.begin():
            provider = Provider(**values)
            session.add(provider)
        return provider

    return _make


@pytest.fixture
def make_service(session_factory):
    def _make(provider, **overrides):
        values = {
            "tenant_id": provider.tenant_id,
            "provider_id": provider.id,
            "name": "Corte de Cabelo",
            "duration_minutes": 30,
            "price_cents": 5000,
        }
        values.update(overrides)
        with session_factory() as session, session.begin():
            service = Service(**values)
            session.add(service)
        return service

    return _make


@pytest.fixture
def make_client(session_factory):
    def _make(tenant_id=None, **overrides):
        values = {
            "tenant_id": tenant_id or uuid.uuid4(),
            "full_name": "Maria Silva",
            "email": "maria.silva@example.com",
        }
        values.update(overrides)
        with session_factory() as session, session.begin():
            client = Client(**values)
            session.add(client)
        return client

    return _make
