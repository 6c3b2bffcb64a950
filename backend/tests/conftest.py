from __future__ import annotations

import itertools
from typing import Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from confirmsure.database import Base
from confirmsure.models import Factory, UserProfile
from confirmsure.security import Principal


@pytest.fixture
def db() -> Iterator[Session]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


def make_factory(db: Session, name: str, **overrides) -> Factory:
    values = {
        "name": name,
        "location": "Shenzhen",
        "contact_email": f"{name.lower().replace(' ', '-')}@example.com",
        "country": "China",
    }
    values.update(overrides)
    factory = Factory(**values)
    db.add(factory)
    db.commit()
    db.refresh(factory)
    return factory


def make_user(db: Session, email: str, role: str, factory: Factory | None = None, **overrides) -> UserProfile:
    values = {
        "email": email,
        "password_hash": "not-a-real-hash",
        "full_name": "Test User",
        "role": role,
        "factory_id": factory.id if factory is not None else None,
        "is_active": True,
    }
    values.update(overrides)
    user = UserProfile(**values)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def factory_one(db: Session) -> Factory:
    return make_factory(db, "Factory One")


@pytest.fixture
def factory_two(db: Session) -> Factory:
    return make_factory(db, "Factory Two")


@pytest.fixture
def admin(db: Session) -> Principal:
    return Principal.from_user(make_user(db, "admin@example.com", "admin"))


@pytest.fixture
def manager_one(db: Session, factory_one: Factory) -> Principal:
    return Principal.from_user(make_user(db, "manager1@example.com", "factory_manager", factory_one))


@pytest.fixture
def operator_one(db: Session, factory_one: Factory) -> Principal:
    return Principal.from_user(make_user(db, "operator1@example.com", "factory_operator", factory_one))


@pytest.fixture
def operator_two(db: Session, factory_two: Factory) -> Principal:
    return Principal.from_user(make_user(db, "operator2@example.com", "factory_operator", factory_two))


@pytest.fixture
def sequential_codes():
    """Deterministic QR candidates: CS-100001, CS-100002, ..."""

    def build(start: int = 100001):
        counter = itertools.count(start)
        return lambda: f"CS-{next(counter)}"

    return build
