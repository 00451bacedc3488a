from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from orderflow.database import Base
from orderflow.models import Organization


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'orderflow.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def org(db):
    organization = Organization(id=uuid4(), name="Acme Apparel", code=f"ACME-{uuid4().hex[:6]}")
    db.add(organization)
    db.commit()
    return organization


@pytest.fixture
def other_org(db):
    organization = Organization(id=uuid4(), name="Other Co", code=f"OTHER-{uuid4().hex[:6]}")
    db.add(organization)
    db.commit()
    return organization
