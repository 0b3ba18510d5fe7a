"""
Pytest configuration and fixtures
"""
import os

# must be set before app.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("TIMEZONE", "Asia/Manila")

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  (fills Base.metadata)
from app.api.deps import get_db
from app.db.base import Base
from app.main import app as fastapi_app
from app.models import MedicalDocumentation, Patient, Service, ServiceCategory
from app.services.audit_logger import Actor


@pytest.fixture(scope="function")
def engine():
    """
    In-memory SQLite shared across sessions. pysqlite's implicit BEGIN is
    replaced by an explicit one so SAVEPOINTs behave like on MySQL.
    """
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    @event.listens_for(eng, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cur = dbapi_connection.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()

    @event.listens_for(eng, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine,
                        autocommit=False,
                        autoflush=False,
                        future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory):

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    fastapi_app.dependency_overrides[get_db] = _get_db
    with TestClient(fastapi_app) as c:
        yield c
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def actor() -> Actor:
    return Actor(name="Maria Santos", role="encoder")


@pytest.fixture
def admin() -> Actor:
    return Actor(name="Dr. Reyes", role="admin")


@pytest.fixture
def auth_headers() -> dict:
    return {"X-Actor-Name": "Maria Santos", "X-Actor-Role": "encoder"}


@pytest.fixture
def catalog(db):
    """
    A: 300 (hematology), B: 500 (clinical chemistry), odd: 333.333,
    plus one deactivated and one unavailable service.
    """
    rows = {
        "a":
        Service(name="Complete Blood Count",
                category=ServiceCategory.HEMATOLOGY.value,
                price=Decimal("300")),
        "b":
        Service(name="Liver Function Test",
                category=ServiceCategory.CLINICAL_CHEMISTRY.value,
                price=Decimal("500")),
        "odd":
        Service(name="Peripheral Smear",
                category=ServiceCategory.TO_BE_READ_BY_PATHOLOGIST.value,
                price=Decimal("333.333")),
        "inactive":
        Service(name="Retired Panel",
                category=ServiceCategory.OTHERS.value,
                price=Decimal("100"),
                is_activated=False),
        "unavailable":
        Service(name="Flu Vaccine",
                category=ServiceCategory.VACCINE.value,
                price=Decimal("800"),
                is_available=False),
    }
    db.add_all(rows.values())
    db.flush()
    # ids are read before commit; a refresh after it holds the shared
    # connection in a transaction
    ids = {k: v.id for k, v in rows.items()}
    db.commit()
    return ids


@pytest.fixture
def make_documentation(db):
    """Factory: finalized documentation for a fresh patient."""

    def _make(*,
              status: str = "finalized",
              senior_id: str = None,
              archived_days_ago: int = None) -> int:
        archived_at = (datetime.utcnow() - timedelta(days=archived_days_ago)
                       if archived_days_ago is not None else None)
        patient = Patient(first_name="Juan",
                          last_name="Dela Cruz",
                          csd_id_or_pwd_id=senior_id)
        db.add(patient)
        db.flush()
        doc = MedicalDocumentation(patient_id=patient.id,
                                   status=status,
                                   is_archived=archived_at is not None,
                                   archived_at=archived_at)
        db.add(doc)
        db.flush()
        doc_id = doc.id
        db.commit()
        return doc_id

    return _make
