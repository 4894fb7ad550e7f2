"""Shared fixtures: an in-memory SQLite ledger per test."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from uuid import uuid4, UUID

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.session import build_engine
from app.db.dependencies import get_db
from app.domain.accounting.coa_service import apply_template, get_account_by_code
from app.main import app
from app.models import Base


@pytest.fixture(scope="session")
def engine():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine) -> Session:
    """Provide a database session on a fresh schema."""
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    db = TestingSession()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def organization_id() -> UUID:
    """Generate a test organization ID."""
    return uuid4()


@pytest.fixture
def chart_of_accounts(db: Session, organization_id: UUID):
    """
    Apply the general template.

    Cash 1100 and Bank 1110 are cash accounts, 1200 is receivable, 2100 is
    payable; 4100 and 5100 are the only income and expense leaves.
    """
    apply_template(db, organization_id, "general")
    return {
        code: get_account_by_code(db, organization_id, code)
        for code in ("1100", "1110", "1200", "2100", "3100", "4100", "5100")
    }


@pytest.fixture
def client(db: Session, organization_id: UUID):
    """API client sharing the test session and scoped to the test organization."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app, headers={"X-Organization-Id": str(organization_id)})
    finally:
        app.dependency_overrides.pop(get_db, None)
