import os

# settings are read once at import time; tests never need a real database
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import uuid
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# FORCE model registration
import consentflow.models  # noqa

from consentflow.core.timeutil import now_utc
from consentflow.db.base import Base
from consentflow.models.user import User
from consentflow.schemas.contracts import ContractCreate, ShareTarget
from consentflow.services.contract_service import ContractService
from consentflow.services.notification_service import RecordingNotifier


@pytest.fixture(scope="function")
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    try:
        yield eng
    finally:
        Base.metadata.drop_all(eng)
        eng.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture(scope="function")
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_user(db):
    def _make(handle="alice", email=None):
        u = User(
            id=uuid.uuid4(),
            username=f"@{handle}",
            email=email or f"{handle}@example.com",
            display_name=handle.title(),
            password_hash="not-a-real-hash",
        )
        db.add(u)
        db.commit()
        return u

    return _make


def contract_payload(**overrides):
    data = dict(
        encounter_type="Dating",
        parties=["@alice", "@bob"],
        intimate_acts={"kissing": "yes", "touching": "no"},
        start_time=now_utc(),
        duration_minutes=120,
        method="signature",
        artifacts={"signature1": "blob-1"},
        state_code="CA",
    )
    data.update(overrides)
    return ContractCreate(**data)


@pytest.fixture
def payload():
    return contract_payload


@pytest.fixture
def shared_contract(db, make_user, notifier):
    """Collaborative contract owned by alice and shared with bob."""
    alice = make_user("alice")
    bob = make_user("bob")
    svc = ContractService(notifier=notifier)
    contract = svc.create_contract(db, owner_id=alice.id, payload=contract_payload(is_collaborative=True))
    svc.share_contract(db, contract_id=contract.id, actor_id=alice.id, targets=[ShareTarget(user_id=bob.id)])
    return contract, alice, bob

