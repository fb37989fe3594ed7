"""
Pytest configuration and fixtures for testing
"""
import os
import tempfile

# The app reads its configuration at import time.
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-quimita")
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(tempfile.mkdtemp(prefix="quimita-tests-"), "app.db")
os.environ.pop("MERCADOPAGO_WEBHOOK_SECRET", None)
os.environ.pop("RESEND_API_KEY", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from quimita import models
from quimita.auth import create_access_token, get_password_hash
from quimita.billing_gateway import GatewayAgreement, get_billing_gateway
from quimita.database import Base, get_db
from quimita.errors import GatewayError
from quimita.main import app
from quimita.subscriptions import SubscriptionRecord, apply_record, record_from_user

TEST_PASSWORD = "senha-segura-123"
TEST_PASSWORD_HASH = get_password_hash(TEST_PASSWORD)


class FakeGateway:
    """
    Scripted stand-in for MercadoPagoGateway.

    ``statuses`` is what the provider reports per agreement id, ``fail_on``
    lists operations that raise GatewayError, and ``on_create`` / ``on_get``
    run while the corresponding call is in flight.
    """

    def __init__(self):
        self.requires_tax_id = True
        self.statuses: dict[str, str] = {}
        self.calls: list[tuple] = []
        self.fail_on: set[str] = set()
        self.on_create = None
        self.on_get = None
        self._counter = 0

    def build_agreement_payload(self, user):
        return {"payer_email": user.email, "external_reference": str(user.id)}

    def create(self, payload):
        self.calls.append(("create", payload))
        if self.on_create:
            self.on_create(payload)
        if "create" in self.fail_on:
            raise GatewayError("Unable to process Mercado Pago request right now.")
        self._counter += 1
        agreement_id = f"preapproval-{self._counter}"
        self.statuses[agreement_id] = "pending"
        return GatewayAgreement(
            id=agreement_id,
            status="pending",
            init_point=f"https://www.mercadopago.com.br/subscriptions/checkout?preapproval_id={agreement_id}",
        )

    def get(self, agreement_id):
        self.calls.append(("get", agreement_id))
        if self.on_get:
            self.on_get(agreement_id)
        if "get" in self.fail_on:
            raise GatewayError("Failed to contact Mercado Pago: timeout")
        return GatewayAgreement(id=agreement_id, status=self.statuses.get(agreement_id, "pending"))

    def update(self, agreement_id, status):
        self.calls.append(("update", agreement_id, status))
        if "update" in self.fail_on:
            raise GatewayError("Unable to process Mercado Pago request right now.")
        self.statuses[agreement_id] = status
        return GatewayAgreement(id=agreement_id, status=status)

    def count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)


@pytest.fixture
def session_factory(tmp_path):
    """Sessions bound to a fresh SQLite file, so separate sessions see each other's commits."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
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
def gateway():
    return FakeGateway()


@pytest.fixture
def client(session_factory, gateway):
    """FastAPI TestClient with the test database and the fake gateway injected"""

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_billing_gateway] = lambda: gateway

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make_user(email="aluno@example.com", cpf="12345678909", **subscription):
        user = models.User(
            email=email,
            hashed_password=TEST_PASSWORD_HASH,
            full_name="Aluno Teste",
            cpf=cpf,
        )
        apply_record(user, SubscriptionRecord(**subscription))
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


def auth_headers(user: models.User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(data={'sub': user.email})}"}


def stored_record(db, user_id: int) -> SubscriptionRecord:
    """Subscription record as currently persisted, bypassing the session cache."""
    db.expire_all()
    return record_from_user(db.get(models.User, user_id))
