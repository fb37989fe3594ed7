"""
Tests for registration, login and the password reset flow
"""
from datetime import datetime, timedelta, timezone

import pytest

from quimita import models
from quimita.auth import validate_password_strength, verify_password
from quimita.password_reset import ResetToken, hash_token, issue_reset_token
from quimita.routers import auth as auth_routes
from quimita.subscriptions import STATUS_INACTIVE, record_from_user

from conftest import TEST_PASSWORD, auth_headers


@pytest.fixture
def sent_emails(monkeypatch):
    """Capture reset emails instead of calling Resend."""
    sent = []

    def fake_send(email, reset_token, base_url):
        sent.append({"email": email, "token": reset_token, "base_url": base_url})
        return True

    monkeypatch.setattr(auth_routes, "send_password_reset_email", fake_send)
    return sent


def test_root_and_health(client):
    assert client.get("/").json() == {"status": "API online"}
    assert client.get("/api/health").json() == {"status": "ok"}


class TestRegister:
    def test_register_returns_token_and_inactive_subscription(self, client, db):
        response = client.post(
            "/auth/register",
            json={"nome": "Maria", "email": "Maria@Example.com", "senha": "segredo123", "cpf": "12345678909"},
        )

        assert response.status_code == 200
        token = response.json()["token"]

        profile = client.get("/user/perfil", headers={"Authorization": f"Bearer {token}"})
        assert profile.status_code == 200
        body = profile.json()
        assert body["email"] == "maria@example.com"
        assert body["assinatura"] is False
        assert body["assinatura_status"] == STATUS_INACTIVE
        assert body["assinatura_em_andamento"] is False

        user = db.query(models.User).filter(models.User.email == "maria@example.com").one()
        assert record_from_user(user).status == STATUS_INACTIVE

    def test_duplicate_email(self, client, make_user):
        make_user(email="aluno@example.com")

        response = client.post(
            "/auth/register",
            json={"nome": "Outro", "email": "ALUNO@example.com", "senha": "segredo123"},
        )

        assert response.status_code == 409

    def test_weak_password(self, client):
        response = client.post(
            "/auth/register",
            json={"nome": "Maria", "email": "maria@example.com", "senha": "123"},
        )

        assert response.status_code == 400

    def test_invalid_email(self, client):
        response = client.post(
            "/auth/register",
            json={"nome": "Maria", "email": "not-an-email", "senha": "segredo123"},
        )

        assert response.status_code == 422


class TestLogin:
    def test_login(self, client, make_user):
        make_user()

        response = client.post("/auth/login", json={"email": "aluno@example.com", "senha": TEST_PASSWORD})

        assert response.status_code == 200
        assert response.json()["token"]

    def test_wrong_password(self, client, make_user):
        make_user()

        response = client.post("/auth/login", json={"email": "aluno@example.com", "senha": "errada-123"})

        assert response.status_code == 401

    def test_unknown_user(self, client):
        response = client.post("/auth/login", json={"email": "ninguem@example.com", "senha": TEST_PASSWORD})

        assert response.status_code == 404

    def test_inactive_account_cannot_use_token(self, client, db, make_user):
        user = make_user()
        user.is_active = False
        db.commit()

        response = client.get("/user/perfil", headers=auth_headers(user))

        assert response.status_code == 400


class TestPasswordReset:
    def test_forgot_and_reset(self, client, db, make_user, sent_emails):
        user = make_user()

        response = client.post("/auth/forgot-password", json={"email": "aluno@example.com"})

        assert response.status_code == 200
        assert len(sent_emails) == 1
        raw_token = sent_emails[0]["token"]
        db.expire_all()
        assert db.get(models.User, user.id).password_reset_token == hash_token(raw_token)

        response = client.post("/auth/reset-password", json={"token": raw_token, "senha": "nova-senha-456"})

        assert response.status_code == 200
        db.expire_all()
        refreshed = db.get(models.User, user.id)
        assert verify_password("nova-senha-456", refreshed.hashed_password)
        assert refreshed.password_reset_token is None
        assert refreshed.password_reset_token_expires is None

        login = client.post("/auth/login", json={"email": "aluno@example.com", "senha": "nova-senha-456"})
        assert login.status_code == 200

    def test_forgot_password_for_unknown_email_looks_the_same(self, client, make_user, sent_emails):
        make_user()

        known = client.post("/auth/forgot-password", json={"email": "aluno@example.com"})
        unknown = client.post("/auth/forgot-password", json={"email": "ninguem@example.com"})

        assert unknown.status_code == 200
        assert unknown.json() == known.json()
        assert len(sent_emails) == 1

    def test_reset_token_cannot_be_reused(self, client, make_user, sent_emails):
        make_user()
        client.post("/auth/forgot-password", json={"email": "aluno@example.com"})
        raw_token = sent_emails[0]["token"]

        first = client.post("/auth/reset-password", json={"token": raw_token, "senha": "nova-senha-456"})
        second = client.post("/auth/reset-password", json={"token": raw_token, "senha": "outra-senha-789"})

        assert first.status_code == 200
        assert second.status_code == 400

    def test_expired_token_is_rejected_and_cleared(self, client, db, make_user):
        user = make_user()
        raw_token = issue_reset_token(user, ttl=timedelta(minutes=-1))
        db.commit()

        response = client.post("/auth/reset-password", json={"token": raw_token, "senha": "nova-senha-456"})

        assert response.status_code == 400
        db.expire_all()
        assert db.get(models.User, user.id).password_reset_token is None

    def test_reset_rejects_weak_password_without_consuming_token(self, client, db, make_user):
        user = make_user()
        raw_token = issue_reset_token(user)
        db.commit()

        response = client.post("/auth/reset-password", json={"token": raw_token, "senha": "123"})

        assert response.status_code == 400
        db.expire_all()
        assert db.get(models.User, user.id).password_reset_token == hash_token(raw_token)

    def test_email_failure_is_reported(self, client, make_user, monkeypatch):
        make_user()
        monkeypatch.setattr(auth_routes, "send_password_reset_email", lambda *args: False)

        response = client.post("/auth/forgot-password", json={"email": "aluno@example.com"})

        assert response.status_code == 500


class TestResetToken:
    def test_matches_only_its_own_token(self):
        token = ResetToken(token_hash=hash_token("abc"), expires_at=datetime.utcnow() + timedelta(hours=1))

        assert token.matches("abc")
        assert not token.matches("abd")

    def test_expiry(self):
        now = datetime(2026, 5, 1, 12, 0, 0)
        token = ResetToken(token_hash=hash_token("abc"), expires_at=now)

        assert token.is_expired(now)
        assert not token.is_expired(now - timedelta(seconds=1))

    def test_expiry_with_zoned_timestamp_is_compared_in_utc(self):
        # 09:30 at UTC-3 is 12:30 UTC.
        expires_at = datetime(2026, 5, 1, 9, 30, 0, tzinfo=timezone(timedelta(hours=-3)))
        token = ResetToken(token_hash=hash_token("abc"), expires_at=expires_at)

        assert not token.is_expired(datetime(2026, 5, 1, 12, 0, 0))
        assert token.is_expired(datetime(2026, 5, 1, 12, 30, 0))

    def test_hash_token_is_prefixed_and_stable(self):
        assert hash_token("abc").startswith("sha256$")
        assert hash_token("abc") == hash_token("abc")
        assert hash_token("") == ""


def test_password_strength_messages():
    assert validate_password_strength("") == "Senha é obrigatória."
    assert validate_password_strength("123") is not None
    assert validate_password_strength("segredo123") is None
    assert validate_password_strength("x" * 300) is not None
