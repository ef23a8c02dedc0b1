from datetime import datetime, timedelta, timezone

import jwt
import pytest

from libratech.access import ROLE_ADMIN, ROLE_BORROWER, AccessGate, Identity
from libratech.exceptions import Unauthenticated, Unauthorized

SECRET = "test-secret-long-enough-for-hmac-sha256"


@pytest.fixture
def gate():
    return AccessGate(secret=SECRET, algorithm="HS256", expires_minutes=5, admin_emails=["Admin@Libratech.com"])


def test_issue_and_authenticate(gate):
    token = gate.issue("Alice@Example.com")

    identity = gate.authenticate(token)

    assert identity == Identity(email="alice@example.com", role=ROLE_BORROWER)
    assert not identity.is_admin


def test_admin_role_comes_from_roster(gate):
    identity = gate.authenticate(gate.issue("admin@libratech.com"))
    assert identity.role == ROLE_ADMIN
    assert gate.require_admin(identity) is identity


def test_role_is_resolved_at_verification_time(gate):
    token = gate.issue("admin@libratech.com")
    gate.admin_emails = set()
    assert gate.authenticate(token).role == ROLE_BORROWER


def test_issue_rejects_invalid_email(gate):
    with pytest.raises(ValueError):
        gate.issue("not-an-email")


def test_missing_token(gate):
    with pytest.raises(Unauthenticated) as excinfo:
        gate.authenticate(None)
    assert excinfo.value.reason == "missing"


def test_expired_token(gate):
    past = datetime.now(timezone.utc) - timedelta(hours=2)
    token = jwt.encode({"email": "alice@example.com", "iat": past, "exp": past + timedelta(minutes=5)}, SECRET)

    with pytest.raises(Unauthenticated) as excinfo:
        gate.authenticate(token)
    assert excinfo.value.reason == "invalid"


def test_token_signed_with_another_secret(gate):
    other = AccessGate(secret="someone-else-with-a-different-signing-key", admin_emails=[])
    with pytest.raises(Unauthenticated):
        gate.authenticate(other.issue("alice@example.com"))


def test_garbage_token(gate):
    with pytest.raises(Unauthenticated):
        gate.authenticate("not.a.jwt")


def test_token_without_email(gate):
    token = jwt.encode({"sub": "alice"}, SECRET, algorithm="HS256")
    with pytest.raises(Unauthenticated):
        gate.authenticate(token)


def test_require_admin_refuses_borrowers(gate):
    with pytest.raises(Unauthorized):
        gate.require_admin(Identity(email="alice@example.com"))
