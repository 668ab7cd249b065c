"""Tests for password hashing, bearer-token auth and the instructor seed."""
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import AsyncClient, ASGITransport
from jose import JWTError, jwt
from starlette.requests import Request

from roster.core.limiter import instructor_key
from roster.core.security import create_access_token, decode_token, hash_password, verify_password
from roster.core.seed import seed_instructor
from roster.db.session import get_session, get_sync_session
from roster.main import app


# ─── Fixtures ─────────────────────────────────────────────────────────────────

class FakeAccount:
    """Minimal account stub returned by DB mock."""

    def __init__(self, role: str = "instructor", is_active: bool = True):
        self.id = uuid.UUID("3f0b6c8e-5d0a-4b8e-9a51-2f1c7f3f9e10")
        self.email = "instructor@example.com"
        self.name = "Instructor"
        self.role = role
        self.is_active = is_active


def make_session_returning(account):
    mock_result = MagicMock()
    mock_result.scalar_one_or_none.return_value = account

    mock_session = AsyncMock()
    mock_session.execute = AsyncMock(return_value=mock_result)

    async def _override():
        yield mock_session
    return _override


async def _validate(token: str | None):
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        return await client.post(
            "/api/v1/students/validate-csv",
            json={"csvData": "name,email,student_code\nAnn,ann@school.edu,S1\n"},
            headers=headers,
        )


@pytest.fixture
def sync_db(sqlite_session):
    def _override():
        yield sqlite_session

    app.dependency_overrides[get_sync_session] = _override
    yield sqlite_session
    app.dependency_overrides.clear()


# ─── Passwords & tokens ───────────────────────────────────────────────────────

def test_hash_and_verify_password():
    hashed = hash_password("student123")
    assert hashed != "student123"
    assert verify_password("student123", hashed)
    assert not verify_password("wrong-pass", hashed)


def test_access_token_round_trip():
    token = create_access_token(subject="abc", role="instructor")
    payload = decode_token(token)
    assert payload["sub"] == "abc"
    assert payload["role"] == "instructor"
    assert payload["type"] == "access"


def test_token_signed_with_other_secret_is_rejected():
    token = jwt.encode({"sub": "abc", "role": "instructor", "type": "access"}, "other-secret", algorithm="HS256")
    with pytest.raises(JWTError):
        decode_token(token)


# ─── get_current_user ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_valid_token_for_instructor_is_accepted(sync_db):
    account = FakeAccount()
    app.dependency_overrides[get_session] = make_session_returning(account)
    response = await _validate(create_access_token(subject=str(account.id), role="instructor"))
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_invalid_token_returns_401(sync_db):
    app.dependency_overrides[get_session] = make_session_returning(FakeAccount())
    response = await _validate("not-a-jwt")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_token_with_non_uuid_subject_returns_401(sync_db):
    app.dependency_overrides[get_session] = make_session_returning(FakeAccount())
    response = await _validate(create_access_token(subject="not-a-uuid", role="instructor"))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_inactive_account_returns_401(sync_db):
    account = FakeAccount(is_active=False)
    app.dependency_overrides[get_session] = make_session_returning(account)
    response = await _validate(create_access_token(subject=str(account.id), role="instructor"))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_unknown_account_returns_401(sync_db):
    app.dependency_overrides[get_session] = make_session_returning(None)
    response = await _validate(create_access_token(subject=str(uuid.uuid4()), role="instructor"))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_student_account_is_forbidden(sync_db):
    account = FakeAccount(role="student")
    app.dependency_overrides[get_session] = make_session_returning(account)
    response = await _validate(create_access_token(subject=str(account.id), role="student"))
    assert response.status_code == 403
    assert response.json()["detail"] == "Role 'student' is not permitted for this action."


# ─── Seed ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_seed_instructor_creates_account():
    mock_result = MagicMock()
    mock_result.scalars.return_value.first.return_value = None
    mock_session = AsyncMock()
    mock_session.execute = AsyncMock(return_value=mock_result)
    mock_session.add = MagicMock()

    account = await seed_instructor(mock_session, "teach@school.edu", "changeme123")

    mock_session.add.assert_called_once_with(account)
    mock_session.commit.assert_awaited_once()
    assert account.role == "instructor"
    assert verify_password("changeme123", account.password_hash)


@pytest.mark.asyncio
async def test_seed_instructor_is_idempotent():
    existing = FakeAccount()
    mock_result = MagicMock()
    mock_result.scalars.return_value.first.return_value = existing
    mock_session = AsyncMock()
    mock_session.execute = AsyncMock(return_value=mock_result)
    mock_session.add = MagicMock()

    account = await seed_instructor(mock_session, "instructor@example.com", "changeme123")

    assert account is existing
    mock_session.add.assert_not_called()
    mock_session.commit.assert_not_awaited()


# ─── Rate limit key ───────────────────────────────────────────────────────────

def _request(headers: dict[str, str]) -> Request:
    return Request({
        "type": "http",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": ("10.0.0.7", 51234),
    })


def test_rate_limit_key_uses_token_subject():
    token = create_access_token(subject="3f0b6c8e-5d0a-4b8e-9a51-2f1c7f3f9e10", role="instructor")
    key = instructor_key(_request({"Authorization": f"Bearer {token}"}))
    assert key == "account:3f0b6c8e-5d0a-4b8e-9a51-2f1c7f3f9e10"


@pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer garbage"}, {"Authorization": "Basic abc"}])
def test_rate_limit_key_falls_back_to_client_address(headers):
    assert instructor_key(_request(headers)) == "10.0.0.7"
