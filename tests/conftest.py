"""
Shared fixtures. Required env vars are set before any app module is imported,
since config and crypto read them at import time.
"""
import json
import os
import tempfile
from datetime import datetime, timedelta, UTC

from cryptography.fernet import Fernet

_DB_DIR = tempfile.mkdtemp(prefix="drive-connector-tests-")

os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("IDENTITY_JWT_SECRET", "test-identity-secret")
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["SKIP_DB_INIT"] = "true"
os.environ["ENV"] = "test"

import pytest
import requests
from jose import jwt

from database import Base, SessionLocal, engine, init_db
from models import DriveConnection
from services.credential_service import upsert_credential

USER_ID = "user-123"


@pytest.fixture(autouse=True)
def _tables():
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from main import app

    return TestClient(app)


def identity_token(user_id: str = USER_ID, **claims) -> str:
    payload = {
        "sub": user_id,
        "exp": datetime.now(UTC) + timedelta(hours=1),
        **claims,
    }
    return jwt.encode(payload, os.environ["IDENTITY_JWT_SECRET"], algorithm="HS256")


def auth_headers(user_id: str = USER_ID) -> dict:
    return {"Authorization": f"Bearer {identity_token(user_id)}"}


def make_response(status_code: int = 200, body=None) -> requests.Response:
    """A real requests.Response carrying a JSON body (or nothing)."""
    resp = requests.Response()
    resp.status_code = status_code
    resp.encoding = "utf-8"
    resp.url = "https://example.test/"
    if body is None:
        resp._content = b""
    else:
        resp._content = json.dumps(body).encode()
        resp.headers["Content-Type"] = "application/json"
    return resp


def store_credential(
    db,
    user_id: str = USER_ID,
    *,
    expires_in: int = 3600,
    access_token: str = "cached-access",
    refresh_token: str = "stored-refresh",
    email: str | None = "student@example.com",
):
    return upsert_credential(
        db,
        user_id,
        access_token=access_token,
        refresh_token=refresh_token,
        token_expires_at=datetime.now(UTC) + timedelta(seconds=expires_in),
        email=email,
    )


def store_undecryptable_credential(db, user_id: str = USER_ID, *, email: str | None = "student@example.com"):
    """A connection row encrypted under a key the app no longer holds (rotated key)."""
    stale = Fernet(Fernet.generate_key())
    now = datetime.now(UTC)
    db.add(DriveConnection(
        user_id=user_id,
        encrypted_access_token=stale.encrypt(b"old-access").decode(),
        encrypted_refresh_token=stale.encrypt(b"old-refresh").decode(),
        token_expires_at=now + timedelta(hours=1),
        email=email,
        connected_at=now,
    ))
    db.commit()
