"""
Credential service: storage boundary for Drive connections and the refresher.

The ORM row never leaves this module; callers get a ConnectionCredential with
plaintext tokens and UTC datetimes. Every read goes to the database, there is
no in-process token cache. Refreshes take no lock: two concurrent refreshes
both write a valid token and the later write wins.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, UTC

import requests
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import (
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_REQUEST_TIMEOUT,
    GOOGLE_TOKEN_URL,
    TOKEN_REFRESH_BUFFER,
)
from crypto import TokenDecryptionError, decrypt_token, encrypt_token
from errors import ExternalApiFailure, StorageFailure
from models import DriveConnection

logger = logging.getLogger(__name__)

_UPSERT_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": postgresql_insert,
}


@dataclass(frozen=True)
class ConnectionCredential:
    user_id: str
    access_token: str
    refresh_token: str
    token_expires_at: datetime
    email: str | None
    connected_at: datetime

    def remaining(self, now: datetime) -> timedelta:
        return self.token_expires_at - now


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone=True columns
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _to_credential(row: DriveConnection) -> ConnectionCredential:
    return ConnectionCredential(
        user_id=row.user_id,
        access_token=decrypt_token(row.encrypted_access_token),
        refresh_token=decrypt_token(row.encrypted_refresh_token),
        token_expires_at=_as_utc(row.token_expires_at),
        email=row.email,
        connected_at=_as_utc(row.connected_at),
    )


def _storage_error(db: Session, action: str, user_id: str) -> StorageFailure:
    db.rollback()
    logger.exception("Failed to %s drive connection for user %s", action, user_id)
    return StorageFailure("Storage operation failed")


# --- Storage boundary ---


def get_credential(db: Session, user_id: str) -> ConnectionCredential | None:
    """
    Load the user's connection, or None when the user never connected (or was
    disconnected). Raises TokenDecryptionError when the stored tokens cannot be
    read with the current key; callers decide whether to drop the row.
    """
    try:
        row = db.get(DriveConnection, user_id)
    except SQLAlchemyError:
        raise _storage_error(db, "load", user_id)
    if row is None:
        return None
    try:
        return _to_credential(row)
    except TokenDecryptionError:
        logger.error("Drive connection for user %s cannot be decrypted with the current key", user_id)
        raise


def get_connection_info(db: Session, user_id: str) -> dict | None:
    """Display fields of the user's connection (email, connected_at); tokens are not decrypted."""
    try:
        row = db.get(DriveConnection, user_id)
    except SQLAlchemyError:
        raise _storage_error(db, "load", user_id)
    if row is None:
        return None
    return {"email": row.email, "connected_at": _as_utc(row.connected_at)}


def upsert_credential(
    db: Session,
    user_id: str,
    *,
    access_token: str,
    refresh_token: str,
    token_expires_at: datetime,
    email: str | None,
) -> ConnectionCredential:
    """
    Create or replace the user's single connection row; connected_at is reset.
    On SQLite and Postgres this is one INSERT ... ON CONFLICT (user_id) DO UPDATE,
    so two callbacks racing for the same user cannot hit the primary key.
    """
    now = datetime.now(UTC)
    values = {
        "encrypted_access_token": encrypt_token(access_token),
        "encrypted_refresh_token": encrypt_token(refresh_token or ""),
        "token_expires_at": token_expires_at,
        "email": email,
        "connected_at": now,
    }
    dialect = db.get_bind().dialect.name
    try:
        if dialect in _UPSERT_INSERTS:
            stmt = _UPSERT_INSERTS[dialect](DriveConnection).values(user_id=user_id, **values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[DriveConnection.user_id],
                set_=values,
            )
            # Loaded rows are refreshed by the commit below (expire_on_commit)
            db.execute(stmt)
        else:
            row = db.get(DriveConnection, user_id)
            if row is None:
                row = DriveConnection(user_id=user_id)
                db.add(row)
            for key, value in values.items():
                setattr(row, key, value)
        db.commit()
    except SQLAlchemyError:
        raise _storage_error(db, "store", user_id)
    return ConnectionCredential(
        user_id=user_id,
        access_token=access_token,
        refresh_token=refresh_token or "",
        token_expires_at=_as_utc(token_expires_at),
        email=email,
        connected_at=now,
    )


def update_access_token(
    db: Session,
    user_id: str,
    *,
    access_token: str,
    token_expires_at: datetime,
    refresh_token: str | None = None,
) -> bool:
    """
    Rotate the access token in place. The refresh token is only replaced when
    Google returned a new one. Returns False if the row disappeared meanwhile
    (e.g. the user disconnected while a refresh was in flight).
    """
    values = {
        DriveConnection.encrypted_access_token: encrypt_token(access_token),
        DriveConnection.token_expires_at: token_expires_at,
    }
    if refresh_token:
        values[DriveConnection.encrypted_refresh_token] = encrypt_token(refresh_token)
    try:
        updated = (
            db.query(DriveConnection)
            .filter(DriveConnection.user_id == user_id)
            .update(values)
        )
        db.commit()
    except SQLAlchemyError:
        raise _storage_error(db, "update", user_id)
    return bool(updated)


def delete_credential(db: Session, user_id: str) -> bool:
    """Delete the user's connection. Returns True if a row was removed."""
    try:
        row = db.get(DriveConnection, user_id)
        if row is None:
            return False
        db.delete(row)
        db.commit()
    except SQLAlchemyError:
        raise _storage_error(db, "delete", user_id)
    return True


# --- Refresher ---


def request_token_refresh(refresh_token: str) -> dict | None:
    """
    Run the refresh_token grant. Returns the token payload, or None if Google
    rejected the refresh token (revoked, expired). Raises ExternalApiFailure
    when Google could not be reached at all.
    """
    try:
        resp = requests.post(
            GOOGLE_TOKEN_URL,
            data={
                "client_id": GOOGLE_CLIENT_ID,
                "client_secret": GOOGLE_CLIENT_SECRET,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=GOOGLE_REQUEST_TIMEOUT,
        )
    except requests.RequestException as e:
        logger.warning("Token refresh request failed: %s", e)
        raise ExternalApiFailure("Could not reach Google to refresh the Drive token")

    if not resp.ok:
        logger.warning("Token refresh rejected (%s): %s", resp.status_code, resp.text[:500])
        return None
    try:
        data = resp.json()
    except ValueError:
        logger.warning("Token refresh returned a non-JSON body")
        return None
    if "error" in data or not data.get("access_token"):
        logger.warning("Token refresh rejected: %s", data.get("error", "no access_token"))
        return None
    return data


def get_valid_access_token(db: Session, user_id: str) -> str | None:
    """
    Return a usable Drive access token for this user, or None if not connected.

    The cached token is returned without any network call while it has more
    than TOKEN_REFRESH_BUFFER left. Otherwise one refresh grant is issued; on
    success the new token and expiry are stored. When Google rejects the
    refresh token the connection is deleted: it can never work again and
    would otherwise be refreshed (and fail) on every request. The same applies
    to a row whose tokens no longer decrypt (rotated key).
    """
    try:
        credential = get_credential(db, user_id)
    except TokenDecryptionError:
        delete_credential(db, user_id)
        return None
    if credential is None:
        return None

    now = datetime.now(UTC)
    if credential.remaining(now) > TOKEN_REFRESH_BUFFER:
        return credential.access_token

    if not credential.refresh_token:
        logger.info("Drive token expired for user %s and no refresh token stored; dropping connection", user_id)
        delete_credential(db, user_id)
        return None

    data = request_token_refresh(credential.refresh_token)
    if data is None:
        logger.info("Dropping drive connection for user %s after refresh rejection", user_id)
        delete_credential(db, user_id)
        return None

    access_token = data["access_token"]
    expires_in = data.get("expires_in", 3600)
    updated = update_access_token(
        db,
        user_id,
        access_token=access_token,
        token_expires_at=now + timedelta(seconds=expires_in),
        refresh_token=data.get("refresh_token"),
    )
    if not updated:
        # Disconnected while refreshing; do not resurrect the connection
        return None
    logger.info("Refreshed drive token for user %s", user_id)
    return access_token
