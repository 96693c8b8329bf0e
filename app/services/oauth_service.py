"""
OAuth service: Google authorization-code flow for Drive connections.

- begin_authorization builds the consent URL and records a single-use state.
- complete_authorization checks the state, exchanges the code, looks up the
  account email (best-effort) and upserts the connection.
- disconnect revokes the access token (best-effort) and deletes the connection.

Token endpoint failures are not retried; the user restarts the flow.
"""
import logging
import secrets
from datetime import datetime, timedelta, UTC
from urllib.parse import urlencode

import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import (
    GOOGLE_AUTH_URL,
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_REQUEST_TIMEOUT,
    GOOGLE_REVOKE_URL,
    GOOGLE_SCOPES,
    GOOGLE_TOKEN_URL,
    GOOGLE_USERINFO_URL,
    OAUTH_STATE_MAX_AGE,
    VERIFY_OAUTH_STATE,
)
from crypto import TokenDecryptionError
from errors import ExternalAuthFailure, InvalidArgument, StorageFailure
from models import OAuthState
from services.credential_service import delete_credential, get_credential, upsert_credential

logger = logging.getLogger(__name__)


def build_consent_url(redirect_uri: str, state: str) -> str:
    """
    Google consent URL for read-only Drive plus email. access_type=offline and
    prompt=consent make Google issue a refresh token even on repeat consent.
    """
    params = {
        "client_id": GOOGLE_CLIENT_ID,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": " ".join(GOOGLE_SCOPES),
        "access_type": "offline",
        "prompt": "consent",
        "state": state,
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


# --- State tokens ---


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def issue_state(db: Session, user_id: str) -> str:
    """Create and store a fresh state for this user; the user's expired states are purged."""
    now = datetime.now(UTC)
    state = secrets.token_urlsafe(32)
    try:
        db.query(OAuthState).filter(
            OAuthState.user_id == user_id,
            OAuthState.expires_at < now,
        ).delete(synchronize_session="fetch")
        db.add(OAuthState(
            state=state,
            user_id=user_id,
            expires_at=now + timedelta(seconds=OAUTH_STATE_MAX_AGE),
        ))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to store OAuth state for user %s", user_id)
        raise StorageFailure("Storage operation failed")
    return state


def consume_state(db: Session, user_id: str, state: str) -> bool:
    """
    Delete the stored state and report whether it was valid for this user.
    The entry is consumed whether or not it matches.
    """
    try:
        entry = db.get(OAuthState, state)
        if entry is None:
            return False
        valid = (
            secrets.compare_digest(entry.user_id, user_id)
            and datetime.now(UTC) < _aware(entry.expires_at)
        )
        db.delete(entry)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to consume OAuth state for user %s", user_id)
        raise StorageFailure("Storage operation failed")
    return valid


# --- Google calls ---


def exchange_code(code: str, redirect_uri: str) -> dict:
    """Run the authorization_code grant. Raises ExternalAuthFailure if Google rejects it."""
    try:
        resp = requests.post(
            GOOGLE_TOKEN_URL,
            data={
                "client_id": GOOGLE_CLIENT_ID,
                "client_secret": GOOGLE_CLIENT_SECRET,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=GOOGLE_REQUEST_TIMEOUT,
        )
    except requests.RequestException as e:
        logger.warning("Token exchange request failed: %s", e)
        raise ExternalAuthFailure("Failed to exchange code for tokens")

    if not resp.ok:
        logger.warning("Token exchange failed (%s): %s", resp.status_code, resp.text[:500])
        raise ExternalAuthFailure("Failed to exchange code for tokens")
    try:
        token_data = resp.json()
    except ValueError:
        raise ExternalAuthFailure("Token exchange returned an unreadable response")
    if "error" in token_data:
        logger.warning("Token exchange failed: %s", token_data["error"])
        raise ExternalAuthFailure(
            f"Token exchange failed: {token_data.get('error_description', token_data['error'])}"
        )
    if not token_data.get("access_token"):
        raise ExternalAuthFailure("Token exchange did not return access_token")
    return token_data


def fetch_account_email(access_token: str) -> str | None:
    """Google account email for display. Best-effort: any failure is logged and yields None."""
    try:
        resp = requests.get(
            GOOGLE_USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=GOOGLE_REQUEST_TIMEOUT,
        )
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning("Userinfo lookup failed; continuing without email: %s", e)
        return None
    if not isinstance(data, dict):
        logger.warning("Userinfo returned a %s, not an object; continuing without email", type(data).__name__)
        return None
    return data.get("email")


def revoke_token(token: str) -> None:
    """Ask Google to revoke a token. Fire-and-forget: failures are only logged."""
    try:
        resp = requests.post(
            GOOGLE_REVOKE_URL,
            params={"token": token},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=GOOGLE_REQUEST_TIMEOUT,
        )
    except requests.RequestException as e:
        logger.warning("Token revocation request failed: %s", e)
        return
    if not resp.ok:
        logger.warning("Token revocation returned %s", resp.status_code)


# --- Operations ---


def begin_authorization(db: Session, user_id: str, redirect_uri: str | None) -> dict:
    """Return {"url", "state"}. The caller keeps the state and sends it back with the code."""
    redirect_uri = (redirect_uri or "").strip()
    if not redirect_uri:
        raise InvalidArgument("redirect_uri is required")
    state = issue_state(db, user_id)
    return {"url": build_consent_url(redirect_uri, state), "state": state}


def complete_authorization(
    db: Session,
    user_id: str,
    code: str | None,
    redirect_uri: str | None,
    state: str | None = None,
) -> dict:
    """
    Exchange the authorization code and store the connection.
    redirect_uri must be exactly the one used for the consent URL; Google
    compares them. Returns {"success": True, "email": ...}.
    """
    # Spend the state before any other check
    if state:
        if not consume_state(db, user_id, state):
            raise InvalidArgument("Invalid or expired state; please connect again")
    elif VERIFY_OAUTH_STATE:
        raise InvalidArgument("state is required")
    if not code or not redirect_uri:
        raise InvalidArgument("code and redirect_uri are required")

    token_data = exchange_code(code, redirect_uri)
    access_token = token_data["access_token"]
    refresh_token = token_data.get("refresh_token") or ""
    if not refresh_token:
        logger.warning("Google issued no refresh token for user %s; re-consent will be needed on expiry", user_id)
    expires_in = token_data.get("expires_in", 3600)
    expires_at = datetime.now(UTC) + timedelta(seconds=expires_in)

    email = fetch_account_email(access_token)

    upsert_credential(
        db,
        user_id,
        access_token=access_token,
        refresh_token=refresh_token,
        token_expires_at=expires_at,
        email=email,
    )
    logger.info("Drive connected for user %s", user_id)
    return {"success": True, "email": email}


def disconnect(db: Session, user_id: str) -> dict:
    """
    Revoke (best-effort) and delete the user's connection. Succeeds when none
    exists. A row whose tokens no longer decrypt is deleted without revoking.
    """
    try:
        credential = get_credential(db, user_id)
    except TokenDecryptionError:
        credential = None
    if credential is not None and credential.access_token:
        revoke_token(credential.access_token)
    if delete_credential(db, user_id):
        logger.info("Drive disconnected for user %s", user_id)
    return {"success": True}
