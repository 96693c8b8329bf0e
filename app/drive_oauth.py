"""
Drive OAuth router: connect and disconnect a user's Google Drive.

- auth-url returns the Google consent URL and a single-use state; the client
  keeps the state and redirects the user.
- callback takes the code (plus the state) from the client after Google
  redirects back, exchanges it and stores encrypted tokens.
- disconnect revokes the token with Google (best-effort) and deletes it.

All endpoints require the identity provider's bearer token.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from database import get_db
from security import get_current_user_id
from services import oauth_service

router = APIRouter(prefix="/drive-oauth", tags=["drive-oauth"])


class CallbackBody(BaseModel):
    """Authorization code returned by Google and the redirect URI used to obtain it."""
    code: str | None = Field(None, max_length=2048)
    redirect_uri: str | None = Field(None, max_length=2048)
    state: str | None = Field(None, max_length=255)


@router.get("/auth-url")
def auth_url(
    redirect_uri: str | None = None,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Start a connection: returns {url, state}."""
    return oauth_service.begin_authorization(db, user_id, redirect_uri)


@router.post("/callback")
def callback(
    body: CallbackBody,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Finish a connection: returns {success, email}."""
    return oauth_service.complete_authorization(
        db,
        user_id,
        body.code,
        body.redirect_uri,
        body.state,
    )


@router.post("/disconnect")
def disconnect(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Remove the connection; succeeds even when there is none."""
    return oauth_service.disconnect(db, user_id)
