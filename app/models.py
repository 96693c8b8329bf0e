"""
Data models for the Drive connector.

"""
from sqlalchemy import Column, String, DateTime

from database import Base


class DriveConnection(Base):
    """
    One Google Drive connection per local user.

    - user_id: identity provider subject (string), primary key, so a second
      authorization for the same user replaces the row instead of adding one.
    - encrypted_access_token / encrypted_refresh_token: Fernet-encrypted;
      decrypted only in services.credential_service. The refresh token is an
      encrypted empty string when Google did not issue one.
    - token_expires_at: UTC time the access token stops being usable.
    - email: Google account email, display only, may be null.
    - connected_at: when the user (re)authorized.
    """
    __tablename__ = "drive_connections"

    user_id = Column(String(255), primary_key=True, index=True)

    # OAuth tokens encrypted at rest (crypto.encrypt_token / crypto.decrypt_token)
    encrypted_access_token = Column(String(2048), nullable=False)
    encrypted_refresh_token = Column(String(2048), nullable=False)
    token_expires_at = Column(DateTime(timezone=True), nullable=False)

    email = Column(String(255), nullable=True)
    connected_at = Column(DateTime(timezone=True), nullable=False)


class OAuthState(Base):
    """Server-side record of an in-flight authorization; deleted when the callback presents it."""
    __tablename__ = "oauth_states"

    state = Column(String(255), primary_key=True)
    user_id = Column(String(255), nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
