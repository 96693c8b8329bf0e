"""
Verification of the identity tokens sent by the UI client.

Users sign in with the managed identity provider; every request to this
service carries that provider's JWT as "Authorization: Bearer <token>".
Algorithm: HS256 with IDENTITY_JWT_SECRET; the "sub" claim is the user id
that keys drive_connections.
"""
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError

from config import IDENTITY_JWT_ALGORITHM, IDENTITY_JWT_AUDIENCE, IDENTITY_JWT_SECRET
from errors import Unauthenticated

# auto_error=False so a missing header surfaces as our 401, not FastAPI's default
_bearer_scheme = HTTPBearer(auto_error=False)


def decode_identity_token(token: str) -> dict:
    """Decode and verify an identity JWT; raises JWTError if invalid or expired."""
    options = {"verify_aud": IDENTITY_JWT_AUDIENCE is not None}
    return jwt.decode(
        token,
        IDENTITY_JWT_SECRET,
        algorithms=[IDENTITY_JWT_ALGORITHM],
        audience=IDENTITY_JWT_AUDIENCE,
        options=options,
    )


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> str:
    """
    FastAPI dependency: read the bearer token, verify it, return the user id.
    Raises Unauthenticated if the header is missing, the token is invalid or
    expired, or it carries no subject.
    """
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("Not authenticated")
    try:
        payload = decode_identity_token(credentials.credentials)
    except JWTError:
        raise Unauthenticated("Invalid user token")
    user_id = payload.get("sub")
    if not user_id:
        raise Unauthenticated("Invalid user token")
    return user_id
