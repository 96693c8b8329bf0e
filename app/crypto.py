"""
Encryption of Drive OAuth tokens at rest using Fernet (symmetric, from cryptography).

Tokens are encrypted before being written to drive_connections and decrypted
only at the storage boundary in services.credential_service. Generate a key with
Fernet.generate_key() and set it as TOKEN_ENCRYPTION_KEY.
"""
import os

from cryptography.fernet import Fernet, InvalidToken

FERNET_KEY = os.environ.get("TOKEN_ENCRYPTION_KEY")
if not FERNET_KEY:
    raise RuntimeError("TOKEN_ENCRYPTION_KEY environment variable is required")
fernet = Fernet(FERNET_KEY.encode() if isinstance(FERNET_KEY, str) else FERNET_KEY)


class TokenDecryptionError(Exception):
    """Stored ciphertext cannot be read with the configured key (key rotated or data corrupt)."""


def encrypt_token(value: str) -> str:
    """Encrypt an access or refresh token for storage. Empty strings are encrypted too."""
    return fernet.encrypt(value.encode()).decode()


def decrypt_token(value: str | None) -> str:
    """Decrypt a stored token; a missing column value reads as an empty token."""
    if not value:
        return ""
    try:
        return fernet.decrypt(value.encode()).decode()
    except InvalidToken as e:
        raise TokenDecryptionError("Stored token could not be decrypted") from e
