from __future__ import annotations

import base64
import hashlib
import hmac
import secrets

PASSWORD_SCHEME = "pbkdf2_sha256"


def _encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def hash_password(password: str, *, iterations: int) -> str:
    """
    Hash a password for storage.

    Format: pbkdf2_sha256$<iterations>$<salt>$<digest> (urlsafe base64, unpadded).
    """
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return f"{PASSWORD_SCHEME}${iterations}${_encode(salt)}${_encode(digest)}"


def verify_password(password: str, stored: str) -> bool:
    parts = stored.split("$")
    if len(parts) != 4 or parts[0] != PASSWORD_SCHEME or not parts[1].isdigit():
        return False
    try:
        salt, expected = _decode(parts[2]), _decode(parts[3])
    except ValueError:
        return False
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt, int(parts[1]), dklen=len(expected)
    )
    return hmac.compare_digest(digest, expected)


def new_session_token() -> str:
    # 32 random bytes, hex encoded; this is the cookie value.
    return secrets.token_hex(32)


def session_id_for_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
