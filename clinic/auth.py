"""
Auth module: password hashing and JWT session tokens.

Tokens are HS256 JWTs whose subject is the identity id. Password hashes are
PBKDF2-SHA256 strings of the form ``algo$iterations$salt$hash`` so the
iteration count can be raised without invalidating stored accounts.
"""

import hashlib
import hmac
import re
import secrets
import time
from typing import Optional

from jose import JWTError, jwt

from clinic.config import get_settings

ALGORITHM = "HS256"

_HASH_ALGO = "pbkdf2_sha256"
_ITERATIONS = 210000

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_MOBILE_RE = re.compile(r"^\+?\d{7,15}$")


def hash_password(raw_password: str, salt: Optional[bytes] = None) -> str:
    salt = salt or secrets.token_bytes(16)
    dk = hashlib.pbkdf2_hmac("sha256", raw_password.encode("utf-8"), salt, _ITERATIONS)
    return f"{_HASH_ALGO}${_ITERATIONS}${salt.hex()}${dk.hex()}"


def verify_password(raw_password: str, stored: str) -> bool:
    try:
        algo, iters, salt_hex, hash_hex = stored.split("$", 3)
        if algo != _HASH_ALGO:
            return False
        iterations = int(iters)
        salt = bytes.fromhex(salt_hex)
        expected = bytes.fromhex(hash_hex)
    except ValueError:
        return False
    actual = hashlib.pbkdf2_hmac("sha256", raw_password.encode("utf-8"), salt, iterations)
    return hmac.compare_digest(actual, expected)


def auth_method_for(identifier: str) -> Optional[str]:
    """Return "email" or "mobile" for a well-formed identifier, else None."""
    identifier = identifier.strip()
    if _EMAIL_RE.match(identifier):
        return "email"
    if _MOBILE_RE.match(identifier):
        return "mobile"
    return None


def create_token(identity_id: str, auth_method: str, settings=None) -> tuple[str, int]:
    """Create a signed JWT for the identity. Returns the token and its expiry."""
    settings = settings or get_settings()
    expires_at = int(time.time()) + settings.token_expire_seconds
    payload = {"sub": identity_id, "amr": auth_method, "exp": expires_at}
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=ALGORITHM), expires_at


def decode_token(token: str, settings=None) -> Optional[dict]:
    """Decode and validate a JWT. Returns None if invalid/expired."""
    settings = settings or get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None
