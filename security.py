from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from passlib.context import CryptContext

import config

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ROLE_LEVELS = {"admin": 1, "super_admin": 2}


class AuthNotConfigured(RuntimeError):
    """JWT_SECRET is not set, so tokens can be neither issued nor checked."""


def _secret() -> str:
    if not config.JWT_SECRET:
        raise AuthNotConfigured("JWT_SECRET is not set")
    return config.JWT_SECRET


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def create_token(user_id: str, email: str, role: str, expires_in: Optional[timedelta] = None) -> str:
    expires_at = datetime.now(timezone.utc) + (expires_in or timedelta(hours=config.JWT_EXPIRES_HOURS))
    payload = {"sub": user_id, "email": email, "role": role, "exp": expires_at}
    return jwt.encode(payload, _secret(), algorithm=config.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Return the token claims, or None when the signature or expiry check fails."""
    secret = _secret()
    try:
        return jwt.decode(token, secret, algorithms=[config.JWT_ALGORITHM])
    except jwt.PyJWTError:
        return None


def has_role(role: str, required: str) -> bool:
    return ROLE_LEVELS.get(role, 0) >= ROLE_LEVELS.get(required, 0)
