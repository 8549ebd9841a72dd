"""Owner credentials issued at finalize: password rules, bcrypt hashes, JWT for the new tenant."""
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt

from provisioning.config import get_settings
from provisioning.errors import ValidationError

MIN_PASSWORD_LENGTH = 8
# bcrypt ignores everything past 72 bytes
_BCRYPT_MAX_BYTES = 72


def check_password_rules(password: str | None, intent_id: str | None = None) -> str:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.", intent_id=intent_id)
    return password


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8")[:_BCRYPT_MAX_BYTES], bcrypt.gensalt()).decode("utf-8")


def password_matches(plain: str | None, hashed: str | None) -> bool:
    if not plain or not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:_BCRYPT_MAX_BYTES], hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def issue_owner_token(user_id: int, email: str, company_id: int) -> str:
    """Access token for the company's first admin. ``sub`` is the user id as a string."""
    settings = get_settings()
    claims = {
        "sub": str(user_id),
        "email": email,
        "company_id": company_id,
        "role": "admin",
        "exp": datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_access_token_expire_minutes),
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def read_owner_token(token: str) -> tuple[dict | None, str | None]:
    """(claims, None) for a valid token, (None, reason) otherwise."""
    if not token or not isinstance(token, str):
        return None, "empty token"
    settings = get_settings()
    try:
        return jwt.decode(token.strip(), settings.jwt_secret_key, algorithms=[settings.jwt_algorithm]), None
    except jwt.PyJWTError as e:
        return None, str(e)
