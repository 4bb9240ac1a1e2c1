from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60


def create_identity_token(
    identity_id: int,
    secret_key: str,
    expires_delta: timedelta | None = None,
    now_utc: datetime | None = None,
) -> str:
    """
    Sign a bearer token asserting an external identity.

    The chat gateway mints these for the identity it has already
    authenticated; the API trusts nothing else about the caller.

    Args:
        identity_id: External identity the token speaks for
        secret_key: Shared HMAC secret
        expires_delta: Optional custom lifetime
        now_utc: Current UTC time (for testing/determinism). Defaults to datetime.now(UTC).
    """
    current_time = now_utc if now_utc is not None else datetime.now(UTC)
    lifetime = expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    claims: dict[str, Any] = {
        "sub": str(identity_id),
        "iat": current_time,
        "exp": current_time + lifetime,
    }
    encoded: str = jwt.encode(claims, secret_key, algorithm=ALGORITHM)
    return encoded


def decode_identity_token(token: str, secret_key: str) -> int | None:
    """Identity asserted by a valid, unexpired token; None otherwise."""
    try:
        payload = jwt.decode(token, secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject.isdigit():
        return None
    return int(subject)
