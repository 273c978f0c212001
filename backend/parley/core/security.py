from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from parley.config import settings

# Tokens are issued by the auth service; this module only needs to read them.
# create_access_token exists for local tooling and tests.
ACCESS_TOKEN_EXPIRE_MINUTES = 30


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return payload
    except JWTError:
        return None


def user_id_from_token(token: str) -> int | None:
    """Return the ``user_id`` claim of a valid token, or None."""
    payload = decode_access_token(token)
    if payload is None:
        return None
    try:
        return int(payload.get("user_id"))
    except (TypeError, ValueError):
        return None
