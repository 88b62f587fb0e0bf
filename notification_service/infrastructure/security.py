"""Bearer token helpers.

Tokens are issued by the authentication service; this service only needs to
verify them and read the recipient identity from the ``sub`` claim.
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

ALGORITHM = "HS256"


def create_access_token(
    subject: str, secret_key: str, expires_delta: timedelta = timedelta(minutes=60)
) -> str:
    expire = datetime.now(tz=timezone.utc) + expires_delta
    return jwt.encode({"sub": subject, "exp": expire}, secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str, secret_key: str) -> dict:
    try:
        return jwt.decode(token, secret_key, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise ValueError("Could not validate credentials") from exc


def recipient_from_token(token: str, secret_key: str) -> str:
    """Return the recipient id carried by ``token`` or raise ``ValueError``."""

    payload = decode_access_token(token, secret_key)
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject.strip():
        raise ValueError("Token does not identify a recipient")
    return subject
