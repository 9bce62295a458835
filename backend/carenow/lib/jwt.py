"""Bearer tokens identifying the client or partner behind a request.

A token carries the caller id in `sub` and the caller role in `user_type`.
Booking routes only ever act on behalf of one of the two roles below.
"""
from datetime import datetime, timedelta, timezone
from typing import NamedTuple, Optional

import jwt
from jwt import InvalidTokenError

from carenow.lib.settings import settings

CLIENT = "CLIENT"
PARTNER = "PARTNER"
USER_TYPES = (CLIENT, PARTNER)


class TokenSubject(NamedTuple):
    user_id: str
    user_type: str


def create_access_token(
    user_id: str,
    user_type: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Issue a signed token for a client or partner.

    Raises:
        ValueError: If user_type is not CLIENT or PARTNER
    """
    if user_type not in USER_TYPES:
        raise ValueError(f"Unknown user type: {user_type}")
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.jwt_expiration_minutes)

    issued_at = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "user_type": user_type,
        "iat": issued_at,
        "exp": issued_at + expires_delta,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict:
    """Decode a token, checking signature, expiry and the required claims.

    Raises:
        InvalidTokenError: On any failed check
    """
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        options={"require": ["sub", "exp", "user_type"]},
    )


def get_user_from_token(token: str) -> TokenSubject:
    """Caller id and role from a verified token.

    Raises:
        InvalidTokenError: If the token fails verification or names an unknown role
    """
    payload = verify_token(token)
    subject = TokenSubject(payload["sub"], payload["user_type"])
    if not subject.user_id or subject.user_type not in USER_TYPES:
        raise InvalidTokenError(f"Token does not identify a client or partner: {subject.user_type}")
    return subject
