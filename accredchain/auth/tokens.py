"""Signed bearer tokens (JWT, HS256 by default).

Claims: ``sub`` (identity id), ``sid`` (session id), ``role``, ``iat``,
``exp``. The role claim is informational; authorization always re-reads
the identity.
"""

from datetime import datetime

import jwt

from accredchain import config
from accredchain.exceptions import Unauthorized
from accredchain.models import utcnow


def issue_token(identity_id: str, session_id: str, role: str, expires_at: datetime) -> str:
    payload = {
        "sub": identity_id,
        "sid": session_id,
        "role": role,
        "iat": int(utcnow().timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Validate signature and expiry and return the claims.

    Raises:
        Unauthorized: Expired, malformed, or wrongly signed token.
    """
    try:
        return jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            options={"require": ["sub", "sid", "exp"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise Unauthorized("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise Unauthorized("Invalid token") from e
