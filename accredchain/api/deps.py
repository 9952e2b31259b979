"""Request-level dependencies shared by the routers.

The caller's identity is resolved from the ``Authorization: Bearer`` header
into an explicit ``AuthContext`` and handed to service calls as a
parameter. Nothing is attached to the request object.
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends, Request

from accredchain.auth.context import AuthContext
from accredchain.auth.service import get_auth_service
from accredchain.exceptions import Unauthorized

log = logging.getLogger(__name__)


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, considering proxy headers."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # Take the first IP in the chain (original client)
        return forwarded.split(",")[0].strip()

    if request.client:
        return request.client.host

    return "unknown"


async def get_auth_context(request: Request) -> AuthContext:
    """Require a valid bearer token.

    Raises:
        Unauthorized: No token, or the token or its session is not valid.
    """
    token = _bearer_token(request)
    if token is None:
        raise Unauthorized("No token, authorization denied")
    return await get_auth_service().authenticate(token)


async def get_optional_auth_context(request: Request) -> Optional[AuthContext]:
    """Resolve a bearer token if one is present; anonymous otherwise.

    A malformed or expired token on a public endpoint is still rejected.
    """
    token = _bearer_token(request)
    if token is None:
        return None
    return await get_auth_service().authenticate(token)


require_auth: Annotated[AuthContext, Depends] = Depends(get_auth_context)
optional_auth: Annotated[Optional[AuthContext], Depends] = Depends(get_optional_auth_context)
