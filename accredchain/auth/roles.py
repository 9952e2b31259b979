"""Role checks for service operations.

Roles are flat: admin does not inherit institution rights over credential
content, so every check names the roles it admits.
"""

import logging

from accredchain.auth.context import AuthContext
from accredchain.exceptions import Forbidden, Unauthorized
from accredchain.models import Role

log = logging.getLogger(__name__)


def ensure_role(ctx: AuthContext | None, *roles: Role) -> AuthContext:
    """Return ``ctx`` if it holds one of ``roles``.

    Raises:
        Unauthorized: No authenticated caller.
        Forbidden: Caller holds none of the roles.
    """
    if ctx is None:
        raise Unauthorized("Authentication required")
    if ctx.role not in roles:
        log.warning(
            f"Access denied for {ctx.identity_id}: requires "
            f"{'/'.join(r.value for r in roles)}, has {ctx.role.value}"
        )
        raise Forbidden("Insufficient permissions")
    return ctx


def ensure_admin(ctx: AuthContext | None) -> AuthContext:
    return ensure_role(ctx, Role.ADMIN)
