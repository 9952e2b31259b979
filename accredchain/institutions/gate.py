"""Institution verification gate.

Admits an actor to credential-mutating operations only while the
institution registered to the actor's wallet is verified and active.
"""

import logging

from accredchain.auth.context import AuthContext
from accredchain.exceptions import Forbidden, Unauthorized
from accredchain.models import Institution, Role
from accredchain.store.base import IdentityStore

log = logging.getLogger(__name__)


class InstitutionGate:
    def __init__(self, store: IdentityStore):
        self._store = store

    async def admit(self, ctx: AuthContext | None) -> Institution:
        """Return the actor's institution if it may issue credentials.

        Raises:
            Unauthorized: No authenticated caller.
            Forbidden: Wrong role, no wallet, no institution, not verified,
                or deactivated.
        """
        if ctx is None:
            raise Unauthorized("Authentication required")
        if ctx.role not in (Role.INSTITUTION, Role.ADMIN):
            raise Forbidden("Access denied. Institution privileges required.")
        if not ctx.wallet_address:
            raise Forbidden("A wallet address is required to issue credentials")

        institution = await self._store.find_institution_by_wallet(ctx.wallet_address)
        if institution is None:
            raise Forbidden("Institution not registered")
        if not institution.is_verified:
            log.info(f"Gate denied unverified institution {institution.id}")
            raise Forbidden("Institution not verified. Please complete verification first.")
        if not institution.is_active:
            raise Forbidden("Institution account is deactivated")
        return institution
