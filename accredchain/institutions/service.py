"""Institution registration and verification workflow.

Verification status moves::

    pending | rejected --request--> under_review
    any non-verified   --approve--> verified
    any non-rejected   --reject---> rejected

Activation is independent of verification status.
"""

import logging
import uuid
from dataclasses import replace

from accredchain.auth.context import AuthContext
from accredchain.auth.identities import IdentityService
from accredchain.auth.roles import ensure_admin
from accredchain.exceptions import Conflict, Forbidden, NotFound, Unauthorized, ValidationError
from accredchain.institutions.payload import InstitutionRegistration, InstitutionUpdate
from accredchain.models import (
    Institution,
    InstitutionStatus,
    InstitutionType,
    Page,
    Role,
    clamp_page,
    normalize_wallet,
    utcnow,
)
from accredchain.store.base import IdentityStore

log = logging.getLogger(__name__)


class InstitutionService:
    def __init__(self, store: IdentityStore, identities: IdentityService):
        self._store = store
        self._identities = identities

    async def get(self, institution_id: str) -> Institution:
        institution = await self._store.get_institution(institution_id)
        if institution is None:
            raise NotFound("Institution not found")
        return institution

    async def get_by_wallet(self, wallet_address: str) -> Institution:
        wallet = normalize_wallet(wallet_address)
        institution = await self._store.find_institution_by_wallet(wallet) if wallet else None
        if institution is None:
            raise NotFound("Institution not found")
        return institution

    async def register(self, ctx: AuthContext | None, payload: InstitutionRegistration) -> Institution:
        """Register the caller's wallet as an institution (status pending).

        The caller's identity becomes role ``institution`` unless it is an admin.

        Raises:
            ValidationError: Caller has no wallet.
            Conflict: Wallet or registration number already registered.
        """
        if ctx is None:
            raise Unauthorized("Authentication required")
        if not ctx.wallet_address:
            raise ValidationError.for_field(
                "walletAddress", "A wallet address is required to register an institution"
            )
        if await self._store.find_institution_by_wallet(ctx.wallet_address) is not None:
            raise Conflict("Institution already registered with this wallet or registration number")

        institution = Institution(
            id=str(uuid.uuid4()),
            identity_id=ctx.identity_id,
            wallet_address=ctx.wallet_address,
            name=payload.name,
            registration_number=payload.registration_number,
            institution_type=payload.institution_type,
            country=payload.country,
            email=payload.email,
            website=payload.website,
            phone=payload.phone,
            logo=payload.logo,
            description=payload.description,
        )
        await self._store.create_institution(institution)
        if ctx.role != Role.ADMIN:
            await self._identities.set_role(ctx.identity_id, Role.INSTITUTION)
        log.info(f"Registered institution {institution.id} for wallet {ctx.wallet_address}")
        return institution

    async def list_verified(
        self,
        country: str | None = None,
        institution_type: InstitutionType | None = None,
        page: int | None = None,
        limit: int | None = None,
    ) -> Page[Institution]:
        """Verified, active institutions sorted by name."""
        page, limit = clamp_page(page, limit)
        items, total = await self._store.list_institutions(
            statuses=[InstitutionStatus.VERIFIED],
            country=country,
            institution_type=institution_type,
            active=True,
            offset=(page - 1) * limit,
            limit=limit,
        )
        return Page(items=items, total=total, page=page, limit=limit)

    async def list_pending(self, ctx: AuthContext | None) -> list[Institution]:
        """Institutions awaiting an admin decision, most recently updated first."""
        ensure_admin(ctx)
        items, _ = await self._store.list_institutions(
            statuses=[InstitutionStatus.UNDER_REVIEW], newest_first=True
        )
        return items

    def _ensure_owner(self, ctx: AuthContext | None, institution: Institution) -> None:
        if ctx is None:
            raise Unauthorized("Authentication required")
        if institution.identity_id != ctx.identity_id:
            raise Forbidden("Not authorized to update this institution")

    async def update_profile(
        self,
        ctx: AuthContext | None,
        institution_id: str,
        updates: InstitutionUpdate,
    ) -> Institution:
        institution = await self.get(institution_id)
        self._ensure_owner(ctx, institution)
        changes = updates.model_dump(exclude_unset=True)
        if not changes:
            return institution
        return await self._store.update_institution(replace(institution, **changes))

    async def request_verification(self, ctx: AuthContext | None, institution_id: str) -> Institution:
        institution = await self.get(institution_id)
        self._ensure_owner(ctx, institution)
        if institution.verification_status == InstitutionStatus.VERIFIED:
            raise Conflict("Institution is already verified")
        if institution.verification_status == InstitutionStatus.UNDER_REVIEW:
            raise Conflict("Verification request is already under review")

        institution = replace(
            institution,
            verification_status=InstitutionStatus.UNDER_REVIEW,
            rejection_reason=None,
        )
        return await self._store.update_institution(institution)

    async def approve(self, ctx: AuthContext | None, institution_id: str) -> Institution:
        ensure_admin(ctx)
        institution = await self.get(institution_id)
        if institution.verification_status == InstitutionStatus.VERIFIED:
            raise Conflict("Institution is already verified")

        institution = replace(
            institution,
            verification_status=InstitutionStatus.VERIFIED,
            verified_at=utcnow(),
            rejection_reason=None,
        )
        log.info(f"Institution {institution_id} verified by {ctx.identity_id}")
        return await self._store.update_institution(institution)

    async def reject(self, ctx: AuthContext | None, institution_id: str, reason: str) -> Institution:
        ensure_admin(ctx)
        if not reason or not reason.strip():
            raise ValidationError.for_field("reason", "Rejection reason is required")
        institution = await self.get(institution_id)
        if institution.verification_status == InstitutionStatus.REJECTED:
            raise Conflict("Institution is already rejected")

        institution = replace(
            institution,
            verification_status=InstitutionStatus.REJECTED,
            rejection_reason=reason.strip(),
            verified_at=None,
        )
        log.info(f"Institution {institution_id} rejected by {ctx.identity_id}")
        return await self._store.update_institution(institution)

    async def set_active(self, ctx: AuthContext | None, institution_id: str, active: bool) -> Institution:
        ensure_admin(ctx)
        institution = await self.get(institution_id)
        if institution.is_active == active:
            return institution
        return await self._store.update_institution(replace(institution, is_active=active))

    async def record_issuance(self, institution_id: str) -> None:
        await self._store.increment_credentials_issued(institution_id)


_institution_service: InstitutionService | None = None


def get_institution_service() -> InstitutionService:
    """Get the global institution service instance."""
    global _institution_service

    if _institution_service is None:
        from accredchain.auth.service import get_identity_service
        from accredchain.store import get_storage

        _institution_service = InstitutionService(get_storage().identities, get_identity_service())

    return _institution_service


def reset_institution_service() -> None:
    """Reset the global institution service (for testing)."""
    global _institution_service
    _institution_service = None
