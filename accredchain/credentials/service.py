"""Credential orchestration.

Creation, chain-confirmation recording, revocation and read projections.
Every mutation checks ownership (the actor's wallet must be the
credential's issuing wallet) before the store applies the state-machine
transition atomically.
"""

import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field

from accredchain import config
from accredchain.auth.context import AuthContext
from accredchain.auth.identities import IdentityService
from accredchain.auth.roles import ensure_admin
from accredchain.credentials.payload import CredentialPayload
from accredchain.exceptions import Forbidden, NotFound, Unauthorized
from accredchain.institutions.gate import InstitutionGate
from accredchain.institutions.service import InstitutionService
from accredchain.models import (
    Credential,
    CredentialStatus,
    Institution,
    Page,
    clamp_page,
    normalize_wallet,
)
from accredchain.store.base import CredentialStore

log = logging.getLogger(__name__)

# Statuses a student sees in their own credential list
STUDENT_VISIBLE = [CredentialStatus.ISSUED, CredentialStatus.REVOKED]


@dataclass
class CredentialStats:
    """Aggregate counts over one institution's credentials."""

    total: int = 0
    by_status: dict[str, int] = field(default_factory=dict)
    expired: int = 0
    by_type: dict[str, int] = field(default_factory=dict)


class CredentialService:
    def __init__(
        self,
        store: CredentialStore,
        gate: InstitutionGate,
        institutions: InstitutionService,
        identities: IdentityService,
    ):
        self._store = store
        self._gate = gate
        self._institutions = institutions
        self._identities = identities

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def create(self, ctx: AuthContext | None, payload: CredentialPayload) -> Credential:
        """Create a credential on behalf of the actor's institution.

        The new credential is ``draft``, or ``pending`` with a reserved token
        id when local token allocation is enabled.

        Raises:
            Unauthorized: No caller.
            Forbidden: Actor's institution fails the verification gate.
            Conflict: Document or metadata hash already used.
        """
        institution = await self._gate.admit(ctx)

        student = None
        if payload.student_wallet:
            student = await self._identities.find_by_wallet(payload.student_wallet)
        elif payload.student_email:
            student = await self._identities.find_by_email(payload.student_email)

        credential = Credential(
            id=str(uuid.uuid4()),
            institution_id=institution.id,
            institution_wallet=institution.wallet_address,
            credential_type=payload.credential_type,
            course_name=payload.course_name,
            student_name=payload.student_name,
            student_id=payload.student_id,
            issue_date=payload.issue_date,
            student_wallet=payload.student_wallet,
            student_email=payload.student_email,
            student_identity_id=student.id if student and not student.is_placeholder else None,
            grade=payload.grade,
            description=payload.description,
            expiry_date=payload.expiry_date,
            document_hash=payload.document_hash,
            metadata_hash=payload.metadata_hash,
            metadata_url=payload.metadata_url,
        )
        credential = await self._store.insert(credential, reserve_token_id=config.ASSIGN_TOKEN_IDS)
        log.info(
            f"Created credential {credential.id} for institution {institution.id} "
            f"status={credential.status.value} token_id={credential.token_id}"
        )
        return credential

    async def _owned(self, ctx: AuthContext | None, credential_id: str) -> Credential:
        if ctx is None:
            raise Unauthorized("Authentication required")
        credential = await self._store.get(credential_id)
        if credential is None:
            raise NotFound("Credential not found")
        if not ctx.wallet_address or ctx.wallet_address != credential.institution_wallet:
            log.warning(
                f"Identity {ctx.identity_id} denied mutation of credential {credential_id}"
            )
            raise Forbidden("Not authorized")
        return credential

    async def record_issuance(
        self,
        ctx: AuthContext | None,
        credential_id: str,
        token_id: int | None,
        tx_hash: str,
        block_number: int | None = None,
    ) -> Credential:
        """Record chain confirmation and move the credential to ``issued``.

        The owning institution's issued counter is incremented once, since a
        second issuance of the same credential is rejected by the store.
        """
        credential = await self._owned(ctx, credential_id)
        await self._gate.admit(ctx)
        credential = await self._store.issue(credential.id, token_id, tx_hash, block_number)
        await self._institutions.record_issuance(credential.institution_id)
        log.info(f"Issued credential {credential.id} token_id={credential.token_id}")
        return credential

    async def revoke(self, ctx: AuthContext | None, credential_id: str, reason: str) -> Credential:
        """Revoke an issued credential. Terminal.

        Only the issuing wallet may revoke, whatever its institution's
        current verification status.
        """
        credential = await self._owned(ctx, credential_id)
        credential = await self._store.revoke(credential.id, reason)
        log.info(f"Revoked credential {credential.id}")
        return credential

    async def delete(self, ctx: AuthContext | None, credential_id: str) -> None:
        """Hard-delete a credential (admin only)."""
        ensure_admin(ctx)
        if not await self._store.delete(credential_id):
            raise NotFound("Credential not found")
        log.info(f"Deleted credential {credential_id} by {ctx.identity_id}")

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_by_id(self, credential_id: str) -> Credential:
        credential = await self._store.get(credential_id)
        if credential is None:
            raise NotFound("Credential not found")
        return credential

    async def get_by_token(self, token_id: int) -> Credential:
        credential = await self._store.get_by_token(token_id)
        if credential is None:
            raise NotFound("Credential not found")
        return credential

    async def institution_for(self, credential: Credential) -> Institution | None:
        try:
            return await self._institutions.get(credential.institution_id)
        except NotFound:
            return None

    async def list_for_student(self, wallet_address: str) -> list[Credential]:
        wallet = normalize_wallet(wallet_address)
        if wallet is None:
            return []
        return await self._store.list_for_student(wallet, STUDENT_VISIBLE)

    def _ensure_institution_reader(self, ctx: AuthContext | None, wallet: str | None) -> None:
        if ctx is None:
            raise Unauthorized("Authentication required")
        if not ctx.is_admin and ctx.wallet_address != wallet:
            raise Forbidden("Not authorized")

    async def list_for_institution(
        self,
        ctx: AuthContext | None,
        wallet_address: str,
        status: CredentialStatus | None = None,
        page: int | None = None,
        limit: int | None = None,
    ) -> Page[Credential]:
        """Credentials issued by ``wallet_address``; owner or admin only."""
        wallet = normalize_wallet(wallet_address)
        self._ensure_institution_reader(ctx, wallet)
        page, limit = clamp_page(page, limit)
        items, total = await self._store.list_for_institution(
            wallet, status=status, offset=(page - 1) * limit, limit=limit
        )
        return Page(items=items, total=total, page=page, limit=limit)

    async def stats(self, ctx: AuthContext | None, wallet_address: str) -> CredentialStats:
        """Counts by stored status and type, plus derived expired count."""
        wallet = normalize_wallet(wallet_address)
        self._ensure_institution_reader(ctx, wallet)
        items, total = await self._store.list_for_institution(wallet)

        by_status = Counter(c.status.value for c in items)
        by_type = Counter(c.credential_type.value for c in items)
        return CredentialStats(
            total=total,
            by_status=dict(by_status),
            expired=sum(1 for c in items if c.effective_status == CredentialStatus.EXPIRED),
            by_type=dict(by_type),
        )


_credential_service: CredentialService | None = None


def get_credential_service() -> CredentialService:
    """Get the global credential service instance."""
    global _credential_service

    if _credential_service is None:
        from accredchain.auth.service import get_identity_service
        from accredchain.institutions.service import get_institution_service
        from accredchain.store import get_storage

        storage = get_storage()
        _credential_service = CredentialService(
            storage.credentials,
            InstitutionGate(storage.identities),
            get_institution_service(),
            get_identity_service(),
        )

    return _credential_service


def reset_credential_service() -> None:
    """Reset the global credential service (for testing)."""
    global _credential_service
    _credential_service = None
