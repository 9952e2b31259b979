"""Public credential verification.

Resolves an explicitly tagged identifier to a credential, computes the
verification outcome, and records every single-item attempt in the
append-only verification log. Outcome precedence::

    not_found > revoked > expired > invalid (not issued) > valid
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any

from accredchain import config
from accredchain.exceptions import ValidationError
from accredchain.models import (
    Credential,
    CredentialStatus,
    Institution,
    Page,
    VerificationLogEntry,
    VerificationOutcome,
    clamp_page,
    utcnow,
)
from accredchain.store.base import CredentialStore, IdentityStore, VerificationLogStore

log = logging.getLogger(__name__)


class IdentifierKind(str, Enum):
    TOKEN_ID = "tokenId"
    HASH = "hash"


@dataclass(frozen=True)
class Identifier:
    """A credential identifier whose kind is declared, never sniffed."""

    kind: IdentifierKind
    value: int | str

    @classmethod
    def token(cls, token_id: int) -> "Identifier":
        if isinstance(token_id, bool) or not isinstance(token_id, int) or token_id <= 0:
            raise ValidationError.for_field("tokenId", "Token ID must be a positive integer")
        return cls(IdentifierKind.TOKEN_ID, token_id)

    @classmethod
    def hash(cls, content_hash: str) -> "Identifier":
        if not isinstance(content_hash, str) or not content_hash.strip():
            raise ValidationError.for_field("hash", "Hash must be a non-empty string")
        return cls(IdentifierKind.HASH, content_hash.strip())

    @classmethod
    def parse(cls, raw: Any) -> "Identifier":
        """Build from a batch item.

        Accepts ``{"kind": "tokenId"|"hash", "value": ...}``, a JSON integer
        (token id) or a JSON string (content hash). A digit-only string is a
        hash, not a token id.
        """
        if isinstance(raw, dict):
            try:
                kind = IdentifierKind(raw.get("kind"))
            except ValueError:
                raise ValidationError.for_field("kind", "Kind must be 'tokenId' or 'hash'") from None
            value = raw.get("value")
            return cls.token(value) if kind == IdentifierKind.TOKEN_ID else cls.hash(value)
        if isinstance(raw, bool):
            raise ValidationError.for_field("identifier", "Identifier must be a token ID or hash")
        if isinstance(raw, int):
            return cls.token(raw)
        if isinstance(raw, str):
            return cls.hash(raw)
        raise ValidationError.for_field("identifier", "Identifier must be a token ID or hash")


@dataclass
class VerifierContext:
    """Who asked, and why. All fields optional."""

    identity_id: str | None = None
    wallet_address: str | None = None
    organization: str | None = None
    purpose: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass
class VerificationResult:
    outcome: VerificationOutcome
    credential: Credential | None = None
    institution: Institution | None = None
    verified_at: datetime | None = None
    verification_count: int = 0

    @property
    def verified(self) -> bool:
        return self.outcome == VerificationOutcome.VALID


@dataclass
class BatchItem:
    identifier: Any
    outcome: VerificationOutcome
    credential: Credential | None = None
    institution_name: str | None = None

    @property
    def verified(self) -> bool:
        return self.outcome == VerificationOutcome.VALID


@dataclass
class BatchResult:
    items: list[BatchItem] = field(default_factory=list)

    @property
    def summary(self) -> dict[str, int]:
        verified = sum(1 for item in self.items if item.verified)
        return {"total": len(self.items), "verified": verified, "failed": len(self.items) - verified}


@dataclass
class DailyCount:
    day: date
    count: int = 0
    valid_count: int = 0


@dataclass
class StatsOverview:
    total: int
    today: int
    weekly: list[DailyCount]


def compute_outcome(credential: Credential | None) -> VerificationOutcome:
    if credential is None:
        return VerificationOutcome.NOT_FOUND
    if credential.status == CredentialStatus.REVOKED:
        return VerificationOutcome.REVOKED
    if credential.is_expired:
        return VerificationOutcome.EXPIRED
    if credential.status != CredentialStatus.ISSUED:
        return VerificationOutcome.INVALID
    return VerificationOutcome.VALID


def _local_midnight(now: datetime) -> datetime:
    local = now.astimezone()
    return local.replace(hour=0, minute=0, second=0, microsecond=0)


class VerificationEngine:
    def __init__(
        self,
        credentials: CredentialStore,
        logs: VerificationLogStore,
        institutions: IdentityStore,
    ):
        self._credentials = credentials
        self._logs = logs
        self._institutions = institutions

    async def _resolve(self, identifier: Identifier) -> Credential | None:
        if identifier.kind == IdentifierKind.TOKEN_ID:
            return await self._credentials.get_by_token(identifier.value)
        return await self._credentials.find_by_hash(identifier.value)

    async def verify(
        self,
        identifier: Identifier,
        verifier: VerifierContext | None = None,
    ) -> VerificationResult:
        """Verify one credential and record the attempt.

        Exactly one log entry is appended per call, found or not. A found
        credential also gets its verification counter bumped, whatever
        the outcome.
        """
        verifier = verifier or VerifierContext()
        credential = await self._resolve(identifier)
        outcome = compute_outcome(credential)
        now = utcnow()

        token_id = None
        if credential is not None:
            token_id = credential.token_id
        elif identifier.kind == IdentifierKind.TOKEN_ID:
            token_id = identifier.value

        await self._logs.append(
            VerificationLogEntry(
                result=outcome,
                credential_id=credential.id if credential else None,
                token_id=token_id,
                verifier_identity_id=verifier.identity_id,
                verifier_wallet=verifier.wallet_address,
                verifier_organization=verifier.organization,
                purpose=verifier.purpose,
                ip_address=verifier.ip_address,
                user_agent=verifier.user_agent,
                timestamp=now,
            )
        )

        if credential is None:
            log.info(f"Verification {identifier.kind.value}={identifier.value} result=not_found")
            return VerificationResult(outcome=outcome, verified_at=now)

        await self._credentials.record_verification(credential.id, now)
        institution = await self._institutions.get_institution(credential.institution_id)
        log.info(f"Verification of credential {credential.id} result={outcome.value}")
        return VerificationResult(
            outcome=outcome,
            credential=credential,
            institution=institution,
            verified_at=now,
            verification_count=credential.verification_count + 1,
        )

    async def verify_batch(self, raw_identifiers: list[Any]) -> BatchResult:
        """Check up to ``BATCH_VERIFY_MAX`` identifiers without logging them.

        Results keep the input order; each item echoes its identifier.
        """
        if not isinstance(raw_identifiers, list) or not raw_identifiers:
            raise ValidationError.for_field("identifiers", "At least one identifier is required")
        if len(raw_identifiers) > config.BATCH_VERIFY_MAX:
            raise ValidationError.for_field(
                "identifiers", f"At most {config.BATCH_VERIFY_MAX} identifiers per batch"
            )

        identifiers = [Identifier.parse(raw) for raw in raw_identifiers]
        result = BatchResult()
        institution_names: dict[str, str | None] = {}
        for raw, identifier in zip(raw_identifiers, identifiers):
            credential = await self._resolve(identifier)
            name = None
            if credential is not None:
                if credential.institution_id not in institution_names:
                    institution = await self._institutions.get_institution(credential.institution_id)
                    institution_names[credential.institution_id] = institution.name if institution else None
                name = institution_names[credential.institution_id]
            result.items.append(
                BatchItem(
                    identifier=raw,
                    outcome=compute_outcome(credential),
                    credential=credential,
                    institution_name=name,
                )
            )
        return result

    async def history(
        self,
        token_id: int,
        page: int | None = None,
        limit: int | None = None,
    ) -> Page[VerificationLogEntry]:
        """Log entries for a token id, newest first."""
        page, limit = clamp_page(page, limit)
        items, total = await self._logs.list_for_token(
            token_id, offset=(page - 1) * limit, limit=limit
        )
        return Page(items=items, total=total, page=page, limit=limit)

    async def stats_overview(self, now: datetime | None = None) -> StatsOverview:
        """Totals plus a zero-filled daily histogram of the last 7 local days."""
        now = now or utcnow()
        midnight = _local_midnight(now)
        week_start = midnight - timedelta(days=6)

        total = await self._logs.count()
        today = await self._logs.count_since(midnight)
        entries = await self._logs.list_since(week_start)

        counts = Counter()
        valid = Counter()
        for entry in entries:
            day = entry.timestamp.astimezone().date()
            counts[day] += 1
            if entry.result == VerificationOutcome.VALID:
                valid[day] += 1

        weekly = []
        for back in range(6, -1, -1):
            day = midnight.date() - timedelta(days=back)
            weekly.append(DailyCount(day=day, count=counts[day], valid_count=valid[day]))
        return StatsOverview(total=total, today=today, weekly=weekly)


_verification_engine: VerificationEngine | None = None


def get_verification_engine() -> VerificationEngine:
    """Get the global verification engine instance."""
    global _verification_engine

    if _verification_engine is None:
        from accredchain.store import get_storage

        storage = get_storage()
        _verification_engine = VerificationEngine(
            storage.credentials, storage.logs, storage.identities
        )

    return _verification_engine


def reset_verification_engine() -> None:
    """Reset the global verification engine (for testing)."""
    global _verification_engine
    _verification_engine = None
