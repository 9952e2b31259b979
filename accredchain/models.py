"""Domain records for AccredChain.

Plain dataclasses shared by the services and both store backends. Stores
return these objects; neither ORM rows nor raw JSON dicts leave the store
layer.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Generic, TypeVar


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from storage."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def normalize_wallet(address: str | None) -> str | None:
    """Lower-case and strip a wallet address for case-insensitive matching."""
    if address is None:
        return None
    address = address.strip().lower()
    return address or None


# =============================================================================
# ENUMERATIONS
# =============================================================================


class Role(str, Enum):
    STUDENT = "student"
    INSTITUTION = "institution"
    VERIFIER = "verifier"
    ADMIN = "admin"


class InstitutionStatus(str, Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    VERIFIED = "verified"
    REJECTED = "rejected"


class InstitutionType(str, Enum):
    UNIVERSITY = "university"
    COLLEGE = "college"
    TRAINING_CENTER = "training_center"
    ONLINE_PLATFORM = "online_platform"
    OTHER = "other"


class CredentialType(str, Enum):
    DEGREE = "degree"
    MASTERS = "masters"
    PHD = "phd"
    DIPLOMA = "diploma"
    CERTIFICATE = "certificate"
    TRANSCRIPT = "transcript"
    COURSE = "course"
    PROFESSIONAL = "professional"


class CredentialStatus(str, Enum):
    """Stored credential status.

    ``EXPIRED`` is never written by the service; it is derived at read time
    from the expiry date (see ``Credential.effective_status``).
    """

    DRAFT = "draft"
    PENDING = "pending"
    ISSUED = "issued"
    REVOKED = "revoked"
    EXPIRED = "expired"


class VerificationOutcome(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    REVOKED = "revoked"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"


# =============================================================================
# RECORDS
# =============================================================================


@dataclass
class Identity:
    """A user account.

    An identity created by a wallet challenge before the owner supplied a
    profile has no email; it is a placeholder until the first successful
    signature verification completes it.
    """

    id: str
    name: str = ""
    email: str | None = None
    wallet_address: str | None = None
    password_hash: str | None = None
    role: Role = Role.STUDENT
    is_active: bool = True
    nonce: str | None = None
    last_login: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_placeholder(self) -> bool:
        return self.email is None


@dataclass
class Session:
    """Server-side record backing an issued bearer token."""

    session_id: str
    identity_id: str
    created_at: datetime
    expires_at: datetime

    @property
    def is_expired(self) -> bool:
        return utcnow() > as_utc(self.expires_at)


@dataclass
class Institution:
    id: str
    identity_id: str
    wallet_address: str
    name: str
    registration_number: str
    country: str
    email: str
    institution_type: InstitutionType = InstitutionType.UNIVERSITY
    website: str | None = None
    phone: str | None = None
    logo: str | None = None
    description: str | None = None
    verification_status: InstitutionStatus = InstitutionStatus.PENDING
    rejection_reason: str | None = None
    verified_at: datetime | None = None
    credentials_issued: int = 0
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_verified(self) -> bool:
        return self.verification_status == InstitutionStatus.VERIFIED

    @property
    def can_issue(self) -> bool:
        return self.is_verified and self.is_active


@dataclass
class Credential:
    id: str
    institution_id: str
    institution_wallet: str
    credential_type: CredentialType
    course_name: str
    student_name: str
    student_id: str
    issue_date: date
    student_wallet: str | None = None
    student_email: str | None = None
    student_identity_id: str | None = None
    grade: str | None = None
    description: str | None = None
    expiry_date: date | None = None
    document_hash: str | None = None
    metadata_hash: str | None = None
    metadata_url: str | None = None
    status: CredentialStatus = CredentialStatus.DRAFT
    token_id: int | None = None
    transaction_hash: str | None = None
    block_number: int | None = None
    revoked_at: datetime | None = None
    revocation_reason: str | None = None
    verification_count: int = 0
    last_verified_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_expired(self) -> bool:
        if self.expiry_date is None:
            return False
        return self.expiry_date < utcnow().date()

    @property
    def effective_status(self) -> CredentialStatus:
        """Status as reported to callers, with expiry overlaid on issued."""
        if self.status == CredentialStatus.ISSUED and self.is_expired:
            return CredentialStatus.EXPIRED
        return self.status


@dataclass
class VerificationLogEntry:
    """One verification attempt. Append-only."""

    result: VerificationOutcome
    credential_id: str | None = None
    token_id: int | None = None
    verifier_identity_id: str | None = None
    verifier_wallet: str | None = None
    verifier_organization: str | None = None
    purpose: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    timestamp: datetime = field(default_factory=utcnow)
    id: int | None = None


T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    """Offset/limit page of results with totals."""

    items: list[T]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit


def clamp_page(page: int | None, limit: int | None) -> tuple[int, int]:
    """Normalize a 1-based page number and page size to configured bounds."""
    from accredchain import config

    page = max(int(page or 1), 1)
    limit = int(limit or config.DEFAULT_PAGE_SIZE)
    limit = min(max(limit, 1), config.MAX_PAGE_SIZE)
    return page, limit
