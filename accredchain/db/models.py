"""SQLAlchemy ORM models for AccredChain.

This module defines the database schema for:
- Identities (wallet and/or email/password accounts, with nonce state)
- Sessions (server-side records behind issued bearer tokens)
- Institutions (issuer profiles with verification status)
- Credentials (academic credentials and their lifecycle status)
- Verification logs (append-only record of verification attempts)
- Counters (named monotonic counters, e.g. local token id allocation)
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class IdentityRecord(Base):
    """User account.

    Wallet and email are each globally unique. A wallet-only identity
    created by a challenge request has no email until its first login.
    """

    __tablename__ = "identities"

    id = Column(String(36), primary_key=True)  # UUID
    name = Column(String(255), nullable=False, default="")
    email = Column(String(255), nullable=True, unique=True)  # Lowercase
    wallet_address = Column(String(64), nullable=True, unique=True)  # Lowercase
    password_hash = Column(String(255), nullable=True)  # bcrypt, null for wallet-only
    role = Column(String(20), nullable=False, default="student")
    is_active = Column(Boolean, default=True, nullable=False)
    nonce = Column(String(32), nullable=True)
    last_login = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<IdentityRecord(id={self.id!r}, email={self.email!r}, wallet={self.wallet_address!r})>"


class SessionRecord(Base):
    """Login session; deleting it invalidates the bearer token."""

    __tablename__ = "sessions"

    session_id = Column(String(64), primary_key=True)
    identity_id = Column(
        String(36), ForeignKey("identities.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<SessionRecord(session_id={self.session_id[:8]!r}..., identity_id={self.identity_id!r})>"


class InstitutionRecord(Base):
    """Credential issuer profile."""

    __tablename__ = "institutions"

    id = Column(String(36), primary_key=True)  # UUID
    identity_id = Column(String(36), nullable=False, index=True)
    wallet_address = Column(String(64), nullable=False, unique=True)  # Lowercase
    name = Column(String(255), nullable=False, index=True)
    registration_number = Column(String(100), nullable=False, unique=True)
    institution_type = Column(String(30), nullable=False, default="university")
    country = Column(String(100), nullable=False, index=True)
    email = Column(String(255), nullable=False)
    website = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    logo = Column(String(255), nullable=True)  # IPFS hash or URL
    description = Column(Text, nullable=True)
    verification_status = Column(String(20), nullable=False, default="pending", index=True)
    rejection_reason = Column(Text, nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    credentials_issued = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<InstitutionRecord(id={self.id!r}, name={self.name!r}, status={self.verification_status!r})>"


class CredentialRecord(Base):
    """Academic credential.

    ``status`` holds the stored state only; expiry is derived on read.
    ``token_id`` is null until reserved or confirmed on-chain, then immutable.
    """

    __tablename__ = "credentials"

    id = Column(String(36), primary_key=True)  # UUID
    token_id = Column(Integer, nullable=True, unique=True)
    transaction_hash = Column(String(100), nullable=True)
    block_number = Column(Integer, nullable=True)

    institution_id = Column(String(36), nullable=False)
    institution_wallet = Column(String(64), nullable=False, index=True)  # Lowercase
    student_identity_id = Column(String(36), nullable=True)
    student_wallet = Column(String(64), nullable=True, index=True)  # Lowercase
    student_email = Column(String(255), nullable=True)

    credential_type = Column(String(30), nullable=False)
    course_name = Column(String(255), nullable=False)
    student_name = Column(String(255), nullable=False)
    student_id = Column(String(100), nullable=False)
    grade = Column(String(50), nullable=True)
    description = Column(String(500), nullable=True)

    issue_date = Column(Date, nullable=False)
    expiry_date = Column(Date, nullable=True)

    document_hash = Column(String(128), nullable=True, unique=True)
    metadata_hash = Column(String(128), nullable=True, unique=True)
    metadata_url = Column(String(512), nullable=True)

    status = Column(String(20), nullable=False, default="draft", index=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    revocation_reason = Column(Text, nullable=True)

    verification_count = Column(Integer, nullable=False, default=0)
    last_verified_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<CredentialRecord(id={self.id!r}, token_id={self.token_id!r}, status={self.status!r})>"


class VerificationLogRecord(Base):
    """One verification attempt.

    ``credential_id`` carries no foreign key: entries outlive an
    administratively deleted credential and not-found lookups have none.
    """

    __tablename__ = "verification_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    credential_id = Column(String(36), nullable=True)
    token_id = Column(Integer, nullable=True, index=True)
    verifier_identity_id = Column(String(36), nullable=True)
    verifier_wallet = Column(String(64), nullable=True)
    verifier_organization = Column(String(255), nullable=True)
    purpose = Column(String(255), nullable=True)
    result = Column(String(20), nullable=False)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    timestamp = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<VerificationLogRecord(id={self.id!r}, token_id={self.token_id!r}, result={self.result!r})>"


class CounterRecord(Base):
    """Named monotonic counter."""

    __tablename__ = "counters"

    name = Column(String(50), primary_key=True)
    value = Column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return f"<CounterRecord(name={self.name!r}, value={self.value!r})>"
