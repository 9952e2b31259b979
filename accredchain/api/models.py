"""API models for AccredChain.

Pydantic models for API requests and responses. Wire names are camelCase;
attributes are snake_case and either form is accepted on input.
"""
from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from accredchain.models import (
    Credential,
    CredentialStatus,
    CredentialType,
    Identity,
    Institution,
    InstitutionStatus,
    InstitutionType,
    Page,
    Role,
)


# =============================================================================
# Request Models
# =============================================================================


class RegisterRequest(BaseModel):
    """Password registration."""

    email: str = Field(..., description="Login email (unique)")
    password: str = Field(..., description="Plaintext password, hashed before storage")
    name: str = Field(..., min_length=1, max_length=255)
    wallet_address: Optional[str] = Field(None, alias="walletAddress")
    role: Role = Field(Role.STUDENT, description="student, institution or verifier")

    model_config = ConfigDict(populate_by_name=True)


class LoginRequest(BaseModel):
    email: str
    password: str


class NonceRequest(BaseModel):
    wallet_address: str = Field(..., min_length=1, alias="walletAddress")

    model_config = ConfigDict(populate_by_name=True)


class WalletVerifyRequest(BaseModel):
    """Signed challenge. ``name``/``email`` are required on a wallet's first login."""

    wallet_address: str = Field(..., alias="walletAddress")
    signature: str
    nonce: str
    name: Optional[str] = None
    email: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class IssueRequest(BaseModel):
    """On-chain confirmation facts for a credential."""

    token_id: Optional[int] = Field(None, alias="tokenId", description="NFT token id (>= 1)")
    transaction_hash: str = Field(..., alias="transactionHash")
    block_number: Optional[int] = Field(None, ge=0, alias="blockNumber")

    model_config = ConfigDict(populate_by_name=True)


class ReasonRequest(BaseModel):
    """Revocation or rejection reason."""

    reason: str = Field(..., max_length=500)


class BatchVerifyRequest(BaseModel):
    """Identifiers are token ids (integers), hashes (strings) or
    ``{"kind": "tokenId"|"hash", "value": ...}`` objects."""

    identifiers: list[Any] = Field(..., min_length=1)


# =============================================================================
# Response Models
# =============================================================================


class PaginationResponse(BaseModel):
    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def from_page(cls, page: Page) -> "PaginationResponse":
        return cls(page=page.page, limit=page.limit, total=page.total, pages=page.pages)


class IdentityResponse(BaseModel):
    """Public view of an identity (never the password hash or nonce)."""

    id: str
    name: str
    email: Optional[str] = None
    wallet_address: Optional[str] = Field(None, alias="walletAddress")
    role: Role
    is_active: bool = Field(..., alias="isActive")
    last_login: Optional[datetime] = Field(None, alias="lastLogin")
    created_at: Optional[datetime] = Field(None, alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityResponse":
        return cls(
            id=identity.id,
            name=identity.name,
            email=identity.email,
            wallet_address=identity.wallet_address,
            role=identity.role,
            is_active=identity.is_active,
            last_login=identity.last_login,
            created_at=identity.created_at,
        )


class LoginResponse(BaseModel):
    success: bool = True
    token: str
    expires_at: datetime = Field(..., alias="expiresAt")
    user: IdentityResponse
    is_new_user: bool = Field(False, alias="isNewUser")

    model_config = ConfigDict(populate_by_name=True)


class NonceResponse(BaseModel):
    success: bool = True
    nonce: str
    message: str = Field(..., description="Exact text the wallet must sign")


class SuccessResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None


class InstitutionResponse(BaseModel):
    id: str
    name: str
    registration_number: str = Field(..., alias="registrationNumber")
    institution_type: InstitutionType = Field(..., alias="institutionType")
    country: str
    email: str
    website: Optional[str] = None
    phone: Optional[str] = None
    logo: Optional[str] = None
    description: Optional[str] = None
    wallet_address: str = Field(..., alias="walletAddress")
    verification_status: InstitutionStatus = Field(..., alias="verificationStatus")
    rejection_reason: Optional[str] = Field(None, alias="rejectionReason")
    verified_at: Optional[datetime] = Field(None, alias="verifiedAt")
    credentials_issued: int = Field(0, alias="credentialsIssued")
    is_active: bool = Field(True, alias="isActive")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_institution(cls, institution: Institution) -> "InstitutionResponse":
        return cls(
            id=institution.id,
            name=institution.name,
            registration_number=institution.registration_number,
            institution_type=institution.institution_type,
            country=institution.country,
            email=institution.email,
            website=institution.website,
            phone=institution.phone,
            logo=institution.logo,
            description=institution.description,
            wallet_address=institution.wallet_address,
            verification_status=institution.verification_status,
            rejection_reason=institution.rejection_reason,
            verified_at=institution.verified_at,
            credentials_issued=institution.credentials_issued,
            is_active=institution.is_active,
            created_at=institution.created_at,
            updated_at=institution.updated_at,
        )


class MeResponse(BaseModel):
    success: bool = True
    user: IdentityResponse
    institution: Optional[InstitutionResponse] = None


class InstitutionEnvelope(BaseModel):
    success: bool = True
    institution: InstitutionResponse


class InstitutionListResponse(BaseModel):
    success: bool = True
    institutions: list[InstitutionResponse]
    pagination: Optional[PaginationResponse] = None


class CredentialInstitutionSummary(BaseModel):
    """Issuer details embedded in a credential read."""

    id: str
    name: str
    logo: Optional[str] = None
    verification_status: InstitutionStatus = Field(..., alias="verificationStatus")
    wallet_address: str = Field(..., alias="walletAddress")

    model_config = ConfigDict(populate_by_name=True)


class CredentialResponse(BaseModel):
    """Full credential record. ``status`` reports ``expired`` for issued
    credentials past their expiry date."""

    id: str
    institution_id: str = Field(..., alias="institutionId")
    institution_wallet: str = Field(..., alias="institutionWallet")
    student_wallet: Optional[str] = Field(None, alias="studentWallet")
    student_email: Optional[str] = Field(None, alias="studentEmail")
    student_name: str = Field(..., alias="studentName")
    student_id: str = Field(..., alias="studentId")
    credential_type: CredentialType = Field(..., alias="credentialType")
    course_name: str = Field(..., alias="courseName")
    grade: Optional[str] = None
    description: Optional[str] = None
    issue_date: date = Field(..., alias="issueDate")
    expiry_date: Optional[date] = Field(None, alias="expiryDate")
    document_hash: Optional[str] = Field(None, alias="documentHash")
    metadata_hash: Optional[str] = Field(None, alias="metadataHash")
    metadata_url: Optional[str] = Field(None, alias="metadataUrl")
    status: CredentialStatus
    token_id: Optional[int] = Field(None, alias="tokenId")
    transaction_hash: Optional[str] = Field(None, alias="transactionHash")
    block_number: Optional[int] = Field(None, alias="blockNumber")
    revoked_at: Optional[datetime] = Field(None, alias="revokedAt")
    revocation_reason: Optional[str] = Field(None, alias="revocationReason")
    verification_count: int = Field(0, alias="verificationCount")
    last_verified_at: Optional[datetime] = Field(None, alias="lastVerifiedAt")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")
    institution: Optional[CredentialInstitutionSummary] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_credential(
        cls,
        credential: Credential,
        institution: Institution | None = None,
    ) -> "CredentialResponse":
        summary = None
        if institution is not None:
            summary = CredentialInstitutionSummary(
                id=institution.id,
                name=institution.name,
                logo=institution.logo,
                verification_status=institution.verification_status,
                wallet_address=institution.wallet_address,
            )
        return cls(
            id=credential.id,
            institution_id=credential.institution_id,
            institution_wallet=credential.institution_wallet,
            student_wallet=credential.student_wallet,
            student_email=credential.student_email,
            student_name=credential.student_name,
            student_id=credential.student_id,
            credential_type=credential.credential_type,
            course_name=credential.course_name,
            grade=credential.grade,
            description=credential.description,
            issue_date=credential.issue_date,
            expiry_date=credential.expiry_date,
            document_hash=credential.document_hash,
            metadata_hash=credential.metadata_hash,
            metadata_url=credential.metadata_url,
            status=credential.effective_status,
            token_id=credential.token_id,
            transaction_hash=credential.transaction_hash,
            block_number=credential.block_number,
            revoked_at=credential.revoked_at,
            revocation_reason=credential.revocation_reason,
            verification_count=credential.verification_count,
            last_verified_at=credential.last_verified_at,
            created_at=credential.created_at,
            updated_at=credential.updated_at,
            institution=summary,
        )


class CredentialEnvelope(BaseModel):
    success: bool = True
    credential: CredentialResponse


class CredentialListResponse(BaseModel):
    success: bool = True
    credentials: list[CredentialResponse]
    pagination: Optional[PaginationResponse] = None


class CredentialStatsResponse(BaseModel):
    success: bool = True
    total: int
    by_status: dict[str, int] = Field(default_factory=dict, alias="byStatus")
    expired: int = 0
    by_type: dict[str, int] = Field(default_factory=dict, alias="byType")

    model_config = ConfigDict(populate_by_name=True)


class DeleteResponse(BaseModel):
    success: bool = True
    deleted: bool
    resource_type: str = Field(..., alias="resourceType")
    resource_id: str = Field(..., alias="resourceId")

    model_config = ConfigDict(populate_by_name=True)


class HealthResponse(BaseModel):
    """Health check response."""

    ok: bool
    backend: str
