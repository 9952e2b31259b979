"""Validated credential creation payload."""

from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from accredchain.models import CredentialType, normalize_wallet


class CredentialPayload(BaseModel):
    """Fields an institution supplies when creating a credential."""

    student_wallet: Optional[str] = Field(None, alias="studentWallet", max_length=64)
    student_email: Optional[str] = Field(None, alias="studentEmail", max_length=255)
    student_name: str = Field(..., min_length=1, max_length=255, alias="studentName")
    student_id: str = Field(..., min_length=1, max_length=100, alias="studentId")
    credential_type: CredentialType = Field(..., alias="credentialType")
    course_name: str = Field(..., min_length=1, max_length=255, alias="courseName")
    grade: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    issue_date: date = Field(..., alias="issueDate")
    expiry_date: Optional[date] = Field(None, alias="expiryDate")
    document_hash: Optional[str] = Field(None, max_length=255, alias="documentHash")
    metadata_hash: Optional[str] = Field(None, max_length=255, alias="metadataHash")
    metadata_url: Optional[str] = Field(None, max_length=500, alias="metadataUrl")

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    @field_validator("student_wallet")
    @classmethod
    def lower_wallet(cls, v: Optional[str]) -> Optional[str]:
        return normalize_wallet(v)

    @field_validator("student_email")
    @classmethod
    def check_email(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        v = v.lower()
        if "@" not in v or "." not in v.rsplit("@", 1)[-1]:
            raise ValueError("Please provide a valid email")
        return v

    @field_validator("document_hash", "metadata_hash", "metadata_url", "grade", "description")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @model_validator(mode="after")
    def check_recipient_and_dates(self) -> "CredentialPayload":
        if not self.student_wallet and not self.student_email:
            raise ValueError("Student wallet or email is required")
        if self.expiry_date is not None and self.expiry_date < self.issue_date:
            raise ValueError("Expiry date cannot be before issue date")
        return self
