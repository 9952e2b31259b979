"""Validated institution input payloads."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from accredchain.models import InstitutionType


def _check_email(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.lower()
    if "@" not in value or "." not in value.rsplit("@", 1)[-1]:
        raise ValueError("Please provide a valid email")
    return value


def _check_website(value: Optional[str]) -> Optional[str]:
    if value and not value.startswith(("http://", "https://")):
        raise ValueError("Website must be an http(s) URL")
    return value


class InstitutionRegistration(BaseModel):
    """Data required to register an institution."""

    name: str = Field(..., min_length=1, max_length=255, description="Legal name")
    registration_number: str = Field(
        ..., min_length=1, max_length=100, alias="registrationNumber",
        description="Official registration number (unique)",
    )
    institution_type: InstitutionType = Field(
        InstitutionType.UNIVERSITY, alias="institutionType", description="Kind of institution"
    )
    country: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., description="Contact email")
    website: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    logo: Optional[str] = Field(None, max_length=255, description="IPFS hash or URL")
    description: Optional[str] = Field(None, max_length=1000)

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    check_email = field_validator("email")(_check_email)
    check_website = field_validator("website")(_check_website)


class InstitutionUpdate(BaseModel):
    """Owner-editable profile fields. Omitted fields are left unchanged."""

    website: Optional[str] = Field(None, max_length=255)
    email: Optional[str] = None
    phone: Optional[str] = Field(None, max_length=50)
    logo: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    check_email = field_validator("email")(_check_email)
    check_website = field_validator("website")(_check_website)
