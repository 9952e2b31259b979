"""Institution registration, verification and issuing gate."""

from accredchain.institutions.gate import InstitutionGate
from accredchain.institutions.service import InstitutionService, get_institution_service

__all__ = [
    "InstitutionGate",
    "InstitutionService",
    "get_institution_service",
]
