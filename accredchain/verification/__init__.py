"""Public verification engine and its JSON projections."""

from accredchain.verification.engine import (
    Identifier,
    IdentifierKind,
    VerificationEngine,
    VerifierContext,
    compute_outcome,
    get_verification_engine,
)

__all__ = [
    "Identifier",
    "IdentifierKind",
    "VerificationEngine",
    "VerifierContext",
    "compute_outcome",
    "get_verification_engine",
]
