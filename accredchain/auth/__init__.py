"""Authentication module for AccredChain."""

from accredchain.auth.context import AuthContext
from accredchain.auth.identities import IdentityService
from accredchain.auth.service import (
    AuthService,
    LoginResult,
    WalletProfile,
    get_auth_service,
    get_identity_service,
)

__all__ = [
    "AuthContext",
    "AuthService",
    "IdentityService",
    "LoginResult",
    "WalletProfile",
    "get_auth_service",
    "get_identity_service",
]
