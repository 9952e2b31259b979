"""Authentication service.

Two login paths lead to a session and a signed bearer token:

- password: email + bcrypt-checked password for an active identity
- wallet: challenge nonce -> personal_sign signature -> signer recovery ->
  single-use nonce consumption

Every issued token is bound to a stored session, so logout revokes it
before expiry.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from accredchain import config
from accredchain.auth.context import AuthContext
from accredchain.auth.identities import IdentityService
from accredchain.auth.tokens import decode_token, issue_token
from accredchain.auth.wallet import challenge_message, recover_signer
from accredchain.exceptions import Unauthorized, ValidationError
from accredchain.models import Identity, Role, Session, normalize_wallet, utcnow
from accredchain.store.base import IdentityStore

log = logging.getLogger(__name__)

SELF_REGISTER_ROLES = frozenset({Role.STUDENT, Role.INSTITUTION, Role.VERIFIER})


@dataclass
class LoginResult:
    token: str
    expires_at: datetime
    identity: Identity
    is_new: bool = False


@dataclass
class WalletProfile:
    """Profile required the first time a wallet logs in."""

    name: str
    email: str


class AuthService:
    def __init__(self, identities: IdentityService, store: IdentityStore):
        self._identities = identities
        self._store = store

    async def _start_session(self, identity: Identity) -> tuple[str, datetime]:
        now = utcnow()
        session = Session(
            session_id=secrets.token_urlsafe(32),
            identity_id=identity.id,
            created_at=now,
            expires_at=now + timedelta(days=config.TOKEN_TTL_DAYS),
        )
        await self._store.create_session(session)
        token = issue_token(identity.id, session.session_id, identity.role.value, session.expires_at)
        return token, session.expires_at

    async def register(
        self,
        email: str,
        password: str,
        name: str,
        wallet_address: str | None = None,
        role: Role = Role.STUDENT,
    ) -> LoginResult:
        """Create a password identity and log it in.

        Raises:
            ValidationError: Missing password or admin role requested.
            Conflict: Email or wallet already registered.
        """
        role = Role(role)
        if role not in SELF_REGISTER_ROLES:
            raise ValidationError.for_field("role", "Role cannot be self-assigned")
        if not password:
            raise ValidationError.for_field("password", "Password is required")

        identity = await self._identities.create_identity(
            email=email,
            password=password,
            wallet_address=wallet_address,
            name=name,
            role=role,
        )
        await self._identities.record_login(identity.id)
        token, expires_at = await self._start_session(identity)
        return LoginResult(token=token, expires_at=expires_at, identity=identity, is_new=True)

    async def login_password(self, email: str, password: str) -> LoginResult:
        """Raises Unauthorized for unknown email, wrong password, or inactive account."""
        identity = await self._identities.find_by_email(email or "")
        if identity is None or not self._identities.verify_password(identity, password or ""):
            raise Unauthorized("Invalid credentials")
        if not identity.is_active:
            raise Unauthorized("Account is deactivated")

        await self._identities.record_login(identity.id)
        token, expires_at = await self._start_session(identity)
        log.info(f"Password login for identity {identity.id}")
        return LoginResult(token=token, expires_at=expires_at, identity=identity)

    async def request_wallet_challenge(self, wallet_address: str) -> tuple[str, str]:
        """Return ``(nonce, message)`` for the wallet to sign."""
        nonce = await self._identities.issue_nonce(wallet_address)
        return nonce, challenge_message(nonce)

    async def verify_wallet_signature(
        self,
        wallet_address: str,
        signature: str,
        nonce: str,
        profile: WalletProfile | None = None,
    ) -> LoginResult:
        """Log in by proving control of ``wallet_address``.

        Raises:
            Unauthorized: Bad signature, signer mismatch, stale or reused
                nonce, or inactive account.
            ValidationError: First login for this wallet without a profile.
            Conflict: Profile email already belongs to another identity.
        """
        wallet = normalize_wallet(wallet_address)
        if wallet is None or not signature or not nonce:
            raise ValidationError(
                "Wallet address, signature and nonce are required",
                errors=[
                    {"field": f, "message": f"{f} is required"}
                    for f, v in (("walletAddress", wallet), ("signature", signature), ("nonce", nonce))
                    if not v
                ],
            )

        signer = recover_signer(challenge_message(nonce), signature)
        if signer != wallet:
            log.warning(f"Signature signer mismatch for wallet {wallet}")
            raise Unauthorized("Invalid signature")

        existing = await self._identities.find_by_wallet(wallet)
        first_login = existing is None or existing.is_placeholder
        if first_login and profile is None:
            # The nonce stays live so the client can retry with a profile
            raise ValidationError(
                "Name and email are required for new users",
                errors=[
                    {"field": "name", "message": "Name is required"},
                    {"field": "email", "message": "Email is required"},
                ],
            )

        if first_login:
            # Rejected profiles must fail before the nonce is spent
            name, email = await self._identities.check_profile(profile.name, profile.email, wallet)

        identity = await self._identities.consume_nonce(wallet, nonce)
        if first_login and identity.is_placeholder:
            identity = await self._identities.complete_profile(identity, name, email)
            log.info(f"Registered wallet identity {identity.id}")
        if not identity.is_active:
            raise Unauthorized("Account is deactivated")

        token, expires_at = await self._start_session(identity)
        return LoginResult(
            token=token, expires_at=expires_at, identity=identity, is_new=first_login
        )

    async def authenticate(self, token: str) -> AuthContext:
        """Resolve a bearer token to the caller's context.

        Raises:
            Unauthorized: Bad token, ended session, or inactive identity.
        """
        claims = decode_token(token)
        session = await self._store.get_session(claims["sid"])
        if session is None or session.identity_id != claims["sub"]:
            raise Unauthorized("Session expired or logged out")

        identity = await self._identities.find_by_id(session.identity_id)
        if identity is None or not identity.is_active:
            raise Unauthorized("Account is deactivated")

        return AuthContext(
            identity_id=identity.id,
            role=identity.role,
            wallet_address=identity.wallet_address,
            session_id=session.session_id,
        )

    async def logout(self, ctx: AuthContext) -> bool:
        if ctx.session_id is None:
            return False
        return await self._store.delete_session(ctx.session_id)


_auth_service: AuthService | None = None
_identity_service: IdentityService | None = None


def get_identity_service() -> IdentityService:
    """Get the global identity service instance."""
    global _identity_service

    if _identity_service is None:
        from accredchain.store import get_storage

        _identity_service = IdentityService(get_storage().identities)

    return _identity_service


def get_auth_service() -> AuthService:
    """Get the global auth service instance."""
    global _auth_service

    if _auth_service is None:
        from accredchain.store import get_storage

        _auth_service = AuthService(get_identity_service(), get_storage().identities)

    return _auth_service


def reset_auth_services() -> None:
    """Reset the global auth services (for testing)."""
    global _auth_service, _identity_service
    _auth_service = None
    _identity_service = None
