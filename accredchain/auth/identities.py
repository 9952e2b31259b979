"""Identity management.

Owns identity records, the wallet-to-identity mapping, the nonce
lifecycle and password hashing. Persistence is delegated to an
``IdentityStore``.
"""

import logging
import re
import uuid
from dataclasses import replace

from accredchain import config
from accredchain.auth.passwords import hash_password, verify_password
from accredchain.auth.wallet import generate_nonce
from accredchain.exceptions import Conflict, NotFound, ValidationError
from accredchain.models import Identity, Role, normalize_wallet
from accredchain.store.base import IdentityStore

log = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(email: str | None) -> str | None:
    if email is None:
        return None
    email = email.strip().lower()
    return email or None


def _check_email(email: str) -> None:
    if not _EMAIL_RE.match(email):
        raise ValidationError.for_field("email", "Please provide a valid email")


class IdentityService:
    """Create, look up and administer identities."""

    def __init__(self, store: IdentityStore):
        self._store = store

    async def create_identity(
        self,
        email: str | None,
        password: str | None,
        wallet_address: str | None,
        name: str,
        role: Role = Role.STUDENT,
    ) -> Identity:
        """Create an identity, storing only a bcrypt hash of the password.

        A wallet that so far only requested a login challenge is claimed by
        the new identity rather than reported as taken.

        Raises:
            ValidationError: Bad email, short password, or no email/wallet.
            Conflict: Email or wallet already registered.
        """
        email = normalize_email(email)
        wallet_address = normalize_wallet(wallet_address)
        name = (name or "").strip()

        errors = []
        if not name:
            errors.append({"field": "name", "message": "Name is required"})
        if email is None and wallet_address is None:
            errors.append({"field": "email", "message": "Email or wallet address is required"})
        if email is not None and not _EMAIL_RE.match(email):
            errors.append({"field": "email", "message": "Please provide a valid email"})
        if password is not None and len(password) < config.PASSWORD_MIN_LENGTH:
            errors.append({
                "field": "password",
                "message": f"Password must be at least {config.PASSWORD_MIN_LENGTH} characters",
            })
        if errors:
            raise ValidationError("Invalid identity", errors=errors)

        identity = Identity(
            id=str(uuid.uuid4()),
            name=name,
            email=email,
            wallet_address=wallet_address,
            password_hash=hash_password(password) if password is not None else None,
            role=Role(role),
        )
        identity = await self._store.create_identity(identity)
        log.info(f"Created identity {identity.id} role={identity.role.value}")
        return identity

    async def find_by_email(self, email: str) -> Identity | None:
        email = normalize_email(email)
        if email is None:
            return None
        return await self._store.find_identity_by_email(email)

    async def find_by_wallet(self, wallet_address: str) -> Identity | None:
        wallet_address = normalize_wallet(wallet_address)
        if wallet_address is None:
            return None
        return await self._store.find_identity_by_wallet(wallet_address)

    async def find_by_id(self, identity_id: str) -> Identity | None:
        return await self._store.get_identity(identity_id)

    async def require(self, identity_id: str) -> Identity:
        identity = await self._store.get_identity(identity_id)
        if identity is None:
            raise NotFound("Identity not found")
        return identity

    async def issue_nonce(self, wallet_address: str) -> str:
        """Rotate the wallet's challenge nonce, creating a placeholder if needed."""
        wallet_address = normalize_wallet(wallet_address)
        if wallet_address is None:
            raise ValidationError.for_field("walletAddress", "Wallet address is required")
        nonce = generate_nonce()
        await self._store.set_nonce(wallet_address, nonce)
        return nonce

    async def consume_nonce(self, wallet_address: str, nonce: str) -> Identity:
        """Single-use check of ``nonce``; raises Unauthorized on mismatch."""
        return await self._store.consume_nonce(normalize_wallet(wallet_address) or "", nonce)

    def verify_password(self, identity: Identity, candidate: str) -> bool:
        return verify_password(candidate, identity.password_hash)

    async def record_login(self, identity_id: str) -> None:
        await self._store.touch_login(identity_id)

    async def check_profile(self, name: str, email: str, wallet_address: str) -> tuple[str, str]:
        """Normalize a first-login profile and make sure it can be stored.

        Returns ``(name, email)``.

        Raises:
            ValidationError: Missing name or malformed email.
            Conflict: Email belongs to an identity other than the wallet's.
        """
        email = normalize_email(email)
        name = (name or "").strip()
        if not name or email is None:
            raise ValidationError(
                "Name and email are required for new users",
                errors=[
                    {"field": "name", "message": "Name is required"},
                    {"field": "email", "message": "Email is required"},
                ],
            )
        _check_email(email)

        owner = await self._store.find_identity_by_email(email)
        if owner is not None and owner.wallet_address != normalize_wallet(wallet_address):
            raise Conflict("A record with this email already exists")
        return name, email

    async def complete_profile(self, identity: Identity, name: str, email: str) -> Identity:
        """Attach a profile accepted by ``check_profile`` to a placeholder identity."""
        identity = replace(identity, name=name, email=email, role=Role.STUDENT)
        return await self._store.update_identity(identity)

    async def set_role(self, identity_id: str, role: Role) -> Identity:
        identity = await self.require(identity_id)
        if identity.role == role:
            return identity
        return await self._store.update_identity(replace(identity, role=role))

    async def set_active(self, identity_id: str, active: bool) -> Identity:
        """Deactivate or reactivate; deactivation ends all sessions."""
        identity = await self.require(identity_id)
        identity = await self._store.update_identity(replace(identity, is_active=active))
        if not active:
            removed = await self._store.delete_sessions_for(identity_id)
            log.info(f"Deactivated identity {identity_id}; ended {removed} sessions")
        return identity

    async def delete_identity(self, identity_id: str) -> None:
        if not await self._store.delete_identity(identity_id):
            raise NotFound("Identity not found")
        log.info(f"Deleted identity {identity_id}")
