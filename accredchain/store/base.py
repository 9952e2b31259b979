"""Storage capability interfaces.

Every backend implements these three async interfaces with identical
semantics; ``tests/test_store_conformance.py`` runs one suite against all
of them. Implementations must be safe under concurrent coroutines: each
method is a single atomic unit of work.

Uniqueness violations surface as ``Conflict``; I/O or driver failures
surface as ``StoreUnavailable``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime

from accredchain.models import (
    Credential,
    CredentialStatus,
    Identity,
    Institution,
    InstitutionStatus,
    InstitutionType,
    Session,
    VerificationLogEntry,
    utcnow,
)


def claim_placeholder(placeholder: Identity, identity: Identity) -> Identity:
    """The record that replaces ``placeholder`` when ``identity`` registers its wallet."""
    return replace(
        identity,
        id=placeholder.id,
        created_at=placeholder.created_at,
        nonce=None,
        updated_at=utcnow(),
    )


# =============================================================================
# IDENTITY STORE
# =============================================================================


class IdentityStore(ABC):
    """Identities, their sessions, and institution profiles."""

    # -- identities -----------------------------------------------------------

    @abstractmethod
    async def create_identity(self, identity: Identity) -> Identity:
        """Insert a new identity and return the stored record.

        When the wallet is held only by a placeholder (an identity created by
        a wallet challenge, with no email yet), the placeholder is taken over
        in the same unit of work: it keeps its id and creation time, takes
        every other field from ``identity``, and its pending nonce is dropped.

        Raises:
            Conflict: Email or wallet already belongs to another identity.
        """
        ...

    @abstractmethod
    async def get_identity(self, identity_id: str) -> Identity | None:
        ...

    @abstractmethod
    async def find_identity_by_email(self, email: str) -> Identity | None:
        ...

    @abstractmethod
    async def find_identity_by_wallet(self, wallet_address: str) -> Identity | None:
        ...

    @abstractmethod
    async def update_identity(self, identity: Identity) -> Identity:
        """Overwrite a stored identity.

        Raises:
            NotFound: No identity with this id.
            Conflict: New email or wallet collides with another identity.
        """
        ...

    @abstractmethod
    async def delete_identity(self, identity_id: str) -> bool:
        ...

    @abstractmethod
    async def set_nonce(self, wallet_address: str, nonce: str) -> Identity:
        """Store ``nonce`` as the wallet's only live challenge.

        Creates a placeholder identity when the wallet is unknown. Any
        previously issued nonce is overwritten.
        """
        ...

    @abstractmethod
    async def consume_nonce(self, wallet_address: str, nonce: str) -> Identity:
        """Atomically check and clear the wallet's nonce.

        On success the nonce is cleared and ``last_login`` updated. Of two
        concurrent calls with the same nonce at most one succeeds.

        Raises:
            Unauthorized: Unknown wallet, no live nonce, or mismatch.
        """
        ...

    @abstractmethod
    async def touch_login(self, identity_id: str) -> None:
        """Set ``last_login`` to now."""
        ...

    # -- sessions -------------------------------------------------------------

    @abstractmethod
    async def create_session(self, session: Session) -> Session:
        ...

    @abstractmethod
    async def get_session(self, session_id: str) -> Session | None:
        """Return the session, or None if missing or expired."""
        ...

    @abstractmethod
    async def delete_session(self, session_id: str) -> bool:
        ...

    @abstractmethod
    async def delete_sessions_for(self, identity_id: str) -> int:
        ...

    # -- institutions ---------------------------------------------------------

    @abstractmethod
    async def create_institution(self, institution: Institution) -> Institution:
        """Insert an institution.

        Raises:
            Conflict: Wallet or registration number already registered.
        """
        ...

    @abstractmethod
    async def get_institution(self, institution_id: str) -> Institution | None:
        ...

    @abstractmethod
    async def find_institution_by_wallet(self, wallet_address: str) -> Institution | None:
        ...

    @abstractmethod
    async def update_institution(self, institution: Institution) -> Institution:
        """Overwrite a stored institution (status, profile, active flag)."""
        ...

    @abstractmethod
    async def increment_credentials_issued(self, institution_id: str) -> None:
        ...

    @abstractmethod
    async def list_institutions(
        self,
        statuses: list[InstitutionStatus] | None = None,
        country: str | None = None,
        institution_type: InstitutionType | None = None,
        active: bool | None = None,
        offset: int = 0,
        limit: int | None = None,
        newest_first: bool = False,
    ) -> tuple[list[Institution], int]:
        """Filtered institutions plus the unpaginated total.

        Sorted by name, or by last update (newest first) when
        ``newest_first`` is set.
        """
        ...


# =============================================================================
# CREDENTIAL STORE
# =============================================================================


class CredentialStore(ABC):
    """Credential records and their status transitions."""

    @abstractmethod
    async def insert(self, credential: Credential, reserve_token_id: bool = False) -> Credential:
        """Insert a new credential.

        With ``reserve_token_id`` a fresh token id is allocated and written
        with the record in one atomic step, and status becomes ``pending``.

        Raises:
            Conflict: Duplicate document/metadata hash or token id.
        """
        ...

    @abstractmethod
    async def allocate_token_id(self) -> int:
        """Return the next unused token id. Never returns the same id twice."""
        ...

    @abstractmethod
    async def get(self, credential_id: str) -> Credential | None:
        ...

    @abstractmethod
    async def get_by_token(self, token_id: int) -> Credential | None:
        ...

    @abstractmethod
    async def find_by_hash(self, content_hash: str) -> Credential | None:
        """Match against the document hash first, then the metadata hash."""
        ...

    @abstractmethod
    async def list_for_student(
        self,
        wallet_address: str,
        statuses: list[CredentialStatus] | None = None,
    ) -> list[Credential]:
        """Credentials held by a wallet, newest issue date first."""
        ...

    @abstractmethod
    async def list_for_institution(
        self,
        wallet_address: str,
        status: CredentialStatus | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[list[Credential], int]:
        """Credentials issued by a wallet, newest first, plus the total.

        ``status=EXPIRED`` selects issued credentials past their expiry date.
        """
        ...

    @abstractmethod
    async def issue(
        self,
        credential_id: str,
        token_id: int | None,
        tx_hash: str,
        block_number: int | None = None,
    ) -> Credential:
        """Apply the ``issued`` transition atomically.

        Raises:
            NotFound: No such credential.
            Conflict: Illegal transition or token id already used.
            ValidationError: Bad token id or empty transaction hash.
        """
        ...

    @abstractmethod
    async def revoke(self, credential_id: str, reason: str) -> Credential:
        """Apply the ``revoked`` transition atomically."""
        ...

    @abstractmethod
    async def record_verification(self, credential_id: str, at: datetime) -> None:
        """Increment the verification counter and set the last-verified time."""
        ...

    @abstractmethod
    async def delete(self, credential_id: str) -> bool:
        ...


# =============================================================================
# VERIFICATION LOG STORE
# =============================================================================


class VerificationLogStore(ABC):
    """Append-only log of verification attempts."""

    @abstractmethod
    async def append(self, entry: VerificationLogEntry) -> VerificationLogEntry:
        """Persist ``entry`` and return it with its assigned id."""
        ...

    @abstractmethod
    async def list_for_token(
        self,
        token_id: int,
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[list[VerificationLogEntry], int]:
        """Entries for a token id, newest first, plus the total."""
        ...

    @abstractmethod
    async def count(self) -> int:
        ...

    @abstractmethod
    async def count_since(self, since: datetime) -> int:
        ...

    @abstractmethod
    async def list_since(self, since: datetime) -> list[VerificationLogEntry]:
        """Entries with ``timestamp >= since``, oldest first."""
        ...


@dataclass
class Storage:
    """The three stores of one backend."""

    backend: str
    identities: IdentityStore
    credentials: CredentialStore
    logs: VerificationLogStore

    async def close(self) -> None:
        """Release backend resources. JSON documents hold no open handles."""
        if self.backend == "sql":
            from accredchain.db.session import reset_engine

            reset_engine()
