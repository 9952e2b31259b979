"""SQLAlchemy storage backend.

Uniqueness (email, wallet, registration number, token id, content hashes)
is enforced by unique indexes; an ``IntegrityError`` at flush or commit
becomes ``Conflict``. Every method runs one session as a single unit of
work, so the legality check of a status transition and its write commit
together.
"""

import logging
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Generator

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session as DbSession, sessionmaker

from accredchain.credentials.lifecycle import apply_issue, apply_revoke
from accredchain.db.models import (
    CounterRecord,
    CredentialRecord,
    IdentityRecord,
    InstitutionRecord,
    SessionRecord,
    VerificationLogRecord,
)
from accredchain.exceptions import Conflict, NotFound, StoreUnavailable, Unauthorized
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
from accredchain.store.base import (
    CredentialStore,
    IdentityStore,
    Storage,
    VerificationLogStore,
    claim_placeholder,
)
from accredchain.store.codec import from_record, to_record

log = logging.getLogger(__name__)

TOKEN_COUNTER = "credential_token_id"

# Unique columns, checked in order against the driver's error text
_UNIQUE_FIELDS = (
    ("registration_number", "registrationNumber"),
    ("document_hash", "documentHash"),
    ("metadata_hash", "metadataHash"),
    ("wallet_address", "walletAddress"),
    ("token_id", "tokenId"),
    ("email", "email"),
)


def _conflict_from(exc: IntegrityError) -> Conflict:
    text = str(exc.orig) if exc.orig is not None else str(exc)
    for column, field in _UNIQUE_FIELDS:
        if column in text:
            return Conflict(f"A record with this {field} already exists")
    return Conflict("Duplicate record")


@contextmanager
def unit_of_work(factory: sessionmaker) -> Generator[DbSession, None, None]:
    """Session committed on success; backend errors mapped to domain errors."""
    db = factory()
    try:
        yield db
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise _conflict_from(e) from e
    except SQLAlchemyError as e:
        db.rollback()
        log.error(f"Database operation failed: {e}")
        raise StoreUnavailable("Database operation failed") from e
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _assign(row, obj) -> None:
    for key, value in to_record(obj).items():
        setattr(row, key, value)


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# IDENTITY STORE
# =============================================================================


class SqlIdentityStore(IdentityStore):
    def __init__(self, session_factory: sessionmaker):
        self._factory = session_factory

    async def create_identity(self, identity: Identity) -> Identity:
        with unit_of_work(self._factory) as db:
            row = None
            if identity.wallet_address is not None:
                row = (
                    db.query(IdentityRecord)
                    .filter(IdentityRecord.wallet_address == identity.wallet_address)
                    .with_for_update()
                    .first()
                )
            if row is not None and row.email is None:
                identity = claim_placeholder(from_record(Identity, row), identity)
                _assign(row, identity)
                db.flush()
                log.info(f"Identity {identity.id} claimed placeholder for {identity.wallet_address}")
            else:
                db.add(IdentityRecord(**to_record(identity)))
        return identity

    async def get_identity(self, identity_id: str) -> Identity | None:
        with unit_of_work(self._factory) as db:
            row = db.get(IdentityRecord, identity_id)
            return from_record(Identity, row) if row else None

    async def find_identity_by_email(self, email: str) -> Identity | None:
        with unit_of_work(self._factory) as db:
            row = db.query(IdentityRecord).filter(IdentityRecord.email == email).first()
            return from_record(Identity, row) if row else None

    async def find_identity_by_wallet(self, wallet_address: str) -> Identity | None:
        with unit_of_work(self._factory) as db:
            row = (
                db.query(IdentityRecord)
                .filter(IdentityRecord.wallet_address == wallet_address)
                .first()
            )
            return from_record(Identity, row) if row else None

    async def update_identity(self, identity: Identity) -> Identity:
        identity = replace(identity, updated_at=utcnow())
        with unit_of_work(self._factory) as db:
            row = db.get(IdentityRecord, identity.id)
            if row is None:
                raise NotFound("Identity not found")
            _assign(row, identity)
        return identity

    async def delete_identity(self, identity_id: str) -> bool:
        with unit_of_work(self._factory) as db:
            row = db.get(IdentityRecord, identity_id)
            if row is None:
                return False
            db.query(SessionRecord).filter(SessionRecord.identity_id == identity_id).delete()
            db.delete(row)
        return True

    async def set_nonce(self, wallet_address: str, nonce: str) -> Identity:
        with unit_of_work(self._factory) as db:
            row = (
                db.query(IdentityRecord)
                .filter(IdentityRecord.wallet_address == wallet_address)
                .with_for_update()
                .first()
            )
            if row is None:
                placeholder = Identity(
                    id=str(uuid.uuid4()), wallet_address=wallet_address, nonce=nonce
                )
                row = IdentityRecord(**to_record(placeholder))
                db.add(row)
                log.info(f"Created placeholder identity for wallet {wallet_address}")
            else:
                row.nonce = nonce
                row.updated_at = utcnow()
            db.flush()
            return from_record(Identity, row)

    async def consume_nonce(self, wallet_address: str, nonce: str) -> Identity:
        now = utcnow()
        with unit_of_work(self._factory) as db:
            # Conditional update: only the caller that still sees the nonce wins
            updated = (
                db.query(IdentityRecord)
                .filter(
                    IdentityRecord.wallet_address == wallet_address,
                    IdentityRecord.nonce.isnot(None),
                    IdentityRecord.nonce == nonce,
                )
                .update(
                    {"nonce": None, "last_login": now, "updated_at": now},
                    synchronize_session=False,
                )
            )
            if updated != 1:
                raise Unauthorized("Invalid or expired nonce")
            row = (
                db.query(IdentityRecord)
                .filter(IdentityRecord.wallet_address == wallet_address)
                .one()
            )
            return from_record(Identity, row)

    async def touch_login(self, identity_id: str) -> None:
        now = utcnow()
        with unit_of_work(self._factory) as db:
            db.query(IdentityRecord).filter(IdentityRecord.id == identity_id).update(
                {"last_login": now}, synchronize_session=False
            )

    # -- sessions -------------------------------------------------------------

    async def create_session(self, session: Session) -> Session:
        with unit_of_work(self._factory) as db:
            db.add(SessionRecord(**to_record(session)))
        return session

    async def get_session(self, session_id: str) -> Session | None:
        with unit_of_work(self._factory) as db:
            row = db.get(SessionRecord, session_id)
            if row is None:
                return None
            session = from_record(Session, row)
            if session.is_expired:
                db.delete(row)
                log.debug(f"Session {session_id[:8]}... expired")
                return None
            return session

    async def delete_session(self, session_id: str) -> bool:
        with unit_of_work(self._factory) as db:
            row = db.get(SessionRecord, session_id)
            if row is None:
                return False
            db.delete(row)
        return True

    async def delete_sessions_for(self, identity_id: str) -> int:
        with unit_of_work(self._factory) as db:
            return (
                db.query(SessionRecord)
                .filter(SessionRecord.identity_id == identity_id)
                .delete(synchronize_session=False)
            )

    # -- institutions ---------------------------------------------------------

    async def create_institution(self, institution: Institution) -> Institution:
        with unit_of_work(self._factory) as db:
            db.add(InstitutionRecord(**to_record(institution)))
        return institution

    async def get_institution(self, institution_id: str) -> Institution | None:
        with unit_of_work(self._factory) as db:
            row = db.get(InstitutionRecord, institution_id)
            return from_record(Institution, row) if row else None

    async def find_institution_by_wallet(self, wallet_address: str) -> Institution | None:
        with unit_of_work(self._factory) as db:
            row = (
                db.query(InstitutionRecord)
                .filter(InstitutionRecord.wallet_address == wallet_address)
                .first()
            )
            return from_record(Institution, row) if row else None

    async def update_institution(self, institution: Institution) -> Institution:
        institution = replace(institution, updated_at=utcnow())
        with unit_of_work(self._factory) as db:
            row = db.get(InstitutionRecord, institution.id)
            if row is None:
                raise NotFound("Institution not found")
            # The issued counter is only moved by increment_credentials_issued
            institution = replace(institution, credentials_issued=row.credentials_issued)
            _assign(row, institution)
        return institution

    async def increment_credentials_issued(self, institution_id: str) -> None:
        with unit_of_work(self._factory) as db:
            db.query(InstitutionRecord).filter(InstitutionRecord.id == institution_id).update(
                {"credentials_issued": InstitutionRecord.credentials_issued + 1},
                synchronize_session=False,
            )

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
        with unit_of_work(self._factory) as db:
            q = db.query(InstitutionRecord)
            if statuses:
                q = q.filter(InstitutionRecord.verification_status.in_([s.value for s in statuses]))
            if country:
                q = q.filter(InstitutionRecord.country == country)
            if institution_type:
                q = q.filter(InstitutionRecord.institution_type == institution_type.value)
            if active is not None:
                q = q.filter(InstitutionRecord.is_active == active)

            total = q.count()
            if newest_first:
                q = q.order_by(InstitutionRecord.updated_at.desc(), InstitutionRecord.id)
            else:
                q = q.order_by(InstitutionRecord.name.asc(), InstitutionRecord.id)
            q = q.offset(offset)
            if limit is not None:
                q = q.limit(limit)
            return [from_record(Institution, row) for row in q.all()], total


# =============================================================================
# CREDENTIAL STORE
# =============================================================================


def _next_token_id(db: DbSession) -> int:
    """Allocate the next unused token id within the caller's transaction."""
    counter = db.get(CounterRecord, TOKEN_COUNTER, with_for_update=True)
    if counter is None:
        highest = db.query(func.max(CredentialRecord.token_id)).scalar() or 0
        counter = CounterRecord(name=TOKEN_COUNTER, value=highest + 1)
        db.add(counter)

    candidate = counter.value
    # Skip ids already taken by explicit on-chain confirmations
    while (
        db.query(CredentialRecord.id).filter(CredentialRecord.token_id == candidate).first()
        is not None
    ):
        candidate += 1
    counter.value = candidate + 1
    return candidate


class SqlCredentialStore(CredentialStore):
    def __init__(self, session_factory: sessionmaker):
        self._factory = session_factory

    async def insert(self, credential: Credential, reserve_token_id: bool = False) -> Credential:
        with unit_of_work(self._factory) as db:
            if reserve_token_id:
                credential = replace(
                    credential,
                    token_id=_next_token_id(db),
                    status=CredentialStatus.PENDING,
                )
            db.add(CredentialRecord(**to_record(credential)))
        return credential

    async def allocate_token_id(self) -> int:
        with unit_of_work(self._factory) as db:
            token_id = _next_token_id(db)
        return token_id

    async def get(self, credential_id: str) -> Credential | None:
        with unit_of_work(self._factory) as db:
            row = db.get(CredentialRecord, credential_id)
            return from_record(Credential, row) if row else None

    async def get_by_token(self, token_id: int) -> Credential | None:
        with unit_of_work(self._factory) as db:
            row = db.query(CredentialRecord).filter(CredentialRecord.token_id == token_id).first()
            return from_record(Credential, row) if row else None

    async def find_by_hash(self, content_hash: str) -> Credential | None:
        with unit_of_work(self._factory) as db:
            row = (
                db.query(CredentialRecord)
                .filter(CredentialRecord.document_hash == content_hash)
                .first()
            )
            if row is None:
                row = (
                    db.query(CredentialRecord)
                    .filter(CredentialRecord.metadata_hash == content_hash)
                    .first()
                )
            return from_record(Credential, row) if row else None

    async def list_for_student(
        self,
        wallet_address: str,
        statuses: list[CredentialStatus] | None = None,
    ) -> list[Credential]:
        with unit_of_work(self._factory) as db:
            q = db.query(CredentialRecord).filter(CredentialRecord.student_wallet == wallet_address)
            if statuses:
                q = q.filter(CredentialRecord.status.in_([s.value for s in statuses]))
            q = q.order_by(CredentialRecord.issue_date.desc(), CredentialRecord.created_at.desc())
            return [from_record(Credential, row) for row in q.all()]

    async def list_for_institution(
        self,
        wallet_address: str,
        status: CredentialStatus | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[list[Credential], int]:
        with unit_of_work(self._factory) as db:
            q = db.query(CredentialRecord).filter(
                CredentialRecord.institution_wallet == wallet_address
            )
            if status == CredentialStatus.EXPIRED:
                q = q.filter(
                    CredentialRecord.status == CredentialStatus.ISSUED.value,
                    CredentialRecord.expiry_date.isnot(None),
                    CredentialRecord.expiry_date < utcnow().date(),
                )
            elif status is not None:
                q = q.filter(CredentialRecord.status == status.value)

            total = q.count()
            q = q.order_by(CredentialRecord.created_at.desc(), CredentialRecord.id).offset(offset)
            if limit is not None:
                q = q.limit(limit)
            return [from_record(Credential, row) for row in q.all()], total

    async def issue(
        self,
        credential_id: str,
        token_id: int | None,
        tx_hash: str,
        block_number: int | None = None,
    ) -> Credential:
        with unit_of_work(self._factory) as db:
            row = db.get(CredentialRecord, credential_id, with_for_update=True)
            if row is None:
                raise NotFound("Credential not found")
            updated = apply_issue(from_record(Credential, row), token_id, tx_hash, block_number)
            if updated.token_id != row.token_id:
                taken = (
                    db.query(CredentialRecord.id)
                    .filter(CredentialRecord.token_id == updated.token_id)
                    .first()
                )
                if taken is not None:
                    raise Conflict("A record with this tokenId already exists")
            _assign(row, updated)
        return updated

    async def revoke(self, credential_id: str, reason: str) -> Credential:
        with unit_of_work(self._factory) as db:
            row = db.get(CredentialRecord, credential_id, with_for_update=True)
            if row is None:
                raise NotFound("Credential not found")
            updated = apply_revoke(from_record(Credential, row), reason)
            _assign(row, updated)
        return updated

    async def record_verification(self, credential_id: str, at: datetime) -> None:
        with unit_of_work(self._factory) as db:
            db.query(CredentialRecord).filter(CredentialRecord.id == credential_id).update(
                {
                    "verification_count": CredentialRecord.verification_count + 1,
                    "last_verified_at": _utc(at),
                },
                synchronize_session=False,
            )

    async def delete(self, credential_id: str) -> bool:
        with unit_of_work(self._factory) as db:
            row = db.get(CredentialRecord, credential_id)
            if row is None:
                return False
            db.delete(row)
        return True


# =============================================================================
# VERIFICATION LOG STORE
# =============================================================================


class SqlVerificationLogStore(VerificationLogStore):
    def __init__(self, session_factory: sessionmaker):
        self._factory = session_factory

    async def append(self, entry: VerificationLogEntry) -> VerificationLogEntry:
        values = to_record(entry)
        values.pop("id")
        values["timestamp"] = _utc(entry.timestamp)
        with unit_of_work(self._factory) as db:
            row = VerificationLogRecord(**values)
            db.add(row)
            db.flush()
            entry_id = row.id
        return replace(entry, id=entry_id)

    async def list_for_token(
        self,
        token_id: int,
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[list[VerificationLogEntry], int]:
        with unit_of_work(self._factory) as db:
            q = db.query(VerificationLogRecord).filter(VerificationLogRecord.token_id == token_id)
            total = q.count()
            q = q.order_by(
                VerificationLogRecord.timestamp.desc(), VerificationLogRecord.id.desc()
            ).offset(offset)
            if limit is not None:
                q = q.limit(limit)
            return [from_record(VerificationLogEntry, row) for row in q.all()], total

    async def count(self) -> int:
        with unit_of_work(self._factory) as db:
            return db.query(VerificationLogRecord).count()

    async def count_since(self, since: datetime) -> int:
        with unit_of_work(self._factory) as db:
            return (
                db.query(VerificationLogRecord)
                .filter(VerificationLogRecord.timestamp >= _utc(since))
                .count()
            )

    async def list_since(self, since: datetime) -> list[VerificationLogEntry]:
        with unit_of_work(self._factory) as db:
            rows = (
                db.query(VerificationLogRecord)
                .filter(VerificationLogRecord.timestamp >= _utc(since))
                .order_by(VerificationLogRecord.timestamp.asc(), VerificationLogRecord.id.asc())
                .all()
            )
            return [from_record(VerificationLogEntry, row) for row in rows]


def create_sql_storage(session_factory: sessionmaker) -> Storage:
    return Storage(
        backend="sql",
        identities=SqlIdentityStore(session_factory),
        credentials=SqlCredentialStore(session_factory),
        logs=SqlVerificationLogStore(session_factory),
    )
