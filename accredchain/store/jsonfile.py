"""Flat-file JSON storage backend.

One JSON document per logical store, rewritten in full on every mutation:

- ``users.json``: ``{"users": [...], "sessions": [...], "institutions": [...]}``
- ``credentials.json``: ``{"credentials": [...], "nextTokenId": N}``
- ``verification_log.json``: ``{"logs": [...]}``

Files have no transactional guarantee of their own, so every
read-modify-write of a document runs under that document's
``asyncio.Lock`` and is written via a temp file and ``os.replace``. A
mutation that raises leaves the file untouched.
"""

import asyncio
import json
import logging
import os
import uuid
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Callable

from accredchain.credentials.lifecycle import apply_issue, apply_revoke
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
    as_utc,
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


class JsonDocument:
    """A JSON file guarded by an in-process lock."""

    def __init__(self, path: Path, default: Callable[[], dict[str, Any]]):
        self.path = path
        self._default = default
        self._lock = asyncio.Lock()

    def _read(self) -> dict[str, Any]:
        data = self._default()
        if not self.path.exists():
            return data
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data.update(json.load(f))
        except (OSError, json.JSONDecodeError) as e:
            log.error(f"Failed to read {self.path}: {e}")
            raise StoreUnavailable(f"Cannot read {self.path.name}") from e
        return data

    def _write(self, data: dict[str, Any]) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            log.error(f"Failed to write {self.path}: {e}")
            raise StoreUnavailable(f"Cannot write {self.path.name}") from e

    async def read(self) -> dict[str, Any]:
        async with self._lock:
            return self._read()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[dict[str, Any]]:
        """Yield the document for mutation; write it back if the body succeeds."""
        async with self._lock:
            data = self._read()
            yield data
            self._write(data)


def _index(records: list[dict], key: str, value: Any) -> int | None:
    if value is None:
        return None
    for i, record in enumerate(records):
        if record.get(key) == value:
            return i
    return None


def _check_unique(
    records: list[dict],
    record: dict,
    fields: tuple[tuple[str, str], ...],
) -> None:
    """Raise Conflict if another record shares a non-null unique field."""
    for key, label in fields:
        value = record.get(key)
        if value is None:
            continue
        for other in records:
            if other.get("id") != record.get("id") and other.get(key) == value:
                raise Conflict(f"A record with this {label} already exists")


def _newest_first(items: list, *keys: str) -> list:
    # Stable two-pass sort: id ascending breaks ties between equal timestamps
    items = sorted(items, key=lambda x: x.id)
    for key in reversed(keys):
        items.sort(key=lambda x, k=key: getattr(x, k), reverse=True)
    return items


def _window(items: list, offset: int, limit: int | None) -> list:
    if limit is None:
        return items[offset:]
    return items[offset:offset + limit]


_IDENTITY_UNIQUE = (("email", "email"), ("wallet_address", "walletAddress"))
_INSTITUTION_UNIQUE = (
    ("wallet_address", "walletAddress"),
    ("registration_number", "registrationNumber"),
)
_CREDENTIAL_UNIQUE = (
    ("token_id", "tokenId"),
    ("document_hash", "documentHash"),
    ("metadata_hash", "metadataHash"),
)


# =============================================================================
# IDENTITY STORE
# =============================================================================


class JsonIdentityStore(IdentityStore):
    def __init__(self, data_dir: Path):
        self._doc = JsonDocument(
            data_dir / "users.json",
            lambda: {"users": [], "sessions": [], "institutions": []},
        )

    async def _find_identity(self, key: str, value: Any) -> Identity | None:
        data = await self._doc.read()
        i = _index(data["users"], key, value)
        return from_record(Identity, data["users"][i]) if i is not None else None

    async def create_identity(self, identity: Identity) -> Identity:
        async with self._doc.transaction() as data:
            i = None
            if identity.wallet_address is not None:
                i = _index(data["users"], "wallet_address", identity.wallet_address)
            if i is not None and data["users"][i].get("email") is None:
                identity = claim_placeholder(from_record(Identity, data["users"][i]), identity)
                record = to_record(identity, as_json=True)
                _check_unique(data["users"], record, _IDENTITY_UNIQUE)
                data["users"][i] = record
                log.info(f"Identity {identity.id} claimed placeholder for {identity.wallet_address}")
            else:
                record = to_record(identity, as_json=True)
                _check_unique(data["users"], record, _IDENTITY_UNIQUE)
                data["users"].append(record)
        return identity

    async def get_identity(self, identity_id: str) -> Identity | None:
        return await self._find_identity("id", identity_id)

    async def find_identity_by_email(self, email: str) -> Identity | None:
        return await self._find_identity("email", email)

    async def find_identity_by_wallet(self, wallet_address: str) -> Identity | None:
        return await self._find_identity("wallet_address", wallet_address)

    async def update_identity(self, identity: Identity) -> Identity:
        identity = replace(identity, updated_at=utcnow())
        record = to_record(identity, as_json=True)
        async with self._doc.transaction() as data:
            i = _index(data["users"], "id", identity.id)
            if i is None:
                raise NotFound("Identity not found")
            _check_unique(data["users"], record, _IDENTITY_UNIQUE)
            data["users"][i] = record
        return identity

    async def delete_identity(self, identity_id: str) -> bool:
        async with self._doc.transaction() as data:
            i = _index(data["users"], "id", identity_id)
            if i is None:
                return False
            del data["users"][i]
            data["sessions"] = [s for s in data["sessions"] if s["identity_id"] != identity_id]
        return True

    async def set_nonce(self, wallet_address: str, nonce: str) -> Identity:
        now = utcnow()
        async with self._doc.transaction() as data:
            i = _index(data["users"], "wallet_address", wallet_address)
            if i is None:
                identity = Identity(id=str(uuid.uuid4()), wallet_address=wallet_address, nonce=nonce)
                data["users"].append(to_record(identity, as_json=True))
                log.info(f"Created placeholder identity for wallet {wallet_address}")
            else:
                identity = replace(
                    from_record(Identity, data["users"][i]), nonce=nonce, updated_at=now
                )
                data["users"][i] = to_record(identity, as_json=True)
        return identity

    async def consume_nonce(self, wallet_address: str, nonce: str) -> Identity:
        now = utcnow()
        async with self._doc.transaction() as data:
            i = _index(data["users"], "wallet_address", wallet_address)
            current = from_record(Identity, data["users"][i]) if i is not None else None
            if current is None or current.nonce is None or current.nonce != nonce:
                raise Unauthorized("Invalid or expired nonce")
            identity = replace(current, nonce=None, last_login=now, updated_at=now)
            data["users"][i] = to_record(identity, as_json=True)
        return identity

    async def touch_login(self, identity_id: str) -> None:
        async with self._doc.transaction() as data:
            i = _index(data["users"], "id", identity_id)
            if i is not None:
                data["users"][i]["last_login"] = utcnow().isoformat()

    # -- sessions -------------------------------------------------------------

    async def create_session(self, session: Session) -> Session:
        async with self._doc.transaction() as data:
            data["sessions"].append(to_record(session, as_json=True))
        return session

    async def get_session(self, session_id: str) -> Session | None:
        data = await self._doc.read()
        i = _index(data["sessions"], "session_id", session_id)
        if i is None:
            return None
        session = from_record(Session, data["sessions"][i])
        if session.is_expired:
            await self.delete_session(session_id)
            log.debug(f"Session {session_id[:8]}... expired")
            return None
        return session

    async def delete_session(self, session_id: str) -> bool:
        async with self._doc.transaction() as data:
            i = _index(data["sessions"], "session_id", session_id)
            if i is None:
                return False
            del data["sessions"][i]
        return True

    async def delete_sessions_for(self, identity_id: str) -> int:
        async with self._doc.transaction() as data:
            kept = [s for s in data["sessions"] if s["identity_id"] != identity_id]
            removed = len(data["sessions"]) - len(kept)
            data["sessions"] = kept
        return removed

    # -- institutions ---------------------------------------------------------

    async def create_institution(self, institution: Institution) -> Institution:
        record = to_record(institution, as_json=True)
        async with self._doc.transaction() as data:
            _check_unique(data["institutions"], record, _INSTITUTION_UNIQUE)
            data["institutions"].append(record)
        return institution

    async def get_institution(self, institution_id: str) -> Institution | None:
        data = await self._doc.read()
        i = _index(data["institutions"], "id", institution_id)
        return from_record(Institution, data["institutions"][i]) if i is not None else None

    async def find_institution_by_wallet(self, wallet_address: str) -> Institution | None:
        data = await self._doc.read()
        i = _index(data["institutions"], "wallet_address", wallet_address)
        return from_record(Institution, data["institutions"][i]) if i is not None else None

    async def update_institution(self, institution: Institution) -> Institution:
        institution = replace(institution, updated_at=utcnow())
        async with self._doc.transaction() as data:
            i = _index(data["institutions"], "id", institution.id)
            if i is None:
                raise NotFound("Institution not found")
            # The issued counter is only moved by increment_credentials_issued
            institution = replace(
                institution, credentials_issued=data["institutions"][i]["credentials_issued"]
            )
            record = to_record(institution, as_json=True)
            _check_unique(data["institutions"], record, _INSTITUTION_UNIQUE)
            data["institutions"][i] = record
        return institution

    async def increment_credentials_issued(self, institution_id: str) -> None:
        async with self._doc.transaction() as data:
            i = _index(data["institutions"], "id", institution_id)
            if i is not None:
                data["institutions"][i]["credentials_issued"] += 1

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
        data = await self._doc.read()
        items = [from_record(Institution, r) for r in data["institutions"]]
        if statuses:
            items = [x for x in items if x.verification_status in statuses]
        if country:
            items = [x for x in items if x.country == country]
        if institution_type:
            items = [x for x in items if x.institution_type == institution_type]
        if active is not None:
            items = [x for x in items if x.is_active == active]

        if newest_first:
            items = _newest_first(items, "updated_at")
        else:
            items = sorted(items, key=lambda x: (x.name, x.id))
        return _window(items, offset, limit), len(items)


# =============================================================================
# CREDENTIAL STORE
# =============================================================================


def _next_token_id(data: dict[str, Any]) -> int:
    """Allocate the next unused token id within the caller's transaction."""
    used = {c["token_id"] for c in data["credentials"] if c.get("token_id") is not None}
    candidate = max(int(data.get("nextTokenId", 1)), 1)
    while candidate in used:
        candidate += 1
    data["nextTokenId"] = candidate + 1
    return candidate


class JsonCredentialStore(CredentialStore):
    def __init__(self, data_dir: Path):
        self._doc = JsonDocument(
            data_dir / "credentials.json",
            lambda: {"credentials": [], "nextTokenId": 1},
        )

    async def _all(self) -> list[Credential]:
        data = await self._doc.read()
        return [from_record(Credential, r) for r in data["credentials"]]

    async def insert(self, credential: Credential, reserve_token_id: bool = False) -> Credential:
        async with self._doc.transaction() as data:
            if reserve_token_id:
                credential = replace(
                    credential,
                    token_id=_next_token_id(data),
                    status=CredentialStatus.PENDING,
                )
            record = to_record(credential, as_json=True)
            _check_unique(data["credentials"], record, _CREDENTIAL_UNIQUE)
            data["credentials"].append(record)
        return credential

    async def allocate_token_id(self) -> int:
        async with self._doc.transaction() as data:
            token_id = _next_token_id(data)
        return token_id

    async def get(self, credential_id: str) -> Credential | None:
        data = await self._doc.read()
        i = _index(data["credentials"], "id", credential_id)
        return from_record(Credential, data["credentials"][i]) if i is not None else None

    async def get_by_token(self, token_id: int) -> Credential | None:
        data = await self._doc.read()
        i = _index(data["credentials"], "token_id", token_id)
        return from_record(Credential, data["credentials"][i]) if i is not None else None

    async def find_by_hash(self, content_hash: str) -> Credential | None:
        data = await self._doc.read()
        for key in ("document_hash", "metadata_hash"):
            i = _index(data["credentials"], key, content_hash)
            if i is not None:
                return from_record(Credential, data["credentials"][i])
        return None

    async def list_for_student(
        self,
        wallet_address: str,
        statuses: list[CredentialStatus] | None = None,
    ) -> list[Credential]:
        items = [c for c in await self._all() if c.student_wallet == wallet_address]
        if statuses:
            items = [c for c in items if c.status in statuses]
        return _newest_first(items, "issue_date", "created_at")

    async def list_for_institution(
        self,
        wallet_address: str,
        status: CredentialStatus | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[list[Credential], int]:
        items = [c for c in await self._all() if c.institution_wallet == wallet_address]
        if status == CredentialStatus.EXPIRED:
            items = [c for c in items if c.status == CredentialStatus.ISSUED and c.is_expired]
        elif status is not None:
            items = [c for c in items if c.status == status]
        items = _newest_first(items, "created_at")
        return _window(items, offset, limit), len(items)

    async def _transition(self, credential_id: str, apply) -> Credential:
        async with self._doc.transaction() as data:
            i = _index(data["credentials"], "id", credential_id)
            if i is None:
                raise NotFound("Credential not found")
            updated = apply(from_record(Credential, data["credentials"][i]))
            record = to_record(updated, as_json=True)
            _check_unique(data["credentials"], record, _CREDENTIAL_UNIQUE)
            data["credentials"][i] = record
        return updated

    async def issue(
        self,
        credential_id: str,
        token_id: int | None,
        tx_hash: str,
        block_number: int | None = None,
    ) -> Credential:
        return await self._transition(
            credential_id,
            lambda c: apply_issue(c, token_id, tx_hash, block_number),
        )

    async def revoke(self, credential_id: str, reason: str) -> Credential:
        return await self._transition(credential_id, lambda c: apply_revoke(c, reason))

    async def record_verification(self, credential_id: str, at: datetime) -> None:
        async with self._doc.transaction() as data:
            i = _index(data["credentials"], "id", credential_id)
            if i is not None:
                record = data["credentials"][i]
                record["verification_count"] = record.get("verification_count", 0) + 1
                record["last_verified_at"] = as_utc(at).isoformat()

    async def delete(self, credential_id: str) -> bool:
        async with self._doc.transaction() as data:
            i = _index(data["credentials"], "id", credential_id)
            if i is None:
                return False
            del data["credentials"][i]
        return True


# =============================================================================
# VERIFICATION LOG STORE
# =============================================================================


class JsonVerificationLogStore(VerificationLogStore):
    def __init__(self, data_dir: Path):
        self._doc = JsonDocument(data_dir / "verification_log.json", lambda: {"logs": []})

    async def _all(self) -> list[VerificationLogEntry]:
        data = await self._doc.read()
        return [from_record(VerificationLogEntry, r) for r in data["logs"]]

    async def append(self, entry: VerificationLogEntry) -> VerificationLogEntry:
        async with self._doc.transaction() as data:
            last_id = data["logs"][-1]["id"] if data["logs"] else 0
            entry = replace(entry, id=last_id + 1)
            data["logs"].append(to_record(entry, as_json=True))
        return entry

    async def list_for_token(
        self,
        token_id: int,
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[list[VerificationLogEntry], int]:
        items = [e for e in await self._all() if e.token_id == token_id]
        items.sort(key=lambda e: (e.timestamp, e.id), reverse=True)
        return _window(items, offset, limit), len(items)

    async def count(self) -> int:
        data = await self._doc.read()
        return len(data["logs"])

    async def count_since(self, since: datetime) -> int:
        return len(await self.list_since(since))

    async def list_since(self, since: datetime) -> list[VerificationLogEntry]:
        since = as_utc(since)
        items = [e for e in await self._all() if e.timestamp >= since]
        items.sort(key=lambda e: (e.timestamp, e.id))
        return items


def create_json_storage(data_dir: Path) -> Storage:
    data_dir.mkdir(parents=True, exist_ok=True)
    return Storage(
        backend="json",
        identities=JsonIdentityStore(data_dir),
        credentials=JsonCredentialStore(data_dir),
        logs=JsonVerificationLogStore(data_dir),
    )
