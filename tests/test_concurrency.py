"""Concurrency tests for atomic store operations."""
import asyncio
import uuid
from datetime import date

from accredchain import config
from accredchain.credentials.service import get_credential_service
from accredchain.exceptions import Conflict, Unauthorized
from accredchain.models import (
    Credential,
    CredentialStatus,
    CredentialType,
    Institution,
    VerificationLogEntry,
    VerificationOutcome,
)
from tests.conftest import credential_payload, make_institution

WALLET = "0x" + "d4" * 20


def _credential(**overrides) -> Credential:
    data = dict(
        id=str(uuid.uuid4()),
        institution_id="inst-1",
        institution_wallet=WALLET,
        credential_type=CredentialType.COURSE,
        course_name="Distributed Systems",
        student_name="Leslie",
        student_id="L-1",
        issue_date=date(2024, 9, 1),
        student_wallet="0x" + "e5" * 20,
    )
    data.update(overrides)
    return Credential(**data)


class TestTokenAllocation:
    async def test_concurrent_reservations_get_distinct_ids(self, json_storage):
        created = await asyncio.gather(
            *(json_storage.credentials.insert(_credential(), reserve_token_id=True) for _ in range(50))
        )
        token_ids = [c.token_id for c in created]
        assert len(set(token_ids)) == 50
        assert sorted(token_ids) == list(range(1, 51))
        assert all(c.status == CredentialStatus.PENDING for c in created)

        _, total = await json_storage.credentials.list_for_institution(WALLET)
        assert total == 50

    async def test_concurrent_creates_get_distinct_ids(self, json_storage, monkeypatch):
        monkeypatch.setattr(config, "ASSIGN_TOKEN_IDS", True)
        ctx, institution, _ = await make_institution()
        service = get_credential_service()

        created = await asyncio.gather(
            *(service.create(ctx, credential_payload(studentId=f"S-{n}")) for n in range(50))
        )
        token_ids = [c.token_id for c in created]
        assert sorted(token_ids) == list(range(1, 51))
        assert all(c.institution_id == institution.id for c in created)

        stored, total = await json_storage.credentials.list_for_institution(ctx.wallet_address)
        assert total == 50
        assert sorted(c.token_id for c in stored) == sorted(token_ids)
        assert all(c.status == CredentialStatus.PENDING for c in stored)

    async def test_concurrent_allocations(self, storage):
        ids = await asyncio.gather(*(storage.credentials.allocate_token_id() for _ in range(20)))
        assert len(set(ids)) == 20


class TestAtomicTransitions:
    async def test_concurrent_nonce_consumption_single_winner(self, storage):
        await storage.identities.set_nonce(WALLET, "555")
        outcomes = await asyncio.gather(
            *(storage.identities.consume_nonce(WALLET, "555") for _ in range(10)),
            return_exceptions=True,
        )
        winners = [o for o in outcomes if not isinstance(o, Exception)]
        assert len(winners) == 1
        assert all(isinstance(o, Unauthorized) for o in outcomes if isinstance(o, Exception))

    async def test_concurrent_revocation_single_winner(self, storage):
        draft = await storage.credentials.insert(_credential())
        await storage.credentials.issue(draft.id, 1, "0xabc")

        outcomes = await asyncio.gather(
            *(storage.credentials.revoke(draft.id, f"reason {n}") for n in range(5)),
            return_exceptions=True,
        )
        assert sum(1 for o in outcomes if not isinstance(o, Exception)) == 1
        assert all(isinstance(o, Conflict) for o in outcomes if isinstance(o, Exception))

    async def test_concurrent_counter_increments(self, storage):
        institution = Institution(
            id=str(uuid.uuid4()),
            identity_id="owner",
            wallet_address=WALLET,
            name="Busy University",
            registration_number="BUSY-1",
            country="Chile",
            email="busy@example.com",
        )
        await storage.identities.create_institution(institution)
        await asyncio.gather(
            *(storage.identities.increment_credentials_issued(institution.id) for _ in range(25))
        )
        assert (await storage.identities.get_institution(institution.id)).credentials_issued == 25

    async def test_concurrent_log_appends(self, storage):
        workers = 10
        entries = await asyncio.gather(
            *(
                storage.logs.append(VerificationLogEntry(result=VerificationOutcome.VALID, token_id=1))
                for _ in range(workers)
            )
        )
        assert len({e.id for e in entries}) == workers
        assert await storage.logs.count() == workers
