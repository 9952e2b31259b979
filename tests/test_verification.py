"""Tests for the public verification engine."""
from datetime import date, timedelta

import pytest

from accredchain import config
from accredchain.exceptions import ValidationError
from accredchain.models import (
    Credential,
    CredentialStatus,
    CredentialType,
    VerificationLogEntry,
    VerificationOutcome,
    utcnow,
)
from accredchain.verification import Identifier, IdentifierKind, VerifierContext, compute_outcome
from accredchain.verification.projections import (
    batch_item_projection,
    log_entry_projection,
    result_envelope,
    stats_projection,
)
from tests.conftest import credential_payload, make_institution


def _credential(**overrides) -> Credential:
    data = dict(
        id="c-1",
        institution_id="i-1",
        institution_wallet="0x" + "bb" * 20,
        credential_type=CredentialType.DIPLOMA,
        course_name="Nursing",
        student_name="Florence",
        student_id="N-1",
        issue_date=date(2020, 1, 1),
    )
    data.update(overrides)
    return Credential(**data)


async def _issued(credentials, ctx, token_id, **payload):
    draft = await credentials.create(ctx, credential_payload(**payload))
    return await credentials.record_issuance(ctx, draft.id, token_id, f"0x{token_id:064x}")


class TestIdentifier:
    """Identifiers are tagged by the caller."""

    def test_token(self):
        assert Identifier.token(5) == Identifier(IdentifierKind.TOKEN_ID, 5)

    @pytest.mark.parametrize("value", [0, -3, True, "5", 1.5])
    def test_bad_token(self, value):
        with pytest.raises(ValidationError):
            Identifier.token(value)

    def test_hash_is_stripped(self):
        assert Identifier.hash("  QmX ").value == "QmX"

    @pytest.mark.parametrize("value", ["", "   ", None, 5])
    def test_bad_hash(self, value):
        with pytest.raises(ValidationError):
            Identifier.hash(value)

    @pytest.mark.parametrize(
        "raw,expected",
        [
            (7, Identifier(IdentifierKind.TOKEN_ID, 7)),
            ("QmAbc", Identifier(IdentifierKind.HASH, "QmAbc")),
            ("12345", Identifier(IdentifierKind.HASH, "12345")),
            ({"kind": "tokenId", "value": 3}, Identifier(IdentifierKind.TOKEN_ID, 3)),
            ({"kind": "hash", "value": "42"}, Identifier(IdentifierKind.HASH, "42")),
        ],
    )
    def test_parse(self, raw, expected):
        assert Identifier.parse(raw) == expected

    @pytest.mark.parametrize("raw", [True, None, 1.5, [1], {"kind": "serial", "value": 1}])
    def test_parse_rejects(self, raw):
        with pytest.raises(ValidationError):
            Identifier.parse(raw)


class TestComputeOutcome:
    """not_found > revoked > expired > invalid > valid."""

    def test_not_found(self):
        assert compute_outcome(None) == VerificationOutcome.NOT_FOUND

    def test_valid(self):
        assert compute_outcome(_credential(status=CredentialStatus.ISSUED)) == VerificationOutcome.VALID

    @pytest.mark.parametrize("status", [CredentialStatus.DRAFT, CredentialStatus.PENDING])
    def test_not_issued_is_invalid(self, status):
        assert compute_outcome(_credential(status=status)) == VerificationOutcome.INVALID

    def test_expired(self):
        yesterday = utcnow().date() - timedelta(days=1)
        credential = _credential(status=CredentialStatus.ISSUED, expiry_date=yesterday)
        assert compute_outcome(credential) == VerificationOutcome.EXPIRED

    def test_revoked_beats_expired(self):
        yesterday = utcnow().date() - timedelta(days=1)
        credential = _credential(status=CredentialStatus.REVOKED, expiry_date=yesterday)
        assert compute_outcome(credential) == VerificationOutcome.REVOKED

    def test_expired_beats_invalid(self):
        yesterday = utcnow().date() - timedelta(days=1)
        credential = _credential(status=CredentialStatus.DRAFT, expiry_date=yesterday)
        assert compute_outcome(credential) == VerificationOutcome.EXPIRED

    def test_expiry_day_itself_is_valid(self):
        credential = _credential(status=CredentialStatus.ISSUED, expiry_date=utcnow().date())
        assert compute_outcome(credential) == VerificationOutcome.VALID


class TestVerify:
    async def test_valid_by_token(self, engine, credentials, storage):
        ctx, institution, _ = await make_institution()
        credential = await _issued(credentials, ctx, 7, documentHash="QmDoc")

        result = await engine.verify(
            Identifier.token(7),
            VerifierContext(organization="Acme HR", purpose="hiring", ip_address="203.0.113.9"),
        )
        assert result.verified
        assert result.credential.id == credential.id
        assert result.institution.id == institution.id
        assert result.verification_count == 1

        stored = await storage.credentials.get(credential.id)
        assert stored.verification_count == 1
        assert stored.last_verified_at is not None

        logs, total = await storage.logs.list_for_token(7)
        assert total == 1
        assert logs[0].result == VerificationOutcome.VALID
        assert logs[0].verifier_organization == "Acme HR"
        assert logs[0].ip_address == "203.0.113.9"

    async def test_valid_by_hash(self, engine, credentials):
        ctx, _, _ = await make_institution()
        await _issued(credentials, ctx, 7, documentHash="QmDoc", metadataHash="QmMeta")

        assert (await engine.verify(Identifier.hash("QmDoc"))).verified
        assert (await engine.verify(Identifier.hash("QmMeta"))).verified

    async def test_not_found_logs_exactly_once(self, engine, storage):
        result = await engine.verify(Identifier.token(999))
        assert result.outcome == VerificationOutcome.NOT_FOUND
        assert result.credential is None

        assert await storage.logs.count() == 1
        logs, _ = await storage.logs.list_for_token(999)
        assert logs[0].result == VerificationOutcome.NOT_FOUND
        assert logs[0].credential_id is None

    async def test_revoked(self, engine, credentials):
        ctx, _, _ = await make_institution()
        credential = await _issued(credentials, ctx, 7)
        await credentials.revoke(ctx, credential.id, "Plagiarism")

        result = await engine.verify(Identifier.token(7))
        assert result.outcome == VerificationOutcome.REVOKED
        assert not result.verified

    async def test_revoked_past_expiry_reports_revoked(self, engine, credentials):
        ctx, _, _ = await make_institution()
        past = utcnow().date() - timedelta(days=5)
        credential = await _issued(
            credentials, ctx, 7,
            issueDate=(past - timedelta(days=365)).isoformat(),
            expiryDate=past.isoformat(),
        )
        assert (await engine.verify(Identifier.token(7))).outcome == VerificationOutcome.EXPIRED

        await credentials.revoke(ctx, credential.id, "Superseded")
        assert (await engine.verify(Identifier.token(7))).outcome == VerificationOutcome.REVOKED

    async def test_counter_bumps_for_every_outcome(self, engine, credentials, storage):
        ctx, _, _ = await make_institution()
        credential = await _issued(credentials, ctx, 7)
        await credentials.revoke(ctx, credential.id, "reason")

        await engine.verify(Identifier.token(7))
        second = await engine.verify(Identifier.token(7))
        assert second.verification_count == 2
        assert (await storage.credentials.get(credential.id)).verification_count == 2

    async def test_envelope_hides_private_fields(self, engine, credentials):
        ctx, _, _ = await make_institution()
        await _issued(credentials, ctx, 7, studentEmail="ada@example.com")

        body = result_envelope(await engine.verify(Identifier.token(7)))
        assert body["success"] and body["verified"]
        assert body["result"] == "valid"
        assert body["data"]["credential"]["tokenId"] == 7
        assert body["data"]["credential"]["status"] == "issued"
        assert body["data"]["institution"]["isVerified"] is True
        assert body["data"]["verification"]["verificationCount"] == 1
        flat = repr(body)
        assert "ada@example.com" not in flat
        assert "aa" * 20 not in flat

    async def test_envelope_not_found(self, engine):
        body = result_envelope(await engine.verify(Identifier.hash("QmMissing")))
        assert body == {
            "success": False,
            "verified": False,
            "result": "not_found",
            "message": "Credential not found",
            "data": None,
        }


class TestVerifyBatch:
    async def test_mixed_batch(self, engine, credentials, storage):
        ctx, institution, _ = await make_institution()
        await _issued(credentials, ctx, 1)
        await _issued(credentials, ctx, 2)

        result = await engine.verify_batch([1, "nonexistent", 2])
        assert result.summary == {"total": 3, "verified": 2, "failed": 1}
        assert [item.identifier for item in result.items] == [1, "nonexistent", 2]
        assert [item.outcome for item in result.items] == [
            VerificationOutcome.VALID,
            VerificationOutcome.NOT_FOUND,
            VerificationOutcome.VALID,
        ]
        assert result.items[0].institution_name == institution.name

        # Batch checks are not logged
        assert await storage.logs.count() == 0

    async def test_projection(self, engine, credentials):
        ctx, institution, _ = await make_institution()
        await _issued(credentials, ctx, 1)

        result = await engine.verify_batch([{"kind": "tokenId", "value": 1}, "QmNope"])
        found, missing = (batch_item_projection(item) for item in result.items)
        assert found["verified"] is True
        assert found["tokenId"] == 1
        assert found["institutionName"] == institution.name
        assert missing == {"identifier": "QmNope", "verified": False, "result": "not_found"}

    async def test_empty_batch(self, engine):
        with pytest.raises(ValidationError):
            await engine.verify_batch([])

    async def test_batch_too_large(self, engine):
        with pytest.raises(ValidationError):
            await engine.verify_batch(list(range(1, config.BATCH_VERIFY_MAX + 2)))

    async def test_batch_at_limit(self, engine):
        result = await engine.verify_batch(list(range(1, config.BATCH_VERIFY_MAX + 1)))
        assert result.summary["total"] == config.BATCH_VERIFY_MAX

    async def test_malformed_item_rejects_whole_batch(self, engine):
        with pytest.raises(ValidationError):
            await engine.verify_batch([1, None])


class TestHistoryAndStats:
    async def test_history_newest_first_without_ip(self, engine, credentials):
        ctx, _, _ = await make_institution()
        await _issued(credentials, ctx, 7)
        for purpose in ("first", "second", "third"):
            await engine.verify(
                Identifier.token(7), VerifierContext(purpose=purpose, ip_address="198.51.100.1")
            )

        page = await engine.history(7, page=1, limit=2)
        assert page.total == 3
        assert page.pages == 2
        assert [e.purpose for e in page.items] == ["third", "second"]

        projected = log_entry_projection(page.items[0])
        assert "ipAddress" not in projected
        assert "198.51.100.1" not in repr(projected)
        assert projected["verifierInfo"]["purpose"] == "third"

    async def test_history_for_unknown_token(self, engine):
        page = await engine.history(12345)
        assert page.total == 0
        assert page.items == []

    async def test_stats_overview(self, engine, storage):
        now = utcnow()
        for at, result in (
            (now, VerificationOutcome.VALID),
            (now, VerificationOutcome.REVOKED),
            (now - timedelta(days=3), VerificationOutcome.VALID),
            (now - timedelta(days=10), VerificationOutcome.VALID),
        ):
            await storage.logs.append(VerificationLogEntry(result=result, timestamp=at))

        stats = await engine.stats_overview(now)
        assert stats.total == 4
        assert stats.today == 2
        assert len(stats.weekly) == 7
        assert stats.weekly[-1].day == now.astimezone().date()
        assert (stats.weekly[-1].count, stats.weekly[-1].valid_count) == (2, 1)
        assert (stats.weekly[3].count, stats.weekly[3].valid_count) == (1, 1)
        assert sum(d.count for d in stats.weekly) == 3

        body = stats_projection(stats)
        assert body["totalVerifications"] == 4
        assert body["todayVerifications"] == 2
        assert body["weeklyStats"][-1]["validCount"] == 1

    async def test_stats_zero_filled(self, engine):
        stats = await engine.stats_overview()
        assert stats.total == 0
        assert [d.count for d in stats.weekly] == [0] * 7
        days = [d.day for d in stats.weekly]
        assert days == sorted(days)
        assert len(set(days)) == 7
