"""HTTP-level tests for the AccredChain API."""
import pytest
from httpx import AsyncClient

from accredchain import config
from accredchain.audit import get_audit_logger
from tests.conftest import TEST_PASSWORD, login_headers, make_admin, new_wallet, sign_challenge

STUDENT_WALLET = "0x" + "aa" * 20


def _credential_body(**overrides) -> dict:
    body = {
        "studentWallet": STUDENT_WALLET,
        "studentName": "Ada Lovelace",
        "studentId": "S-1001",
        "credentialType": "degree",
        "courseName": "BSc Mathematics",
        "issueDate": "2024-06-01",
    }
    body.update(overrides)
    return body


async def _register(client: AsyncClient, email: str, **extra) -> dict:
    response = await client.post(
        "/auth/register",
        json={"email": email, "password": TEST_PASSWORD, "name": email.split("@")[0], **extra},
    )
    assert response.status_code == 201, response.text
    return response.json()


async def _verified_institution(client: AsyncClient, reg: str = "REG-API-1") -> tuple[dict, dict]:
    """Register, request review and approve an institution over HTTP.

    Returns ``(owner_headers, institution)``.
    """
    account = new_wallet()
    owner = await _register(
        client, f"{reg.lower()}@uni.test", walletAddress=account.address, role="institution"
    )
    headers = {"Authorization": f"Bearer {owner['token']}"}

    response = await client.post(
        "/institutions",
        json={
            "name": f"University {reg}",
            "registrationNumber": reg,
            "country": "Nigeria",
            "email": f"registrar@{reg.lower()}.test",
        },
        headers=headers,
    )
    assert response.status_code == 201, response.text
    institution = response.json()["institution"]

    response = await client.post(
        f"/institutions/{institution['id']}/request-verification", headers=headers
    )
    assert response.json()["institution"]["verificationStatus"] == "under_review"

    admin_email = f"admin-{reg.lower()}@accredchain.test"
    await make_admin(admin_email)
    admin_headers = await login_headers(client, admin_email)
    response = await client.post(f"/institutions/{institution['id']}/approve", headers=admin_headers)
    assert response.status_code == 200, response.text
    return headers, response.json()["institution"]


class TestHealth:
    async def test_healthz(self, client: AsyncClient):
        response = await client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"ok": True, "backend": "json"}

    async def test_version(self, client: AsyncClient, monkeypatch):
        monkeypatch.setenv("GIT_SHA", "0123456789abcdef")
        response = await client.get("/version")
        data = response.json()
        assert data["git_sha"] == "0123456789abcdef"
        assert data["short_sha"] == "0123456"


class TestAuthEndpoints:
    async def test_register_login_me_logout(self, client: AsyncClient):
        registered = await _register(client, "student@example.com")
        assert registered["success"] is True
        assert registered["isNewUser"] is True
        assert registered["user"]["role"] == "student"
        assert "passwordHash" not in registered["user"]
        assert "password_hash" not in registered["user"]

        headers = await login_headers(client, "student@example.com")
        me = await client.get("/auth/me", headers=headers)
        assert me.status_code == 200
        assert me.json()["user"]["email"] == "student@example.com"
        assert me.json()["institution"] is None

        assert (await client.post("/auth/logout", headers=headers)).status_code == 200
        after = await client.get("/auth/me", headers=headers)
        assert after.status_code == 401

    async def test_missing_token(self, client: AsyncClient):
        response = await client.get("/auth/me")
        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "error": "unauthorized",
            "message": "No token, authorization denied",
        }

    async def test_bad_login(self, client: AsyncClient):
        await _register(client, "student@example.com")
        response = await client.post(
            "/auth/login", json={"email": "student@example.com", "password": "wrong-password"}
        )
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid credentials"
        assert get_audit_logger().get_recent_events(action_filter="auth.login", status_filter="denied")

    async def test_register_validation_error_shape(self, client: AsyncClient):
        response = await client.post(
            "/auth/register", json={"email": "bad", "password": "x", "name": "N"}
        )
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "validation_error"
        assert {e["field"] for e in body["errors"]} == {"email", "password"}

    async def test_missing_body_fields_are_400(self, client: AsyncClient):
        response = await client.post("/auth/login", json={"email": "a@example.com"})
        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "password"

    async def test_login_rate_limited(self, client: AsyncClient):
        await _register(client, "student@example.com")
        headers = {"X-Forwarded-For": "198.51.100.77"}
        for _ in range(config.LOGIN_RATE_LIMIT_MAX_ATTEMPTS):
            response = await client.post(
                "/auth/login",
                json={"email": "student@example.com", "password": "wrong-password"},
                headers=headers,
            )
            assert response.status_code == 401

        response = await client.post(
            "/auth/login",
            json={"email": "student@example.com", "password": TEST_PASSWORD},
            headers=headers,
        )
        assert response.status_code == 429
        assert response.json()["error"] == "rate_limited"
        assert int(response.headers["Retry-After"]) > 0

        other_ip = await client.post(
            "/auth/login",
            json={"email": "student@example.com", "password": TEST_PASSWORD},
            headers={"X-Forwarded-For": "198.51.100.78"},
        )
        assert other_ip.status_code == 200

    async def test_register_wallet_after_anonymous_challenge(self, client: AsyncClient):
        account = new_wallet()
        response = await client.post("/auth/wallet/nonce", json={"walletAddress": account.address})
        assert response.status_code == 200

        owner = await _register(
            client, "owner@uni.test", walletAddress=account.address, role="institution"
        )
        assert owner["user"]["walletAddress"] == account.address.lower()

        taken = await client.post(
            "/auth/register",
            json={
                "email": "second@uni.test",
                "password": TEST_PASSWORD,
                "name": "Second",
                "walletAddress": account.address,
            },
        )
        assert taken.status_code == 409

    async def test_lockout_is_per_account_behind_shared_ip(self, client: AsyncClient):
        await _register(client, "victim@example.com")
        await _register(client, "neighbour@example.com")
        shared = {"X-Forwarded-For": "203.0.113.50"}

        for _ in range(config.LOGIN_RATE_LIMIT_MAX_ATTEMPTS):
            response = await client.post(
                "/auth/login",
                json={"email": "victim@example.com", "password": "wrong-password"},
                headers=shared,
            )
            assert response.status_code == 401

        locked = await client.post(
            "/auth/login",
            json={"email": "VICTIM@example.com", "password": TEST_PASSWORD},
            headers=shared,
        )
        assert locked.status_code == 429

        neighbour = await client.post(
            "/auth/login",
            json={"email": "neighbour@example.com", "password": TEST_PASSWORD},
            headers=shared,
        )
        assert neighbour.status_code == 200

    async def test_wallet_lockout_is_per_wallet(self, client: AsyncClient):
        target, other = new_wallet(), new_wallet()
        shared = {"X-Forwarded-For": "203.0.113.51"}
        for account in (target, other):
            await client.post("/auth/wallet/nonce", json={"walletAddress": account.address})

        for _ in range(config.LOGIN_RATE_LIMIT_MAX_ATTEMPTS):
            response = await client.post(
                "/auth/wallet/verify",
                json={
                    "walletAddress": target.address,
                    "signature": sign_challenge(other, "000000000000"),
                    "nonce": "000000000000",
                },
                headers=shared,
            )
            assert response.status_code == 401

        locked = await client.post(
            "/auth/wallet/verify",
            json={"walletAddress": target.address, "signature": "0x00", "nonce": "1"},
            headers=shared,
        )
        assert locked.status_code == 429

        response = await client.post(
            "/auth/wallet/nonce", json={"walletAddress": other.address}
        )
        nonce = response.json()["nonce"]
        allowed = await client.post(
            "/auth/wallet/verify",
            json={
                "walletAddress": other.address,
                "signature": sign_challenge(other, nonce),
                "nonce": nonce,
                "name": "Other",
                "email": "other@example.com",
            },
            headers=shared,
        )
        assert allowed.status_code == 200, allowed.text

    async def test_wallet_login_flow(self, client: AsyncClient):
        account = new_wallet()
        nonce_response = await client.post(
            "/auth/wallet/nonce", json={"walletAddress": account.address}
        )
        assert nonce_response.status_code == 200
        nonce = nonce_response.json()["nonce"]
        assert nonce in nonce_response.json()["message"]

        body = {
            "walletAddress": account.address,
            "signature": sign_challenge(account, nonce),
            "nonce": nonce,
        }
        needs_profile = await client.post("/auth/wallet/verify", json=body)
        assert needs_profile.status_code == 400

        response = await client.post(
            "/auth/wallet/verify", json={**body, "name": "Wally", "email": "wally@example.com"}
        )
        assert response.status_code == 200, response.text
        data = response.json()
        assert data["isNewUser"] is True
        assert data["user"]["walletAddress"] == account.address.lower()

        replay = await client.post("/auth/wallet/verify", json=body)
        assert replay.status_code == 401

    async def test_public_endpoint_rejects_bad_token(self, client: AsyncClient):
        response = await client.get(
            "/verify/token/1", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401


class TestInstitutionEndpoints:
    async def test_registration_and_listing(self, client: AsyncClient):
        headers, institution = await _verified_institution(client)
        assert institution["verificationStatus"] == "verified"
        assert institution["isActive"] is True

        listing = await client.get("/institutions", params={"type": "university"})
        assert listing.status_code == 200
        assert [i["id"] for i in listing.json()["institutions"]] == [institution["id"]]
        assert listing.json()["pagination"]["total"] == 1

        by_wallet = await client.get(f"/institutions/wallet/{institution['walletAddress']}")
        assert by_wallet.json()["institution"]["id"] == institution["id"]

        me = await client.get("/auth/me", headers=headers)
        assert me.json()["user"]["role"] == "institution"
        assert me.json()["institution"]["id"] == institution["id"]

    async def test_pending_requires_admin(self, client: AsyncClient):
        await _register(client, "student@example.com")
        headers = await login_headers(client, "student@example.com")
        response = await client.get("/institutions/pending", headers=headers)
        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    async def test_unknown_institution(self, client: AsyncClient):
        response = await client.get("/institutions/does-not-exist")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    async def test_owner_updates_profile(self, client: AsyncClient):
        headers, institution = await _verified_institution(client)
        response = await client.patch(
            f"/institutions/{institution['id']}",
            json={"website": "https://uni.test"},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.json()["institution"]["website"] == "https://uni.test"


class TestCredentialEndpoints:
    async def test_lifecycle_and_verification(self, client: AsyncClient):
        headers, institution = await _verified_institution(client)

        created = await client.post(
            "/credentials", json=_credential_body(documentHash="QmDocApi"), headers=headers
        )
        assert created.status_code == 201, created.text
        credential = created.json()["credential"]
        assert credential["status"] == "draft"
        assert credential["institution"]["name"] == institution["name"]

        issued = await client.put(
            f"/credentials/{credential['id']}/issue",
            json={"tokenId": 7, "transactionHash": "0xabc", "blockNumber": 99},
            headers=headers,
        )
        assert issued.status_code == 200, issued.text
        assert issued.json()["credential"]["status"] == "issued"

        by_token = await client.get("/credentials/token/7")
        assert by_token.json()["credential"]["id"] == credential["id"]

        verified = await client.get(
            "/verify/token/7", params={"organization": "Acme", "purpose": "hiring"}
        )
        assert verified.status_code == 200
        body = verified.json()
        assert body["verified"] is True
        assert body["result"] == "valid"
        assert body["data"]["credential"]["studentName"] == "Ada Lovelace"
        assert "studentWallet" not in body["data"]["credential"]

        by_hash = await client.get("/verify/hash/QmDocApi")
        assert by_hash.json()["result"] == "valid"

        revoked = await client.put(
            f"/credentials/{credential['id']}/revoke", json={"reason": "Fraud"}, headers=headers
        )
        assert revoked.json()["credential"]["status"] == "revoked"
        after = await client.get("/verify/token/7")
        assert after.status_code == 200
        assert after.json()["verified"] is False
        assert after.json()["result"] == "revoked"

        history = await client.get("/verify/history/7")
        logs = history.json()["data"]["logs"]
        assert [entry["result"] for entry in logs] == ["revoked", "valid", "valid"]
        assert all("ipAddress" not in entry for entry in logs)
        assert logs[2]["verifierInfo"] == {"organization": "Acme", "purpose": "hiring"}

    async def test_unverified_institution_forbidden(self, client: AsyncClient):
        account = new_wallet()
        owner = await _register(
            client, "pending@uni.test", walletAddress=account.address, role="institution"
        )
        headers = {"Authorization": f"Bearer {owner['token']}"}
        await client.post(
            "/institutions",
            json={
                "name": "Pending U",
                "registrationNumber": "PEND-1",
                "country": "Peru",
                "email": "pending@pend.test",
            },
            headers=headers,
        )
        response = await client.post("/credentials", json=_credential_body(), headers=headers)
        assert response.status_code == 403
        denied = get_audit_logger().get_recent_events(
            action_filter="credential.create", status_filter="denied"
        )
        assert len(denied) == 1

    async def test_create_requires_auth(self, client: AsyncClient):
        response = await client.post("/credentials", json=_credential_body())
        assert response.status_code == 401

    async def test_create_validation(self, client: AsyncClient):
        headers, _ = await _verified_institution(client)
        response = await client.post(
            "/credentials",
            json=_credential_body(studentWallet=None, credentialType="badge"),
            headers=headers,
        )
        assert response.status_code == 400
        fields = {e["field"] for e in response.json()["errors"]}
        assert "credentialType" in fields

    async def test_other_institution_cannot_issue(self, client: AsyncClient):
        owner_headers, _ = await _verified_institution(client, "REG-OWNER")
        other_headers, _ = await _verified_institution(client, "REG-OTHER")
        created = await client.post("/credentials", json=_credential_body(), headers=owner_headers)
        credential_id = created.json()["credential"]["id"]

        response = await client.put(
            f"/credentials/{credential_id}/issue",
            json={"tokenId": 3, "transactionHash": "0xabc"},
            headers=other_headers,
        )
        assert response.status_code == 403
        assert response.json()["message"] == "Not authorized"

    async def test_issue_twice_conflicts(self, client: AsyncClient):
        headers, _ = await _verified_institution(client)
        created = await client.post("/credentials", json=_credential_body(), headers=headers)
        credential_id = created.json()["credential"]["id"]
        issue = {"tokenId": 3, "transactionHash": "0xabc"}

        first = await client.put(f"/credentials/{credential_id}/issue", json=issue, headers=headers)
        assert first.status_code == 200
        again = await client.put(f"/credentials/{credential_id}/issue", json=issue, headers=headers)
        assert again.status_code == 409
        assert again.json()["error"] == "conflict"

    async def test_listings_and_stats(self, client: AsyncClient):
        headers, institution = await _verified_institution(client)
        wallet = institution["walletAddress"]
        ids = []
        for n in range(3):
            created = await client.post("/credentials", json=_credential_body(), headers=headers)
            ids.append(created.json()["credential"]["id"])
        await client.put(
            f"/credentials/{ids[0]}/issue",
            json={"tokenId": 11, "transactionHash": "0x11"},
            headers=headers,
        )

        student = await client.get(f"/credentials/student/{STUDENT_WALLET}")
        assert [c["id"] for c in student.json()["credentials"]] == [ids[0]]

        page = await client.get(
            f"/credentials/institution/{wallet}", params={"limit": 2}, headers=headers
        )
        assert page.status_code == 200
        assert page.json()["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}

        issued_only = await client.get(
            f"/credentials/institution/{wallet}", params={"status": "issued"}, headers=headers
        )
        assert [c["id"] for c in issued_only.json()["credentials"]] == [ids[0]]

        stats = await client.get(f"/credentials/stats/{wallet}", headers=headers)
        assert stats.json()["total"] == 3
        assert stats.json()["byStatus"] == {"issued": 1, "draft": 2}

        assert (await client.get(f"/credentials/institution/{wallet}")).status_code == 401

    async def test_admin_delete(self, client: AsyncClient):
        headers, _ = await _verified_institution(client, "REG-DEL")
        created = await client.post("/credentials", json=_credential_body(), headers=headers)
        credential_id = created.json()["credential"]["id"]

        forbidden = await client.delete(f"/credentials/{credential_id}", headers=headers)
        assert forbidden.status_code == 403

        admin_headers = await login_headers(client, "admin-reg-del@accredchain.test")
        deleted = await client.delete(f"/credentials/{credential_id}", headers=admin_headers)
        assert deleted.status_code == 200
        assert deleted.json() == {
            "success": True,
            "deleted": True,
            "resourceType": "credential",
            "resourceId": credential_id,
        }
        assert (await client.get(f"/credentials/{credential_id}")).status_code == 404


class TestVerifyEndpoints:
    async def test_not_found_is_404_and_logged(self, client: AsyncClient):
        response = await client.get("/verify/token/424242")
        assert response.status_code == 404
        assert response.json()["result"] == "not_found"
        assert response.json()["success"] is False

        history = await client.get("/verify/history/424242")
        assert history.json()["data"]["pagination"]["total"] == 1

    @pytest.mark.parametrize("path", ["/verify/token/0", "/verify/token/abc"])
    async def test_bad_token_id(self, client: AsyncClient, path):
        response = await client.get(path)
        assert response.status_code == 400

    async def test_batch(self, client: AsyncClient):
        headers, _ = await _verified_institution(client)
        for token_id in (1, 2):
            created = await client.post("/credentials", json=_credential_body(), headers=headers)
            await client.put(
                f"/credentials/{created.json()['credential']['id']}/issue",
                json={"tokenId": token_id, "transactionHash": f"0x{token_id}"},
                headers=headers,
            )

        response = await client.post("/verify/batch", json={"identifiers": [1, "nonexistent", 2]})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["summary"] == {"total": 3, "verified": 2, "failed": 1}
        assert [r["identifier"] for r in data["results"]] == [1, "nonexistent", 2]

        stats = await client.get("/verify/stats/overview")
        assert stats.json()["data"]["totalVerifications"] == 0

    async def test_batch_limits(self, client: AsyncClient):
        empty = await client.post("/verify/batch", json={"identifiers": []})
        assert empty.status_code == 400

        too_many = await client.post(
            "/verify/batch", json={"identifiers": list(range(1, config.BATCH_VERIFY_MAX + 2))}
        )
        assert too_many.status_code == 400
        assert too_many.json()["errors"][0]["field"] == "identifiers"

    async def test_stats_overview(self, client: AsyncClient):
        await client.get("/verify/token/1")
        await client.get("/verify/hash/QmNothing")
        response = await client.get("/verify/stats/overview")
        data = response.json()["data"]
        assert data["totalVerifications"] == 2
        assert data["todayVerifications"] == 2
        assert len(data["weeklyStats"]) == 7
        assert data["weeklyStats"][-1]["count"] == 2
        assert data["weeklyStats"][-1]["validCount"] == 0


class TestAdminEndpoints:
    async def test_deactivate_reactivate_delete(self, client: AsyncClient):
        student = await _register(client, "student@example.com")
        student_id = student["user"]["id"]
        student_headers = {"Authorization": f"Bearer {student['token']}"}

        admin = await make_admin()
        admin_headers = await login_headers(client, "admin@accredchain.test")

        forbidden = await client.post(
            f"/admin/identities/{student_id}/deactivate", headers=student_headers
        )
        assert forbidden.status_code == 403

        deactivated = await client.post(
            f"/admin/identities/{student_id}/deactivate", headers=admin_headers
        )
        assert deactivated.json()["isActive"] is False
        assert (await client.get("/auth/me", headers=student_headers)).status_code == 401

        reactivated = await client.post(
            f"/admin/identities/{student_id}/reactivate", headers=admin_headers
        )
        assert reactivated.json()["isActive"] is True

        self_delete = await client.delete(
            f"/admin/identities/{admin.identity_id}", headers=admin_headers
        )
        assert self_delete.status_code == 409

        deleted = await client.delete(f"/admin/identities/{student_id}", headers=admin_headers)
        assert deleted.json()["deleted"] is True
        missing = await client.delete(f"/admin/identities/{student_id}", headers=admin_headers)
        assert missing.status_code == 404
