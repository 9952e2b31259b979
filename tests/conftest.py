"""Pytest fixtures for AccredChain tests."""
import importlib
import tempfile
from datetime import date
from pathlib import Path
from typing import AsyncGenerator

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from httpx import ASGITransport, AsyncClient

from accredchain import config
from accredchain.audit.logger import reset_audit_logger
from accredchain.auth.context import AuthContext
from accredchain.auth.rate_limit import reset_rate_limiter
from accredchain.auth.service import get_auth_service, get_identity_service, reset_auth_services
from accredchain.auth.wallet import challenge_message
from accredchain.credentials.payload import CredentialPayload
from accredchain.credentials.service import get_credential_service, reset_credential_service
from accredchain.db.session import reset_engine
from accredchain.institutions.payload import InstitutionRegistration
from accredchain.institutions.service import get_institution_service, reset_institution_service
from accredchain.models import Role
from accredchain.store import get_storage, reset_storage
from accredchain.verification.engine import get_verification_engine, reset_verification_engine

TEST_PASSWORD = "correct-horse-battery"


def reset_singletons() -> None:
    reset_verification_engine()
    reset_credential_service()
    reset_institution_service()
    reset_auth_services()
    reset_rate_limiter()
    reset_audit_logger()
    reset_storage()
    reset_engine()


# =============================================================================
# Environment / Storage Fixtures
# =============================================================================

@pytest.fixture
def temp_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


def _configure(monkeypatch, temp_dir: Path, backend: str) -> None:
    monkeypatch.setenv("ACCRED_DATA_DIR", str(temp_dir))
    monkeypatch.setenv("ACCRED_STORE_BACKEND", backend)
    monkeypatch.setenv("ACCRED_DATABASE_URL", f"sqlite:///{temp_dir}/accredchain-test.db")
    monkeypatch.setenv("ACCRED_ASSIGN_TOKEN_IDS", "false")
    monkeypatch.setenv("ACCRED_BCRYPT_COST", "4")
    monkeypatch.setenv("ACCRED_JWT_SECRET", "test-secret")
    importlib.reload(config)
    reset_singletons()


@pytest.fixture(params=["sql", "json"])
def backend(request) -> str:
    """Every test using storage runs once per backend."""
    return request.param


@pytest.fixture
async def storage(temp_dir: Path, backend: str, monkeypatch):
    """Isolated storage bundle for one backend."""
    _configure(monkeypatch, temp_dir, backend)
    bundle = get_storage()
    yield bundle
    await bundle.close()
    reset_singletons()


@pytest.fixture
async def json_storage(temp_dir: Path, monkeypatch):
    """JSON-file storage only."""
    _configure(monkeypatch, temp_dir, "json")
    bundle = get_storage()
    yield bundle
    await bundle.close()
    reset_singletons()


# =============================================================================
# Service Fixtures
# =============================================================================

@pytest.fixture
def identities(storage):
    return get_identity_service()


@pytest.fixture
def auth_service(storage):
    return get_auth_service()


@pytest.fixture
def institutions(storage):
    return get_institution_service()


@pytest.fixture
def credentials(storage):
    return get_credential_service()


@pytest.fixture
def engine(storage):
    return get_verification_engine()


# =============================================================================
# Wallet Helpers
# =============================================================================

def new_wallet():
    """A fresh local Ethereum account."""
    return Account.create()


def sign_challenge(account, nonce: str) -> str:
    """personal_sign the login challenge the way a browser wallet would."""
    signed = Account.sign_message(
        encode_defunct(text=challenge_message(nonce)), private_key=account.key
    )
    return "0x" + bytes(signed.signature).hex()


# =============================================================================
# Actor Helpers
# =============================================================================

def ctx_for(identity) -> AuthContext:
    return AuthContext(
        identity_id=identity.id,
        role=identity.role,
        wallet_address=identity.wallet_address,
    )


async def make_admin(email: str = "admin@accredchain.test") -> AuthContext:
    identity = await get_identity_service().create_identity(
        email=email,
        password=TEST_PASSWORD,
        wallet_address=None,
        name="Admin",
        role=Role.ADMIN,
    )
    return ctx_for(identity)


async def make_institution(
    name: str = "Test University",
    registration_number: str = "REG-001",
    verified: bool = True,
    admin: AuthContext | None = None,
):
    """Register an institution for a fresh wallet; optionally approve it.

    Returns ``(ctx, institution, account)``.
    """
    account = new_wallet()
    identity = await get_identity_service().create_identity(
        email=f"{registration_number.lower()}@accredchain.test",
        password=TEST_PASSWORD,
        wallet_address=account.address,
        name=name,
        role=Role.INSTITUTION,
    )
    ctx = ctx_for(identity)
    service = get_institution_service()
    institution = await service.register(
        ctx,
        InstitutionRegistration(
            name=name,
            registration_number=registration_number,
            country="Kenya",
            email=f"registrar@{registration_number.lower()}.test",
        ),
    )
    if verified:
        admin = admin or await make_admin(f"admin-{registration_number.lower()}@accredchain.test")
        await service.request_verification(ctx, institution.id)
        institution = await service.approve(admin, institution.id)
    return ctx, institution, account


def credential_payload(**overrides) -> CredentialPayload:
    data = {
        "studentWallet": "0x" + "aa" * 20,
        "studentName": "Ada Lovelace",
        "studentId": "S-1001",
        "credentialType": "degree",
        "courseName": "BSc Mathematics",
        "issueDate": date(2024, 6, 1).isoformat(),
    }
    data.update(overrides)
    return CredentialPayload.model_validate(data)


# =============================================================================
# API Client Fixture
# =============================================================================

@pytest.fixture
async def client(temp_dir: Path, monkeypatch) -> AsyncGenerator[AsyncClient, None]:
    """Create test client for API testing with isolated temp storage.

    Uses the JSON backend; ASGITransport does not run the lifespan, so
    storage is created lazily on first request.
    """
    _configure(monkeypatch, temp_dir, "json")

    import accredchain.main as main_module
    importlib.reload(main_module)

    async with AsyncClient(
        transport=ASGITransport(app=main_module.app),
        base_url="http://test",
    ) as async_client:
        yield async_client

    reset_singletons()


async def login_headers(client: AsyncClient, email: str, password: str = TEST_PASSWORD) -> dict:
    response = await client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}
