"""Authentication API endpoints.

Two login paths issue the same bearer token:
1. Email/password - ``/auth/register`` and ``/auth/login``
2. Wallet signature - ``/auth/wallet/nonce`` then ``/auth/wallet/verify``

Password and signature failures count toward the login rate limit, kept
per client IP and account (email or wallet).
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from accredchain.api.deps import get_client_ip, require_auth
from accredchain.api.models import (
    IdentityResponse,
    InstitutionResponse,
    LoginRequest,
    LoginResponse,
    MeResponse,
    NonceRequest,
    NonceResponse,
    RegisterRequest,
    SuccessResponse,
    WalletVerifyRequest,
)
from accredchain.audit import get_audit_logger
from accredchain.auth.context import AuthContext
from accredchain.auth.rate_limit import get_rate_limiter
from accredchain.auth.service import WalletProfile, get_auth_service, get_identity_service
from accredchain.exceptions import NotFound, Unauthorized
from accredchain.institutions.service import get_institution_service

log = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


async def _rate_limited(
    request: Request, client_ip: str, account: str, method: str
) -> JSONResponse | None:
    """Return a 429 response if this client is locked out of ``account``."""
    remaining = await get_rate_limiter().retry_after(client_ip, account)
    if remaining == 0:
        return None

    get_audit_logger().log_access(
        action="auth.login",
        principal_id="anonymous",
        status="denied",
        details={"reason": "rate_limited", "ip": client_ip, "method": method},
        request=request,
    )
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error": "rate_limited",
            "message": "Too many failed login attempts. Please try again later.",
            "retryAfter": remaining,
        },
        headers={"Retry-After": str(remaining)},
    )


def _login_response(result) -> LoginResponse:
    return LoginResponse(
        token=result.token,
        expires_at=result.expires_at,
        user=IdentityResponse.from_identity(result.identity),
        is_new_user=result.is_new,
    )


@router.post("/register", response_model=LoginResponse, status_code=201)
async def register(request: Request, body: RegisterRequest) -> LoginResponse:
    """Create a password account and return a session token.

    The ``admin`` role cannot be self-assigned.
    """
    result = await get_auth_service().register(
        email=body.email,
        password=body.password,
        name=body.name,
        wallet_address=body.wallet_address,
        role=body.role,
    )
    get_audit_logger().log_access(
        action="auth.register",
        principal_id=result.identity.id,
        details={"role": result.identity.role.value, "ip": get_client_ip(request)},
        request=request,
    )
    return _login_response(result)


@router.post("/login", response_model=LoginResponse)
async def login(request: Request, body: LoginRequest) -> LoginResponse | JSONResponse:
    """Exchange email/password for a session token. Rate limited per IP and email."""
    audit = get_audit_logger()
    rate_limiter = get_rate_limiter()
    client_ip = get_client_ip(request)

    if (limited := await _rate_limited(request, client_ip, body.email, "password")) is not None:
        return limited

    try:
        result = await get_auth_service().login_password(body.email, body.password)
    except Unauthorized as e:
        await rate_limiter.record_failure(client_ip, body.email)
        audit.log_auth_failure(reason=e.message, method="password", request=request)
        raise

    await rate_limiter.record_success(client_ip, body.email)
    audit.log_auth_success(principal_id=result.identity.id, method="password", request=request)
    log.info(f"Login successful for {result.identity.id} from {client_ip}")
    return _login_response(result)


@router.post("/wallet/nonce", response_model=NonceResponse)
async def wallet_nonce(body: NonceRequest) -> NonceResponse:
    """Issue a fresh challenge nonce for a wallet, invalidating any prior one."""
    nonce, message = await get_auth_service().request_wallet_challenge(body.wallet_address)
    return NonceResponse(nonce=nonce, message=message)


@router.post("/wallet/verify", response_model=LoginResponse)
async def wallet_verify(request: Request, body: WalletVerifyRequest) -> LoginResponse | JSONResponse:
    """Verify a signed challenge and return a session token.

    First-time wallets must include ``name`` and ``email``.
    """
    audit = get_audit_logger()
    rate_limiter = get_rate_limiter()
    client_ip = get_client_ip(request)

    wallet = body.wallet_address
    if (limited := await _rate_limited(request, client_ip, wallet, "wallet")) is not None:
        return limited

    profile = None
    if body.name or body.email:
        profile = WalletProfile(name=body.name or "", email=body.email or "")

    try:
        result = await get_auth_service().verify_wallet_signature(
            body.wallet_address, body.signature, body.nonce, profile
        )
    except Unauthorized as e:
        await rate_limiter.record_failure(client_ip, wallet)
        audit.log_auth_failure(reason=e.message, method="wallet", request=request)
        raise

    await rate_limiter.record_success(client_ip, wallet)
    audit.log_auth_success(principal_id=result.identity.id, method="wallet", request=request)
    return _login_response(result)


@router.get("/me", response_model=MeResponse)
async def me(ctx: AuthContext = require_auth) -> MeResponse:
    """Current identity, plus its institution when it has one."""
    identity = await get_identity_service().require(ctx.identity_id)

    institution = None
    if identity.wallet_address:
        try:
            found = await get_institution_service().get_by_wallet(identity.wallet_address)
            institution = InstitutionResponse.from_institution(found)
        except NotFound:
            institution = None

    return MeResponse(user=IdentityResponse.from_identity(identity), institution=institution)


@router.post("/logout", response_model=SuccessResponse)
async def logout(request: Request, ctx: AuthContext = require_auth) -> SuccessResponse:
    """End the current session; its token stops working immediately."""
    await get_auth_service().logout(ctx)
    get_audit_logger().log_access(
        action="auth.logout",
        principal_id=ctx.principal,
        request=request,
    )
    return SuccessResponse(message="Logged out successfully")
