"""Public verification endpoints.

The identifier kind is explicit in the path: ``/verify/token/{id}`` or
``/verify/hash/{hash}``. A digit-only hash is still looked up as a hash.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from accredchain.api.deps import get_client_ip, optional_auth
from accredchain.api.models import BatchVerifyRequest
from accredchain.auth.context import AuthContext
from accredchain.models import VerificationOutcome
from accredchain.verification.engine import Identifier, VerifierContext, get_verification_engine
from accredchain.verification.projections import (
    batch_item_projection,
    log_entry_projection,
    result_envelope,
    stats_projection,
)

log = logging.getLogger(__name__)
router = APIRouter(prefix="/verify", tags=["verify"])


def _verifier(
    request: Request,
    ctx: Optional[AuthContext],
    organization: Optional[str],
    purpose: Optional[str],
) -> VerifierContext:
    return VerifierContext(
        identity_id=ctx.identity_id if ctx else None,
        wallet_address=ctx.wallet_address if ctx else None,
        organization=organization,
        purpose=purpose,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )


async def _verify(identifier: Identifier, verifier: VerifierContext) -> JSONResponse:
    result = await get_verification_engine().verify(identifier, verifier)
    status_code = 404 if result.outcome == VerificationOutcome.NOT_FOUND else 200
    return JSONResponse(status_code=status_code, content=result_envelope(result))


@router.get("/token/{token_id}")
async def verify_token(
    token_id: int,
    request: Request,
    organization: Optional[str] = Query(None, max_length=255),
    purpose: Optional[str] = Query(None, max_length=255),
    ctx: Optional[AuthContext] = optional_auth,
) -> JSONResponse:
    """Verify a credential by its on-chain token id. Every call is logged."""
    return await _verify(Identifier.token(token_id), _verifier(request, ctx, organization, purpose))


@router.get("/hash/{content_hash}")
async def verify_hash(
    content_hash: str,
    request: Request,
    organization: Optional[str] = Query(None, max_length=255),
    purpose: Optional[str] = Query(None, max_length=255),
    ctx: Optional[AuthContext] = optional_auth,
) -> JSONResponse:
    """Verify a credential by document or metadata hash. Every call is logged."""
    return await _verify(Identifier.hash(content_hash), _verifier(request, ctx, organization, purpose))


@router.post("/batch")
async def verify_batch(body: BatchVerifyRequest) -> dict:
    """Status check of up to 50 identifiers. Not written to the log."""
    result = await get_verification_engine().verify_batch(body.identifiers)
    return {
        "success": True,
        "data": {
            "results": [batch_item_projection(item) for item in result.items],
            "summary": result.summary,
        },
    }


@router.get("/history/{token_id}")
async def verification_history(
    token_id: int,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
) -> dict:
    """Verification log for a token id, newest first, without requester IPs."""
    result = await get_verification_engine().history(token_id, page=page, limit=limit)
    return {
        "success": True,
        "data": {
            "logs": [log_entry_projection(entry) for entry in result.items],
            "pagination": {
                "page": result.page,
                "limit": result.limit,
                "total": result.total,
                "pages": result.pages,
            },
        },
    }


@router.get("/stats/overview")
async def verification_stats() -> dict:
    stats = await get_verification_engine().stats_overview()
    return {"success": True, "data": stats_projection(stats)}
