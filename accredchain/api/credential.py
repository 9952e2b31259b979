"""Credential lifecycle endpoints.

Mutations require a bearer token whose wallet owns a verified, active
institution; reads by id or token id are public.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request

from accredchain.api.deps import require_auth
from accredchain.api.models import (
    CredentialEnvelope,
    CredentialListResponse,
    CredentialResponse,
    CredentialStatsResponse,
    DeleteResponse,
    IssueRequest,
    PaginationResponse,
    ReasonRequest,
)
from accredchain.audit import get_audit_logger
from accredchain.auth.context import AuthContext
from accredchain.credentials.payload import CredentialPayload
from accredchain.credentials.service import get_credential_service
from accredchain.exceptions import Forbidden, Unauthorized
from accredchain.models import Credential, CredentialStatus

log = logging.getLogger(__name__)
router = APIRouter(prefix="/credentials", tags=["credentials"])


async def _detail(credential: Credential) -> CredentialEnvelope:
    institution = await get_credential_service().institution_for(credential)
    return CredentialEnvelope(
        credential=CredentialResponse.from_credential(credential, institution)
    )


def _audit_denied(request: Request, ctx: AuthContext | None, action: str, resource: str, exc: Exception) -> None:
    get_audit_logger().log_access(
        action=action,
        principal_id=ctx.principal if ctx else "anonymous",
        resource=resource,
        status="denied",
        details={"reason": str(exc)},
        request=request,
    )


@router.post("", response_model=CredentialEnvelope, status_code=201)
async def create_credential(
    body: CredentialPayload,
    request: Request,
    ctx: AuthContext = require_auth,
) -> CredentialEnvelope:
    """Create a credential for the caller's verified institution."""
    try:
        credential = await get_credential_service().create(ctx, body)
    except (Unauthorized, Forbidden) as e:
        _audit_denied(request, ctx, "credential.create", "credential:new", e)
        raise

    get_audit_logger().log_access(
        action="credential.create",
        principal_id=ctx.principal,
        resource=f"credential:{credential.id}",
        details={"token_id": credential.token_id, "status": credential.status.value},
        request=request,
    )
    return await _detail(credential)


@router.put("/{credential_id}/issue", response_model=CredentialEnvelope)
async def issue_credential(
    credential_id: str,
    body: IssueRequest,
    request: Request,
    ctx: AuthContext = require_auth,
) -> CredentialEnvelope:
    """Record the on-chain mint and move the credential to ``issued``."""
    try:
        credential = await get_credential_service().record_issuance(
            ctx, credential_id, body.token_id, body.transaction_hash, body.block_number
        )
    except (Unauthorized, Forbidden) as e:
        _audit_denied(request, ctx, "credential.issue", f"credential:{credential_id}", e)
        raise

    get_audit_logger().log_access(
        action="credential.issue",
        principal_id=ctx.principal,
        resource=f"credential:{credential.id}",
        details={"token_id": credential.token_id, "tx": credential.transaction_hash},
        request=request,
    )
    return await _detail(credential)


@router.put("/{credential_id}/revoke", response_model=CredentialEnvelope)
async def revoke_credential(
    credential_id: str,
    body: ReasonRequest,
    request: Request,
    ctx: AuthContext = require_auth,
) -> CredentialEnvelope:
    """Revoke an issued credential. Only the issuing wallet may revoke."""
    try:
        credential = await get_credential_service().revoke(ctx, credential_id, body.reason)
    except (Unauthorized, Forbidden) as e:
        _audit_denied(request, ctx, "credential.revoke", f"credential:{credential_id}", e)
        raise

    get_audit_logger().log_access(
        action="credential.revoke",
        principal_id=ctx.principal,
        resource=f"credential:{credential.id}",
        details={"reason": credential.revocation_reason},
        request=request,
    )
    return await _detail(credential)


@router.get("/student/{wallet}", response_model=CredentialListResponse)
async def list_student_credentials(wallet: str) -> CredentialListResponse:
    """Issued and revoked credentials held by a wallet, newest first."""
    items = await get_credential_service().list_for_student(wallet)
    return CredentialListResponse(
        credentials=[CredentialResponse.from_credential(c) for c in items]
    )


@router.get("/institution/{wallet}", response_model=CredentialListResponse)
async def list_institution_credentials(
    wallet: str,
    status: Optional[CredentialStatus] = Query(None),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    ctx: AuthContext = require_auth,
) -> CredentialListResponse:
    """Credentials issued by a wallet. Owner or admin only."""
    result = await get_credential_service().list_for_institution(
        ctx, wallet, status=status, page=page, limit=limit
    )
    return CredentialListResponse(
        credentials=[CredentialResponse.from_credential(c) for c in result.items],
        pagination=PaginationResponse.from_page(result),
    )


@router.get("/stats/{wallet}", response_model=CredentialStatsResponse)
async def credential_stats(wallet: str, ctx: AuthContext = require_auth) -> CredentialStatsResponse:
    stats = await get_credential_service().stats(ctx, wallet)
    return CredentialStatsResponse(
        total=stats.total,
        by_status=stats.by_status,
        expired=stats.expired,
        by_type=stats.by_type,
    )


@router.get("/token/{token_id}", response_model=CredentialEnvelope)
async def get_by_token(token_id: int) -> CredentialEnvelope:
    return await _detail(await get_credential_service().get_by_token(token_id))


@router.get("/{credential_id}", response_model=CredentialEnvelope)
async def get_credential(credential_id: str) -> CredentialEnvelope:
    return await _detail(await get_credential_service().get_by_id(credential_id))


@router.delete("/{credential_id}", response_model=DeleteResponse)
async def delete_credential(
    credential_id: str,
    request: Request,
    ctx: AuthContext = require_auth,
) -> DeleteResponse:
    """Hard-delete a credential record (admin only)."""
    await get_credential_service().delete(ctx, credential_id)
    get_audit_logger().log_access(
        action="credential.delete",
        principal_id=ctx.principal,
        resource=f"credential:{credential_id}",
        request=request,
    )
    return DeleteResponse(deleted=True, resource_type="credential", resource_id=credential_id)
