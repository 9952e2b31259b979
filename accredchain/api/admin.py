"""Identity administration endpoints (admin only)."""

import logging

from fastapi import APIRouter, Request

from accredchain.api.deps import require_auth
from accredchain.api.models import DeleteResponse, IdentityResponse
from accredchain.audit import get_audit_logger
from accredchain.auth.context import AuthContext
from accredchain.auth.roles import ensure_admin
from accredchain.auth.service import get_identity_service
from accredchain.exceptions import Conflict

log = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


async def _set_active(
    request: Request, ctx: AuthContext, identity_id: str, active: bool
) -> IdentityResponse:
    ensure_admin(ctx)
    if identity_id == ctx.identity_id and not active:
        raise Conflict("Administrators cannot deactivate their own account")

    identity = await get_identity_service().set_active(identity_id, active)
    get_audit_logger().log_access(
        action="identity.reactivate" if active else "identity.deactivate",
        principal_id=ctx.principal,
        resource=f"identity:{identity_id}",
        request=request,
    )
    return IdentityResponse.from_identity(identity)


@router.post("/identities/{identity_id}/deactivate", response_model=IdentityResponse)
async def deactivate_identity(
    identity_id: str,
    request: Request,
    ctx: AuthContext = require_auth,
) -> IdentityResponse:
    """Soft-deactivate an identity and end all of its sessions."""
    return await _set_active(request, ctx, identity_id, active=False)


@router.post("/identities/{identity_id}/reactivate", response_model=IdentityResponse)
async def reactivate_identity(
    identity_id: str,
    request: Request,
    ctx: AuthContext = require_auth,
) -> IdentityResponse:
    return await _set_active(request, ctx, identity_id, active=True)


@router.delete("/identities/{identity_id}", response_model=DeleteResponse)
async def delete_identity(
    identity_id: str,
    request: Request,
    ctx: AuthContext = require_auth,
) -> DeleteResponse:
    """Hard-delete an identity and its sessions."""
    ensure_admin(ctx)
    if identity_id == ctx.identity_id:
        raise Conflict("Administrators cannot delete their own account")

    await get_identity_service().delete_identity(identity_id)
    get_audit_logger().log_access(
        action="identity.delete",
        principal_id=ctx.principal,
        resource=f"identity:{identity_id}",
        request=request,
    )
    return DeleteResponse(deleted=True, resource_type="identity", resource_id=identity_id)
