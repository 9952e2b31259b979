"""Institution registration and verification endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request

from accredchain.api.deps import require_auth
from accredchain.api.models import (
    InstitutionEnvelope,
    InstitutionListResponse,
    InstitutionResponse,
    PaginationResponse,
    ReasonRequest,
)
from accredchain.audit import get_audit_logger
from accredchain.auth.context import AuthContext
from accredchain.institutions.payload import InstitutionRegistration, InstitutionUpdate
from accredchain.institutions.service import get_institution_service
from accredchain.models import Institution, InstitutionType

log = logging.getLogger(__name__)
router = APIRouter(prefix="/institutions", tags=["institutions"])


def _envelope(institution: Institution) -> InstitutionEnvelope:
    return InstitutionEnvelope(institution=InstitutionResponse.from_institution(institution))


def _audit(request: Request, ctx: AuthContext, action: str, institution: Institution, **details) -> None:
    get_audit_logger().log_access(
        action=action,
        principal_id=ctx.principal,
        resource=f"institution:{institution.id}",
        details=details or None,
        request=request,
    )


@router.post("", response_model=InstitutionEnvelope, status_code=201)
async def register_institution(
    body: InstitutionRegistration,
    request: Request,
    ctx: AuthContext = require_auth,
) -> InstitutionEnvelope:
    """Register the caller's wallet as an institution (status ``pending``)."""
    institution = await get_institution_service().register(ctx, body)
    _audit(request, ctx, "institution.register", institution)
    return _envelope(institution)


@router.get("", response_model=InstitutionListResponse)
async def list_institutions(
    country: Optional[str] = Query(None),
    institution_type: Optional[InstitutionType] = Query(None, alias="type"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
) -> InstitutionListResponse:
    """Verified, active institutions sorted by name."""
    result = await get_institution_service().list_verified(
        country=country, institution_type=institution_type, page=page, limit=limit
    )
    return InstitutionListResponse(
        institutions=[InstitutionResponse.from_institution(i) for i in result.items],
        pagination=PaginationResponse.from_page(result),
    )


@router.get("/pending", response_model=InstitutionListResponse)
async def list_pending(ctx: AuthContext = require_auth) -> InstitutionListResponse:
    """Institutions awaiting review (admin only)."""
    items = await get_institution_service().list_pending(ctx)
    return InstitutionListResponse(
        institutions=[InstitutionResponse.from_institution(i) for i in items]
    )


@router.get("/wallet/{address}", response_model=InstitutionEnvelope)
async def get_by_wallet(address: str) -> InstitutionEnvelope:
    return _envelope(await get_institution_service().get_by_wallet(address))


@router.get("/{institution_id}", response_model=InstitutionEnvelope)
async def get_institution(institution_id: str) -> InstitutionEnvelope:
    return _envelope(await get_institution_service().get(institution_id))


@router.patch("/{institution_id}", response_model=InstitutionEnvelope)
async def update_institution(
    institution_id: str,
    body: InstitutionUpdate,
    request: Request,
    ctx: AuthContext = require_auth,
) -> InstitutionEnvelope:
    """Update contact/profile fields. Owner only."""
    institution = await get_institution_service().update_profile(ctx, institution_id, body)
    _audit(request, ctx, "institution.update", institution, fields=sorted(body.model_fields_set))
    return _envelope(institution)


@router.post("/{institution_id}/request-verification", response_model=InstitutionEnvelope)
async def request_verification(
    institution_id: str,
    request: Request,
    ctx: AuthContext = require_auth,
) -> InstitutionEnvelope:
    institution = await get_institution_service().request_verification(ctx, institution_id)
    _audit(request, ctx, "institution.request_verification", institution)
    return _envelope(institution)


@router.post("/{institution_id}/approve", response_model=InstitutionEnvelope)
async def approve_institution(
    institution_id: str,
    request: Request,
    ctx: AuthContext = require_auth,
) -> InstitutionEnvelope:
    institution = await get_institution_service().approve(ctx, institution_id)
    _audit(request, ctx, "institution.approve", institution)
    return _envelope(institution)


@router.post("/{institution_id}/reject", response_model=InstitutionEnvelope)
async def reject_institution(
    institution_id: str,
    body: ReasonRequest,
    request: Request,
    ctx: AuthContext = require_auth,
) -> InstitutionEnvelope:
    institution = await get_institution_service().reject(ctx, institution_id, body.reason)
    _audit(request, ctx, "institution.reject", institution, reason=body.reason)
    return _envelope(institution)


@router.post("/{institution_id}/deactivate", response_model=InstitutionEnvelope)
async def deactivate_institution(
    institution_id: str,
    request: Request,
    ctx: AuthContext = require_auth,
) -> InstitutionEnvelope:
    institution = await get_institution_service().set_active(ctx, institution_id, False)
    _audit(request, ctx, "institution.deactivate", institution)
    return _envelope(institution)


@router.post("/{institution_id}/reactivate", response_model=InstitutionEnvelope)
async def reactivate_institution(
    institution_id: str,
    request: Request,
    ctx: AuthContext = require_auth,
) -> InstitutionEnvelope:
    institution = await get_institution_service().set_active(ctx, institution_id, True)
    _audit(request, ctx, "institution.reactivate", institution)
    return _envelope(institution)
