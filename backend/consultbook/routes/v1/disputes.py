# backend/consultbook/routes/v1/disputes.py
"""
Dispute routes - API v1

Endpoints:
    POST / - Raise a dispute on a booking
    GET /mine - Disputes raised by the caller
    GET / - All disputes (moderators)
    GET /{dispute_id} - Dispute details
    POST /{dispute_id}/resolve - Resolve a dispute (moderators)
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Path, Query, status

from ...api.dependencies import (
    get_current_principal,
    get_dispute_service,
    require_dispute_resolver,
)
from ...core.constants import DEFAULT_QUERY_LIMIT
from ...models.dispute import DisputeStatus
from ...schemas.dispute import (
    DisputeCreate,
    DisputeListResponse,
    DisputeResolve,
    DisputeResponse,
)
from ...services.directory_service import Principal
from ...services.dispute_service import DisputeService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["disputes-v1"])


@router.post("", response_model=DisputeResponse, status_code=status.HTTP_201_CREATED)
async def raise_dispute(
    payload: DisputeCreate = Body(...),
    principal: Principal = Depends(get_current_principal),
    dispute_service: DisputeService = Depends(get_dispute_service),
) -> DisputeResponse:
    dispute = await asyncio.to_thread(
        dispute_service.raise_dispute,
        principal.id,
        payload.booking_id,
        payload.description,
        payload.requested_refund_amount,
        payload.metadata,
        payload.type,
    )
    return DisputeResponse.model_validate(dispute)


@router.get("/mine", response_model=DisputeListResponse)
async def list_my_disputes(
    principal: Principal = Depends(get_current_principal),
    dispute_service: DisputeService = Depends(get_dispute_service),
) -> DisputeListResponse:
    disputes = await asyncio.to_thread(dispute_service.list_user_disputes, principal.id)
    items = [DisputeResponse.model_validate(d) for d in disputes]
    return DisputeListResponse(items=items, total=len(items))


@router.get("", response_model=DisputeListResponse)
async def list_disputes(
    status_filter: Optional[DisputeStatus] = Query(None, alias="status"),
    limit: int = Query(DEFAULT_QUERY_LIMIT, ge=1, le=DEFAULT_QUERY_LIMIT),
    offset: int = Query(0, ge=0),
    _: Principal = Depends(require_dispute_resolver),
    dispute_service: DisputeService = Depends(get_dispute_service),
) -> DisputeListResponse:
    disputes = await asyncio.to_thread(
        dispute_service.list_disputes, status_filter, limit=limit, offset=offset
    )
    items = [DisputeResponse.model_validate(d) for d in disputes]
    return DisputeListResponse(items=items, total=len(items))


@router.get("/{dispute_id}", response_model=DisputeResponse)
async def get_dispute(
    dispute_id: str = Path(..., description="Dispute ULID"),
    principal: Principal = Depends(get_current_principal),
    dispute_service: DisputeService = Depends(get_dispute_service),
) -> DisputeResponse:
    requester = None if principal.role.may_resolve_disputes else principal.id
    dispute = await asyncio.to_thread(dispute_service.get_dispute, dispute_id, requester)
    return DisputeResponse.model_validate(dispute)


@router.post(
    "/{dispute_id}/resolve",
    response_model=DisputeResponse,
    responses={
        409: {"description": "Approved reschedule conflicts with another booking"},
        422: {"description": "Dispute already resolved or missing metadata"},
    },
)
async def resolve_dispute(
    dispute_id: str = Path(..., description="Dispute ULID"),
    payload: DisputeResolve = Body(...),
    principal: Principal = Depends(require_dispute_resolver),
    dispute_service: DisputeService = Depends(get_dispute_service),
) -> DisputeResponse:
    dispute = await asyncio.to_thread(
        dispute_service.resolve,
        dispute_id,
        principal.id,
        payload.approved,
        payload.refund_amount,
        payload.note,
    )
    return DisputeResponse.model_validate(dispute)
