"""Admin portal endpoints.

Every route requires the ``X-API-Key`` header.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from referral_engine.api.deps import get_admin_service
from referral_engine.api.security import require_admin_key
from referral_engine.logging_config import get_logger
from referral_engine.referral.admin import AdminService
from referral_engine.referral.errors import InvalidStatusError, NotEligibleError, NotFoundError
from referral_engine.referral.schemas import SettingsUpdate

logger = get_logger(__name__)

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin_key)],
)


# ─── Request/Response Models ─────────────────────────────────────────────────

class UpdateStatusRequest(BaseModel):
    """Request to force a referral status."""
    status: str


class QueueResultResponse(BaseModel):
    processed: int
    total: int


# ─── Endpoints ───────────────────────────────────────────────────────────────

@router.get("/summary")
async def get_summary(service: AdminService = Depends(get_admin_service)):
    """Referral counts per status and open fraud flags."""
    return service.summary()


@router.get("/referrals")
async def list_referrals(
    status_filter: str | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None, max_length=100),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    service: AdminService = Depends(get_admin_service),
):
    """List referrals, newest first.

    ``search`` matches referrer name or email and referee email.
    """
    return service.list_referrals(status=status_filter, search=search, page=page, limit=limit)


@router.patch("/referrals/{referral_id}/status")
async def update_referral_status(
    referral_id: int,
    request: UpdateStatusRequest,
    service: AdminService = Depends(get_admin_service),
):
    """Force a referral to any status in the vocabulary."""
    try:
        return service.update_status(referral_id, request.status)
    except InvalidStatusError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


@router.post("/referrals/{referral_id}/reward")
async def issue_referral_reward(
    referral_id: int,
    service: AdminService = Depends(get_admin_service),
):
    """Issue rewards for a converted referral without waiting for the cooldown."""
    try:
        rewards = await service.issue_reward(referral_id)
    except NotEligibleError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except Exception as e:
        logger.exception("admin_reward_failed", referral_id=referral_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Reward issuance failed: {e}",
        )

    return {"success": True, "rewards": rewards}


@router.post("/rewards/process-queue", response_model=QueueResultResponse)
async def process_reward_queue(service: AdminService = Depends(get_admin_service)):
    """Run the cooldown reward queue now."""
    try:
        result = await service.process_queue()
    except Exception as e:
        logger.exception("admin_process_queue_failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Queue processing failed: {e}",
        )

    return QueueResultResponse(processed=result.processed, total=result.total)


@router.get("/settings")
async def get_settings(service: AdminService = Depends(get_admin_service)):
    """Current program settings."""
    return service.get_settings()


@router.put("/settings")
async def update_settings(
    request: SettingsUpdate,
    service: AdminService = Depends(get_admin_service),
):
    """Partially update program settings. Omitted fields are left as they are."""
    return service.update_settings(request)


@router.get("/fraud-flags")
async def list_fraud_flags(service: AdminService = Depends(get_admin_service)):
    """Unresolved fraud flags, newest first."""
    return {"flags": service.list_open_flags()}


@router.post("/fraud-flags/{flag_id}/resolve")
async def resolve_fraud_flag(
    flag_id: int,
    service: AdminService = Depends(get_admin_service),
):
    """Mark a fraud flag as reviewed."""
    try:
        return service.resolve_flag(flag_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
