# app/api/v1/quota.py
from fastapi import APIRouter, Depends

from app.api.dependencies import get_quota_service, get_session_payload
from app.core.logging import logger
from app.core.security import SessionPayload
from app.schemas.quota import (
    AccessLogOut,
    ConsumeRequest,
    ConsumeResponse,
    HistoryResponse,
    QuotaResponse,
    SubscriptionOut,
)
from app.services.quota_service import QuotaService

router = APIRouter()


@router.get("/current", response_model=QuotaResponse)
async def current_quota(
    payload: SessionPayload = Depends(get_session_payload),
    service: QuotaService = Depends(get_quota_service),
):
    """Current quota window, rolled over first when it has ended"""
    view = await service.get_quota(payload.user_id)
    lic = view.license
    return QuotaResponse(
        subscription=SubscriptionOut(
            id=lic.id,
            user_id=lic.user_id,
            product_code=lic.product_code,
            plan_tier=lic.plan_tier,
            status=lic.status,
            expires_at=lic.expires_at,
            created_at=lic.created_at,
            updated_at=lic.updated_at,
            quota_limit=view.quota_limit,
            quota_used=view.quota_used,
            quota_reset_at=view.period_end,
        )
    )


@router.post("/consume", response_model=ConsumeResponse)
async def consume_quota(
    request: ConsumeRequest,
    payload: SessionPayload = Depends(get_session_payload),
    service: QuotaService = Depends(get_quota_service),
):
    """Charge tokens used by a model call against the monthly budget"""
    remaining = await service.consume(
        payload.user_id,
        request.model,
        request.tokens,
        request_id=request.request_id,
    )
    logger.info(
        f"Consumed {request.tokens} tokens on {request.model}",
        extra={"user_id": payload.user_id, "request_id": request.request_id},
    )
    return ConsumeResponse(quota_remaining=remaining)


@router.get("/history", response_model=HistoryResponse)
async def quota_history(
    payload: SessionPayload = Depends(get_session_payload),
    service: QuotaService = Depends(get_quota_service),
):
    """Up to 100 consumption records, newest first"""
    logs = await service.history(payload.user_id)
    return HistoryResponse(logs=[AccessLogOut.model_validate(log) for log in logs])
