"""Shopify order webhooks.

Both endpoints acknowledge as soon as the payload is verified and parsed.
Referral processing runs afterwards as a background task and its failures
are only logged.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from pydantic import ValidationError

from referral_engine.api.deps import get_pipeline
from referral_engine.api.security import verify_shopify_webhook
from referral_engine.logging_config import get_logger
from referral_engine.referral.pipeline import ConversionPipeline
from referral_engine.referral.schemas import OrderEvent

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def parse_order(body: bytes, topic: str) -> OrderEvent:
    """Validate a webhook body into an order event.

    Raises:
        HTTPException: 400 if the payload is not a usable order
    """
    try:
        return OrderEvent.model_validate_json(body)
    except ValidationError as e:
        logger.warning("shopify_webhook_invalid_payload", topic=topic, errors=e.error_count())
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid order payload",
        )


@router.post("/orders-create")
async def orders_create(
    background_tasks: BackgroundTasks,
    body: bytes = Depends(verify_shopify_webhook),
    pipeline: ConversionPipeline = Depends(get_pipeline),
):
    """Attribute a new order to a referral code."""
    order = parse_order(body, "orders/create")
    background_tasks.add_task(pipeline.handle_order_created, order)

    logger.info("shopify_webhook_received", topic="orders/create", order_id=order.id)
    return {"received": True}


@router.post("/orders-paid")
async def orders_paid(
    background_tasks: BackgroundTasks,
    body: bytes = Depends(verify_shopify_webhook),
    pipeline: ConversionPipeline = Depends(get_pipeline),
):
    """Convert the pending referral of a paid order."""
    order = parse_order(body, "orders/paid")
    background_tasks.add_task(pipeline.handle_order_paid, order)

    logger.info("shopify_webhook_received", topic="orders/paid", order_id=order.id)
    return {"received": True}
