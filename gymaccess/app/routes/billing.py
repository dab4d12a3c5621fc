"""API routes exposing billing functionality."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request, status

from ..billing import SubscriberIdentity, VerificationError
from ..config import get_membership_config
from ..schemas.billing import (
    ActiveSubscriptionResponse,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    PlanListResponse,
    PlanResponse,
    PortalSessionRequest,
    PortalSessionResponse,
    SubscriptionResponse,
    WebhookAck,
)
from ..services.billing import get_billing_service, get_webhook_verifier
from ..tasks import get_task_runner
from .dependencies import get_current_subscriber

logger = logging.getLogger("billing")

router = APIRouter(prefix="/api/billing", tags=["billing"])


@router.post("/webhook", response_model=WebhookAck)
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature"),
) -> WebhookAck:
    raw_body = await request.body()
    try:
        event = get_webhook_verifier().verify(raw_body, stripe_signature)
    except VerificationError as exc:
        raise HTTPException(
            status_code=exc.status_code,
            detail={"error": exc.code, "message": exc.message},
        ) from exc

    service = get_billing_service()
    get_task_runner().schedule(
        background_tasks,
        f"billing_webhook:{event.event_type}",
        service.handle_webhook,
        event,
    )
    return WebhookAck(received=True)


@router.post("/checkout-session", response_model=CheckoutSessionResponse)
def create_checkout_session(
    payload: CheckoutSessionRequest,
    *,
    subscriber: SubscriberIdentity = Depends(get_current_subscriber),
) -> CheckoutSessionResponse:
    service = get_billing_service()
    base_url = get_membership_config().app_base_url
    try:
        session = service.create_checkout_session(
            subscriber=subscriber,
            price_id=payload.price_id,
            success_url=f"{base_url}/subscription?success=true",
            cancel_url=f"{base_url}/subscription?canceled=true",
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Checkout session creation failed", extra={"subscriber_id": subscriber.subscriber_id})
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Payment provider is unavailable",
        ) from exc
    return CheckoutSessionResponse.from_checkout(session)


@router.post("/portal-session", response_model=PortalSessionResponse)
def create_portal_session(
    payload: PortalSessionRequest,
    *,
    subscriber: SubscriberIdentity = Depends(get_current_subscriber),
) -> PortalSessionResponse:
    service = get_billing_service()
    return_url = payload.return_url or f"{get_membership_config().app_base_url}/subscription"
    try:
        session = service.create_portal_session(subscriber_id=subscriber.subscriber_id, return_url=return_url)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Portal session creation failed", extra={"subscriber_id": subscriber.subscriber_id})
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Payment provider is unavailable",
        ) from exc
    return PortalSessionResponse(url=str(session.get("url") or ""))


@router.get("/plans", response_model=PlanListResponse)
def list_plans(
    *,
    subscriber: SubscriberIdentity = Depends(get_current_subscriber),
) -> PlanListResponse:
    service = get_billing_service()
    try:
        offers = service.list_plans()
    except Exception as exc:
        logger.exception("Plan listing failed")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Payment provider is unavailable",
        ) from exc
    return PlanListResponse(plans=[PlanResponse.from_offer(offer) for offer in offers])


@router.get("/subscription", response_model=ActiveSubscriptionResponse)
def get_subscription(
    *,
    subscriber: SubscriberIdentity = Depends(get_current_subscriber),
) -> ActiveSubscriptionResponse:
    subscription = get_billing_service().get_active_subscription(subscriber.subscriber_id)
    if subscription is None:
        return ActiveSubscriptionResponse(subscription=None)
    return ActiveSubscriptionResponse(subscription=SubscriptionResponse.from_subscription(subscription))
