import hmac
from typing import Optional
from fastapi import APIRouter, Depends, Header, HTTPException, status
from app.api.deps import get_payment_intent_service, get_reconciler
from app.core.auth import get_current_user
from app.core.config import settings
from app.models.user import User
from app.schemas.payment import (
    PaymentCheckResponse,
    PaymentDetailsResponse,
    PaymentIntentRequest,
    PaymentIntentResponse,
    PaymentWebhookRequest,
    PaymentWebhookResponse,
)
from app.services.payment_intent_service import PaymentIntentService
from app.services.reconciler import ChainReconciler

router = APIRouter()

@router.post("/intent", response_model=PaymentIntentResponse, status_code=status.HTTP_201_CREATED)
async def create_payment_intent(
    request: PaymentIntentRequest,
    current_user: User = Depends(get_current_user),
    service: PaymentIntentService = Depends(get_payment_intent_service)
):
    """Create a payment request for the caller's share of a bill"""
    issued = await service.create_intent(request.bill_id, current_user, request.participant_id)
    return PaymentIntentResponse(
        payment_id=issued.intent.id,
        provider=issued.intent.provider,
        deeplink=issued.intent.deeplink,
        expires_at=issued.expires_at
    )

@router.get("/{payment_id}", response_model=PaymentDetailsResponse)
async def get_payment(
    payment_id: str,
    current_user: User = Depends(get_current_user),
    service: PaymentIntentService = Depends(get_payment_intent_service)
):
    """Get a payment with its participant and bill"""
    intent, bill, participant = await service.get_intent_details(payment_id, current_user)
    return PaymentDetailsResponse.build(intent, bill, participant)

@router.post("/{payment_id}/check", response_model=PaymentCheckResponse)
async def check_payment(
    payment_id: str,
    current_user: User = Depends(get_current_user),
    service: PaymentIntentService = Depends(get_payment_intent_service),
    reconciler: ChainReconciler = Depends(get_reconciler)
):
    """Check the chain for this payment right now"""
    await service.get_intent_details(payment_id, current_user)
    confirmed = await reconciler.reconcile_one(payment_id)
    intent, _, _ = await service.get_intent_details(payment_id, current_user)
    return PaymentCheckResponse(confirmed=confirmed, status=intent.status)

@router.post("/webhook/{provider}", response_model=PaymentWebhookResponse)
async def payment_webhook(
    provider: str,
    request: PaymentWebhookRequest,
    reconciler: ChainReconciler = Depends(get_reconciler),
    x_webhook_secret: Optional[str] = Header(default=None)
):
    """Provider callback with a payment's new status"""
    if settings.WEBHOOK_SECRET and not hmac.compare_digest(
        x_webhook_secret or "", settings.WEBHOOK_SECRET
    ):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")

    result = await reconciler.apply_provider_status(provider, request.external_id, request.status)
    return PaymentWebhookResponse(
        success=True,
        message="Payment status updated successfully" if result.changed else "Payment status unchanged",
        changed=result.changed,
        status=result.intent.status
    )
