from typing import List
from fastapi import APIRouter, Depends
from app.api.deps import get_cleanup_service
from app.core.auth import require_admin
from app.models.user import User
from app.schemas.payment import CleanupResponse, ForceDeleteResponse, OpenPaymentResponse
from app.services.cleanup_service import PaymentCleanupService

router = APIRouter()

@router.get("/payments/open", response_model=List[OpenPaymentResponse])
async def list_open_payments(
    admin: User = Depends(require_admin),
    service: PaymentCleanupService = Depends(get_cleanup_service)
):
    """All payments still waiting for confirmation, newest first"""
    return [OpenPaymentResponse.model_validate(p) for p in await service.list_open()]

@router.get("/payments/stale", response_model=List[OpenPaymentResponse])
async def list_stale_payments(
    admin: User = Depends(require_admin),
    service: PaymentCleanupService = Depends(get_cleanup_service)
):
    """Open payments older than the stale threshold"""
    return [OpenPaymentResponse.model_validate(p) for p in await service.list_stale()]

@router.post("/payments/cleanup", response_model=CleanupResponse)
async def cleanup_stale_payments(
    admin: User = Depends(require_admin),
    service: PaymentCleanupService = Depends(get_cleanup_service)
):
    """Delete stale open payments and reset their participants"""
    deleted = await service.sweep()
    return CleanupResponse(
        success=True,
        message=f"Deleted {len(deleted)} stale payments",
        deleted_payments=[OpenPaymentResponse.model_validate(p) for p in deleted]
    )

@router.delete("/payments/{payment_id}", response_model=ForceDeleteResponse)
async def force_delete_payment(
    payment_id: str,
    admin: User = Depends(require_admin),
    service: PaymentCleanupService = Depends(get_cleanup_service)
):
    """Delete one open payment and reset its participant"""
    intent = await service.force_delete(payment_id)
    return ForceDeleteResponse(
        success=True,
        message=f"Payment {payment_id} deleted",
        deleted_payment=OpenPaymentResponse.model_validate(intent)
    )
