from fastapi import APIRouter, Depends, status
from app.api.deps import get_bill_service
from app.core.auth import get_current_user
from app.models.user import User
from app.schemas.bill import BillCreate, BillCreateResponse, BillDetailsResponse
from app.services.bill_service import BillService, share_url

router = APIRouter()

@router.post("/", response_model=BillCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_bill(
    bill_in: BillCreate,
    current_user: User = Depends(get_current_user),
    service: BillService = Depends(get_bill_service)
):
    """Create a bill with its participants"""
    bill = await service.create_bill(bill_in, current_user)
    return BillCreateResponse(id=bill.id, share_url=share_url(bill.id))

@router.get("/{bill_id}", response_model=BillDetailsResponse)
async def get_bill(
    bill_id: str,
    current_user: User = Depends(get_current_user),
    service: BillService = Depends(get_bill_service)
):
    """Get bill details with payment summary"""
    bill = await service.get_bill(bill_id, current_user)
    return BillDetailsResponse.from_bill(bill)

@router.post("/{bill_id}/close", response_model=BillDetailsResponse)
async def close_bill(
    bill_id: str,
    current_user: User = Depends(get_current_user),
    service: BillService = Depends(get_bill_service)
):
    """Close a fully paid bill"""
    bill = await service.close_bill(bill_id, current_user)
    return BillDetailsResponse.from_bill(bill)

@router.delete("/{bill_id}")
async def delete_bill(
    bill_id: str,
    current_user: User = Depends(get_current_user),
    service: BillService = Depends(get_bill_service)
):
    """Delete a bill before anyone has started paying"""
    await service.delete_bill(bill_id, current_user)
    return {"message": "Bill deleted successfully"}
