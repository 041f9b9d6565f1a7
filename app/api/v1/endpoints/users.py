from fastapi import APIRouter, Depends, HTTPException
from app.api.deps import get_user_repo
from app.core.auth import get_current_user
from app.core.errors import InvalidInputError
from app.models.user import User
from app.repositories.user_repo import UserRepository
from app.schemas.user import UserResponse, WalletUpdate
from app.utils.ton_address import is_valid_ton_address, normalize_ton_address

router = APIRouter()

@router.get("/me", response_model=UserResponse)
async def get_my_profile(current_user: User = Depends(get_current_user)):
    """Get current user profile"""
    return UserResponse.model_validate(current_user)

@router.put("/me/wallet", response_model=UserResponse)
async def update_my_wallet(
    wallet: WalletUpdate,
    current_user: User = Depends(get_current_user),
    users: UserRepository = Depends(get_user_repo)
):
    """Set (or clear) the wallet the current user receives payments on"""
    address = None
    if wallet.address:
        if not is_valid_ton_address(wallet.address):
            raise InvalidInputError("Invalid TON wallet address", code="invalid_address")
        address = normalize_ton_address(wallet.address)

    updated = await users.update_wallet(current_user.id, address)
    if updated is None:
        raise HTTPException(status_code=404, detail="User not found")
    return UserResponse.model_validate(updated)
