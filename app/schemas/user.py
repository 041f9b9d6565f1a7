from typing import Optional

from app.schemas.common import CamelModel


class UserResponse(CamelModel):
    id: str
    telegram_user_id: str
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    ton_wallet_address: Optional[str] = None
    is_admin: bool = False


class WalletUpdate(CamelModel):
    address: Optional[str] = None
