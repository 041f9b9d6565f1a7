from typing import Optional
from app.models.base import MongoModel


class User(MongoModel):
    """
    Account as seen by the settlement core.

    Created by the Telegram auth layer; the core only reads it, except for the
    receiving wallet which the owner edits through their profile.
    """
    telegram_user_id: str
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    ton_wallet_address: Optional[str] = None
    is_admin: bool = False
    is_deleted: bool = False
