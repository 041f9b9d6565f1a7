from typing import Optional

from app.models.bill import Bill, Participant
from app.models.user import User


def _clean_username(username: Optional[str]) -> Optional[str]:
    if not username:
        return None
    return username.lstrip("@").lower() or None


def participant_matches(participant: Participant, user: User) -> bool:
    """
    A participant is the caller if it is resolved to them, or if its Telegram
    id or username (case-insensitive, "@" ignored) is theirs.
    """
    if participant.user_id is not None:
        return participant.user_id == user.id
    if participant.telegram_user_id and participant.telegram_user_id == user.telegram_user_id:
        return True
    username = _clean_username(participant.telegram_username)
    return username is not None and username == _clean_username(user.username)


def find_participant_for(bill: Bill, user: User) -> Optional[Participant]:
    for participant in bill.participants:
        if participant_matches(participant, user):
            return participant
    return None


def can_view_bill(bill: Bill, user: User) -> bool:
    return bill.creator_id == user.id or find_participant_for(bill, user) is not None


def can_view_payment(bill: Bill, participant: Optional[Participant], user: User) -> bool:
    """Paying participant, the bill creator, or the user the participant resolved to."""
    if bill.creator_id == user.id:
        return True
    return participant is not None and participant_matches(participant, user)
