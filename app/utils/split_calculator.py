"""Split calculation and validation utilities."""
from decimal import Decimal, ROUND_UP
from typing import Iterable, List

from app.core.errors import InvalidInputError

MINOR_UNIT = Decimal("0.01")
SPLIT_EPSILON = Decimal("0.01")


class SplitValidationError(InvalidInputError):
    """Raised when a proposed split doesn't cover the bill total."""
    code = "split_deficit"


def to_minor_units(amount: Decimal) -> Decimal:
    """Round up to the next minor unit (0.01)."""
    return amount.quantize(MINOR_UNIT, rounding=ROUND_UP)


def compute_equal_shares(total: Decimal, participant_count: int) -> List[Decimal]:
    """
    Divide total into participant_count identical shares.

    Rules:
    - every share is total / n rounded UP to the minor unit
    - so sum(shares) >= total; the small surplus is accepted
    """
    if participant_count <= 0:
        raise SplitValidationError("Bill must have at least one participant", code="no_participants")
    if total < 0:
        raise SplitValidationError("Bill total must not be negative", code="negative_total")

    share = to_minor_units(Decimal(total) / participant_count)
    return [share] * participant_count


def validate_custom_split(total: Decimal, shares: Iterable[Decimal]) -> None:
    """
    Validate a custom split against the bill total.

    Rules:
    - each share must be non-negative
    - sum(shares) >= total - 0.01 (deficit forbidden, surplus allowed)
    """
    shares = list(shares)
    for share in shares:
        if share < 0:
            raise SplitValidationError(f"Share amount must not be negative: {share}", code="negative_share")

    shares_sum = sum(shares, Decimal("0"))
    if shares_sum < Decimal(total) - SPLIT_EPSILON:
        raise SplitValidationError(
            f"Sum of participant shares ({shares_sum}) is less than the bill total ({total})"
        )
