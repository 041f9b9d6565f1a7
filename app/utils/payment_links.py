"""
Deep links and memos for wallet transfers.

The memo carries "bill_<billId>"; the reconciler matches incoming transfers on
that exact token, so its format must not change.
"""
from decimal import Decimal, ROUND_DOWN
from urllib.parse import quote

from app.models.bill import Currency
from app.utils.ton_address import InvalidAddressError, is_valid_ton_address

TON_DECIMALS = 9
USDT_DECIMALS = 6

_DECIMALS = {
    Currency.TON: TON_DECIMALS,
    Currency.USDT: USDT_DECIMALS,
}


def bill_token(bill_id: str) -> str:
    return f"bill_{bill_id}"


def payment_memo(bill_id: str, currency: Currency = Currency.TON) -> str:
    if currency == Currency.TON:
        return f"Split Bill Payment - {bill_token(bill_id)}"
    return f"Split Bill Payment ({currency.value}) - {bill_token(bill_id)}"


def to_base_units(amount: Decimal, currency: Currency = Currency.TON) -> int:
    """Decimal amount -> integer base units, truncating any excess precision."""
    scale = Decimal(10) ** _DECIMALS[currency]
    return int((Decimal(amount) * scale).to_integral_value(rounding=ROUND_DOWN))


def from_base_units(value: int | str, currency: Currency = Currency.TON) -> Decimal:
    scale = Decimal(10) ** _DECIMALS[currency]
    return Decimal(int(value)) / scale


def build_payment_deeplink(
    currency: Currency,
    address: str,
    amount: Decimal,
    bill_id: str,
    jetton_master: str | None = None,
) -> str:
    """
    ton://transfer/<address>?amount=<nano>&text=<memo>

    USDT is a jetton on TON, so its link names the jetton master and counts
    the amount in USDT base units.
    """
    if not is_valid_ton_address(address):
        raise InvalidAddressError(f"Invalid TON address: {address}")

    text = quote(payment_memo(bill_id, currency), safe="")
    amount_units = to_base_units(amount, currency)

    if currency == Currency.TON:
        return f"ton://transfer/{address}?amount={amount_units}&text={text}"

    if not jetton_master:
        raise ValueError(f"Jetton master address is required for {currency.value}")
    return f"ton://transfer/{address}?jetton={jetton_master}&amount={amount_units}&text={text}"
