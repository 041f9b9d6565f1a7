"""
TON address helpers.

Two textual forms are accepted:
- raw: "<workchain>:<64 hex chars>" with workchain 0 or -1
- user-friendly: 48 chars of URL-safe base64 starting with UQ or EQ
"""
import base64
import binascii
import re

_HEX_HASH = re.compile(r"^[0-9a-fA-F]{64}$")
_BASE64URL = re.compile(r"^[A-Za-z0-9_-]+$")
_VALID_WORKCHAINS = (0, -1)


class InvalidAddressError(ValueError):
    pass


def _is_valid_raw(address: str) -> bool:
    parts = address.split(":")
    if len(parts) != 2:
        return False
    workchain, address_hash = parts
    try:
        if int(workchain) not in _VALID_WORKCHAINS:
            return False
    except ValueError:
        return False
    return bool(_HEX_HASH.match(address_hash))


def _is_valid_user_friendly(address: str) -> bool:
    if len(address) != 48:
        return False
    if not address.startswith(("UQ", "EQ")):
        return False
    return bool(_BASE64URL.match(address[2:]))


def is_valid_ton_address(address) -> bool:
    if not address or not isinstance(address, str):
        return False
    if ":" in address:
        return _is_valid_raw(address)
    if address.startswith(("UQ", "EQ")):
        return _is_valid_user_friendly(address)
    return False


def normalize_ton_address(address: str) -> str:
    """Raw addresses are lower-cased; user-friendly ones are kept as given."""
    if not is_valid_ton_address(address):
        raise InvalidAddressError(f"Invalid TON address: {address}")
    if ":" in address:
        return address.lower()
    return address


def to_raw_address(address: str) -> str:
    """
    Convert any valid address to "<workchain>:<hex>".

    User-friendly form is 36 bytes once decoded: flags, workchain (signed),
    32-byte account hash, 2-byte crc16. The checksum is not verified.
    """
    address = normalize_ton_address(address)
    if ":" in address:
        workchain, address_hash = address.split(":")
        return f"{int(workchain)}:{address_hash}"

    try:
        data = base64.urlsafe_b64decode(address)
    except (binascii.Error, ValueError) as e:
        raise InvalidAddressError(f"Invalid TON address: {address}") from e
    if len(data) != 36:
        raise InvalidAddressError(f"Invalid TON address: {address}")

    workchain = int.from_bytes(data[1:2], "big", signed=True)
    return f"{workchain}:{data[2:34].hex()}"


def same_address(left: str | None, right: str | None) -> bool:
    """Compare two addresses regardless of which form each one is written in."""
    if not left or not right:
        return False
    try:
        return to_raw_address(left) == to_raw_address(right)
    except InvalidAddressError:
        return left.strip().lower() == right.strip().lower()


def format_address_for_display(address: str, max_length: int = 10) -> str:
    if not address or len(address) <= max_length:
        return address
    start = max_length // 2
    end = max_length - start
    return f"{address[:start]}...{address[-end:]}"
