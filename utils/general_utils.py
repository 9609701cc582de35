import hashlib

from decimal import Decimal, InvalidOperation

WEI_PER_ETHER = 10**18
ADDRESS_HEX_LENGTH = 40
ZERO_ADDRESS = "0x" + "0" * ADDRESS_HEX_LENGTH


def hash(s: str) -> str:
    return hashlib.sha256(s.encode()).hexdigest()


def standardize_address(address: str) -> str:
    address = address.lower().removeprefix("0x")
    if len(address) > ADDRESS_HEX_LENGTH:
        raise ValueError(f"Address too long: 0x{address}")
    return "0x" + address.zfill(ADDRESS_HEX_LENGTH)


def standardize_optional_address(address: str | None) -> str | None:
    if address is None:
        return None
    return standardize_address(address)


def parse_ether(value: str) -> int:
    """Convert a decimal ether string ("1.5") to wei without float rounding."""
    try:
        amount = Decimal(value)
    except InvalidOperation:
        raise ValueError(f"Invalid ether amount: {value!r}")
    wei = amount * WEI_PER_ETHER
    if wei != wei.to_integral_value():
        raise ValueError(f"Ether amount has more than 18 decimals: {value!r}")
    return int(wei)


def format_ether(wei: int) -> str:
    whole, fraction = divmod(wei, WEI_PER_ETHER)
    if not fraction:
        return str(whole)
    return f"{whole}.{str(fraction).zfill(18).rstrip('0')}"
