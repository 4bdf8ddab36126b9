import re
from datetime import datetime, timezone
from decimal import Decimal

_EVM_ADDRESS = re.compile(r"^0x[a-fA-F0-9]{40}$")
_EVM_ADDRESS_IN_TEXT = re.compile(r"0x[a-fA-F0-9]{40}\b")


def is_evm_address(address: str) -> bool:
    """EVM address: 0x + 40 hex chars (checksum not enforced)."""
    return bool(_EVM_ADDRESS.match(address.strip()))


def extract_address(text: str) -> str | None:
    """First EVM address mentioned in free text, if any."""
    m = _EVM_ADDRESS_IN_TEXT.search(text)
    return m.group(0) if m else None


def short_address(address: str, chars: int = 6) -> str:
    """Truncate: 0x1234...abcd"""
    if len(address) <= chars * 2 + 3:
        return address
    return f"{address[:chars]}...{address[-chars:]}"


def wei_to_ether(wei: int | str) -> Decimal:
    return Decimal(int(wei)) / Decimal(10**18)


def format_currency(amount: float, symbol: str = "$", decimals: int = 2) -> str:
    if abs(amount) >= 1_000_000:
        return f"{symbol}{amount / 1_000_000:,.{decimals}f}M"
    elif abs(amount) >= 1_000:
        return f"{symbol}{amount / 1_000:,.{decimals}f}K"
    return f"{symbol}{amount:,.{decimals}f}"


def format_timestamp(unix_seconds: str | int | None) -> str:
    """Unix seconds -> ISO-8601 UTC, or "N/A"."""
    try:
        ts = int(unix_seconds or 0)
    except (TypeError, ValueError):
        return "N/A"
    if ts <= 0:
        return "N/A"
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
