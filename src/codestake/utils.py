from __future__ import annotations

import re
import time
from datetime import datetime, timezone
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Union

from eth_hash.auto import keccak

WEI_PER_ETHER = 10**18
ZERO_ADDRESS = "0x" + "0" * 40

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

Amount = Union[Decimal, int, str]


def now() -> int:
    """Current unix time in whole seconds."""
    return int(time.time())


def format_timestamp(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def to_decimal(value: Amount) -> Decimal:
    """Parse an ether amount. Floats are refused to keep values exact."""
    if isinstance(value, float):
        raise TypeError("Use Decimal or str for amounts, not float")
    try:
        result = Decimal(value)
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return result


def to_wei(value: Amount) -> int:
    """Convert an ether amount to integer wei, truncating below 1 wei."""
    ether = to_decimal(value)
    return int((ether * WEI_PER_ETHER).to_integral_value(rounding=ROUND_DOWN))


def from_wei(value: int) -> Decimal:
    return (Decimal(int(value)) / WEI_PER_ETHER).normalize() if value else Decimal(0)


def is_address(value: object) -> bool:
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value))


def to_checksum_address(address: str) -> str:
    """Convert an address to EIP-55 checksummed format."""
    if not is_address(address):
        raise ValueError(f"Invalid address: {address!r}")
    addr = address.lower().replace("0x", "")
    addr_hash = keccak(addr.encode("utf-8")).hex()
    result = "0x"
    for i, c in enumerate(addr):
        if c in "abcdef":
            result += c.upper() if int(addr_hash[i], 16) >= 8 else c
        else:
            result += c
    return result


def same_address(a: str | None, b: str | None) -> bool:
    return a is not None and b is not None and a.lower() == b.lower()


def shorten_address(address: str, chars: int = 4) -> str:
    if not address:
        return ""
    return f"{address[:chars + 2]}...{address[-chars:]}"
