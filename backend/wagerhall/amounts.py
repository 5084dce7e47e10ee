"""Exact conversions between human token amounts and integer base units.

Amounts never pass through binary floating point: decimal strings are split
into whole and fractional digits and joined as an integer.
"""

from __future__ import annotations

import re
from decimal import Decimal

_DECIMAL_RE = re.compile(r"^(?P<sign>[+-]?)(?P<whole>\d*)(?:\.(?P<frac>\d*))?$")
_WHOLE_RE = re.compile(r"^\+?\d+$")


def _as_plain_string(value: str | int | Decimal) -> str:
    if isinstance(value, bool):
        raise TypeError("Boolean is not a token amount")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValueError(f"Amount must be finite: {value}")
        return format(value, "f")
    if isinstance(value, str):
        return value.strip()
    raise TypeError(f"Unsupported amount type: {type(value).__name__}")


def to_base_units(value: str | int | Decimal, decimals: int) -> int:
    """Convert a decimal token amount to base units.

    Fractional digits beyond ``decimals`` are truncated, matching how the
    roster export balances have always been interpreted.
    """
    if decimals < 0:
        raise ValueError(f"decimals must be >= 0, got {decimals}")

    text = _as_plain_string(value)
    if text in ("", "0"):
        return 0

    match = _DECIMAL_RE.match(text)
    if not match or not (match.group("whole") or match.group("frac")):
        raise ValueError(f"Not a decimal amount: {text!r}")

    whole = match.group("whole") or "0"
    frac = (match.group("frac") or "")[:decimals].ljust(decimals, "0")
    base = int(whole + frac)
    return -base if match.group("sign") == "-" else base


def whole_tokens_to_base_units(tokens: int, decimals: int) -> int:
    """Scale an integer token count by the mint's decimal precision."""
    if decimals < 0:
        raise ValueError(f"decimals must be >= 0, got {decimals}")
    return tokens * 10**decimals


def format_base_units(base: int, decimals: int) -> str:
    """Render base units as a trimmed decimal string (``1500, 3 -> '1.5'``)."""
    negative = base < 0
    magnitude = -base if negative else base
    if decimals == 0:
        out = str(magnitude)
    else:
        whole, frac = divmod(magnitude, 10**decimals)
        frac_str = str(frac).rjust(decimals, "0").rstrip("0")
        out = f"{whole}.{frac_str}" if frac_str else str(whole)
    return f"-{out}" if negative else out


def parse_whole_tokens(text: str) -> int | None:
    """Parse a positive whole-token amount typed by a user, else ``None``."""
    candidate = str(text or "").strip()
    if not _WHOLE_RE.match(candidate):
        return None
    tokens = int(candidate)
    return tokens if tokens > 0 else None
