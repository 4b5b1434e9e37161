# coding: utf-8
"""
Account address helpers (Movement / Aptos style 0x-hex addresses)
"""
import re
from typing import Optional


_HEX_ADDRESS = re.compile(r"^0x[0-9a-f]{1,64}$")


def normalize_address(address: Optional[str]) -> Optional[str]:
    """
    Canonical form: lowercase, 0x-prefixed, zero-padded to 64 hex digits

    Non-hex identifiers are only stripped/lowercased so ledger keys stay stable.

    Examples:
        "0xABC" -> "0x0000...0abc"
        "0x1"   -> "0x0000...0001"
    """
    if address is None:
        return None

    value = address.strip().lower()
    if not value:
        return value

    if not value.startswith("0x") and re.fullmatch(r"[0-9a-f]{64}", value):
        value = "0x" + value

    if _HEX_ADDRESS.match(value):
        return "0x" + value[2:].rjust(64, "0")

    return value


def addresses_equal(a: Optional[str], b: Optional[str]) -> bool:
    """Compare two addresses ignoring case and leading zero padding"""
    if not a or not b:
        return False
    return normalize_address(a) == normalize_address(b)


def short_address(address: Optional[str]) -> str:
    """0x1234...abcd for log lines"""
    if not address:
        return "N/A"
    if len(address) <= 14:
        return address
    return f"{address[:6]}...{address[-4:]}"
