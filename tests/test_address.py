"""
Unit tests for address helpers
"""

from src.utils.address import addresses_equal, normalize_address, short_address


def test_normalize_address():
    assert normalize_address("0xABC") == "0x" + "0" * 61 + "abc"
    assert normalize_address("0x1") == "0x" + "0" * 63 + "1"
    assert normalize_address("a" * 64) == "0x" + "a" * 64
    assert normalize_address("  Wallet-Name ") == "wallet-name"
    assert normalize_address(None) is None


def test_addresses_equal_ignores_padding_and_case():
    assert addresses_equal("0xabc", "0x0000000000000000000000000000000000000000000000000000000000000ABC")
    assert not addresses_equal("0xabc", "0xabd")
    assert not addresses_equal(None, "0xabc")


def test_short_address():
    assert short_address("0x" + "1" * 64) == "0x1111...1111"
    assert short_address("0xabc") == "0xabc"
    assert short_address(None) == "N/A"
