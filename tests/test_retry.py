"""
Unit tests for retry policies
"""

import asyncio

import aiohttp
import pytest

from src.core.exceptions import (
    ChainUnavailableError,
    InsufficientBalanceError,
    SwapExecutionError,
)
from src.utils.retry import is_transient_error, is_transient_tx_error, rpc_retry


def test_transient_classification():
    assert is_transient_error(asyncio.TimeoutError())
    assert is_transient_error(aiohttp.ClientConnectionError("reset"))
    assert is_transient_error(ChainUnavailableError("RPC error 503"))
    assert is_transient_error(RuntimeError("socket hang up"))
    assert is_transient_error(RuntimeError("429 Too Many Requests"))

    assert not is_transient_error(ChainUnavailableError("not found", transient=False))
    assert not is_transient_error(InsufficientBalanceError("Insufficient balance"))
    assert not is_transient_error(ValueError("bad input"))


def test_transient_tx_classification():
    assert is_transient_tx_error(RuntimeError("SEQUENCE_NUMBER too old: sequence number mismatch"))
    assert is_transient_tx_error(RuntimeError("Transaction expired"))
    assert not is_transient_tx_error(SwapExecutionError("Transaction failed: EINSUFFICIENT_BALANCE"))


@pytest.mark.asyncio
async def test_rpc_retry_gives_up_on_permanent_errors():
    calls = []

    @rpc_retry
    async def lookup():
        calls.append(1)
        raise ChainUnavailableError("Account not found", transient=False)

    with pytest.raises(ChainUnavailableError):
        await lookup()

    assert len(calls) == 1
