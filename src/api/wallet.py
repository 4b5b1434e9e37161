# coding: utf-8
"""
Wallet API

Custodial wallet info, per-user ledger balances, deposits and withdrawals.

Endpoints:
    GET  /api/wallet/balance                 - custodial on-chain balances
    GET  /api/wallet/address                 - custodial deposit address
    GET  /api/wallet/status                  - configured flag, network, simulation mode
    GET  /api/wallet/user-balance/{wallet}   - ledger balances of one user
    GET  /api/wallet/deposits/{wallet}       - recorded deposits of one user
    POST /api/wallet/scan-deposits           - run one deposit scan now
    POST /api/wallet/verify-deposit          - verify and credit one tx
    POST /api/wallet/withdraw                - withdraw available balance
"""
from decimal import Decimal

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from loguru import logger

from config.config import get_network_config
from src.api.deps import CamelModel, get_services, ok
from src.core.exceptions import WalletNotConfiguredError
from src.services.container import ServiceContainer


router = APIRouter(prefix="/wallet", tags=["wallet"])


# ============================================================================
# REQUEST MODELS
# ============================================================================


class VerifyDepositRequest(CamelModel):
    tx_hash: str
    wallet_address: str


class WithdrawRequest(CamelModel):
    wallet_address: str
    token: str
    amount: Decimal


# ============================================================================
# CUSTODIAL WALLET
# ============================================================================


@router.get("/balance")
async def get_custodial_balance(services: ServiceContainer = Depends(get_services)):
    balances = await services.wallet.get_custodial_balances()
    return ok({"address": services.chain.address, "balances": balances})


@router.get("/address")
async def get_deposit_address(services: ServiceContainer = Depends(get_services)):
    if not services.chain.is_configured():
        raise WalletNotConfiguredError()
    return ok({"address": services.chain.address, "network": get_network_config()["name"]})


@router.get("/status")
async def get_wallet_status(services: ServiceContainer = Depends(get_services)):
    info = await services.wallet.get_custodial_info()
    info.update(
        {
            "network": get_network_config()["name"],
            "simulation": services.dex.is_simulation,
            "deposit_monitor_running": services.deposit_monitor.running,
        }
    )
    return ok(info)


# ============================================================================
# USER LEDGER
# ============================================================================


@router.get("/user-balance/{wallet_address}")
async def get_user_balance(wallet_address: str, services: ServiceContainer = Depends(get_services)):
    balances = await services.wallet.get_user_balance(wallet_address)
    return ok({symbol: snapshot.model_dump(mode="json") for symbol, snapshot in balances.items()})


@router.get("/deposits/{wallet_address}")
async def get_user_deposits(wallet_address: str, services: ServiceContainer = Depends(get_services)):
    deposits = await services.deposit_monitor.get_deposits(wallet_address)
    return ok(deposits)


@router.post("/scan-deposits")
async def scan_deposits(services: ServiceContainer = Depends(get_services)):
    """Trigger a deposit scan outside the regular schedule"""
    if not services.chain.is_configured():
        raise WalletNotConfiguredError()
    found = await services.deposit_monitor.scan()
    return ok({"new_deposits_found": found})


@router.post("/verify-deposit")
async def verify_deposit(body: VerifyDepositRequest, services: ServiceContainer = Depends(get_services)):
    result = await services.deposit_monitor.verify_deposit(body.tx_hash, body.wallet_address)
    if not result.success:
        logger.warning(f"Deposit verification rejected for {body.tx_hash}: {result.error}")
        return JSONResponse(status_code=400, content={"success": False, "error": result.error})
    return ok(result)


@router.post("/withdraw")
async def withdraw(body: WithdrawRequest, services: ServiceContainer = Depends(get_services)):
    result = await services.wallet.withdraw(body.wallet_address, body.token, body.amount)
    return ok(result)
