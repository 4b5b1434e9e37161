"""
Service container

Builds the service graph once per application:

    chain, dex, hub -> ledger -> executor -> scheduler
                            +-> deposit monitor, wallet
"""
import asyncio
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.services.chain_service import ChainService
from src.services.deposit_monitor_service import DepositMonitor
from src.services.dex_service import DexService
from src.services.ledger_service import LedgerService
from src.services.notification_service import NotificationHub
from src.services.twap import TradeExecutor, TwapScheduler
from src.services.twap.scheduler import SleepFunc
from src.services.wallet_service import WalletService


@dataclass
class ServiceContainer:
    ledger: LedgerService
    chain: ChainService
    dex: DexService
    hub: NotificationHub
    executor: TradeExecutor
    scheduler: TwapScheduler
    deposit_monitor: DepositMonitor
    wallet: WalletService

    @classmethod
    def create(
        cls,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
        chain: Optional[ChainService] = None,
        dex: Optional[DexService] = None,
        hub: Optional[NotificationHub] = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> "ServiceContainer":
        """
        Wire all services

        Args:
            session_maker: Ledger store sessions (default engine if None)
            chain: Chain collaborator (env-configured if None)
            dex: DEX collaborator (env-configured if None)
            hub: Notification hub
            sleep: Scheduler delay function
        """
        hub = hub or NotificationHub()
        chain = chain or ChainService()
        dex = dex or DexService(chain=chain)
        ledger = LedgerService(session_maker)
        executor = TradeExecutor(ledger, dex, hub=hub, chain=chain)

        return cls(
            ledger=ledger,
            chain=chain,
            dex=dex,
            hub=hub,
            executor=executor,
            scheduler=TwapScheduler(executor, hub=hub, sleep=sleep),
            deposit_monitor=DepositMonitor(chain, ledger, hub=hub),
            wallet=WalletService(chain, ledger, hub=hub),
        )

    async def close(self) -> None:
        self.deposit_monitor.stop()
        await self.scheduler.shutdown()
        await self.chain.close()
