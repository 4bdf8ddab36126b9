"""In-memory wallet registry: one record per address."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from chain_providers import BlockchainDataClient
from errors import UnknownWallet
from keys import EthereumKeyProvider
from models import TransferEvent, WalletKeys, WalletRecord, WalletSnapshot
from monitor import DEFAULT_INTERVAL_MS, TransferCallback, WalletMonitor
from utils import short_address, utcnow

logger = logging.getLogger(__name__)


class WalletRegistry:
    """Owns wallet records and the monitor that watches them.

    Records are replaced whole under ``_lock``; the lock never spans a
    network call. Addresses are matched case-insensitively.
    """

    def __init__(
        self,
        key_provider: EthereumKeyProvider,
        data_client: BlockchainDataClient,
    ):
        self.key_provider = key_provider
        self.data_client = data_client
        self.monitor = WalletMonitor(self, data_client)
        self._wallets: dict[str, WalletRecord] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _key(address: str) -> str:
        return address.strip().lower()

    # ── Wallet lifecycle ──────────────────────────────────────────────────

    async def create(self) -> WalletRecord:
        """Generate a new wallet and store it."""
        return await self._store(self.key_provider.generate())

    async def import_from_private_key(self, private_key: str) -> WalletRecord:
        return await self._store(self.key_provider.from_private_key(private_key))

    async def import_from_mnemonic(self, mnemonic: str) -> WalletRecord:
        return await self._store(self.key_provider.from_mnemonic(mnemonic))

    async def _store(self, keys: WalletKeys) -> WalletRecord:
        # Re-importing overwrites; a running monitor belongs to the old record
        if self.monitor.is_watching(keys.address):
            await self.monitor.stop(keys.address)

        now = utcnow()
        record = WalletRecord(keys=keys, created_at=now, last_updated_at=now)
        async with self._lock:
            self._wallets[self._key(keys.address)] = record
        logger.info("Stored wallet %s", short_address(keys.address))

        try:
            snapshot = await self.data_client.get_wallet_data(keys.address)
        except Exception as exc:
            logger.warning(
                "Could not fetch initial wallet data for %s: %s",
                short_address(keys.address), exc,
            )
        else:
            await self._apply_snapshot(keys.address, snapshot)

        return self.get(keys.address) or record

    def get(self, address: str) -> Optional[WalletRecord]:
        return self._wallets.get(self._key(address))

    def list(self) -> list[WalletRecord]:
        return list(self._wallets.values())

    async def remove(self, address: str) -> bool:
        """Stop any monitor, then delete. Returns whether a record existed."""
        if self.get(address) is None:
            return False
        await self.monitor.stop(address)
        async with self._lock:
            removed = self._wallets.pop(self._key(address), None)
        if removed is not None:
            logger.info("Removed wallet %s", short_address(removed.address))
        return removed is not None

    # ── Data ──────────────────────────────────────────────────────────────

    async def update_data(self, address: str) -> Optional[WalletSnapshot]:
        """Re-fetch the snapshot. Raises UnknownWallet / DataFetchFailed."""
        record = self.get(address)
        if record is None:
            raise UnknownWallet(address)
        snapshot = await self.data_client.get_wallet_data(record.address)
        await self._apply_snapshot(record.address, snapshot)
        return snapshot

    async def transactions(self, address: str, limit: int = 10) -> list[TransferEvent]:
        record = self.get(address)
        if record is None:
            raise UnknownWallet(address)
        return await self.data_client.get_transactions(record.address, limit)

    async def _apply_snapshot(
        self, address: str, snapshot: Optional[WalletSnapshot]
    ) -> None:
        key = self._key(address)
        async with self._lock:
            record = self._wallets.get(key)
            if record is None:
                return
            self._wallets[key] = record.model_copy(
                update={"last_snapshot": snapshot, "last_updated_at": utcnow()}
            )

    # ── Monitoring ────────────────────────────────────────────────────────

    async def start_monitoring(
        self,
        address: str,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        callback: Optional[TransferCallback] = None,
    ) -> bool:
        return await self.monitor.start(address, interval_ms, callback)

    async def stop_monitoring(self, address: str) -> bool:
        return await self.monitor.stop(address)

    async def set_monitoring_state(
        self, address: str, monitoring: bool, interval_ms: Optional[int] = None
    ) -> None:
        key = self._key(address)
        async with self._lock:
            record = self._wallets.get(key)
            if record is None:
                return
            self._wallets[key] = record.model_copy(
                update={
                    "monitoring": monitoring,
                    "monitor_interval_ms": interval_ms if monitoring else None,
                }
            )

    async def shutdown(self) -> None:
        await self.monitor.stop_all()
