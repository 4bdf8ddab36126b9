"""Polling watcher that reports new transfers for registered wallets.

Each watched address owns exactly one ``asyncio.Task``. A tick fetches
the latest transfer and compares its id with the last one seen; a new
id fires the callback once and refreshes the wallet's snapshot. Tick
failures are logged and the loop keeps going.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Union

from chain_providers import BlockchainDataClient
from errors import UnknownWallet
from models import TransferEvent
from utils import short_address

if TYPE_CHECKING:
    from registry import WalletRegistry

logger = logging.getLogger(__name__)

TransferCallback = Callable[[TransferEvent], Union[None, Awaitable[None]]]

DEFAULT_INTERVAL_MS = 30_000


@dataclass
class _Watch:
    address: str
    interval_ms: int
    callback: Optional[TransferCallback]
    last_seen_id: Optional[str] = None
    # False until a fetch has recorded which transfer is current
    baseline: bool = False
    task: Optional[asyncio.Task] = None
    active: bool = True


class WalletMonitor:
    def __init__(self, registry: "WalletRegistry", data_client: BlockchainDataClient):
        self._registry = registry
        self._data_client = data_client
        self._watches: dict[str, _Watch] = {}

    @staticmethod
    def _key(address: str) -> str:
        return address.strip().lower()

    def is_watching(self, address: str) -> bool:
        return self._key(address) in self._watches

    def watched(self) -> list[str]:
        return [w.address for w in self._watches.values()]

    async def start(
        self,
        address: str,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        callback: Optional[TransferCallback] = None,
    ) -> bool:
        """Begin watching. Returns False if the address was already watched."""
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")

        record = self._registry.get(address)
        if record is None:
            raise UnknownWallet(address)

        key = self._key(record.address)
        if key in self._watches:
            logger.info("Wallet %s is already being monitored", short_address(record.address))
            return False

        # Claim the slot before the first await so a concurrent start is a no-op
        watch = _Watch(address=record.address, interval_ms=interval_ms, callback=callback)
        self._watches[key] = watch
        await self._registry.set_monitoring_state(record.address, True, interval_ms)

        try:
            latest = await self._data_client.get_latest_transfer(record.address)
            watch.last_seen_id = latest.id if latest else None
            watch.baseline = True
        except Exception as exc:
            logger.warning(
                "Could not read initial transfer for %s: %s",
                short_address(record.address), exc,
            )

        if self._watches.get(key) is not watch:
            # stopped while the initial fetch was in flight
            return False

        watch.task = asyncio.create_task(
            self._run(watch), name=f"monitor:{record.address}"
        )
        logger.info(
            "Starting wallet monitoring for %s with %dms interval",
            short_address(record.address), interval_ms,
        )
        return True

    async def stop(self, address: str) -> bool:
        """Stop watching. Idempotent; returns whether a loop was running."""
        watch = self._watches.pop(self._key(address), None)
        if watch is None:
            return False

        watch.active = False
        await self._registry.set_monitoring_state(watch.address, False)

        task = watch.task
        if task is not None:
            task.cancel()
            # A callback may stop its own loop; it cannot wait on itself
            if task is not asyncio.current_task():
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        logger.info("Stopped monitoring wallet %s", short_address(watch.address))
        return True

    async def stop_all(self) -> None:
        for address in self.watched():
            await self.stop(address)

    # ── Loop ──────────────────────────────────────────────────────────────

    async def _run(self, watch: _Watch) -> None:
        while watch.active:
            await asyncio.sleep(watch.interval_ms / 1000)
            await self._tick(watch)

    async def _tick(self, watch: _Watch) -> None:
        try:
            latest = await self._data_client.get_latest_transfer(watch.address)
        except Exception as exc:
            logger.warning(
                "Error monitoring wallet %s: %s", short_address(watch.address), exc
            )
            return

        if not watch.baseline:
            # Initial fetch failed; the current transfer is not new
            watch.last_seen_id = latest.id if latest else None
            watch.baseline = True
            logger.info("Baseline established for %s", short_address(watch.address))
            return

        if latest is None or latest.id == watch.last_seen_id or not watch.active:
            return

        watch.last_seen_id = latest.id
        logger.info(
            "New transaction detected for wallet %s: %s",
            short_address(watch.address), latest.id,
        )

        if watch.callback is not None:
            try:
                result = watch.callback(latest)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "Transfer callback failed for %s", short_address(watch.address)
                )

        try:
            await self._registry.update_data(watch.address)
        except Exception as exc:
            logger.warning(
                "Failed to update wallet data for %s: %s",
                short_address(watch.address), exc,
            )
