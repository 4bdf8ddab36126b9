"""Chat flow: classify the message, run a wallet action or let Pluto reply."""

import logging
from typing import Any, AsyncIterator, Optional

from agent import PlutoAssistant
from errors import PlutoError, UpstreamServiceFailure, ValidationError
from models import ChatResponse, IntentAction, IntentResult, TransferEvent
from monitor import DEFAULT_INTERVAL_MS
from registry import WalletRegistry
from speech import Speaker
from utils import (
    extract_address,
    format_currency,
    format_timestamp,
    is_evm_address,
    short_address,
    utcnow,
    wei_to_ether,
)

logger = logging.getLogger(__name__)


def _param(params: dict, *names: str) -> Optional[Any]:
    for name in names:
        value = params.get(name)
        if value not in (None, ""):
            return value
    return None


def require_text(text: Optional[str]) -> str:
    cleaned = (text or "").strip()
    if not cleaned:
        raise ValidationError("Text is required and must be a non-empty string")
    return cleaned


class PlutoChat:
    def __init__(
        self,
        assistant: Optional[PlutoAssistant],
        registry: WalletRegistry,
        speaker: Speaker,
        monitor_interval_ms: int = DEFAULT_INTERVAL_MS,
    ):
        self.assistant = assistant
        self.registry = registry
        self.speaker = speaker
        self.monitor_interval_ms = monitor_interval_ms

    async def handle(self, text: Optional[str]) -> ChatResponse:
        text = require_text(text)

        intent = await self.assistant.classify(text) if self.assistant else None
        if intent is not None:
            message, data = await self._dispatch(intent, text)
            action = intent.action
        else:
            if self.assistant is None:
                raise UpstreamServiceFailure("Assistant is not configured")
            message = await self.assistant.reply(text)
            data, action = None, None

        self.speaker.say(message)
        return ChatResponse(
            user_input=text,
            pluto_response=message,
            action=action,
            data=data,
            timestamp=utcnow(),
        )

    async def stream(self, text: str) -> AsyncIterator[str]:
        """Stream Pluto's reply, then speak the whole of it."""
        if self.assistant is None:
            raise UpstreamServiceFailure("Assistant is not configured")
        parts: list[str] = []
        try:
            async for delta in self.assistant.stream_reply(text):
                parts.append(delta)
                yield delta
        except Exception as exc:
            logger.error("Error in streaming reply: %s", exc)
            return
        self.speaker.say("".join(parts))

    def announce_transfer(self, address: str, transfer: TransferEvent) -> None:
        """Default monitor callback: log and speak the new transfer."""
        incoming = (transfer.to_address or "").lower() == address.lower()
        direction = "received" if incoming else "sent"
        amount = wei_to_ether(transfer.value or 0)
        logger.info(
            "New transaction for %s: %s %s ETH (%s) at %s",
            short_address(address), direction, amount, transfer.id,
            format_timestamp(transfer.timestamp),
        )
        self.speaker.say(
            f"New transaction on wallet {short_address(address, 4)}: "
            f"{direction} {amount.normalize():f} ether."
        )

    # ── Wallet actions ────────────────────────────────────────────────────

    async def _dispatch(self, intent: IntentResult, text: str) -> tuple[str, Any]:
        params = intent.parameters
        try:
            if intent.action == IntentAction.CREATE_WALLET:
                record = await self.registry.create()
                return (
                    f"I've created a new wallet for you. Your address is {record.address}. "
                    "Keep your recovery phrase somewhere safe.",
                    record.summary(include_secrets=True),
                )

            if intent.action == IntentAction.IMPORT_WALLET_PRIVATE_KEY:
                key = _param(params, "private_key", "privateKey")
                if not key:
                    return "Please share the private key you want to import.", None
                record = await self.registry.import_from_private_key(str(key))
                return (
                    f"Wallet {record.address} has been imported.",
                    record.summary(),
                )

            if intent.action == IntentAction.IMPORT_WALLET_MNEMONIC:
                phrase = _param(params, "mnemonic", "phrase")
                if not phrase:
                    return "Please share the recovery phrase you want to import.", None
                record = await self.registry.import_from_mnemonic(str(phrase))
                return (
                    f"Wallet {record.address} has been imported from your recovery phrase.",
                    record.summary(),
                )

            address = self._address(params, text)

            if intent.action == IntentAction.GET_WALLET_INFO:
                return self._wallet_info(address)

            if address is None:
                return "Which wallet address should I use?", None
            if not is_evm_address(address):
                return f"{address} doesn't look like an Ethereum address.", None
            short = short_address(address)

            if intent.action == IntentAction.MONITOR_WALLET:
                requested = _param(params, "interval_ms", "intervalMs")
                interval = max(int(requested or self.monitor_interval_ms), 1000)
                started = await self.registry.start_monitoring(
                    address,
                    interval,
                    callback=lambda tx: self.announce_transfer(address, tx),
                )
                record = self.registry.get(address)
                watching = record is not None and record.monitoring
                if not started and watching:
                    return f"I'm already watching {short}.", {"monitoring": True}
                if not started:
                    return (
                        f"Watching {short} was cancelled before it started.",
                        {"monitoring": False},
                    )
                return (
                    f"I'm now watching {short} for new transactions.",
                    {"address": address, "monitoring": True, "interval_ms": interval},
                )

            if intent.action == IntentAction.GET_WALLET_TRANSACTIONS:
                limit = min(max(int(_param(params, "limit") or 10), 1), 100)
                transfers = await self.registry.transactions(address, limit)
                if not transfers:
                    return f"I couldn't find recent transactions for {short}.", []
                return (
                    f"Here are the last {len(transfers)} transactions for {short}.",
                    [t.model_dump(mode="json") for t in transfers],
                )
        except PlutoError as exc:
            logger.info("Wallet action %s failed: %s", intent.action.value, exc.message)
            return f"Sorry, I couldn't do that: {exc.message}", None
        except (TypeError, ValueError) as exc:
            logger.info("Bad parameters for %s: %s", intent.action.value, exc)
            return "Sorry, I couldn't understand the details of that request.", None

        return "I'm not sure how to help with that.", None

    @staticmethod
    def _address(params: dict, text: str) -> Optional[str]:
        address = _param(params, "address", "wallet")
        if address:
            return str(address).strip()
        return extract_address(text)

    def _wallet_info(self, address: Optional[str]) -> tuple[str, Any]:
        if address is None:
            wallets = self.registry.list()
            if not wallets:
                return "You don't have any wallets yet. Ask me to create one!", []
            return (
                f"You have {len(wallets)} wallet(s): "
                + ", ".join(short_address(w.address) for w in wallets) + ".",
                [w.summary() for w in wallets],
            )

        record = self.registry.get(address)
        if record is None:
            return f"I don't know a wallet with address {short_address(address)}.", None

        snap = record.last_snapshot
        short = short_address(record.address)
        if snap is None:
            return f"Wallet {short} has no balance data yet.", record.summary()
        message = f"Wallet {short} holds {snap.eth_balance} ETH"
        if snap.total_value_usd is not None:
            message += f", worth about {format_currency(float(snap.total_value_usd))}"
        return message + f", across {snap.transaction_count} transactions.", record.summary()
