import asyncio
import json
from typing import Optional

import pytest

from agent import PlutoAssistant
from chain_providers import BlockchainDataClient
from conversation import PlutoChat
from errors import DataFetchFailed
from keys import EthereumKeyProvider
from main import Services
from models import TokenMetadata, TransferEvent, WalletSnapshot
from prompts import INTENT_SYSTEM_PROMPT
from registry import WalletRegistry
from speech import Speaker
from utils import utcnow

# Well-known test vectors
TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
TEST_ADDRESS = "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"
TEST_MNEMONIC = "test test test test test test test test test test test junk"
TEST_MNEMONIC_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


def make_transfer(tx_id: str, to_address: Optional[str] = None, value: str = "0") -> TransferEvent:
    return TransferEvent(
        id=tx_id,
        timestamp="1700000000",
        from_address="0x0000000000000000000000000000000000000001",
        to_address=to_address,
        value=value,
    )


class FakeDataClient(BlockchainDataClient):
    """Scriptable data source; counts calls."""

    def __init__(self):
        self.transfers: list[TransferEvent] = []
        self.fail_snapshot = False
        self.transfer_failures = 0
        self.snapshot_calls = 0
        self.transfer_calls = 0
        # One-shot coroutine run inside the next transfer fetch
        self.on_fetch = None
        self.tokens: dict[str, TokenMetadata] = {}

    async def get_wallet_data(self, address: str) -> Optional[WalletSnapshot]:
        self.snapshot_calls += 1
        if self.fail_snapshot:
            raise DataFetchFailed("snapshot unavailable")
        return WalletSnapshot(
            address=address,
            eth_balance="1.5",
            total_value_usd="3000.00",
            transaction_count=len(self.transfers),
            recent_transfers=list(self.transfers),
            fetched_at=utcnow(),
        )

    async def get_transactions(self, address: str, limit: int = 10) -> list[TransferEvent]:
        self.transfer_calls += 1
        if self.on_fetch is not None:
            hook, self.on_fetch = self.on_fetch, None
            await hook()
        if self.transfer_failures > 0:
            self.transfer_failures -= 1
            raise DataFetchFailed("transfers unavailable")
        return self.transfers[:limit]

    async def get_token_info(self, contract: str) -> Optional[TokenMetadata]:
        return self.tokens.get(contract.lower())


class RecordingSpeaker(Speaker):
    def __init__(self):
        super().__init__(enabled=False)
        self.spoken: list[str] = []

    def say(self, text: str) -> None:
        self.spoken.append(text)


class ScriptedAssistant(PlutoAssistant):
    """Assistant with canned model output instead of a provider SDK."""

    def __init__(self, intent: Optional[dict] = None, reply: str = "Blockchains are ledgers."):
        self.provider = "scripted"
        self.model = "scripted"
        self.client = None
        self.intent = intent if intent is not None else {"action": "NONE", "confidence": 0.9}
        self.reply_text = reply
        self.prompts: list[str] = []

    async def _complete(self, system: str, prompt: str, temperature: float) -> str:
        self.prompts.append(prompt)
        if system == INTENT_SYSTEM_PROMPT:
            if isinstance(self.intent, str):
                return self.intent
            return json.dumps(self.intent)
        return self.reply_text

    async def stream_reply(self, text: str):
        for word in self.reply_text.split(" "):
            yield word + " "


async def wait_until(predicate, timeout: float = 2.0, step: float = 0.01) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(step)


@pytest.fixture
def data_client():
    return FakeDataClient()


@pytest.fixture
def speaker():
    return RecordingSpeaker()


@pytest.fixture
def registry(data_client):
    return WalletRegistry(EthereumKeyProvider(), data_client)


@pytest.fixture
def assistant():
    return ScriptedAssistant()


@pytest.fixture
def services(registry, speaker, assistant):
    chat = PlutoChat(assistant, registry, speaker, monitor_interval_ms=1000)
    return Services(registry=registry, chat=chat, speaker=speaker)
