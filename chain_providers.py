import logging
import os
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

import httpx
from eth_abi import decode
from eth_abi.exceptions import DecodingError

from errors import DataFetchFailed, ValidationError
from models import (
    TokenBalance,
    TokenInfo,
    TokenMetadata,
    TransferEvent,
    WalletSnapshot,
)
from utils import is_evm_address, short_address, utcnow, wei_to_ether

logger = logging.getLogger(__name__)


# ── Etherscan V2 Unified API ──────────────────────────────────────────────────
# Single endpoint + chainid param.

ETHERSCAN_V2_BASE = "https://api.etherscan.io/v2/api"
MAINNET_CHAIN_ID = 1
DEFAULT_RPC_URL = "https://eth.llamarpc.com"
COINGECKO_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price"
COINGECKO_TOKEN_PRICE_URL = "https://api.coingecko.com/api/v3/simple/token_price/ethereum"

# ERC-20 view function selectors
_ERC20_NAME = "0x06fdde03"
_ERC20_SYMBOL = "0x95d89b41"
_ERC20_DECIMALS = "0x313ce567"
_ERC20_TOTAL_SUPPLY = "0x18160ddd"

# Unique tokens reported per snapshot
MAX_TOKENS = 10

# Well-known stablecoins → treat as $1.00
_STABLECOIN_SYMBOLS = {
    "USDC", "USDT", "DAI", "BUSD", "TUSD", "FRAX", "LUSD", "USDP", "USDE",
}
# Wrapped ether → price = ETH price
_WRAPPED_NATIVE = {"WETH"}


# ── Base Client ───────────────────────────────────────────────────────────────


class BlockchainDataClient(ABC):
    """Abstract source of balances and transfers for one address."""

    @abstractmethod
    async def get_wallet_data(self, address: str) -> Optional[WalletSnapshot]:
        """Current snapshot, or ``None`` when no data source is configured."""

    @abstractmethod
    async def get_transactions(
        self, address: str, limit: int = 10
    ) -> list[TransferEvent]:
        """Most recent transfers, newest first."""

    @abstractmethod
    async def get_token_info(self, contract: str) -> Optional[TokenMetadata]:
        """ERC-20 metadata for *contract*, or ``None`` if it is not a token."""

    async def get_latest_transfer(self, address: str) -> Optional[TransferEvent]:
        transfers = await self.get_transactions(address, limit=1)
        return transfers[0] if transfers else None


# ── Ethereum mainnet (Etherscan for transfers, JSON-RPC for balance) ─────────


class EtherscanDataClient(BlockchainDataClient):
    def __init__(
        self,
        api_key: Optional[str] = None,
        rpc_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = (
            api_key if api_key is not None else os.getenv("ETHERSCAN_API_KEY", "")
        )
        self.rpc_url = (
            rpc_url if rpc_url is not None else os.getenv("ETH_RPC_URL", DEFAULT_RPC_URL)
        )
        self.timeout = (
            timeout
            if timeout is not None
            else float(os.getenv("HTTP_TIMEOUT_SECONDS", "15"))
        )
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key or self.rpc_url)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    # ── Etherscan API helpers ──────────────────────────────────────────────

    async def _api_call(self, client: httpx.AsyncClient, params: dict) -> dict:
        params["chainid"] = MAINNET_CHAIN_ID
        params["apikey"] = self.api_key
        try:
            resp = await client.get(ETHERSCAN_V2_BASE, params=params)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise DataFetchFailed(f"Etherscan request failed: {exc}") from exc

        result = data.get("result")
        if data.get("status") == "0" and isinstance(result, str):
            if "API Key" in result:
                raise DataFetchFailed(
                    "ETHERSCAN_API_KEY missing or invalid. "
                    "Get a free key at https://etherscan.io/apis"
                )
            if "rate limit" in result.lower():
                raise DataFetchFailed(f"Etherscan rate limited: {result}")
        return data

    # ── JSON-RPC helpers ───────────────────────────────────────────────────

    async def _rpc(
        self,
        client: httpx.AsyncClient,
        method: str,
        params: list,
        allow_error: bool = False,
    ):
        try:
            resp = await client.post(
                self.rpc_url,
                json={"jsonrpc": "2.0", "id": 1, "method": method, "params": params},
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise DataFetchFailed(f"RPC {method} failed: {exc}") from exc

        if data.get("error"):
            if allow_error:
                return None
            raise DataFetchFailed(f"RPC {method} error: {data['error']}")
        return data.get("result")

    # ── Native balance / nonce ─────────────────────────────────────────────

    async def _get_eth_balance(self, client: httpx.AsyncClient, address: str) -> Decimal:
        if self.rpc_url:
            hex_bal = await self._rpc(client, "eth_getBalance", [address, "latest"])
            return wei_to_ether(int(hex_bal or "0x0", 16))

        data = await self._api_call(client, {
            "module": "account",
            "action": "balance",
            "address": address,
            "tag": "latest",
        })
        if data.get("status") == "1" and data.get("result"):
            return wei_to_ether(int(data["result"]))
        return Decimal(0)

    async def _get_transaction_count(
        self, client: httpx.AsyncClient, address: str
    ) -> int:
        if self.rpc_url:
            hex_count = await self._rpc(
                client, "eth_getTransactionCount", [address, "latest"]
            )
        else:
            data = await self._api_call(client, {
                "module": "proxy",
                "action": "eth_getTransactionCount",
                "address": address,
                "tag": "latest",
            })
            hex_count = data.get("result")
        try:
            return int(hex_count or "0x0", 16)
        except (TypeError, ValueError):
            return 0

    # ── Transfers (Etherscan) ──────────────────────────────────────────────

    async def _fetch_transfers(
        self, client: httpx.AsyncClient, address: str, limit: int
    ) -> list[TransferEvent]:
        data = await self._api_call(client, {
            "module": "account",
            "action": "txlist",
            "address": address,
            "startblock": 0,
            "endblock": 99999999,
            "page": 1,
            "offset": limit,
            "sort": "desc",
        })

        if data.get("status") != "1" or not isinstance(data.get("result"), list):
            return []

        return [
            TransferEvent(
                id=tx.get("hash", ""),
                timestamp=str(tx.get("timeStamp", "0")),
                from_address=tx.get("from", ""),
                to_address=tx.get("to") or None,
                value=str(tx.get("value", "0")),
                gas_used=tx.get("gasUsed"),
                gas_price=tx.get("gasPrice"),
            )
            for tx in data["result"][:limit]
        ]

    async def get_transactions(
        self, address: str, limit: int = 10
    ) -> list[TransferEvent]:
        if not self.api_key:
            return []
        async with self._client() as client:
            return await self._fetch_transfers(client, address, limit)

    # ── Token balances (Etherscan tokentx + tokenbalance) ──────────────────

    async def _get_token_balances(
        self, client: httpx.AsyncClient, address: str, eth_price: Optional[float]
    ) -> list[TokenBalance]:
        data = await self._api_call(client, {
            "module": "account",
            "action": "tokentx",
            "address": address,
            "page": 1,
            "offset": 100,
            "sort": "desc",
        })
        if data.get("status") != "1" or not isinstance(data.get("result"), list):
            return []

        # Unique contracts, most recently touched first
        tokens: dict[str, TokenInfo] = {}
        for tx in data["result"]:
            contract = (tx.get("contractAddress") or "").lower()
            if not contract or contract in tokens:
                continue
            tokens[contract] = TokenInfo(
                id=contract,
                symbol=tx.get("tokenSymbol", ""),
                name=tx.get("tokenName") or None,
                decimals=int(tx.get("tokenDecimal") or 18),
            )
            if len(tokens) >= MAX_TOKENS:
                break

        holdings: list[TokenBalance] = []
        for contract, info in tokens.items():
            try:
                bal = await self._api_call(client, {
                    "module": "account",
                    "action": "tokenbalance",
                    "contractaddress": contract,
                    "address": address,
                    "tag": "latest",
                })
            except DataFetchFailed as exc:
                logger.warning("Skipping %s balance for %s: %s",
                               info.symbol or contract, short_address(address), exc)
                continue
            raw = int(bal.get("result") or 0) if bal.get("status") == "1" else 0
            balance = Decimal(raw) / (Decimal(10) ** info.decimals)
            usd = self._estimate_token_usd(info.symbol, balance, eth_price)
            holdings.append(TokenBalance(
                token=info,
                value_exact=str(raw),
                balance=str(balance),
                value_usd=f"{usd:.2f}" if usd is not None else None,
            ))
        return holdings

    @staticmethod
    def _estimate_token_usd(
        symbol: str, balance: Decimal, eth_price: Optional[float]
    ) -> Optional[float]:
        upper = symbol.upper()
        if upper in _STABLECOIN_SYMBOLS:
            return float(balance)
        if upper in _WRAPPED_NATIVE and eth_price is not None:
            return float(balance) * eth_price
        return None

    # ── Token metadata (ERC-20 view calls over JSON-RPC) ──────────────────

    async def _eth_call(
        self, client: httpx.AsyncClient, contract: str, selector: str
    ) -> bytes:
        # A revert means the contract lacks the function
        result = await self._rpc(
            client,
            "eth_call",
            [{"to": contract, "data": selector}, "latest"],
            allow_error=True,
        )
        if not result or result == "0x":
            return b""
        return bytes.fromhex(result[2:])

    @staticmethod
    def _decode_text(raw: bytes) -> Optional[str]:
        if not raw:
            return None
        if len(raw) == 32:
            # Older tokens (MKR, SAI) return bytes32 instead of string
            text = raw.rstrip(b"\x00").decode("utf-8", errors="replace")
        else:
            try:
                (text,) = decode(["string"], raw)
            except (DecodingError, UnicodeDecodeError):
                return None
        return text or None

    @staticmethod
    def _decode_uint(raw: bytes) -> Optional[int]:
        return int.from_bytes(raw[:32], "big") if len(raw) >= 32 else None

    async def get_token_info(self, contract: str) -> Optional[TokenMetadata]:
        contract = contract.strip()
        if not is_evm_address(contract):
            raise ValidationError(f"{contract} is not a valid contract address")
        if not self.rpc_url:
            raise DataFetchFailed("No RPC endpoint configured for token lookups")

        async with self._client() as client:
            name = self._decode_text(await self._eth_call(client, contract, _ERC20_NAME))
            symbol = self._decode_text(
                await self._eth_call(client, contract, _ERC20_SYMBOL)
            )
            decimals = self._decode_uint(
                await self._eth_call(client, contract, _ERC20_DECIMALS)
            )
            supply = self._decode_uint(
                await self._eth_call(client, contract, _ERC20_TOTAL_SUPPLY)
            )

        if symbol is None and decimals is None and supply is None:
            logger.info("%s does not look like an ERC-20 token", short_address(contract))
            return None

        total_supply = None
        if supply is not None:
            total_supply = str(Decimal(supply) / (Decimal(10) ** (decimals or 0)))

        price = await get_token_price(
            contract, timeout=self.timeout, transport=self._transport
        )
        return TokenMetadata(
            contract=contract.lower(),
            name=name,
            symbol=symbol,
            decimals=decimals,
            total_supply_exact=str(supply) if supply is not None else None,
            total_supply=total_supply,
            price_usd=price,
        )

    # ── Snapshot (combines RPC balance + Etherscan activity) ───────────────

    async def get_wallet_data(self, address: str) -> Optional[WalletSnapshot]:
        if not self.configured:
            logger.debug("No blockchain data source configured; snapshot absent")
            return None

        eth_price = await get_eth_price(timeout=self.timeout, transport=self._transport)

        async with self._client() as client:
            eth_balance = await self._get_eth_balance(client, address)
            tx_count = await self._get_transaction_count(client, address)

            tokens: list[TokenBalance] = []
            transfers: list[TransferEvent] = []
            # Etherscan sections degrade independently; balance and nonce are kept
            if self.api_key:
                try:
                    transfers = await self._fetch_transfers(client, address, 10)
                except DataFetchFailed as exc:
                    logger.warning("Recent transfers unavailable for %s: %s",
                                   short_address(address), exc)
                try:
                    tokens = await self._get_token_balances(client, address, eth_price)
                except DataFetchFailed as exc:
                    logger.warning("Token balances unavailable for %s: %s",
                                   short_address(address), exc)

        total_usd: Optional[str] = None
        if eth_price is not None:
            total = float(eth_balance) * eth_price + sum(
                float(t.value_usd) for t in tokens if t.value_usd is not None
            )
            total_usd = f"{total:.2f}"

        logger.info(
            "Fetched snapshot for %s: %s ETH, %d txs",
            short_address(address), eth_balance, tx_count,
        )
        return WalletSnapshot(
            address=address,
            eth_balance=str(eth_balance),
            total_value_usd=total_usd,
            token_balances=tokens,
            transaction_count=tx_count,
            last_activity=transfers[0].timestamp if transfers else "0",
            recent_transfers=transfers,
            fetched_at=utcnow(),
        )


# ── Price Fetcher ─────────────────────────────────────────────────────────────


async def get_eth_price(
    timeout: float = 10,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Optional[float]:
    """Current ETH/USD from CoinGecko, or ``None`` if unavailable."""
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            resp = await client.get(
                COINGECKO_PRICE_URL,
                params={"ids": "ethereum", "vs_currencies": "usd"},
            )
            if resp.status_code == 200:
                price = resp.json().get("ethereum", {}).get("usd")
                if price:
                    return float(price)
            logger.warning("CoinGecko returned HTTP %s", resp.status_code)
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("CoinGecko unavailable: %s", exc)
    return None


async def get_token_price(
    contract: str,
    timeout: float = 10,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Optional[float]:
    """USD price of an ERC-20 on Ethereum from CoinGecko, or ``None``."""
    contract = contract.lower()
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            resp = await client.get(
                COINGECKO_TOKEN_PRICE_URL,
                params={"contract_addresses": contract, "vs_currencies": "usd"},
            )
            if resp.status_code == 200:
                price = resp.json().get(contract, {}).get("usd")
                if price is not None:
                    return float(price)
                return None
            logger.warning("CoinGecko token price returned HTTP %s", resp.status_code)
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("CoinGecko unavailable: %s", exc)
    return None
