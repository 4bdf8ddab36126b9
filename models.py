from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# ── Enums ─────────────────────────────────────────────────────────────────────


class IntentAction(str, Enum):
    CREATE_WALLET = "CREATE_WALLET"
    IMPORT_WALLET_PRIVATE_KEY = "IMPORT_WALLET_PRIVATE_KEY"
    IMPORT_WALLET_MNEMONIC = "IMPORT_WALLET_MNEMONIC"
    GET_WALLET_INFO = "GET_WALLET_INFO"
    MONITOR_WALLET = "MONITOR_WALLET"
    GET_WALLET_TRANSACTIONS = "GET_WALLET_TRANSACTIONS"
    NONE = "NONE"


# ── Core Data Models ──────────────────────────────────────────────────────────


class WalletKeys(BaseModel):
    address: str
    public_key: str
    private_key: str
    mnemonic: str = ""


class TokenInfo(BaseModel):
    id: str
    symbol: str
    name: Optional[str] = None
    decimals: int = 18


class TokenBalance(BaseModel):
    token: TokenInfo
    value_exact: str = "0"
    balance: str = "0"
    value_usd: Optional[str] = None


class TokenMetadata(BaseModel):
    contract: str
    name: Optional[str] = None
    symbol: Optional[str] = None
    decimals: Optional[int] = None
    total_supply_exact: Optional[str] = None
    total_supply: Optional[str] = None
    price_usd: Optional[float] = None


class TransferToken(BaseModel):
    symbol: str
    name: Optional[str] = None


class TransferEvent(BaseModel):
    id: str
    timestamp: str
    from_address: str
    to_address: Optional[str] = None
    value: str = "0"
    gas_used: Optional[str] = None
    gas_price: Optional[str] = None
    token: Optional[TransferToken] = None


class WalletSnapshot(BaseModel):
    address: str
    eth_balance: str = "0"
    total_value_usd: Optional[str] = None
    token_balances: list[TokenBalance] = []
    transaction_count: int = 0
    last_activity: str = "0"
    recent_transfers: list[TransferEvent] = []
    fetched_at: datetime


class WalletRecord(BaseModel):
    keys: WalletKeys
    last_snapshot: Optional[WalletSnapshot] = None
    monitoring: bool = False
    monitor_interval_ms: Optional[int] = None
    created_at: datetime
    last_updated_at: datetime

    @property
    def address(self) -> str:
        return self.keys.address

    def summary(self, include_secrets: bool = False) -> dict:
        """JSON-ready view of the record. Key material is opt-in."""
        data: dict[str, Any] = {
            "address": self.keys.address,
            "public_key": self.keys.public_key,
            "monitoring": self.monitoring,
            "monitor_interval_ms": self.monitor_interval_ms,
            "created_at": self.created_at.isoformat(),
            "last_updated_at": self.last_updated_at.isoformat(),
            "data": (
                self.last_snapshot.model_dump(mode="json")
                if self.last_snapshot
                else None
            ),
        }
        if include_secrets:
            data["private_key"] = self.keys.private_key
            data["mnemonic"] = self.keys.mnemonic
        return data


class IntentResult(BaseModel):
    action: IntentAction
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    parameters: dict[str, Any] = {}


# ── API Models ────────────────────────────────────────────────────────────────


class HealthResponse(BaseModel):
    status: str
    version: str


class ChatRequest(BaseModel):
    text: str = Field(..., description="Message for Pluto")


class ChatResponse(BaseModel):
    success: bool = True
    user_input: str
    pluto_response: str
    action: Optional[IntentAction] = None
    data: Optional[Any] = None
    timestamp: datetime


class ImportWalletRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    private_key: Optional[str] = Field(
        None, alias="privateKey", description="Hex private key (0x...)"
    )
    mnemonic: Optional[str] = Field(None, description="BIP-39 recovery phrase")


class MonitorRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    interval_ms: Optional[int] = Field(
        None,
        alias="intervalMs",
        ge=1000,
        description="Polling interval in milliseconds (minimum 1000)",
    )
