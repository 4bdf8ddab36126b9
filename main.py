import io
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Literal, Optional

from dotenv import load_dotenv
from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from fastmcp import FastMCP

load_dotenv()

from agent import PlutoAssistant
from chain_providers import EtherscanDataClient
from conversation import PlutoChat, require_text
from errors import (
    PlutoError,
    UnknownToken,
    UnknownWallet,
    UpstreamServiceFailure,
    ValidationError,
)
from exports import to_csv, to_excel
from keys import EthereumKeyProvider
from models import (
    ChatRequest,
    ChatResponse,
    HealthResponse,
    ImportWalletRequest,
    MonitorRequest,
)
from monitor import DEFAULT_INTERVAL_MS
from registry import WalletRegistry
from speech import Speaker
from utils import utcnow

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


# ── Services ──────────────────────────────────────────────────────────────────


@dataclass
class Services:
    registry: WalletRegistry
    chat: PlutoChat
    speaker: Speaker


def build_services() -> Services:
    """Wire the default collaborators from environment configuration."""
    registry = WalletRegistry(EthereumKeyProvider(), EtherscanDataClient())
    speaker = Speaker()
    try:
        assistant: Optional[PlutoAssistant] = PlutoAssistant()
    except Exception as e:
        logger.warning("Assistant disabled: %s", e)
        assistant = None
    interval = int(os.getenv("MONITOR_INTERVAL_MS", str(DEFAULT_INTERVAL_MS)))
    chat = PlutoChat(assistant, registry, speaker, monitor_interval_ms=interval)
    return Services(registry=registry, chat=chat, speaker=speaker)


def get_services(request: Request) -> Services:
    return request.app.state.services


def _timestamp() -> str:
    return utcnow().isoformat()


def _error(status_code: int, category: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": category, "message": message},
    )


# ── Lifespan ──────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services()
    logger.info("Pluto wallet agent ready")
    # The mounted MCP app needs its session manager running
    async with app.state.mcp_app.lifespan(app):
        yield
    services: Services = app.state.services
    await services.registry.shutdown()
    services.speaker.close()
    logger.info("Shutting down.")


# ── App ───────────────────────────────────────────────────────────────────────


def create_app(services: Optional[Services] = None) -> FastAPI:
    app = FastAPI(
        title="Pluto Wallet Agent",
        description=(
            "Chat with Pluto, a blockchain assistant that can generate or import "
            "Ethereum wallets, fetch balances and transfers, and watch wallets "
            "for new transactions.\n\n"
            "Exposes **REST** and **MCP** (`/mcp`) endpoints."
        ),
        version=VERSION,
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_error_handlers(app)
    _register_routes(app)
    mcp_app = _build_mcp(app).http_app(path="/", json_response=True, stateless_http=True)
    app.state.mcp_app = mcp_app
    app.mount("/mcp", mcp_app)
    return app


# ── Errors ────────────────────────────────────────────────────────────────────


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(PlutoError)
    async def pluto_error_handler(request: Request, exc: PlutoError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return _error(exc.status_code, exc.category, exc.message)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
            for err in exc.errors()
        )
        return _error(400, ValidationError.category, details or "Invalid request")

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(500, "internal_error", str(exc) or exc.__class__.__name__)


# ── Routes ────────────────────────────────────────────────────────────────────


def _register_routes(app: FastAPI) -> None:

    # ── Info ──────────────────────────────────────────────────────────────

    @app.get("/health", response_model=HealthResponse, tags=["Info"])
    def health():
        return HealthResponse(status="ok", version=VERSION)

    @app.post("/echo", tags=["Info"])
    async def echo(request: Request):
        """Return the request body as received."""
        raw = await request.body()
        try:
            body = await request.json() if raw else None
        except ValueError:
            body = raw.decode("utf-8", errors="replace")
        return {"youSent": body}

    # ── Chat ──────────────────────────────────────────────────────────────

    @app.post("/", response_model=ChatResponse, tags=["Chat"])
    async def chat(req: ChatRequest, services: Services = Depends(get_services)):
        """
        Talk to Pluto.

        The message is classified first; confident wallet requests
        ("create a wallet", "watch 0x...") run the matching action, anything
        else gets a conversational reply. The reply is also spoken aloud.
        """
        return await services.chat.handle(req.text)

    @app.post("/chat/stream", tags=["Chat"])
    async def chat_stream(req: ChatRequest, services: Services = Depends(get_services)):
        """Stream Pluto's reply as plain text."""
        text = require_text(req.text)
        if services.chat.assistant is None:
            raise UpstreamServiceFailure("Assistant is not configured")
        return StreamingResponse(services.chat.stream(text), media_type="text/plain")

    # ── Wallets ───────────────────────────────────────────────────────────

    @app.post("/wallet/generate", tags=["Wallet"])
    async def generate_wallet(services: Services = Depends(get_services)):
        record = await services.registry.create()
        return {
            "success": True,
            "message": "Wallet generated successfully",
            "wallet": record.summary(include_secrets=True),
            "timestamp": _timestamp(),
        }

    @app.post("/wallet/import", tags=["Wallet"])
    async def import_wallet(
        req: ImportWalletRequest, services: Services = Depends(get_services)
    ):
        """Import from `privateKey` or `mnemonic` (private key wins if both are sent)."""
        if req.private_key and req.private_key.strip():
            record = await services.registry.import_from_private_key(req.private_key)
        elif req.mnemonic and req.mnemonic.strip():
            record = await services.registry.import_from_mnemonic(req.mnemonic)
        else:
            raise ValidationError("Either privateKey or mnemonic must be provided")
        return {
            "success": True,
            "message": "Wallet imported successfully",
            "wallet": record.summary(include_secrets=True),
            "timestamp": _timestamp(),
        }

    @app.get("/wallets", tags=["Wallet"])
    async def list_wallets(services: Services = Depends(get_services)):
        wallets = services.registry.list()
        return {
            "success": True,
            "count": len(wallets),
            "wallets": [w.summary() for w in wallets],
            "timestamp": _timestamp(),
        }

    @app.get("/wallet/{address}", tags=["Wallet"])
    async def get_wallet(
        address: str,
        include_secrets: bool = Query(
            default=False, description="Include private key and mnemonic"
        ),
        services: Services = Depends(get_services),
    ):
        record = services.registry.get(address)
        if record is None:
            raise UnknownWallet(address)
        return {
            "success": True,
            "wallet": record.summary(include_secrets=include_secrets),
            "timestamp": _timestamp(),
        }

    @app.delete("/wallet/{address}", tags=["Wallet"])
    async def remove_wallet(address: str, services: Services = Depends(get_services)):
        if not await services.registry.remove(address):
            raise UnknownWallet(address)
        return {
            "success": True,
            "message": f"Wallet {address} removed",
            "timestamp": _timestamp(),
        }

    @app.post("/wallet/{address}/update", tags=["Wallet"])
    async def update_wallet(address: str, services: Services = Depends(get_services)):
        snapshot = await services.registry.update_data(address)
        return {
            "success": True,
            "address": address,
            "data": snapshot.model_dump(mode="json") if snapshot else None,
            "timestamp": _timestamp(),
        }

    @app.get("/wallet/{address}/transactions", tags=["Wallet"])
    async def wallet_transactions(
        address: str,
        limit: int = Query(default=10, ge=1, le=100),
        format: Literal["json", "csv", "excel"] = Query(
            default="json",
            description="Output format: json (default) | csv | excel",
        ),
        services: Services = Depends(get_services),
    ):
        transfers = await services.registry.transactions(address, limit)
        short = address[:12]

        if format == "csv":
            return StreamingResponse(
                content=io.BytesIO(to_csv(address, transfers)),
                media_type="text/csv",
                headers={
                    "Content-Disposition": f'attachment; filename="wallet_{short}_transactions.csv"'
                },
            )

        if format == "excel":
            return StreamingResponse(
                content=io.BytesIO(to_excel(address, transfers)),
                media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                headers={
                    "Content-Disposition": f'attachment; filename="wallet_{short}_transactions.xlsx"'
                },
            )

        return {
            "success": True,
            "address": address,
            "count": len(transfers),
            "transactions": [t.model_dump(mode="json") for t in transfers],
            "timestamp": _timestamp(),
        }

    @app.post("/wallet/{address}/monitor", tags=["Monitoring"])
    async def monitor_wallet(
        address: str,
        req: Optional[MonitorRequest] = Body(default=None),
        services: Services = Depends(get_services),
    ):
        interval = (req.interval_ms if req else None) or services.chat.monitor_interval_ms
        record = services.registry.get(address)
        if record is None:
            raise UnknownWallet(address)
        started = await services.registry.start_monitoring(
            record.address,
            interval,
            callback=lambda tx: services.chat.announce_transfer(record.address, tx),
        )
        # Report what is actually running; a stop or delete may have raced the start
        current = services.registry.get(record.address)
        monitoring = current is not None and current.monitoring
        if started:
            message = f"Started monitoring wallet {record.address}"
        elif monitoring:
            message = f"Wallet {record.address} is already being monitored"
        else:
            message = f"Monitoring of wallet {record.address} was cancelled before it started"
        return {
            "success": True,
            "address": record.address,
            "monitoring": monitoring,
            "message": message,
            "intervalMs": current.monitor_interval_ms if current else None,
            "timestamp": _timestamp(),
        }

    @app.post("/wallet/{address}/stop-monitor", tags=["Monitoring"])
    async def stop_monitor(address: str, services: Services = Depends(get_services)):
        stopped = await services.registry.stop_monitoring(address)
        return {
            "success": True,
            "address": address,
            "monitoring": False,
            "message": (
                f"Stopped monitoring wallet {address}"
                if stopped
                else f"Wallet {address} was not being monitored"
            ),
            "timestamp": _timestamp(),
        }

    # ── Tokens ────────────────────────────────────────────────────────────

    @app.get("/token/{contract}", tags=["Token"])
    async def token_info(contract: str, services: Services = Depends(get_services)):
        """ERC-20 name, symbol, decimals, supply and USD price for a contract."""
        token = await services.registry.data_client.get_token_info(contract)
        if token is None:
            raise UnknownToken(contract)
        return {
            "success": True,
            "token": token.model_dump(mode="json"),
            "timestamp": _timestamp(),
        }


# ── MCP Server (mounted at /mcp) ─────────────────────────────────────────────


def _build_mcp(app: FastAPI) -> FastMCP:
    mcp = FastMCP(
        name="Pluto Wallet Agent",
        instructions=(
            "Pluto is a blockchain assistant. Chat with it about Web3 topics, "
            "generate Ethereum wallets and look up wallets it manages."
        ),
    )

    @mcp.tool()
    async def chat_with_pluto(text: str) -> dict:
        """
        Send a message to Pluto.

        Args:
            text: The user's message. Wallet requests are carried out directly.

        Returns:
            Pluto's reply with the action taken, if any.
        """
        response = await app.state.services.chat.handle(text)
        return response.model_dump(mode="json")

    @mcp.tool()
    async def generate_wallet() -> dict:
        """Generate a new Ethereum wallet and return its address and keys."""
        record = await app.state.services.registry.create()
        return record.summary(include_secrets=True)

    @mcp.tool()
    async def get_wallet(address: str) -> dict:
        """
        Look up a wallet managed by Pluto.

        Args:
            address: Ethereum address (0x...).
        """
        record = app.state.services.registry.get(address)
        if record is None:
            return {"error": f"Wallet {address} not found"}
        return record.summary()

    @mcp.tool()
    async def get_token_info(contract: str) -> dict:
        """
        Look up an ERC-20 token on Ethereum mainnet.

        Args:
            contract: Token contract address (0x...).

        Returns:
            Name, symbol, decimals, total supply and USD price when known.
        """
        token = await app.state.services.registry.data_client.get_token_info(contract)
        if token is None:
            return {"error": f"No ERC-20 token found at {contract}"}
        return token.model_dump(mode="json")

    return mcp


logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()


# ── Entry point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3000")),
        reload=os.getenv("APP_ENV", "development") == "development",
    )
