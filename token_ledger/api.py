"""
FastAPI REST API Module

HTTP front for the contract runtime. The fronting environment authenticates
callers and passes the identity in the X-Caller header, which is trusted
as-is. Ledger outcomes (including rejections) are HTTP 200 with an ok/error
envelope; HTTP errors are reserved for requests that never reached the
ledger.
"""

from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, List, Optional

from fastapi import FastAPI, HTTPException, Depends, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
import uvicorn

from . import __version__
from .config import get_config
from .event_log import EventKind
from .ledger import TokenLedger
from .logging_config import setup_logging
from .runtime import ContractRuntime, UnknownFunctionError, ArgumentError

# Positional arguments that carry bytes; they travel as hex over HTTP
BYTES_ARGUMENTS = {"transfer": 3}


class CallRequest(BaseModel):
    args: List[Any] = Field(default_factory=list, description="Positional arguments")


class CallResponse(BaseModel):
    ok: bool
    value: Optional[Any] = None
    error: Optional[int] = None


def _jsonable(value: Any) -> Any:
    """Render runtime values for JSON: bytes as hex, containers recursively"""
    if isinstance(value, bytes):
        return value.hex()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _decode_args(function_name: str, args: List[Any]) -> List[Any]:
    args = list(args)
    index = BYTES_ARGUMENTS.get(function_name)
    if index is not None and index < len(args) and isinstance(args[index], str):
        try:
            args[index] = bytes.fromhex(args[index])
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Argument {index} of {function_name} must be hex")
    return args


def get_runtime(request: Request) -> ContractRuntime:
    return request.app.state.runtime


def get_caller(x_caller: Optional[str] = Header(None)) -> str:
    """Authenticated caller identity supplied by the environment"""
    if not x_caller:
        raise HTTPException(status_code=400, detail="X-Caller header is required")
    return x_caller


def _event_kind(kind: str) -> EventKind:
    try:
        return EventKind(kind)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown event log: {kind}")


def create_app(runtime: Optional[ContractRuntime] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    if runtime is None:
        runtime = ContractRuntime(TokenLedger.from_config())

    app = FastAPI(
        title="Token Ledger API",
        description="Single-asset fungible token ledger",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get("/functions")
    async def list_functions(runtime: ContractRuntime = Depends(get_runtime)):
        """Entry points of the call surface"""
        return runtime.describe()

    def _call(runtime: ContractRuntime, function_name: str, request: CallRequest,
              caller: str, read_only: bool) -> CallResponse:
        args = _decode_args(function_name, request.args)
        try:
            if read_only:
                result = runtime.call_read_only(function_name, args, caller)
            else:
                result = runtime.call_public(function_name, args, caller)
        except UnknownFunctionError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except ArgumentError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return CallResponse(**_jsonable(result.to_dict()))

    @app.post("/call/{function_name}", response_model=CallResponse)
    def call_public(
        function_name: str,
        request: CallRequest,
        caller: str = Depends(get_caller),
        runtime: ContractRuntime = Depends(get_runtime)
    ):
        """Invoke a mutating entry point"""
        return _call(runtime, function_name, request, caller, read_only=False)

    @app.post("/read/{function_name}", response_model=CallResponse)
    def call_read_only(
        function_name: str,
        request: CallRequest,
        caller: str = Depends(get_caller),
        runtime: ContractRuntime = Depends(get_runtime)
    ):
        """Invoke a query"""
        return _call(runtime, function_name, request, caller, read_only=True)

    @app.get("/token")
    def get_token(runtime: ContractRuntime = Depends(get_runtime)):
        """Token metadata, supply and administrative flags"""
        ledger = runtime.ledger
        metadata = ledger.get_metadata()
        return {
            "name": metadata.name,
            "symbol": metadata.symbol,
            "decimals": metadata.decimals,
            "uri": metadata.uri,
            "total_supply": ledger.get_total_supply(),
            "minter": ledger.get_minter(),
            "paused": ledger.is_paused()
        }

    @app.get("/balances/{account}")
    def get_balance(account: str, runtime: ContractRuntime = Depends(get_runtime)):
        ledger = runtime.ledger
        return {
            "account": account,
            "balance": ledger.get_balance(account),
            "blacklisted": ledger.is_blacklisted(account)
        }

    @app.get("/allowances/{owner}/{spender}")
    def get_allowance(owner: str, spender: str, runtime: ContractRuntime = Depends(get_runtime)):
        return {
            "owner": owner,
            "spender": spender,
            "amount": runtime.ledger.get_allowance(owner, spender)
        }

    @app.get("/events/{kind}")
    def get_event_count(kind: str, runtime: ContractRuntime = Depends(get_runtime)):
        event_kind = _event_kind(kind)
        return {"kind": event_kind.value, "count": runtime.ledger.get_event_count(event_kind)}

    @app.get("/events/{kind}/{event_id}")
    def get_event(kind: str, event_id: int, runtime: ContractRuntime = Depends(get_runtime)):
        event_kind = _event_kind(kind)
        event = runtime.ledger.get_event(event_kind, event_id)
        if event is None:
            raise HTTPException(status_code=404, detail=f"{event_kind.value} event {event_id} not found")
        return _jsonable(asdict(event))

    @app.get("/audit/integrity")
    def verify_audit_trail(runtime: ContractRuntime = Depends(get_runtime)):
        """Verify the hash chain of the audit trail"""
        audit_trail = runtime.ledger.audit_trail
        if audit_trail is None:
            raise HTTPException(status_code=404, detail="Audit logging is disabled")
        return audit_trail.verify_integrity()

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the API server with the configured ledger"""
    config = get_config()
    setup_logging(level="DEBUG" if debug else config.log_level, log_format=config.log_format)
    uvicorn.run(
        create_app(),
        host=host or config.api_host,
        port=port or config.api_port,
        log_level="debug" if debug else "info"
    )
