"""forge-lsp HTTP API Server.

FastAPI front-end exposing the same reference lookups as the pipe server:

- GET  /api/health
- POST /api/textDocument/references   {uri, position}
- POST /api/findReferences            {symbolName}
"""

import socket
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import structlog
import uvicorn

from forgelsp.bridge.protocol import Position, SymbolLocation
from forgelsp.core.errors import (
    BridgeError,
    ErrorKind,
    TransportError,
    ValidationError,
    classify_error,
    log_classified,
)
from forgelsp.intelligence.engine import Engine
from forgelsp.intelligence.references import ReferenceAggregator
from forgelsp.intelligence.resolver import FallbackScope, SymbolResolver

log = structlog.get_logger()

FIND_REFERENCES_EXAMPLE = {"symbolName": "myFunction"}


# Pydantic models for API
class PositionModel(BaseModel):
    """Zero-indexed document position."""
    line: int = Field(..., ge=0)
    character: int = Field(..., ge=0)


class ReferencesRequest(BaseModel):
    """Request for references at a location."""
    uri: str = Field(..., min_length=1)
    position: PositionModel


class FindReferencesRequest(BaseModel):
    """Request for references by symbol name."""
    symbolName: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    workspace: str
    timestamp: str


class BridgeAPI:
    """HTTP API application state."""

    def __init__(
        self,
        engine: Engine,
        workspace: Optional[Path] = None,
        fallback_scope: FallbackScope = FallbackScope.WORKSPACE,
    ):
        self.engine = engine
        self.workspace = workspace
        self.aggregator = ReferenceAggregator(
            engine, SymbolResolver(engine, scope=fallback_scope)
        )

    @property
    def workspace_label(self) -> str:
        return str(self.workspace) if self.workspace else "No workspace"


def _error_response(error: BaseException) -> JSONResponse:
    classified = classify_error(error)
    log_classified("http_request_failed", classified)
    labels = {
        ErrorKind.VALIDATION: "Invalid request",
        ErrorKind.NOT_FOUND: "Not found",
        ErrorKind.ENGINE: "Engine failure",
    }
    body = {
        "error": labels.get(classified.kind, "Internal server error"),
        "message": classified.message,
    }
    return JSONResponse(status_code=classified.http_status, content=body)


def create_app(
    engine: Engine,
    workspace: Optional[Path] = None,
    fallback_scope: FallbackScope = FallbackScope.WORKSPACE,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        engine: Language-intelligence engine to query
        workspace: Workspace root reported by the health route
        fallback_scope: Which open documents the resolver may scan

    Returns:
        Configured FastAPI application
    """

    api = BridgeAPI(engine, workspace=workspace, fallback_scope=fallback_scope)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        log.info("http_api_started", workspace=api.workspace_label)
        yield
        log.info("http_api_stopped")

    app = FastAPI(
        title="forge-lsp API",
        description="Code intelligence from a language server over HTTP",
        version="0.1.0",
        lifespan=lifespan
    )

    # Local tooling only, but browser-based tools still need CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.api = api

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        log.info("http_body_invalid", path=request.url.path)
        if request.url.path == "/api/findReferences":
            # Empty, non-JSON or non-string bodies all lack a usable name
            return JSONResponse(
                status_code=400,
                content={
                    "error": "Missing required field: symbolName",
                    "example": FIND_REFERENCES_EXAMPLE,
                },
            )
        return JSONResponse(
            status_code=400,
            content={
                "error": "Invalid request body",
                "detail": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(BridgeError)
    async def bridge_error_handler(request: Request, exc: BridgeError):
        return _error_response(exc)

    # ===== Health =====

    @app.get("/api/health", response_model=HealthResponse, tags=["System"])
    async def health_check():
        """Check API health status."""
        return HealthResponse(
            status="ok",
            workspace=api.workspace_label,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    # ===== References =====

    @app.post("/api/textDocument/references", tags=["References"])
    async def references_at(request: ReferencesRequest):
        """List references to the symbol at a document position."""
        location = SymbolLocation(
            uri=request.uri,
            position=Position(
                line=request.position.line, character=request.position.character
            ),
        )
        try:
            references = await api.aggregator.aggregate(location)
        except Exception as e:
            return _error_response(e)
        return {"references": [ref.to_dict() for ref in references]}

    @app.post("/api/findReferences", tags=["References"])
    async def find_references(request: FindReferencesRequest):
        """Resolve a symbol by name and list its references."""
        symbol_name = request.symbolName
        if not symbol_name or not symbol_name.strip():
            log.info("http_symbol_name_missing")
            return JSONResponse(
                status_code=400,
                content={
                    "error": "Missing required field: symbolName",
                    "example": FIND_REFERENCES_EXAMPLE,
                },
            )

        try:
            result = await api.aggregator.find_references(symbol_name)
        except ValidationError as e:
            return JSONResponse(
                status_code=400,
                content={"error": e.message, "example": FIND_REFERENCES_EXAMPLE},
            )
        except BridgeError as e:
            if e.kind == ErrorKind.NOT_FOUND:
                log.info("http_symbol_not_found", symbol=symbol_name)
                return JSONResponse(
                    status_code=404,
                    content={
                        "error": "Symbol not found",
                        "symbolName": symbol_name,
                        "message": e.message,
                    },
                )
            return _error_response(e)
        except Exception as e:
            return _error_response(e)

        return result.to_dict()

    return app


def ensure_port_available(host: str, port: int) -> None:
    """Fail fast when the port is taken; there is no port search.

    Raises:
        TransportError: If the port cannot be bound
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
        try:
            probe.bind((host, port))
        except OSError as e:
            raise TransportError(f"Port {port} on {host} is not available: {e}")


def build_server(app: FastAPI, host: str = "127.0.0.1", port: int = 3000) -> uvicorn.Server:
    """Create a uvicorn server for the app after checking the port."""
    ensure_port_available(host, port)
    config = uvicorn.Config(app, host=host, port=port, log_config=None, log_level="info")
    return uvicorn.Server(config)
