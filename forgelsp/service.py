"""Bridge service lifecycle.

Owns the engine and exactly one transport (pipe or HTTP), and tears both
down in order: transport first, then the engine.
"""

import asyncio
import signal
from typing import Optional

import structlog

from forgelsp.bridge.endpoint import derive_address, display_name
from forgelsp.bridge.server import PipeServer
from forgelsp.config import BridgeConfig
from forgelsp.core.errors import EngineError
from forgelsp.intelligence.engine import DocumentSync, Engine
from forgelsp.intelligence.lsp import LanguageServerEngine

log = structlog.get_logger()


def create_engine(config: BridgeConfig) -> LanguageServerEngine:
    """Build the language server engine described by the config."""
    return LanguageServerEngine(
        command=config.server_command,
        root=config.workspace_root,
        request_timeout=config.engine_timeout,
    )


class BridgeService:
    """Runs one bridge: engine plus a single transport.

    Usage:
        service = BridgeService(config)
        await service.start()
        await service.serve()   # until cancelled; shuts down on exit
    """

    def __init__(self, config: BridgeConfig, engine: Optional[Engine] = None):
        self.config = config
        self._owns_engine = engine is None
        self.engine = engine if engine is not None else create_engine(config)
        self.pipe_server: Optional[PipeServer] = None
        self.http_server = None
        self._http_task: Optional[asyncio.Task] = None
        self._address: Optional[str] = None
        self._stopped = False

    @property
    def address(self) -> str:
        """Address clients should use for this service."""
        if self.config.transport == "http":
            return f"http://{self.config.host}:{self.config.port}"
        if self._address is None:
            # Derived once; without a workspace the suffix is random
            self._address = derive_address(
                self.config.workspace_root, socket_dir=self.config.socket_dir
            )
        return self._address

    async def start(self) -> None:
        """Start the engine, open configured files, then bind the transport.

        Raises:
            EngineError: If the engine cannot be started
            TransportError: If the address or port is unavailable
        """
        if self._owns_engine:
            await self.engine.start()

        try:
            await self._open_configured_files()
            if self.config.transport == "http":
                await self.start_http()
            else:
                await self.start_pipe()
        except BaseException:
            await self._stop_engine()
            raise

    async def _open_configured_files(self) -> None:
        if not self.config.open_files:
            return
        if not isinstance(self.engine, DocumentSync):
            log.warning("open_files_unsupported", count=len(self.config.open_files))
            return
        for path in self.config.open_files:
            try:
                await self.engine.open_document(str(path))
            except EngineError as e:
                log.warning("open_file_failed", path=str(path), error=str(e))

    async def start_pipe(self) -> PipeServer:
        address = self.address
        server = PipeServer(
            self.engine,
            address,
            workspace=self.config.workspace_root,
            fallback_scope=self.config.fallback_scope,
        )
        await server.start()
        self.pipe_server = server
        log.info("bridge_started", transport="pipe", name=display_name(address))
        return server

    async def start_http(self) -> None:
        from forgelsp.web.server import build_server, create_app

        app = create_app(
            self.engine,
            workspace=self.config.workspace_root,
            fallback_scope=self.config.fallback_scope,
        )
        self.http_server = build_server(app, host=self.config.host, port=self.config.port)
        self._http_task = asyncio.create_task(self.http_server.serve())
        log.info("bridge_started", transport="http", address=self.address)

    async def serve(self) -> None:
        """Serve until cancelled or signalled, then shut down."""
        loop = asyncio.get_running_loop()
        current = asyncio.current_task()
        installed = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, current.cancel)
                installed.append(sig)
            except (NotImplementedError, RuntimeError):
                # Windows event loops have no signal handlers
                pass

        try:
            if self.pipe_server is not None:
                await self.pipe_server.serve_forever()
            elif self._http_task is not None:
                await self._http_task
        except asyncio.CancelledError:
            log.info("bridge_interrupted")
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            await self.shutdown()

    async def shutdown(self) -> None:
        """Close the transport, then the engine. Safe to call twice."""
        if self._stopped:
            return
        self._stopped = True

        if self.pipe_server is not None:
            await self.pipe_server.close()
            self.pipe_server = None

        if self._http_task is not None:
            self.http_server.should_exit = True
            try:
                await self._http_task
            except asyncio.CancelledError:
                pass
            self._http_task = None

        await self._stop_engine()
        log.info("bridge_stopped")

    async def _stop_engine(self) -> None:
        if self._owns_engine:
            await self.engine.shutdown()
