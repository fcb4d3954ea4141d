"""Pipe Server Implementation.

JSON-RPC server on a workspace-specific Unix domain socket (POSIX) or named
pipe (Windows). Each connection gets its own framer; requests on one
connection are handled one at a time in arrival order, while separate
connections proceed independently.
"""

import asyncio
import itertools
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import structlog

from forgelsp.bridge.dispatcher import Dispatcher
from forgelsp.bridge.endpoint import display_name, is_windows
from forgelsp.bridge.framing import MessageFramer
from forgelsp.bridge.protocol import (
    DidOpenParams,
    FindReferencesParams,
    HealthResult,
    NotificationMethod,
    RequestMethod,
    SymbolLocation,
)
from forgelsp.core.errors import TransportError
from forgelsp.intelligence.engine import DocumentSync, Engine
from forgelsp.intelligence.references import ReferenceAggregator
from forgelsp.intelligence.resolver import FallbackScope, SymbolResolver

log = structlog.get_logger()

READ_CHUNK_SIZE = 65536


class PipeServer:
    """JSON-RPC server for local tooling.

    Methods:
    - health: server status and address
    - findReferences: resolve a symbol by name, then list its references
    - textDocument/references: references at an explicit location

    Notifications:
    - textDocument/didOpen, textDocument/didClose: document sync with the
      engine, feeding the fallback scan
    """

    def __init__(
        self,
        engine: Engine,
        address: str,
        workspace: Optional[Path] = None,
        fallback_scope: FallbackScope = FallbackScope.WORKSPACE,
    ):
        """Initialize pipe server.

        Args:
            engine: Language-intelligence engine to query
            address: Socket path or named pipe path to bind
            workspace: Workspace root reported by health
            fallback_scope: Which open documents the resolver may scan
        """
        self.engine = engine
        self.address = address
        self.workspace = workspace
        self.aggregator = ReferenceAggregator(
            engine, SymbolResolver(engine, scope=fallback_scope)
        )
        self.dispatcher = Dispatcher()
        self._server: Any = None
        self._connections: set[asyncio.StreamWriter] = set()
        self._connection_ids = itertools.count(1)
        self._owns_socket_file = False
        self._setup_handlers()

    def _setup_handlers(self) -> None:
        """Register request and notification handlers."""
        self.dispatcher.register(RequestMethod.HEALTH.value, self._handle_health)
        self.dispatcher.register(
            RequestMethod.FIND_REFERENCES.value, self._handle_find_references
        )
        self.dispatcher.register(RequestMethod.REFERENCES.value, self._handle_references)
        self.dispatcher.register_notification(
            NotificationMethod.DID_OPEN.value, self._handle_did_open
        )
        self.dispatcher.register_notification(
            NotificationMethod.DID_CLOSE.value, self._handle_did_close
        )

    @property
    def serving(self) -> bool:
        return self._server is not None

    # Lifecycle

    async def start(self) -> None:
        """Bind the address and start accepting connections.

        Raises:
            TransportError: If the address is in use or cannot be bound
        """
        if is_windows():
            await self._start_named_pipe()
        else:
            await self._start_unix_socket()

        log.info(
            "pipe_server_listening",
            address=self.address,
            name=display_name(self.address),
            workspace=str(self.workspace) if self.workspace else None,
        )

    async def _start_unix_socket(self) -> None:
        if os.path.exists(self.address):
            if await self._address_in_use():
                raise TransportError(f"Address already in use: {self.address}")
            log.info("stale_socket_removed", address=self.address)
            os.unlink(self.address)

        try:
            self._server = await asyncio.start_unix_server(
                self._handle_connection, path=self.address
            )
        except OSError as e:
            raise TransportError(f"Failed to bind {self.address}: {e}")
        self._owns_socket_file = True

    async def _address_in_use(self) -> bool:
        try:
            _, writer = await asyncio.open_unix_connection(self.address)
        except (ConnectionRefusedError, FileNotFoundError):
            return False
        except OSError:
            # Not a socket we can talk to; binding will report the real problem
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    async def _start_named_pipe(self) -> None:
        loop = asyncio.get_running_loop()
        if not hasattr(loop, "start_serving_pipe"):
            raise TransportError("Named pipes need the Proactor event loop")

        def protocol_factory():
            reader = asyncio.StreamReader()
            return asyncio.StreamReaderProtocol(reader, self._handle_connection)

        try:
            servers = await loop.start_serving_pipe(protocol_factory, self.address)
        except OSError as e:
            raise TransportError(f"Failed to bind {self.address}: {e}")
        self._server = servers[0]

    async def serve_forever(self) -> None:
        """Block until the server is closed or the task is cancelled."""
        if self._server is None:
            raise TransportError("Server is not started")
        if hasattr(self._server, "serve_forever"):
            await self._server.serve_forever()
        else:
            await asyncio.Event().wait()

    async def close(self) -> None:
        """Stop accepting, drop open connections and remove the socket file."""
        if self._server is None:
            return
        server, self._server = self._server, None
        server.close()

        for writer in list(self._connections):
            writer.close()
        if hasattr(server, "wait_closed"):
            await server.wait_closed()

        if self._owns_socket_file and os.path.exists(self.address):
            os.unlink(self.address)
            self._owns_socket_file = False
        log.info("pipe_server_stopped", address=self.address)

    # Connections

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Serve one client until it disconnects."""
        connection_id = next(self._connection_ids)
        framer = MessageFramer()
        self._connections.add(writer)
        log.info("connection_opened", connection=connection_id)

        try:
            while True:
                chunk = await reader.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                for message in framer.feed(chunk):
                    response = await self.dispatcher.dispatch(message)
                    if response is not None:
                        writer.write(MessageFramer.encode(response))
                        await writer.drain()
        except (ConnectionResetError, BrokenPipeError) as e:
            # Client went away mid-request; the response is discarded
            log.debug("connection_lost", connection=connection_id, error=str(e))
        finally:
            self._connections.discard(writer)
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass
            log.info(
                "connection_closed",
                connection=connection_id,
                unparsed_bytes=framer.pending,
            )

    # Request handlers

    async def _handle_health(self, params: dict[str, Any]) -> dict[str, Any]:
        """Handle health request."""
        return HealthResult(
            workspace=str(self.workspace) if self.workspace else "No workspace",
            timestamp=datetime.now(timezone.utc).isoformat(),
            pipe_name=self.address,
        ).to_dict()

    async def _handle_find_references(self, params: dict[str, Any]) -> dict[str, Any]:
        """Handle reference search by symbol name."""
        find_params = FindReferencesParams.from_dict(params)
        result = await self.aggregator.find_references(find_params.symbol_name)
        return result.to_dict()

    async def _handle_references(self, params: dict[str, Any]) -> dict[str, Any]:
        """Handle reference search at an explicit location."""
        location = SymbolLocation.from_dict(params)
        references = await self.aggregator.aggregate(location)
        return {"references": [ref.to_dict() for ref in references]}

    # Notification handlers

    async def _handle_did_open(self, params: dict[str, Any]) -> None:
        open_params = DidOpenParams.from_dict(params)
        if not isinstance(self.engine, DocumentSync):
            log.debug("document_sync_unsupported", uri=open_params.uri)
            return
        await self.engine.open_document(
            open_params.uri, text=open_params.text, language_id=open_params.language_id
        )

    async def _handle_did_close(self, params: dict[str, Any]) -> None:
        doc = params.get("textDocument")
        uri = doc.get("uri") if isinstance(doc, dict) else None
        if isinstance(uri, str) and uri and isinstance(self.engine, DocumentSync):
            await self.engine.close_document(uri)
