"""Engine backed by an external Language Server Protocol server.

The server runs as a subprocess speaking JSON-RPC over stdio. Requests are
correlated by id, so any number of bridge connections can have queries in
flight against the same server.
"""

import asyncio
import os
import shutil
from pathlib import Path
from typing import Any, Optional

import structlog

from forgelsp.bridge.framing import MessageFramer
from forgelsp.bridge.protocol import Position
from forgelsp.core.errors import EngineError
from forgelsp.intelligence.documents import (
    TextDocument,
    detect_language,
    path_to_uri,
    to_uri,
    uri_to_path,
)

log = structlog.get_logger()

READ_CHUNK_SIZE = 65536
INIT_TIMEOUT_SECONDS = 60.0


class LanguageServerEngine:
    """Engine implementation driving a language server subprocess."""

    def __init__(
        self,
        command: list[str],
        root: Optional[Path] = None,
        request_timeout: float = 30.0,
    ):
        """Initialize the engine (the server is spawned by start()).

        Args:
            command: Server command line, e.g. ["pylsp"]
            root: Workspace root; None means no workspace folder
            request_timeout: Seconds to wait for each server response
        """
        self.command = command
        self.root = Path(root).resolve() if root else None
        self.request_timeout = request_timeout
        self.capabilities: dict[str, Any] = {}
        self.process: Optional[asyncio.subprocess.Process] = None
        self._framer = MessageFramer()
        self._reader_task: Optional[asyncio.Task] = None
        self._pending: dict[int, asyncio.Future] = {}
        self._next_id = 0
        self._documents: dict[str, TextDocument] = {}
        self._closed = False

    @property
    def running(self) -> bool:
        return self.process is not None and self.process.returncode is None

    async def start(self) -> None:
        """Spawn the server and run the initialize handshake.

        Raises:
            EngineError: If the executable is missing or the handshake fails
        """
        if not shutil.which(self.command[0]):
            raise EngineError(
                f"Language server '{self.command[0]}' not found. "
                "Install it or set server_command."
            )

        try:
            self.process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                cwd=str(self.root) if self.root else None,
            )
        except OSError as e:
            raise EngineError(f"Failed to spawn language server: {e}")

        self._reader_task = asyncio.create_task(self._read_loop())
        log.info("engine_started", command=self.command, pid=self.process.pid)

        try:
            result = await self.request(
                "initialize", self._initialize_params(), timeout=INIT_TIMEOUT_SECONDS
            )
        except EngineError:
            await self.shutdown()
            raise

        self.capabilities = (result or {}).get("capabilities", {})
        await self.notify("initialized", {})
        log.info("engine_initialized", capabilities=sorted(self.capabilities))

    def _initialize_params(self) -> dict[str, Any]:
        folders = [
            {"uri": path_to_uri(folder), "name": folder.name}
            for folder in self.workspace_folders()
        ]
        return {
            "processId": os.getpid(),
            "clientInfo": {"name": "forge-lsp", "version": "0.1.0"},
            "rootUri": folders[0]["uri"] if folders else None,
            "rootPath": str(self.root) if self.root else None,
            "workspaceFolders": folders or None,
            "capabilities": {
                "textDocument": {
                    "synchronization": {"didOpen": True, "didClose": True},
                    "hover": {"contentFormat": ["markdown", "plaintext"]},
                    "documentSymbol": {"hierarchicalDocumentSymbolSupport": True},
                    "references": {},
                },
                "workspace": {
                    "symbol": {},
                    "workspaceFolders": True,
                    "configuration": True,
                },
            },
        }

    # JSON-RPC plumbing

    async def _write(self, message: dict[str, Any]) -> None:
        if not self.running or self.process.stdin is None:
            raise EngineError("Language server is not running")
        try:
            self.process.stdin.write(MessageFramer.encode(message))
            await self.process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise EngineError(f"Language server connection lost: {e}")

    async def request(
        self, method: str, params: Any, timeout: Optional[float] = None
    ) -> Any:
        """Send a request and await its result.

        Raises:
            EngineError: On timeout, error response or a dead server
        """
        self._next_id += 1
        request_id = self._next_id
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        try:
            await self._write(
                {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}
            )
            return await asyncio.wait_for(future, timeout=timeout or self.request_timeout)
        except asyncio.TimeoutError:
            raise EngineError(f"Language server request '{method}' timed out")
        finally:
            self._pending.pop(request_id, None)

    async def notify(self, method: str, params: Any) -> None:
        await self._write({"jsonrpc": "2.0", "method": method, "params": params})

    async def _read_loop(self) -> None:
        """Read server output and route each message."""
        stdout = self.process.stdout
        try:
            while True:
                chunk = await stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                for message in self._framer.feed(chunk):
                    await self._route(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("engine_reader_failed", error=str(e))
        finally:
            self._fail_pending("Language server exited")
            if not self._closed:
                log.warning("engine_stream_closed")

    async def _route(self, message: Any) -> None:
        if not isinstance(message, dict):
            return
        msg_id = message.get("id")
        method = message.get("method")

        if method is None:
            future = self._pending.get(msg_id)
            if future is None or future.done():
                return
            if "error" in message:
                error = message["error"] or {}
                future.set_exception(
                    EngineError(f"Language server error: {error.get('message', error)}")
                )
            else:
                future.set_result(message.get("result"))
            return

        if msg_id is not None:
            # Server-to-client request; we claim nothing, so reply null
            log.debug("engine_server_request", method=method)
            await self._write({"jsonrpc": "2.0", "id": msg_id, "result": None})
        elif method == "window/logMessage":
            log.debug("engine_log", message=(message.get("params") or {}).get("message"))

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(EngineError(reason))

    # Documents

    async def open_document(
        self,
        path_or_uri: str,
        text: Optional[str] = None,
        language_id: Optional[str] = None,
    ) -> TextDocument:
        """Open a document in the server (no-op if already open)."""
        uri = to_uri(path_or_uri)
        if uri in self._documents:
            return self._documents[uri]

        document = self._load_document(uri, text, language_id)
        await self.notify("textDocument/didOpen", {"textDocument": document.to_item()})
        self._documents[uri] = document
        log.info("document_opened", uri=uri, language=document.language_id)
        return document

    def _load_document(
        self, uri: str, text: Optional[str], language_id: Optional[str]
    ) -> TextDocument:
        path = uri_to_path(uri)
        if text is None:
            if path is None:
                raise EngineError(f"Cannot read non-file document: {uri}")
            try:
                text = path.read_text(encoding="utf-8")
            except OSError as e:
                raise EngineError(f"Failed to read {path}: {e}")
        return TextDocument(
            uri=uri,
            language_id=language_id or detect_language(path or uri),
            version=0,
            text=text,
        )

    async def close_document(self, uri: str) -> None:
        if self._documents.pop(uri, None) is None:
            return
        await self.notify("textDocument/didClose", {"textDocument": {"uri": uri}})
        log.info("document_closed", uri=uri)

    def open_documents(self) -> list[TextDocument]:
        return list(self._documents.values())

    def workspace_folders(self) -> list[Path]:
        return [self.root] if self.root else []

    # Queries

    async def workspace_symbols(self, query: str) -> list[dict[str, Any]]:
        result = await self.request("workspace/symbol", {"query": query})
        return result if isinstance(result, list) else []

    async def document_symbols(self, uri: str) -> list[dict[str, Any]]:
        result = await self.request(
            "textDocument/documentSymbol", {"textDocument": {"uri": uri}}
        )
        return result if isinstance(result, list) else []

    async def hover(self, uri: str, position: Position) -> Optional[dict[str, Any]]:
        result = await self.request(
            "textDocument/hover",
            {"textDocument": {"uri": uri}, "position": position.to_dict()},
        )
        return result if isinstance(result, dict) else None

    async def references(
        self, uri: str, position: Position, include_declaration: bool = True
    ) -> list[dict[str, Any]]:
        params = {
            "textDocument": {"uri": uri},
            "position": position.to_dict(),
            "context": {"includeDeclaration": include_declaration},
        }
        if uri in self._documents or uri_to_path(uri) is None:
            result = await self.request("textDocument/references", params)
            return result if isinstance(result, list) else []

        # Servers generally answer only for open documents. This one is opened
        # for the query alone and never joins open_documents()
        document = self._load_document(uri, None, None)
        await self.notify("textDocument/didOpen", {"textDocument": document.to_item()})
        try:
            result = await self.request("textDocument/references", params)
        finally:
            if uri not in self._documents:
                await self.notify("textDocument/didClose", {"textDocument": {"uri": uri}})
        log.debug("document_queried_transiently", uri=uri)
        return result if isinstance(result, list) else []

    async def shutdown(self) -> None:
        """Shut the server down and reap the process."""
        if self._closed:
            return
        self._closed = True

        if self.running:
            try:
                await self.request("shutdown", None, timeout=5.0)
                await self.notify("exit", None)
            except EngineError as e:
                log.debug("engine_shutdown_request_failed", error=str(e))

        if self.process is not None:
            try:
                await asyncio.wait_for(self.process.wait(), timeout=2.0)
            except asyncio.TimeoutError:
                self.process.kill()
                await self.process.wait()

        if self._reader_task:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass

        log.info("engine_stopped")
