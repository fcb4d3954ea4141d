"""Reference client for the pipe transport.

Connects to the address derived from a workspace root, so it works from any
process started in the same workspace as the server.
"""

import asyncio
import itertools
from pathlib import Path
from typing import Any, Optional, Union

import structlog

from forgelsp.bridge.endpoint import derive_address, is_windows
from forgelsp.bridge.framing import MessageFramer
from forgelsp.bridge.protocol import (
    BridgeNotification,
    BridgeRequest,
    FindReferencesResult,
    RequestMethod,
)
from forgelsp.core.errors import TransportError

log = structlog.get_logger()

DEFAULT_TIMEOUT = 10.0
READ_CHUNK_SIZE = 65536


class BridgeRequestError(Exception):
    """The server answered a request with a JSON-RPC error."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


class RequestTimeoutError(BridgeRequestError):
    """No response arrived within the client-side timeout."""

    def __init__(self, method: str, timeout: float):
        super().__init__(0, f"Request timeout: {method} after {timeout:g}s")
        self.method = method
        self.timeout = timeout


class BridgeClient:
    """JSON-RPC client with id correlation and per-request timeouts.

    Usage:
        async with BridgeClient() as client:
            result = await client.find_references("greetUser")
    """

    def __init__(
        self,
        address: Optional[str] = None,
        workspace_root: Optional[Union[str, Path]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        socket_dir: Optional[Union[str, Path]] = None,
    ):
        if address is None:
            root = Path(workspace_root or Path.cwd()).expanduser().resolve()
            address = derive_address(root, socket_dir=socket_dir)
        self.address = address
        self.timeout = timeout
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._listener: Optional[asyncio.Task] = None
        self._pending: dict[int, asyncio.Future] = {}
        self._ids = itertools.count(1)

    async def __aenter__(self) -> "BridgeClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def connected(self) -> bool:
        return self._writer is not None

    async def connect(self) -> None:
        """Open the connection.

        Raises:
            TransportError: If nothing is listening on the address
        """
        try:
            if is_windows():
                self._reader, self._writer = await self._open_named_pipe()
            else:
                self._reader, self._writer = await asyncio.open_unix_connection(
                    self.address
                )
        except OSError as e:
            raise TransportError(f"Cannot connect to {self.address}: {e}")

        self._listener = asyncio.create_task(self._listen())
        log.debug("client_connected", address=self.address)

    async def _open_named_pipe(self):
        loop = asyncio.get_running_loop()
        if not hasattr(loop, "create_pipe_connection"):
            raise TransportError("Named pipes need the Proactor event loop")
        reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(reader)
        transport, _ = await loop.create_pipe_connection(lambda: protocol, self.address)
        writer = asyncio.StreamWriter(transport, protocol, reader, loop)
        return reader, writer

    async def _listen(self) -> None:
        """Route responses to their pending futures by id."""
        framer = MessageFramer()
        try:
            while True:
                chunk = await self._reader.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                for message in framer.feed(chunk):
                    self._resolve(message)
        except (ConnectionResetError, BrokenPipeError) as e:
            log.debug("client_connection_lost", error=str(e))
        finally:
            for future in self._pending.values():
                if not future.done():
                    future.set_exception(TransportError("Connection closed"))

    def _resolve(self, message: Any) -> None:
        if not isinstance(message, dict):
            return
        msg_id = message.get("id")
        future = self._pending.pop(msg_id, None) if isinstance(msg_id, int) else None
        if future is None or future.done():
            # Unknown id, or a late answer to a request that already timed out
            log.debug("client_response_dropped", id=msg_id)
            return
        error = message.get("error")
        if error:
            future.set_exception(
                BridgeRequestError(
                    error.get("code", 0),
                    error.get("message") or str(error),
                    error.get("data"),
                )
            )
        else:
            future.set_result(message.get("result"))

    async def request(
        self,
        method: str,
        params: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Send a request and await the correlated response.

        Raises:
            BridgeRequestError: If the server returns an error
            RequestTimeoutError: If no response arrives in time
            TransportError: If the connection is closed
        """
        if self._writer is None:
            raise TransportError("Client is not connected")

        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        request = BridgeRequest(method=method, params=params or {}, id=request_id)
        self._writer.write(MessageFramer.encode(request.to_dict()))
        await self._writer.drain()

        wait = timeout if timeout is not None else self.timeout
        try:
            return await asyncio.wait_for(future, timeout=wait)
        except asyncio.TimeoutError:
            raise RequestTimeoutError(method, wait)
        finally:
            self._pending.pop(request_id, None)

    async def notify(self, method: str, params: Optional[dict[str, Any]] = None) -> None:
        if self._writer is None:
            raise TransportError("Client is not connected")
        notification = BridgeNotification(method=method, params=params)
        self._writer.write(MessageFramer.encode(notification.to_dict()))
        await self._writer.drain()

    async def health(self) -> dict[str, Any]:
        return await self.request(RequestMethod.HEALTH.value)

    async def find_references(self, symbol_name: str) -> FindReferencesResult:
        result = await self.request(
            RequestMethod.FIND_REFERENCES.value, {"symbolName": symbol_name}
        )
        return FindReferencesResult.from_dict(result)

    async def references(self, uri: str, line: int, character: int) -> list[dict[str, Any]]:
        result = await self.request(
            RequestMethod.REFERENCES.value,
            {"uri": uri, "position": {"line": line, "character": character}},
        )
        return result.get("references", [])

    async def open_document(self, uri: str, text: Optional[str] = None) -> None:
        document: dict[str, Any] = {"uri": uri}
        if text is not None:
            document["text"] = text
        await self.notify("textDocument/didOpen", {"textDocument": document})

    async def close(self) -> None:
        if self._writer is None:
            return
        writer, self._writer = self._writer, None
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        if self._listener:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
