"""Tests for the pipe server and client over a real Unix socket."""

import asyncio
import json
import os
import sys
import tempfile

import pytest
import pytest_asyncio

from conftest import SAMPLE_REFERENCE_LINES
from forgelsp.bridge.client import BridgeClient, BridgeRequestError, RequestTimeoutError
from forgelsp.bridge.endpoint import derive_address
from forgelsp.bridge.framing import MessageFramer
from forgelsp.bridge.server import PipeServer
from forgelsp.core.errors import RpcErrorCode, TransportError
from forgelsp.intelligence.resolver import FallbackScope

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="Unix sockets only")


@pytest.fixture
def socket_dir():
    """Short directory for socket files (paths are length limited)."""
    with tempfile.TemporaryDirectory(prefix="fl-") as d:
        yield d


@pytest.fixture
def address(workspace, socket_dir):
    return derive_address(workspace, socket_dir=socket_dir)


@pytest_asyncio.fixture
async def server(engine, workspace, address):
    srv = PipeServer(engine, address, workspace=workspace)
    await srv.start()
    yield srv
    await srv.close()


async def read_messages(reader, count, timeout=5.0):
    framer = MessageFramer()
    messages = []
    while len(messages) < count:
        chunk = await asyncio.wait_for(reader.read(65536), timeout=timeout)
        if not chunk:
            break
        messages.extend(framer.feed(chunk))
    return messages


class TestLifecycle:
    """Tests for binding and shutdown."""

    @pytest.mark.asyncio
    async def test_start_creates_socket(self, server, address):
        assert server.serving
        assert os.path.exists(address)

    @pytest.mark.asyncio
    async def test_close_removes_socket(self, engine, address):
        srv = PipeServer(engine, address)
        await srv.start()
        await srv.close()

        assert not srv.serving
        assert not os.path.exists(address)
        # Second close is a no-op
        await srv.close()

    @pytest.mark.asyncio
    async def test_address_in_use(self, server, engine, address):
        other = PipeServer(engine, address)
        with pytest.raises(TransportError, match="already in use"):
            await other.start()
        # The live server is untouched
        assert os.path.exists(address)

    @pytest.mark.asyncio
    async def test_stale_socket_file_replaced(self, engine, address):
        with open(address, "w") as f:
            f.write("")

        srv = PipeServer(engine, address)
        await srv.start()
        try:
            async with BridgeClient(address=address) as client:
                assert (await client.health())["status"] == "ok"
        finally:
            await srv.close()

    @pytest.mark.asyncio
    async def test_client_without_server(self, address):
        with pytest.raises(TransportError):
            await BridgeClient(address=address).connect()


class TestRequests:
    """End-to-end requests through BridgeClient."""

    @pytest.mark.asyncio
    async def test_health(self, server, workspace, address):
        async with BridgeClient(address=address) as client:
            assert client.connected
            result = await client.health()

        assert result["status"] == "ok"
        assert result["workspace"] == str(workspace)
        assert result["pipeName"] == address
        assert "timestamp" in result

    @pytest.mark.asyncio
    async def test_client_derives_same_address(self, server, workspace, socket_dir):
        async with BridgeClient(workspace_root=workspace, socket_dir=socket_dir) as client:
            assert (await client.health())["status"] == "ok"

    @pytest.mark.asyncio
    async def test_find_references(self, server, address, sample_uri):
        async with BridgeClient(address=address) as client:
            result = await client.find_references("greetUser")

        assert result.location.uri == sample_uri
        assert result.total_references == 5
        assert [r.range.start.line for r in result.references] == SAMPLE_REFERENCE_LINES

    @pytest.mark.asyncio
    async def test_empty_symbol_name(self, server, address, engine):
        async with BridgeClient(address=address) as client:
            with pytest.raises(BridgeRequestError) as exc_info:
                await client.find_references("")

        assert exc_info.value.code == RpcErrorCode.INVALID_PARAMS
        assert exc_info.value.message == "Missing required field: symbolName"
        assert engine.calls == []

    @pytest.mark.asyncio
    async def test_symbol_not_found(self, server, address):
        async with BridgeClient(address=address) as client:
            with pytest.raises(BridgeRequestError) as exc_info:
                await client.find_references("NoSuchSymbolXYZ")

            # The connection survives the error
            assert (await client.health())["status"] == "ok"

        assert exc_info.value.code == RpcErrorCode.SYMBOL_NOT_FOUND
        assert exc_info.value.data == {"symbolName": "NoSuchSymbolXYZ"}

    @pytest.mark.asyncio
    async def test_malformed_outline_is_engine_error(self, server, address, engine, sample_uri):
        engine.outlines[sample_uri] = [{"name": "Other", "children": 5}]
        async with BridgeClient(address=address) as client:
            with pytest.raises(BridgeRequestError) as exc_info:
                await client.find_references("wanted")
        assert exc_info.value.code == RpcErrorCode.ENGINE_ERROR

    @pytest.mark.asyncio
    async def test_references_at_location(self, server, address, sample_uri):
        async with BridgeClient(address=address) as client:
            refs = await client.references(sample_uri, 3, 9)

        assert [r["range"]["start"]["line"] for r in refs] == SAMPLE_REFERENCE_LINES

    @pytest.mark.asyncio
    async def test_references_invalid_params(self, server, address):
        async with BridgeClient(address=address) as client:
            with pytest.raises(BridgeRequestError) as exc_info:
                await client.request("textDocument/references", {"uri": "file:///x.ts"})
        assert exc_info.value.code == RpcErrorCode.INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_unknown_method(self, server, address):
        async with BridgeClient(address=address) as client:
            with pytest.raises(BridgeRequestError) as exc_info:
                await client.request("workspace/executeCommand")
        assert exc_info.value.code == RpcErrorCode.METHOD_NOT_FOUND

    @pytest.mark.asyncio
    async def test_did_open_feeds_fallback(self, server, address, workspace, engine):
        uri = (workspace / "extra.ts").as_uri()
        async with BridgeClient(address=address) as client:
            await client.open_document(uri, text="export function freshHelper() {}\n")
            result = await client.find_references("freshHelper")

        assert result.location.uri == uri
        assert uri in engine.documents

    @pytest.mark.asyncio
    async def test_concurrent_requests_correlated(self, server, address):
        async with BridgeClient(address=address) as client:
            found, health = await asyncio.gather(
                client.find_references("greetUser"), client.health()
            )
        assert found.total_references == 5
        assert health["status"] == "ok"


class TestWire:
    """Raw socket behaviour."""

    @pytest.mark.asyncio
    async def test_back_to_back_requests(self, server, address):
        reader, writer = await asyncio.open_unix_connection(address)
        payload = MessageFramer.encode(
            {"jsonrpc": "2.0", "id": 1, "method": "findReferences",
             "params": {"symbolName": "greetUser"}}
        ) + MessageFramer.encode({"jsonrpc": "2.0", "id": 2, "method": "health"})
        writer.write(payload)
        await writer.drain()

        responses = await read_messages(reader, 2)
        writer.close()

        by_id = {r["id"]: r for r in responses}
        assert by_id[1]["result"]["totalReferences"] == 5
        assert by_id[2]["result"]["status"] == "ok"
        # Requests on one connection are answered in arrival order
        assert [r["id"] for r in responses] == [1, 2]

    @pytest.mark.asyncio
    async def test_bad_header_then_good_message(self, server, address):
        reader, writer = await asyncio.open_unix_connection(address)
        writer.write(b"Bogus-Header: 1\r\n\r\n")
        writer.write(MessageFramer.encode({"jsonrpc": "2.0", "id": 9, "method": "health"}))
        await writer.drain()

        responses = await read_messages(reader, 1)
        writer.close()
        assert responses[0]["id"] == 9
        assert responses[0]["result"]["status"] == "ok"

    @pytest.mark.asyncio
    async def test_invalid_json_body_is_dropped(self, server, address):
        reader, writer = await asyncio.open_unix_connection(address)
        writer.write(b"Content-Length: 5\r\n\r\n{oops")
        writer.write(MessageFramer.encode({"jsonrpc": "2.0", "id": 3, "method": "health"}))
        await writer.drain()

        responses = await read_messages(reader, 1)
        writer.close()
        assert [r["id"] for r in responses] == [3]

    @pytest.mark.asyncio
    async def test_connections_are_independent(self, server, address):
        first = BridgeClient(address=address)
        second = BridgeClient(address=address)
        await first.connect()
        await second.connect()
        try:
            await first.close()
            assert (await second.health())["status"] == "ok"
        finally:
            await second.close()


class SlowEngine:
    """Engine whose symbol index never answers in time."""

    def __init__(self, delay):
        self.delay = delay

    async def workspace_symbols(self, query):
        await asyncio.sleep(self.delay)
        return []

    async def document_symbols(self, uri):
        return []

    async def hover(self, uri, position):
        return None

    async def references(self, uri, position, include_declaration=True):
        return []

    def open_documents(self):
        return []

    def workspace_folders(self):
        return []


class TestTimeouts:
    """Client-side timeouts."""

    @pytest.mark.asyncio
    async def test_request_timeout(self, address):
        srv = PipeServer(SlowEngine(delay=2.0), address, fallback_scope=FallbackScope.ALL)
        await srv.start()
        try:
            async with BridgeClient(address=address, timeout=0.2) as client:
                with pytest.raises(RequestTimeoutError) as exc_info:
                    await client.find_references("anything")
                assert "Request timeout" in exc_info.value.message
                # Queued behind the slow request; its late response is ignored
                health = await client.request("health", timeout=5.0)
                assert health["status"] == "ok"
        finally:
            await srv.close()


def test_encoded_request_is_valid_json():
    data = MessageFramer.encode({"jsonrpc": "2.0", "id": 1, "method": "health"})
    body = data.split(b"\r\n\r\n", 1)[1]
    assert json.loads(body)["method"] == "health"
