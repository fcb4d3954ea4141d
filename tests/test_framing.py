"""Tests for Content-Length message framing."""

import json

import pytest

from forgelsp.bridge.framing import MessageFramer


def frame(body: bytes, header: bytes = None) -> bytes:
    header = header if header is not None else f"Content-Length: {len(body)}".encode()
    return header + b"\r\n\r\n" + body


class TestEncode:
    """Tests for MessageFramer.encode."""

    def test_header_and_body(self):
        data = MessageFramer.encode({"jsonrpc": "2.0", "id": 1, "result": None})
        header, body = data.split(b"\r\n\r\n", 1)
        assert header == f"Content-Length: {len(body)}".encode()
        assert json.loads(body) == {"jsonrpc": "2.0", "id": 1, "result": None}

    def test_length_counts_bytes_not_characters(self):
        message = {"text": "héllo wörld ✓"}
        data = MessageFramer.encode(message)
        header, body = data.split(b"\r\n\r\n", 1)
        length = int(header.split(b":")[1])
        assert length == len(body)
        assert length > len(json.dumps(message, ensure_ascii=False))


class TestFeed:
    """Tests for incremental decoding."""

    def test_single_message(self):
        framer = MessageFramer()
        messages = framer.feed(MessageFramer.encode({"id": 1}))
        assert messages == [{"id": 1}]
        assert framer.pending == 0

    def test_byte_at_a_time(self):
        framer = MessageFramer()
        data = MessageFramer.encode({"method": "health", "id": 7})
        received = []
        for i in range(len(data)):
            received.extend(framer.feed(data[i:i + 1]))
        assert received == [{"method": "health", "id": 7}]

    def test_pipelined_messages_in_one_chunk(self):
        framer = MessageFramer()
        data = b"".join(MessageFramer.encode({"id": i}) for i in range(3))
        assert framer.feed(data) == [{"id": 0}, {"id": 1}, {"id": 2}]

    def test_message_split_across_header_and_body(self):
        framer = MessageFramer()
        data = MessageFramer.encode({"symbolName": "greetUser"})
        cut = data.index(b"\r\n\r\n") + 6
        assert framer.feed(data[:cut]) == []
        assert framer.feed(data[cut:]) == [{"symbolName": "greetUser"}]

    def test_multibyte_body(self):
        framer = MessageFramer()
        assert framer.feed(MessageFramer.encode({"name": "größe"})) == [{"name": "größe"}]

    def test_header_name_case_insensitive(self):
        framer = MessageFramer()
        body = b'{"id": 3}'
        data = frame(body, header=f"content-length:{len(body)}".encode())
        assert framer.feed(data) == [{"id": 3}]

    def test_extra_headers_ignored(self):
        framer = MessageFramer()
        body = b'{"id": 4}'
        header = (
            f"Content-Type: application/vscode-jsonrpc; charset=utf-8\r\n"
            f"Content-Length: {len(body)}"
        ).encode()
        assert framer.feed(frame(body, header=header)) == [{"id": 4}]

    def test_header_without_length_is_skipped(self):
        framer = MessageFramer()
        data = b"X-Garbage: nothing\r\n\r\n" + MessageFramer.encode({"id": 5})
        assert framer.feed(data) == [{"id": 5}]

    def test_prefixed_header_name_not_taken_as_length(self):
        framer = MessageFramer()
        data = b"X-Content-Length: 5\r\n\r\n" + MessageFramer.encode({"id": 7})
        assert framer.feed(data) == [{"id": 7}]

    def test_length_on_later_header_line(self):
        framer = MessageFramer()
        body = b'{"id": 8}'
        header = f"X-Content-Length: 99\r\nContent-Length: {len(body)}".encode()
        assert framer.feed(frame(body, header=header)) == [{"id": 8}]

    def test_invalid_json_body_dropped(self):
        framer = MessageFramer()
        data = frame(b"{not json") + MessageFramer.encode({"id": 6})
        assert framer.feed(data) == [{"id": 6}]

    def test_incomplete_body_stays_buffered(self):
        framer = MessageFramer()
        data = MessageFramer.encode({"id": 8})
        assert framer.feed(data[:-2]) == []
        assert framer.pending > 0
        framer.reset()
        assert framer.pending == 0

    @pytest.mark.parametrize("body", [b"[]", b"42", b'"text"'])
    def test_non_object_json_passed_through(self, body):
        framer = MessageFramer()
        assert framer.feed(frame(body)) == [json.loads(body)]
