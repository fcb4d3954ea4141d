"""Content-Length framing for JSON-RPC over byte streams.

Same wire format as LSP: a header block terminated by a blank line, carrying
the byte length of the UTF-8 JSON body that follows.
"""

import json
import re
from typing import Any, Optional

import structlog

log = structlog.get_logger()

HEADER_TERMINATOR = b"\r\n\r\n"
CONTENT_LENGTH_RE = re.compile(
    rb"^content-length[ \t]*:[ \t]*(\d+)", re.IGNORECASE | re.MULTILINE
)


class MessageFramer:
    """Incremental decoder/encoder for framed JSON-RPC messages.

    Feed raw bytes as they arrive; complete messages come back in order.
    One framer per connection, since it holds partial-read state.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._body_length: Optional[int] = None

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet decoded."""
        return len(self._buffer)

    def feed(self, data: bytes) -> list[Any]:
        """Buffer data and return every message completed by it."""
        self._buffer.extend(data)
        messages: list[Any] = []

        while True:
            if self._body_length is None:
                end = self._buffer.find(HEADER_TERMINATOR)
                if end == -1:
                    break
                header = bytes(self._buffer[:end])
                del self._buffer[:end + len(HEADER_TERMINATOR)]

                match = CONTENT_LENGTH_RE.search(header)
                if not match:
                    # Drop the block and resync on the next terminator
                    log.warning("frame_header_invalid", header=header[:200])
                    continue
                self._body_length = int(match.group(1))

            if len(self._buffer) < self._body_length:
                break

            body = bytes(self._buffer[:self._body_length])
            del self._buffer[:self._body_length]
            self._body_length = None

            try:
                messages.append(json.loads(body.decode("utf-8")))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                log.warning("frame_body_invalid", error=str(e), length=len(body))

        return messages

    @staticmethod
    def encode(message: Any) -> bytes:
        """Serialize a message with its Content-Length header."""
        body = json.dumps(message, ensure_ascii=False).encode("utf-8")
        header = f"Content-Length: {len(body)}\r\n\r\n".encode("ascii")
        return header + body

    def reset(self) -> None:
        self._buffer.clear()
        self._body_length = None
