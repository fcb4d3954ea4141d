"""Error classification for the forge-lsp bridge.

Every failure that crosses a transport boundary is classified into one of a
small set of kinds. The kind decides the HTTP status, the JSON-RPC error code
and the log level used when the error is reported.
"""

import asyncio
import errno
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional
import structlog

log = structlog.get_logger()


class ErrorKind(Enum):
    """Kinds of errors for reporting decisions."""

    VALIDATION = "validation"   # Missing/empty field - user correctable
    NOT_FOUND = "not_found"     # Symbol or reference absent - expected outcome
    TRANSPORT = "transport"     # Bind/listen failure - fatal to startup
    ENGINE = "engine"           # Language server call failed or returned junk
    INTERNAL = "internal"       # Anything unclassified


class RpcErrorCode:
    """JSON-RPC error codes used by the bridge."""

    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # Bridge specific
    SYMBOL_NOT_FOUND = -32004
    ENGINE_ERROR = -32005


HTTP_STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.TRANSPORT: 500,
    ErrorKind.ENGINE: 500,
    ErrorKind.INTERNAL: 500,
}

RPC_CODES = {
    ErrorKind.VALIDATION: RpcErrorCode.INVALID_PARAMS,
    ErrorKind.NOT_FOUND: RpcErrorCode.SYMBOL_NOT_FOUND,
    ErrorKind.TRANSPORT: RpcErrorCode.INTERNAL_ERROR,
    ErrorKind.ENGINE: RpcErrorCode.ENGINE_ERROR,
    ErrorKind.INTERNAL: RpcErrorCode.INTERNAL_ERROR,
}

# OSError errno values that mean the endpoint cannot be bound
TRANSPORT_ERRNO = {
    errno.EADDRINUSE,   # Address already in use
    errno.EACCES,       # Permission denied
    errno.EADDRNOTAVAIL,
}


class BridgeError(Exception):
    """Base class for errors raised deliberately by the bridge."""

    kind = ErrorKind.INTERNAL

    def __init__(self, message: str, data: Any = None):
        super().__init__(message)
        self.message = message
        self.data = data

    @property
    def http_status(self) -> int:
        return HTTP_STATUS[self.kind]

    @property
    def rpc_code(self) -> int:
        return RPC_CODES[self.kind]


class ValidationError(BridgeError):
    """A required field is missing, empty or malformed."""

    kind = ErrorKind.VALIDATION


class NotFoundError(BridgeError):
    """The requested symbol could not be resolved."""

    kind = ErrorKind.NOT_FOUND


class TransportError(BridgeError):
    """The transport endpoint could not be bound or reached."""

    kind = ErrorKind.TRANSPORT


class EngineError(BridgeError):
    """The language-intelligence engine failed or returned malformed data."""

    kind = ErrorKind.ENGINE


@dataclass
class ClassifiedError:
    """A classified error with reporting metadata."""

    kind: ErrorKind
    message: str
    http_status: int
    rpc_code: int
    data: Any = None
    original_exception: Optional[BaseException] = None

    @property
    def expected(self) -> bool:
        """True for outcomes the caller can correct or anticipate."""
        return self.kind in (ErrorKind.VALIDATION, ErrorKind.NOT_FOUND)

    def to_rpc_error(self) -> dict[str, Any]:
        """Convert to a JSON-RPC error object."""
        error: dict[str, Any] = {"code": self.rpc_code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


def _classified(kind: ErrorKind, error: BaseException, message: Optional[str] = None,
                data: Any = None) -> ClassifiedError:
    return ClassifiedError(
        kind=kind,
        message=message if message is not None else (str(error) or type(error).__name__),
        http_status=HTTP_STATUS[kind],
        rpc_code=RPC_CODES[kind],
        data=data,
        original_exception=error,
    )


def classify_error(error: BaseException) -> ClassifiedError:
    """Classify an exception for reporting.

    Args:
        error: The exception raised by a handler, the engine or a transport

    Returns:
        ClassifiedError with kind, HTTP status and JSON-RPC code
    """
    if isinstance(error, BridgeError):
        return _classified(error.kind, error, error.message, error.data)

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return _classified(
            ErrorKind.ENGINE, error, "Language server request timed out"
        )

    if isinstance(error, (ConnectionError, BrokenPipeError)):
        return _classified(ErrorKind.ENGINE, error)

    if isinstance(error, OSError) and error.errno in TRANSPORT_ERRNO:
        return _classified(ErrorKind.TRANSPORT, error)

    # Params parsing raises ValidationError itself; a bare KeyError or
    # TypeError here is a bug, not a bad request
    return _classified(ErrorKind.INTERNAL, error)


def log_classified(event: str, classified: ClassifiedError, **context: Any) -> None:
    """Log a classified error at a level matching its kind."""
    if classified.expected:
        log.info(event, kind=classified.kind.value, error=classified.message, **context)
    else:
        log.error(event, kind=classified.kind.value, error=classified.message, **context)
