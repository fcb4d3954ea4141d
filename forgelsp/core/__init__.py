"""Core error types and classification."""

from forgelsp.core.errors import (
    BridgeError,
    ClassifiedError,
    EngineError,
    ErrorKind,
    NotFoundError,
    RpcErrorCode,
    TransportError,
    ValidationError,
    classify_error,
)

__all__ = [
    "BridgeError",
    "ClassifiedError",
    "EngineError",
    "ErrorKind",
    "NotFoundError",
    "RpcErrorCode",
    "TransportError",
    "ValidationError",
    "classify_error",
]
