"""forge-lsp pipe transport.

Provides:
- Workspace-specific endpoint naming
- Content-Length message framing
- JSON-RPC message types and dispatch

The server and client live in forgelsp.bridge.server and
forgelsp.bridge.client.

Usage:
    forge-lsp serve                       # Serve the current workspace
    forge-lsp find-references greetUser   # Query it from another process
"""

from forgelsp.bridge.endpoint import derive_address
from forgelsp.bridge.framing import MessageFramer
from forgelsp.bridge.protocol import (
    BridgeRequest,
    BridgeResponse,
    BridgeNotification,
    FindReferencesResult,
    Position,
    Range,
    ReferenceRange,
    SymbolLocation,
)

__all__ = [
    "derive_address",
    "MessageFramer",
    "BridgeRequest",
    "BridgeResponse",
    "BridgeNotification",
    "FindReferencesResult",
    "Position",
    "Range",
    "ReferenceRange",
    "SymbolLocation",
]
