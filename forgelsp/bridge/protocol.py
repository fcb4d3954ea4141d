"""Bridge Protocol Definitions.

JSON-RPC 2.0 messages plus the payload types exchanged by the pipe and HTTP
transports.

Wire names follow LSP conventions (camelCase) for familiarity:
- All coordinates are zero-indexed
- Requests expect responses
- Notifications are one-way
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from forgelsp.core.errors import ValidationError


class RequestMethod(str, Enum):
    """Available request methods."""

    HEALTH = "health"
    FIND_REFERENCES = "findReferences"
    REFERENCES = "textDocument/references"


class NotificationMethod(str, Enum):
    """Available notification methods (client -> server)."""

    DID_OPEN = "textDocument/didOpen"
    DID_CLOSE = "textDocument/didClose"


def _require_int(data: dict[str, Any], key: str) -> int:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"'{key}' must be an integer")
    if value < 0:
        raise ValidationError(f"'{key}' must be zero or positive")
    return value


@dataclass(frozen=True)
class Position:
    """Position in a text document (0-indexed)."""

    line: int
    character: int

    def to_dict(self) -> dict[str, int]:
        return {"line": self.line, "character": self.character}

    @classmethod
    def from_dict(cls, data: Any) -> "Position":
        """Parse and validate; raises ValidationError on bad input."""
        if not isinstance(data, dict):
            raise ValidationError("'position' must be an object with line and character")
        return cls(
            line=_require_int(data, "line"),
            character=_require_int(data, "character"),
        )


@dataclass(frozen=True)
class Range:
    """Range in a text document."""

    start: Position
    end: Position

    def to_dict(self) -> dict[str, Any]:
        return {"start": self.start.to_dict(), "end": self.end.to_dict()}

    @classmethod
    def from_dict(cls, data: Any) -> "Range":
        if not isinstance(data, dict):
            raise ValidationError("'range' must be an object with start and end")
        return cls(
            start=Position.from_dict(data.get("start")),
            end=Position.from_dict(data.get("end")),
        )


@dataclass(frozen=True)
class SymbolLocation:
    """Declaration location of a resolved symbol."""

    uri: str
    position: Position

    def to_dict(self) -> dict[str, Any]:
        return {"uri": self.uri, "position": self.position.to_dict()}

    @classmethod
    def from_dict(cls, data: Any) -> "SymbolLocation":
        """Parse a `{uri, position}` body; raises ValidationError."""
        if not isinstance(data, dict):
            raise ValidationError("Body must be a JSON object")
        uri = data.get("uri")
        if not isinstance(uri, str) or not uri:
            raise ValidationError("Missing required field: uri")
        return cls(uri=uri, position=Position.from_dict(data.get("position")))


@dataclass(frozen=True)
class ReferenceRange:
    """A single reference returned by the engine."""

    uri: str
    range: Range

    def to_dict(self) -> dict[str, Any]:
        return {"uri": self.uri, "range": self.range.to_dict()}

    @classmethod
    def from_dict(cls, data: Any) -> "ReferenceRange":
        if not isinstance(data, dict) or not isinstance(data.get("uri"), str):
            raise ValidationError("Reference must carry a uri")
        return cls(uri=data["uri"], range=Range.from_dict(data.get("range")))


@dataclass
class FindReferencesResult:
    """Result of a by-name reference search."""

    name: str
    location: SymbolLocation
    references: list[ReferenceRange] = field(default_factory=list)

    @property
    def total_references(self) -> int:
        return len(self.references)

    def to_dict(self) -> dict[str, Any]:
        """Convert to wire format."""
        return {
            "symbol": {
                "name": self.name,
                "uri": self.location.uri,
                "position": self.location.position.to_dict(),
            },
            "references": [ref.to_dict() for ref in self.references],
            "totalReferences": self.total_references,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FindReferencesResult":
        symbol = data["symbol"]
        return cls(
            name=symbol["name"],
            location=SymbolLocation(
                uri=symbol["uri"],
                position=Position.from_dict(symbol["position"]),
            ),
            references=[ReferenceRange.from_dict(r) for r in data.get("references", [])],
        )


@dataclass
class FindReferencesParams:
    """Parameters for findReferences."""

    symbol_name: str

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "FindReferencesParams":
        """Parse from dictionary; an empty or missing name is rejected."""
        name = (data or {}).get("symbolName")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Missing required field: symbolName")
        return cls(symbol_name=name)


@dataclass
class HealthResult:
    """Result for the health request."""

    workspace: str
    timestamp: str
    status: str = "ok"
    pipe_name: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "status": self.status,
            "workspace": self.workspace,
            "timestamp": self.timestamp,
        }
        if self.pipe_name is not None:
            result["pipeName"] = self.pipe_name
        return result


@dataclass
class BridgeRequest:
    """JSON-RPC request message."""

    method: str
    params: Optional[dict[str, Any]] = None
    id: Union[str, int, None] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-RPC format."""
        result: dict[str, Any] = {
            "jsonrpc": "2.0",
            "method": self.method,
        }
        if self.params is not None:
            result["params"] = self.params
        if self.id is not None:
            result["id"] = self.id
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BridgeRequest":
        """Parse from JSON-RPC format."""
        return cls(
            method=data["method"],
            params=data.get("params"),
            id=data.get("id"),
        )


@dataclass
class BridgeResponse:
    """JSON-RPC response message."""

    id: Union[str, int, None]
    result: Optional[Any] = None
    error_data: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-RPC format."""
        response: dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": self.id,
        }
        if self.error_data is not None:
            response["error"] = self.error_data
        else:
            response["result"] = self.result
        return response

    @classmethod
    def success(cls, id: Union[str, int, None], result: Any) -> "BridgeResponse":
        """Create a success response."""
        return cls(id=id, result=result)

    @classmethod
    def error(
        cls,
        id: Union[str, int, None],
        code: int,
        message: str,
        data: Any = None,
    ) -> "BridgeResponse":
        """Create an error response."""
        error_obj: dict[str, Any] = {"code": code, "message": message}
        if data is not None:
            error_obj["data"] = data
        return cls(id=id, error_data=error_obj)


@dataclass
class BridgeNotification:
    """JSON-RPC notification message (no response expected)."""

    method: str
    params: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-RPC format."""
        result: dict[str, Any] = {
            "jsonrpc": "2.0",
            "method": self.method,
        }
        if self.params is not None:
            result["params"] = self.params
        return result


@dataclass
class DidOpenParams:
    """Parameters for textDocument/didOpen."""

    uri: str
    language_id: Optional[str] = None
    text: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DidOpenParams":
        doc = data.get("textDocument")
        uri = doc.get("uri") if isinstance(doc, dict) else None
        if not isinstance(uri, str) or not uri:
            raise ValidationError("Missing required field: textDocument.uri")
        return cls(uri=uri, language_id=doc.get("languageId"), text=doc.get("text"))
