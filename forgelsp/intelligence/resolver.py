"""Symbol resolution by name.

Order of attempts, first match wins:

1. Workspace symbol index, exact case-sensitive name match only.
2. For each open file-backed document: its symbol outline, searched
   recursively, then a word-boundary text search whose first hit is accepted
   only if the engine has hover info there.

Step 2's text search is a heuristic. The first textual hit in the first
document wins, which is not necessarily the most relevant occurrence.
"""

import re
from enum import Enum
from typing import Any, Iterable, Optional

import structlog

from forgelsp.bridge.protocol import Position, SymbolLocation
from forgelsp.core.errors import EngineError, ValidationError
from forgelsp.intelligence.documents import TextDocument, is_within_folders
from forgelsp.intelligence.engine import Engine, hover_has_content

log = structlog.get_logger()


class FallbackScope(str, Enum):
    """Which open documents the fallback scan may look at."""

    WORKSPACE = "workspace"   # Only files under a workspace folder
    ALL = "all"               # Any file-backed document, vendored deps included


def _range_start(item: dict[str, Any]) -> Optional[Position]:
    """Start of a symbol's range, for either LSP symbol shape."""
    rng = item.get("range")
    if rng is None:
        location = item.get("location")
        rng = location.get("range") if isinstance(location, dict) else None
    if not isinstance(rng, dict) or not isinstance(rng.get("start"), dict):
        return None
    start = rng["start"]
    try:
        return Position(line=int(start["line"]), character=int(start["character"]))
    except (KeyError, TypeError, ValueError):
        raise EngineError(f"Malformed symbol range from engine: {rng!r}")


def _symbol_list(value: Any, what: str) -> list[dict[str, Any]]:
    """Engine symbol payload as a list of objects; raises EngineError otherwise."""
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(s, dict) for s in value):
        raise EngineError(f"Malformed {what} from engine: {value!r}")
    return value


def find_symbol_in_tree(
    symbols: Iterable[dict[str, Any]], name: str
) -> Optional[dict[str, Any]]:
    """Depth-first search of a document symbol tree for an exact name."""
    for symbol in _symbol_list(symbols, "document symbols"):
        if symbol.get("name") == name:
            return symbol
        children = symbol.get("children")
        if children:
            found = find_symbol_in_tree(children, name)
            if found:
                return found
    return None


def word_pattern(name: str) -> re.Pattern:
    return re.compile(rf"\b{re.escape(name)}\b")


class SymbolResolver:
    """Locates the declaration of a symbol by name."""

    def __init__(self, engine: Engine, scope: FallbackScope = FallbackScope.WORKSPACE):
        self.engine = engine
        self.scope = scope

    async def resolve(self, symbol_name: str) -> Optional[SymbolLocation]:
        """Resolve a symbol name to its declaration.

        Args:
            symbol_name: Exact, case-sensitive symbol name

        Returns:
            Declaration location, or None when nothing matches

        Raises:
            ValidationError: If the name is empty
            EngineError: If the engine fails or returns malformed data
        """
        if not symbol_name or not symbol_name.strip():
            raise ValidationError("Missing required field: symbolName")

        location = await self._from_workspace_index(symbol_name)
        if location:
            log.debug("symbol_resolved", name=symbol_name, via="workspace_index")
            return location

        for document in self._candidate_documents():
            location = await self._from_document(document, symbol_name)
            if location:
                return location

        log.info("symbol_not_found", name=symbol_name)
        return None

    async def _from_workspace_index(self, name: str) -> Optional[SymbolLocation]:
        symbols = await self.engine.workspace_symbols(name)
        for symbol in _symbol_list(symbols, "workspace symbols"):
            if symbol.get("name") != name:
                continue
            location = symbol.get("location")
            uri = location.get("uri") if isinstance(location, dict) else None
            start = _range_start(symbol)
            if uri and start:
                return SymbolLocation(uri=uri, position=start)
        return None

    def _candidate_documents(self) -> list[TextDocument]:
        folders = self.engine.workspace_folders()
        candidates = []
        for document in self.engine.open_documents():
            if not document.is_file:
                continue
            if self.scope == FallbackScope.WORKSPACE and not is_within_folders(
                document.uri, folders
            ):
                continue
            candidates.append(document)
        return candidates

    async def _from_document(
        self, document: TextDocument, name: str
    ) -> Optional[SymbolLocation]:
        outline = await self.engine.document_symbols(document.uri)
        found = find_symbol_in_tree(outline, name)
        if found:
            start = _range_start(found)
            if start:
                log.debug("symbol_resolved", name=name, via="document_symbols",
                          uri=document.uri)
                return SymbolLocation(uri=document.uri, position=start)

        match = word_pattern(name).search(document.text)
        if not match:
            return None

        position = document.position_at(match.start())
        hover = await self.engine.hover(document.uri, position)
        if hover_has_content(hover):
            log.debug("symbol_resolved", name=name, via="text_hover",
                      uri=document.uri, line=position.line)
            return SymbolLocation(uri=document.uri, position=position)
        return None
