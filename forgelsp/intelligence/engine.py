"""The language-intelligence capability the bridge wraps.

Results use raw LSP JSON shapes so that any language server, or an in-process
stand-in, can be plugged in without translation.
"""

from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

from forgelsp.bridge.protocol import Position
from forgelsp.intelligence.documents import TextDocument


@runtime_checkable
class Engine(Protocol):
    """Read-only code intelligence queries."""

    async def workspace_symbols(self, query: str) -> list[dict[str, Any]]:
        """SymbolInformation / WorkspaceSymbol list for a query."""
        ...

    async def document_symbols(self, uri: str) -> list[dict[str, Any]]:
        """DocumentSymbol tree or SymbolInformation list for a document."""
        ...

    async def hover(self, uri: str, position: Position) -> Optional[dict[str, Any]]:
        """Hover info at a position, None when there is none."""
        ...

    async def references(
        self, uri: str, position: Position, include_declaration: bool = True
    ) -> list[dict[str, Any]]:
        """Location list for the symbol at a position."""
        ...

    def open_documents(self) -> list[TextDocument]:
        """Documents currently open in the engine."""
        ...

    def workspace_folders(self) -> list[Path]:
        """Workspace folder roots."""
        ...


@runtime_checkable
class DocumentSync(Protocol):
    """Engines that let clients open and close documents."""

    async def open_document(
        self,
        path_or_uri: str,
        text: Optional[str] = None,
        language_id: Optional[str] = None,
    ) -> TextDocument:
        ...

    async def close_document(self, uri: str) -> None:
        ...


def hover_has_content(hover: Optional[dict[str, Any]]) -> bool:
    """Whether a hover result carries any content."""
    if not hover:
        return False
    contents = hover.get("contents")
    if isinstance(contents, str):
        return bool(contents.strip())
    if isinstance(contents, dict):
        return bool(str(contents.get("value", "")).strip())
    if isinstance(contents, list):
        return any(
            bool((item if isinstance(item, str) else str(item.get("value", ""))).strip())
            for item in contents
            if isinstance(item, (str, dict))
        )
    return False
