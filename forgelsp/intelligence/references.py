"""Reference aggregation for resolved symbols."""

from typing import Optional

import structlog

from forgelsp.bridge.protocol import (
    FindReferencesResult,
    ReferenceRange,
    SymbolLocation,
)
from forgelsp.core.errors import EngineError, NotFoundError, ValidationError
from forgelsp.intelligence.engine import Engine
from forgelsp.intelligence.resolver import SymbolResolver

log = structlog.get_logger()


class ReferenceAggregator:
    """Finds references through the engine.

    Engine output is passed through as-is: no deduplication, filtering or
    reordering.
    """

    def __init__(self, engine: Engine, resolver: Optional[SymbolResolver] = None):
        self.engine = engine
        self.resolver = resolver or SymbolResolver(engine)

    async def aggregate(self, location: SymbolLocation) -> list[ReferenceRange]:
        """All references to the symbol at a location."""
        raw = await self.engine.references(location.uri, location.position)
        if not raw:
            return []
        if not isinstance(raw, list):
            raise EngineError(f"Malformed references from engine: {raw!r}")
        try:
            return [ReferenceRange.from_dict(item) for item in raw]
        except ValidationError as e:
            raise EngineError(f"Malformed reference from engine: {e.message}")

    async def find_references(self, symbol_name: str) -> FindReferencesResult:
        """Resolve a symbol by name and collect its references.

        Raises:
            ValidationError: If the name is empty
            NotFoundError: If no declaration can be resolved
        """
        if not symbol_name or not symbol_name.strip():
            raise ValidationError("Missing required field: symbolName")

        location = await self.resolver.resolve(symbol_name)
        if location is None:
            raise NotFoundError(
                f'No symbol named "{symbol_name}" found in the workspace',
                data={"symbolName": symbol_name},
            )

        references = await self.aggregate(location)
        log.info(
            "references_found",
            symbol=symbol_name,
            uri=location.uri,
            total=len(references),
        )
        return FindReferencesResult(
            name=symbol_name, location=location, references=references
        )
