"""Language intelligence: engines, symbol resolution and reference search."""

from forgelsp.intelligence.engine import DocumentSync, Engine
from forgelsp.intelligence.references import ReferenceAggregator
from forgelsp.intelligence.resolver import FallbackScope, SymbolResolver

__all__ = [
    "DocumentSync",
    "Engine",
    "FallbackScope",
    "ReferenceAggregator",
    "SymbolResolver",
]
