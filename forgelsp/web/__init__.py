"""forge-lsp HTTP API module.

Provides:
- Health route
- Reference lookups by location and by symbol name

Usage:
    from forgelsp.web import create_app
    app = create_app(engine)

    # Or run via CLI:
    forge-lsp serve --transport http --port 3000
"""

from forgelsp.web.server import create_app, BridgeAPI

__all__ = ["create_app", "BridgeAPI"]
