"""forge-lsp - Language server references over a local pipe.

Exposes a language server's reference search to local tools through a
workspace-specific Unix socket or named pipe, or over HTTP.
"""

__version__ = "0.1.0"

from forgelsp.config import BridgeConfig

__all__ = [
    "__version__",
    "BridgeConfig",
]
