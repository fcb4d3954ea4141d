"""Configuration for forge-lsp with validation."""

from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field, field_validator, ConfigDict
import structlog
import toml

from forgelsp.intelligence.resolver import FallbackScope

log = structlog.get_logger()

DEFAULT_SERVER_COMMAND = ["typescript-language-server", "--stdio"]


class BridgeConfig(BaseModel):
    """Main configuration for the bridge with validation."""

    model_config = ConfigDict(validate_assignment=True)

    # Workspace
    workspace_root: Optional[Path] = None  # None = no workspace (random address)
    open_files: list[Path] = Field(default_factory=list)
    fallback_scope: FallbackScope = FallbackScope.WORKSPACE

    # Transport
    transport: str = Field(default="pipe", pattern="^(pipe|http)$")
    host: str = "127.0.0.1"
    port: int = Field(gt=0, le=65535, default=3000)
    socket_dir: Optional[Path] = None  # None = system temp dir

    # Engine
    server_command: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SERVER_COMMAND)
    )
    engine_timeout: float = Field(gt=0, default=30.0)

    # Client
    client_timeout: float = Field(gt=0, default=10.0)

    # Logging
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR)$")
    log_file: Optional[Path] = None
    log_json: bool = False

    @field_validator('server_command')
    @classmethod
    def command_not_empty(cls, v):
        if not v or not v[0].strip():
            raise ValueError('server_command cannot be empty')
        return v

    @field_validator('workspace_root', 'socket_dir')
    @classmethod
    def expand_dir(cls, v):
        if v is None:
            return v
        return Path(v).expanduser().resolve()

    @classmethod
    def load(cls, path: Optional[str] = None) -> 'BridgeConfig':
        """Load configuration from TOML file.

        Search order if path not provided:
        1. ./forge-lsp.toml (project-specific)
        2. ~/.forge-lsp/config.toml (user default)

        Args:
            path: Optional explicit config file path

        Returns:
            BridgeConfig instance
        """
        if path is None:
            candidates = [
                Path("forge-lsp.toml"),
                Path("~/.forge-lsp/config.toml").expanduser()
            ]
            for candidate in candidates:
                if candidate.exists():
                    path = str(candidate)
                    log.info("config_found", path=path)
                    break

        if path and Path(path).exists():
            try:
                data = toml.load(path)
                log.info("config_loaded", path=path)
                return cls(**data)
            except Exception as e:
                log.error("config_load_failed", path=path, error=str(e))
                return cls()

        log.info("config_using_defaults")
        return cls()

    def save(self, path: str):
        """Save configuration to TOML file.

        Args:
            path: File path to save to
        """
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        # toml cannot represent None, so unset options are left out
        data = self.model_dump(mode='json', exclude_none=True)
        with open(path, 'w') as f:
            toml.dump(data, f)
        log.info("config_saved", path=path)

    @property
    def workspace_label(self) -> str:
        """Workspace path as reported by health checks."""
        return str(self.workspace_root) if self.workspace_root else "No workspace"
