"""Workspace-specific endpoint naming.

A client and a server started independently agree on a transport address by
hashing the workspace root. On Windows the address is a named pipe, elsewhere
a Unix domain socket in the temp directory.
"""

import hashlib
import secrets
import sys
import tempfile
from pathlib import Path
from typing import Optional, Union

import structlog

log = structlog.get_logger()

APP_PREFIX = "forge-lsp-"
WINDOWS_PIPE_PREFIX = "\\\\.\\pipe\\"
HASH_LENGTH = 8


def is_windows(platform: Optional[str] = None) -> bool:
    return (platform or sys.platform) == "win32"


def is_case_insensitive(platform: Optional[str] = None) -> bool:
    """Whether paths on the platform compare case-insensitively."""
    return is_windows(platform)


def normalize_root(workspace_root: Union[str, Path], platform: Optional[str] = None) -> str:
    """Normalize a workspace path for hashing."""
    path = str(workspace_root)
    if is_case_insensitive(platform):
        path = path.lower()
    return path


def workspace_hash(workspace_root: Union[str, Path], platform: Optional[str] = None) -> str:
    """Short stable hash of the normalized workspace path."""
    normalized = normalize_root(workspace_root, platform)
    return hashlib.md5(normalized.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def format_address(
    token: str,
    platform: Optional[str] = None,
    socket_dir: Optional[Union[str, Path]] = None,
) -> str:
    """Build the platform-specific address for a hash token."""
    if is_windows(platform):
        return f"{WINDOWS_PIPE_PREFIX}{APP_PREFIX}{token}"
    directory = str(socket_dir) if socket_dir else tempfile.gettempdir()
    return f"{directory.rstrip('/')}/{APP_PREFIX}{token}.sock"


def derive_address(
    workspace_root: Optional[Union[str, Path]],
    platform: Optional[str] = None,
    socket_dir: Optional[Union[str, Path]] = None,
) -> str:
    """Derive the endpoint address for a workspace.

    Args:
        workspace_root: Absolute workspace path, or None when no workspace
            is open
        platform: Target platform (defaults to sys.platform)
        socket_dir: Directory for Unix sockets (defaults to the temp dir)

    Returns:
        Named pipe path or Unix socket path

    Without a workspace the address gets a random suffix. It cannot be
    rediscovered by another process, so it only suits ad hoc single-session
    use where the address is passed along explicitly.
    """
    if workspace_root:
        token = workspace_hash(workspace_root, platform)
    else:
        token = secrets.token_hex(HASH_LENGTH // 2)
        log.warning("endpoint_random_fallback", token=token)
    return format_address(token, platform, socket_dir)


def display_name(address: str) -> str:
    """Short form of an address for operator messages."""
    return address.split("\\")[-1].split("/")[-1]
