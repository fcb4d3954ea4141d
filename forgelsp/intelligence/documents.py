"""Text documents as seen by the engine."""

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Union
from urllib.parse import urlparse
from urllib.request import url2pathname

from forgelsp.bridge.protocol import Position

LANGUAGE_IDS = {
    ".py": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".jsx": "javascriptreact",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescriptreact",
    ".rs": "rust",
    ".go": "go",
    ".java": "java",
    ".c": "c",
    ".cpp": "cpp",
    ".h": "c",
    ".hpp": "cpp",
    ".rb": "ruby",
    ".php": "php",
    ".swift": "swift",
    ".kt": "kotlin",
    ".scala": "scala",
    ".sh": "shellscript",
    ".sql": "sql",
    ".html": "html",
    ".css": "css",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".md": "markdown",
}


def detect_language(path: Union[str, Path]) -> str:
    """Detect LSP language id from file extension."""
    return LANGUAGE_IDS.get(Path(path).suffix.lower(), "plaintext")


def path_to_uri(path: Union[str, Path]) -> str:
    return Path(path).expanduser().resolve().as_uri()


def to_uri(path_or_uri: Union[str, Path]) -> str:
    """URI as given when it has a scheme, else the file URI of a path."""
    value = str(path_or_uri)
    # Single-letter schemes are Windows drive letters
    if len(urlparse(value).scheme) > 1:
        return value
    return path_to_uri(value)


def uri_to_path(uri: str) -> Optional[Path]:
    """Filesystem path for a file: URI, None for other schemes."""
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        return None
    return Path(url2pathname(parsed.path))


def is_within_folders(uri: str, folders: Iterable[Path]) -> bool:
    """Whether a file: URI lies under any of the given folders."""
    path = uri_to_path(uri)
    if path is None:
        return False
    for folder in folders:
        try:
            path.relative_to(folder)
            return True
        except ValueError:
            continue
    return False


@dataclass
class TextDocument:
    """An open document."""

    uri: str
    language_id: str
    version: int
    text: str

    @property
    def is_file(self) -> bool:
        return urlparse(self.uri).scheme == "file"

    @property
    def path(self) -> Optional[Path]:
        return uri_to_path(self.uri)

    def position_at(self, offset: int) -> Position:
        """Convert a string offset to an LSP position.

        The character is counted in UTF-16 code units.
        """
        offset = max(0, min(offset, len(self.text)))
        before = self.text[:offset]
        line = before.count("\n")
        line_start = before.rfind("\n") + 1
        prefix = before[line_start:]
        character = len(prefix.encode("utf-16-le")) // 2
        return Position(line=line, character=character)

    def to_item(self) -> dict:
        """Convert to an LSP TextDocumentItem."""
        return {
            "uri": self.uri,
            "languageId": self.language_id,
            "version": self.version,
            "text": self.text,
        }
