"""Shared test fixtures."""

import re
import tempfile
from pathlib import Path
from typing import Any, Optional

import pytest

from forgelsp.bridge.protocol import Position
from forgelsp.intelligence.documents import TextDocument, path_to_uri, to_uri, uri_to_path


# greetUser is declared on line 3 and used on lines 8, 9, 10, 14 and 26.
# Lines 12 and 18 mention it only in comments.
SAMPLE_SOURCE = """\
// Sample module for reference lookups

// Define a simple function
function greetUser(name: string): string {
    return `Hello, ${name}!`;
}

// Use the function multiple times
const greeting1 = greetUser("Alice");
const greeting2 = greetUser("Bob");
const greeting3 = greetUser("Charlie");

// Another function that uses greetUser
function welcomeUser(username: string) {
    const message = greetUser(username);
    console.log(message);
}

// Class wrapping greetUser for callers
class Greeter {
    greet(name: string) {
        return name;
    }
}

const greeter = new Greeter();
export { greetUser, Greeter };
"""

SAMPLE_DECLARATION_LINE = 3
SAMPLE_REFERENCE_LINES = [8, 9, 10, 14, 26]

WORD_RE = re.compile(r"[A-Za-z_$][\w$]*")


class FakeEngine:
    """In-memory engine over a set of open documents.

    Hover and references only see identifiers on code lines; comment lines
    have no hover, like a real language server.
    """

    def __init__(
        self,
        workspace: Optional[Path] = None,
        workspace_index: Optional[list[dict[str, Any]]] = None,
        outlines: Optional[dict[str, list[dict[str, Any]]]] = None,
    ):
        self.workspace = workspace
        self.workspace_index = workspace_index or []
        self.outlines = outlines or {}
        self.documents: dict[str, TextDocument] = {}
        self.calls: list[tuple] = []
        self.reference_override: Optional[list[Any]] = None
        self.fail_with: Optional[Exception] = None

    def add_document(self, uri: str, text: str, language_id: str = "typescript") -> TextDocument:
        document = TextDocument(uri=uri, language_id=language_id, version=0, text=text)
        self.documents[uri] = document
        return document

    def _check(self, name: str, *args) -> None:
        self.calls.append((name,) + args)
        if self.fail_with is not None:
            raise self.fail_with

    def _word_at(self, uri: str, position: Position) -> Optional[str]:
        document = self.documents.get(uri)
        if document is None:
            return None
        lines = document.text.splitlines()
        if position.line >= len(lines):
            return None
        line = lines[position.line]
        if line.lstrip().startswith("//"):
            return None
        for match in WORD_RE.finditer(line):
            if match.start() <= position.character < match.end():
                return match.group()
        return None

    async def workspace_symbols(self, query: str) -> list[dict[str, Any]]:
        self._check("workspace_symbols", query)
        return [s for s in self.workspace_index if query in s.get("name", "")]

    async def document_symbols(self, uri: str) -> list[dict[str, Any]]:
        self._check("document_symbols", uri)
        return self.outlines.get(uri, [])

    async def hover(self, uri: str, position: Position) -> Optional[dict[str, Any]]:
        self._check("hover", uri, position)
        word = self._word_at(uri, position)
        if word is None:
            return None
        return {"contents": {"kind": "markdown", "value": f"```ts\n{word}\n```"}}

    async def references(
        self, uri: str, position: Position, include_declaration: bool = True
    ) -> list[dict[str, Any]]:
        self._check("references", uri, position)
        if self.reference_override is not None:
            return self.reference_override
        word = self._word_at(uri, position)
        if word is None:
            return []

        pattern = re.compile(rf"\b{re.escape(word)}\b")
        found = []
        for document in self.documents.values():
            for line_no, line in enumerate(document.text.splitlines()):
                if line.lstrip().startswith("//"):
                    continue
                for match in pattern.finditer(line):
                    # Declarations are not references
                    if line[:match.start()].rstrip().endswith("function"):
                        continue
                    found.append({
                        "uri": document.uri,
                        "range": {
                            "start": {"line": line_no, "character": match.start()},
                            "end": {"line": line_no, "character": match.end()},
                        },
                    })
        return found

    def open_documents(self) -> list[TextDocument]:
        return list(self.documents.values())

    def workspace_folders(self) -> list[Path]:
        return [self.workspace] if self.workspace else []

    async def open_document(
        self,
        path_or_uri: str,
        text: Optional[str] = None,
        language_id: Optional[str] = None,
    ) -> TextDocument:
        uri = to_uri(path_or_uri)
        if text is None:
            path = uri_to_path(uri)
            text = path.read_text() if path else ""
        return self.add_document(uri, text, language_id or "typescript")

    async def close_document(self, uri: str) -> None:
        self.documents.pop(uri, None)


@pytest.fixture
def temp_dir():
    """Temporary directory for tests."""
    with tempfile.TemporaryDirectory() as d:
        yield Path(d).resolve()


@pytest.fixture
def workspace(temp_dir):
    """Workspace with the sample file on disk."""
    root = temp_dir / "workspace"
    (root / "src").mkdir(parents=True)
    (root / "src" / "sample.ts").write_text(SAMPLE_SOURCE)
    return root


@pytest.fixture
def sample_uri(workspace):
    return path_to_uri(workspace / "src" / "sample.ts")


@pytest.fixture
def engine(workspace, sample_uri):
    """Fake engine with the sample document open and an empty symbol index."""
    fake = FakeEngine(workspace=workspace)
    fake.add_document(sample_uri, SAMPLE_SOURCE)
    return fake
