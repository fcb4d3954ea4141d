"""Minimal stdio language server used by the engine tests.

Knows one trick: identifiers in opened documents. Declarations are lines of
the form `function name(`.
"""

import json
import re
import sys

documents = {}
WORD_RE = re.compile(r"[A-Za-z_$][\w$]*")


def read_message():
    length = None
    while True:
        line = sys.stdin.buffer.readline()
        if not line:
            return None
        line = line.strip()
        if not line:
            break
        name, _, value = line.partition(b":")
        if name.lower() == b"content-length":
            length = int(value.strip())
    return json.loads(sys.stdin.buffer.read(length).decode("utf-8"))


def send(message):
    body = json.dumps(message).encode("utf-8")
    sys.stdout.buffer.write(b"Content-Length: %d\r\n\r\n" % len(body) + body)
    sys.stdout.buffer.flush()


def reply(msg_id, result):
    send({"jsonrpc": "2.0", "id": msg_id, "result": result})


def word_at(uri, position):
    lines = documents.get(uri, "").splitlines()
    if position["line"] >= len(lines):
        return None
    for match in WORD_RE.finditer(lines[position["line"]]):
        if match.start() <= position["character"] < match.end():
            return match.group()
    return None


def span(line, start, length):
    return {
        "start": {"line": line, "character": start},
        "end": {"line": line, "character": start + length},
    }


def workspace_symbols(query):
    found = []
    for uri, text in documents.items():
        for line_no, line in enumerate(text.splitlines()):
            for match in re.finditer(r"function (\w+)\(", line):
                if query in match.group(1):
                    found.append({
                        "name": match.group(1),
                        "kind": 12,
                        "location": {
                            "uri": uri,
                            "range": span(line_no, match.start(1), len(match.group(1))),
                        },
                    })
    return found


def references(uri, position, include_declaration):
    word = word_at(uri, position)
    if word is None:
        return []
    pattern = re.compile(r"\b%s\b" % re.escape(word))
    found = []
    for doc_uri, text in documents.items():
        for line_no, line in enumerate(text.splitlines()):
            if line.lstrip().startswith("//"):
                continue
            for match in pattern.finditer(line):
                declaration = line[:match.start()].endswith("function ")
                if declaration and not include_declaration:
                    continue
                found.append({"uri": doc_uri, "range": span(line_no, match.start(), len(word))})
    return found


def main():
    while True:
        message = read_message()
        if message is None:
            return
        method = message.get("method")
        msg_id = message.get("id")
        params = message.get("params") or {}

        if method == "initialize":
            reply(msg_id, {"capabilities": {"referencesProvider": True, "hoverProvider": True}})
        elif method == "initialized":
            send({"jsonrpc": "2.0", "method": "window/logMessage",
                  "params": {"type": 3, "message": "stub ready"}})
            send({"jsonrpc": "2.0", "id": "cfg-1", "method": "workspace/configuration",
                  "params": {"items": []}})
        elif method == "textDocument/didOpen":
            doc = params["textDocument"]
            documents[doc["uri"]] = doc["text"]
        elif method == "textDocument/didClose":
            documents.pop(params["textDocument"]["uri"], None)
        elif method == "workspace/symbol":
            reply(msg_id, workspace_symbols(params["query"]))
        elif method == "textDocument/documentSymbol":
            reply(msg_id, [])
        elif method == "textDocument/hover":
            word = word_at(params["textDocument"]["uri"], params["position"])
            reply(msg_id, {"contents": word} if word else None)
        elif method == "textDocument/references":
            reply(msg_id, references(
                params["textDocument"]["uri"],
                params["position"],
                params.get("context", {}).get("includeDeclaration", True),
            ))
        elif method == "custom/fail":
            send({"jsonrpc": "2.0", "id": msg_id,
                  "error": {"code": -32603, "message": "stub failure"}})
        elif method == "custom/hang":
            pass
        elif method == "shutdown":
            reply(msg_id, None)
        elif method == "exit":
            return
        elif msg_id is not None and "result" not in message:
            send({"jsonrpc": "2.0", "id": msg_id,
                  "error": {"code": -32601, "message": "Method not found"}})


if __name__ == "__main__":
    main()
