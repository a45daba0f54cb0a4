"""Atomic file writes and JSON helpers for checkpoint files."""

import json
import os
from typing import Any


def atomic_write_bytes(path: str, content: bytes) -> None:
    """
    Write bytes so that readers see either the old or the new file.

    Content goes to a sibling temp file first, which then replaces
    the target in a single rename.
    """
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    tmp_path = path + ".tmp"
    with open(tmp_path, "wb") as f:
        f.write(content)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, path)


def atomic_write_text(path: str, content: str) -> None:
    """Atomically write UTF-8 text."""
    atomic_write_bytes(path, content.encode("utf-8"))


def atomic_write_json(path: str, data: Any) -> None:
    """Atomically write an indented JSON document, keeping non-ASCII text readable."""
    atomic_write_text(path, json.dumps(data, ensure_ascii=False, indent=2))


def read_json(path: str) -> Any:
    """Read a UTF-8 JSON document."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()
