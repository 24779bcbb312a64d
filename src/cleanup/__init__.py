"""Revision-based cleanup engine for public domain texts."""

from __future__ import annotations

from pathlib import Path


def read_source_text(path: str | Path) -> str:
    """Read a source text file, tolerating a UTF-8 byte order mark.

    Args:
        path: Path to the text file.

    Returns:
        The file contents with Windows line endings normalized to ``\\n``.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Source file not found: {path}")

    text = path.read_text(encoding="utf-8-sig")
    return text.replace("\r\n", "\n").replace("\r", "\n")
