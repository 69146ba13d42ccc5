"""Helpers for the small subset of markdown the documents use."""

from __future__ import annotations

import html
import re

_SEPARATOR_CELL = re.compile(r"^:?-{3,}:?$")


def table_cells(line: str) -> list[str]:
    """Split a '| a | b |' table row into stripped cells."""
    line = line.strip()
    if not line.startswith("|"):
        return []
    parts = line.split("|")
    # Drop the empty strings outside the leading and trailing pipes
    if line.endswith("|") and len(parts) > 1:
        parts = parts[1:-1]
    else:
        parts = parts[1:]
    return [html.unescape(part.strip()) for part in parts]


def is_separator_row(line: str) -> bool:
    cells = table_cells(line)
    return bool(cells) and all(_SEPARATOR_CELL.match(cell.replace(" ", "")) for cell in cells)


def extract_section(text: str, heading: str) -> str | None:
    """Return the body of a '## heading' section, up to the next '## ' heading.

    Returns None if the section does not exist.
    """
    lines = text.splitlines()
    body: list[str] = []
    inside = False
    for line in lines:
        stripped = line.strip()
        if stripped.startswith("## "):
            if inside:
                break
            if stripped[3:].strip().lower() == heading.lower():
                inside = True
                continue
        if inside:
            body.append(line)
    if not inside:
        return None
    return "\n".join(body)


def strip_backticks(value: str) -> str:
    if len(value) >= 2 and value.startswith("`") and value.endswith("`"):
        return value[1:-1]
    return value
