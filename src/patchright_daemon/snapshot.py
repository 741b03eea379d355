"""Accessibility snapshot formatting for patchright-daemon.

The raw tree comes from patchright's ``Locator.aria_snapshot()``: a YAML-like
outline with one node per line, nested by ``ARIA_INDENT_WIDTH`` spaces per
level::

    - heading "Test Page" [level=1]
    - navigation:
      - link "About"

The formatter prefixes every node with a reference token in input order::

    @e0 - heading "Test Page" [level=1]
    @e1 - navigation:
    @e2   - link "About"

then optionally drops nodes at or below a maximum depth and optionally
collapses the result onto a single line.  Resolving ``@eN`` back to a live
element is left to the engine's own locators.
"""

from __future__ import annotations

import re
from typing import Any

# Indent unit of the engine's aria_snapshot output.  Depth limiting depends
# on it; if the engine changes its outline format this must follow.
ARIA_INDENT_WIDTH = 2

REF_PREFIX = "@e"
COMPACT_SEPARATOR = " | "

# Leading indentation that follows a ref token, e.g. "@e12 " + "    ".
_REF_INDENT_RE = re.compile(r"^@e\d+ (\s*)")
_WHITESPACE_RE = re.compile(r"\s+")


def annotate_refs(text: str) -> str:
    """Prefix each non-blank line with ``@eN``; blank lines pass through."""
    counter = 0
    lines: list[str] = []
    for line in text.split("\n"):
        if line.strip():
            lines.append(f"{REF_PREFIX}{counter} {line}")
            counter += 1
        else:
            lines.append(line)
    return "\n".join(lines)


def line_depth(line: str) -> int | None:
    """Depth of an annotated line, or ``None`` if it carries no ref token."""
    match = _REF_INDENT_RE.match(line)
    if match is None:
        return None
    return len(match.group(1)) // ARIA_INDENT_WIDTH


def limit_depth(text: str, max_depth: int) -> str:
    """Drop annotated lines whose depth is ``max_depth`` or more."""
    kept = []
    for line in text.split("\n"):
        depth = line_depth(line)
        if depth is None or depth < max_depth:
            kept.append(line)
    return "\n".join(kept)


def compact_snapshot(text: str) -> str:
    """Join lines with ``" | "`` and collapse whitespace runs."""
    joined = text.replace("\n", COMPACT_SEPARATOR)
    return _WHITESPACE_RE.sub(" ", joined).strip()


def validate_max_depth(max_depth: Any) -> int | None:
    """Return the depth limit for *max_depth*; ``None`` and ``0`` mean unlimited."""
    if max_depth is None:
        return None
    if isinstance(max_depth, bool) or not isinstance(max_depth, int) or max_depth < 0:
        raise ValueError("maxDepth must be a positive integer")
    return max_depth or None


def format_snapshot(
    raw: str,
    max_depth: int | None = None,
    compact: bool = False,
) -> str:
    """Annotate, depth-limit, then compact a raw accessibility tree."""
    max_depth = validate_max_depth(max_depth)

    result = annotate_refs(raw)
    if max_depth is not None:
        result = limit_depth(result, max_depth)
    if compact:
        result = compact_snapshot(result)
    return result


async def take_snapshot(page: Any, root_selector: str = "body") -> str:
    """Return the raw accessibility outline of *page* below *root_selector*."""
    return await page.locator(root_selector).aria_snapshot()
