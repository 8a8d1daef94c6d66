"""Branch name normalization.

Generated branch names are free text. ``normalize_branch_name`` turns any
text into ``<category>/<slug>`` where both parts use lowercase letters,
digits and single hyphens only.
"""

from __future__ import annotations

import re

DEFAULT_PREFIX = "feature"

# Practical length limit for the whole name
MAX_LENGTH = 50

_LABEL_RE = re.compile(r"^\s*(branch\s+name\s*:?\s*|branch\s*:\s*)", re.IGNORECASE)
_INVALID_RE = re.compile(r"[^a-z0-9-]+")
_HYPHENS_RE = re.compile(r"-{2,}")
_BRANCH_LIKE_RE = re.compile(r"^[A-Za-z0-9._-]+/[A-Za-z0-9._/-]+$")


def _slugify(text: str) -> str:
    slug = _INVALID_RE.sub("-", text.lower())
    slug = _HYPHENS_RE.sub("-", slug)
    return slug.strip("-")


def _clean_line(line: str) -> str:
    line = _LABEL_RE.sub("", line.strip())
    return line.strip().strip("`'\"*").strip()


def _pick_line(text: str) -> str:
    """Choose the line of generated text that holds the branch name.

    A line shaped like ``category/name`` wins. Otherwise the first line that
    is not a lead-in ending in a colon.
    """
    lines = [cleaned for cleaned in map(_clean_line, text.splitlines()) if cleaned]
    for line in lines:
        if _BRANCH_LIKE_RE.match(line):
            return line
    for line in lines:
        if not line.endswith(":"):
            return line
    return lines[0] if lines else ""


def _truncate(slug: str, limit: int) -> str:
    if limit <= 0 or len(slug) <= limit:
        return slug
    cut = slug[:limit]
    # Prefer cutting at a word boundary
    if "-" in cut and slug[limit] != "-":
        cut = cut.rsplit("-", 1)[0]
    return cut.strip("-")


def normalize_branch_name(
    raw: str,
    default_prefix: str = DEFAULT_PREFIX,
    max_length: int = MAX_LENGTH,
) -> str:
    """Normalize generated text into a valid branch name.

    Args:
        raw: Text returned by the branch namer.
        default_prefix: Category used when the text has no ``/``.
        max_length: Soft limit for the total length. The category is never
            truncated.

    Returns:
        A name matching ``^[a-z0-9-]+/[a-z0-9]+(-[a-z0-9]+)*$``.

    Raises:
        ValueError: If no usable characters remain in the text.
    """
    text = _pick_line(raw or "")

    if "/" in text:
        prefix_text, _, rest = text.partition("/")
        prefix = _slugify(prefix_text)
        slug = _slugify(rest)
        if not prefix:
            prefix = _slugify(default_prefix)
    else:
        prefix = _slugify(default_prefix)
        slug = _slugify(text)

    if not slug:
        raise ValueError(f"Cannot derive a branch name from {raw!r}")
    if not prefix:
        raise ValueError(f"Invalid default branch prefix {default_prefix!r}")

    slug = _truncate(slug, max_length - len(prefix) - 1) or slug
    return f"{prefix}/{slug}"
