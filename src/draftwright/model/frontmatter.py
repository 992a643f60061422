"""YAML frontmatter parsing and rewriting for Markdown files."""

from __future__ import annotations

import re
from typing import Any

import yaml

_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)(?:\r?\n)?^---[ \t]*(?:\r?\n|\Z)", re.S | re.M)


def split_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Return ``(metadata, body)``.

    Files without frontmatter, or with frontmatter that is not a YAML mapping,
    yield an empty mapping and the full text as the body. Malformed YAML
    raises ``yaml.YAMLError``.
    """

    match = _FRONTMATTER_RE.match(text)
    if match is None:
        return {}, text
    raw = yaml.safe_load(match.group(1)) if match.group(1).strip() else None
    if not isinstance(raw, dict):
        return {}, text[match.end() :]
    return raw, text[match.end() :]


def strip_frontmatter(text: str) -> str:
    match = _FRONTMATTER_RE.match(text)
    return text if match is None else text[match.end() :]


def render_frontmatter(metadata: dict[str, Any], body: str) -> str:
    if not metadata:
        return body
    dumped = yaml.safe_dump(metadata, sort_keys=False, allow_unicode=True, default_flow_style=False)
    return f"---\n{dumped}---\n{body}"


def replace_frontmatter(text: str, metadata: dict[str, Any]) -> str:
    """Rewrite the frontmatter of ``text``, keeping its body untouched."""

    _, body = split_frontmatter(text)
    return render_frontmatter(metadata, body)
