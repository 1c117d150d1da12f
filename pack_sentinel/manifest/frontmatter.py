"""Leading metadata block parsing for manifest documents.

Documents look like::

    ---
    name: security-sentinel
    description: Security audits and vulnerability assessments
    ---
    You are a security reviewer...

The header is YAML; everything after the closing delimiter is returned
untouched.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Tuple

import yaml

from pack_sentinel.errors import ManifestParseError

_FRONTMATTER_RE = re.compile(
    r"\A\ufeff?---[ \t]*\r?\n(.*?)(?:\r?\n)?^---[ \t]*(?:\r?\n|\Z)(.*)\Z",
    re.DOTALL | re.MULTILINE,
)


def split_frontmatter(text: str, path: str = "") -> Tuple[Dict[str, Any], str]:
    """Split *text* into ``(metadata, body)``.

    Raises :class:`ManifestParseError` when the header is missing, is not
    valid YAML, or is not a mapping.
    """
    match = _FRONTMATTER_RE.match(text)
    if match is None:
        raise ManifestParseError("Document has no leading '---' metadata block", path)

    raw_header, body = match.group(1), match.group(2)
    try:
        meta = yaml.safe_load(raw_header) if raw_header.strip() else {}
    except yaml.YAMLError as exc:
        raise ManifestParseError(f"Invalid YAML in metadata block: {exc}", path) from exc

    if meta is None:
        meta = {}
    if not isinstance(meta, dict):
        raise ManifestParseError("Metadata block must be a YAML mapping", path)
    return meta, body
