"""Relative path normalization used by access rules, volumes and shares."""

from __future__ import annotations

import os
from pathlib import Path

from explorer.errors import ValidationError


def normalize_relative_path(raw: str | None) -> str:
    """Normalize a user-supplied relative path.

    Backslashes become slashes, empty and "." segments are dropped, ".."
    pops a segment. Leading/trailing slashes are stripped, so "/" and ""
    both normalize to "". Escaping above the root raises ValidationError.
    """
    if not raw:
        return ""
    parts: list[str] = []
    for segment in str(raw).replace("\\", "/").split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if not parts:
                raise ValidationError("Invalid path: traversal outside root.", code="INVALID_PATH")
            parts.pop()
            continue
        parts.append(segment)
    return "/".join(parts)


def combine_relative_path(*segments: str | None) -> str:
    return normalize_relative_path("/".join(s for s in segments if s))


def is_same_or_descendant(path: str, ancestor: str) -> bool:
    """True if normalized `path` equals `ancestor` or lies beneath it."""
    if not ancestor:
        return True
    return path == ancestor or path.startswith(ancestor + "/")


def ensure_valid_name(name: str | None) -> str:
    """Validate a single path segment (e.g. a volume label)."""
    value = (name or "").strip()
    if not value:
        raise ValidationError("Name cannot be empty.", code="INVALID_NAME")
    if "/" in value or "\\" in value:
        raise ValidationError("Name cannot contain path separators.", code="INVALID_NAME")
    if value in (".", ".."):
        raise ValidationError("Name is not allowed.", code="INVALID_NAME")
    return value


def resolve_within(root: str | os.PathLike[str], relative: str) -> Path:
    """Join `relative` onto `root`, refusing results outside `root`."""
    base = Path(root).resolve()
    target = (base / normalize_relative_path(relative)).resolve()
    if target != base and base not in target.parents:
        raise ValidationError("Path resolves outside the allowed root.", code="INVALID_PATH")
    return target
