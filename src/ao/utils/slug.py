"""Slug helpers for file names and branch names."""

from __future__ import annotations

import hashlib
import re

_UNSAFE = re.compile(r"[^a-z0-9_.-]+")
_REPEATED_HYPHENS = re.compile(r"-{2,}")


def slugify(value: str | None, *, fallback: str = "item", max_length: int = 80) -> str:
    """Lowercase ``value`` into a filesystem-safe slug.

    Slugs longer than ``max_length`` keep a prefix and gain a short digest of
    the full value so distinct inputs stay distinct.
    """
    slug = _REPEATED_HYPHENS.sub("-", _UNSAFE.sub("-", (value or "").strip().lower())).strip("-.")
    if not slug:
        slug = _REPEATED_HYPHENS.sub("-", _UNSAFE.sub("-", fallback.lower())).strip("-.") or "item"
    if len(slug) <= max_length:
        return slug
    digest = hashlib.sha256(slug.encode("utf-8")).hexdigest()[:8]
    prefix = slug[: max(max_length - len(digest) - 1, 1)].rstrip("-")
    return f"{prefix}-{digest}"


__all__ = ["slugify"]
