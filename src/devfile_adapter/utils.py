"""Utility helpers shared across the devfile adapter package."""
from __future__ import annotations

import hashlib
import re

_DNS1123_INVALID = re.compile(r"[^a-z0-9-]+")


def dns1123_name(value: str, max_length: int = 63) -> str:
    """Squash ``value`` into a DNS-1123 label of at most ``max_length`` characters."""

    name = _DNS1123_INVALID.sub("-", value.lower()).strip("-")
    return name[:max_length].rstrip("-")


def short_hash(*parts: str, length: int = 4) -> str:
    digest = hashlib.sha1("/".join(parts).encode("utf-8")).hexdigest()
    return digest[:length]
