"""Resolution of canonical Vault paths from resource identity."""

from __future__ import annotations

import re
from typing import NewType

from .exceptions import InvalidPathError

VaultPath = NewType("VaultPath", str)

SEPARATOR = "/"

_SEGMENT_PATTERN = re.compile(r"^[A-Za-z0-9_.@;-]+$")
_TRAVERSAL_SEGMENTS = {".", ".."}


def _split_segments(value: str, what: str) -> list[str]:
    segments = value.split(SEPARATOR)
    for segment in segments:
        if not segment:
            raise InvalidPathError(f"{what} {value!r} contains an empty segment")
        if segment in _TRAVERSAL_SEGMENTS:
            raise InvalidPathError(f"{what} {value!r} contains a traversal segment")
        if not _SEGMENT_PATTERN.match(segment):
            raise InvalidPathError(f"{what} {value!r} contains disallowed characters")
    return segments


def normalize_base_path(base_path: str) -> str:
    """Normalize a mount path by stripping one leading and one trailing separator.

    Args:
        base_path: Mount path as written in the resource spec

    Returns:
        Normalized mount path

    Raises:
        InvalidPathError: If the path is empty or malformed after normalization
    """
    if not base_path:
        raise InvalidPathError("path is required")

    normalized = base_path
    if normalized.startswith(SEPARATOR):
        normalized = normalized[1:]
    if normalized.endswith(SEPARATOR):
        normalized = normalized[:-1]
    if not normalized:
        raise InvalidPathError(f"path {base_path!r} is empty after normalization")

    return SEPARATOR.join(_split_segments(normalized, "path"))


def resolve_path(base_path: str, subresource: str, name: str) -> VaultPath:
    """Compute the canonical ``<mount>/<subresource-type>/<name>`` address.

    Pure and deterministic: equal inputs always yield an equal path.

    Args:
        base_path: Mount path of the secrets engine or auth backend
        subresource: Kind-specific segment (e.g. ``static-roles``)
        name: Name of the object, usually the resource's metadata.name

    Returns:
        Canonical Vault path

    Raises:
        InvalidPathError: If any component is empty or contains disallowed segments
    """
    mount = normalize_base_path(base_path)

    if not subresource:
        raise InvalidPathError("subresource segment is required")
    sub_segments = _split_segments(subresource, "subresource")

    if not name:
        raise InvalidPathError("name is required")
    if SEPARATOR in name:
        raise InvalidPathError(f"name {name!r} must be a single path segment")
    _split_segments(name, "name")

    return VaultPath(SEPARATOR.join([mount, *sub_segments, name]))
