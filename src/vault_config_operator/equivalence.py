"""Canonicalizing comparison of desired payloads against Vault's view.

Vault echoes back its own representation of what was written: durations come
back as integer seconds, unset lists come back as ``null`` or ``[]``, and the
response carries server-computed fields (``last_vault_rotation``, ``ttl``,
``credential_type``...) that are not part of the declared contract. A naive
deep-equality check would therefore report drift on every resync.

The comparison here restricts the observed payload to the declared keys and
canonicalizes both sides per field kind before comparing.
"""

from __future__ import annotations

import json
import logging
import re
from enum import Enum
from typing import Any, Mapping

logger = logging.getLogger(__name__)


class FieldKind(str, Enum):
    """How a payload field is canonicalized before comparison."""

    SCALAR = "scalar"
    DURATION = "duration"
    LIST = "list"
    SET = "set"
    MAP = "map"


_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}

_DURATION_TERM = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h|d)")


def parse_duration(value: Any) -> int:
    """Convert a duration to whole seconds.

    Accepts integers and floats (seconds), numeric strings, and Go-style
    duration strings such as ``"24h"``, ``"1h30m"``, ``"24h0m0s"`` or ``"2d"``.

    Raises:
        ValueError: If the value cannot be interpreted as a duration
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    if not isinstance(value, str):
        raise ValueError(f"invalid duration: {value!r}")

    text = value.strip()
    if not text:
        raise ValueError("invalid duration: empty string")

    try:
        return int(float(text))
    except ValueError:
        pass

    sign = 1
    if text[0] in "+-":
        sign = -1 if text[0] == "-" else 1
        text = text[1:]

    total = 0.0
    pos = 0
    for match in _DURATION_TERM.finditer(text):
        if match.start() != pos:
            raise ValueError(f"invalid duration: {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text) or pos == 0:
        raise ValueError(f"invalid duration: {value!r}")

    return sign * int(total)


def _sort_key(item: Any) -> str:
    return json.dumps(item, sort_keys=True, default=str)


def _infer_kind(value: Any) -> FieldKind:
    if isinstance(value, (list, tuple)):
        return FieldKind.LIST
    if isinstance(value, Mapping):
        return FieldKind.MAP
    return FieldKind.SCALAR


def canonicalize(value: Any, kind: FieldKind | None = None) -> Any:
    """Return the canonical form of a single field value."""
    if kind is None:
        kind = _infer_kind(value)

    if kind is FieldKind.DURATION:
        if value is None or value == "":
            return 0
        try:
            return parse_duration(value)
        except ValueError:
            # Leave unparseable values as-is so they compare unequal.
            return value

    if kind is FieldKind.LIST:
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            return [canonicalize(value)]
        return [canonicalize(v) for v in value]

    if kind is FieldKind.SET:
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            value = [value]
        items = [canonicalize(v) for v in value]
        unique = {_sort_key(v): v for v in items}
        return [unique[k] for k in sorted(unique)]

    if kind is FieldKind.MAP:
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            return value
        return {k: canonicalize(v) for k, v in value.items()}

    if isinstance(value, (list, tuple, Mapping)):
        return canonicalize(value, _infer_kind(value))
    return value


def diff_fields(
    desired: Mapping[str, Any],
    observed: Mapping[str, Any] | None,
    field_kinds: Mapping[str, FieldKind] | None = None,
) -> list[str]:
    """List the declared fields whose canonical values differ.

    Only keys present in ``desired`` are inspected; extra keys in ``observed``
    are never reported.
    """
    if observed is None:
        return list(desired)

    kinds = field_kinds or {}
    drifted = []
    for key, want in desired.items():
        kind = kinds.get(key)
        if kind is None:
            kind = _infer_kind(want if want is not None else observed.get(key))
        if canonicalize(want, kind) != canonicalize(observed.get(key), kind):
            drifted.append(key)
    return drifted


def is_equivalent(
    desired: Mapping[str, Any],
    observed: Mapping[str, Any] | None,
    field_kinds: Mapping[str, FieldKind] | None = None,
) -> bool:
    """Check whether Vault already holds the desired state.

    Args:
        desired: Payload derived from the resource spec
        observed: Payload read from Vault, or None when nothing exists
        field_kinds: Canonicalization kind per wire field

    Returns:
        True when every declared field matches after canonicalization
    """
    if observed is None:
        return False

    drifted = diff_fields(desired, observed, field_kinds)
    if drifted:
        logger.debug("Payload drift detected in fields: %s", ", ".join(drifted))
        return False
    return True
