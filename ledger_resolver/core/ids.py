from __future__ import annotations

import math
import re
from typing import Any, Literal

SUFFIX_LENGTH = 8
U64_MAX = 2**64 - 1
OBJECT_ID_HEX_LENGTH = 64

_OBJECT_ID_RE = re.compile(r"^0x[0-9a-f]{1,64}$")

MatchKind = Literal["exact", "suffix"]


def normalize(identifier: Any) -> str:
    if identifier is None:
        return ""
    value = str(identifier).strip().lower()
    while value.startswith("0x"):
        value = value[2:].strip()
    return value


def match_kind(left: Any, right: Any) -> MatchKind | None:
    normalized_left = normalize(left)
    normalized_right = normalize(right)
    if not normalized_left or not normalized_right:
        return None
    if normalized_left == normalized_right:
        return "exact"
    if normalized_left[-SUFFIX_LENGTH:] == normalized_right[-SUFFIX_LENGTH:]:
        return "suffix"
    return None


def matches(left: Any, right: Any) -> bool:
    return match_kind(left, right) is not None


def looks_like_object_id(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    return bool(_OBJECT_ID_RE.match(value.strip().lower()))


def canonical_object_id(value: str) -> str:
    """Left-pad a short hex address to the full 32-byte form (``0x2`` -> ``0x00..02``)."""
    return "0x" + normalize(value).rjust(OBJECT_ID_HEX_LENGTH, "0")


def coerce_u64(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            return None
        parsed = int(value)
    elif isinstance(value, str):
        raw = value.strip()
        if raw.isdigit():
            parsed = int(raw)
        else:
            try:
                as_float = float(raw)
            except ValueError:
                return None
            if not math.isfinite(as_float) or not as_float.is_integer():
                return None
            parsed = int(as_float)
    else:
        return None
    if parsed <= 0 or parsed > U64_MAX:
        return None
    return parsed


def numeric_key_identifiers(key: int) -> list[str]:
    """Identifier forms a table key can be compared under: decimal, then address-padded hex."""
    return [str(key), "0x" + format(key, f"0{OBJECT_ID_HEX_LENGTH}x")]
