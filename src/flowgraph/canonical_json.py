"""Deterministic canonical JSON for flow specs and flow documents."""

from __future__ import annotations

import json
import math
from typing import Any


class CanonicalJsonTypeError(TypeError):
    """Raised when a value cannot be written as canonical JSON."""


def to_plain(obj: Any, path: str = "$") -> Any:
    """Reduce flow values to plain JSON types.

    Objects exposing ``to_dict()`` (FlowSpec, Screen, BranchRule) are
    expanded, tuples become lists. Anything else outside the JSON types is
    rejected with the offending path.
    """
    if hasattr(obj, "to_dict") and callable(obj.to_dict):
        return to_plain(obj.to_dict(), path)
    if isinstance(obj, dict):
        out = {}
        for key, value in obj.items():
            if not isinstance(key, str):
                raise CanonicalJsonTypeError(
                    f"Unsupported key type at {path}: {type(key).__name__}"
                )
            out[key] = to_plain(value, f"{path}.{key}")
        return out
    if isinstance(obj, (list, tuple)):
        return [to_plain(item, f"{path}[{idx}]") for idx, item in enumerate(obj)]
    if obj is None or isinstance(obj, (str, bool, int)):
        return obj
    if isinstance(obj, float):
        if not math.isfinite(obj):
            raise ValueError(f"Non-finite float at {path}: {obj!r}")
        return obj
    raise CanonicalJsonTypeError(f"Unsupported type at {path}: {type(obj).__name__}")


def canonical_dumps(obj: Any) -> str:
    """Serialize a flow value to deterministic canonical JSON.

    Rules:
    - Sort dict keys recursively.
    - Preserve list order (screen order and branch order are significant).
    - UTF-8 with non-ASCII preserved (screen titles are often Portuguese).
    - No extra whitespace.
    """
    return json.dumps(
        to_plain(obj),
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        allow_nan=False,
    )
