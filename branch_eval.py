"""Branch rule evaluator used by flow previews."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict

from flow_model import BranchRule, FlowSpec


@dataclass
class BranchEvalError(Exception):
    code: str
    message: str
    path: str | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        base = f"{self.code}: {self.message}"
        return f"{base} (path={self.path})" if self.path else base


class BranchTypeError(BranchEvalError):
    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__("BRANCH_TYPE_ERROR", message, path)


class UnknownBranchOpError(BranchEvalError):
    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__("BRANCH_UNKNOWN_OP", message, path)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def _norm(value: Any) -> str:
    return str(value if value is not None else "").strip().lower()


def _to_number(value: Any) -> float | None:
    if _is_number(value):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def _to_datetime(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    return parsed.replace(tzinfo=None)


def _compare(op: str, left: Any, right: Any, path: str) -> bool:
    ln, rn = _to_number(left), _to_number(right)
    if ln is not None and rn is not None:
        return ln > rn if op == "gt" else ln < rn
    ld, rd = _to_datetime(left), _to_datetime(right)
    if ld is not None and rd is not None:
        return ld > rd if op == "gt" else ld < rd
    raise BranchTypeError("Comparison requires numbers or ISO dates", path)


def eval_branch_rule(rule: BranchRule, values: Dict[str, Any]) -> bool:
    if not isinstance(values, dict):
        raise BranchTypeError("values must be object", "$")
    path = f"$.{rule.field}"
    value = values.get(rule.field)
    op = rule.op

    if op == "is_filled":
        return not _is_empty(value)
    if op == "is_empty":
        return _is_empty(value)
    if op == "is_true":
        return value is True or _norm(value) == "true"
    if op == "is_false":
        return value is False or _norm(value) == "false"
    if op == "equals":
        if isinstance(value, (list, tuple)):
            return any(_norm(item) == _norm(rule.value) for item in value)
        return _norm(value) == _norm(rule.value)
    if op == "contains":
        needle = _norm(rule.value)
        if isinstance(value, str):
            return needle in value.lower()
        if isinstance(value, (list, tuple)):
            return any(needle in _norm(item) for item in value)
        return False
    if op in {"gt", "lt"}:
        if value is None:
            return False
        return _compare(op, value, rule.value, path)

    raise UnknownBranchOpError(f"Unknown op: {op}", path)


def resolve_next_screen(spec: FlowSpec, screen_id: str, values: Dict[str, Any]) -> str | None:
    """Next screen for the answers given on ``screen_id``; ``None`` finishes the flow."""
    for rule in spec.branches_by_screen.get(screen_id, []):
        if not rule.field:
            continue
        if eval_branch_rule(rule, values):
            return rule.next
    return spec.default_next_by_screen.get(screen_id)
