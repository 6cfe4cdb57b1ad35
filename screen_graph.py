"""Pure edit helpers over FlowSpec snapshots.

Each helper builds a draft from the previous spec and returns
``normalize_flow_spec(draft)``; the input spec is never modified.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List

from flow_model import (
    ACTION_TYPES,
    CONTINUE_LABEL,
    DEFAULT_SCREEN_ID,
    FINISH_LABEL,
    SUBMIT_LABEL,
    BranchRule,
    FlowSpec,
    Screen,
    ScreenAction,
    index_to_letters,
)
from flowgraph.blocks import (
    binding_key,
    choice_options_by_field,
    move_item,
    with_bound_example,
    with_screen_blocks,
)
from graph_normalize import field_payload, is_final, normalize_flow_spec


MAX_ID_CANDIDATES = 2000
PATCHABLE_FIELDS = ("title", "terminal", "data", "components", "action")


@dataclass
class ScreenGraphError(Exception):
    code: str
    message: str
    path: str | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        base = f"{self.code}: {self.message}"
        return f"{base} (path={self.path})" if self.path else base


class ScreenNotFoundError(ScreenGraphError):
    def __init__(self, screen_id: str, path: str | None = None) -> None:
        super().__init__("SCREEN_NOT_FOUND", f"Unknown screen: {screen_id}", path or f"screens.{screen_id}")


class BranchRuleNotFoundError(ScreenGraphError):
    def __init__(self, screen_id: str, index: int) -> None:
        super().__init__(
            "BRANCH_RULE_NOT_FOUND",
            f"Screen {screen_id} has no branch rule at index {index}",
            f"branches_by_screen.{screen_id}[{index}]",
        )


class ScreenPatchError(ScreenGraphError):
    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__("SCREEN_PATCH_INVALID", message, path)


def _require_screen(spec: FlowSpec, screen_id: str) -> Screen:
    screen = spec.get_screen(screen_id)
    if screen is None:
        raise ScreenNotFoundError(screen_id)
    return screen


def _require_target(spec: FlowSpec, next_id: str | None, path: str) -> str | None:
    if next_id is None or next_id == "":
        return None
    if spec.get_screen(next_id) is None:
        raise ScreenNotFoundError(next_id, path)
    return next_id


def create_screen_id(existing_ids: Iterable[str]) -> str:
    used = {str(i).strip().upper() for i in existing_ids if i is not None}
    for idx in range(MAX_ID_CANDIDATES):
        candidate = f"SCREEN_{index_to_letters(idx)}"
        if candidate not in used:
            return candidate
    return DEFAULT_SCREEN_ID


def add_screen(spec: FlowSpec, title: str | None = None) -> tuple[FlowSpec, str]:
    """Append a final screen and link the previous last screen to it."""
    new_id = create_screen_id(spec.screen_ids())
    new_screen = Screen(
        id=new_id,
        title=(title or "").strip() or f"Tela {len(spec.screens) + 1}",
        terminal=True,
        components=[{"type": "Form", "name": "form", "children": [{"type": "TextBody", "text": "Nova tela"}]}],
        action=ScreenAction(type="complete", label=SUBMIT_LABEL),
    )
    screens = list(spec.screens)
    default_next = dict(spec.default_next_by_screen)
    if screens:
        last = screens[-1]
        kept_label = last.action.label.strip() if last.action is not None and last.action.label else ""
        label = CONTINUE_LABEL if is_final(last) else kept_label or CONTINUE_LABEL
        screens[-1] = dataclasses.replace(
            last,
            terminal=False,
            action=ScreenAction(type="navigate", screen=new_id, label=label),
        )
        default_next[last.id] = new_id
    screens.append(new_screen)
    default_next[new_id] = None
    draft = dataclasses.replace(spec, screens=tuple(screens), default_next_by_screen=default_next)
    return normalize_flow_spec(draft), new_id


def remove_screen(spec: FlowSpec, screen_id: str) -> FlowSpec:
    _require_screen(spec, screen_id)
    if len(spec.screens) <= 1:
        return spec
    screens = tuple(s for s in spec.screens if s.id != screen_id)
    survivors = {s.id for s in screens}

    default_next: Dict[str, str | None] = {}
    for screen in screens:
        nxt = spec.default_next_by_screen.get(screen.id)
        default_next[screen.id] = nxt if nxt in survivors else None

    branches: Dict[str, List[BranchRule]] = {}
    for sid, rules in spec.branches_by_screen.items():
        if sid not in survivors:
            continue
        kept = [r for r in rules if r.next is None or r.next in survivors]
        if kept:
            branches[sid] = kept

    draft = FlowSpec(screens=screens, default_next_by_screen=default_next, branches_by_screen=branches)
    return normalize_flow_spec(draft)


def patch_screen(spec: FlowSpec, screen_id: str, patch: Dict[str, Any]) -> FlowSpec:
    """Shallow patch of one screen.

    A ``title`` patch on a ``${data.key}`` title edits the bound example
    instead of replacing the binding.
    """
    current = _require_screen(spec, screen_id)
    if not isinstance(patch, dict):
        raise ScreenPatchError("patch must be an object", "patch")
    unknown = sorted(k for k in patch if k not in PATCHABLE_FIELDS)
    if unknown:
        raise ScreenPatchError(f"Unsupported screen fields: {', '.join(unknown)}", "patch")

    changes: Dict[str, Any] = {}
    for key, value in patch.items():
        if key == "title":
            title = str(value if value is not None else "")
            bound = binding_key(current.title)
            if bound and isinstance(current.data, dict) and isinstance(current.data.get(bound), dict):
                changes["data"] = with_bound_example(changes.get("data", current.data), bound, title)
            else:
                changes["title"] = title
        elif key == "terminal":
            changes["terminal"] = value is True
        elif key == "data":
            if value is not None and not isinstance(value, dict):
                raise ScreenPatchError("data must be an object", "patch.data")
            changes["data"] = dict(value) if value is not None else None
        elif key == "components":
            if not isinstance(value, list):
                raise ScreenPatchError("components must be a list", "patch.components")
            changes["components"] = [c for c in value if isinstance(c, dict)]
        elif key == "action":
            if value is None:
                changes["action"] = None
            elif isinstance(value, ScreenAction):
                changes["action"] = value
            else:
                action = ScreenAction.from_dict(value)
                if action is None:
                    raise ScreenPatchError("action must be an object", "patch.action")
                changes["action"] = action
    draft = spec.replace_screen(dataclasses.replace(current, **changes))
    return normalize_flow_spec(draft)


def _coerce_rule(raw: Any) -> BranchRule:
    if isinstance(raw, BranchRule):
        return raw
    rule = BranchRule.from_dict(raw)
    if rule is None:
        raise ScreenPatchError("branch rule must be an object", "rules")
    return rule


def set_branch_rules(spec: FlowSpec, screen_id: str, rules: Iterable[Any]) -> FlowSpec:
    """Replace a screen's rules.

    Typed option labels on ``equals``/``contains`` rules over choice fields
    are stored as option ids.
    """
    screen = _require_screen(spec, screen_id)
    options_by_field = choice_options_by_field(screen.components, screen.data)
    stored: List[BranchRule] = []
    for idx, raw in enumerate(rules):
        rule = _coerce_rule(raw)
        if rule.next is not None:
            _require_target(spec, rule.next, f"rules[{idx}].next")
        options = options_by_field.get(rule.field)
        if rule.op in ("equals", "contains") and options and isinstance(rule.value, str) and rule.value.strip():
            wanted = rule.value.strip()
            match = next((o for o in options if o.value == wanted), None)
            if match is None:
                match = next((o for o in options if o.label.lower() == wanted.lower()), None)
            if match is not None:
                rule = dataclasses.replace(rule, value=match.value)
        stored.append(rule)

    branches = dict(spec.branches_by_screen)
    if stored:
        branches[screen_id] = stored
    else:
        branches.pop(screen_id, None)
    return normalize_flow_spec(dataclasses.replace(spec, branches_by_screen=branches))


def pin_branch_next(spec: FlowSpec, screen_id: str, index: int, next_id: str | None) -> FlowSpec:
    """Set a rule's destination by hand; auto-routing stops touching it."""
    _require_screen(spec, screen_id)
    rules = list(spec.branches_by_screen.get(screen_id, []))
    if not 0 <= index < len(rules):
        raise BranchRuleNotFoundError(screen_id, index)
    target = _require_target(spec, next_id, f"branches_by_screen.{screen_id}[{index}].next")
    rules[index] = dataclasses.replace(rules[index], next=target, auto_next=False)
    branches = dict(spec.branches_by_screen)
    branches[screen_id] = rules
    return normalize_flow_spec(dataclasses.replace(spec, branches_by_screen=branches))


def set_default_next(spec: FlowSpec, screen_id: str, next_id: str | None) -> FlowSpec:
    screen = _require_screen(spec, screen_id)
    target = _require_target(spec, next_id, f"default_next_by_screen.{screen_id}")
    default_next = dict(spec.default_next_by_screen)
    default_next[screen_id] = target
    draft = dataclasses.replace(spec, default_next_by_screen=default_next)
    if target is not None and screen.terminal:
        draft = draft.replace_screen(dataclasses.replace(screen, terminal=False))
    return normalize_flow_spec(draft)


def set_screen_action(
    spec: FlowSpec,
    screen_id: str,
    type: str | None = None,
    label: str | None = None,
    next_id: str | None = None,
) -> FlowSpec:
    """Edit a screen's call to action.

    ``data_exchange`` builds the field payload, ``navigate`` drops any payload
    and ``complete`` keeps an existing one. A terminal screen always keeps
    ``complete``.
    """
    current = _require_screen(spec, screen_id)
    if type is not None and type not in ACTION_TYPES:
        raise ScreenPatchError(f"Unsupported action type: {type}", "action.type")
    existing = current.action
    action_type = type or (existing.type if existing is not None else ("complete" if current.terminal else "navigate"))
    if current.terminal:
        action_type = "complete"
    action_label = label if label is not None else (existing.label if existing is not None else None)

    if next_id is not None:
        target = _require_target(spec, next_id, "action.screen")
    else:
        target = spec.default_next_by_screen.get(screen_id)

    default_next = dict(spec.default_next_by_screen)
    if action_type == "complete":
        default_next[screen_id] = None
        target = None
    else:
        default_next[screen_id] = target

    if action_type == "data_exchange":
        action = ScreenAction(type="data_exchange", payload=field_payload(current), label=action_label or None)
    elif action_type == "navigate":
        action = ScreenAction(type="navigate", screen=target, label=action_label or None)
    else:
        payload = existing.payload if existing is not None and existing.payload is not None else None
        action = ScreenAction(type="complete", payload=payload, label=action_label or FINISH_LABEL)

    draft = dataclasses.replace(spec, default_next_by_screen=default_next)
    draft = draft.replace_screen(dataclasses.replace(current, action=action))
    return normalize_flow_spec(draft)


def make_screen_final(spec: FlowSpec, screen_id: str) -> FlowSpec:
    current = _require_screen(spec, screen_id)
    label = current.action.label.strip() if current.action is not None and current.action.label else ""
    payload = current.action.payload if current.action is not None and current.action.type == "complete" else None
    final = dataclasses.replace(
        current,
        terminal=True,
        action=ScreenAction(type="complete", payload=payload, label=label or FINISH_LABEL),
    )
    default_next = dict(spec.default_next_by_screen)
    default_next[screen_id] = None
    draft = dataclasses.replace(spec, default_next_by_screen=default_next).replace_screen(final)
    return normalize_flow_spec(draft)


def reopen_screen(spec: FlowSpec, screen_id: str, next_id: str | None = None) -> FlowSpec:
    """Undo finalization: the screen continues to ``next_id`` (or the following screen)."""
    current = _require_screen(spec, screen_id)
    if next_id is None:
        idx = spec.index_of(screen_id)
        next_id = spec.screens[idx + 1].id if idx + 1 < len(spec.screens) else None
    target = _require_target(spec, next_id, "next_id")
    reopened = dataclasses.replace(
        current,
        terminal=False,
        action=ScreenAction(type="navigate", screen=target, label=CONTINUE_LABEL),
    )
    default_next = dict(spec.default_next_by_screen)
    default_next[screen_id] = target
    draft = dataclasses.replace(spec, default_next_by_screen=default_next).replace_screen(reopened)
    return normalize_flow_spec(draft)


def move_screen(spec: FlowSpec, screen_id: str, to_index: int) -> FlowSpec:
    _require_screen(spec, screen_id)
    screens = move_item(spec.screens, spec.index_of(screen_id), to_index)
    return normalize_flow_spec(dataclasses.replace(spec, screens=screens))


def set_screen_blocks(spec: FlowSpec, screen_id: str, blocks: List[dict]) -> FlowSpec:
    current = _require_screen(spec, screen_id)
    if not isinstance(blocks, list):
        raise ScreenPatchError("blocks must be a list", "blocks")
    components = with_screen_blocks(current.components, [b for b in blocks if isinstance(b, dict)])
    draft = spec.replace_screen(dataclasses.replace(current, components=components))
    return normalize_flow_spec(draft)
