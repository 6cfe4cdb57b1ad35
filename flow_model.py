"""Flow screen graph value types (immutable snapshots)."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple


SPEC_VERSION = 1
ACTION_TYPES = ("navigate", "data_exchange", "complete")
BRANCH_OPS = ("is_filled", "is_empty", "equals", "contains", "gt", "lt", "is_true", "is_false")
VALUE_OPS = frozenset({"equals", "contains", "gt", "lt"})

CONTINUE_LABEL = "Continuar"
FINISH_LABEL = "Concluir"
SUBMIT_LABEL = "Enviar"
DEFAULT_FLOW_TITLE = "Flow dinâmico"
DEFAULT_SCREEN_ID = "SCREEN_A"


def index_to_letters(index: int) -> str:
    # 0 -> A, 25 -> Z, 26 -> AA
    n = max(0, int(index))
    out = ""
    while True:
        out = chr(65 + n % 26) + out
        n = n // 26 - 1
        if n < 0:
            break
    return out or "A"


def _clean_str(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


@dataclass(frozen=True)
class ScreenAction:
    type: str
    screen: str | None = None
    payload: Dict[str, Any] | None = None
    label: str | None = None

    def to_dict(self) -> dict:
        out: dict = {"type": self.type}
        if self.screen:
            out["screen"] = self.screen
        if self.payload is not None:
            out["payload"] = dict(self.payload)
        if self.label:
            out["label"] = self.label
        return out

    @classmethod
    def from_dict(cls, raw: Any) -> "ScreenAction | None":
        if not isinstance(raw, dict):
            return None
        action_type = _clean_str(raw.get("type"))
        if action_type not in ACTION_TYPES:
            action_type = "navigate"
        payload = raw.get("payload")
        # navigate + payload is rejected by the flow publisher
        if action_type == "navigate" or not isinstance(payload, dict):
            payload = None
        label = raw.get("label") if isinstance(raw.get("label"), str) else ""
        return cls(
            type=action_type,
            screen=_clean_str(raw.get("screen")) or None,
            payload=dict(payload) if payload is not None else None,
            label=label or None,
        )


@dataclass(frozen=True)
class Screen:
    id: str
    title: str
    terminal: bool = False
    components: List[dict] = dataclasses.field(default_factory=list)
    data: Dict[str, Any] | None = None
    action: ScreenAction | None = None

    def to_dict(self) -> dict:
        out: dict = {
            "id": self.id,
            "title": self.title,
            "terminal": self.terminal,
            "components": list(self.components),
        }
        if self.data is not None:
            out["data"] = dict(self.data)
        if self.action is not None:
            out["action"] = self.action.to_dict()
        return out

    @classmethod
    def from_dict(cls, raw: dict, index: int = 0) -> "Screen":
        components = raw.get("components")
        data = raw.get("data")
        return cls(
            id=_clean_str(raw.get("id")) or f"SCREEN_{index_to_letters(index)}",
            title=_clean_str(raw.get("title")),
            terminal=raw.get("terminal") is True,
            components=[c for c in components if isinstance(c, dict)] if isinstance(components, list) else [],
            data=dict(data) if isinstance(data, dict) else None,
            action=ScreenAction.from_dict(raw.get("action")),
        )


@dataclass(frozen=True)
class BranchRule:
    field: str
    op: str = "equals"
    value: Any = None
    next: str | None = None
    auto_next: bool = True

    def to_dict(self) -> dict:
        out: dict = {"field": self.field, "op": self.op}
        if self.value is not None:
            out["value"] = self.value
        out["next"] = self.next
        out["auto_next"] = self.auto_next
        return out

    @classmethod
    def from_dict(cls, raw: Any) -> "BranchRule | None":
        if not isinstance(raw, dict):
            return None
        op = _clean_str(raw.get("op"))
        auto = raw.get("auto_next", raw.get("__auto_next", raw.get("autoNext", True)))
        return cls(
            field=_clean_str(raw.get("field")),
            op=op if op in BRANCH_OPS else "equals",
            value=raw.get("value"),
            next=_clean_str(raw.get("next")) or None,
            auto_next=auto is not False,
        )


@dataclass(frozen=True)
class FlowSpec:
    screens: Tuple[Screen, ...] = ()
    routing_model: Dict[str, List[str]] = dataclasses.field(default_factory=dict)
    default_next_by_screen: Dict[str, str | None] = dataclasses.field(default_factory=dict)
    branches_by_screen: Dict[str, List[BranchRule]] = dataclasses.field(default_factory=dict)

    def screen_ids(self) -> List[str]:
        return [s.id for s in self.screens]

    def index_of(self, screen_id: str) -> int:
        for idx, screen in enumerate(self.screens):
            if screen.id == screen_id:
                return idx
        return -1

    def get_screen(self, screen_id: str) -> Screen | None:
        idx = self.index_of(screen_id)
        return self.screens[idx] if idx >= 0 else None

    def replace_screen(self, screen: Screen) -> "FlowSpec":
        screens = tuple(screen if s.id == screen.id else s for s in self.screens)
        return dataclasses.replace(self, screens=screens)

    def to_dict(self) -> dict:
        return {
            "version": SPEC_VERSION,
            "screens": [s.to_dict() for s in self.screens],
            "routing_model": {k: list(v) for k, v in self.routing_model.items()},
            "default_next_by_screen": dict(self.default_next_by_screen),
            "branches_by_screen": {k: [r.to_dict() for r in v] for k, v in self.branches_by_screen.items()},
        }

    @classmethod
    def from_dict(cls, raw: Any) -> "FlowSpec":
        """Tolerant parse of a stored spec (snake_case or the editor's camelCase keys)."""
        if not isinstance(raw, dict):
            return cls()
        raw_screens = raw.get("screens") if isinstance(raw.get("screens"), list) else []
        screens = tuple(
            Screen.from_dict(s, idx) for idx, s in enumerate(raw_screens) if isinstance(s, dict)
        )

        routing_raw = raw.get("routing_model", raw.get("routingModel"))
        routing_model: Dict[str, List[str]] = {}
        if isinstance(routing_raw, dict):
            for key, nexts in routing_raw.items():
                items = nexts if isinstance(nexts, list) else []
                routing_model[str(key)] = [n.strip() for n in items if isinstance(n, str) and n.strip()]

        default_raw = raw.get("default_next_by_screen", raw.get("defaultNextByScreen"))
        default_next: Dict[str, str | None] = {}
        if isinstance(default_raw, dict):
            for key, value in default_raw.items():
                default_next[str(key)] = _clean_str(value) or None

        branches_raw = raw.get("branches_by_screen", raw.get("branchesByScreen"))
        branches: Dict[str, List[BranchRule]] = {}
        if isinstance(branches_raw, dict):
            for key, rules in branches_raw.items():
                if not isinstance(rules, list):
                    continue
                parsed = [r for r in (BranchRule.from_dict(item) for item in rules) if r is not None]
                if parsed:
                    branches[str(key)] = parsed

        return cls(
            screens=screens,
            routing_model=routing_model,
            default_next_by_screen=default_next,
            branches_by_screen=branches,
        )


def default_screen(title: str | None = None, screen_id: str = DEFAULT_SCREEN_ID) -> Screen:
    return Screen(
        id=screen_id,
        title=(title or "").strip() or DEFAULT_FLOW_TITLE,
        terminal=True,
        components=[{"type": "Form", "name": "form", "children": [{"type": "TextBody", "text": "Nova tela"}]}],
        action=ScreenAction(type="complete", label=FINISH_LABEL),
    )


def default_flow_spec(title: str | None = None) -> FlowSpec:
    screen = default_screen(title)
    return FlowSpec(
        screens=(screen,),
        routing_model={screen.id: []},
        default_next_by_screen={screen.id: None},
        branches_by_screen={},
    )
