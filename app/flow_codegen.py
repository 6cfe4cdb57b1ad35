"""Flow spec <-> flow JSON document.

``flow_spec_to_json`` writes the document the flow publisher consumes plus an
``__editor`` block per screen (default route and branch rules), which is
what makes ``flow_spec_from_json(flow_spec_to_json(s)) == s`` hold for a
normalized spec. ``strip_editor_metadata`` removes that block before
publishing.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List

from flow_model import (
    ACTION_TYPES,
    BranchRule,
    FlowSpec,
    Screen,
    ScreenAction,
    default_flow_spec,
    index_to_letters,
)
from flowgraph.blocks import find_footer
from graph_normalize import normalize_flow_spec


logger = logging.getLogger("flowgraph.codegen")

FLOW_JSON_VERSION = "7.3"
DATA_API_VERSION = "3.0"
LAYOUT_TYPE = "SingleColumnLayout"
EDITOR_KEY = "__editor"


def _routing_entry(spec: FlowSpec, screen: Screen) -> List[str | None]:
    nexts: List[str | None] = []
    default = spec.default_next_by_screen.get(screen.id)
    if default:
        nexts.append(default)
    may_finish = screen.terminal
    for rule in spec.branches_by_screen.get(screen.id, []):
        if rule.next is None:
            may_finish = True
        elif rule.next not in nexts:
            nexts.append(rule.next)
    if may_finish:
        nexts.append(None)
    return nexts


def _action_json(action: ScreenAction) -> dict:
    out = action.to_dict()
    if action.type == "navigate":
        out.pop("payload", None)
    return out


def _screen_json(spec: FlowSpec, screen: Screen) -> dict:
    out: Dict[str, Any] = {
        "id": screen.id,
        "title": screen.title,
        "terminal": screen.terminal,
    }
    if screen.data is not None:
        out["data"] = dict(screen.data)
    out["layout"] = {"type": LAYOUT_TYPE, "children": list(screen.components)}
    if screen.action is not None:
        out["action"] = _action_json(screen.action)
    out[EDITOR_KEY] = {
        "default_next": spec.default_next_by_screen.get(screen.id),
        "branches": [rule.to_dict() for rule in spec.branches_by_screen.get(screen.id, [])],
    }
    return out


def flow_spec_to_json(spec: FlowSpec) -> dict:
    spec = normalize_flow_spec(spec)
    uses_data_exchange = any(s.action is not None and s.action.type == "data_exchange" for s in spec.screens)
    uses_branching = any(rules for rules in spec.branches_by_screen.values())
    doc: Dict[str, Any] = {"version": FLOW_JSON_VERSION}
    if uses_data_exchange or uses_branching:
        doc["data_api_version"] = DATA_API_VERSION
    doc["routing_model"] = {s.id: _routing_entry(spec, s) for s in spec.screens}
    doc["screens"] = [_screen_json(spec, s) for s in spec.screens]
    return doc


def strip_editor_metadata(doc: Any) -> Any:
    """Drop editor-only ``__`` keys, keeping ``__example__`` for data schemas."""
    if isinstance(doc, list):
        return [strip_editor_metadata(item) for item in doc]
    if not isinstance(doc, dict):
        return doc
    return {
        key: strip_editor_metadata(value)
        for key, value in doc.items()
        if not (isinstance(key, str) and key.startswith("__") and key != "__example__")
    }


def footer_action(components: Any) -> ScreenAction | None:
    """Screen action carried by the Footer's ``on-click-action``, if any."""
    footer = find_footer(components)
    if footer is None:
        return None
    click = footer.get("on-click-action")
    if not isinstance(click, dict) or click.get("name") not in ACTION_TYPES:
        return None
    payload = click.get("payload") if isinstance(click.get("payload"), dict) else None
    screen = None
    if click["name"] == "navigate":
        nxt = click.get("next")
        if isinstance(nxt, dict) and nxt.get("type") == "screen" and isinstance(nxt.get("name"), str):
            screen = nxt["name"]
        elif payload is not None and isinstance(payload.get("screen"), str):
            screen = payload["screen"]
    label = footer.get("label") if isinstance(footer.get("label"), str) else ""
    return ScreenAction.from_dict(
        {"type": click["name"], "screen": screen, "payload": payload, "label": label.strip()}
    )


def _screen_from_json(raw: dict, idx: int) -> Screen:
    # Footer actions are only read from documents this module did not write.
    own = isinstance(raw.get(EDITOR_KEY), dict)
    screen_id = raw.get("id").strip() if isinstance(raw.get("id"), str) else ""
    layout = raw.get("layout") if isinstance(raw.get("layout"), dict) else {}
    children = layout.get("children") if isinstance(layout.get("children"), list) else raw.get("components")
    components = [c for c in children if isinstance(c, dict)] if isinstance(children, list) else []
    action = ScreenAction.from_dict(raw.get("action"))
    if action is None and not own:
        action = footer_action(components)
    terminal = raw.get("terminal")
    if not isinstance(terminal, bool):
        terminal = action is not None and action.type == "complete"
    data = raw.get("data")
    return Screen(
        id=screen_id or f"SCREEN_{index_to_letters(idx)}",
        title=raw.get("title") if isinstance(raw.get("title"), str) else f"Tela {idx + 1}",
        terminal=terminal,
        components=components,
        data=dict(data) if isinstance(data, dict) else None,
        action=action,
    )


def flow_spec_from_screens(doc: dict) -> FlowSpec:
    """Parse a document shaped as screens + routing table (no shape detection)."""
    raw_screens = doc.get("screens") if isinstance(doc.get("screens"), list) else []
    routing_raw = doc.get("routing_model") if isinstance(doc.get("routing_model"), dict) else {}

    screens: List[Screen] = []
    routing_model: Dict[str, List[str]] = {}
    default_next: Dict[str, str | None] = {}
    branches: Dict[str, List[BranchRule]] = {}
    for idx, raw in enumerate(raw_screens):
        if not isinstance(raw, dict):
            continue
        screen = _screen_from_json(raw, idx)
        screens.append(screen)
        nexts = routing_raw.get(screen.id)
        routing_model[screen.id] = [n for n in nexts if isinstance(n, str) and n] if isinstance(nexts, list) else []

        editor = raw.get(EDITOR_KEY)
        if isinstance(editor, dict):
            nxt = editor.get("default_next")
            default_next[screen.id] = nxt.strip() if isinstance(nxt, str) and nxt.strip() else None
            rules = editor.get("branches") if isinstance(editor.get("branches"), list) else []
            parsed = [r for r in (BranchRule.from_dict(item) for item in rules) if r is not None]
            if parsed:
                branches[screen.id] = parsed
        elif screen.action is not None and screen.action.type == "navigate" and screen.action.screen:
            default_next[screen.id] = screen.action.screen

    return normalize_flow_spec(
        FlowSpec(
            screens=tuple(screens),
            routing_model=routing_model,
            default_next_by_screen=default_next,
            branches_by_screen=branches,
        )
    )


def detect_document_kind(doc: dict) -> str | None:
    if "routing_model" in doc or isinstance(doc.get("data_api_version"), str):
        return "canonical"
    if isinstance(doc.get("start"), dict) and isinstance(doc.get("success"), dict):
        return "booking"
    if "fields" in doc or "steps" in doc or isinstance(doc.get("screens"), list):
        return "form"
    return None


def flow_spec_from_json(doc: Any, fallback_title: str | None = None) -> FlowSpec:
    """Parse a canonical, legacy form or booking document into a normalized spec.

    Anything unrecognizable falls back to the single default screen.
    """
    from app import flow_adapters  # local import to avoid circular

    if isinstance(doc, str):
        try:
            doc = json.loads(doc)
        except json.JSONDecodeError as exc:
            logger.warning("flow_json_unparseable error=%s", exc)
            return normalize_flow_spec(default_flow_spec(fallback_title))
    if not isinstance(doc, dict):
        logger.warning("flow_json_unrecognized type=%s", type(doc).__name__)
        return normalize_flow_spec(default_flow_spec(fallback_title))

    kind = detect_document_kind(doc)
    if kind == "canonical":
        return flow_spec_from_screens(doc)
    if kind == "booking":
        logger.info("flow_json_upgrade kind=booking")
        return flow_adapters.booking_config_to_flow_spec(doc)
    if kind == "form":
        logger.info("flow_json_upgrade kind=form")
        form = doc if "screens" not in doc else flow_adapters.flow_json_to_form_spec(doc, fallback_title)
        return flow_adapters.form_spec_to_flow_spec(form, fallback_title)

    logger.warning("flow_json_unrecognized keys=%s", ",".join(sorted(str(k) for k in doc)[:10]))
    return normalize_flow_spec(default_flow_spec(fallback_title))
