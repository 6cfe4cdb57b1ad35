"""Flow screen graph normalizer.

Every edit goes through ``normalize_flow_spec``. It cleans values the way the
document parser does, repairs dangling references, finalizes branch
destinations, routes ``equals`` rules by option label and reconciles terminal
flags, actions and route maps. The result is a fixed point: normalizing it
again returns an equal spec.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from typing import Dict, List, Set

from flow_model import (
    CONTINUE_LABEL,
    FINISH_LABEL,
    BranchRule,
    FlowSpec,
    Screen,
    ScreenAction,
    default_screen,
    index_to_letters,
)
from flowgraph.blocks import choice_options_by_field, field_names, resolve_text, sync_footer


logger = logging.getLogger("flowgraph.normalize")

_FORM_REF_RE = re.compile(r"^\$\{form\.([a-zA-Z0-9_]+)\}$")


def resolved_title(screen: Screen) -> str:
    return resolve_text(screen.title, screen.data).strip()


def title_index(screens) -> Dict[str, str]:
    """Lowercased resolved title -> screen id. First occurrence wins."""
    out: Dict[str, str] = {}
    for screen in screens:
        key = resolved_title(screen).lower()
        if key and key not in out:
            out[key] = screen.id
    return out


def is_final(screen: Screen) -> bool:
    return screen.terminal or (screen.action is not None and screen.action.type == "complete")


def field_payload(screen: Screen, existing: dict | None = None) -> dict:
    """``data_exchange`` payload: every field as ``${form.<name>}``, then surviving extra keys."""
    names = field_names(screen.components)
    payload = {name: f"${{form.{name}}}" for name in names}
    for key, value in (existing or {}).items():
        if key in payload:
            continue
        match = _FORM_REF_RE.match(value) if isinstance(value, str) else None
        if match and match.group(1) not in names:
            continue
        payload[key] = value
    return payload


def _resolve_default_next(spec: FlowSpec, screen: Screen, ids: Set[str]) -> str | None:
    if screen.id in spec.default_next_by_screen:
        candidate = spec.default_next_by_screen[screen.id]
    elif spec.routing_model.get(screen.id):
        candidate = spec.routing_model[screen.id][0]
    elif screen.action is not None and screen.action.type == "navigate":
        candidate = screen.action.screen
    else:
        candidate = None
    return candidate if candidate in ids else None


def _clean_id(value) -> str | None:
    return (value.strip() or None) if isinstance(value, str) else None


def _coerce_screen(screen: Screen, idx: int) -> Screen:
    # Same coercions the document parser applies, so a round trip is lossless.
    action = ScreenAction.from_dict(screen.action.to_dict()) if screen.action is not None else None
    components = [c for c in screen.components if isinstance(c, dict)] if isinstance(screen.components, (list, tuple)) else []
    return dataclasses.replace(
        screen,
        id=_clean_id(screen.id) or f"SCREEN_{index_to_letters(idx)}",
        components=components,
        data=screen.data if isinstance(screen.data, dict) else None,
        action=action,
    )


def _coerce_values(spec: FlowSpec) -> FlowSpec:
    default_next = {}
    for key, nxt in spec.default_next_by_screen.items():
        if _clean_id(key):
            default_next[_clean_id(key)] = _clean_id(nxt)
    routing_model = {}
    for key, nexts in spec.routing_model.items():
        if _clean_id(key):
            routing_model[_clean_id(key)] = [n for n in (_clean_id(x) for x in nexts or []) if n]
    branches: Dict[str, List[BranchRule]] = {}
    for key, rules in spec.branches_by_screen.items():
        if _clean_id(key):
            branches[_clean_id(key)] = [BranchRule.from_dict(rule.to_dict()) for rule in rules]
    return FlowSpec(
        screens=tuple(_coerce_screen(s, idx) for idx, s in enumerate(spec.screens)),
        routing_model=routing_model,
        default_next_by_screen=default_next,
        branches_by_screen=branches,
    )


def _repair_references(spec: FlowSpec) -> FlowSpec:
    spec = _coerce_values(spec)
    screens = tuple(spec.screens) or (default_screen(),)
    ids = {s.id for s in screens}
    default_next = {}
    for screen in screens:
        default_next[screen.id] = _resolve_default_next(spec, screen, ids)

    branches: Dict[str, List[BranchRule]] = {}
    for sid, rules in spec.branches_by_screen.items():
        if sid not in ids:
            logger.info("drop_branches missing_screen=%s", sid)
            continue
        kept = [r for r in rules if r.next is None or r.next in ids]
        if len(kept) != len(rules):
            logger.info("drop_branch_rules screen=%s dropped=%s", sid, len(rules) - len(kept))
        if kept:
            branches[sid] = kept

    return _with_routes(
        FlowSpec(screens=screens, default_next_by_screen=default_next, branches_by_screen=branches)
    )


def _with_routes(spec: FlowSpec) -> FlowSpec:
    default_next = {s.id: spec.default_next_by_screen.get(s.id) for s in spec.screens}
    routing_model = {sid: [nxt] if nxt else [] for sid, nxt in default_next.items()}
    return dataclasses.replace(spec, default_next_by_screen=default_next, routing_model=routing_model)


def auto_finalize_destinations(spec: FlowSpec) -> FlowSpec:
    """Make rule destinations that own no rules final.

    Screens that are already terminal or complete are left alone, and this
    pass never reopens a screen.
    """
    destinations: List[str] = []
    for rules in spec.branches_by_screen.values():
        for rule in rules:
            if rule.next and rule.next not in destinations:
                destinations.append(rule.next)
    if not destinations:
        return spec

    owners = {sid for sid, rules in spec.branches_by_screen.items() if rules}
    default_next = dict(spec.default_next_by_screen)
    screens = list(spec.screens)
    changed = 0
    for dest in destinations:
        if dest in owners:
            continue
        for idx, screen in enumerate(screens):
            if screen.id != dest or is_final(screen):
                continue
            screens[idx] = dataclasses.replace(
                screen,
                terminal=True,
                action=ScreenAction(type="complete", label=FINISH_LABEL),
            )
            default_next[dest] = None
            changed += 1
            logger.info("auto_finalize screen=%s", dest)
    if not changed:
        return spec
    return _with_routes(
        dataclasses.replace(spec, screens=tuple(screens), default_next_by_screen=default_next)
    )


def auto_route_branches(spec: FlowSpec) -> FlowSpec:
    """Point ``equals`` rules at the screen titled like the chosen option.

    Only rules with ``auto_next`` set are touched. A value with no matching
    option, or an option label with no matching screen title, keeps the
    rule's current destination.
    """
    if not spec.branches_by_screen:
        return spec
    titles = title_index(spec.screens)
    branches: Dict[str, List[BranchRule]] = {}
    changed = 0
    for sid, rules in spec.branches_by_screen.items():
        screen = spec.get_screen(sid)
        options_by_field = choice_options_by_field(screen.components, screen.data) if screen else {}
        updated: List[BranchRule] = []
        for rule in rules:
            target = None
            if rule.auto_next and rule.op == "equals" and rule.value is not None:
                wanted = str(rule.value).strip()
                for option in options_by_field.get(rule.field, ()):
                    if option.value == wanted or option.label.lower() == wanted.lower():
                        target = titles.get(option.label.strip().lower())
                        break
            if target and target != sid and target != rule.next:
                logger.info("auto_route screen=%s field=%s next=%s", sid, rule.field, target)
                rule = dataclasses.replace(rule, next=target)
                changed += 1
            updated.append(rule)
        branches[sid] = updated
    if not changed:
        return spec
    return dataclasses.replace(spec, branches_by_screen=branches)


def _route_action(screen: Screen, nxt: str | None) -> tuple[bool, ScreenAction | None]:
    action = screen.action
    if nxt:
        if action is None or action.type == "complete":
            return False, ScreenAction(type="navigate", screen=nxt, label=CONTINUE_LABEL)
        if action.type == "navigate":
            return False, dataclasses.replace(action, screen=nxt, payload=None)
        return False, action

    if screen.terminal or (action is not None and action.type == "complete"):
        label = action.label if action is not None and action.label else FINISH_LABEL
        payload = action.payload if action is not None and action.type == "complete" else None
        return True, ScreenAction(type="complete", payload=payload, label=label)

    if action is not None and action.type == "navigate":
        return False, dataclasses.replace(action, screen=None, payload=None)
    return False, action


def _reconcile_screen(screen: Screen, nxt: str | None) -> Screen:
    terminal, action = _route_action(screen, nxt)
    if action is not None and action.label is not None and not action.label:
        action = dataclasses.replace(action, label=None)
    if action is not None and action.type == "data_exchange":
        action = dataclasses.replace(action, payload=field_payload(screen, action.payload))
    components = screen.components
    if action is not None:
        components = sync_footer(components, action.to_dict(), CONTINUE_LABEL)
    return dataclasses.replace(screen, terminal=terminal, action=action, components=components)


def _reconcile(spec: FlowSpec) -> FlowSpec:
    screens = tuple(
        _reconcile_screen(screen, spec.default_next_by_screen.get(screen.id)) for screen in spec.screens
    )
    return _with_routes(dataclasses.replace(spec, screens=screens))


def normalize_flow_spec(spec: FlowSpec) -> FlowSpec:
    # Reconcile once up front so both passes see consistent terminal flags.
    current = _reconcile(_repair_references(spec))
    current = auto_finalize_destinations(current)
    routed = auto_route_branches(current)
    if routed is not current:
        current = auto_finalize_destinations(routed)
    return _reconcile(current)
