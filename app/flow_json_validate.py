"""Structural checks of a flow JSON document before it is published."""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Tuple


Issue = Dict[str, Any]


ALLOWED_COMPONENT_TYPES = {
    "TextHeading",
    "TextSubheading",
    "TextBody",
    "TextCaption",
    "RichText",
    "TextInput",
    "TextArea",
    "CheckboxGroup",
    "RadioButtonsGroup",
    "Dropdown",
    "DatePicker",
    "CalendarPicker",
    "OptIn",
    "Form",
    "Footer",
    "EmbeddedLink",
    "Image",
    "If",
    "Switch",
}
INPUT_COMPONENT_TYPES = {
    "TextInput",
    "TextArea",
    "CheckboxGroup",
    "RadioButtonsGroup",
    "Dropdown",
    "DatePicker",
    "CalendarPicker",
    "OptIn",
}
TEXT_COMPONENT_TYPES = {"TextHeading", "TextSubheading", "TextBody", "TextCaption", "RichText"}
DATA_SOURCE_COMPONENT_TYPES = {"Dropdown", "CheckboxGroup", "RadioButtonsGroup"}
REPLACED_COMPONENT_TYPES = {"BasicText": "TextBody", "TextEntry": "TextInput"}
ALLOWED_ACTION_TYPES = {"navigate", "data_exchange", "complete"}
MAX_CHILDREN_RECOMMENDED = 50

_NAME_RE = re.compile(r"^[a-z0-9_]+$")
_SCREEN_ID_RE = re.compile(r"^[A-Za-z_]+$")


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


def _is_blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def _validate_data_source(value: Any, path: str, errors: list[Issue]) -> None:
    if isinstance(value, str):
        return
    if not isinstance(value, list):
        errors.append(_issue("FLOW_DATA_SOURCE_INVALID", "data-source must be a list or a data binding", path))
        return
    for idx, item in enumerate(value):
        ipath = f"{path}[{idx}]"
        if not isinstance(item, dict):
            errors.append(_issue("FLOW_DATA_SOURCE_OPTION_INVALID", "option must be an object with id and title", ipath))
            continue
        if _is_blank(item.get("id")):
            errors.append(_issue("FLOW_DATA_SOURCE_OPTION_INVALID", "option id is required", f"{ipath}.id"))
        if _is_blank(item.get("title")):
            errors.append(_issue("FLOW_DATA_SOURCE_OPTION_INVALID", "option title is required", f"{ipath}.title"))


def _validate_click_action(action: Any, path: str, errors: list[Issue]) -> None:
    if not isinstance(action, dict) or _is_blank(action.get("name")):
        errors.append(_issue("FLOW_FOOTER_ACTION_MISSING", "on-click-action.name is required", f"{path}.name"))
        return
    if action.get("name") == "navigate" and "payload" in action:
        errors.append(_issue("FLOW_NAVIGATE_PAYLOAD", "navigate must not carry a payload", f"{path}.payload"))


def _validate_component(
    component: Any,
    path: str,
    errors: list[Issue],
    warnings: list[Issue],
    names: set[str],
    footers: list[str],
) -> None:
    if not isinstance(component, dict):
        errors.append(_issue("FLOW_COMPONENT_INVALID", "component must be an object", path))
        return
    kind = component.get("type") if isinstance(component.get("type"), str) else ""
    if not kind:
        errors.append(_issue("FLOW_COMPONENT_TYPE_MISSING", "component type is required", f"{path}.type"))
        return
    if kind in REPLACED_COMPONENT_TYPES:
        errors.append(
            _issue(
                "FLOW_COMPONENT_TYPE_UNSUPPORTED",
                f"{kind} is not supported, use {REPLACED_COMPONENT_TYPES[kind]}",
                f"{path}.type",
                {"type": kind, "replacement": REPLACED_COMPONENT_TYPES[kind]},
            )
        )
        return
    if kind not in ALLOWED_COMPONENT_TYPES:
        errors.append(
            _issue("FLOW_COMPONENT_TYPE_UNSUPPORTED", f"Unsupported component type: {kind}", f"{path}.type", {"type": kind})
        )
        return

    if kind in TEXT_COMPONENT_TYPES:
        text = component.get("text")
        if not (isinstance(text, str) or (isinstance(text, list) and all(isinstance(t, str) for t in text))):
            errors.append(_issue("FLOW_TEXT_REQUIRED", "text must be a string or a list of strings", f"{path}.text"))

    if kind == "Form":
        children = component.get("children")
        if not isinstance(children, list):
            errors.append(_issue("FLOW_FORM_CHILDREN_INVALID", "Form children must be a list", f"{path}.children"))
            return
        for idx, child in enumerate(children):
            _validate_component(child, f"{path}.children[{idx}]", errors, warnings, names, footers)
        return

    if kind == "Footer":
        if _is_blank(component.get("label")):
            errors.append(_issue("FLOW_FOOTER_LABEL_MISSING", "Footer label is required", f"{path}.label"))
        _validate_click_action(component.get("on-click-action"), f'{path}["on-click-action"]', errors)
        footers.append(path)
        if len(footers) > 1:
            errors.append(_issue("FLOW_FOOTER_DUPLICATE", "a screen may hold at most one Footer", path, {"first": footers[0]}))
        return

    if kind in INPUT_COMPONENT_TYPES:
        name = component.get("name")
        if _is_blank(name):
            errors.append(_issue("FLOW_INPUT_NAME_MISSING", "input name is required", f"{path}.name"))
        else:
            if name in names:
                errors.append(_issue("FLOW_INPUT_NAME_DUPLICATE", f"Duplicate input name: {name}", f"{path}.name"))
            names.add(name)
            if not _NAME_RE.match(name):
                warnings.append(_issue("FLOW_INPUT_NAME_STYLE", "input names should be snake_case (a-z, 0-9, _)", f"{path}.name"))
        if kind == "OptIn":
            if _is_blank(component.get("label")) and _is_blank(component.get("text")):
                errors.append(_issue("FLOW_INPUT_LABEL_MISSING", "OptIn label is required", f"{path}.label"))
        elif _is_blank(component.get("label")):
            errors.append(_issue("FLOW_INPUT_LABEL_MISSING", "input label is required", f"{path}.label"))

    if kind in DATA_SOURCE_COMPONENT_TYPES:
        source = component.get("data-source")
        spath = f'{path}["data-source"]'
        if source is None:
            if component.get("options") is not None:
                errors.append(_issue("FLOW_DATA_SOURCE_OPTIONS_KEY", 'use "data-source", not "options"', spath))
            errors.append(_issue("FLOW_DATA_SOURCE_MISSING", "data-source is required", spath))
        else:
            _validate_data_source(source, spath, errors)


def _validate_action(action: Any, path: str, screen_ids: set[str], errors: list[Issue]) -> None:
    if action is None:
        return
    if not isinstance(action, dict) or action.get("type") not in ALLOWED_ACTION_TYPES:
        errors.append(_issue("FLOW_ACTION_INVALID", "action.type must be navigate, data_exchange or complete", f"{path}.type"))
        return
    if action["type"] == "navigate":
        if "payload" in action:
            errors.append(_issue("FLOW_NAVIGATE_PAYLOAD", "navigate must not carry a payload", f"{path}.payload"))
        target = action.get("screen")
        if target is not None and target not in screen_ids:
            errors.append(_issue("FLOW_ACTION_SCREEN_UNKNOWN", f"Unknown navigate target: {target}", f"{path}.screen"))


def _validate_routing(routing: Any, screen_ids: set[str], errors: list[Issue]) -> None:
    if routing is None:
        return
    if not isinstance(routing, dict):
        errors.append(_issue("FLOW_ROUTING_INVALID", "routing_model must be an object", "routing_model"))
        return
    for source, targets in routing.items():
        rpath = f"routing_model.{source}"
        if source not in screen_ids:
            errors.append(_issue("FLOW_ROUTING_UNKNOWN_SCREEN", f"Unknown screen in routing_model: {source}", rpath))
        if not isinstance(targets, list):
            errors.append(_issue("FLOW_ROUTING_INVALID", "routing_model entries must be lists", rpath))
            continue
        for idx, target in enumerate(targets):
            if target is not None and target not in screen_ids:
                errors.append(
                    _issue("FLOW_ROUTING_UNKNOWN_SCREEN", f"Unknown screen in routing_model: {target}", f"{rpath}[{idx}]")
                )


def validate_flow_json(doc: Any) -> Tuple[List[Issue], List[Issue]]:
    errors: list[Issue] = []
    warnings: list[Issue] = []

    flow = doc
    if isinstance(flow, str):
        if not flow.strip():
            errors.append(_issue("FLOW_JSON_EMPTY", "flow JSON is empty", "flow_json"))
            return errors, warnings
        try:
            flow = json.loads(flow)
        except json.JSONDecodeError as exc:
            errors.append(_issue("FLOW_JSON_INVALID", "flow JSON could not be parsed", "flow_json", {"error": str(exc)}))
            return errors, warnings
    if not isinstance(flow, dict):
        errors.append(_issue("FLOW_JSON_INVALID", "flow JSON must be an object", "flow_json"))
        return errors, warnings

    if _is_blank(flow.get("version")):
        errors.append(_issue("FLOW_VERSION_MISSING", "version is required", "version"))

    screens = flow.get("screens")
    if not isinstance(screens, list) or not screens:
        errors.append(_issue("FLOW_SCREENS_MISSING", "screens must hold at least one screen", "screens"))
        return errors, warnings

    screen_ids = {s.get("id") for s in screens if isinstance(s, dict) and isinstance(s.get("id"), str)}
    for sidx, screen in enumerate(screens):
        spath = f"screens[{sidx}]"
        if not isinstance(screen, dict):
            errors.append(_issue("FLOW_SCREEN_INVALID", "screen must be an object", spath))
            continue
        screen_id = screen.get("id")
        if _is_blank(screen_id):
            errors.append(_issue("FLOW_SCREEN_ID_MISSING", "screen id is required", f"{spath}.id"))
        elif not _SCREEN_ID_RE.match(screen_id):
            warnings.append(_issue("FLOW_SCREEN_ID_STYLE", "screen ids should hold only letters and underscore", f"{spath}.id"))

        _validate_action(screen.get("action"), f"{spath}.action", screen_ids, errors)

        layout = screen.get("layout")
        if not isinstance(layout, dict):
            errors.append(_issue("FLOW_LAYOUT_MISSING", "layout is required", f"{spath}.layout"))
            continue
        if layout.get("type") != "SingleColumnLayout":
            errors.append(_issue("FLOW_LAYOUT_TYPE_INVALID", "layout.type must be SingleColumnLayout", f"{spath}.layout.type"))
        children = layout.get("children")
        if not isinstance(children, list):
            errors.append(_issue("FLOW_LAYOUT_CHILDREN_INVALID", "layout.children must be a list", f"{spath}.layout.children"))
            continue
        if len(children) > MAX_CHILDREN_RECOMMENDED:
            warnings.append(
                _issue(
                    "FLOW_CHILDREN_LIMIT",
                    f"at most {MAX_CHILDREN_RECOMMENDED} components per screen are recommended",
                    f"{spath}.layout.children",
                    {"count": len(children)},
                )
            )
        names: set[str] = set()
        footers: list[str] = []
        for cidx, child in enumerate(children):
            _validate_component(child, f"{spath}.layout.children[{cidx}]", errors, warnings, names, footers)

    _validate_routing(flow.get("routing_model"), screen_ids, errors)
    return errors, warnings
