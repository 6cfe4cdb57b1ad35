"""Screen component model: block kinds, data bindings and choice options.

Components stay plain dicts inside a screen (they are passed through to the
flow document untouched). This module gives the engine a typed view of the
few keys it reads: ``type``, ``name``, ``label``/``text``, ``data-source``
or ``options``, and nested ``children``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterator, List, Tuple, Union


TEXT_KINDS = frozenset({"TextHeading", "TextSubheading", "TextBody", "TextCaption", "RichText"})
INPUT_KINDS = frozenset(
    {
        "TextInput",
        "TextArea",
        "Dropdown",
        "RadioButtonsGroup",
        "CheckboxGroup",
        "DatePicker",
        "CalendarPicker",
        "OptIn",
    }
)
CHOICE_KINDS = frozenset({"Dropdown", "RadioButtonsGroup", "CheckboxGroup"})
FORM_KIND = "Form"
FOOTER_KIND = "Footer"

_BINDING_RE = re.compile(r"^\$\{data\.([a-zA-Z0-9_]+)\}$")


@dataclass(frozen=True)
class Literal:
    text: str


@dataclass(frozen=True)
class Bound:
    key: str
    example: Any = None


DataBinding = Union[Literal, Bound]


@dataclass(frozen=True)
class ChoiceOption:
    value: str
    label: str


@dataclass(frozen=True)
class Block:
    kind: str
    name: str
    label: str
    options: Tuple[ChoiceOption, ...] = ()

    @property
    def is_input(self) -> bool:
        return self.kind in INPUT_KINDS

    @property
    def is_choice(self) -> bool:
        return self.kind in CHOICE_KINDS


def binding_key(raw: Any) -> str | None:
    if not isinstance(raw, str):
        return None
    match = _BINDING_RE.match(raw)
    return match.group(1) if match else None


def parse_binding(raw: Any, data: dict | None) -> DataBinding:
    text = raw if isinstance(raw, str) else ""
    key = binding_key(text)
    if key is None:
        return Literal(text)
    entry = data.get(key) if isinstance(data, dict) else None
    example = entry.get("__example__") if isinstance(entry, dict) else None
    return Bound(key, example)


def resolve_text(raw: Any, data: dict | None) -> str:
    """Preview text of a literal or ``${data.key}`` value."""
    binding = parse_binding(raw, data)
    if isinstance(binding, Bound):
        if binding.example is None:
            return raw
        return str(binding.example)
    return binding.text


def resolve_list(raw: Any, data: dict | None) -> list | None:
    if isinstance(raw, list):
        return raw
    binding = parse_binding(raw, data)
    if isinstance(binding, Bound) and isinstance(binding.example, list):
        return binding.example
    return None


def with_bound_example(data: dict | None, key: str, value: Any) -> dict:
    """Return a copy of ``data`` with ``data[key].__example__`` replaced."""
    out = dict(data or {})
    entry = dict(out.get(key) or {})
    entry["__example__"] = value
    out[key] = entry
    return out


def iter_components(components: Any) -> Iterator[dict]:
    if not isinstance(components, list):
        return
    for comp in components:
        if not isinstance(comp, dict):
            continue
        yield comp
        yield from iter_components(comp.get("children"))


def find_footer(components: Any) -> dict | None:
    for comp in iter_components(components):
        if comp.get("type") == FOOTER_KIND:
            return comp
    return None


def footer_click_action(action: dict) -> dict:
    out: dict = {"name": action.get("type")}
    if action.get("type") == "navigate":
        if action.get("screen"):
            out["next"] = {"type": "screen", "name": action["screen"]}
    elif action.get("payload"):
        out["payload"] = dict(action["payload"])
    return out


def _sync_footer(components: list, action: dict, default_label: str) -> Tuple[list, bool]:
    out = []
    done = False
    for comp in components:
        if done or not isinstance(comp, dict):
            out.append(comp)
            continue
        if comp.get("type") == FOOTER_KIND:
            footer = dict(comp)
            footer["label"] = action.get("label") or footer.get("label") or default_label
            footer["on-click-action"] = footer_click_action(action)
            out.append(footer)
            done = True
            continue
        children = comp.get("children")
        if isinstance(children, list):
            synced, done = _sync_footer(children, action, default_label)
            if done:
                comp = dict(comp)
                comp["children"] = synced
        out.append(comp)
    return out, done


def sync_footer(components: Any, action: dict | None, default_label: str) -> List[dict]:
    """Rewrite the first Footer's click action from a screen action dict.

    Components without a Footer are returned unchanged; no Footer is added.
    """
    comps = list(components) if isinstance(components, list) else []
    if not action or find_footer(comps) is None:
        return comps
    synced, _ = _sync_footer(comps, action, default_label)
    return synced


def choice_options(component: dict, data: dict | None = None) -> Tuple[ChoiceOption, ...]:
    raw = resolve_list(component.get("data-source"), data)
    if raw is None:
        raw = component.get("options") if isinstance(component.get("options"), list) else []
    options: List[ChoiceOption] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        ident = item.get("id") if item.get("id") is not None else item.get("title")
        title = item.get("title") if item.get("title") is not None else item.get("id")
        value = str(ident if ident is not None else "").strip()
        if not value:
            continue
        label = str(title if title is not None else "").strip()
        options.append(ChoiceOption(value, label or value))
    return tuple(options)


def block_from_component(component: dict, data: dict | None = None) -> Block | None:
    kind = component.get("type")
    if not isinstance(kind, str) or not kind:
        return None
    name = component.get("name") if isinstance(component.get("name"), str) else ""
    raw_label = component.get("label") if isinstance(component.get("label"), str) else component.get("text")
    label = resolve_text(raw_label, data) if isinstance(raw_label, str) else ""
    options = choice_options(component, data) if kind in CHOICE_KINDS else ()
    return Block(kind, name.strip(), label.strip() or name.strip(), options)


def iter_blocks(components: Any, data: dict | None = None) -> Iterator[Block]:
    for comp in iter_components(components):
        block = block_from_component(comp, data)
        if block is not None:
            yield block


def field_names(components: Any) -> List[str]:
    """Names of input blocks in document order, without duplicates."""
    out: List[str] = []
    for block in iter_blocks(components):
        if block.is_input and block.name and block.name not in out:
            out.append(block.name)
    return out


def choice_options_by_field(components: Any, data: dict | None = None) -> dict[str, Tuple[ChoiceOption, ...]]:
    out: dict[str, Tuple[ChoiceOption, ...]] = {}
    for block in iter_blocks(components, data):
        if block.is_choice and block.name and block.options and block.name not in out:
            out[block.name] = block.options
    return out


def _first_form_index(components: list) -> int:
    for idx, comp in enumerate(components):
        if isinstance(comp, dict) and comp.get("type") == FORM_KIND and isinstance(comp.get("children"), list):
            return idx
    return -1


def screen_blocks(components: Any) -> List[dict]:
    """Editable blocks of a screen: the first Form's children, Footer excluded."""
    comps = components if isinstance(components, list) else []
    idx = _first_form_index(comps)
    source = comps[idx]["children"] if idx >= 0 else comps
    return [b for b in source if isinstance(b, dict) and b.get("type") != FOOTER_KIND]


def with_screen_blocks(components: Any, blocks: List[dict]) -> List[dict]:
    comps = list(components) if isinstance(components, list) else []
    idx = _first_form_index(comps)
    if idx < 0:
        return [{"type": FORM_KIND, "name": "form", "children": list(blocks)}]
    form = dict(comps[idx])
    footers = [c for c in form["children"] if isinstance(c, dict) and c.get("type") == FOOTER_KIND]
    form["children"] = list(blocks) + footers
    comps[idx] = form
    return comps


def move_item(items: Any, from_idx: int, to_idx: int) -> tuple:
    seq = list(items)
    if not 0 <= from_idx < len(seq):
        return tuple(seq)
    to_idx = max(0, min(to_idx, len(seq) - 1))
    item = seq.pop(from_idx)
    seq.insert(to_idx, item)
    return tuple(seq)
