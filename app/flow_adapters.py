"""Upgrades of legacy flow documents into the screen graph.

Two stored shapes predate the screen graph: the flat form (``fields`` or
``steps``) and the booking configuration (``start``/``time``/``customer``/
``success`` sections). Both are rendered to a flow JSON document and parsed
through the regular screen path, then screen ids are made publishable
(letters and underscore only).
"""

from __future__ import annotations

import copy
import dataclasses
import re
from typing import Any, Dict, List, Set

from flow_model import BranchRule, FlowSpec, index_to_letters
from graph_normalize import normalize_flow_spec
from app.flow_codegen import DATA_API_VERSION, FLOW_JSON_VERSION, LAYOUT_TYPE, flow_spec_from_screens


FORM_FIELD_TYPES = (
    "short_text",
    "long_text",
    "email",
    "phone",
    "number",
    "date",
    "dropdown",
    "single_choice",
    "multi_choice",
    "optin",
)
CHOICE_FIELD_TYPES = {"dropdown", "single_choice", "multi_choice"}
DEFAULT_FORM_TITLE = "Formulário"
DEFAULT_FORM_INTRO = "Preencha os dados abaixo:"
DEFAULT_FORM_SCREEN_ID = "FORM"
DEFAULT_SUBMIT_LABEL = "Enviar"
DEFAULT_NEXT_LABEL = "Continuar"
MAX_ID_CANDIDATES = 2000

DEFAULT_BOOKING_CONFIG: Dict[str, Any] = {
    "version": 1,
    "start": {
        "title": "Agendar Atendimento",
        "subtitle": "Escolha o tipo de atendimento e a data desejada",
        "service_label": "Tipo de Atendimento",
        "date_label": "Data",
        "cta_label": "Ver Horários",
    },
    "time": {
        "title": "Escolha o Horário",
        "subtitle": "Horários disponíveis",
        "time_label": "Horário",
        "cta_label": "Continuar",
    },
    "customer": {
        "title": "Seus Dados",
        "subtitle": "Preencha seus dados",
        "name_label": "Seu Nome",
        "phone_label": "Telefone (opcional)",
        "notes_label": "Observações (opcional)",
        "cta_label": "Confirmar Agendamento",
    },
    "success": {
        "title": "Confirmado!",
        "heading": "Agendamento Confirmado",
        "message": "Agendamento confirmado!",
        "close_label": "Fechar",
    },
    "services": [
        {"id": "consulta", "title": "Consulta"},
        {"id": "visita", "title": "Visita"},
        {"id": "suporte", "title": "Suporte"},
    ],
    "date_component": "calendar",
    "routing": {
        "BOOKING_START": ["SELECT_TIME"],
        "SELECT_TIME": ["CUSTOMER_INFO"],
        "CUSTOMER_INFO": ["SUCCESS"],
        "SUCCESS": [],
    },
}

_LEGACY_NUMBERED_ID_RE = re.compile(r"^SCREEN_(\d+)$")
_TEXT_KINDS = {"TextBody", "BasicText", "RichText", "TextHeading", "TextSubheading", "TextCaption"}


def _text(value: Any, fallback: str = "") -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return fallback


def _pick(raw: Any, *keys: str) -> Any:
    if not isinstance(raw, dict):
        return None
    for key in keys:
        if key in raw:
            return raw[key]
    return None


def _snake_camel(name: str) -> tuple[str, str]:
    head, *rest = name.split("_")
    return name, head + "".join(part.title() for part in rest)


def normalize_field_name(text: Any) -> str:
    raw = text.strip().lower() if isinstance(text, str) else ""
    raw = re.sub(r"\s+", "_", raw)
    raw = re.sub(r"[^a-z0-9_]", "_", raw)
    return re.sub(r"_+", "_", raw).strip("_")


def _form_screen_id(text: Any) -> str:
    raw = text.strip().upper() if isinstance(text, str) else ""
    cleaned = re.sub(r"_+", "_", re.sub(r"[^A-Z0-9_]", "_", raw)).strip("_")
    return cleaned or DEFAULT_FORM_SCREEN_ID


def meta_safe_screen_id(legacy_id: Any, index: int = 0, used: Set[str] | None = None) -> str:
    """Publishable screen id for a legacy one.

    ``SCREEN_1`` style ids become ``SCREEN_A``; anything else keeps only
    letters and underscore. With ``used``, a letter suffix keeps the id
    unique and the result is added to ``used``.
    """
    fallback = f"SCREEN_{index_to_letters(index)}"
    raw = legacy_id.strip().upper() if isinstance(legacy_id, str) and legacy_id.strip() else fallback
    match = _LEGACY_NUMBERED_ID_RE.match(raw)
    if match and int(match.group(1)) > 0:
        base = f"SCREEN_{index_to_letters(int(match.group(1)) - 1)}"
    else:
        cleaned = re.sub(r"_+", "_", re.sub(r"[^A-Z_]", "_", raw)).strip("_")
        base = cleaned if cleaned and cleaned[0].isalpha() else fallback
    if used is None:
        return base
    unique = base
    if unique in used:
        unique = f"{base}_{index_to_letters(0)}"
        for idx in range(MAX_ID_CANDIDATES):
            candidate = f"{base}_{index_to_letters(idx)}"
            if candidate not in used:
                unique = candidate
                break
    used.add(unique)
    return unique


def with_meta_safe_ids(spec: FlowSpec) -> FlowSpec:
    used: Set[str] = set()
    new_ids = [meta_safe_screen_id(screen.id, idx, used) for idx, screen in enumerate(spec.screens)]
    id_map: Dict[str, str] = {}
    for screen, new_id in zip(spec.screens, new_ids):
        id_map.setdefault(screen.id, new_id)
    if all(old == new for old, new in id_map.items()):
        return spec

    def remap(value: str | None) -> str | None:
        return id_map.get(value, value) if value else value

    screens = []
    for screen, new_id in zip(spec.screens, new_ids):
        action = screen.action
        if action is not None and action.screen:
            action = dataclasses.replace(action, screen=remap(action.screen))
        screens.append(dataclasses.replace(screen, id=new_id, action=action))
    default_next = {remap(k): remap(v) for k, v in spec.default_next_by_screen.items()}
    branches: Dict[str, List[BranchRule]] = {
        remap(k): [dataclasses.replace(r, next=remap(r.next)) for r in rules]
        for k, rules in spec.branches_by_screen.items()
    }
    return normalize_flow_spec(
        FlowSpec(screens=tuple(screens), default_next_by_screen=default_next, branches_by_screen=branches)
    )


def _normalize_field(raw: Any, idx: int) -> dict | None:
    if not isinstance(raw, dict):
        return None
    field_type = raw.get("type") if raw.get("type") in FORM_FIELD_TYPES else "short_text"
    label = _text(raw.get("label"), f"Pergunta {idx + 1}")
    name = normalize_field_name(raw["name"] if isinstance(raw.get("name"), str) else label) or f"campo_{idx + 1}"
    out: Dict[str, Any] = {
        "id": _text(raw.get("id"), f"q_{idx + 1}"),
        "name": name,
        "label": label,
        "type": field_type,
        "required": raw.get("required") is True,
    }
    placeholder = _text(raw.get("placeholder"))
    if placeholder:
        out["placeholder"] = placeholder
    if field_type == "optin":
        out["text"] = _text(raw.get("text"), label)
    if field_type in CHOICE_FIELD_TYPES:
        options = []
        for oidx, option in enumerate(raw.get("options") if isinstance(raw.get("options"), list) else []):
            if not isinstance(option, dict):
                continue
            title = _text(option.get("title"), f"Opção {oidx + 1}")
            options.append({"id": _text(option.get("id"), normalize_field_name(title)) or str(oidx + 1), "title": title})
        out["options"] = options or [{"id": "opcao_1", "title": "Opção 1"}]
    return out


def _normalize_fields(raw: Any) -> List[dict]:
    items = raw if isinstance(raw, list) else []
    return [f for f in (_normalize_field(item, idx) for idx, item in enumerate(items)) if f is not None]


def normalize_form_spec(raw: Any, fallback_title: str | None = None) -> dict:
    """Canonical flat form dict (snake_case keys; camelCase input accepted)."""
    base_title = _text(fallback_title, DEFAULT_FORM_TITLE)
    if not isinstance(raw, dict):
        raw = {}

    steps = []
    for idx, step in enumerate(raw.get("steps") if isinstance(raw.get("steps"), list) else []):
        if not isinstance(step, dict):
            continue
        item: Dict[str, Any] = {"id": _text(step.get("id"), f"STEP_{idx + 1}")}
        title = _text(step.get("title"))
        if title:
            item["title"] = title
        next_label = _text(_pick(step, *_snake_camel("next_label")))
        if next_label:
            item["next_label"] = next_label
        item["fields"] = _normalize_fields(step.get("fields"))
        steps.append(item)
    if not steps:
        steps = [{"id": "STEP_1", "fields": _normalize_fields(raw.get("fields"))}]
    first = steps[0]
    has_step_meta = len(steps) > 1 or bool(first.get("title")) or bool(first.get("next_label"))

    send_confirmation = _pick(raw, *_snake_camel("send_confirmation"))
    return {
        "version": 1,
        "screen_id": _form_screen_id(_pick(raw, *_snake_camel("screen_id"))),
        "title": _text(raw.get("title"), base_title),
        "intro": _text(raw.get("intro"), DEFAULT_FORM_INTRO),
        "submit_label": _text(_pick(raw, *_snake_camel("submit_label")), DEFAULT_SUBMIT_LABEL),
        "send_confirmation": send_confirmation if isinstance(send_confirmation, bool) else True,
        "confirmation_title": _text(_pick(raw, *_snake_camel("confirmation_title"))),
        "confirmation_footer": _text(_pick(raw, *_snake_camel("confirmation_footer"))),
        "steps": steps if has_step_meta else None,
        "fields": [f for step in steps for f in step["fields"]],
    }


def _flatten(components: Any) -> List[dict]:
    out: List[dict] = []
    for comp in components if isinstance(components, list) else []:
        if not isinstance(comp, dict):
            continue
        out.append(comp)
        out.extend(_flatten(comp.get("children")))
    return out


def _options_of(component: dict) -> List[dict]:
    raw = component.get("data-source")
    if not isinstance(raw, list):
        raw = component.get("options") if isinstance(component.get("options"), list) else []
    out = []
    for idx, option in enumerate(raw):
        option = option if isinstance(option, dict) else {}
        out.append(
            {
                "id": _text(option.get("id"), f"opcao_{idx + 1}"),
                "title": _text(option.get("title"), f"Opção {idx + 1}"),
            }
        )
    return out


_INPUT_TYPE_TO_FIELD = {"email": "email", "phone": "phone", "number": "number"}
_COMPONENT_TO_FIELD = {
    "TextArea": "long_text",
    "Dropdown": "dropdown",
    "RadioButtonsGroup": "single_choice",
    "CheckboxGroup": "multi_choice",
    "DatePicker": "date",
    "CalendarPicker": "date",
}


def _fields_from_components(components: Any) -> List[dict]:
    fields: List[dict] = []
    for comp in _flatten(components):
        kind = comp.get("type") if isinstance(comp.get("type"), str) else ""
        if not kind or kind in ("Footer", "Form") or kind in _TEXT_KINDS:
            continue
        position = len(fields) + 1
        name = normalize_field_name(_text(comp.get("name"), f"campo_{position}"))
        ident = _text(comp.get("name"), f"q_{position}")
        if kind == "OptIn":
            text = _text(comp.get("text")) or _text(comp.get("label"))
            fields.append(
                {"id": ident, "name": name, "label": text or "Opt-in", "type": "optin", "required": False, "text": text}
            )
            continue
        if kind in ("TextInput", "TextEntry"):
            field_type = _INPUT_TYPE_TO_FIELD.get(comp.get("input-type"), "short_text")
        elif kind in _COMPONENT_TO_FIELD:
            field_type = _COMPONENT_TO_FIELD[kind]
        else:
            continue
        field = {
            "id": ident,
            "name": name,
            "label": _text(comp.get("label"), "Pergunta"),
            "type": field_type,
            "required": bool(comp.get("required")),
        }
        if field_type in CHOICE_FIELD_TYPES:
            field["options"] = _options_of(comp)
        fields.append(field)
    return fields


def _layout_children(screen: Any) -> List[dict]:
    layout = screen.get("layout") if isinstance(screen, dict) else None
    children = layout.get("children") if isinstance(layout, dict) else None
    return children if isinstance(children, list) else []


def _first_of(components: Any, kinds: set[str]) -> dict | None:
    return next((c for c in _flatten(components) if c.get("type") in kinds), None)


def flow_json_to_form_spec(doc: Any, fallback_title: str | None = None) -> dict:
    """Recover a flat form from a flow JSON document that has no routing table."""
    base = normalize_form_spec({}, fallback_title)
    if not isinstance(doc, dict):
        return base
    screens = [s for s in doc.get("screens") if isinstance(s, dict)] if isinstance(doc.get("screens"), list) else []
    if not screens:
        return base
    first = screens[0]
    title = _text(first.get("title"), base["title"])

    steps = []
    for idx, screen in enumerate(screens):
        children = _layout_children(screen)
        step: Dict[str, Any] = {"id": f"STEP_{idx + 1}", "title": _text(screen.get("title")) or (title if idx == 0 else "")}
        footer = _first_of(children, {"Footer"})
        cta = _text(footer.get("label")) if footer else ""
        if idx < len(screens) - 1 and cta:
            step["next_label"] = cta
        step["fields"] = _fields_from_components(children)
        steps.append(step)

    intro_node = _first_of(_layout_children(first), {"TextBody", "BasicText", "RichText"})
    last_footer = _first_of(_layout_children(screens[-1]), {"Footer"})
    click = last_footer.get("on-click-action") if last_footer else None
    payload = click.get("payload") if isinstance(click, dict) and isinstance(click.get("payload"), dict) else {}
    send_confirmation = payload.get("send_confirmation")

    return normalize_form_spec(
        {
            "screen_id": _text(first.get("id"), base["screen_id"]),
            "title": title,
            "intro": _text(intro_node.get("text")) if intro_node else base["intro"],
            "submit_label": _text(last_footer.get("label"), base["submit_label"]) if last_footer else base["submit_label"],
            "send_confirmation": send_confirmation not in (False, "false"),
            "confirmation_title": _text(payload.get("confirmation_title")),
            "confirmation_footer": _text(payload.get("confirmation_footer")),
            "steps": steps if len(steps) > 1 else None,
            "fields": steps[0]["fields"],
        },
        fallback_title,
    )


def _render_field(field: dict) -> dict:
    field_type = field.get("type")
    if field_type == "optin":
        return {
            "type": "OptIn",
            "name": field["name"],
            "label": _text(field.get("text")) or _text(field.get("label")) or "Quero receber mensagens",
        }
    out: Dict[str, Any] = {"name": field["name"], "label": field["label"], "required": bool(field.get("required"))}
    if field_type in CHOICE_FIELD_TYPES:
        kind = {"dropdown": "Dropdown", "single_choice": "RadioButtonsGroup", "multi_choice": "CheckboxGroup"}[field_type]
        return {"type": kind, **out, "data-source": list(field.get("options") or [])}
    if field_type == "date":
        return {"type": "DatePicker", **out}
    if field_type == "long_text":
        return {"type": "TextArea", **out}
    if field_type in ("number", "email", "phone"):
        return {"type": "TextInput", **out, "input-type": field_type}
    return {"type": "TextInput", **out}


def form_spec_to_flow_json(form: Any) -> dict:
    form = normalize_form_spec(form)
    steps = form["steps"] or [{"id": "STEP_1", "fields": form["fields"]}]
    base_id = form["screen_id"]

    def screen_id(idx: int) -> str:
        return base_id if idx == 0 else f"{base_id}_{idx + 1}"

    screens = []
    for idx, step in enumerate(steps):
        children: List[dict] = []
        if idx == 0 and form["intro"]:
            children.append({"type": "TextBody", "text": form["intro"]})
        children.extend(_render_field(f) for f in step["fields"])
        is_last = idx == len(steps) - 1
        if is_last:
            payload: Dict[str, Any] = {f["name"]: f"${{form.{f['name']}}}" for f in step["fields"]}
            if form["send_confirmation"] is False:
                payload["send_confirmation"] = "false"
            if form["confirmation_title"]:
                payload["confirmation_title"] = form["confirmation_title"]
            if form["confirmation_footer"]:
                payload["confirmation_footer"] = form["confirmation_footer"]
            click: Dict[str, Any] = {"name": "complete", "payload": payload}
            label = form["submit_label"]
        else:
            click = {"name": "navigate", "next": {"type": "screen", "name": screen_id(idx + 1)}}
            label = step.get("next_label") or DEFAULT_NEXT_LABEL
        children.append({"type": "Footer", "label": label, "on-click-action": click})
        screens.append(
            {
                "id": screen_id(idx),
                "title": _text(step.get("title")) or form["title"],
                "terminal": is_last,
                "layout": {"type": LAYOUT_TYPE, "children": children},
            }
        )
    return {"version": FLOW_JSON_VERSION, "screens": screens}


def form_spec_to_flow_spec(form: Any, fallback_title: str | None = None) -> FlowSpec:
    doc = form_spec_to_flow_json(normalize_form_spec(form, fallback_title))
    return with_meta_safe_ids(flow_spec_from_screens(doc))


def _booking_services(raw: Any) -> List[dict]:
    services = []
    for item in raw if isinstance(raw, list) else []:
        if not isinstance(item, dict):
            continue
        ident, title = _text(item.get("id")), _text(item.get("title"))
        if ident and title:
            services.append({"id": ident, "title": title})
    return services or copy.deepcopy(DEFAULT_BOOKING_CONFIG["services"])


def get_default_booking_config() -> dict:
    return copy.deepcopy(DEFAULT_BOOKING_CONFIG)


def normalize_booking_config(raw: Any) -> dict:
    """Canonical booking configuration (snake_case keys; camelCase input accepted)."""
    raw = raw if isinstance(raw, dict) else {}
    out: Dict[str, Any] = {"version": 1}
    for section in ("start", "time", "customer", "success"):
        source = raw.get(section) if isinstance(raw.get(section), dict) else {}
        out[section] = {
            key: _text(_pick(source, *_snake_camel(key)), default)
            for key, default in DEFAULT_BOOKING_CONFIG[section].items()
        }
    out["services"] = _booking_services(raw.get("services"))
    out["date_component"] = "dropdown" if _pick(raw, *_snake_camel("date_component")) == "dropdown" else "calendar"
    routing = _pick(raw, "routing", "routingModel")
    out["routing"] = copy.deepcopy(routing if isinstance(routing, dict) else DEFAULT_BOOKING_CONFIG["routing"])
    return out


def _list_schema(example: Any) -> dict:
    return {
        "type": "array",
        "items": {"type": "object", "properties": {"id": {"type": "string"}, "title": {"type": "string"}}},
        "__example__": example,
    }


def _string(example: str) -> dict:
    return {"type": "string", "__example__": example}


def booking_config_to_flow_json(config: Any) -> dict:
    config = normalize_booking_config(config)
    start, time, customer, success = (config[k] for k in ("start", "time", "customer", "success"))
    if config["date_component"] == "dropdown":
        date_component = {
            "type": "Dropdown",
            "name": "selected_date",
            "label": start["date_label"],
            "required": True,
            "data-source": "${data.dates}",
        }
    else:
        date_component = {
            "type": "CalendarPicker",
            "name": "selected_date",
            "label": start["date_label"],
            "required": True,
            "mode": "single",
            "min-date": "${data.min_date}",
            "max-date": "${data.max_date}",
            "include-days": "${data.include_days}",
            "unavailable-dates": "${data.unavailable_dates}",
        }

    def form(name: str, children: List[dict]) -> dict:
        return {"type": LAYOUT_TYPE, "children": [{"type": "Form", "name": name, "children": children}]}

    def footer(label: str, name: str, payload: dict) -> dict:
        return {"type": "Footer", "label": label, "on-click-action": {"name": name, "payload": payload}}

    screens = [
        {
            "id": "BOOKING_START",
            "title": "${data.title}",
            "data": {
                "title": _string(start["title"]),
                "subtitle": _string(start["subtitle"]),
                "services": _list_schema(config["services"]),
                "dates": _list_schema([{"id": "2026-01-15", "title": "15/01/2026"}]),
                "min_date": _string("2026-01-15"),
                "max_date": _string("2026-01-22"),
                "include_days": {"type": "array", "items": {"type": "string"}, "__example__": ["Mon", "Tue"]},
                "unavailable_dates": {"type": "array", "items": {"type": "string"}, "__example__": []},
                "error_message": _string("Nenhum horário disponível para esta data. Escolha outra data."),
                "has_error": {"type": "boolean", "__example__": False},
            },
            "layout": form(
                "booking_form",
                [
                    {"type": "TextSubheading", "text": "${data.subtitle}"},
                    {
                        "type": "Dropdown",
                        "name": "selected_service",
                        "label": start["service_label"],
                        "required": True,
                        "data-source": "${data.services}",
                    },
                    date_component,
                    {"type": "TextCaption", "text": "${data.error_message}", "visible": "${data.has_error}"},
                    footer(
                        start["cta_label"],
                        "data_exchange",
                        {"selected_service": "${form.selected_service}", "selected_date": "${form.selected_date}"},
                    ),
                ],
            ),
        },
        {
            "id": "SELECT_TIME",
            "title": "${data.title}",
            "refresh_on_back": True,
            "data": {
                "title": _string(time["title"]),
                "subtitle": _string(time["subtitle"]),
                "selected_service": _string("consulta"),
                "selected_date": _string("2026-01-15"),
                "slots": _list_schema([{"id": "2026-01-15T09:00:00Z", "title": "09:00"}]),
            },
            "layout": form(
                "time_form",
                [
                    {"type": "TextSubheading", "text": "${data.subtitle}"},
                    {
                        "type": "Dropdown",
                        "name": "selected_slot",
                        "label": time["time_label"],
                        "required": True,
                        "data-source": "${data.slots}",
                    },
                    footer(
                        time["cta_label"],
                        "data_exchange",
                        {
                            "selected_service": "${data.selected_service}",
                            "selected_date": "${data.selected_date}",
                            "selected_slot": "${form.selected_slot}",
                        },
                    ),
                ],
            ),
        },
        {
            "id": "CUSTOMER_INFO",
            "title": "${data.title}",
            "data": {
                "title": _string(customer["title"]),
                "subtitle": _string(customer["subtitle"]),
                "selected_service": _string("consulta"),
                "selected_date": _string("2026-01-15"),
                "selected_slot": _string("2026-01-15T09:00:00Z"),
            },
            "layout": form(
                "customer_form",
                [
                    {"type": "TextSubheading", "text": "${data.subtitle}"},
                    {
                        "type": "TextInput",
                        "name": "customer_name",
                        "label": customer["name_label"],
                        "required": True,
                        "input-type": "text",
                    },
                    {
                        "type": "TextInput",
                        "name": "customer_phone",
                        "label": customer["phone_label"],
                        "required": False,
                        "input-type": "phone",
                    },
                    {"type": "TextArea", "name": "notes", "label": customer["notes_label"], "required": False},
                    footer(
                        customer["cta_label"],
                        "data_exchange",
                        {
                            "selected_service": "${data.selected_service}",
                            "selected_date": "${data.selected_date}",
                            "selected_slot": "${data.selected_slot}",
                            "customer_name": "${form.customer_name}",
                            "customer_phone": "${form.customer_phone}",
                            "notes": "${form.notes}",
                        },
                    ),
                ],
            ),
        },
        {
            "id": "SUCCESS",
            "title": success["title"],
            "terminal": True,
            "success": True,
            "data": {"message": _string(success["message"]), "event_id": _string("abc123")},
            "layout": {
                "type": LAYOUT_TYPE,
                "children": [
                    {"type": "TextBody", "text": "${data.message}"},
                    footer(
                        success["close_label"],
                        "complete",
                        {"event_id": "${data.event_id}", "status": "confirmed", "confirmation_title": "${data.message}"},
                    ),
                ],
            },
        },
    ]
    return {
        "version": FLOW_JSON_VERSION,
        "data_api_version": DATA_API_VERSION,
        "routing_model": copy.deepcopy(config["routing"]),
        "screens": screens,
    }


def booking_config_to_flow_spec(config: Any) -> FlowSpec:
    return with_meta_safe_ids(flow_spec_from_screens(booking_config_to_flow_json(config)))
