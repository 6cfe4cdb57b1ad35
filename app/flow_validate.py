"""Semantic checks of a flow screen graph, reported as operator-facing strings."""

from __future__ import annotations

from typing import List

from flow_model import BRANCH_OPS, VALUE_OPS, FlowSpec
from flowgraph.blocks import field_names
from graph_normalize import resolved_title


def validate_flow_spec(spec: FlowSpec) -> List[str]:
    issues: List[str] = []
    if not spec.screens:
        issues.append("Adicione pelo menos uma tela")
        return issues

    seen: set[str] = set()
    for screen in spec.screens:
        if not screen.id.strip():
            issues.append("Existe uma tela sem ID")
        if screen.id in seen:
            issues.append(f"ID de tela duplicado: {screen.id}")
        seen.add(screen.id)
        if not resolved_title(screen):
            issues.append(f"Tela {screen.id}: titulo vazio")

        action = screen.action
        has_route = bool(spec.default_next_by_screen.get(screen.id))
        has_rules = bool(spec.branches_by_screen.get(screen.id))
        if not screen.terminal and not has_route and not has_rules:
            if action is None or action.type != "data_exchange":
                issues.append(f"Tela {screen.id}: sem próxima tela e não é final")
        if screen.terminal and (action is None or action.type != "complete"):
            issues.append(f"Tela {screen.id}: tela final precisa da ação complete")
        if action is not None and action.type == "data_exchange" and not action.payload:
            issues.append(f"Tela {screen.id}: data_exchange sem payload")

    screen_ids = {s.id for s in spec.screens}
    for screen_id, rules in spec.branches_by_screen.items():
        if screen_id not in screen_ids:
            issues.append(f"Caminhos: tela inexistente nas regras: {screen_id}")
            continue
        owner = spec.get_screen(screen_id)
        fields = field_names(owner.components) if owner is not None else []
        for idx, rule in enumerate(rules):
            prefix = f"Caminhos: {screen_id} regra {idx + 1}"
            if not rule.field.strip():
                issues.append(f"{prefix}: campo vazio")
            elif rule.field not in fields:
                issues.append(f"{prefix}: campo não existe na tela ({rule.field})")
            if rule.op not in BRANCH_OPS:
                issues.append(f"{prefix}: operador inválido")
            if rule.op in VALUE_OPS and (rule.value is None or (isinstance(rule.value, str) and not rule.value.strip())):
                issues.append(f"{prefix}: valor obrigatório")
            if rule.next is not None and rule.next not in screen_ids:
                issues.append(f"{prefix}: destino inválido ({rule.next})")
            if rule.next is not None and rule.next == screen_id:
                issues.append(f"{prefix}: destino não pode ser a própria tela")
    return issues
