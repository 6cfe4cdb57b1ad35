import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from flow_model import BranchRule, FlowSpec, Screen, ScreenAction, default_flow_spec
from graph_normalize import (
    auto_finalize_destinations,
    auto_route_branches,
    field_payload,
    normalize_flow_spec,
    title_index,
)
from screen_graph import add_screen, set_branch_rules, set_screen_blocks


def _screen(sid, title=None, **kwargs):
    return Screen(id=sid, title=title or sid, **kwargs)


def _form(*children):
    return [{"type": "Form", "name": "form", "children": list(children)}]


PLAN_RADIO = {
    "type": "RadioButtonsGroup",
    "name": "plano",
    "label": "Plano",
    "data-source": "${data.planos}",
}


def _messy_spec():
    return FlowSpec(
        screens=(
            _screen("SCREEN_A", components=_form(PLAN_RADIO), data={"planos": {"__example__": [{"id": "b", "title": "Básico"}]}}),
            _screen("SCREEN_B", "Básico", action=ScreenAction(type="navigate", screen="SCREEN_C", payload={"x": 1})),
            _screen("SCREEN_C", terminal=True),
        ),
        routing_model={"SCREEN_A": ["SCREEN_Z"], "GONE": ["SCREEN_A"]},
        default_next_by_screen={"GONE": "SCREEN_A"},
        branches_by_screen={
            "SCREEN_A": [
                BranchRule(field="plano", value="b"),
                BranchRule(field="plano", op="is_empty", next="SCREEN_Z"),
                BranchRule(field="sumiu", op="is_filled", next="SCREEN_C"),
            ],
            "GONE": [BranchRule(field="x", next="SCREEN_A")],
        },
    )


def _sample_specs():
    chain = default_flow_spec()
    for _ in range(3):
        chain, _ = add_screen(chain)
    menu = set_screen_blocks(chain, "SCREEN_A", [{"type": "Dropdown", "name": "op", "label": "Op", "data-source": [{"id": "1", "title": "Tela 3"}]}])
    menu = set_branch_rules(menu, "SCREEN_A", [{"field": "op", "value": "1"}, {"field": "op", "op": "is_empty", "next": "SCREEN_D"}])
    return [default_flow_spec(), FlowSpec(), chain, menu, _messy_spec()]


class TestNormalizeProperties(unittest.TestCase):
    def test_idempotent(self) -> None:
        for spec in _sample_specs():
            once = normalize_flow_spec(spec)
            self.assertEqual(normalize_flow_spec(once), once)

    def test_no_dangling_references(self) -> None:
        for spec in _sample_specs():
            out = normalize_flow_spec(spec)
            ids = set(out.screen_ids())
            self.assertEqual(set(out.routing_model), ids)
            self.assertEqual(set(out.default_next_by_screen), ids)
            self.assertTrue(set(out.branches_by_screen) <= ids)
            for nexts in out.routing_model.values():
                self.assertTrue(set(nexts) <= ids)
                self.assertLessEqual(len(nexts), 1)
            for nxt in out.default_next_by_screen.values():
                self.assertTrue(nxt is None or nxt in ids)
            for rules in out.branches_by_screen.values():
                for rule in rules:
                    self.assertTrue(rule.next is None or rule.next in ids)

    def test_terminal_and_route_exclusive(self) -> None:
        for spec in _sample_specs():
            out = normalize_flow_spec(spec)
            for screen in out.screens:
                nexts = out.routing_model[screen.id]
                if nexts:
                    self.assertFalse(screen.terminal)
                    if screen.action.type != "data_exchange":
                        self.assertEqual(screen.action.type, "navigate")
                        self.assertEqual(screen.action.screen, nexts[0])
                if screen.terminal:
                    self.assertEqual(screen.action.type, "complete")

    def test_auto_finalization_is_fixed_point(self) -> None:
        for spec in _sample_specs():
            out = normalize_flow_spec(spec)
            self.assertIs(auto_finalize_destinations(out), out)

    def test_navigate_never_carries_payload(self) -> None:
        out = normalize_flow_spec(_messy_spec())
        for screen in out.screens:
            if screen.action is not None and screen.action.type == "navigate":
                self.assertIsNone(screen.action.payload)


class TestNormalizeRepairs(unittest.TestCase):
    def test_empty_spec_gets_default_screen(self) -> None:
        out = normalize_flow_spec(FlowSpec())
        self.assertEqual(out.screen_ids(), ["SCREEN_A"])
        self.assertTrue(out.screens[0].terminal)

    def test_missing_references_dropped(self) -> None:
        out = normalize_flow_spec(_messy_spec())
        self.assertNotIn("GONE", out.branches_by_screen)
        self.assertIsNone(out.default_next_by_screen["SCREEN_A"])
        fields = [r.field for r in out.branches_by_screen["SCREEN_A"]]
        self.assertEqual(fields, ["plano", "sumiu"])

    def test_rules_on_deleted_fields_are_kept(self) -> None:
        out = normalize_flow_spec(_messy_spec())
        self.assertEqual(out.branches_by_screen["SCREEN_A"][1].field, "sumiu")

    def test_bound_option_label_routes_rule(self) -> None:
        out = normalize_flow_spec(_messy_spec())
        rule = out.branches_by_screen["SCREEN_A"][0]
        self.assertEqual(rule.next, "SCREEN_B")
        self.assertTrue(out.get_screen("SCREEN_B").terminal)
        self.assertEqual(out.get_screen("SCREEN_B").action.label, "Concluir")

    def test_routing_model_entry_becomes_default_next(self) -> None:
        spec = FlowSpec(screens=(_screen("SCREEN_A"), _screen("SCREEN_B", terminal=True)), routing_model={"SCREEN_A": ["SCREEN_B"]})
        out = normalize_flow_spec(spec)
        action = out.get_screen("SCREEN_A").action
        self.assertEqual(action, ScreenAction(type="navigate", screen="SCREEN_B", label="Continuar"))
        self.assertEqual(out.routing_model, {"SCREEN_A": ["SCREEN_B"], "SCREEN_B": []})

    def test_navigate_target_becomes_default_next(self) -> None:
        spec = FlowSpec(
            screens=(
                _screen("SCREEN_A", action=ScreenAction(type="navigate", screen="SCREEN_B")),
                _screen("SCREEN_B", action=ScreenAction(type="complete")),
            )
        )
        out = normalize_flow_spec(spec)
        self.assertEqual(out.default_next_by_screen["SCREEN_A"], "SCREEN_B")
        self.assertTrue(out.get_screen("SCREEN_B").terminal)
        self.assertEqual(out.get_screen("SCREEN_B").action.label, "Concluir")

    def test_navigate_without_route_loses_target(self) -> None:
        spec = FlowSpec(screens=(_screen("SCREEN_A", action=ScreenAction(type="navigate", screen="SCREEN_X")),))
        out = normalize_flow_spec(spec)
        self.assertIsNone(out.screens[0].action.screen)
        self.assertFalse(out.screens[0].terminal)

    def test_data_exchange_payload_rebuilt(self) -> None:
        screen = _screen(
            "SCREEN_A",
            components=_form({"type": "TextInput", "name": "nome", "label": "Nome"}),
            action=ScreenAction(type="data_exchange", payload={"antigo": "${form.antigo}", "token": "abc"}),
        )
        out = normalize_flow_spec(FlowSpec(screens=(screen,)))
        self.assertEqual(out.screens[0].action.payload, {"nome": "${form.nome}", "token": "abc"})

    def test_footer_follows_screen_action(self) -> None:
        footer = {"type": "Footer", "label": "Ir", "on-click-action": {"name": "complete", "payload": {"a": "1"}}}
        spec = FlowSpec(
            screens=(
                _screen("SCREEN_A", components=_form({"type": "TextBody", "text": "Oi"}, footer)),
                _screen("SCREEN_B", terminal=True),
            ),
            default_next_by_screen={"SCREEN_A": "SCREEN_B"},
        )
        out = normalize_flow_spec(spec)
        synced = out.get_screen("SCREEN_A").components[0]["children"][1]
        self.assertEqual(synced["on-click-action"], {"name": "navigate", "next": {"type": "screen", "name": "SCREEN_B"}})
        self.assertEqual(synced["label"], "Continuar")
        self.assertEqual(footer["label"], "Ir")


class TestNormalizeHelpers(unittest.TestCase):
    def test_title_index_first_wins(self) -> None:
        index = title_index([_screen("SCREEN_A", "Menu"), _screen("SCREEN_B", "menu")])
        self.assertEqual(index, {"menu": "SCREEN_A"})

    def test_field_payload_keeps_order(self) -> None:
        screen = _screen(
            "SCREEN_A",
            components=_form({"type": "TextInput", "name": "b", "label": "B"}, {"type": "TextInput", "name": "a", "label": "A"}),
        )
        self.assertEqual(list(field_payload(screen)), ["b", "a"])

    def test_auto_route_miss_keeps_next(self) -> None:
        spec = normalize_flow_spec(
            FlowSpec(
                screens=(_screen("SCREEN_A", components=_form(PLAN_RADIO)), _screen("SCREEN_B", terminal=True)),
                branches_by_screen={"SCREEN_A": [BranchRule(field="plano", value="nada", next="SCREEN_B")]},
            )
        )
        self.assertIs(auto_route_branches(spec), spec)


if __name__ == "__main__":
    unittest.main()
