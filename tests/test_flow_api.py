import os
import sys
import unittest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

os.environ.setdefault("FLOW_LOG_LEVEL", "WARNING")

from fastapi.testclient import TestClient

import app.main as main
from app.flow_adapters import form_spec_to_flow_json


SUBJECT_DROPDOWN = {
    "type": "Dropdown",
    "name": "assunto",
    "label": "Assunto",
    "data-source": [{"id": "vendas", "title": "Vendas"}, {"id": "suporte", "title": "Suporte"}],
}


class TestFlowApi(unittest.TestCase):
    def setUp(self) -> None:
        self.client = TestClient(main.app)

    def _create(self, name: str = "Pesquisa") -> str:
        res = self.client.post("/flows", json={"name": name})
        self.assertEqual(res.status_code, 201)
        return res.json()["data"]["flow_id"]

    def _menu_flow(self) -> str:
        flow_id = self._create()
        self.client.post(f"/flows/{flow_id}/screens", json={"title": "Vendas"})
        self.client.post(f"/flows/{flow_id}/screens", json={"title": "Suporte"})
        res = self.client.patch(
            f"/flows/{flow_id}/screens/SCREEN_A",
            json={"components": [{"type": "Form", "name": "form", "children": [SUBJECT_DROPDOWN]}]},
        )
        self.assertEqual(res.status_code, 200)
        return flow_id

    def test_health(self) -> None:
        res = self.client.get("/health")
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.json()["ok"])
        self.assertEqual(res.json()["autosave_debounce_ms"], main.FLOW_AUTOSAVE_DEBOUNCE_MS)

    def test_create_and_get(self) -> None:
        flow_id = self._create("Cadastro")
        res = self.client.get(f"/flows/{flow_id}")
        body = res.json()
        self.assertTrue(body["ok"])
        self.assertEqual(body["errors"], [])
        self.assertEqual(body["data"]["name"], "Cadastro")
        self.assertEqual([s["id"] for s in body["data"]["spec"]["screens"]], ["SCREEN_A"])
        self.assertEqual(body["data"]["issues"], [])

    def test_create_without_body_uses_default_title(self) -> None:
        res = self.client.post("/flows")
        self.assertEqual(res.status_code, 201)
        self.assertEqual(res.json()["data"]["name"], main.FLOW_DEFAULT_TITLE)

    def test_unknown_flow(self) -> None:
        res = self.client.get("/flows/nope")
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["errors"][0]["code"], "FLOW_NOT_FOUND")

    def test_add_screen_links_previous(self) -> None:
        flow_id = self._create()
        res = self.client.post(f"/flows/{flow_id}/screens", json={})
        data = res.json()["data"]
        self.assertEqual(data["active_screen_id"], "SCREEN_B")
        self.assertEqual(data["spec"]["routing_model"], {"SCREEN_A": ["SCREEN_B"], "SCREEN_B": []})

    def test_remove_unknown_screen(self) -> None:
        flow_id = self._create()
        res = self.client.delete(f"/flows/{flow_id}/screens/SCREEN_Z")
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["errors"][0]["code"], "SCREEN_NOT_FOUND")

    def test_patch_requires_object(self) -> None:
        flow_id = self._create()
        res = self.client.patch(f"/flows/{flow_id}/screens/SCREEN_A", json=[1, 2])
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "REQUEST_INVALID")

    def test_patch_unknown_field(self) -> None:
        flow_id = self._create()
        res = self.client.patch(f"/flows/{flow_id}/screens/SCREEN_A", json={"colour": "red"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "SCREEN_PATCH_INVALID")

    def test_branches_and_next_screen(self) -> None:
        flow_id = self._menu_flow()
        res = self.client.put(
            f"/flows/{flow_id}/screens/SCREEN_A/branches",
            json={"rules": [{"field": "assunto", "op": "equals", "value": "Suporte"}]},
        )
        self.assertEqual(res.status_code, 200)
        rule = res.json()["data"]["spec"]["branches_by_screen"]["SCREEN_A"][0]
        self.assertEqual(rule["value"], "suporte")
        self.assertEqual(rule["next"], "SCREEN_C")

        res = self.client.post(f"/flows/{flow_id}/next_screen", json={"screen_id": "SCREEN_A", "values": {"assunto": "suporte"}})
        self.assertEqual(res.json()["data"]["next"], "SCREEN_C")
        res = self.client.post(f"/flows/{flow_id}/next_screen", json={"screen_id": "SCREEN_A", "values": {}})
        self.assertEqual(res.json()["data"]["next"], "SCREEN_B")

    def test_pin_branch_next(self) -> None:
        flow_id = self._menu_flow()
        self.client.put(
            f"/flows/{flow_id}/screens/SCREEN_A/branches",
            json={"rules": [{"field": "assunto", "op": "equals", "value": "suporte"}]},
        )
        res = self.client.put(f"/flows/{flow_id}/screens/SCREEN_A/branches/0/next", json={"next": "SCREEN_B"})
        self.assertEqual(res.status_code, 200)
        rule = res.json()["data"]["spec"]["branches_by_screen"]["SCREEN_A"][0]
        self.assertEqual(rule["next"], "SCREEN_B")
        self.assertFalse(rule["auto_next"])

        res = self.client.put(f"/flows/{flow_id}/screens/SCREEN_A/branches/3/next", json={"next": "SCREEN_B"})
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["errors"][0]["code"], "BRANCH_RULE_NOT_FOUND")
        res = self.client.put(f"/flows/{flow_id}/screens/SCREEN_A/branches/0/next", json={"next": 7})
        self.assertEqual(res.status_code, 400)

    def test_move_screen(self) -> None:
        flow_id = self._create()
        self.client.post(f"/flows/{flow_id}/screens", json={})
        self.client.post(f"/flows/{flow_id}/screens", json={})
        res = self.client.post(f"/flows/{flow_id}/screens/SCREEN_C/move", json={"to_index": 0})
        self.assertEqual(res.status_code, 200)
        spec = res.json()["data"]["spec"]
        self.assertEqual([s["id"] for s in spec["screens"]], ["SCREEN_C", "SCREEN_A", "SCREEN_B"])
        self.assertEqual(spec["default_next_by_screen"]["SCREEN_A"], "SCREEN_B")

        res = self.client.post(f"/flows/{flow_id}/screens/SCREEN_C/move", json={"to_index": "first"})
        self.assertEqual(res.json()["errors"][0]["code"], "REQUEST_INVALID")
        res = self.client.post(f"/flows/{flow_id}/screens/SCREEN_Q/move", json={"to_index": 1})
        self.assertEqual(res.status_code, 404)

    def test_set_blocks(self) -> None:
        flow_id = self._create()
        name_input = {"type": "TextInput", "name": "nome", "label": "Nome"}
        res = self.client.put(f"/flows/{flow_id}/screens/SCREEN_A/blocks", json={"blocks": [name_input]})
        self.assertEqual(res.status_code, 200)
        components = res.json()["data"]["spec"]["screens"][0]["components"]
        self.assertEqual(components, [{"type": "Form", "name": "form", "children": [name_input]}])

        res = self.client.put(f"/flows/{flow_id}/screens/SCREEN_A/blocks", json={"blocks": {}})
        self.assertEqual(res.status_code, 400)

    def test_branches_require_list(self) -> None:
        flow_id = self._create()
        res = self.client.put(f"/flows/{flow_id}/screens/SCREEN_A/branches", json={"rules": "x"})
        self.assertEqual(res.status_code, 400)

    def test_next_screen_errors(self) -> None:
        flow_id = self._create()
        res = self.client.post(f"/flows/{flow_id}/next_screen", json={"screen_id": "SCREEN_Q"})
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["errors"][0]["code"], "SCREEN_NOT_FOUND")
        self.client.post(f"/flows/{flow_id}/screens", json={})
        self.client.put(
            f"/flows/{flow_id}/screens/SCREEN_A/branches",
            json={"rules": [{"field": "idade", "op": "gt", "value": 18, "next": "SCREEN_B"}]},
        )
        res = self.client.post(f"/flows/{flow_id}/next_screen", json={"screen_id": "SCREEN_A", "values": {"idade": "muitos"}})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "BRANCH_TYPE_ERROR")

    def test_default_next_and_action(self) -> None:
        flow_id = self._create()
        self.client.post(f"/flows/{flow_id}/screens", json={})
        res = self.client.put(f"/flows/{flow_id}/screens/SCREEN_B/default_next", json={"next": "SCREEN_A"})
        screen_b = res.json()["data"]["spec"]["screens"][1]
        self.assertFalse(screen_b["terminal"])
        self.assertEqual(screen_b["action"]["screen"], "SCREEN_A")

        res = self.client.put(f"/flows/{flow_id}/screens/SCREEN_B/action", json={"type": "complete", "label": "Fim"})
        screen_b = res.json()["data"]["spec"]["screens"][1]
        self.assertTrue(screen_b["terminal"])
        self.assertEqual(screen_b["action"], {"type": "complete", "label": "Fim"})

        res = self.client.put(f"/flows/{flow_id}/screens/SCREEN_B/default_next", json={})
        self.assertEqual(res.json()["errors"][0]["code"], "REQUEST_INVALID")

    def test_final_toggle(self) -> None:
        flow_id = self._create()
        self.client.post(f"/flows/{flow_id}/screens", json={})
        self.client.post(f"/flows/{flow_id}/screens", json={})
        res = self.client.post(f"/flows/{flow_id}/screens/SCREEN_B/final", json={})
        self.assertEqual(res.json()["data"]["spec"]["routing_model"]["SCREEN_B"], [])
        res = self.client.post(f"/flows/{flow_id}/screens/SCREEN_B/final", json={"final": False})
        self.assertEqual(res.json()["data"]["spec"]["routing_model"]["SCREEN_B"], ["SCREEN_C"])

    def test_validate_and_publish(self) -> None:
        flow_id = self._create()
        self.client.post(f"/flows/{flow_id}/screens", json={})
        res = self.client.post(f"/flows/{flow_id}/validate")
        data = res.json()["data"]
        self.assertTrue(data["valid"])
        self.assertEqual(data["issues"], [])
        self.assertEqual(data["json_errors"], [])

        res = self.client.get(f"/flows/{flow_id}/flow_json", params={"publish": "true"})
        doc = res.json()["data"]["flow_json"]
        self.assertTrue(all("__editor" not in s for s in doc["screens"]))
        res = self.client.get(f"/flows/{flow_id}/flow_json")
        self.assertIn("__editor", res.json()["data"]["flow_json"]["screens"][0])

    def test_validate_reports_dead_end(self) -> None:
        flow_id = self._create()
        self.client.post(f"/flows/{flow_id}/screens", json={})
        self.client.post(f"/flows/{flow_id}/screens", json={})
        self.client.delete(f"/flows/{flow_id}/screens/SCREEN_B")
        data = self.client.post(f"/flows/{flow_id}/validate").json()["data"]
        self.assertFalse(data["valid"])
        self.assertEqual(data["issues"], ["Tela SCREEN_A: sem próxima tela e não é final"])

    def test_import_legacy_form(self) -> None:
        doc = form_spec_to_flow_json(
            {"steps": [{"title": "Dados", "fields": [{"label": "Nome"}]}, {"title": "Fim", "fields": []}]}
        )
        res = self.client.post("/flows/import", json={"name": "Legado", "flow_json": doc})
        self.assertEqual(res.status_code, 201)
        data = res.json()["data"]
        self.assertEqual(data["name"], "Legado")
        self.assertEqual([s["id"] for s in data["spec"]["screens"]], ["FORM", "FORM_A"])

    def test_import_requires_document(self) -> None:
        res = self.client.post("/flows/import", content="{bad", headers={"content-type": "application/json"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "REQUEST_INVALID")
        res = self.client.post("/flows/import", json={"flow_json": 3})
        self.assertEqual(res.status_code, 400)


if __name__ == "__main__":
    unittest.main()
