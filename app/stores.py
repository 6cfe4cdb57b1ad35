"""In-memory flow store for the editor and HTTP surface."""

from __future__ import annotations

import copy
import uuid
from typing import Dict, List
from datetime import datetime, timezone


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class MemoryFlowStore:
    def __init__(self) -> None:
        self._flows: Dict[str, dict] = {}
        self._flow_versions: Dict[str, List[dict]] = {}

    def list_flows(self) -> list[dict]:
        items = []
        for flow_id, data in self._flows.items():
            items.append(
                {
                    "flow_id": flow_id,
                    "name": data.get("name"),
                    "updated_at": data["updated_at"],
                    "fingerprint": data.get("fingerprint"),
                }
            )
        return sorted(items, key=lambda d: d.get("updated_at") or "", reverse=True)

    def get_flow(self, flow_id: str) -> dict | None:
        data = self._flows.get(flow_id)
        if not data:
            return None
        return copy.deepcopy(data)

    def create_flow(self, name: str, spec: dict, flow_json: dict | None = None, fingerprint: str | None = None) -> dict:
        flow_id = str(uuid.uuid4())
        return self.save_flow(flow_id, spec, flow_json=flow_json, fingerprint=fingerprint, name=name)

    def save_flow(
        self,
        flow_id: str,
        spec: dict,
        flow_json: dict | None = None,
        fingerprint: str | None = None,
        name: str | None = None,
    ) -> dict:
        now = _now()
        existing = self._flows.get(flow_id)
        record = {
            "flow_id": flow_id,
            "name": name if name is not None else existing.get("name") if existing else None,
            "spec": copy.deepcopy(spec),
            "flow_json": copy.deepcopy(flow_json) if flow_json is not None else None,
            "fingerprint": fingerprint,
            "created_at": existing.get("created_at") if existing else now,
            "updated_at": now,
        }
        self._flows[flow_id] = record
        if not existing or existing.get("fingerprint") != fingerprint:
            entry = {
                "id": str(uuid.uuid4()),
                "flow_id": flow_id,
                "fingerprint": fingerprint,
                "created_at": now,
            }
            self._flow_versions.setdefault(flow_id, []).insert(0, entry)
        return copy.deepcopy(record)

    def list_flow_versions(self, flow_id: str) -> list[dict]:
        return [copy.deepcopy(v) for v in self._flow_versions.get(flow_id, [])]

    def delete_flow(self, flow_id: str) -> bool:
        if flow_id not in self._flows:
            return False
        del self._flows[flow_id]
        self._flow_versions.pop(flow_id, None)
        return True
