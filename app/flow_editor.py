"""Editor session: owns the current spec, the dirty flag and the active screen."""

from __future__ import annotations

import logging
from typing import Any, Callable, List

from flow_model import FlowSpec, default_flow_spec
from flowgraph.blocks import screen_blocks
from flowgraph.spec_hash import spec_fingerprint
from graph_normalize import normalize_flow_spec
from app.flow_codegen import flow_spec_from_json, flow_spec_to_json
from app.flow_validate import validate_flow_spec


logger = logging.getLogger("flowgraph.editor")


class FlowEditorSession:
    """Thin caller around the pure edit helpers.

    ``apply`` runs a helper, stores its result and marks the session dirty.
    Saving (and debouncing saves) is left to the caller.
    """

    def __init__(self, spec: FlowSpec | None = None, flow_name: str | None = None) -> None:
        self.flow_name = flow_name
        self.spec = normalize_flow_spec(spec if spec is not None else default_flow_spec(flow_name))
        self.dirty = False
        self.active_screen_id: str | None = self.spec.screens[0].id if self.spec.screens else None

    @classmethod
    def from_document(cls, doc: Any, flow_name: str | None = None) -> "FlowEditorSession":
        return cls(flow_spec_from_json(doc, flow_name), flow_name)

    def apply(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> FlowSpec:
        result = fn(self.spec, *args, **kwargs)
        new_id = None
        if isinstance(result, tuple):
            result, new_id = result
        self.spec = result
        self.dirty = True
        if new_id is not None:
            self.active_screen_id = new_id
        elif self.active_screen_id is None or self.spec.get_screen(self.active_screen_id) is None:
            self.active_screen_id = self.spec.screens[0].id if self.spec.screens else None
        return self.spec

    def select(self, screen_id: str) -> None:
        if self.spec.get_screen(screen_id) is not None:
            self.active_screen_id = screen_id

    @property
    def active_blocks(self) -> List[dict]:
        screen = self.spec.get_screen(self.active_screen_id) if self.active_screen_id else None
        return screen_blocks(screen.components) if screen is not None else []

    @property
    def issues(self) -> List[str]:
        return validate_flow_spec(self.spec)

    @property
    def can_save(self) -> bool:
        return self.dirty and not self.issues

    @property
    def flow_json(self) -> dict:
        return flow_spec_to_json(self.spec)

    @property
    def fingerprint(self) -> str:
        return spec_fingerprint(self.spec.to_dict())

    def save(self, store: Any, flow_id: str) -> dict:
        record = store.save_flow(
            flow_id,
            self.spec.to_dict(),
            flow_json=self.flow_json,
            fingerprint=self.fingerprint,
            name=self.flow_name,
        )
        self.dirty = False
        logger.info("flow_saved flow_id=%s fingerprint=%s", flow_id, record.get("fingerprint"))
        return record
