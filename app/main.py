"""FastAPI app exposing the flow screen graph editor."""

from __future__ import annotations

import os
import re
import sys
import json
import logging
from pathlib import Path
from typing import Any, Callable

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(ROOT / "app" / ".env")

from flow_model import DEFAULT_FLOW_TITLE, FlowSpec
from branch_eval import BranchEvalError, resolve_next_screen
from screen_graph import (
    ScreenGraphError,
    ScreenNotFoundError,
    add_screen,
    make_screen_final,
    move_screen,
    patch_screen,
    pin_branch_next,
    remove_screen,
    reopen_screen,
    set_branch_rules,
    set_default_next,
    set_screen_action,
    set_screen_blocks,
)
from app.flow_codegen import strip_editor_metadata
from app.flow_editor import FlowEditorSession
from app.flow_json_validate import validate_flow_json
from app.stores import MemoryFlowStore


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


FLOW_DEFAULT_TITLE = os.getenv("FLOW_DEFAULT_TITLE", "").strip() or DEFAULT_FLOW_TITLE
# Debounce the editor client applies before autosaving; served by /health, the API itself saves on every edit.
FLOW_AUTOSAVE_DEBOUNCE_MS = _int_env("FLOW_AUTOSAVE_DEBOUNCE_MS", 900)
FLOW_LOG_LEVEL = os.getenv("FLOW_LOG_LEVEL", "INFO").strip().upper() or "INFO"

app = FastAPI(title="Flow Screen Graph")
logger = logging.getLogger("flowgraph.api")
logging.basicConfig(level=getattr(logging, FLOW_LOG_LEVEL, logging.INFO))
_LOCAL_CORS_ORIGINS = {
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
}
_LOCAL_CORS_REGEX = re.compile(r"^http://(localhost|127\.0\.0\.1):\d+$")
_EXTRA_CORS_ORIGINS = {
    origin.strip().rstrip("/")
    for origin in os.getenv("FLOW_CORS_ORIGINS", "").split(",")
    if origin.strip()
}
_CORS_ORIGINS = _LOCAL_CORS_ORIGINS | _EXTRA_CORS_ORIGINS

app.add_middleware(
    CORSMiddleware,
    allow_origins=sorted(_CORS_ORIGINS),
    allow_origin_regex=_LOCAL_CORS_REGEX.pattern,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

flows = MemoryFlowStore()

_NOT_FOUND_CODES = {"SCREEN_NOT_FOUND", "BRANCH_RULE_NOT_FOUND"}


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error method=%s path=%s", request.method, request.url.path)
    return _error_response("INTERNAL_ERROR", "Unexpected server error", detail={"error": str(exc)}, status=500)


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int = 400) -> JSONResponse:
    body = {
        "ok": False,
        "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
        "warnings": [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _ok_response(payload: dict, warnings: list | None = None, status: int = 200) -> JSONResponse:
    body = {"ok": True, **payload, "errors": [], "warnings": warnings or []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


async def _safe_json(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def _request_invalid(message: str, path: str | None = None) -> JSONResponse:
    return _error_response("REQUEST_INVALID", message, path)


def _flow_not_found(flow_id: str) -> JSONResponse:
    return _error_response("FLOW_NOT_FOUND", f"Flow not found: {flow_id}", "flow_id", status=404)


def _graph_error_response(exc: ScreenGraphError) -> JSONResponse:
    status = 404 if exc.code in _NOT_FOUND_CODES else 400
    return _error_response(exc.code, exc.message, exc.path, status=status)


def _load_session(flow_id: str) -> FlowEditorSession | None:
    record = flows.get_flow(flow_id)
    if record is None:
        return None
    return FlowEditorSession(FlowSpec.from_dict(record.get("spec")), record.get("name"))


def _flow_payload(flow_id: str, session: FlowEditorSession, **extra: Any) -> dict:
    data = {
        "flow_id": flow_id,
        "name": session.flow_name,
        "spec": session.spec.to_dict(),
        "flow_json": session.flow_json,
        "fingerprint": session.fingerprint,
        "issues": session.issues,
    }
    data.update(extra)
    return {"data": data}


def _edit(flow_id: str, fn: Callable[..., Any], *args: Any) -> JSONResponse:
    session = _load_session(flow_id)
    if session is None:
        return _flow_not_found(flow_id)
    try:
        session.apply(fn, *args)
    except ScreenGraphError as exc:
        logger.info("flow_edit_rejected flow_id=%s op=%s code=%s", flow_id, fn.__name__, exc.code)
        return _graph_error_response(exc)
    session.save(flows, flow_id)
    logger.info("flow_edit flow_id=%s op=%s screens=%s", flow_id, fn.__name__, len(session.spec.screens))
    return _ok_response(_flow_payload(flow_id, session, active_screen_id=session.active_screen_id))


@app.get("/health")
async def health() -> dict:
    return {"ok": True, "autosave_debounce_ms": FLOW_AUTOSAVE_DEBOUNCE_MS}


@app.get("/flows")
async def flows_list() -> JSONResponse:
    return _ok_response({"data": flows.list_flows()})


@app.post("/flows")
async def flows_create(request: Request) -> JSONResponse:
    body = await _safe_json(request)
    if body is None:
        body = {}
    if not isinstance(body, dict):
        return _request_invalid("body must be an object")
    name = body.get("name")
    if name is not None and not isinstance(name, str):
        return _request_invalid("name must be a string", "name")
    title = name.strip() if isinstance(name, str) and name.strip() else FLOW_DEFAULT_TITLE
    session = FlowEditorSession(flow_name=title)
    record = flows.create_flow(title, session.spec.to_dict(), flow_json=session.flow_json, fingerprint=session.fingerprint)
    logger.info("flow_created flow_id=%s", record["flow_id"])
    return _ok_response(_flow_payload(record["flow_id"], session), status=201)


@app.post("/flows/import")
async def flows_import(request: Request) -> JSONResponse:
    body = await _safe_json(request)
    if not isinstance(body, dict) or "flow_json" not in body:
        return _request_invalid("flow_json is required", "flow_json")
    name = body.get("name") if isinstance(body.get("name"), str) and body["name"].strip() else None
    doc = body["flow_json"]
    if not isinstance(doc, (dict, str)):
        return _request_invalid("flow_json must be an object or a JSON string", "flow_json")
    session = FlowEditorSession.from_document(doc, name or FLOW_DEFAULT_TITLE)
    record = flows.create_flow(
        session.flow_name, session.spec.to_dict(), flow_json=session.flow_json, fingerprint=session.fingerprint
    )
    logger.info("flow_imported flow_id=%s screens=%s", record["flow_id"], len(session.spec.screens))
    return _ok_response(_flow_payload(record["flow_id"], session), status=201)


@app.get("/flows/{flow_id}")
async def flows_get(flow_id: str) -> JSONResponse:
    session = _load_session(flow_id)
    if session is None:
        return _flow_not_found(flow_id)
    return _ok_response(_flow_payload(flow_id, session))


@app.post("/flows/{flow_id}/screens")
async def flows_add_screen(flow_id: str, request: Request) -> JSONResponse:
    body = await _safe_json(request)
    title = body.get("title") if isinstance(body, dict) and isinstance(body.get("title"), str) else None
    return _edit(flow_id, add_screen, title)


@app.delete("/flows/{flow_id}/screens/{screen_id}")
async def flows_remove_screen(flow_id: str, screen_id: str) -> JSONResponse:
    return _edit(flow_id, remove_screen, screen_id)


@app.patch("/flows/{flow_id}/screens/{screen_id}")
async def flows_patch_screen(flow_id: str, screen_id: str, request: Request) -> JSONResponse:
    body = await _safe_json(request)
    if not isinstance(body, dict):
        return _request_invalid("patch must be an object", "patch")
    return _edit(flow_id, patch_screen, screen_id, body)


@app.put("/flows/{flow_id}/screens/{screen_id}/branches")
async def flows_set_branches(flow_id: str, screen_id: str, request: Request) -> JSONResponse:
    body = await _safe_json(request)
    rules = body.get("rules") if isinstance(body, dict) else None
    if not isinstance(rules, list):
        return _request_invalid("rules must be a list", "rules")
    return _edit(flow_id, set_branch_rules, screen_id, rules)


@app.put("/flows/{flow_id}/screens/{screen_id}/branches/{index}/next")
async def flows_pin_branch_next(flow_id: str, screen_id: str, index: int, request: Request) -> JSONResponse:
    body = await _safe_json(request)
    if not isinstance(body, dict) or "next" not in body:
        return _request_invalid("next is required", "next")
    nxt = body["next"]
    if nxt is not None and not isinstance(nxt, str):
        return _request_invalid("next must be a screen id or null", "next")
    return _edit(flow_id, pin_branch_next, screen_id, index, nxt)


@app.post("/flows/{flow_id}/screens/{screen_id}/move")
async def flows_move_screen(flow_id: str, screen_id: str, request: Request) -> JSONResponse:
    body = await _safe_json(request)
    to_index = body.get("to_index") if isinstance(body, dict) else None
    if not isinstance(to_index, int) or isinstance(to_index, bool):
        return _request_invalid("to_index must be an integer", "to_index")
    return _edit(flow_id, move_screen, screen_id, to_index)


@app.put("/flows/{flow_id}/screens/{screen_id}/blocks")
async def flows_set_blocks(flow_id: str, screen_id: str, request: Request) -> JSONResponse:
    body = await _safe_json(request)
    blocks = body.get("blocks") if isinstance(body, dict) else None
    if not isinstance(blocks, list):
        return _request_invalid("blocks must be a list", "blocks")
    return _edit(flow_id, set_screen_blocks, screen_id, blocks)


@app.put("/flows/{flow_id}/screens/{screen_id}/default_next")
async def flows_set_default_next(flow_id: str, screen_id: str, request: Request) -> JSONResponse:
    body = await _safe_json(request)
    if not isinstance(body, dict) or "next" not in body:
        return _request_invalid("next is required", "next")
    nxt = body["next"]
    if nxt is not None and not isinstance(nxt, str):
        return _request_invalid("next must be a screen id or null", "next")
    return _edit(flow_id, set_default_next, screen_id, nxt)


@app.put("/flows/{flow_id}/screens/{screen_id}/action")
async def flows_set_action(flow_id: str, screen_id: str, request: Request) -> JSONResponse:
    body = await _safe_json(request)
    if not isinstance(body, dict):
        return _request_invalid("action must be an object", "action")
    for key in ("type", "label", "next"):
        if body.get(key) is not None and not isinstance(body[key], str):
            return _request_invalid(f"{key} must be a string", key)
    return _edit(flow_id, set_screen_action, screen_id, body.get("type"), body.get("label"), body.get("next"))


@app.post("/flows/{flow_id}/screens/{screen_id}/final")
async def flows_set_final(flow_id: str, screen_id: str, request: Request) -> JSONResponse:
    body = await _safe_json(request)
    if body is None:
        body = {}
    if not isinstance(body, dict):
        return _request_invalid("body must be an object")
    if body.get("final", True) is False:
        nxt = body.get("next") if isinstance(body.get("next"), str) else None
        return _edit(flow_id, reopen_screen, screen_id, nxt)
    return _edit(flow_id, make_screen_final, screen_id)


@app.post("/flows/{flow_id}/validate")
async def flows_validate(flow_id: str) -> JSONResponse:
    session = _load_session(flow_id)
    if session is None:
        return _flow_not_found(flow_id)
    issues = session.issues
    json_errors, json_warnings = validate_flow_json(strip_editor_metadata(session.flow_json))
    logger.info("flow_validate flow_id=%s issues=%s json_errors=%s", flow_id, len(issues), len(json_errors))
    payload = {
        "data": {
            "flow_id": flow_id,
            "valid": not issues and not json_errors,
            "issues": issues,
            "json_errors": json_errors,
        }
    }
    return _ok_response(payload, warnings=json_warnings)


@app.get("/flows/{flow_id}/flow_json")
async def flows_flow_json(flow_id: str, publish: bool = False) -> JSONResponse:
    session = _load_session(flow_id)
    if session is None:
        return _flow_not_found(flow_id)
    doc = session.flow_json
    if publish:
        doc = strip_editor_metadata(doc)
    return _ok_response({"data": {"flow_id": flow_id, "flow_json": doc, "fingerprint": session.fingerprint}})


@app.post("/flows/{flow_id}/next_screen")
async def flows_next_screen(flow_id: str, request: Request) -> JSONResponse:
    body = await _safe_json(request)
    if not isinstance(body, dict) or not isinstance(body.get("screen_id"), str):
        return _request_invalid("screen_id is required", "screen_id")
    values = body.get("values") if body.get("values") is not None else {}
    if not isinstance(values, dict):
        return _request_invalid("values must be an object", "values")
    session = _load_session(flow_id)
    if session is None:
        return _flow_not_found(flow_id)
    if session.spec.get_screen(body["screen_id"]) is None:
        return _graph_error_response(ScreenNotFoundError(body["screen_id"], "screen_id"))
    try:
        nxt = resolve_next_screen(session.spec, body["screen_id"], values)
    except BranchEvalError as exc:
        return _error_response(exc.code, exc.message, exc.path)
    return _ok_response({"data": {"flow_id": flow_id, "screen_id": body["screen_id"], "next": nxt}})
