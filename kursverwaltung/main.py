from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional
from zoneinfo import ZoneInfo

import httpx
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from .forms import FormError, build_payload, default_values, values_from_form, values_from_record
from .gateway import GatewayError, RecordGateway, build_headers
from .models import EntityConfig, Record, build_entities
from .parser import DEFAULT_BASE_URL, format_date, format_euro, parse_flag
from .references import PLACEHOLDER, RefState, delete_description, find_record, resolve
from .stats import compute_stats


logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("kursverwaltung")


PORT = int(os.environ.get("PORT", "8000"))
LIVINGAPPS_BASE_URL = os.environ.get("LIVINGAPPS_BASE_URL", DEFAULT_BASE_URL)
LIVINGAPPS_API_KEY = os.environ.get("LIVINGAPPS_API_KEY")
LIVINGAPPS_COOKIE = os.environ.get("LIVINGAPPS_COOKIE")
LIVINGAPPS_TIMEOUT_SECONDS = float(os.environ.get("LIVINGAPPS_TIMEOUT_SECONDS", "15"))
TZ = os.environ.get("TZ", "Europe/Berlin")

APP_IDS = {
    key: os.environ.get(f"APP_ID_{key.upper()}", key)
    for key in ("dozenten", "raeume", "teilnehmer", "kurse", "anmeldungen")
}

ENTITIES = build_entities(APP_IDS)
DEFAULT_TAB = "kurse"

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"


app = FastAPI(title="Kursverwaltung")
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


# Shared state; transport can be swapped before startup (tests)
client: Optional[httpx.AsyncClient] = None
client_transport: Optional[httpx.AsyncBaseTransport] = None
gateway: Optional[RecordGateway] = None
busy_lock = asyncio.Lock()
busy_tabs: set[str] = set()


def today() -> date:
    return datetime.now(ZoneInfo(TZ)).date()


def get_entity(key: str) -> EntityConfig:
    ent = ENTITIES.get(key)
    if ent is None:
        raise HTTPException(status_code=404, detail=f"Unknown entity: {key}")
    return ent


def _gateway() -> RecordGateway:
    assert gateway is not None, "gateway not started"
    return gateway


def _tab_redirect(key: str) -> RedirectResponse:
    return RedirectResponse(url=f"/?tab={key}", status_code=303)


@asynccontextmanager
async def tab_busy(key: str) -> AsyncIterator[bool]:
    """Mark a tab busy for the duration of one mutation.

    Yields False when another mutation of the same tab is still in flight.
    """
    async with busy_lock:
        acquired = key not in busy_tabs
        if acquired:
            busy_tabs.add(key)
    try:
        yield acquired
    finally:
        if acquired:
            async with busy_lock:
                busy_tabs.discard(key)


async def load_snapshot() -> Dict[str, List[Record]]:
    keys = list(ENTITIES)
    results = await asyncio.gather(
        *(_gateway().list(ENTITIES[k]) for k in keys), return_exceptions=True
    )
    failed = [(k, r) for k, r in zip(keys, results) if isinstance(r, BaseException)]
    if failed:
        for k, err in failed:
            logger.error("Error loading %s: %s", k, err)
        return {k: [] for k in keys}
    return dict(zip(keys, results))  # type: ignore[arg-type]


# Template helpers

def render_cell(col: Any, rec: Record, snapshot: Dict[str, List[Record]]) -> Dict[str, Any]:
    value = rec.get(col.field)
    if col.kind == "ref":
        res = resolve(value, snapshot.get(col.ref_entity, []))
        if res.state is RefState.FOUND:
            assert res.record is not None
            text = ENTITIES[col.ref_entity].display(res.record) or PLACEHOLDER
        else:
            text = PLACEHOLDER
        return {"text": text, "stale": res.is_stale}
    if col.kind == "date":
        return {"text": format_date(value)}
    if col.kind == "period":
        return {"text": f"{format_date(rec.get('startdatum'))} - {format_date(rec.get('enddatum'))}"}
    if col.kind == "euro":
        return {"text": format_euro(value) if value is not None else ""}
    if col.kind == "capacity":
        return {"text": f"{value if value is not None else ''} Plätze"}
    if col.kind == "bool":
        paid = parse_flag(value)
        return {"text": "Bezahlt" if paid else "Offen", "flag": paid}
    return {"text": "" if value is None else str(value)}


def ref_options(ent: EntityConfig, snapshot: Dict[str, List[Record]]) -> Dict[str, List[tuple[str, str]]]:
    out: Dict[str, List[tuple[str, str]]] = {}
    for f in ent.ref_fields:
        target = ENTITIES[f.ref_entity]
        out[f.name] = [(r.record_id, target.display(r)) for r in snapshot.get(target.key, [])]
    return out


templates.env.globals["render_cell"] = render_cell


async def render_dashboard(
    request: Request,
    tab: str,
    dialog: Optional[Dict[str, Any]] = None,
    snapshot: Optional[Dict[str, List[Record]]] = None,
    status_code: int = 200,
) -> Response:
    if snapshot is None:
        snapshot = await load_snapshot()
    if tab not in ENTITIES:
        tab = DEFAULT_TAB
    return templates.TemplateResponse(
        request,
        "dashboard.html",
        {
            "entities": ENTITIES,
            "snapshot": snapshot,
            "stats": compute_stats(snapshot),
            "tab": tab,
            "dialog": dialog,
        },
        status_code=status_code,
    )


def form_dialog(
    ent: EntityConfig,
    snapshot: Dict[str, List[Record]],
    values: Dict[str, Any],
    record: Optional[Record] = None,
    errors: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    return {
        "mode": "edit" if record else "create",
        "entity": ent,
        "record": record,
        "title": ent.edit_title if record else ent.new_title,
        "action": f"/{ent.key}/{record.record_id}" if record else f"/{ent.key}",
        "values": values,
        "errors": errors or {},
        "options": ref_options(ent, snapshot),
    }


@app.on_event("startup")
async def on_startup() -> None:
    global client, gateway
    headers = build_headers(LIVINGAPPS_API_KEY, LIVINGAPPS_COOKIE)
    client = httpx.AsyncClient(headers=headers, transport=client_transport)
    gateway = RecordGateway(client, LIVINGAPPS_BASE_URL, timeout=LIVINGAPPS_TIMEOUT_SECONDS)
    logger.info("Using LivingApps gateway at %s", LIVINGAPPS_BASE_URL)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    global client, gateway
    if client:
        await client.aclose()
    client = None
    gateway = None


@app.get("/health")
async def health() -> Response:
    return Response(content="OK", media_type="text/plain")


@app.get("/api/stats")
async def api_stats() -> dict:
    snapshot = await load_snapshot()
    return compute_stats(snapshot).as_dict()


@app.get("/", response_class=HTMLResponse)
async def dashboard(request: Request, tab: str = DEFAULT_TAB) -> Response:
    return await render_dashboard(request, tab)


@app.post("/anmeldungen/{record_id}/toggle-bezahlt")
async def toggle_bezahlt(request: Request, record_id: str) -> Response:
    ent = get_entity("anmeldungen")
    form = await request.form()
    current = parse_flag(form.get("bezahlt", ""))
    async with tab_busy(ent.key) as acquired:
        if not acquired:
            logger.info("Ignoring toggle of %s: %s tab busy", record_id, ent.key)
            return _tab_redirect(ent.key)
        try:
            await _gateway().update(ent, record_id, {"bezahlt": not current})
        except GatewayError as e:
            logger.error("Error updating bezahlt: %s", e)
    return _tab_redirect(ent.key)


@app.get("/{entity}/new", response_class=HTMLResponse)
async def new_form(request: Request, entity: str) -> Response:
    ent = get_entity(entity)
    snapshot = await load_snapshot()
    dialog = form_dialog(ent, snapshot, default_values(ent, today()))
    return await render_dashboard(request, ent.key, dialog, snapshot)


@app.get("/{entity}/{record_id}/edit", response_class=HTMLResponse)
async def edit_form(request: Request, entity: str, record_id: str) -> Response:
    ent = get_entity(entity)
    snapshot = await load_snapshot()
    rec = find_record(snapshot[ent.key], record_id)
    if rec is None:
        logger.info("Edit of unknown %s record %s, closing dialog", ent.key, record_id)
        return _tab_redirect(ent.key)
    dialog = form_dialog(ent, snapshot, values_from_record(ent, rec, today()), record=rec)
    return await render_dashboard(request, ent.key, dialog, snapshot)


@app.get("/{entity}/{record_id}/delete", response_class=HTMLResponse)
async def delete_confirm(request: Request, entity: str, record_id: str) -> Response:
    ent = get_entity(entity)
    snapshot = await load_snapshot()
    rec = find_record(snapshot[ent.key], record_id)
    if rec is None:
        logger.info("Delete of unknown %s record %s, closing dialog", ent.key, record_id)
        return _tab_redirect(ent.key)
    dialog = {
        "mode": "delete",
        "entity": ent,
        "record": rec,
        "title": ent.delete_title,
        "action": f"/{ent.key}/{rec.record_id}/delete",
        "description": delete_description(ent, rec, snapshot, ENTITIES),
    }
    return await render_dashboard(request, ent.key, dialog, snapshot)


async def _save(request: Request, ent: EntityConfig, record_id: Optional[str]) -> Response:
    form = await request.form()
    values = values_from_form(ent, form)
    try:
        payload = build_payload(ent, values, ENTITIES, LIVINGAPPS_BASE_URL)
    except FormError as e:
        logger.info("Rejected %s form: %s", ent.key, e)
        snapshot = await load_snapshot()
        rec = find_record(snapshot[ent.key], record_id) if record_id else None
        if record_id and rec is None:
            rec = Record(record_id=record_id)
        dialog = form_dialog(ent, snapshot, values, record=rec, errors=e.errors)
        return await render_dashboard(request, ent.key, dialog, snapshot, status_code=422)

    async with tab_busy(ent.key) as acquired:
        if not acquired:
            logger.info("Ignoring %s submit: tab busy", ent.key)
            return _tab_redirect(ent.key)
        try:
            if record_id:
                await _gateway().update(ent, record_id, payload)
            else:
                await _gateway().create(ent, payload)
        except GatewayError as e:
            logger.error("Error saving %s: %s", ent.singular.lower(), e)
        else:
            return _tab_redirect(ent.key)

    # Save failed: keep the dialog open with what was entered
    snapshot = await load_snapshot()
    rec = None
    if record_id:
        rec = find_record(snapshot[ent.key], record_id) or Record(record_id=record_id)
    dialog = form_dialog(ent, snapshot, values, record=rec)
    return await render_dashboard(request, ent.key, dialog, snapshot, status_code=502)


@app.post("/{entity}")
async def create_record(request: Request, entity: str) -> Response:
    return await _save(request, get_entity(entity), None)


@app.post("/{entity}/{record_id}")
async def update_record(request: Request, entity: str, record_id: str) -> Response:
    return await _save(request, get_entity(entity), record_id)


@app.post("/{entity}/{record_id}/delete")
async def delete_record(entity: str, record_id: str) -> Response:
    ent = get_entity(entity)
    async with tab_busy(ent.key) as acquired:
        if not acquired:
            logger.info("Ignoring delete of %s: %s tab busy", record_id, ent.key)
            return _tab_redirect(ent.key)
        try:
            await _gateway().delete(ent, record_id)
        except GatewayError as e:
            logger.error("Error deleting %s: %s", ent.singular.lower(), e)
    return _tab_redirect(ent.key)


# Uvicorn runs via: uvicorn kursverwaltung.main:app --host 0.0.0.0 --port $PORT
