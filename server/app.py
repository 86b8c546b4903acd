"""FastAPI server for the Incorporation Order wizard"""
from __future__ import annotations

import time
import json
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException, Body, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from wizard.catalog import catalog_snapshot
from wizard.config import PORT, LOG_DIR, STRICT_RECOMMENDATIONS, MODEL_SMART, MODEL_FAST
from wizard.recommendations import RecommendationClient, RecommendationUnavailable
from wizard.session import WizardSession, ActionInProgress
from wizard.state import InvalidUpdate, ShareholderType, resolve_addons
from wizard.validation import WizardValidationError


# ────────── SESSION STORE ──────────

sessions: dict[str, WizardSession] = {}

_client: Optional[RecommendationClient] = None


def get_client() -> RecommendationClient:
    """Shared recommendation client; the chat models are built on first call."""
    global _client
    if _client is None:
        _client = RecommendationClient()
    return _client


# ────────── SESSION LOGGING ──────────

LOG_DIR.mkdir(parents=True, exist_ok=True)


def _log_turn(session_id: str, turn: dict):
    """Append an action entry to the session's JSONL log file."""
    log_file = LOG_DIR / f"{session_id}.jsonl"
    turn["timestamp"] = datetime.utcnow().isoformat() + "Z"
    with open(log_file, "a") as f:
        f.write(json.dumps(turn, default=str) + "\n")


# ────────── APP ──────────

app = FastAPI(title="Incorporation Order Wizard")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup():
    print(f"[STARTUP] models={MODEL_SMART},{MODEL_FAST} | strict={sorted(STRICT_RECOMMENDATIONS) or 'none'} | logs={LOG_DIR}")


@app.exception_handler(WizardValidationError)
async def validation_error(request: Request, exc: WizardValidationError):
    _log_error(request, exc)
    return JSONResponse(status_code=422, content={"detail": "Validation failed", "errors": exc.errors})


@app.exception_handler(InvalidUpdate)
async def invalid_update(request: Request, exc: InvalidUpdate):
    _log_error(request, exc)
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ActionInProgress)
async def action_in_progress(request: Request, exc: ActionInProgress):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(RecommendationUnavailable)
async def recommendation_unavailable(request: Request, exc: RecommendationUnavailable):
    _log_error(request, exc)
    return JSONResponse(status_code=503, content={"detail": "Recommendation unavailable", "call": exc.call})


# ────────── MODELS ──────────

class ContactRequest(BaseModel):
    email: str
    phone: str


class SelectRecommendationRequest(BaseModel):
    index: int = 0


class IncorporationRequest(BaseModel):
    jurisdiction: str
    state: Optional[str] = None
    company_type: str = ""
    package_name: Optional[str] = None


class AddonRequest(BaseModel):
    selected: Optional[bool] = None
    details: Optional[dict] = None


class SummaryRequest(BaseModel):
    apply: bool = False


class DirectorRequest(BaseModel):
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class NewShareholderRequest(BaseModel):
    type: ShareholderType = ShareholderType.INDIVIDUAL


class ShareholderRequest(BaseModel):
    type: Optional[ShareholderType] = None
    full_name_or_entity_name: Optional[str] = None
    registration_number: Optional[str] = None
    share_allocation: Optional[str] = None


class BillingRequest(BaseModel):
    use_delivery_address: Optional[bool] = None
    use_primary_contact_address: Optional[bool] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state_or_province: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class CheckoutRequest(BaseModel):
    payment_method: Optional[str] = None


# ────────── ENDPOINTS ──────────

@app.get("/")
async def root():
    return {"status": "Incorporation Order Wizard API"}


@app.get("/health")
async def health():
    return {"status": "healthy", "sessions": len(sessions)}


@app.get("/api/catalog")
async def catalog():
    return catalog_snapshot()


@app.post("/api/session")
async def create_session():
    """Create a new order session with every default in place."""
    start_time = time.time()
    session = WizardSession(client=get_client())
    sessions[session.session_id] = session
    return _respond(session, "create_session", start_time)


@app.get("/api/session/{session_id}")
async def get_session(session_id: str):
    session = _get_session(session_id)
    return _response_body(session, api_trace=[])


@app.patch("/api/session/{session_id}")
async def patch_session(session_id: str, update: dict = Body(...)):
    """Merge a raw partial update (composites merged, sequences replaced)."""
    session = _get_session(session_id)
    start_time = time.time()
    session.update(update)
    return _respond(session, "update", start_time, {"keys": sorted(update)})


@app.post("/api/session/{session_id}/contact")
async def submit_contact(session_id: str, req: ContactRequest):
    session = _get_session(session_id)
    start_time = time.time()
    session.submit_contact(req.email, req.phone)
    return _respond(session, "contact", start_time)


@app.post("/api/session/{session_id}/recommendations/incorporation")
async def recommend_incorporation(session_id: str):
    session = _get_session(session_id)
    start_time = time.time()
    await session.recommend_incorporation()
    best = session.state["incorporation"]["best_recommendation"]
    return _respond(session, "recommend_incorporation", start_time, {
        "best": f"{best['jurisdiction']} / {best['company_type']}" if best else None,
    })


@app.post("/api/session/{session_id}/recommendations/incorporation/select")
async def select_recommendation(session_id: str, req: SelectRecommendationRequest):
    session = _get_session(session_id)
    start_time = time.time()
    session.select_recommendation(req.index)
    return _respond(session, "select_recommendation", start_time, {"index": req.index})


@app.post("/api/session/{session_id}/incorporation")
async def select_incorporation(session_id: str, req: IncorporationRequest):
    session = _get_session(session_id)
    start_time = time.time()
    session.select_incorporation(req.jurisdiction, req.state, req.company_type, req.package_name)
    return _respond(session, "select_incorporation", start_time, req.model_dump())


@app.post("/api/session/{session_id}/addons/{addon_id}")
async def update_addon(session_id: str, addon_id: str, req: AddonRequest):
    session = _get_session(session_id)
    start_time = time.time()
    if req.selected is not None:
        session.toggle_addon(addon_id, req.selected)
    if req.details is not None:
        session.set_addon_details(addon_id, req.details)
    return _respond(session, "addon", start_time, {"addon_id": addon_id, "selected": req.selected})


@app.post("/api/session/{session_id}/recommendations/addons")
async def recommend_addons(session_id: str):
    session = _get_session(session_id)
    start_time = time.time()
    await session.recommend_addons()
    recommended = [a["id"] for a in session.state["add_ons"] if a["recommendation_reasoning"]]
    return _respond(session, "recommend_addons", start_time, {"recommended": recommended})


@app.post("/api/session/{session_id}/prefill")
async def prefill(session_id: str):
    session = _get_session(session_id)
    start_time = time.time()
    await session.prefill_details()
    return _respond(session, "prefill", start_time)


@app.post("/api/session/{session_id}/summary")
async def summarize(session_id: str, req: SummaryRequest):
    session = _get_session(session_id)
    start_time = time.time()
    summary = await session.summarize_description(apply=req.apply)
    body = _respond(session, "summary", start_time, {"applied": req.apply})
    body["summary"] = summary
    return body


@app.post("/api/session/{session_id}/directors")
async def add_director(session_id: str):
    session = _get_session(session_id)
    start_time = time.time()
    session.add_director()
    return _respond(session, "add_director", start_time)


@app.patch("/api/session/{session_id}/directors/{index}")
async def update_director(session_id: str, index: int, req: DirectorRequest):
    session = _get_session(session_id)
    start_time = time.time()
    session.update_director(index, **req.model_dump(exclude_none=True))
    return _respond(session, "update_director", start_time, {"index": index})


@app.delete("/api/session/{session_id}/directors/{index}")
async def remove_director(session_id: str, index: int):
    session = _get_session(session_id)
    start_time = time.time()
    session.remove_director(index)
    return _respond(session, "remove_director", start_time, {"index": index})


@app.post("/api/session/{session_id}/shareholders")
async def add_shareholder(session_id: str, req: NewShareholderRequest):
    session = _get_session(session_id)
    start_time = time.time()
    session.add_shareholder(req.type)
    return _respond(session, "add_shareholder", start_time, {"type": req.type.value})


@app.patch("/api/session/{session_id}/shareholders/{index}")
async def update_shareholder(session_id: str, index: int, req: ShareholderRequest):
    session = _get_session(session_id)
    start_time = time.time()
    fields = req.model_dump(exclude_none=True, mode="json")
    session.update_shareholder(index, **fields)
    return _respond(session, "update_shareholder", start_time, {"index": index})


@app.delete("/api/session/{session_id}/shareholders/{index}")
async def remove_shareholder(session_id: str, index: int):
    session = _get_session(session_id)
    start_time = time.time()
    session.remove_shareholder(index)
    return _respond(session, "remove_shareholder", start_time, {"index": index})


@app.post("/api/session/{session_id}/billing")
async def update_billing(session_id: str, req: BillingRequest):
    """Billing address fields, or copy the delivery / contact address."""
    session = _get_session(session_id)
    start_time = time.time()
    address = req.model_dump(exclude_none=True, exclude={"use_delivery_address", "use_primary_contact_address"})
    if address:
        session.update({"billing_address": address})
    if req.use_delivery_address is not None:
        session.use_delivery_address_for_billing(req.use_delivery_address)
    if req.use_primary_contact_address is not None and not req.use_delivery_address:
        session.use_contact_address_for_billing(req.use_primary_contact_address)
    return _respond(session, "billing", start_time)


@app.delete("/api/session/{session_id}/items/{item_id}")
async def remove_item(session_id: str, item_id: str):
    session = _get_session(session_id)
    start_time = time.time()
    session.remove_item(item_id)
    return _respond(session, "remove_item", start_time, {"item_id": item_id})


@app.post("/api/session/{session_id}/checkout")
async def checkout(session_id: str, req: CheckoutRequest):
    session = _get_session(session_id)
    start_time = time.time()
    session.checkout(req.payment_method)
    return _respond(session, "checkout", start_time, {
        "order_id": session.state["order_id"],
        "order_status": session.state["order_status"],
    })


@app.get("/api/session/{session_id}/order")
async def get_order(session_id: str):
    """Final order for a checked-out session."""
    session = _get_session(session_id)
    state = session.state
    if not state["order_id"]:
        return {"status": "in_progress", "order": None}

    return {
        "status": state["order_status"],
        "order": {
            "order_id": state["order_id"],
            "payment_date": state["payment_date"],
            "payment_method": state["payment_method"],
            "items": session.items,
            "total": session.total,
            "company_names": state["company_names"],
            "primary_contact": state["primary_contact"],
        },
    }


@app.get("/api/logs")
async def list_logs():
    """List all session logs."""
    logs = sorted(LOG_DIR.glob("*.jsonl"), key=lambda f: f.stat().st_mtime, reverse=True)
    return [
        {
            "session_id": f.stem,
            "size_kb": round(f.stat().st_size / 1024, 1),
            "modified": datetime.fromtimestamp(f.stat().st_mtime).isoformat(),
        }
        for f in logs[:50]
    ]


@app.get("/api/logs/{session_id}")
async def get_log(session_id: str):
    """Get full session log."""
    log_file = LOG_DIR / f"{session_id}.jsonl"
    if not log_file.exists():
        raise HTTPException(status_code=404, detail="Log not found")

    turns = [json.loads(line) for line in log_file.read_text().strip().split("\n") if line.strip()]
    total_time = sum(t.get("turn_time", 0) for t in turns)
    return {
        "session_id": session_id,
        "total_turns": len(turns),
        "total_time": round(total_time, 2),
        "completed": any(t.get("order_id") for t in turns),
        "errors": sum(1 for t in turns if t.get("error")),
        "turns": turns,
    }


# ────────── HELPERS ──────────

def _get_session(session_id: str) -> WizardSession:
    session = sessions.get(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def _respond(session: WizardSession, action: str, start_time: float, details: dict = None) -> dict:
    """Log the action and build the standard response body."""
    turn_time = round(time.time() - start_time, 2)
    api_trace = session.drain_trace()
    body = _response_body(session, api_trace)
    body["turn_time"] = turn_time

    _log_turn(session.session_id, {
        "action": action,
        "turn_time": turn_time,
        "step": body["step"],
        "items_count": len(body["items"]),
        "total": body["total"],
        "order_id": session.state["order_id"],
        "apis": [t["api"] for t in api_trace],
        **(details or {}),
    })
    return body


def _response_body(session: WizardSession, api_trace: list) -> dict:
    return {
        "session_id": session.session_id,
        "state": _safe_state(session),
        "items": session.items,
        "total": session.total,
        "step": session.current_step(),
        "api_trace": api_trace,
    }


def _safe_state(session: WizardSession) -> dict:
    """Return a JSON-safe version of the state, with add-ons joined to the catalog."""
    state = session.state
    return {
        **state,
        "add_ons": resolve_addons(state),
    }


def _log_error(request: Request, exc: Exception):
    session_id = request.path_params.get("session_id")
    if session_id and session_id in sessions:
        _log_turn(session_id, {
            "action": f"{request.method} {request.url.path}",
            "error": f"{type(exc).__name__}: {exc}",
        })
        sessions[session_id].drain_trace()


# ────────── MAIN ──────────

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
