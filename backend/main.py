import logging
from contextlib import asynccontextmanager
from typing import Literal

from fastapi import Depends, FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict

import backup
import db
import ingest
import kpis
import risk
from checklist import ChecklistSession, coach_quote
from config import CORS_ORIGINS, DEFAULT_RISK_PCT, VETO_REASONS
from errors import MalformedBackupError, PositionNotFoundError, StorageError, ValidationError
from portfolio import PortfolioStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

_store: PortfolioStore | None = None
_session: ChecklistSession | None = None


def get_store() -> PortfolioStore:
    global _store
    if _store is None:
        db.create_tables()
        _store = PortfolioStore.load()
        for note in _store.diagnostics:
            logger.warning("Startup load problem: %s", note)
    return _store


def get_session() -> ChecklistSession:
    global _session
    if _session is None:
        _session = ChecklistSession()
    return _session


@asynccontextmanager
async def lifespan(app: FastAPI):
    get_store()
    yield


app = FastAPI(title="ZenTrade Portfolio API", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Error mapping ───────────────────────────────────────────────────────────

@app.exception_handler(ValidationError)
async def _validation_error(request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"detail": exc.message, "field": exc.field})


@app.exception_handler(PositionNotFoundError)
async def _not_found(request, exc: PositionNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(MalformedBackupError)
async def _malformed_backup(request, exc: MalformedBackupError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(StorageError)
async def _storage_error(request, exc: StorageError):
    return JSONResponse(status_code=503, content={"detail": str(exc)})


# ─── Request bodies ──────────────────────────────────────────────────────────

Bucket = Literal["ETF", "Trading", "Hedge"]


class PositionIn(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    symbol: str
    shares: float = 0
    avg_cost: float = 0
    current_price: float | None = None
    prev_close: float | None = None
    bucket: Bucket = "Trading"
    notes: str | None = None


class CashIn(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    amount: float


class PricesIn(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    prices: dict[str, float | str]


class StepIn(BaseModel):
    status: Literal["pass", "warn", "fail", "pending"]
    note: str | None = None


class ChecklistFormIn(BaseModel):
    symbol: str | None = None
    price: str | float | None = None
    direction: Literal["Long", "Short"] | None = None
    action: Literal["Buy", "Sell"] | None = None
    bucket: Bucket | None = None
    veto_note: str | None = None
    user_notes: str | None = None


class VetoIn(BaseModel):
    reason: str


class RiskIn(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    entry: float | None = None
    stop: float | None = None
    target: float | None = None
    risk_pct: float = DEFAULT_RISK_PCT
    equity: float | None = None
    attach_to_checklist: bool = False


# ─── Portfolio ───────────────────────────────────────────────────────────────

@app.get("/api/health")
def health(store: PortfolioStore = Depends(get_store)):
    state = store.state
    return {
        "status": "ok",
        "last_update": state["last_update"],
        "holdings": len(state["holdings"]),
        "diagnostics": store.diagnostics,
        "storage": db.list_blobs(),
    }


@app.get("/api/state")
def get_state(store: PortfolioStore = Depends(get_store)):
    return store.state


@app.get("/api/allocation")
def get_allocation(store: PortfolioStore = Depends(get_store)):
    return kpis.compute_allocation(store.state)


@app.post("/api/positions", status_code=201)
def add_position(body: PositionIn, store: PortfolioStore = Depends(get_store)):
    return store.add_position(body.model_dump(exclude_none=True))


@app.put("/api/positions/{position_id}")
def update_position(position_id: str, body: PositionIn, store: PortfolioStore = Depends(get_store)):
    return store.update_position({**body.model_dump(exclude_none=True), "id": position_id})


@app.delete("/api/positions/{position_id}", status_code=204)
def remove_position(position_id: str, store: PortfolioStore = Depends(get_store)):
    store.remove_position(position_id)


@app.put("/api/cash")
def set_cash(body: CashIn, store: PortfolioStore = Depends(get_store)):
    store.set_cash(body.amount)
    return {"cash_usd": store.state["cash_usd"]}


@app.post("/api/eod")
def apply_eod(body: PricesIn, store: PortfolioStore = Depends(get_store)):
    return store.apply_end_of_day_prices(ingest.parse_price_edits(body.prices))


@app.post("/api/prices/fetch")
def fetch_prices(store: PortfolioStore = Depends(get_store)):
    """Fetch live quotes and return the pending price edits. Nothing is applied."""
    fetched, failed = ingest.fetch_prices(store.symbols())
    return {"draft": ingest.build_price_draft(store.state["holdings"], fetched), "failed": failed}


@app.post("/api/prices/refresh")
def refresh_prices(store: PortfolioStore = Depends(get_store)):
    return ingest.run_refresh_cycle(store)


@app.post("/api/monthly-adjustment")
def mark_monthly_adjustment(store: PortfolioStore = Depends(get_store)):
    store.mark_monthly_adjustment()
    return {"last_monthly_adjustment": store.state["last_monthly_adjustment"]}


# ─── Journal ─────────────────────────────────────────────────────────────────

@app.get("/api/journal")
def get_journal(n: int | None = Query(default=None, ge=1), store: PortfolioStore = Depends(get_store)):
    journal = store.journal
    return journal[:n] if n else journal


@app.delete("/api/journal/{entry_id}", status_code=204)
def delete_journal_entry(entry_id: str, store: PortfolioStore = Depends(get_store)):
    store.delete_journal_entry(entry_id)


@app.delete("/api/journal", status_code=204)
def clear_journal(store: PortfolioStore = Depends(get_store)):
    store.clear_journal()


# ─── Checklist ───────────────────────────────────────────────────────────────

@app.get("/api/checklist")
def get_checklist(session: ChecklistSession = Depends(get_session)):
    return {**session.to_dict(), "veto_reasons": VETO_REASONS}


@app.put("/api/checklist/steps/{step_id}")
def set_step(step_id: int, body: StepIn, session: ChecklistSession = Depends(get_session)):
    session.set_step(step_id, body.status, body.note)
    return session.to_dict()


@app.put("/api/checklist/form")
def set_form(body: ChecklistFormIn, session: ChecklistSession = Depends(get_session)):
    session.set_form(**body.model_dump(exclude_none=True))
    return session.to_dict()


@app.post("/api/checklist/vetoes")
def toggle_veto(body: VetoIn, session: ChecklistSession = Depends(get_session)):
    session.toggle_veto(body.reason)
    return session.to_dict()


@app.post("/api/checklist/submit", status_code=201)
def submit_checklist(
    session: ChecklistSession = Depends(get_session),
    store: PortfolioStore = Depends(get_store),
):
    entry = session.submit(store.add_journal_entry)
    return {"entry": entry, "quote": coach_quote(entry["result"])}


@app.post("/api/checklist/reset")
def reset_checklist(session: ChecklistSession = Depends(get_session)):
    session.reset()
    return session.to_dict()


# ─── Risk calculator ─────────────────────────────────────────────────────────

@app.post("/api/risk/size")
def size_position(
    body: RiskIn,
    store: PortfolioStore = Depends(get_store),
    session: ChecklistSession = Depends(get_session),
):
    equity = body.equity if body.equity is not None else risk.account_equity(store.state)
    sizing = risk.size_position(equity, body.entry, body.stop, body.target, body.risk_pct)
    if body.attach_to_checklist and sizing["shares"] > 0:
        session.set_form(risk_calc=risk.snapshot(sizing))
    return sizing


# ─── Backup ──────────────────────────────────────────────────────────────────

@app.get("/api/backup")
def export_backup(store: PortfolioStore = Depends(get_store)):
    document = backup.export_document(store)
    return JSONResponse(
        content=document,
        headers={"Content-Disposition": f'attachment; filename="{backup.backup_filename()}"'},
    )


@app.post("/api/backup")
def import_backup(document: dict, store: PortfolioStore = Depends(get_store)):
    backup.import_document(store, document)
    state = store.state
    return {"holdings": len(state["holdings"]), "journal": len(store.journal)}
