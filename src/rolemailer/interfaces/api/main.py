# --- START OF FILE: src/rolemailer/interfaces/api/main.py ---
import logging

from fastapi import Depends, FastAPI, HTTPException

from rolemailer import __version__
from rolemailer.config import settings
from rolemailer.boot import build_services
from rolemailer.logging_conf import setup_logging
from rolemailer.application.engine import MailerEngine
from rolemailer.domain.errors import MailerError
from rolemailer.interfaces.api.deps import get_engine, require_api_key
from rolemailer.interfaces.api.metrics import router as metrics_router
from rolemailer.interfaces.api.schemas import (
    DispatchReportOut,
    DispatchRunIn,
    TokenCheckOut,
    TransitionIn,
    TransitionOut,
)

log = logging.getLogger(__name__)

app = FastAPI(title="rolemailer API", version=__version__)
app.state.services = None

if settings.METRICS_ENABLED:
    app.include_router(metrics_router)

@app.on_event("startup")
async def on_startup():
    setup_logging()
    log.info("🚀 Application startup sequence initiated...")
    if app.state.services is None:
        app.state.services = build_services()
    engine: MailerEngine = app.state.services["engine"]
    engine.reload_rules()

    ticker = app.state.services.get("ticker")
    if ticker and settings.RUN_TICKER:
        ticker.start()
    log.info("🚀 Application startup complete.")

@app.on_event("shutdown")
async def on_shutdown():
    services = app.state.services or {}
    ticker = services.get("ticker")
    if ticker: ticker.stop()

@app.get("/")
def root(): return {"message": "rolemailer API Running"}

@app.get("/health")
def health(): return {"status": "ok"}

@app.post("/transitions", response_model=TransitionOut, dependencies=[Depends(require_api_key)])
def record_transition(payload: TransitionIn, engine: MailerEngine = Depends(get_engine)):
    """Role-change notification from the host."""
    try:
        record = engine.record_transition(payload.user_id, payload.new_role, payload.previous_roles)
    except MailerError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return TransitionOut.model_validate(record)

@app.post("/dispatch/run", response_model=DispatchReportOut, dependencies=[Depends(require_api_key)])
def run_dispatch(payload: DispatchRunIn | None = None, engine: MailerEngine = Depends(get_engine)):
    """Run one pass now, outside the regular interval."""
    report = engine.run_pass(now=payload.now if payload else None)
    return DispatchReportOut.model_validate(report)

@app.post("/rules/reload", dependencies=[Depends(require_api_key)])
def reload_rules(engine: MailerEngine = Depends(get_engine)):
    table = engine.reload_rules()
    return {"rules": len(table.rules), "events": len(table.events), "errors": [str(e) for e in table.errors]}

@app.get("/tokens/{token}", response_model=TokenCheckOut)
def check_token(token: str, engine: MailerEngine = Depends(get_engine)):
    """Validates the token carried by a follow-up link (e.g. a cancellation survey)."""
    user_id = engine.verify_token(token)
    if user_id is None:
        raise HTTPException(status_code=404, detail="Your access code is invalid. Please try again.")
    return TokenCheckOut(valid=True, user_id=user_id)
# --- END OF FILE ---
