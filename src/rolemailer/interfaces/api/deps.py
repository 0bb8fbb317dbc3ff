# src/rolemailer/interfaces/api/deps.py

from __future__ import annotations
from fastapi import Header, HTTPException, Request

from rolemailer.config import settings
from rolemailer.application.engine import MailerEngine

def get_engine(request: Request) -> MailerEngine:
    """Dependency to get the MailerEngine instance from the app state."""
    services = request.app.state.services or {}
    engine = services.get("engine")
    if not engine:
        raise HTTPException(status_code=503, detail="Mailer engine is currently unavailable.")
    return engine

def require_api_key(x_api_key: str | None = Header(default=None)):
    if settings.API_KEY and x_api_key != settings.API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return True
