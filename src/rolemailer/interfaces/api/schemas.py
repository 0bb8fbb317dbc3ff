# --- START OF FILE: src/rolemailer/interfaces/api/schemas.py ---
from __future__ import annotations
from typing import Dict, List
from pydantic import BaseModel, ConfigDict, Field, field_validator

class TransitionIn(BaseModel):
    user_id: int
    new_role: str
    previous_roles: List[str] = Field(default_factory=list)

    @field_validator("previous_roles", mode="before")
    def _v_roles(cls, v):
        if v is None: return []
        if isinstance(v, str): return [v]
        return v

class TransitionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    user_id: int
    old_role: str
    new_role: str
    change_timestamp: int

class EventOutcomeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    event_name: str
    sent: List[int] = []
    marked: List[int] = []
    failed: Dict[int, str] = {}
    skipped: bool = False
    error: str | None = None

class DispatchReportOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    now: int
    skipped: bool = False
    reason: str | None = None
    outcomes: Dict[str, EventOutcomeOut] = {}
    errors: List[str] = []
    sent_count: int = 0
    marked_count: int = 0

class DispatchRunIn(BaseModel):
    now: int | None = None

class TokenCheckOut(BaseModel):
    valid: bool
    user_id: int | None = None
# --- END OF FILE ---
