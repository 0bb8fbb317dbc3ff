# File: src/rolemailer/application/services/__init__.py

from .resolver_service import DueEventResolver
from .dispatch_service import EventDispatcher
from .transition_service import TransitionRecorder
from .nonce_service import NonceLedger
from .lease_service import DispatchLease
from .audit_service import AuditService

__all__ = [
    "DueEventResolver",
    "EventDispatcher",
    "TransitionRecorder",
    "NonceLedger",
    "DispatchLease",
    "AuditService",
]
