from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response

# Importing registers the mailer collectors on the default registry.
from rolemailer.infrastructure.monitoring import metrics as _mailer_metrics  # noqa: F401

router = APIRouter(prefix="/metrics", tags=["metrics"])

@router.get("")
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
