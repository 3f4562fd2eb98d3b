from __future__ import annotations

import hmac
import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse

from works_api.agreements.store import AgreementStore
from works_api.api.deps import get_agreement_store, get_audit_trail, get_enrichment_client
from works_api.audit import AuditTrail
from works_api.context import get_correlation_id
from works_api.core.config import get_settings
from works_api.metrics import observe_webhook_event
from works_api.simpro.client import JobEnrichmentClient
from works_api.simpro.errors import EnrichmentError
from works_api.webhooks.schemas import WebhookAck, WebhookLiveness
from works_api.webhooks.service import webhook_service


logger = logging.getLogger("works_api.webhooks")

SIGNATURE_HEADER = "x-simpro-signature"

router = APIRouter(tags=["webhooks"])


def verify_signature(signature: str | None = Header(default=None, alias=SIGNATURE_HEADER)) -> None:
    secret = get_settings().simpro_webhook_secret
    if not secret:
        return
    if signature is None or not hmac.compare_digest(signature.encode(), secret.encode()):
        observe_webhook_event("unknown", "unknown", "unauthorized")
        logger.warning("webhook.unauthorized", extra={"outcome": "unauthorized"})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid webhook signature")


async def read_webhook_payload(request: Request, _: None = Depends(verify_signature)) -> Any:
    """Decode the delivery body once the signature has been accepted.

    An empty or undecodable body yields ``None``, which ingestion acknowledges
    as "not a job event".
    """
    raw = await request.body()
    if not raw.strip():
        return None
    try:
        return json.loads(raw)
    except ValueError as exc:
        logger.warning("webhook.invalid_json", extra={"error": str(exc)[:200]})
        return None


def _failure(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"received": False, "error": message, "correlationId": get_correlation_id()},
    )


@router.post("/webhooks/simpro", response_model=WebhookAck, response_model_exclude_none=True)
@router.post("/webhooks", response_model=WebhookAck, response_model_exclude_none=True, include_in_schema=False)
def receive_webhook(
    payload: Any = Depends(read_webhook_payload),
    store: AgreementStore = Depends(get_agreement_store),
    audit: AuditTrail = Depends(get_audit_trail),
    enrichment_client: JobEnrichmentClient | None = Depends(get_enrichment_client),
) -> WebhookAck | JSONResponse:
    try:
        return webhook_service.ingest(payload, store=store, audit=audit, enrichment_client=enrichment_client)
    except EnrichmentError:
        return _failure("job enrichment failed")
    except Exception:
        # Already logged with job context by the ingestion service.
        return _failure("internal error")


@router.get("/webhooks/simpro", response_model=WebhookLiveness)
@router.get("/webhooks", response_model=WebhookLiveness, include_in_schema=False)
def webhook_liveness() -> WebhookLiveness:
    return WebhookLiveness(threshold=get_settings().works_agreement_threshold)
