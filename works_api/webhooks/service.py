"""SimPRO webhook ingestion.

One delivery walks a fixed sequence: normalise, duplicate pre-check,
enrich, threshold gate, then either update the existing agreement or
attempt the atomic create. Every delivery ends in exactly one outcome,
which is logged, counted and written to the audit trail.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from works_api.agreements.normalizer import JobEvent, normalize_event
from works_api.agreements.schedule import build_payment_schedule
from works_api.agreements.schemas import WorksAgreementRecord
from works_api.agreements.service import AgreementService, agreement_service
from works_api.agreements.store import AgreementStore
from works_api.agreements.threshold import should_create_agreement
from works_api.audit import SYSTEM_ACTOR, AuditTrail
from works_api.core.config import get_settings
from works_api.metrics import observe_agreement_conflict, observe_agreement_created, observe_webhook_event
from works_api.otel import get_tracer
from works_api.simpro.client import EnrichedJob, JobEnrichmentClient, enriched_job_from_raw, site_address_from
from works_api.simpro.errors import EnrichmentError
from works_api.webhooks.schemas import WebhookAck


logger = logging.getLogger("works_api.webhooks")
tracer = get_tracer("works_api.webhooks.service")

SKIP_NOT_JOB_EVENT = "not a job event"
SKIP_ALREADY_EXISTS = "already exists"
SKIP_BELOW_THRESHOLD = "below threshold"
SKIP_NO_CHANGE = "no change"


class WebhookIngestionService:
    def __init__(self, agreements: AgreementService = agreement_service) -> None:
        self._agreements = agreements

    def ingest(
        self,
        payload: Any,
        *,
        store: AgreementStore,
        audit: AuditTrail,
        enrichment_client: JobEnrichmentClient | None,
    ) -> WebhookAck:
        event = normalize_event(payload)
        if event is None:
            observe_webhook_event("unknown", "unknown", "skipped")
            logger.info("webhook.skipped", extra={"outcome": "skipped", "error": SKIP_NOT_JOB_EVENT})
            return WebhookAck(outcome="skipped", skipped=SKIP_NOT_JOB_EVENT)

        with tracer.start_as_current_span("webhooks.ingest") as span:
            span.set_attribute("job_id", event.job_id)
            span.set_attribute("source_kind", event.source_kind)
            span.set_attribute("action", event.action)
            seen: dict[str, Decimal | None] = {"total": event.embedded_total}
            try:
                ack = self._process(event, seen, store=store, audit=audit, enrichment_client=enrichment_client)
            except EnrichmentError as exc:
                self._finish(event, audit, "enrichment_failed", seen["total"], detail=f"{exc.reason}: {exc}"[:500])
                raise
            except Exception as exc:
                logger.exception(
                    "webhook.failed",
                    extra={
                        "job_id": event.job_id,
                        "action": event.action,
                        "source_kind": event.source_kind,
                        "total_inc_gst": None if seen["total"] is None else str(seen["total"]),
                        "outcome": "error",
                        "error": str(exc),
                    },
                )
                observe_webhook_event(event.source_kind, event.action, "error")
                raise
            span.set_attribute("outcome", ack.outcome)
            return ack

    def _process(
        self,
        event: JobEvent,
        seen: dict[str, Decimal | None],
        *,
        store: AgreementStore,
        audit: AuditTrail,
        enrichment_client: JobEnrichmentClient | None,
    ) -> WebhookAck:
        if event.action == "created":
            existing = store.get(event.job_id)
            if existing is not None:
                self._finish(event, audit, "already_exists", existing.total_inc_gst)
                return WebhookAck(outcome="skipped", skipped=SKIP_ALREADY_EXISTS, job_id=event.job_id)

        enriched = self._enrich(event, enrichment_client)
        total = seen["total"] = enriched.total_inc_gst
        threshold = get_settings().works_agreement_threshold
        if not should_create_agreement(total, threshold):
            self._finish(event, audit, "below_threshold", total, threshold=threshold)
            return WebhookAck(
                outcome="skipped",
                skipped=SKIP_BELOW_THRESHOLD,
                job_id=event.job_id,
                total_inc_gst=total,
                threshold=threshold,
            )

        if event.action == "updated":
            ack = self._apply_update(event, store=store, audit=audit, total=total)
            if ack is not None:
                return ack

        agreement = self._agreements.build_from_enriched(enriched, provenance="webhook")
        result = store.create(agreement)
        if not result.stored:
            observe_agreement_conflict("webhook")
            self._finish(event, audit, "already_exists", total)
            return WebhookAck(outcome="skipped", skipped=SKIP_ALREADY_EXISTS, job_id=event.job_id)

        observe_agreement_created("webhook")
        self._finish(event, audit, "created", total, payment_count=len(result.agreement.payment_schedule))
        return _stored_ack("created", result.agreement)

    def _apply_update(
        self,
        event: JobEvent,
        *,
        store: AgreementStore,
        audit: AuditTrail,
        total: Decimal,
    ) -> WebhookAck | None:
        """Refresh the total and schedule of an existing agreement; ``None`` when there is none."""
        existing = store.get(event.job_id)
        if existing is None:
            return None
        if existing.total_inc_gst == total:
            self._finish(event, audit, "no_change", total)
            return WebhookAck(outcome="skipped", skipped=SKIP_NO_CHANGE, job_id=event.job_id, total_inc_gst=total)

        updated = store.update(
            event.job_id,
            {"total_inc_gst": total, "payment_schedule": build_payment_schedule(total)},
        )
        if updated is None:
            return None
        self._finish(
            event,
            audit,
            "updated",
            total,
            payment_count=len(updated.payment_schedule),
            detail=f"total {existing.total_inc_gst} -> {total}",
        )
        return _stored_ack("updated", updated)

    def _enrich(self, event: JobEvent, client: JobEnrichmentClient | None) -> EnrichedJob:
        if client is not None:
            return client.fetch_enriched_job(event.job_id, event.company_id)
        if event.source_kind == "webhook-v1" and event.embedded:
            site = event.embedded.get("Site")
            address = site_address_from(site) if isinstance(site, Mapping) else ""
            return enriched_job_from_raw(event.embedded, job_id=event.job_id, site_address=address)
        raise EnrichmentError("SimPRO client is not configured", reason="not_configured", job_id=event.job_id)

    @staticmethod
    def _finish(
        event: JobEvent,
        audit: AuditTrail,
        outcome: str,
        total: Decimal | None,
        *,
        threshold: Decimal | None = None,
        payment_count: int | None = None,
        detail: str | None = None,
    ) -> None:
        observe_webhook_event(event.source_kind, event.action, outcome)
        extra: dict[str, Any] = {
            "job_id": event.job_id,
            "company_id": event.company_id,
            "action": event.action,
            "source_kind": event.source_kind,
            "outcome": outcome,
        }
        if total is not None:
            extra["total_inc_gst"] = str(total)
        if threshold is not None:
            extra["threshold"] = str(threshold)
        if payment_count is not None:
            extra["payment_count"] = payment_count
        if detail and outcome == "enrichment_failed":
            extra["error"] = detail
        level = logging.WARNING if outcome == "enrichment_failed" else logging.INFO
        logger.log(level, f"webhook.{outcome}", extra=extra)

        audit.record(
            job_id=event.job_id,
            source_kind=event.source_kind,
            action=event.action,
            outcome=outcome,
            actor_id=SYSTEM_ACTOR,
            detail=detail,
            total_inc_gst=total,
        )


def _stored_ack(outcome: str, agreement: WorksAgreementRecord) -> WebhookAck:
    return WebhookAck(
        outcome=outcome,  # type: ignore[arg-type]
        created=True if outcome == "created" else None,
        updated=True if outcome == "updated" else None,
        job_id=agreement.job_id,
        total_inc_gst=agreement.total_inc_gst,
        payment_count=len(agreement.payment_schedule),
    )


webhook_service = WebhookIngestionService()
