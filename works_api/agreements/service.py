from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from fastapi import HTTPException, status

from works_api.agreements.normalizer import SourceKind
from works_api.agreements.schedule import build_payment_schedule
from works_api.agreements.schemas import (
    AgreementAuditRead,
    Provenance,
    WorksAgreementCreate,
    WorksAgreementRecord,
    WorksAgreementUpdate,
    to_money,
)
from works_api.agreements.store import AgreementStore
from works_api.agreements.threshold import should_create_agreement
from works_api.audit import AuditTrail
from works_api.core.config import get_settings
from works_api.metrics import observe_agreement_conflict, observe_agreement_created
from works_api.simpro.client import EnrichedJob


logger = logging.getLogger("works_api.agreements")

DEFAULT_CLIENT_NAME = "Client"


class AgreementExistsError(Exception):
    def __init__(self, existing: WorksAgreementRecord) -> None:
        self.existing = existing
        super().__init__(f"works agreement already exists for job {existing.job_id}")


@dataclass(slots=True)
class AgreementService:
    def build_from_enriched(self, job: EnrichedJob, *, provenance: Provenance = "webhook") -> WorksAgreementRecord:
        settings = get_settings()
        client_name = job.client_name or DEFAULT_CLIENT_NAME
        total = to_money(job.total_inc_gst)
        return WorksAgreementRecord(
            job_id=job.job_id,
            job_no=job.job_no,
            job_name=job.name,
            client_name=client_name,
            site_address=job.site_address,
            site_name=job.site_name or client_name,
            initial_works=job.name,
            colour_scheme=settings.default_colour_scheme,
            total_inc_gst=total,
            payment_schedule=build_payment_schedule(total),
            agreement_date=job.issue_date,
            created_at=datetime.now(timezone.utc),
            provenance=provenance,
        )

    def build_from_request(self, payload: WorksAgreementCreate) -> WorksAgreementRecord:
        settings = get_settings()
        job_id = payload.job_id
        client_name = payload.client_name or DEFAULT_CLIENT_NAME
        return WorksAgreementRecord(
            job_id=job_id,
            job_no=payload.job_no or f"#{job_id}",
            job_name=payload.job_name or f"Job {job_id}",
            client_name=client_name,
            site_address=payload.site_address or "",
            site_name=payload.site_name or payload.client_name or "",
            initial_works=payload.initial_works or "",
            colour_scheme=payload.colour_scheme or settings.default_colour_scheme,
            total_inc_gst=payload.total_inc_gst,
            payment_schedule=build_payment_schedule(payload.total_inc_gst),
            agreement_date=payload.agreement_date or date.today().strftime("%d/%m/%Y"),
            created_at=datetime.now(timezone.utc),
            provenance="manual",
        )

    def list_agreements(self, store: AgreementStore) -> list[WorksAgreementRecord]:
        return sorted(store.list_all(), key=lambda item: item.created_at, reverse=True)

    def get_agreement(self, store: AgreementStore, job_id: str) -> WorksAgreementRecord:
        agreement = store.get(job_id)
        if agreement is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="works agreement not found")
        return agreement

    def create_agreement(
        self,
        store: AgreementStore,
        audit: AuditTrail,
        actor_id: str,
        payload: WorksAgreementCreate,
    ) -> WorksAgreementRecord:
        threshold = get_settings().works_agreement_threshold
        if not should_create_agreement(payload.total_inc_gst, threshold):
            self._record(audit, payload.job_id, "create", "below_threshold", actor_id, payload.total_inc_gst)
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"total {payload.total_inc_gst} is below the {threshold} threshold",
            )

        result = store.create(self.build_from_request(payload))
        if not result.stored:
            observe_agreement_conflict("manual")
            self._record(audit, payload.job_id, "create", "already_exists", actor_id, payload.total_inc_gst)
            raise AgreementExistsError(result.agreement)

        observe_agreement_created("manual")
        self._record(audit, payload.job_id, "create", "created", actor_id, payload.total_inc_gst)
        logger.info(
            "agreement.created",
            extra={
                "job_id": payload.job_id,
                "provenance": "manual",
                "outcome": "created",
                "total_inc_gst": str(payload.total_inc_gst),
            },
        )
        return result.agreement

    def update_agreement(
        self,
        store: AgreementStore,
        audit: AuditTrail,
        actor_id: str,
        job_id: str,
        payload: WorksAgreementUpdate,
    ) -> WorksAgreementRecord:
        changes = {key: value for key, value in payload.model_dump(exclude_unset=True).items() if value is not None}
        total = changes.get("total_inc_gst")
        if total is not None:
            changes["payment_schedule"] = build_payment_schedule(total)

        updated = store.update(job_id, changes)
        if updated is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="works agreement not found")

        detail = ", ".join(sorted(key for key in changes if key != "payment_schedule")) or None
        self._record(audit, job_id, "update", "updated", actor_id, total, detail=detail)
        return updated

    def delete_agreement(self, store: AgreementStore, audit: AuditTrail, actor_id: str, job_id: str) -> None:
        if not store.delete(job_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="works agreement not found")
        self._record(audit, job_id, "delete", "deleted", actor_id, None)
        logger.info("agreement.deleted", extra={"job_id": job_id, "outcome": "deleted"})

    def list_audit(self, audit: AuditTrail, job_id: str) -> list[AgreementAuditRead]:
        return audit.list_for_job(job_id)

    @staticmethod
    def _record(
        audit: AuditTrail,
        job_id: str,
        action: str,
        outcome: str,
        actor_id: str,
        total_inc_gst: Decimal | None,
        *,
        detail: str | None = None,
        source_kind: SourceKind = "manual",
    ) -> None:
        audit.record(
            job_id=job_id,
            source_kind=source_kind,
            action=action,
            outcome=outcome,
            actor_id=actor_id,
            detail=detail,
            total_inc_gst=total_inc_gst,
        )


agreement_service = AgreementService()
