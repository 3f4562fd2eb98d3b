from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from works_api.agreements.schemas import AgreementAuditRead
from works_api.context import get_correlation_id
from works_api.models.audit import AgreementAuditEntry


SYSTEM_ACTOR = "simpro-webhook"


class AuditTrail:
    """Append-only log of pipeline outcomes, one row per delivery or operator call."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def record(
        self,
        *,
        job_id: str,
        source_kind: str,
        action: str,
        outcome: str,
        actor_id: str = SYSTEM_ACTOR,
        detail: str | None = None,
        total_inc_gst: Decimal | None = None,
        correlation_id: str | None = None,
    ) -> AgreementAuditRead:
        entry = AgreementAuditEntry(
            job_id=job_id,
            source_kind=source_kind,
            action=action,
            outcome=outcome,
            detail=detail,
            actor_id=actor_id,
            total_inc_gst=total_inc_gst,
            correlation_id=correlation_id or get_correlation_id(),
        )
        with self._session_factory() as session:
            session.add(entry)
            session.commit()
            return AgreementAuditRead.model_validate(entry)

    def list_for_job(self, job_id: str) -> list[AgreementAuditRead]:
        with self._session_factory() as session:
            rows = session.scalars(
                select(AgreementAuditEntry)
                .where(AgreementAuditEntry.job_id == job_id)
                .order_by(AgreementAuditEntry.id.desc())
            ).all()
            return [AgreementAuditRead.model_validate(row) for row in rows]
