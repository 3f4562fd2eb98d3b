from __future__ import annotations

from fastapi import Request

from works_api.agreements.store import AgreementStore
from works_api.audit import AuditTrail
from works_api.simpro.client import JobEnrichmentClient


def get_agreement_store(request: Request) -> AgreementStore:
    return request.app.state.agreement_store


def get_audit_trail(request: Request) -> AuditTrail:
    return request.app.state.audit_trail


def get_enrichment_client(request: Request) -> JobEnrichmentClient | None:
    return getattr(request.app.state, "enrichment_client", None)
