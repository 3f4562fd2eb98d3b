from __future__ import annotations

from collections.abc import Generator
from decimal import Decimal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from works_api.agreements.schemas import to_money
from works_api.agreements.store import AgreementStore
from works_api.audit import AuditTrail
from works_api.core.config import get_settings
from works_api.core.database import Base, create_db_engine, create_session_factory
from works_api.main import create_app
from works_api.otel import setup_inmemory_otel
from works_api.simpro.client import EnrichedJob


class StaticSimpro:
    def fetch_enriched_job(self, job_id: str, company_id: int = 0) -> EnrichedJob:
        return EnrichedJob(
            job_id=job_id,
            job_no=f"#{job_id}",
            name="Pergola",
            client_name="Acme",
            site_name="Acme HQ",
            site_address="1 Main St",
            prepared_for="Acme",
            issue_date="01/01/2025",
            total_inc_gst=to_money(Decimal("52000")),
        )


@pytest.fixture(autouse=True)
def setup_env() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel()
    exporter.clear()
    return exporter


@pytest.fixture()
def client(tmp_path: Path, span_exporter: InMemorySpanExporter) -> Generator[TestClient, None, None]:
    engine = create_db_engine(f"sqlite+pysqlite:///{tmp_path / 'otel.db'}")
    Base.metadata.create_all(bind=engine)
    session_factory = create_session_factory(engine)
    app = create_app(
        store=AgreementStore(session_factory),
        audit_trail=AuditTrail(session_factory),
        enrichment_client=StaticSimpro(),
    )
    with TestClient(app) as test_client:
        yield test_client
    engine.dispose()


def _deliver(client: TestClient, job_id: int, correlation_id: str, **headers: str):
    return client.post(
        "/webhooks/simpro",
        json={"name": "Job", "action": "created", "reference": {"jobID": job_id}},
        headers={"X-Correlation-Id": correlation_id, **headers},
    )


def test_request_span_contains_correlation_id(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    response = client.get("/health", headers={"X-Correlation-Id": "otel-corr-1"})
    assert response.status_code == 200

    spans = span_exporter.get_finished_spans()
    assert spans
    assert any(span.attributes.get("correlation_id") == "otel-corr-1" for span in spans)


def test_ingest_and_store_spans_carry_job_id(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    response = _deliver(client, 4242, "otel-hook-1")
    assert response.json()["outcome"] == "created"

    spans = span_exporter.get_finished_spans()
    ingest = [span for span in spans if span.name == "webhooks.ingest"]
    assert ingest
    assert ingest[-1].attributes.get("job_id") == "4242"
    assert ingest[-1].attributes.get("source_kind") == "webhook-v2"
    assert ingest[-1].attributes.get("outcome") == "created"

    creates = [span for span in spans if span.name == "agreements.store.create"]
    assert any(span.attributes.get("job_id") == "4242" and span.attributes.get("outcome") == "stored" for span in creates)


def test_signature_presence_is_recorded_without_value(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    _deliver(client, 4343, "otel-hook-2", **{"x-simpro-signature": "not-checked"})

    spans = span_exporter.get_finished_spans()
    signed = [span for span in spans if span.attributes.get("simpro.signed") is True]
    assert signed
    assert all("not-checked" not in [str(value) for value in span.attributes.values()] for span in spans)


def test_spans_carry_service_resource(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    _deliver(client, 4444, "otel-resource-1")

    spans = span_exporter.get_finished_spans()
    assert spans
    resource = spans[-1].resource.attributes
    assert resource.get("service.name") == "works-agreements-api"
    assert resource.get("service.namespace") == "simpro"


def test_only_webhook_requests_are_marked_as_deliveries(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    client.get("/health", headers={"X-Correlation-Id": "otel-plain-1"})
    _deliver(client, 4545, "otel-plain-2")

    spans = span_exporter.get_finished_spans()
    health = [span for span in spans if span.attributes.get("correlation_id") == "otel-plain-1"]
    delivery = [span for span in spans if span.attributes.get("correlation_id") == "otel-plain-2"]
    assert health and delivery
    assert all("simpro.delivery" not in span.attributes for span in health)
    assert any(span.attributes.get("simpro.delivery") is True for span in delivery)
    assert any(span.attributes.get("simpro.signed") is False for span in delivery)
