from __future__ import annotations

import threading
import time
from collections.abc import Generator
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Engine

from works_api.agreements.schemas import to_money
from works_api.agreements.store import AgreementStore
from works_api.audit import AuditTrail
from works_api.core.config import get_settings
from works_api.core.database import Base, create_db_engine, create_session_factory
from works_api.main import create_app
from works_api.simpro.client import EnrichedJob
from works_api.simpro.errors import EnrichmentError


class FakeSimpro:
    def __init__(self) -> None:
        self.jobs: dict[str, EnrichedJob] = {}
        self.calls: list[tuple[str, int]] = []
        self.gate: threading.Event | None = None

    def add(self, job_id: str, total: str, **fields: str) -> EnrichedJob:
        job = EnrichedJob(
            job_id=job_id,
            job_no=fields.get("job_no", f"#{job_id}"),
            name=fields.get("name", "Bathroom renovation"),
            client_name=fields.get("client_name", "Acme Builders"),
            site_name=fields.get("site_name", "Acme HQ"),
            site_address=fields.get("site_address", "1 Main St, Perth, WA, 6000"),
            prepared_for=fields.get("prepared_for", "Jo Smith"),
            issue_date=fields.get("issue_date", "05/03/2024"),
            total_inc_gst=to_money(total),
        )
        self.jobs[job_id] = job
        return job

    def fetch_enriched_job(self, job_id: str, company_id: int = 0) -> EnrichedJob:
        self.calls.append((job_id, company_id))
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if job_id not in self.jobs:
            raise EnrichmentError("SimPRO HTTP 404", reason="http_404", job_id=job_id)
        return self.jobs[job_id]


@pytest.fixture(autouse=True)
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    for name in ("SIMPRO_WEBHOOK_SECRET", "SIMPRO_BASE_URL", "SIMPRO_ACCESS_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("WORKS_AGREEMENT_THRESHOLD", "20000")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def engine(tmp_path: Path) -> Generator[Engine, None, None]:
    engine = create_db_engine(f"sqlite+pysqlite:///{tmp_path / 'webhooks.db'}")
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def store(engine: Engine) -> AgreementStore:
    return AgreementStore(create_session_factory(engine))


@pytest.fixture()
def audit_trail(engine: Engine) -> AuditTrail:
    return AuditTrail(create_session_factory(engine))


@pytest.fixture()
def simpro() -> FakeSimpro:
    return FakeSimpro()


@pytest.fixture()
def client(store: AgreementStore, audit_trail: AuditTrail, simpro: FakeSimpro) -> Generator[TestClient, None, None]:
    app = create_app(store=store, audit_trail=audit_trail, enrichment_client=simpro)
    with TestClient(app) as test_client:
        yield test_client


def _wait_until(predicate, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        assert time.monotonic() < deadline, "timed out waiting for deliveries"
        time.sleep(0.01)


def _v2(job_id: int | str, action: str = "created", company_id: int = 0) -> dict:
    return {
        "ID": f"job.{action}",
        "name": "Job",
        "action": action,
        "reference": {"companyID": company_id, "jobID": job_id},
    }


def test_created_event_creates_agreement(client: TestClient, store: AgreementStore, simpro: FakeSimpro) -> None:
    simpro.add("10862", "25000")

    response = client.post("/webhooks/simpro", json=_v2(10862, company_id=4))

    assert response.status_code == 200
    assert response.json() == {
        "received": True,
        "outcome": "created",
        "created": True,
        "jobId": "10862",
        "totalIncGst": "25000.00",
        "paymentCount": 5,
    }
    assert simpro.calls == [("10862", 4)]

    agreement = store.get("10862")
    assert agreement is not None
    assert agreement.provenance == "webhook"
    assert agreement.status == "draft"
    assert agreement.client_name == "Acme Builders"
    assert agreement.site_name == "Acme HQ"
    assert agreement.initial_works == "Bathroom renovation"
    assert agreement.colour_scheme == "To be advised"
    assert agreement.agreement_date == "05/03/2024"


def test_large_job_gets_six_payments(client: TestClient, simpro: FakeSimpro) -> None:
    simpro.add("20", "150000")

    response = client.post("/webhooks/simpro", json=_v2(20))

    assert response.json()["paymentCount"] == 6


def test_below_threshold_is_skipped(client: TestClient, store: AgreementStore, simpro: FakeSimpro) -> None:
    simpro.add("30", "19999.99")

    response = client.post("/webhooks/simpro", json=_v2(30))

    assert response.status_code == 200
    body = response.json()
    assert body["outcome"] == "skipped"
    assert body["skipped"] == "below threshold"
    assert body["totalIncGst"] == "19999.99"
    assert body["threshold"] == "20000"
    assert store.get("30") is None


def test_threshold_boundary_creates(client: TestClient, store: AgreementStore, simpro: FakeSimpro) -> None:
    simpro.add("31", "20000")

    assert client.post("/webhooks/simpro", json=_v2(31)).json()["outcome"] == "created"
    assert store.get("31") is not None


@pytest.mark.parametrize(
    "payload",
    [
        {"name": "Quote", "action": "created", "reference": {"jobID": 1}},
        {"hello": "world"},
        [1, 2, 3],
        None,
    ],
)
def test_non_job_payloads_are_skipped(client: TestClient, simpro: FakeSimpro, payload: object) -> None:
    response = client.post("/webhooks/simpro", json=payload)

    assert response.status_code == 200
    assert response.json() == {"received": True, "outcome": "skipped", "skipped": "not a job event"}
    assert simpro.calls == []


def test_duplicate_created_event_skips_before_enrichment(client: TestClient, simpro: FakeSimpro) -> None:
    simpro.add("40", "30000")

    first = client.post("/webhooks/simpro", json=_v2(40))
    second = client.post("/webhooks/simpro", json=_v2(40))

    assert first.json()["outcome"] == "created"
    assert second.json() == {"received": True, "outcome": "skipped", "skipped": "already exists", "jobId": "40"}
    assert len(simpro.calls) == 1


def test_concurrent_deliveries_create_one_agreement(
    client: TestClient,
    store: AgreementStore,
    simpro: FakeSimpro,
) -> None:
    simpro.add("50", "45000")
    simpro.gate = threading.Event()

    with ThreadPoolExecutor(max_workers=4) as pool:
        futures = [pool.submit(client.post, "/webhooks/simpro", json=_v2(50)) for _ in range(4)]
        _wait_until(lambda: len(simpro.calls) == 4)
        simpro.gate.set()
        responses = [future.result() for future in futures]

    outcomes = sorted(response.json()["outcome"] for response in responses)
    assert outcomes == ["created", "skipped", "skipped", "skipped"]
    assert all(
        response.json()["skipped"] == "already exists" for response in responses if response.json()["outcome"] == "skipped"
    )
    assert len(store.list_all()) == 1


def test_manual_create_wins_race_against_webhook(
    client: TestClient,
    store: AgreementStore,
    simpro: FakeSimpro,
) -> None:
    simpro.add("60", "50000", client_name="From SimPRO")
    simpro.gate = threading.Event()

    with ThreadPoolExecutor(max_workers=1) as pool:
        webhook = pool.submit(client.post, "/webhooks/simpro", json=_v2(60))
        _wait_until(lambda: len(simpro.calls) == 1)
        manual = client.post("/agreements", json={"jobId": "60", "totalIncGst": 50000, "clientName": "Typed In"})
        simpro.gate.set()
        webhook_response = webhook.result()

    assert manual.status_code == 201
    assert webhook_response.json()["skipped"] == "already exists"
    assert store.get("60").client_name == "Typed In"
    assert store.get("60").provenance == "manual"


def test_enrichment_failure_returns_500_without_side_effects(
    client: TestClient,
    store: AgreementStore,
    audit_trail: AuditTrail,
) -> None:
    response = client.post("/webhooks/simpro", json=_v2(70))

    assert response.status_code == 500
    assert response.json()["received"] is False
    assert store.get("70") is None
    [entry] = audit_trail.list_for_job("70")
    assert entry.outcome == "enrichment_failed"
    assert entry.detail.startswith("http_404")


def test_updated_event_refreshes_total_and_schedule(client: TestClient, store: AgreementStore, simpro: FakeSimpro) -> None:
    simpro.add("80", "40000")
    client.post("/webhooks/simpro", json=_v2(80))

    simpro.add("80", "120000")
    response = client.post("/webhooks/simpro", json=_v2(80, action="updated"))

    assert response.json() == {
        "received": True,
        "outcome": "updated",
        "updated": True,
        "jobId": "80",
        "totalIncGst": "120000.00",
        "paymentCount": 6,
    }
    agreement = store.get("80")
    assert agreement.total_inc_gst == Decimal("120000.00")
    assert sum(entry.amount for entry in agreement.payment_schedule) == Decimal("120000.00")


def test_updated_event_with_same_total_is_no_change(client: TestClient, simpro: FakeSimpro) -> None:
    simpro.add("81", "40000")
    client.post("/webhooks/simpro", json=_v2(81))

    response = client.post("/webhooks/simpro", json=_v2(81, action="updated"))

    assert response.json()["skipped"] == "no change"


def test_updated_event_for_unknown_job_creates(client: TestClient, store: AgreementStore, simpro: FakeSimpro) -> None:
    simpro.add("82", "40000")

    response = client.post("/webhooks/simpro", json=_v2(82, action="updated"))

    assert response.json()["outcome"] == "created"
    assert store.get("82") is not None


def test_updated_event_below_threshold_leaves_agreement(client: TestClient, store: AgreementStore, simpro: FakeSimpro) -> None:
    simpro.add("83", "40000")
    client.post("/webhooks/simpro", json=_v2(83))

    simpro.add("83", "1000")
    response = client.post("/webhooks/simpro", json=_v2(83, action="updated"))

    assert response.json()["skipped"] == "below threshold"
    assert store.get("83").total_inc_gst == Decimal("40000.00")


def test_legacy_alias_route_accepts_deliveries(client: TestClient, simpro: FakeSimpro) -> None:
    simpro.add("90", "21000")

    response = client.post("/webhooks", json=_v2(90))

    assert response.json()["outcome"] == "created"


def test_legacy_payload_uses_embedded_job_without_client(store: AgreementStore, audit_trail: AuditTrail) -> None:
    app = create_app(store=store, audit_trail=audit_trail)
    payload = {
        "event": "job.created",
        "data": {
            "ID": 91,
            "No": "J-91",
            "Name": "Deck",
            "Customer": {"CompanyName": "Legacy Pty Ltd"},
            "Site": {"Name": "Beach house", "Address": "2 Ocean Rd", "City": "Albany", "State": "WA"},
            "Total": {"IncTax": 33000},
        },
    }
    with TestClient(app) as test_client:
        response = test_client.post("/webhooks", json=payload)

    assert response.json()["outcome"] == "created"
    agreement = store.get("91")
    assert agreement.job_no == "#J-91"
    assert agreement.client_name == "Legacy Pty Ltd"
    assert agreement.site_address == "2 Ocean Rd, Albany, WA"


def test_reference_payload_without_client_fails(store: AgreementStore, audit_trail: AuditTrail) -> None:
    app = create_app(store=store, audit_trail=audit_trail)
    with TestClient(app) as test_client:
        response = test_client.post("/webhooks/simpro", json=_v2(92))

    assert response.status_code == 500
    assert store.get("92") is None


def test_bad_signature_is_rejected_before_processing(
    client: TestClient,
    store: AgreementStore,
    audit_trail: AuditTrail,
    simpro: FakeSimpro,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("SIMPRO_WEBHOOK_SECRET", "s3cret")
    get_settings.cache_clear()
    simpro.add("100", "50000")

    missing = client.post("/webhooks/simpro", json=_v2(100))
    wrong = client.post("/webhooks/simpro", json=_v2(100), headers={"x-simpro-signature": "nope"})

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert simpro.calls == []
    assert store.get("100") is None
    assert audit_trail.list_for_job("100") == []

    accepted = client.post("/webhooks/simpro", json=_v2(100), headers={"x-simpro-signature": "s3cret"})
    assert accepted.json()["outcome"] == "created"


def test_signature_is_checked_before_body_is_decoded(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SIMPRO_WEBHOOK_SECRET", "s3cret")
    get_settings.cache_clear()
    headers = {"content-type": "application/json"}

    for path in ("/webhooks/simpro", "/webhooks"):
        unsigned = client.post(path, content=b"{not json", headers=headers)
        assert unsigned.status_code == 401

    signed = client.post("/webhooks/simpro", content=b"{not json", headers={**headers, "x-simpro-signature": "s3cret"})
    assert signed.status_code == 200
    assert signed.json() == {"received": True, "outcome": "skipped", "skipped": "not a job event"}


def test_undecodable_body_is_not_a_job_event(client: TestClient, simpro: FakeSimpro) -> None:
    for body in (b"{not json", b"\xff\xfe", b"   "):
        response = client.post("/webhooks/simpro", content=body, headers={"content-type": "application/json"})

        assert response.status_code == 200
        assert response.json() == {"received": True, "outcome": "skipped", "skipped": "not a job event"}
    assert simpro.calls == []


def test_liveness_reports_threshold(client: TestClient) -> None:
    for path in ("/webhooks/simpro", "/webhooks"):
        response = client.get(path)
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "endpoint": "SimPRO Works Agreement Webhook", "threshold": "20000"}


def test_every_delivery_is_audited(client: TestClient, audit_trail: AuditTrail, simpro: FakeSimpro) -> None:
    simpro.add("110", "25000")
    client.post("/webhooks/simpro", json=_v2(110), headers={"x-correlation-id": "deliv-1"})
    client.post("/webhooks/simpro", json=_v2(110), headers={"x-correlation-id": "deliv-2"})

    entries = audit_trail.list_for_job("110")
    assert [entry.outcome for entry in entries] == ["already_exists", "created"]
    assert [entry.correlation_id for entry in entries] == ["deliv-2", "deliv-1"]
    assert all(entry.actor_id == "simpro-webhook" for entry in entries)
    assert entries[1].source_kind == "webhook-v2"
