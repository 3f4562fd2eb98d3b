from __future__ import annotations

from decimal import Decimal

import pytest

from works_api.agreements.normalizer import normalize_event


def test_reference_payload_is_normalized() -> None:
    event = normalize_event(
        {
            "ID": "job.created",
            "name": "Job",
            "action": "created",
            "reference": {"companyID": 3, "jobID": 10862},
        }
    )

    assert event is not None
    assert event.source_kind == "webhook-v2"
    assert event.job_id == "10862"
    assert event.action == "created"
    assert event.company_id == 3
    assert event.embedded_total is None


def test_reference_payload_name_is_case_insensitive_and_company_defaults() -> None:
    event = normalize_event({"name": "JOB", "action": "updated", "reference": {"jobID": "77"}})

    assert event is not None
    assert event.action == "updated"
    assert event.job_id == "77"
    assert event.company_id == 0


def test_legacy_payload_is_normalized_with_embedded_total() -> None:
    event = normalize_event(
        {
            "event": "Job Updated",
            "companyId": "2",
            "data": {"ID": 501, "Name": "Kitchen", "Total": {"IncTax": 25000.5}},
        }
    )

    assert event is not None
    assert event.source_kind == "webhook-v1"
    assert event.job_id == "501"
    assert event.action == "updated"
    assert event.company_id == 2
    assert event.embedded_total == Decimal("25000.5")
    assert event.embedded["Name"] == "Kitchen"


@pytest.mark.parametrize(
    "payload",
    [
        None,
        [],
        "job.created",
        {},
        {"name": "Quote", "action": "created", "reference": {"jobID": 1}},
        {"name": "Job", "action": "deleted", "reference": {"jobID": 1}},
        {"name": "Job", "action": "Created", "reference": {"jobID": 1}},
        {"name": "Job", "action": "created", "reference": {}},
        {"name": "Job", "action": "created", "reference": {"jobID": 0}},
        {"name": "Job", "action": "created", "reference": {"jobID": True}},
        {"event": "job.deleted", "data": {"ID": 1}},
        {"event": "job.created", "data": {}},
        {"event": "job.created", "data": "not-an-object"},
        {"event": "job.created", "data": {"ID": "0"}},
    ],
)
def test_non_job_payloads_are_rejected(payload: object) -> None:
    assert normalize_event(payload) is None


def test_legacy_payload_with_unreadable_total_keeps_event() -> None:
    event = normalize_event({"event": "job.created", "data": {"ID": 9, "Total": {"IncTax": "n/a"}}})

    assert event is not None
    assert event.embedded_total is None
