"""Normalisation of inbound SimPRO job notifications.

SimPRO has delivered two payload shapes over time:

* ``webhook-v2``: a lightweight reference,
  ``{"ID": "job.updated", "name": "Job", "action": "updated",
  "reference": {"companyID": 0, "jobID": 10862}}``;
* ``webhook-v1``: a legacy envelope embedding the job,
  ``{"event": "job.created", "data": {"ID": 10862, "Total": {"IncTax": ...}, ...}}``.

Both are mapped to a single :class:`JobEvent`; anything that is not an
actionable job notification yields ``None``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Literal


SourceKind = Literal["webhook-v1", "webhook-v2", "manual"]
JobAction = Literal["created", "updated"]

DEFAULT_COMPANY_ID = 0

_V2_ACTIONS: frozenset[str] = frozenset({"created", "updated"})
_V1_EVENTS: dict[str, JobAction] = {
    "job.created": "created",
    "job.updated": "updated",
    "Job Created": "created",
    "Job Updated": "updated",
}


@dataclass(frozen=True, slots=True)
class JobEvent:
    source_kind: SourceKind
    job_id: str
    action: JobAction
    company_id: int = DEFAULT_COMPANY_ID
    embedded: Mapping[str, Any] = field(default_factory=dict)
    embedded_total: Decimal | None = None


def normalize_event(payload: Any) -> JobEvent | None:
    if not isinstance(payload, Mapping):
        return None
    if isinstance(payload.get("reference"), Mapping):
        return _from_reference_payload(payload)
    if "event" in payload:
        return _from_legacy_payload(payload)
    return None


def _from_reference_payload(payload: Mapping[str, Any]) -> JobEvent | None:
    name = _as_text(payload.get("name"))
    action = _as_text(payload.get("action"))
    if name.lower() != "job" or action not in _V2_ACTIONS:
        return None

    reference = payload["reference"]
    job_id = _as_job_id(reference.get("jobID"))
    if job_id is None:
        return None

    return JobEvent(
        source_kind="webhook-v2",
        job_id=job_id,
        action=action,  # type: ignore[arg-type]
        company_id=_as_company_id(reference.get("companyID")),
    )


def _from_legacy_payload(payload: Mapping[str, Any]) -> JobEvent | None:
    action = _V1_EVENTS.get(_as_text(payload.get("event")))
    data = payload.get("data")
    if action is None or not isinstance(data, Mapping):
        return None

    job_id = _as_job_id(data.get("ID"))
    if job_id is None:
        return None

    total = data.get("Total")
    embedded_total = _as_decimal(total.get("IncTax")) if isinstance(total, Mapping) else None
    return JobEvent(
        source_kind="webhook-v1",
        job_id=job_id,
        action=action,
        company_id=_as_company_id(payload.get("companyId")),
        embedded=dict(data),
        embedded_total=embedded_total,
    )


def _as_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _as_job_id(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value) if value != 0 else None
    if isinstance(value, str):
        text = value.strip()
        return text if text and text != "0" else None
    return None


def _as_company_id(value: Any) -> int:
    if isinstance(value, bool) or value is None:
        return DEFAULT_COMPANY_ID
    try:
        return int(value)
    except (TypeError, ValueError):
        return DEFAULT_COMPANY_ID


def _as_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None
