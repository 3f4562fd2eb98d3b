"""Idempotent persistence for works agreements.

The store is the only shared mutable state in the pipeline. ``create`` is a
single insert guarded twice: a per-job lock serialises creators inside this
process, and the ``works_agreement.job_id`` primary key rejects a second row
from any other process. A rejected insert is reported as a ``conflict`` with
the record that won, never as an overwrite.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Literal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from works_api.agreements.models import WorksAgreement, WorksAgreementPayment
from works_api.agreements.schemas import PaymentScheduleEntry, WorksAgreementRecord
from works_api.otel import get_tracer


logger = logging.getLogger("works_api.agreements.store")
tracer = get_tracer("works_api.agreements.store")

CreateStatus = Literal["stored", "conflict"]

UPDATABLE_FIELDS = frozenset(
    {
        "job_no",
        "job_name",
        "client_name",
        "site_address",
        "site_name",
        "initial_works",
        "colour_scheme",
        "total_inc_gst",
        "agreement_date",
        "payment_schedule",
    }
)


@dataclass(frozen=True, slots=True)
class CreateResult:
    status: CreateStatus
    agreement: WorksAgreementRecord

    @property
    def stored(self) -> bool:
        return self.status == "stored"


@dataclass
class _KeyLock:
    lock: threading.Lock
    holders: int = 0


class KeyedLocks:
    """Per-key mutual exclusion; entries are dropped once no thread holds or awaits them."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, _KeyLock] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = _KeyLock(lock=threading.Lock())
                self._locks[key] = entry
            entry.holders += 1

        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class AgreementStore:
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory
        self._locks = KeyedLocks()

    def get(self, job_id: str) -> WorksAgreementRecord | None:
        with self._session_factory() as session:
            row = session.get(WorksAgreement, job_id)
            return None if row is None else _to_record(row)

    def create(self, agreement: WorksAgreementRecord) -> CreateResult:
        with tracer.start_as_current_span("agreements.store.create") as span:
            span.set_attribute("job_id", agreement.job_id)
            with self._locks.hold(agreement.job_id), self._session_factory() as session:
                row = _to_row(agreement)
                session.add(row)
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    existing = session.get(WorksAgreement, agreement.job_id)
                    if existing is None:
                        raise
                    span.set_attribute("outcome", "conflict")
                    logger.info(
                        "agreement.create_conflict",
                        extra={"job_id": agreement.job_id, "provenance": agreement.provenance, "outcome": "conflict"},
                    )
                    return CreateResult(status="conflict", agreement=_to_record(existing))

                span.set_attribute("outcome", "stored")
                return CreateResult(status="stored", agreement=_to_record(row))

    def update(self, job_id: str, changes: Mapping[str, Any]) -> WorksAgreementRecord | None:
        """Merge ``changes`` into the stored agreement; ``None`` when it does not exist.

        A supplied ``payment_schedule`` replaces the stored one. Recomputing the
        schedule for a new total is the caller's job.
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"fields cannot be updated: {', '.join(sorted(unknown))}")

        fields = dict(changes)
        schedule: Sequence[PaymentScheduleEntry] | None = fields.pop("payment_schedule", None)

        with tracer.start_as_current_span("agreements.store.update") as span:
            span.set_attribute("job_id", job_id)
            with self._locks.hold(job_id), self._session_factory() as session:
                row = session.get(WorksAgreement, job_id)
                if row is None:
                    return None

                for key, value in fields.items():
                    setattr(row, key, value)
                if schedule is not None:
                    row.payment_schedule.clear()
                    session.flush()
                    row.payment_schedule.extend(_to_payment_rows(schedule))

                session.commit()
                return _to_record(row)

    def delete(self, job_id: str) -> bool:
        with self._locks.hold(job_id), self._session_factory() as session:
            row = session.get(WorksAgreement, job_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True

    def list_all(self) -> list[WorksAgreementRecord]:
        with self._session_factory() as session:
            rows = session.scalars(select(WorksAgreement)).all()
            return [_to_record(row) for row in rows]


def _to_payment_rows(schedule: Sequence[PaymentScheduleEntry]) -> list[WorksAgreementPayment]:
    return [
        WorksAgreementPayment(
            position=entry.position,
            label=entry.label,
            percentage=entry.percentage,
            amount=entry.amount,
            description=entry.description,
        )
        for entry in schedule
    ]


def _to_row(agreement: WorksAgreementRecord) -> WorksAgreement:
    data = agreement.model_dump(mode="python", exclude={"payment_schedule"})
    row = WorksAgreement(**data)
    row.payment_schedule = _to_payment_rows(agreement.payment_schedule)
    return row


def _to_record(row: WorksAgreement) -> WorksAgreementRecord:
    return WorksAgreementRecord.model_validate(row)
