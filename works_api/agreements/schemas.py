from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


AgreementStatus = Literal["draft"]
Provenance = Literal["webhook", "manual"]

CENT = Decimal("0.01")


def to_money(value: Decimal | int | float | str) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PaymentScheduleEntry(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True, from_attributes=True)

    position: int
    label: str
    percentage: Decimal
    amount: Decimal
    description: str


class WorksAgreementRecord(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    job_id: str
    job_no: str
    job_name: str
    client_name: str
    site_address: str
    site_name: str
    initial_works: str
    colour_scheme: str
    total_inc_gst: Decimal
    payment_schedule: list[PaymentScheduleEntry] = Field(default_factory=list)
    agreement_date: str
    created_at: datetime
    status: AgreementStatus = "draft"
    provenance: Provenance

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # SQLite hands back naive timestamps; they are written as UTC.
        return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class WorksAgreementCreate(CamelModel):
    job_id: str = Field(min_length=1, max_length=64)
    total_inc_gst: Decimal
    job_no: str | None = Field(default=None, max_length=80)
    job_name: str | None = Field(default=None, max_length=255)
    client_name: str | None = Field(default=None, max_length=255)
    site_address: str | None = None
    site_name: str | None = Field(default=None, max_length=255)
    initial_works: str | None = None
    colour_scheme: str | None = Field(default=None, max_length=255)
    agreement_date: str | None = Field(
        default=None,
        max_length=32,
        validation_alias=AliasChoices("agreementDate", "agreement_date", "date"),
    )

    @field_validator("job_id", mode="before")
    @classmethod
    def _coerce_job_id(cls, value: Any) -> Any:
        if isinstance(value, bool):
            return value
        if isinstance(value, int):
            return str(value)
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("total_inc_gst")
    @classmethod
    def _quantize_total(cls, value: Decimal) -> Decimal:
        if not value.is_finite():
            raise ValueError("total_inc_gst must be a finite amount")
        return to_money(value)


class WorksAgreementUpdate(CamelModel):
    job_no: str | None = Field(default=None, max_length=80)
    job_name: str | None = Field(default=None, max_length=255)
    client_name: str | None = Field(default=None, max_length=255)
    site_address: str | None = None
    site_name: str | None = Field(default=None, max_length=255)
    initial_works: str | None = None
    colour_scheme: str | None = Field(default=None, max_length=255)
    total_inc_gst: Decimal | None = None
    agreement_date: str | None = Field(
        default=None,
        max_length=32,
        validation_alias=AliasChoices("agreementDate", "agreement_date", "date"),
    )

    @field_validator("total_inc_gst")
    @classmethod
    def _quantize_total(cls, value: Decimal | None) -> Decimal | None:
        if value is None:
            return None
        if not value.is_finite():
            raise ValueError("total_inc_gst must be a finite amount")
        return to_money(value)


class AgreementAuditRead(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    job_id: str
    source_kind: str
    action: str
    outcome: str
    detail: str | None
    actor_id: str
    total_inc_gst: Decimal | None
    correlation_id: str | None
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
