from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from works_api.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorksAgreement(Base):
    __tablename__ = "works_agreement"

    # The primary key is the uniqueness guarantee for concurrent creators.
    job_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    job_no: Mapped[str] = mapped_column(String(80), nullable=False)
    job_name: Mapped[str] = mapped_column(String(255), nullable=False)
    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    site_address: Mapped[str] = mapped_column(Text, nullable=False, default="")
    site_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    initial_works: Mapped[str] = mapped_column(Text, nullable=False, default="")
    colour_scheme: Mapped[str] = mapped_column(String(255), nullable=False)
    total_inc_gst: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    agreement_date: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft", server_default="draft")
    provenance: Mapped[str] = mapped_column(String(16), nullable=False)

    payment_schedule: Mapped[list[WorksAgreementPayment]] = relationship(
        "works_api.agreements.models.WorksAgreementPayment",
        back_populates="agreement",
        cascade="all, delete-orphan",
        order_by="WorksAgreementPayment.position",
        lazy="selectin",
    )


class WorksAgreementPayment(Base):
    __tablename__ = "works_agreement_payment"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    job_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("works_agreement.job_id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    label: Mapped[str] = mapped_column(String(64), nullable=False)
    percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    agreement: Mapped[WorksAgreement] = relationship(
        "works_api.agreements.models.WorksAgreement",
        back_populates="payment_schedule",
    )

    __table_args__ = (Index("ix_works_agreement_payment_job", "job_id", "position"),)
