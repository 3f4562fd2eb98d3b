from __future__ import annotations

from decimal import Decimal
from typing import Literal

from works_api.agreements.schemas import CamelModel


WebhookOutcome = Literal["created", "updated", "skipped"]


class WebhookAck(CamelModel):
    received: bool = True
    outcome: WebhookOutcome
    skipped: str | None = None
    created: bool | None = None
    updated: bool | None = None
    job_id: str | None = None
    total_inc_gst: Decimal | None = None
    threshold: Decimal | None = None
    payment_count: int | None = None


class WebhookLiveness(CamelModel):
    status: str = "ok"
    endpoint: str = "SimPRO Works Agreement Webhook"
    threshold: Decimal
