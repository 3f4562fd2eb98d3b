"""Payment schedule templates for works agreements.

Jobs up to $100,000 inc. GST are billed over five milestones, larger jobs over
six. Every payment but the last is its own percentage of the total rounded
half-up to the cent. The last payment is whatever remains, so it absorbs the
residual cent and the schedule always sums to the (cent-quantised) total.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from works_api.agreements.schemas import CENT, PaymentScheduleEntry, to_money


LARGE_JOB_THRESHOLD = Decimal("100000")
_HUNDRED = Decimal("100")


@dataclass(frozen=True, slots=True)
class Milestone:
    percentage: Decimal
    description: str


STANDARD_SCHEDULE: tuple[Milestone, ...] = (
    Milestone(Decimal("10"), "Deposit, payable on execution date."),
    Milestone(Decimal("25"), "Progress payment due upon 35% of completion."),
    Milestone(Decimal("25"), "Progress payment due upon 60% of completion."),
    Milestone(Decimal("25"), "Progress payment due upon 85% of completion."),
    Milestone(Decimal("15"), "Final payment due upon completion."),
)

LARGE_JOB_SCHEDULE: tuple[Milestone, ...] = (
    Milestone(Decimal("10"), "Deposit, payable on execution date."),
    Milestone(Decimal("15"), "Progress payment due upon 25% of completion."),
    Milestone(Decimal("25"), "Progress payment due upon 50% of completion."),
    Milestone(Decimal("25"), "Progress payment due upon 75% of completion."),
    Milestone(Decimal("15"), "Progress payment due upon 90% of completion."),
    Milestone(Decimal("10"), "Final payment due upon completion."),
)


def select_template(total_inc_gst: Decimal) -> tuple[Milestone, ...]:
    return LARGE_JOB_SCHEDULE if total_inc_gst > LARGE_JOB_THRESHOLD else STANDARD_SCHEDULE


def build_payment_schedule(total_inc_gst: Decimal | int | str) -> list[PaymentScheduleEntry]:
    """Build the milestone payments for ``total_inc_gst``.

    Zero and negative totals produce an empty schedule.
    """
    total = to_money(total_inc_gst)
    if total <= 0:
        return []

    template = select_template(total)
    entries: list[PaymentScheduleEntry] = []
    allocated = Decimal("0")
    for position, milestone in enumerate(template, start=1):
        if position == len(template):
            amount = total - allocated
        else:
            amount = (total * milestone.percentage / _HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)
            # Tiny totals can round up past what is left; never leave the final payment negative.
            amount = min(amount, total - allocated)
        entries.append(
            PaymentScheduleEntry(
                position=position,
                label=f"Payment {position}",
                percentage=milestone.percentage.quantize(CENT),
                amount=amount,
                description=milestone.description,
            )
        )
        allocated += amount
    return entries
