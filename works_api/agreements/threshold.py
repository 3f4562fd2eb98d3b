from __future__ import annotations

from decimal import Decimal


def should_create_agreement(total_inc_gst: Decimal, threshold: Decimal) -> bool:
    """Return True when a job total (dollars inc. GST) qualifies for a works agreement.

    Both values must be in the same unit; ``Settings.works_agreement_threshold``
    is expressed in dollars to match SimPRO's ``Total.IncTax``.
    """
    return Decimal(total_inc_gst) >= Decimal(threshold)
