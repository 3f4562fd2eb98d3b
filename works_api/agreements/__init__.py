from works_api.agreements.normalizer import JobEvent, normalize_event
from works_api.agreements.schedule import build_payment_schedule
from works_api.agreements.schemas import PaymentScheduleEntry, WorksAgreementRecord
from works_api.agreements.threshold import should_create_agreement

__all__ = [
    "JobEvent",
    "PaymentScheduleEntry",
    "WorksAgreementRecord",
    "build_payment_schedule",
    "normalize_event",
    "should_create_agreement",
]
