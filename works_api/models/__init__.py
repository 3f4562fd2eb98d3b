from works_api.agreements.models import WorksAgreement, WorksAgreementPayment
from works_api.models.audit import AgreementAuditEntry

__all__ = [
	"AgreementAuditEntry",
	"WorksAgreement",
	"WorksAgreementPayment",
]
