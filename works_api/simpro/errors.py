from __future__ import annotations


class EnrichmentError(Exception):
    """Raised when SimPRO job details cannot be fetched or are unusable."""

    def __init__(self, message: str, *, reason: str = "error", job_id: str | None = None) -> None:
        self.reason = reason
        self.job_id = job_id
        super().__init__(message)
