from works_api.simpro.client import EnrichedJob, JobEnrichmentClient, SimproClient, enriched_job_from_raw
from works_api.simpro.errors import EnrichmentError

__all__ = [
    "EnrichedJob",
    "JobEnrichmentClient",
    "SimproClient",
    "enriched_job_from_raw",
    "EnrichmentError",
]
