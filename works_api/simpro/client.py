"""SimPRO job enrichment.

Every consumer of SimPRO job data goes through :meth:`SimproClient.fetch_enriched_job`,
which resolves nested customer/site fields and date formatting once and
returns an :class:`EnrichedJob` snapshot.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

import httpx

from works_api.agreements.schemas import to_money
from works_api.context import get_correlation_id
from works_api.metrics import observe_enrichment, observe_enrichment_failure
from works_api.otel import get_tracer
from works_api.simpro.errors import EnrichmentError


logger = logging.getLogger("works_api.simpro")
tracer = get_tracer("works_api.simpro.client")

_ADDRESS_KEYS = ("Address", "Street", "StreetAddress", "Name", "Value", "Text")


@dataclass(frozen=True, slots=True)
class EnrichedJob:
    job_id: str
    job_no: str
    name: str
    client_name: str
    site_name: str
    site_address: str
    prepared_for: str
    issue_date: str
    total_inc_gst: Decimal


class JobEnrichmentClient(Protocol):
    def fetch_enriched_job(self, job_id: str, company_id: int = 0) -> EnrichedJob: ...


def extract_string(value: Any) -> str:
    """Flatten a SimPRO field that may be a string, a number or a nested address object."""
    if value is None or value == "" or isinstance(value, bool):
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, Mapping):
        for key in _ADDRESS_KEYS:
            nested = value.get(key)
            if nested:
                return extract_string(nested)
    return ""


def join_name(given: Any, family: Any) -> str:
    return " ".join(part for part in (extract_string(given), extract_string(family)) if part)


def compose_address(*parts: Any) -> str:
    return ", ".join(text for text in (extract_string(part) for part in parts) if text)


def format_au_date(raw: str | None, *, today: date | None = None) -> str:
    if not raw:
        return (today or date.today()).strftime("%d/%m/%Y")
    try:
        return datetime.fromisoformat(raw).strftime("%d/%m/%Y")
    except ValueError:
        return raw


def parse_total(value: Any) -> Decimal:
    if value is None or isinstance(value, bool):
        return to_money(0)
    try:
        return to_money(Decimal(str(value)))
    except InvalidOperation as exc:
        raise EnrichmentError(f"invalid job total: {value!r}", reason="invalid_total") from exc


def site_address_from(site: Mapping[str, Any]) -> str:
    street = site.get("Address") or site.get("Street") or site.get("StreetAddress")
    # Newer API versions nest the locality fields under Address.
    source = street if isinstance(street, Mapping) else site
    return compose_address(
        street,
        source.get("City") or source.get("Suburb"),
        source.get("State"),
        source.get("PostCode") or source.get("PostalCode") or source.get("Postcode"),
    )


def enriched_job_from_raw(job: Mapping[str, Any], *, job_id: str, site_address: str) -> EnrichedJob:
    customer = _as_mapping(job.get("Customer"))
    site = _as_mapping(job.get("Site"))
    site_contact = _as_mapping(job.get("SiteContact"))
    customer_contact = _as_mapping(job.get("CustomerContact"))

    client_name = extract_string(customer.get("CompanyName")) or join_name(
        customer.get("GivenName"), customer.get("FamilyName")
    )
    prepared_for = (
        join_name(site_contact.get("GivenName"), site_contact.get("FamilyName"))
        or join_name(customer_contact.get("GivenName"), customer_contact.get("FamilyName"))
        or client_name
    )
    job_no = extract_string(job.get("No"))
    total = _as_mapping(job.get("Total"))

    return EnrichedJob(
        job_id=job_id,
        job_no=f"#{job_no}" if job_no else f"#{job_id}",
        name=extract_string(job.get("Name")) or f"Job {job_id}",
        client_name=client_name,
        site_name=extract_string(site.get("Name")) or client_name,
        site_address=site_address,
        prepared_for=prepared_for,
        issue_date=format_au_date(
            extract_string(job.get("CompletedDate"))
            or extract_string(job.get("DateIssued"))
            or extract_string(job.get("DateModified"))
            or None
        ),
        total_inc_gst=parse_total(total.get("IncTax")),
    )


class SimproClient:
    def __init__(
        self,
        base_url: str,
        access_token: str,
        *,
        timeout: float = 15.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        if not base_url or not access_token:
            raise ValueError("SimPRO base_url and access_token are required")
        self._base_url = base_url.rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }
        self._client = http_client or httpx.Client(timeout=timeout)
        self._owns_client = http_client is None

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def fetch_enriched_job(self, job_id: str, company_id: int = 0) -> EnrichedJob:
        with tracer.start_as_current_span("simpro.fetch_enriched_job") as span:
            span.set_attribute("job_id", str(job_id))
            span.set_attribute("company_id", company_id)
            span.set_attribute("correlation_id", get_correlation_id() or "")
            started = time.perf_counter()
            try:
                parsed = _parse_job_id(job_id)
                job = self.fetch_raw_job(parsed, company_id)
                site = _as_mapping(job.get("Site"))
                site_address = ""
                if site.get("ID"):
                    site_address = self.fetch_site_address(site["ID"], company_id, extract_string(site.get("Name")))
                enriched = enriched_job_from_raw(job, job_id=str(parsed), site_address=site_address)
            except EnrichmentError as exc:
                exc.job_id = str(job_id)
                observe_enrichment_failure(exc.reason)
                raise
            finally:
                observe_enrichment(time.perf_counter() - started)
            span.set_attribute("total_inc_gst", str(enriched.total_inc_gst))
            return enriched

    def fetch_raw_job(self, job_id: int, company_id: int = 0) -> dict[str, Any]:
        payload = self._get(f"/api/v1.0/companies/{company_id}/jobs/{job_id}")
        if not isinstance(payload, dict):
            raise EnrichmentError("SimPRO returned a non-object job payload", reason="invalid_payload")
        return payload

    def fetch_site_address(self, site_id: int, company_id: int = 0, site_name: str = "") -> str:
        """Resolve a site's street address, falling back to ``site_name`` when it cannot be read."""
        try:
            site = self._get(f"/api/v1.0/companies/{company_id}/sites/{site_id}")
        except EnrichmentError as exc:
            logger.warning("simpro.site_lookup_failed", extra={"company_id": company_id, "error": str(exc)})
            return site_name
        if not isinstance(site, dict):
            return site_name
        return site_address_from(site) or site_name

    def _get(self, path: str) -> Any:
        url = f"{self._base_url}{path}"
        try:
            response = self._client.get(url, headers=self._headers)
        except httpx.TimeoutException as exc:
            raise EnrichmentError(f"SimPRO request timed out: {path}", reason="timeout") from exc
        except httpx.HTTPError as exc:
            raise EnrichmentError(f"SimPRO request failed: {exc}", reason="transport") from exc

        if response.is_error:
            raise EnrichmentError(
                f"SimPRO HTTP {response.status_code}: {response.text[:200]}",
                reason=f"http_{response.status_code}",
            )
        try:
            return response.json()
        except ValueError as exc:
            raise EnrichmentError("SimPRO returned invalid JSON", reason="invalid_payload") from exc


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _parse_job_id(job_id: str | int) -> int:
    try:
        parsed = int(str(job_id).strip())
    except ValueError as exc:
        raise EnrichmentError(f"invalid job id: {job_id!r}", reason="invalid_job_id") from exc
    if parsed <= 0:
        raise EnrichmentError(f"invalid job id: {job_id!r}", reason="invalid_job_id")
    return parsed
