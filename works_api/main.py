from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from works_api.agreements.store import AgreementStore
from works_api.api.routes import router as api_router
from works_api.audit import AuditTrail
from works_api.core.config import Settings, get_settings
from works_api.core.database import Base, create_db_engine, create_session_factory
from works_api.logging import configure_logging
from works_api.middleware.correlation_id import CorrelationIdMiddleware
from works_api.middleware.request_logging import RequestLoggingMiddleware
from works_api.otel import get_fastapi_server_request_hook, setup_otel
from works_api.simpro.client import JobEnrichmentClient, SimproClient


configure_logging()
logger = logging.getLogger("works_api.lifecycle")


def build_enrichment_client(settings: Settings) -> SimproClient | None:
    if not settings.simpro_base_url or not settings.simpro_access_token:
        return None
    return SimproClient(
        settings.simpro_base_url,
        settings.simpro_access_token,
        timeout=settings.simpro_timeout_seconds,
    )


def create_app(
    *,
    store: AgreementStore | None = None,
    audit_trail: AuditTrail | None = None,
    enrichment_client: JobEnrichmentClient | None = None,
) -> FastAPI:
    """Build the API; collaborators passed in are used as-is and never closed by the app."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings = get_settings()
        engine = None
        owned_client: SimproClient | None = None

        if store is None or audit_trail is None:
            engine = create_db_engine(settings.database_url)
            if settings.database_auto_create:
                Base.metadata.create_all(engine)
            session_factory = create_session_factory(engine)
            app.state.agreement_store = store or AgreementStore(session_factory)
            app.state.audit_trail = audit_trail or AuditTrail(session_factory)
        else:
            app.state.agreement_store = store
            app.state.audit_trail = audit_trail

        if enrichment_client is None:
            owned_client = build_enrichment_client(settings)
            app.state.enrichment_client = owned_client
        else:
            app.state.enrichment_client = enrichment_client

        logger.info(
            "service.started",
            extra={
                "threshold": str(settings.works_agreement_threshold),
                "action": "enrichment" if app.state.enrichment_client is not None else "embedded-only",
            },
        )
        try:
            yield
        finally:
            if owned_client is not None:
                owned_client.close()
            if engine is not None:
                engine.dispose()
            logger.info("service.stopped")

    app = FastAPI(title="Works Agreements API", version="0.1.0", lifespan=lifespan)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.include_router(api_router)

    settings = get_settings()
    setup_otel(settings)

    if not getattr(app, "_is_instrumented_by_opentelemetry", False):
        FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
    return app


app = create_app()
