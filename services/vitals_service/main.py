from datetime import datetime, timezone

from fastapi import Depends, FastAPI

from config.logging_config import MetricsLogger, get_logger, setup_logging
from services.vitals_service.config import settings
from services.vitals_service.integrations.crux_api import FieldDataClient
from services.vitals_service.middleware.error_handler import setup_error_handlers
from services.vitals_service.middleware.logging import LoggingMiddleware
from services.vitals_service.reconciliation.context import PageContext
from services.vitals_service.reconciliation.coordinator import ReconciliationCoordinator
from services.vitals_service.schemas.vitals import ReconcileRequest, ReconciledView

logger = get_logger(__name__)

app = FastAPI(title="Web Vitals Service", version="0.1.0")
app.add_middleware(LoggingMiddleware)
setup_error_handlers(app)


@app.on_event("startup")
async def _startup() -> None:
    setup_logging(settings.service_name)
    logger.info(f"{settings.service_name} started on port {settings.port}")


def get_field_data_client() -> FieldDataClient:
    return FieldDataClient()


@app.get("/health")
async def health() -> dict:
    return {
        "status": "ok",
        "service": settings.service_name,
        "ts": datetime.now(timezone.utc).isoformat(),
        "counters": MetricsLogger.get_metrics(),
    }


@app.post("/vitals/reconcile", response_model=ReconciledView)
async def reconcile_vitals(
    payload: ReconcileRequest,
    client: FieldDataClient = Depends(get_field_data_client),
) -> ReconciledView:
    if payload.form_factor is not None:
        context = PageContext(
            url=str(payload.url),
            form_factor=payload.form_factor,
            timeout_s=settings.field_data_timeout_s,
            background=payload.background,
            measured_at=payload.timestamp,
        )
    else:
        context = PageContext.from_settings(
            str(payload.url), background=payload.background, measured_at=payload.timestamp
        )

    coordinator = ReconciliationCoordinator(context, payload.sample_values(), client=client)
    try:
        return await coordinator.reconcile()
    finally:
        coordinator.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("services.vitals_service.main:app", host="0.0.0.0", port=settings.port, reload=False)
