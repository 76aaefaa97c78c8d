from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config.logging_config import get_logger
from services.vitals_service.config import settings
from services.vitals_service.errors import VitalsError

logger = get_logger(__name__)


def error_response(request: Request, status_code: int, message, details=None) -> JSONResponse:
    error = {
        "code": status_code,
        "message": message,
        "request_id": getattr(request.state, "request_id", "unknown"),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if details is not None:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"error": error})


def setup_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger.warning(
            "HTTP exception",
            extra={
                "status_code": exc.status_code,
                "detail": exc.detail,
                "path": request.url.path,
                "service": settings.service_name
            }
        )
        return error_response(request, exc.status_code, exc.detail)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [
            {
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"]
            }
            for error in exc.errors()
        ]
        logger.warning(
            "Validation error",
            extra={"errors": errors, "path": request.url.path, "service": settings.service_name}
        )
        return error_response(request, status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation error", errors)

    @app.exception_handler(VitalsError)
    async def vitals_exception_handler(request: Request, exc: VitalsError):
        logger.warning(
            "Rejected vitals input",
            extra={"error": str(exc), "error_type": type(exc).__name__, "path": request.url.path}
        )
        return error_response(request, status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return error_response(request, status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled exception",
            extra={
                "error": str(exc),
                "error_type": type(exc).__name__,
                "path": request.url.path,
                "service": settings.service_name
            },
            exc_info=True
        )
        if settings.is_development():
            detail = f"{type(exc).__name__}: {str(exc)}"
        else:
            detail = "Internal server error"
        return error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, detail)
