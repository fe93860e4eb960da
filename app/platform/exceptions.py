import logging

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.platform.response import api_response

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base for run-level errors that are reported to the client as-is."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(AppException):
    """Worker pool or run input is unusable; nothing is dispatched."""

    status_code = status.HTTP_400_BAD_REQUEST


class SitemapError(AppException):
    """Sitemap XML is malformed, an index file, or lists no URLs."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class SitemapFetchError(AppException):
    """Every fetch endpoint failed for a remote sitemap."""

    status_code = status.HTTP_502_BAD_GATEWAY


class RunNotFoundError(AppException):
    status_code = status.HTTP_404_NOT_FOUND


def add_exception_handlers(app):
    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
        return api_response(message=exc.message, status_code=exc.status_code)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return api_response(message=str(exc.detail) or "Error", status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return api_response(
            message="Validation failed",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            data={"errors": exc.errors()},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception: {exc}")
        return api_response(
            message="Internal server error",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
