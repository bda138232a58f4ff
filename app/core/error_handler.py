"""
Error handling for the Hacienda document broker
Maps every exception to ``{success: false, error, code, field?, details?, error_id}``
"""
import logging
import uuid
from collections import Counter
from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import settings
from app.utils.error_responses import APIError, HaciendaError

logger = logging.getLogger(__name__)

STATUS_ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "AUTHENTICATION_FAILED",
    403: "INSUFFICIENT_PERMISSIONS",
    404: "RESOURCE_NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    413: "PAYLOAD_TOO_LARGE",
}


class ErrorHandler:
    """
    Routes exceptions to structured JSON responses and keeps error counts
    """

    def __init__(self):
        self.error_counts: Counter = Counter()

    async def handle_exception(self, request: Request, exc: Exception) -> JSONResponse:
        """
        Main exception handler that routes to specific handlers
        """
        error_id = str(uuid.uuid4())

        if isinstance(exc, APIError):
            return self._handle_api_error(request, exc, error_id)
        if isinstance(exc, RequestValidationError):
            return self._handle_validation_error(request, exc, error_id)
        if isinstance(exc, StarletteHTTPException):
            return self._handle_http_exception(request, exc, error_id)
        if isinstance(exc, IntegrityError):
            return self._handle_integrity_error(request, exc, error_id)
        if isinstance(exc, SQLAlchemyError):
            return self._handle_database_error(request, exc, error_id)
        return self._handle_generic_error(request, exc, error_id)

    def _handle_api_error(self, request: Request, exc: APIError, error_id: str) -> JSONResponse:
        if isinstance(exc, HaciendaError):
            logger.error(f"[{error_id}] Hacienda failure on {request.method} {request.url.path}: {exc.message}")
        elif exc.status_code >= 500:
            logger.error(f"[{error_id}] {type(exc).__name__}: {exc.message}")
        else:
            logger.info(f"[{error_id}] {type(exc).__name__} on {request.url.path}: {exc.message}")

        return self._respond(exc.status_code, exc.to_dict(), error_id)

    def _handle_validation_error(
        self,
        request: Request,
        exc: RequestValidationError,
        error_id: str
    ) -> JSONResponse:
        """Request schema errors use the same shape as payload validation"""
        errors = exc.errors()
        first = errors[0] if errors else {"loc": (), "msg": "Invalid request"}
        # Drop the "body"/"query" prefix FastAPI adds to locations
        location = [str(part) for part in first.get("loc", ())[1:]]
        field = ".".join(location) or None

        body = {
            "success": False,
            "error": f"{field}: {first['msg']}" if field else first["msg"],
            "code": "VALIDATION_ERROR",
        }
        if field:
            body["field"] = field
        body["details"] = {
            "errors": [
                {"field": ".".join(str(p) for p in e.get("loc", ())[1:]), "message": e.get("msg")}
                for e in errors
            ]
        }
        return self._respond(status.HTTP_400_BAD_REQUEST, body, error_id)

    def _handle_http_exception(
        self,
        request: Request,
        exc: StarletteHTTPException,
        error_id: str
    ) -> JSONResponse:
        body = {
            "success": False,
            "error": exc.detail if isinstance(exc.detail, str) else "Request failed",
            "code": STATUS_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"),
        }
        return self._respond(exc.status_code, body, error_id, headers=getattr(exc, "headers", None))

    def _handle_integrity_error(self, request: Request, exc: IntegrityError, error_id: str) -> JSONResponse:
        logger.warning(f"[{error_id}] Integrity error on {request.url.path}: {exc.orig}")
        body = {
            "success": False,
            "error": "The resource conflicts with an existing record",
            "code": "DUPLICATE_DOCUMENT",
        }
        return self._respond(status.HTTP_409_CONFLICT, body, error_id)

    def _handle_database_error(self, request: Request, exc: SQLAlchemyError, error_id: str) -> JSONResponse:
        logger.error(f"[{error_id}] Database error on {request.url.path}: {exc}")
        body = {"success": False, "error": "Database operation failed", "code": "DATABASE_ERROR"}
        return self._respond(status.HTTP_500_INTERNAL_SERVER_ERROR, body, error_id)

    def _handle_generic_error(self, request: Request, exc: Exception, error_id: str) -> JSONResponse:
        """Unknown errors never expose their message or traceback outside debug logs"""
        logger.exception(f"[{error_id}] Unhandled {type(exc).__name__} on {request.method} {request.url.path}")
        body = {"success": False, "error": "An unexpected error occurred", "code": "INTERNAL_ERROR"}
        if not settings.is_production:
            body["details"] = {"exception_type": type(exc).__name__}
        return self._respond(status.HTTP_500_INTERNAL_SERVER_ERROR, body, error_id)

    def _respond(
        self,
        status_code: int,
        body: Dict[str, Any],
        error_id: str,
        headers: Optional[Dict[str, str]] = None
    ) -> JSONResponse:
        body["error_id"] = error_id
        self.error_counts[body["code"]] += 1
        return JSONResponse(status_code=status_code, content=body, headers=headers)

    def get_error_statistics(self) -> Dict[str, Any]:
        """Error counts by code since startup"""
        return {
            "error_counts": dict(self.error_counts),
            "total_errors": sum(self.error_counts.values()),
        }


# Global error handler instance
error_handler = ErrorHandler()
