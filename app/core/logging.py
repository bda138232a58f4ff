"""
Structured audit logging for the Hacienda document broker
Provides JSON log lines with correlation IDs and redaction of credentials
"""
import json
import logging
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from app.core.config import settings

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

SENSITIVE_HEADERS = {"authorization", "x-api-key", "cookie", "x-callback-token"}
SENSITIVE_KEYS = {"password", "token", "secret", "p12", "private_key", "credential", "respuesta-xml"}


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogCategory(str, Enum):
    """Log categories for filtering and analysis"""
    API_REQUEST = "api_request"
    API_RESPONSE = "api_response"
    DOCUMENT_LIFECYCLE = "document_lifecycle"
    HACIENDA_INTERACTION = "hacienda_interaction"
    CERTIFICATE = "certificate"
    SYSTEM = "system"


def sanitize_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Replace credential-bearing header values"""
    return {
        key: "[REDACTED]" if key.lower() in SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }


def sanitize_data(data: Any) -> Any:
    """Recursively redact values whose key looks like a credential"""
    if isinstance(data, dict):
        return {
            key: "[REDACTED]" if any(s in str(key).lower() for s in SENSITIVE_KEYS) else sanitize_data(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [sanitize_data(item) for item in data]
    return data


class AuditLogger:
    """
    Audit logger with structured output and correlation tracking
    """

    def __init__(self, name: str = "hacienda_document_broker"):
        self.logger = logging.getLogger(name)
        self._setup_logger()

    def _setup_logger(self):
        """Setup structured logging configuration"""
        for handler in self.logger.handlers[:]:
            self.logger.removeHandler(handler)

        if settings.LOG_FORMAT.lower() == "json":
            formatter = JsonFormatter()
        else:
            formatter = StructuredFormatter()

        console_handler = logging.StreamHandler()
        console_handler.setLevel(getattr(logging, settings.LOG_LEVEL.upper()))
        console_handler.setFormatter(formatter)
        self.logger.addHandler(console_handler)

        if settings.AUDIT_LOG_FILE:
            file_handler = logging.FileHandler(settings.AUDIT_LOG_FILE)
            file_handler.setLevel(logging.INFO)
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

        self.logger.setLevel(logging.DEBUG)

    @property
    def correlation_id(self) -> Optional[str]:
        return _correlation_id.get()

    def set_correlation_id(self, correlation_id: Optional[str]):
        """Set correlation ID for the current request context"""
        _correlation_id.set(correlation_id)

    def generate_correlation_id(self) -> str:
        correlation_id = str(uuid.uuid4())
        self.set_correlation_id(correlation_id)
        return correlation_id

    def log_structured(
        self,
        level: LogLevel,
        category: LogCategory,
        message: str,
        **kwargs
    ):
        """
        Log structured message with metadata

        Args:
            level: Log level
            category: Log category
            message: Log message
            **kwargs: Additional metadata, None values are dropped
        """
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level.value,
            "category": category.value,
            "message": message,
            "correlation_id": self.correlation_id,
            **kwargs
        }
        log_data = {k: v for k, v in log_data.items() if v is not None}

        self.logger.log(getattr(logging, level.value), json.dumps(log_data, default=str))

    def log_api_request(
        self,
        method: str,
        path: str,
        query_params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        body_size: Optional[int] = None,
        client_ip: Optional[str] = None,
        account_id: Optional[str] = None
    ):
        self.log_structured(
            level=LogLevel.INFO,
            category=LogCategory.API_REQUEST,
            message=f"{method} {path}",
            method=method,
            path=path,
            query_params=sanitize_data(query_params) if query_params else None,
            headers=sanitize_headers(headers) if headers else None,
            body_size=body_size,
            client_ip=client_ip,
            account_id=account_id
        )

    def log_api_response(
        self,
        method: str,
        path: str,
        status_code: int,
        duration_ms: Optional[float] = None,
        error_code: Optional[str] = None
    ):
        level = LogLevel.ERROR if status_code >= 500 else LogLevel.WARNING if status_code >= 400 else LogLevel.INFO

        self.log_structured(
            level=level,
            category=LogCategory.API_RESPONSE,
            message=f"{method} {path} -> {status_code}",
            method=method,
            path=path,
            status_code=status_code,
            duration_ms=duration_ms,
            error_code=error_code
        )

    def log_document_lifecycle(
        self,
        event_type: str,
        document_key: str,
        account_id: Optional[str] = None,
        attempt: Optional[int] = None,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
        error_message: Optional[str] = None
    ):
        """Log document state transitions"""
        level = LogLevel.ERROR if error_message else LogLevel.INFO

        self.log_structured(
            level=level,
            category=LogCategory.DOCUMENT_LIFECYCLE,
            message=f"Document {event_type}: {document_key}",
            event_type=event_type,
            document_key=document_key,
            account_id=account_id,
            attempt=attempt,
            from_status=from_status,
            to_status=to_status,
            error_message=error_message
        )

    def log_hacienda_interaction(
        self,
        interaction_type: str,
        document_key: Optional[str] = None,
        response_data: Optional[Any] = None,
        duration_ms: Optional[float] = None,
        success: bool = True,
        error_message: Optional[str] = None
    ):
        """Log calls to the Hacienda gateway"""
        self.log_structured(
            level=LogLevel.INFO if success else LogLevel.ERROR,
            category=LogCategory.HACIENDA_INTERACTION,
            message=f"Hacienda {interaction_type}",
            interaction_type=interaction_type,
            document_key=document_key,
            response_data=sanitize_data(response_data) if response_data is not None else None,
            duration_ms=duration_ms,
            success=success,
            error_message=error_message
        )

    def log_certificate_event(
        self,
        event_type: str,
        account_id: str,
        certificate_id: Optional[int] = None,
        fingerprint: Optional[str] = None,
        expiry_date: Optional[datetime] = None,
        success: bool = True,
        error_message: Optional[str] = None
    ):
        self.log_structured(
            level=LogLevel.INFO if success else LogLevel.ERROR,
            category=LogCategory.CERTIFICATE,
            message=f"Certificate {event_type} for account {account_id}",
            event_type=event_type,
            account_id=account_id,
            certificate_id=certificate_id,
            fingerprint=fingerprint,
            expiry_date=expiry_date,
            success=success,
            error_message=error_message
        )

    def log_system_event(
        self,
        event_type: str,
        description: str,
        severity: str = "info",
        additional_data: Optional[Dict[str, Any]] = None
    ):
        level = {
            "critical": LogLevel.CRITICAL,
            "error": LogLevel.ERROR,
            "warning": LogLevel.WARNING,
        }.get(severity, LogLevel.INFO)

        self.log_structured(
            level=level,
            category=LogCategory.SYSTEM,
            message=f"System event: {event_type}",
            event_type=event_type,
            description=description,
            additional_data=additional_data
        )


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record):
        message = record.getMessage()
        if message.startswith('{') and message.endswith('}'):
            # Already produced by log_structured
            return message

        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": message,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class StructuredFormatter(logging.Formatter):
    """Structured text formatter for human-readable logs"""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )


def configure_logging():
    """Route module loggers through the configured formatter"""
    root = logging.getLogger()
    if not any(isinstance(h.formatter, (JsonFormatter, StructuredFormatter)) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter() if settings.LOG_FORMAT.lower() == "json" else StructuredFormatter())
        root.addHandler(handler)
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper()))


# Global audit logger instance
audit_logger = AuditLogger()
