"""
Error taxonomy for the capture and scoring pipeline, plus the FastAPI
handlers that render every failure as one JSON error shape.

Only device and "interview not found" failures are meant to be shown to the
candidate as terminal messages; upload and ledger failures are retryable and
analysis failures never leave the pipeline.
"""
import logging
import traceback
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from video_interview.core.config import settings


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    BUSINESS_LOGIC = "business_logic"
    DEVICE = "device"
    EXTERNAL_SERVICE = "external_service"
    SYSTEM = "system"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorResponse(BaseModel):
    """Body of every non-2xx response."""
    error: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Internal description")
    details: Optional[Dict[str, Any]] = None
    request_id: str
    timestamp: str
    category: ErrorCategory
    severity: ErrorSeverity
    user_message: Optional[str] = Field(None, description="Text safe to show the candidate")
    suggested_action: Optional[str] = None
    stack_trace: Optional[str] = Field(None, description="Only populated when DEBUG is on")


class ValidationErrorDetail(BaseModel):
    field: str
    message: str
    code: str
    value: Optional[Any] = None


class ApplicationError(Exception):
    """Base for every error the API renders itself."""

    def __init__(
        self,
        error_code: str,
        message: str,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        suggested_action: Optional[str] = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.category = category
        self.severity = severity
        self.status_code = status_code
        self.details = details or {}
        self.user_message = user_message
        self.suggested_action = suggested_action
        self.request_id = uuid.uuid4().hex
        self.timestamp = datetime.now(timezone.utc)


class ValidationError(ApplicationError):
    """Rejected input: malformed request, empty or oversized clip."""

    def __init__(
        self,
        message: str,
        field_errors: Optional[List[ValidationErrorDetail]] = None,
        status_code: int = 422,
        user_message: str = "The recording could not be accepted.",
    ):
        super().__init__(
            error_code="validation_failed",
            message=message,
            category=ErrorCategory.VALIDATION,
            status_code=status_code,
            details={"field_errors": [e.model_dump() for e in field_errors or []]},
            user_message=user_message,
            suggested_action="Record the answer again and resubmit.",
        )


class InterviewNotFoundError(ApplicationError):
    """Interview link does not resolve, has expired, or has no questions. Terminal."""

    def __init__(self, link: Optional[str] = None, interview_id: Optional[int] = None, reason: str = "not_found"):
        details: Dict[str, Any] = {"reason": reason}
        if interview_id is not None:
            details["interview_id"] = interview_id
        super().__init__(
            error_code="interview_not_found",
            message=f"Interview not found ({reason})",
            category=ErrorCategory.NOT_FOUND,
            severity=ErrorSeverity.LOW,
            status_code=404,
            details=details,
            user_message="The interview link is invalid or has expired.",
        )
        self.link = link


class NotFoundError(ApplicationError):
    def __init__(self, resource_type: str, resource_id: Optional[Union[str, int]] = None):
        suffix = f" (ID: {resource_id})" if resource_id is not None else ""
        super().__init__(
            error_code="resource_not_found",
            message=f"{resource_type} not found{suffix}",
            category=ErrorCategory.NOT_FOUND,
            severity=ErrorSeverity.LOW,
            status_code=404,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


class DeviceUnavailableError(ApplicationError):
    """Camera/microphone denied or absent; fatal for recording, not for viewing questions."""

    def __init__(self, message: str = "Capture device unavailable", reason: Optional[str] = None):
        super().__init__(
            error_code="device_unavailable",
            message=message,
            category=ErrorCategory.DEVICE,
            severity=ErrorSeverity.HIGH,
            status_code=409,
            details={"reason": reason} if reason else None,
            user_message="Camera unavailable. Allow camera and microphone access to record answers.",
            suggested_action="Check browser permissions and reload the interview.",
        )


class BusinessLogicError(ApplicationError):
    """A request that is well-formed but not allowed in the current state."""

    def __init__(
        self,
        rule: str,
        message: str,
        user_message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            error_code="business_rule_violation",
            message=message,
            category=ErrorCategory.BUSINESS_LOGIC,
            status_code=409,
            details={"rule": rule, **(details or {})},
            user_message=user_message or "This action is not possible right now.",
        )


class InvalidRecorderTransitionError(BusinessLogicError):
    """A recorder action was requested from a state that does not allow it."""

    def __init__(self, action: str, state: str, question_id: Optional[int] = None, reason: Optional[str] = None):
        details: Dict[str, Any] = {"action": action, "state": state}
        if question_id is not None:
            details["question_id"] = question_id
        if reason:
            details["reason"] = reason
        super().__init__(
            rule="recorder_transition",
            message=f"Cannot {action} while {state}" + (f": {reason}" if reason else ""),
            details=details,
        )
        self.action = action
        self.state = state


class InterviewCompletedError(BusinessLogicError):
    def __init__(self, interview_id: int):
        super().__init__(
            rule="interview_completed",
            message=f"Interview {interview_id} is already completed",
            user_message="This interview has already been completed.",
            details={"interview_id": interview_id},
        )


class ExternalServiceError(ApplicationError):
    """A collaborator outside this process (object storage, analysis) failed."""

    def __init__(
        self,
        service: str,
        message: str,
        error_code: str = "external_service_error",
        service_status_code: Optional[int] = None,
        user_message: Optional[str] = None,
        suggested_action: Optional[str] = None,
    ):
        super().__init__(
            error_code=error_code,
            message=message,
            category=ErrorCategory.EXTERNAL_SERVICE,
            severity=ErrorSeverity.HIGH,
            status_code=502,
            details={"service": service, "service_status_code": service_status_code},
            user_message=user_message,
            suggested_action=suggested_action,
        )


class UploadError(ExternalServiceError):
    """Clip could not be persisted to object storage. No ledger row is written."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(
            service="object_storage",
            message=message,
            error_code="upload_failed",
            user_message="Your answer could not be uploaded.",
            suggested_action="Submit the same recording again.",
        )
        self.key = key
        if key:
            self.details["key"] = key


class AnalysisUnavailableError(ExternalServiceError):
    """Remote analysis failed or replied with an unusable body. Never surfaced to candidates."""

    def __init__(self, message: str, service_status_code: Optional[int] = None):
        super().__init__(
            service="analysis",
            message=message,
            error_code="analysis_unavailable",
            service_status_code=service_status_code,
        )


class LedgerWriteError(ApplicationError):
    """Database write failed after the clip was already stored."""

    def __init__(self, message: str, locator: Optional[str] = None):
        super().__init__(
            error_code="ledger_write_failed",
            message=message,
            category=ErrorCategory.SYSTEM,
            severity=ErrorSeverity.CRITICAL,
            status_code=500,
            details={"locator": locator} if locator else None,
            user_message="Your answer could not be saved.",
            suggested_action="Submit the same recording again.",
        )
        self.locator = locator


_LOG_LEVELS = {
    ErrorSeverity.LOW: logging.INFO,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


class ErrorHandler:
    """Renders ApplicationError (and anything converted to one) as ErrorResponse."""

    def __init__(self):
        self.logger = logging.getLogger("errors")

    def render(self, request: Request, error: ApplicationError) -> JSONResponse:
        self.logger.log(
            _LOG_LEVELS[error.severity],
            error.message,
            extra={
                "request_id": error.request_id,
                "error_code": error.error_code,
                "category": error.category.value,
                "severity": error.severity.value,
                "status_code": error.status_code,
                "path": request.url.path,
                "method": request.method,
            },
        )
        body = ErrorResponse(
            error=error.error_code,
            message=error.message,
            details=error.details or None,
            request_id=error.request_id,
            timestamp=error.timestamp.isoformat(),
            category=error.category,
            severity=error.severity,
            user_message=error.user_message,
            suggested_action=error.suggested_action,
            stack_trace=traceback.format_exc() if settings.debug else None,
        )
        return JSONResponse(status_code=error.status_code, content=body.model_dump(mode="json", exclude_none=True))

    def from_http_exception(self, exc: HTTPException) -> ApplicationError:
        if exc.status_code == 404:
            category = ErrorCategory.NOT_FOUND
        elif 400 <= exc.status_code < 500:
            category = ErrorCategory.VALIDATION
        else:
            category = ErrorCategory.SYSTEM
        return ApplicationError(
            error_code=f"http_{exc.status_code}",
            message=str(exc.detail),
            category=category,
            severity=ErrorSeverity.CRITICAL if exc.status_code >= 500 else ErrorSeverity.LOW,
            status_code=exc.status_code,
        )

    def from_validation_exception(self, exc: Exception) -> ValidationError:
        field_errors = []
        errors = getattr(exc, "errors", None)
        for item in errors() if callable(errors) else []:
            field_errors.append(ValidationErrorDetail(
                field=".".join(str(part) for part in item.get("loc", ())),
                message=item.get("msg", ""),
                code=item.get("type", ""),
                value=str(item.get("input", ""))[:100],
            ))
        return ValidationError("Request validation failed", field_errors=field_errors)

    def from_unexpected(self, request: Request, exc: Exception) -> ApplicationError:
        error = ApplicationError(
            error_code="internal_server_error",
            message="An unexpected error occurred",
            severity=ErrorSeverity.CRITICAL,
            details={"exception_type": type(exc).__name__},
            user_message="An unexpected error occurred.",
            suggested_action="Please try again in a few minutes.",
        )
        self.logger.error(
            f"Unhandled exception: {exc}",
            extra={"request_id": error.request_id, "path": request.url.path, "exception_type": type(exc).__name__},
            exc_info=exc,
        )
        return error


error_handler = ErrorHandler()


async def application_error_handler(request: Request, exc: ApplicationError):
    return error_handler.render(request, exc)


async def http_exception_handler(request: Request, exc: HTTPException):
    return error_handler.render(request, error_handler.from_http_exception(exc))


async def validation_exception_handler(request: Request, exc: Exception):
    return error_handler.render(request, error_handler.from_validation_exception(exc))


async def generic_exception_handler(request: Request, exc: Exception):
    return error_handler.render(request, error_handler.from_unexpected(request, exc))
