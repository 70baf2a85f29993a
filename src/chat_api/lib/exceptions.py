"""Application exceptions and the single error-normalization layer.

Every error that leaves the application is rendered as::

    {"success": false, "error": {"code", "message", "details"?}, "meta": {"timestamp", "requestId"}}

Codes are short mnemonic strings forming a flat taxonomy (``VAL_001``, ``AUTH_001``, ``BIZ_002``...).
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog
from advanced_alchemy.exceptions import (
    DuplicateKeyError,
    ForeignKeyError,
    IntegrityError,
    NotFoundError,
    RepositoryError,
)
from litestar.exceptions import (
    HTTPException,
    NotAuthorizedException,
    PermissionDeniedException,
    ValidationException,
)
from litestar.response import Response
from litestar.status_codes import (
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_429_TOO_MANY_REQUESTS,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
)

from chat_api.config.base import get_settings
from chat_api.lib.schema import get_request_id

if TYPE_CHECKING:
    from litestar.connection import Request

__all__ = (
    "ApplicationError",
    "AuthenticationError",
    "BusinessRuleError",
    "ConversationBusyError",
    "ExternalServiceError",
    "InvalidRequestError",
    "ModelNotAllowedError",
    "QuotaExceededException",
    "ResourceConflictError",
    "ResourceNotFoundError",
    "exception_to_http_response",
)

logger = structlog.get_logger()

GENERIC_SERVER_ERROR = "An unexpected error occurred. Please try again later."

STATUS_CODE_TO_ERROR_CODE: dict[int, str] = {
    HTTP_400_BAD_REQUEST: "VAL_001",
    HTTP_401_UNAUTHORIZED: "AUTH_001",
    HTTP_403_FORBIDDEN: "PERM_001",
    HTTP_404_NOT_FOUND: "RESOURCE_001",
    HTTP_409_CONFLICT: "RESOURCE_002",
    HTTP_429_TOO_MANY_REQUESTS: "BIZ_002",
    HTTP_502_BAD_GATEWAY: "EXT_001",
}


class ApplicationError(Exception):
    """Base exception type for the chat application."""

    status_code: int = HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "SYS_001"
    detail: str = "Internal server error"

    def __init__(self, *args: Any, detail: str = "", code: str | None = None, details: Any = None) -> None:
        """Initialize ``ApplicationError``.

        Args:
            *args: args are converted to :class:`str` before passing to :class:`Exception`
            detail: detail of the exception.
            code: overrides the class level error code.
            details: structured context rendered under ``error.details``.
        """
        str_args = [str(arg) for arg in args if arg]
        if not detail:
            if str_args:
                detail, *str_args = str_args
            elif hasattr(self, "detail"):
                detail = self.detail
        self.detail = detail
        if code is not None:
            self.code = code
        self.details = details
        super().__init__(*str_args)

    def __repr__(self) -> str:
        if self.detail:
            return f"{self.__class__.__name__} - {self.detail}"
        return self.__class__.__name__

    def __str__(self) -> str:
        return " ".join((*self.args, self.detail)).strip()


class InvalidRequestError(ApplicationError):
    """Malformed input."""

    status_code = HTTP_400_BAD_REQUEST
    code = "VAL_001"
    detail = "Invalid request"


class AuthenticationError(ApplicationError):
    """Missing, invalid or expired credentials."""

    status_code = HTTP_401_UNAUTHORIZED
    code = "AUTH_001"
    detail = "Authentication failed"


class ResourceNotFoundError(ApplicationError):
    """A resource is missing or owned by another user."""

    status_code = HTTP_404_NOT_FOUND
    code = "RESOURCE_001"
    detail = "Resource not found"


class ResourceConflictError(ApplicationError):
    """The resource already exists."""

    status_code = HTTP_409_CONFLICT
    code = "RESOURCE_002"
    detail = "Resource already exists"


class BusinessRuleError(ApplicationError):
    """The request is well formed but not allowed in the user's current state."""

    status_code = HTTP_400_BAD_REQUEST
    code = "BIZ_001"
    detail = "Operation not allowed"


class ModelNotAllowedError(BusinessRuleError):
    """The requested model is not part of the user's subscription tier."""

    status_code = HTTP_403_FORBIDDEN
    detail = "The requested model is not available on your subscription tier"

    def __init__(self, requested_model: str, available_models: list[str], subscription_tier: str) -> None:
        self.requested_model = requested_model
        self.available_models = available_models
        self.subscription_tier = subscription_tier
        super().__init__(
            details={
                "requestedModel": requested_model,
                "availableModels": available_models,
                "subscriptionTier": subscription_tier,
            },
        )


class QuotaExceededException(ApplicationError):
    """The user has used up the messages included in their tier for this month."""

    status_code = HTTP_429_TOO_MANY_REQUESTS
    code = "BIZ_002"

    def __init__(
        self,
        current_usage: int,
        monthly_limit: int,
        subscription_tier: str,
        reset_date: datetime | None = None,
    ) -> None:
        self.current_usage = current_usage
        self.monthly_limit = monthly_limit
        self.subscription_tier = subscription_tier
        self.reset_date = reset_date
        super().__init__(
            detail=f"Monthly message limit of {monthly_limit} reached. Upgrade your subscription to continue.",
            details={
                "currentUsage": current_usage,
                "monthlyLimit": monthly_limit,
                "subscriptionTier": subscription_tier,
                "remaining": max(0, monthly_limit - current_usage),
                "resetDate": reset_date.isoformat() if reset_date else None,
            },
        )


class ConversationBusyError(ApplicationError):
    """A reply is still being generated for this conversation."""

    status_code = HTTP_409_CONFLICT
    code = "BIZ_003"
    detail = "A reply is still being generated for this conversation"


class ExternalServiceError(ApplicationError):
    """An upstream provider failed."""

    status_code = HTTP_502_BAD_GATEWAY
    code = "EXT_001"
    detail = "External service error"


def _error_envelope(
    request: Request[Any, Any, Any],
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> Response[dict[str, Any]]:
    error: dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return Response(
        content={
            "success": False,
            "error": error,
            "meta": {"timestamp": datetime.now(UTC).isoformat(), "requestId": get_request_id(request)},
        },
        status_code=status_code,
    )


def _validation_details(exc: ValidationException) -> dict[str, Any]:
    errors = []
    for item in exc.extra or []:
        if isinstance(item, dict):
            errors.append({"field": item.get("key"), "message": item.get("message"), "source": item.get("source")})
        else:
            errors.append({"field": None, "message": str(item)})
    return {"errors": errors}


def exception_to_http_response(
    request: Request[Any, Any, Any],
    exc: Exception,
) -> Response[dict[str, Any]]:
    """Transform any exception into the error envelope.

    Args:
        request: The request that experienced the exception.
        exc: Exception raised during handling of the request.

    Returns:
        Exception response appropriate to the type of original exception.
    """
    details: Any = None
    if isinstance(exc, ApplicationError):
        status_code, code, message, details = exc.status_code, exc.code, exc.detail, exc.details
    elif isinstance(exc, NotFoundError):
        status_code, code, message = HTTP_404_NOT_FOUND, "RESOURCE_001", exc.detail or "Resource not found"
    elif isinstance(exc, (DuplicateKeyError, IntegrityError, ForeignKeyError)):
        status_code, code, message = HTTP_409_CONFLICT, "RESOURCE_002", exc.detail or "Resource already exists"
    elif isinstance(exc, RepositoryError):
        status_code, code, message = HTTP_500_INTERNAL_SERVER_ERROR, "SYS_001", exc.detail or str(exc)
    elif isinstance(exc, ValidationException):
        status_code, code, message = HTTP_400_BAD_REQUEST, "VAL_001", "Request validation failed"
        details = _validation_details(exc)
    elif isinstance(exc, NotAuthorizedException):
        status_code, code, message = HTTP_401_UNAUTHORIZED, "AUTH_001", exc.detail
    elif isinstance(exc, PermissionDeniedException):
        status_code, code, message = HTTP_403_FORBIDDEN, "PERM_001", exc.detail
    elif isinstance(exc, HTTPException):
        status_code = exc.status_code
        code = STATUS_CODE_TO_ERROR_CODE.get(status_code, "SYS_001")
        message = exc.detail
    else:
        status_code, code, message = HTTP_500_INTERNAL_SERVER_ERROR, "SYS_001", str(exc) or exc.__class__.__name__

    if status_code >= HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error(
            "Request failed",
            path=request.url.path,
            error_code=code,
            error=message,
            exc_info=exc,
        )
        if get_settings().app.is_production:
            message = GENERIC_SERVER_ERROR
            details = None
    return _error_envelope(request, status_code, code, message, details)
