from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden", code: str = "FORBIDDEN"):
        super().__init__(message, code=code, status_code=status.HTTP_403_FORBIDDEN)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class ConflictError(AppError):
    def __init__(self, message: str = "Conflict", code: str = "CONFLICT", details: dict[str, Any] | None = None):
        super().__init__(message, code=code, status_code=status.HTTP_409_CONFLICT, details=details)


class BadRequestError(AppError):
    def __init__(self, message: str = "Bad request", code: str = "BAD_REQUEST", details: dict[str, Any] | None = None):
        super().__init__(message, code=code, status_code=status.HTTP_400_BAD_REQUEST, details=details)


# Ledger errors


class InvalidAmountError(BadRequestError):
    def __init__(self, message: str = "Amount must be a positive integer", amount: Any = None):
        super().__init__(message, code="INVALID_AMOUNT", details={"amount": amount})


class InsufficientAdminCreditsError(ConflictError):
    def __init__(self, available: int, requested: int):
        super().__init__(
            "Insufficient admin SMS credits",
            code="INSUFFICIENT_ADMIN_CREDITS",
            details={"available": available, "requested": requested},
        )


class InsufficientBalanceError(AppError):
    """Wallet cannot fund a debit. Rendered as 402 so clients can prompt a top-up."""

    def __init__(self, balance: int, required: int):
        super().__init__(
            f"Insufficient SMS credits: {required} required, {balance} available. Please request a top-up.",
            code="INSUFFICIENT_BALANCE",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details={"balance": balance, "required": required},
        )


class AlreadyProcessedError(ConflictError):
    def __init__(self, message: str = "Request already processed", status_value: str | None = None):
        super().__init__(message, code="ALREADY_PROCESSED", details={"status": status_value})


class UnmappedRoleError(ForbiddenError):
    def __init__(self, role: str):
        super().__init__(f"Role '{role}' has no SMS wallet", code="UNMAPPED_ROLE")


class WalletInactiveError(ForbiddenError):
    def __init__(self, message: str = "SMS wallet is disabled"):
        super().__init__(message, code="WALLET_INACTIVE")


class OutcomeUnknownError(AppError):
    """Storage failed mid-operation; the recovery job settles it from the ledger. Do not retry blindly."""

    def __init__(self, message: str = "Operation outcome unknown; pending reconciliation", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="OUTCOME_UNKNOWN",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details,
        )


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body = {
        "success": False,
        "message": exc.message,
        "code": exc.code,
        "details": exc.details,
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    body = {
        "success": False,
        "message": "Validation error",
        "code": "VALIDATION_ERROR",
        "details": {"errors": exc.errors()},
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from app.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    body = {
        "success": False,
        "message": "Internal server error",
        "code": "INTERNAL_ERROR",
        "details": {},
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
