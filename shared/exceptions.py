"""Application exception types.

Each error carries the HTTP status and machine-readable code the JSON error
handler renders, so services can raise without knowing about Flask responses.
"""
from __future__ import annotations


class AppError(Exception):
    """Base exception for application-level errors."""

    status_code = 400
    error_code = "bad_request"

    def __init__(self, message: str = "", *, status_code: int | None = None, error_code: str | None = None):
        super().__init__(message)
        self.message = message or self.__class__.__doc__ or "Request failed."
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code


class ValidationError(AppError):
    """Raised when request or payload validation fails."""

    status_code = 400
    error_code = "validation_error"


class AuthenticationRequiredError(AppError):
    """Authentication required."""

    status_code = 401
    error_code = "authentication_required"


class PermissionDeniedError(AppError):
    """Raised when the caller does not own the resource."""

    status_code = 403
    error_code = "forbidden"


class NotFoundError(AppError):
    """Raised when a requested resource cannot be located."""

    status_code = 404
    error_code = "not_found"


class InsufficientTokensError(AppError):
    """Insufficient tokens."""

    status_code = 402
    error_code = "insufficient_tokens"


class MergeInputError(AppError):
    """Raised when no deck layer was provided to the merge."""

    status_code = 400
    error_code = "no_deck_data"


class AIConfigurationError(AppError):
    """Server AI configuration missing."""

    status_code = 500
    error_code = "ai_not_configured"


class AIGenerationError(AppError):
    """Raised when the model returns no usable output."""

    status_code = 500
    error_code = "generation_failed"


class StorageError(AppError):
    """Raised when object storage rejects an upload or delete."""

    status_code = 502
    error_code = "storage_error"


class PaymentProviderError(AppError):
    """Raised when the payment provider API call fails."""

    status_code = 502
    error_code = "payment_provider_error"
