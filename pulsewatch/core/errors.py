from __future__ import annotations


class PulseError(Exception):
    """Base error for Pulsewatch."""

    code = "PULSE_ERROR"

    def __init__(self, message: str | None = None) -> None:
        # Fall back to the class docstring so bare raises still carry a readable message.
        self.message = message or (self.__doc__ or self.code).strip()
        super().__init__(self.message)


class ValidationError(PulseError):
    """Missing or blank required field."""

    code = "VALIDATION_ERROR"


class MissingIdError(ValidationError):
    """Client id is required."""

    code = "MISSING_ID"


class MissingFieldError(ValidationError):
    """Required field is missing."""

    code = "MISSING_FIELD"


class InvalidConfigError(ValidationError):
    """Tenant config payload is invalid."""

    code = "INVALID_CONFIG"


class AuthError(PulseError):
    """Caller failed authentication."""

    code = "AUTH_UNAUTHORIZED"


class UnauthorizedError(AuthError):
    """Caller is not authorized for this operation."""

    code = "AUTH_UNAUTHORIZED"


class VerificationError(AuthError):
    """Ping signature verification failed."""

    code = "SIGNATURE_INVALID"


class MissingSignatureFieldError(VerificationError):
    """Both timestamp and signature are required."""

    code = "SIGNATURE_MISSING_FIELD"


class InvalidTimestampError(VerificationError):
    """Signature timestamp is not a number."""

    code = "SIGNATURE_INVALID_TIMESTAMP"


class SkewError(VerificationError):
    """Signature timestamp is outside the allowed window."""

    code = "SIGNATURE_SKEW"


class BadSignatureError(VerificationError):
    """Signature does not match."""

    code = "SIGNATURE_MISMATCH"


class ConfigError(PulseError):
    """Required secret or token is not configured on the host."""

    code = "CONFIG_MISSING"


class NotFoundError(PulseError):
    """Resource not found."""

    code = "NOT_FOUND"


class TransientDeliveryError(PulseError):
    """Webhook delivery failed; never surfaced to request callers."""

    code = "DELIVERY_FAILED"
