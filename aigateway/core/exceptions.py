"""Gateway error taxonomy.

Every failure that leaves the gateway is a GatewayError subclass:
  - CredentialsMissing: provider has no credential configured
  - InvalidRequest: caller error (missing model, unsupported MIME type, ...)
  - BackendUnavailable: circuit is open for the backend operation
  - BackendError: the backend failed (HTTP status, bad body, safety block)
  - BackendTimeout: the backend did not answer within the budget
  - QuotaExceeded: the caller ran out of quota for the action
"""

from __future__ import annotations

from datetime import datetime
from typing import Any


class GatewayError(Exception):
    """Base class for all gateway errors."""

    code = "gateway_error"

    def __init__(self, message: str, provider: str = "", context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.provider:
            data["provider"] = self.provider
        if self.context:
            data["context"] = self.context
        return data


class CredentialsMissing(GatewayError):
    code = "credentials_missing"

    def __init__(self, provider: str, env_var: str = ""):
        env_var = env_var or f"{provider.upper()}_API_KEY"
        super().__init__(
            f"API key not configured for provider '{provider}'. Please set the {env_var} environment variable.",
            provider=provider,
            context={"env_var": env_var},
        )
        self.env_var = env_var


class InvalidRequest(GatewayError):
    code = "invalid_request"


class BackendUnavailable(GatewayError):
    """Raised by the circuit breaker instead of calling a failing backend."""

    code = "backend_unavailable"

    def __init__(self, message: str, provider: str = "", retry_after: float = 0.0):
        super().__init__(message, provider=provider, context={"retry_after": round(retry_after, 1)})
        self.retry_after = retry_after


class BackendError(GatewayError):
    code = "backend_error"

    def __init__(
        self,
        message: str,
        provider: str = "",
        status_code: int = 0,
        error_code: str = "",
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, provider=provider, context=context)
        self.status_code = status_code
        self.error_code = error_code

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.status_code:
            data["status_code"] = self.status_code
        if self.error_code:
            data["error_code"] = self.error_code
        return data


class BackendTimeout(GatewayError):
    """Raised when a budget runs out; `except BackendError` does not catch it."""

    code = "backend_timeout"

    def __init__(self, message: str, provider: str = "", timeout: float = 0.0):
        super().__init__(message, provider=provider, context={"timeout": timeout} if timeout else None)
        self.timeout = timeout


class QuotaExceeded(GatewayError):
    code = "quota_exceeded"

    def __init__(self, action: str, limit: int, used: int, resets_at: datetime | None = None, limit_type: str = ""):
        when = f" Resets at {resets_at.isoformat()}." if resets_at else ""
        super().__init__(
            f"Rate limit exceeded for {action}: {used}/{limit} used.{when}",
            context={"action": action, "limit": limit, "used": used, "type": limit_type},
        )
        self.action = action
        self.limit = limit
        self.used = used
        self.resets_at = resets_at
        self.limit_type = limit_type

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["resets_at"] = self.resets_at.isoformat() if self.resets_at else None
        return data


# Caller-side errors never count against a backend's health.
CALLER_ERRORS = (CredentialsMissing, InvalidRequest, QuotaExceeded)
