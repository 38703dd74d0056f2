"""Error taxonomy for the gateway client and webhook pipeline.

Every error carries a class-level ``kind`` discriminant so callers can either
catch specific classes or branch on ``err.kind`` in a single handler.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from evolution_api.models import ApiResult


class ErrorKind(str, Enum):
    CONFIGURATION = "configuration"
    CONNECTION_NOT_FOUND = "connection_not_found"
    CONNECTION = "connection"
    AUTHENTICATION = "authentication"
    INSTANCE_NOT_FOUND = "instance_not_found"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    API = "api"
    WEBHOOK_PROCESSING = "webhook_processing"


class EvolutionApiError(Exception):
    """Base exception for every error raised by this package."""

    kind: ClassVar[ErrorKind] = ErrorKind.API

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        response_data: dict[str, Any] | None = None,
        instance_name: str | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.response_data = response_data
        self.instance_name = instance_name
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "status_code": self.status_code,
            "instance_name": self.instance_name,
            "response_data": self.response_data,
        }


class ConfigurationError(EvolutionApiError):
    """A connection profile or option is missing or malformed."""

    kind = ErrorKind.CONFIGURATION

    def __init__(self, message: str, code: str, connection_name: str | None = None) -> None:
        self.code = code
        self.connection_name = connection_name
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "code": self.code, "connection_name": self.connection_name}


class ConnectionNotFoundError(EvolutionApiError):
    kind = ErrorKind.CONNECTION_NOT_FOUND

    def __init__(self, connection_name: str) -> None:
        self.connection_name = connection_name
        super().__init__(f"Evolution API connection [{connection_name}] is not configured.")


class ApiConnectionError(EvolutionApiError):
    """The gateway could not be reached; no HTTP response was received."""

    kind = ErrorKind.CONNECTION

    def __init__(
        self,
        message: str,
        *,
        connection_name: str | None = None,
        url: str | None = None,
        instance_name: str | None = None,
    ) -> None:
        self.connection_name = connection_name
        self.url = url
        super().__init__(message, instance_name=instance_name)

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "connection_name": self.connection_name, "url": self.url}


class AuthenticationError(EvolutionApiError):
    kind = ErrorKind.AUTHENTICATION

    def __init__(
        self,
        message: str = "Authentication failed",
        *,
        response_data: dict[str, Any] | None = None,
        instance_name: str | None = None,
    ) -> None:
        super().__init__(
            message, status_code=401, response_data=response_data, instance_name=instance_name,
        )


class InstanceNotFoundError(EvolutionApiError):
    kind = ErrorKind.INSTANCE_NOT_FOUND

    def __init__(
        self,
        message: str | None = None,
        *,
        instance_name: str | None = None,
        response_data: dict[str, Any] | None = None,
    ) -> None:
        if message is None:
            message = (
                f"Instance '{instance_name}' not found" if instance_name else "Instance not found"
            )
        super().__init__(
            message, status_code=404, response_data=response_data, instance_name=instance_name,
        )


class InstanceRequiredError(InstanceNotFoundError):
    """An endpoint template needs ``{instance}`` but no instance was selected."""

    def __init__(self, endpoint: str) -> None:
        self.endpoint = endpoint
        super().__init__(
            f"Instance name is required for endpoint '{endpoint}'. Call instance(name) first."
        )
        self.status_code = None


class RateLimitExceededError(EvolutionApiError):
    kind = ErrorKind.RATE_LIMIT_EXCEEDED

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: int = 60,
        category: str = "default",
        instance_name: str | None = None,
    ) -> None:
        self.retry_after = retry_after
        self.category = category
        super().__init__(message, status_code=429, instance_name=instance_name)

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "retry_after": self.retry_after, "category": self.category}


class ApiError(EvolutionApiError):
    """Any other non-success response from the gateway."""

    kind = ErrorKind.API

    @classmethod
    def from_response(
        cls,
        data: dict[str, Any],
        status_code: int,
        instance_name: str | None = None,
    ) -> ApiError:
        # The gateway reports errors as {"message"}, {"error"} or
        # {"response": {"message"}, "error"}; the nested message is the most specific.
        nested = data.get("response")
        message: Any = None
        if isinstance(nested, dict):
            message = nested.get("message")
        if message is None:
            message = data.get("message")
        if message is None:
            message = data.get("error")
        if message is None:
            message = "Unknown error"
        if isinstance(message, list):
            message = "; ".join(str(m) for m in message)
        return cls(
            str(message),
            status_code=status_code,
            response_data=data,
            instance_name=instance_name,
        )


class WebhookProcessingError(EvolutionApiError):
    """Wraps any failure raised while handling an inbound webhook.

    The original exception is preserved as ``__cause__``.
    """

    kind = ErrorKind.WEBHOOK_PROCESSING

    def __init__(
        self,
        message: str = "Webhook processing failed",
        *,
        event_type: str | None = None,
        instance_name: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        self.event_type = event_type
        self.payload = payload
        super().__init__(message, instance_name=instance_name)

    @classmethod
    def processing_failed(
        cls,
        event_type: str,
        instance_name: str | None,
        cause: BaseException,
        payload: dict[str, Any] | None = None,
    ) -> WebhookProcessingError:
        return cls(
            f"Failed to process webhook event {event_type}: {cause}",
            event_type=event_type,
            instance_name=instance_name,
            payload=payload,
        )

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "event_type": self.event_type}


class InvalidWebhookPayloadError(WebhookProcessingError):
    def __init__(self, payload: Any = None) -> None:
        super().__init__(
            "Invalid webhook payload",
            payload=payload if isinstance(payload, dict) else None,
        )


def error_from_result(result: ApiResult, instance_name: str | None = None) -> EvolutionApiError:
    """Translate a failed result into the matching typed error."""
    message = result.message or "Unknown error"
    if result.status_code == 401:
        return AuthenticationError(
            message, response_data=result.data, instance_name=instance_name,
        )
    if result.status_code == 404:
        return InstanceNotFoundError(
            message, instance_name=instance_name, response_data=result.data,
        )
    if result.status_code == 429:
        return RateLimitExceededError(
            message,
            retry_after=_parse_retry_after(result.header("Retry-After")),
            category="api",
            instance_name=instance_name,
        )
    return ApiError.from_response(result.data, result.status_code, instance_name)


def _parse_retry_after(value: str | None, default: int = 60) -> int:
    if value is None:
        return default
    try:
        return max(0, int(value.strip()))
    except ValueError:
        return default
