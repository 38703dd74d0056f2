"""Client library for the Evolution API WhatsApp gateway.

This package provides:
- Named, validated gateway connections
- Rate-limited, retrying HTTP requests with typed errors
- Webhook normalization, domain events and handler routing
"""

import logging

from evolution_api.client.connections import ConnectionRegistry
from evolution_api.client.executor import EvolutionClient
from evolution_api.client.rate_limiter import RateLimiter
from evolution_api.config import (
    EvolutionSettings,
    load_settings,
    load_settings_file,
    settings_from_env,
)
from evolution_api.errors import (
    ApiConnectionError,
    ApiError,
    AuthenticationError,
    ConfigurationError,
    ConnectionNotFoundError,
    ErrorKind,
    EvolutionApiError,
    InstanceNotFoundError,
    InstanceRequiredError,
    InvalidWebhookPayloadError,
    RateLimitExceededError,
    WebhookProcessingError,
)
from evolution_api.models import (
    ApiResult,
    ConnectionProfile,
    InstanceStatus,
    LimitPolicy,
    MessageStatus,
    MessageType,
    WebhookEvent,
)
from evolution_api.webhook.events import EventBus
from evolution_api.webhook.handlers import BaseWebhookHandler
from evolution_api.webhook.payload import WebhookEnvelope, normalize
from evolution_api.webhook.processor import WebhookProcessor

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "ApiConnectionError",
    "ApiError",
    "ApiResult",
    "AuthenticationError",
    "BaseWebhookHandler",
    "ConfigurationError",
    "ConnectionNotFoundError",
    "ConnectionProfile",
    "ConnectionRegistry",
    "ErrorKind",
    "EventBus",
    "EvolutionApiError",
    "EvolutionClient",
    "EvolutionSettings",
    "InstanceNotFoundError",
    "InstanceRequiredError",
    "InstanceStatus",
    "InvalidWebhookPayloadError",
    "LimitPolicy",
    "MessageStatus",
    "MessageType",
    "RateLimitExceededError",
    "RateLimiter",
    "WebhookEnvelope",
    "WebhookEvent",
    "WebhookProcessingError",
    "WebhookProcessor",
    "load_settings",
    "load_settings_file",
    "normalize",
    "settings_from_env",
]
