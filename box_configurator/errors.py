"""
Error taxonomy for the configurator.

Validation errors are permanent and surface immediately. Transport errors
carry enough information for the retry policy to classify them.
"""

from typing import Optional


class BoxConfiguratorError(Exception):
    """Base class for all configurator errors."""


class ConfigError(BoxConfiguratorError):
    """Raised when settings are missing or invalid."""


class ValidationError(BoxConfiguratorError):
    """Input rejected before any remote call is attempted."""


class NotFoundError(ValidationError):
    """Raised when a configuration, line item or submission does not exist."""


class EmptyConfigurationError(ValidationError):
    """Raised when a configuration with no line items is submitted."""


class MissingExternalReferenceError(ValidationError):
    """Raised when a configuration is not linked to a NetSuite estimate."""


class RemoteError(BoxConfiguratorError):
    """Non-2xx response from a RESTlet."""

    def __init__(self, status: int, message: str):
        super().__init__(f"NetSuite API error: {status} {message}")
        self.status = status
        self.message = message

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status < 500

    @property
    def is_server_error(self) -> bool:
        return self.status >= 500


class NetworkError(BoxConfiguratorError):
    """Connection could not be established or was dropped."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class RpcTimeoutError(BoxConfiguratorError, TimeoutError):
    """No response headers arrived before the call's timeout elapsed."""

    def __init__(self, timeout_ms: int, url: str):
        super().__init__(f"NetSuite request timed out after {timeout_ms}ms: {url}")
        self.timeout_ms = timeout_ms
        self.url = url
