"""Exception types shared by text-generation providers."""

from __future__ import annotations


class ProviderError(Exception):
    """Base exception for provider errors."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"[{provider}] {message}")


class ProviderConfigError(ProviderError):
    """Raised when a profile, credential or preset is not configured.

    Not retryable: the user has to fix their settings.
    """


class ProviderConnectionError(ProviderError):
    """Raised when connection to the provider fails."""


class StructuredOutputError(ProviderError):
    """Raised when a response does not validate against the requested schema."""


class GenerationCancelledError(ProviderError):
    """Raised when a generation call is stopped through its cancellation signal."""
