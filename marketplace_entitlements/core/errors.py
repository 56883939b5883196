from __future__ import annotations


class EntitlementError(Exception):
    """Base class for failures raised by the entitlement core."""


class ValidationError(EntitlementError):
    """Malformed notification or callback input. Not retryable."""


class SessionExpiredError(ValidationError):
    """The identity-linking correlation state is missing, expired or already used."""


class AuthenticationError(EntitlementError):
    """A signed token failed verification. Not retryable."""


class TransientUpstreamError(EntitlementError):
    """Marketplace API, identity provider or store unavailable. Safe to redeliver."""


class MarketplaceApiError(EntitlementError):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(RuntimeError):
    """Missing credentials or endpoints. Fatal at startup."""
