"""
Error types shared by the broker core.

Each ``BrokerError`` carries the HTTP status it maps onto; the API layer
renders it as ``{"error": message}``.  The internal OAuth issuer raises
``OAuthError`` which renders as an RFC 6749 error body instead.
"""

from __future__ import annotations

from fastapi import status


class BrokerError(Exception):
    """Base for all errors that map onto an HTTP status."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationFailed(BrokerError):
    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationFailed(BrokerError):
    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(BrokerError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(BrokerError):
    status_code = status.HTTP_404_NOT_FOUND


class TokenExpired(BrokerError):
    status_code = status.HTTP_401_UNAUTHORIZED


class StoreError(BrokerError):
    """The local account store failed; the operation is aborted."""


class ProviderError(BrokerError):
    """A call to a third-party OAuth provider failed."""

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        super().__init__(message, status_code)
        self.provider = provider


class ReconnectRequired(BrokerError):
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Token expired and no refresh token available. Please reconnect your account."):
        super().__init__(message)


class TokenRefreshFailed(BrokerError):
    status_code = status.HTTP_401_UNAUTHORIZED


class ActionError(BrokerError):
    """An action handler could not complete the requested call."""

    status_code = status.HTTP_400_BAD_REQUEST


class OAuthError(Exception):
    """RFC 6749 error response from the internal authorization server."""

    def __init__(self, error: str, description: str | None = None, status_code: int = 400):
        super().__init__(description or error)
        self.error = error
        self.description = description
        self.status_code = status_code

    def to_dict(self) -> dict:
        body = {"error": self.error}
        if self.description:
            body["error_description"] = self.description
        return body
