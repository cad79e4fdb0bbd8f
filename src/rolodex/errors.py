"""Exception hierarchy for the rolodex sync engine."""

from __future__ import annotations


class RolodexError(RuntimeError):
    """Base error for everything raised by rolodex."""


# ---------------------------------------------------------------------------
# Credential vault
# ---------------------------------------------------------------------------


class VaultError(RolodexError):
    """Base credential vault error."""


class VaultKeyError(VaultError):
    """Raised when the encryption key is missing or malformed."""


class VaultDecryptError(VaultError):
    """Raised when a ciphertext token cannot be authenticated or parsed."""


# ---------------------------------------------------------------------------
# Connectors
# ---------------------------------------------------------------------------


class ConnectorError(RolodexError):
    """Base connector error."""


class MissingCredentialsError(ConnectorError):
    """Raised when neither an access token nor a refresh token is available."""


class TokenRefreshError(ConnectorError):
    """Raised when an OAuth code or refresh-token exchange fails."""


class ProviderRequestError(ConnectorError):
    """Raised when a provider API request fails with a non-retryable status."""

    def __init__(self, *, provider: str, status_code: int, message: str) -> None:
        self.provider = provider
        self.status_code = status_code
        self.message = message
        super().__init__(f"{provider} API error: {message}")


class CursorRejectedError(ConnectorError):
    """Raised inside a connector when the provider rejects its stored cursor."""


class StaleCursorError(ConnectorError):
    """Raised when a provider rejects a sync cursor a second time in one run."""


class UnsupportedCapabilityError(ConnectorError):
    """Raised when a connector lacks an optional capability (OAuth, file import)."""


# ---------------------------------------------------------------------------
# Sync runs
# ---------------------------------------------------------------------------


class SyncError(RolodexError):
    """Base sync run error."""


class IntegrationNotFoundError(SyncError):
    """Raised when an integration does not exist within the given workspace."""


class UnknownProviderError(SyncError):
    """Raised when an integration names a provider with no registered connector."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Unknown provider: {provider}")


class SyncAlreadyRunningError(SyncError):
    """Raised when another run for the same integration holds the run lock."""


# ---------------------------------------------------------------------------
# Integration lifecycle
# ---------------------------------------------------------------------------


class OAuthStateError(RolodexError):
    """Raised when an OAuth state is missing, tampered with, or expired."""


class InvalidAutoSyncSettingsError(RolodexError):
    """Raised when an auto-sync time or timezone is malformed."""
