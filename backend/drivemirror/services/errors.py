"""Exception types shared by the sync services.

Every error carries a stable ``code`` (surfaced to clients as the reason) and
the HTTP ``status_code`` the API layer answers with.
"""

from __future__ import annotations


class DriveSyncError(Exception):
    """Base exception for sync engine errors."""

    code: str = "SYNC_FAILED"
    status_code: int = 500

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)


# ========== Authorization ==========


class AuthRequiredError(DriveSyncError):
    """The user must (re)authorize; never retried automatically."""

    code = "AUTH_REQUIRED"
    status_code = 401


class NoAccessTokenError(AuthRequiredError):
    """No stored Drive connection for the user."""

    code = "NO_ACCESS_TOKEN"


class TokenExpiredError(AuthRequiredError):
    """Access token expired and could not be refreshed."""

    code = "TOKEN_EXPIRED"


class ScopeMissingError(AuthRequiredError):
    """The stored grant lacks a scope the current settings need."""

    code = "SCOPE_MISSING"


class OAuthNotConfiguredError(DriveSyncError):
    """OAuth client id/secret are not configured on the server."""

    code = "OAUTH_NOT_CONFIGURED"
    status_code = 503


class InvalidOAuthStateError(DriveSyncError):
    """The OAuth callback state could not be verified."""

    code = "INVALID_STATE"
    status_code = 400


# ========== Sync state ==========


class RootMismatchError(DriveSyncError):
    """Persisted crawl root no longer matches the user's chosen folder."""

    code = "ROOT_MISMATCH"
    status_code = 409

    def __init__(self, state_root: str | None, settings_root: str | None):
        super().__init__(
            f"Sync root {state_root} does not match selected folder {settings_root}; re-arm required"
        )
        self.state_root = state_root
        self.settings_root = settings_root


class NoRootFolderError(DriveSyncError):
    """No folder has been selected for mirroring."""

    code = "NO_ROOT_FOLDER"
    status_code = 409


class SyncNotInitializedError(DriveSyncError):
    """SyncState does not exist yet; start() must run first."""

    code = "SYNC_NOT_INITIALIZED"
    status_code = 409


class NoChangeCursorError(DriveSyncError):
    """No change cursor yet; a full crawl has not completed."""

    code = "NO_START_PAGE_TOKEN"
    status_code = 409


class InvalidBudgetError(DriveSyncError):
    """budget_folders outside the accepted range."""

    code = "INVALID_BUDGET"
    status_code = 400
