"""Token & authorization manager for per-user Google Drive connections.

Provides:
- OAuth consent URL generation (optionally forcing the consent screen)
- Authorization code exchange and encrypted token storage
- Connection status with a stable reason code
- Valid access token retrieval with transparent refresh
- Disconnect (revoke + delete)
- Access counting and audit records for every credential access
"""

from __future__ import annotations

import asyncio
import json
import os
import secrets
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from drivemirror.core.config import settings
from drivemirror.core.logging import get_logger
from drivemirror.db.base import utcnow
from drivemirror.db.models import (
    AuditAction,
    ConnectionReason,
    CredentialAudit,
    DriveConnection,
    SyncSettings,
)
from drivemirror.services.errors import (
    AuthRequiredError,
    InvalidOAuthStateError,
    NoAccessTokenError,
    OAuthNotConfiguredError,
    TokenExpiredError,
)

logger = get_logger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"
AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
REVOKE_URI = "https://oauth2.googleapis.com/revoke"

METADATA_SCOPE = "https://www.googleapis.com/auth/drive.metadata.readonly"
DOWNLOAD_SCOPE = "https://www.googleapis.com/auth/drive.readonly"
IDENTITY_SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
]

# A required scope is satisfied by itself or any broader grant
SCOPE_SATISFIED_BY: dict[str, set[str]] = {
    METADATA_SCOPE: {
        METADATA_SCOPE,
        DOWNLOAD_SCOPE,
        "https://www.googleapis.com/auth/drive.metadata",
        "https://www.googleapis.com/auth/drive",
    },
    DOWNLOAD_SCOPE: {
        DOWNLOAD_SCOPE,
        "https://www.googleapis.com/auth/drive",
    },
}

# OAuth state tokens are accepted for 10 minutes
STATE_TTL_SECONDS = 600

# Process-wide fallback key when DRIVEMIRROR_ENCRYPTION_KEY is unset
_generated_key: bytes | None = None


def required_scopes(downloads_enabled: bool) -> list[str]:
    """Drive scopes the sync engine needs for the given settings."""
    scopes = [METADATA_SCOPE]
    if downloads_enabled:
        scopes.append(DOWNLOAD_SCOPE)
    return scopes


def missing_scopes(granted: set[str], downloads_enabled: bool) -> list[str]:
    """Required scopes not covered by ``granted``."""
    return [
        scope
        for scope in required_scopes(downloads_enabled)
        if not granted & SCOPE_SATISFIED_BY[scope]
    ]


def _get_encryption_key() -> bytes:
    """Get the configured Fernet key, or a process-wide generated one."""
    global _generated_key
    if settings.encryption_key:
        # Fernet expects the key as base64-encoded bytes (not decoded)
        return settings.encryption_key.encode()

    if _generated_key is None:
        from cryptography.fernet import Fernet

        _generated_key = Fernet.generate_key()
        logger.warning(
            "encryption_key_generated",
            message="Using auto-generated encryption key. Set DRIVEMIRROR_ENCRYPTION_KEY for persistence.",
        )
    return _generated_key


def encrypt(data: str) -> str:
    """Encrypt a string using Fernet."""
    from cryptography.fernet import Fernet

    return Fernet(_get_encryption_key()).encrypt(data.encode()).decode()


def decrypt(encrypted_data: str, ttl: int | None = None) -> str:
    """Decrypt a Fernet-encrypted string.

    Raises:
        cryptography.fernet.InvalidToken: If the data was tampered with,
            encrypted with another key, or is older than ``ttl`` seconds.
    """
    from cryptography.fernet import Fernet

    return Fernet(_get_encryption_key()).decrypt(encrypted_data.encode(), ttl=ttl).decode()


def _client_config() -> dict:
    return {
        "web": {
            "client_id": settings.google_client_id,
            "client_secret": settings.google_client_secret,
            "auth_uri": AUTH_URI,
            "token_uri": TOKEN_URI,
        }
    }


class ConnectionStatus(BaseModel):
    """Connection status as reported to the UI."""

    connected: bool
    reason: ConnectionReason | None = None
    email: str | None = None
    dedicated_folder_id: str | None = None
    dedicated_folder_name: str | None = None
    downloads_enabled: bool = False


class DriveTokenManager:
    """Owns one user's encrypted OAuth credentials."""

    def __init__(self, db: AsyncSession, user_id: str):
        """Initialize the token manager.

        Args:
            db: AsyncSession for database operations.
            user_id: The user whose credentials are managed.
        """
        self.db = db
        self.user_id = user_id

    # ========== OAuth State ==========

    @staticmethod
    def encode_state(user_id: str, redirect_uri: str) -> str:
        """Build a tamper-proof OAuth state bound to the user."""
        payload = {"u": user_id, "r": redirect_uri, "n": secrets.token_urlsafe(8)}
        return encrypt(json.dumps(payload))

    @staticmethod
    def decode_state(state: str) -> tuple[str, str]:
        """Verify an OAuth state.

        Returns:
            Tuple of (user_id, redirect_uri).

        Raises:
            InvalidOAuthStateError: If the state is invalid or expired.
        """
        from cryptography.fernet import InvalidToken

        try:
            payload = json.loads(decrypt(state, ttl=STATE_TTL_SECONDS))
            return payload["u"], payload["r"]
        except (InvalidToken, ValueError, KeyError, TypeError) as e:
            raise InvalidOAuthStateError("OAuth state is invalid or expired") from e

    # ========== OAuth Flow ==========

    async def authorize(self, redirect_url: str | None = None, force_consent: bool = False) -> str:
        """Build the provider's OAuth consent URL.

        Args:
            redirect_url: OAuth redirect URI; defaults to the configured one.
            force_consent: Force the consent screen (needed to obtain new
                scopes or a fresh refresh token).

        Returns:
            The consent URL to send the user to.

        Raises:
            OAuthNotConfiguredError: If OAuth client credentials are missing.
        """
        if not settings.google_oauth_configured:
            raise OAuthNotConfiguredError(
                "Google OAuth not configured. Set DRIVEMIRROR_GOOGLE_CLIENT_ID and DRIVEMIRROR_GOOGLE_CLIENT_SECRET"
            )

        from google_auth_oauthlib.flow import Flow

        redirect_uri = redirect_url or settings.google_redirect_uri
        sync_settings = await self._get_sync_settings()
        downloads = sync_settings.downloads_enabled if sync_settings else False

        flow = Flow.from_client_config(
            _client_config(),
            scopes=IDENTITY_SCOPES + required_scopes(downloads),
            redirect_uri=redirect_uri,
            # No server-side session to keep a PKCE verifier in
            autogenerate_code_verifier=False,
        )
        auth_url, _ = flow.authorization_url(
            access_type="offline",
            include_granted_scopes="true",
            prompt="consent select_account" if force_consent else "select_account",
            state=self.encode_state(self.user_id, redirect_uri),
        )

        logger.info("oauth_authorize_url_built", user_id=self.user_id, force_consent=force_consent)
        return auth_url

    async def handle_callback(self, code: str, redirect_uri: str) -> DriveConnection:
        """Exchange an authorization code and store the credentials.

        Args:
            code: Authorization code from the callback.
            redirect_uri: The redirect URI used for the consent request.

        Returns:
            The stored DriveConnection.

        Raises:
            AuthRequiredError: If the code exchange fails.
        """
        if not settings.google_oauth_configured:
            raise OAuthNotConfiguredError("Google OAuth not configured")

        from google_auth_oauthlib.flow import Flow

        # Google may return a superset of the requested scopes
        os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")

        flow = Flow.from_client_config(
            _client_config(),
            scopes=None,
            redirect_uri=redirect_uri,
            autogenerate_code_verifier=False,
        )
        try:
            token = await asyncio.to_thread(flow.fetch_token, code=code)
        except Exception as e:
            await self._audit(AuditAction.STORE, False, f"code exchange failed: {e}")
            raise AuthRequiredError(f"OAuth code exchange failed: {e}") from e

        scope = token.get("scope") or ""
        scopes = " ".join(scope) if isinstance(scope, list) else str(scope)
        expires_at = (
            datetime.fromtimestamp(token["expires_at"], tz=timezone.utc).replace(tzinfo=None)
            if token.get("expires_at")
            else utcnow() + timedelta(seconds=int(token.get("expires_in", 3600)))
        )

        return await self.store_tokens(
            access_token=token["access_token"],
            refresh_token=token.get("refresh_token"),
            scopes=scopes,
            expires_at=expires_at,
            email=await self._fetch_email(flow),
        )

    async def _fetch_email(self, flow) -> str | None:
        """Look up the account email for a freshly authorized flow."""
        from googleapiclient.discovery import build

        def _get() -> str | None:
            oauth2 = build("oauth2", "v2", credentials=flow.credentials, cache_discovery=False)
            return oauth2.userinfo().get().execute().get("email")

        try:
            return await asyncio.to_thread(_get)
        except Exception as e:
            logger.warning("oauth_email_lookup_failed", user_id=self.user_id, error=str(e))
            return None

    async def store_tokens(
        self,
        access_token: str,
        refresh_token: str | None,
        scopes: str,
        expires_at: datetime,
        email: str | None = None,
    ) -> DriveConnection:
        """Upsert the user's connection, rotating token values in place.

        An absent ``refresh_token`` keeps the previously stored one; Google
        only returns a refresh token on the first (or a forced) consent.
        """
        connection = await self.get_connection()
        if connection is None:
            connection = DriveConnection(user_id=self.user_id, access_attempts=0)
            self.db.add(connection)

        connection.access_token_encrypted = encrypt(access_token)
        if refresh_token:
            connection.refresh_token_encrypted = encrypt(refresh_token)
        connection.scopes = scopes
        connection.expires_at = expires_at
        if email:
            connection.email = email
        await self.db.flush()

        if not connection.refresh_token_encrypted:
            logger.warning("connection_without_refresh_token", user_id=self.user_id)

        await self._audit(AuditAction.STORE, True)
        logger.info("credentials_stored", user_id=self.user_id, email=connection.email)
        return connection

    # ========== Status ==========

    async def status(self) -> ConnectionStatus:
        """Report whether the user has a usable Drive connection."""
        sync_settings = await self._get_sync_settings()
        downloads = sync_settings.downloads_enabled if sync_settings else False
        base = {
            "dedicated_folder_id": sync_settings.folder_id if sync_settings else None,
            "dedicated_folder_name": sync_settings.folder_name if sync_settings else None,
            "downloads_enabled": downloads,
        }

        connection = await self.get_connection()
        if connection is None or not connection.access_token_encrypted:
            return ConnectionStatus(connected=False, reason=ConnectionReason.NO_ACCESS_TOKEN, **base)

        missing = missing_scopes(connection.granted_scopes, downloads)
        if missing:
            await self._audit(AuditAction.STATUS, False, f"missing scopes: {' '.join(missing)}")
            return ConnectionStatus(
                connected=False,
                reason=ConnectionReason.SCOPE_MISSING,
                email=connection.email,
                **base,
            )

        try:
            await self.get_valid_access_token()
        except NoAccessTokenError:
            return ConnectionStatus(connected=False, reason=ConnectionReason.NO_ACCESS_TOKEN, **base)
        except TokenExpiredError:
            return ConnectionStatus(
                connected=False,
                reason=ConnectionReason.EXPIRED,
                email=connection.email,
                **base,
            )

        return ConnectionStatus(connected=True, email=connection.email, **base)

    # ========== Access Tokens ==========

    async def get_valid_access_token(self) -> str:
        """Return a usable access token, refreshing it when close to expiry.

        Raises:
            NoAccessTokenError: If the user has no stored connection.
            TokenExpiredError: If the token is expired and refresh failed.
        """
        from cryptography.fernet import InvalidToken

        connection = await self.get_connection()
        if connection is None or not connection.access_token_encrypted:
            await self._audit(AuditAction.READ, False, "no connection")
            raise NoAccessTokenError("Google Drive is not connected")

        threshold = utcnow() + timedelta(seconds=settings.token_refresh_threshold)
        if connection.expires_at and connection.expires_at > threshold:
            try:
                token = decrypt(connection.access_token_encrypted)
            except InvalidToken as e:
                await self._audit(AuditAction.READ, False, "undecryptable access token")
                raise NoAccessTokenError("Stored credentials are unreadable; reconnect required") from e
            await self._audit(AuditAction.READ, True)
            return token

        return await self._refresh(connection)

    async def _refresh(self, connection: DriveConnection) -> str:
        """Refresh the access token once; failure means the user must reconnect."""
        from cryptography.fernet import InvalidToken

        if not connection.refresh_token_encrypted:
            await self._audit(AuditAction.REFRESH, False, "no refresh token")
            raise TokenExpiredError("Access token expired and no refresh token is stored")

        try:
            refresh_token = decrypt(connection.refresh_token_encrypted)
        except InvalidToken as e:
            await self._audit(AuditAction.REFRESH, False, "undecryptable refresh token")
            raise TokenExpiredError("Stored refresh token is unreadable") from e

        try:
            access_token, expiry = await self._refresh_credentials(refresh_token)
        except Exception as e:
            await self._audit(AuditAction.REFRESH, False, str(e))
            logger.warning("token_refresh_failed", user_id=self.user_id, error=str(e))
            raise TokenExpiredError(f"Token refresh failed: {e}") from e

        connection.access_token_encrypted = encrypt(access_token)
        connection.expires_at = expiry
        await self.db.flush()

        await self._audit(AuditAction.REFRESH, True)
        logger.info("credentials_refreshed", user_id=self.user_id)
        return access_token

    async def _refresh_credentials(self, refresh_token: str) -> tuple[str, datetime]:
        """Call Google's token endpoint with a refresh token.

        Returns:
            Tuple of (new access token, naive UTC expiry).
        """
        from google.auth.transport.requests import Request
        from google.oauth2.credentials import Credentials as OAuthCredentials

        creds = OAuthCredentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=TOKEN_URI,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
        )
        await asyncio.to_thread(creds.refresh, Request())
        expiry = creds.expiry or (utcnow() + timedelta(hours=1))
        return creds.token, expiry

    # ========== Disconnect ==========

    async def disconnect(self) -> bool:
        """Revoke and delete all stored credential material.

        Returns:
            True if a connection existed.
        """
        connection = await self.get_connection()
        if connection is None:
            await self._audit(AuditAction.REVOKE, False, "no connection")
            return False

        token_enc = connection.refresh_token_encrypted or connection.access_token_encrypted
        if token_enc:
            try:
                import httpx

                async with httpx.AsyncClient(timeout=10) as client:
                    await client.post(REVOKE_URI, params={"token": decrypt(token_enc)})
            except Exception as e:
                # Local deletion proceeds regardless
                logger.warning("credential_revoke_failed", user_id=self.user_id, error=str(e))

        await self.db.delete(connection)
        await self.db.flush()
        await self._audit(AuditAction.REVOKE, True)
        logger.info("credentials_deleted", user_id=self.user_id)
        return True

    # ========== Private Helpers ==========

    async def get_connection(self) -> DriveConnection | None:
        """Get the user's stored connection."""
        result = await self.db.execute(
            select(DriveConnection).where(DriveConnection.user_id == self.user_id)
        )
        return result.scalar_one_or_none()

    async def _get_sync_settings(self) -> SyncSettings | None:
        result = await self.db.execute(
            select(SyncSettings).where(SyncSettings.user_id == self.user_id)
        )
        return result.scalar_one_or_none()

    async def _audit(self, action: AuditAction, success: bool, detail: str | None = None) -> None:
        """Count the access and append an audit record."""
        connection = await self.get_connection()
        if connection is not None:
            connection.access_attempts = (connection.access_attempts or 0) + 1
        self.db.add(CredentialAudit(
            user_id=self.user_id,
            action=action,
            success=success,
            detail=detail,
            created_at=utcnow(),
        ))
        await self.db.flush()
        logger.debug(
            "credential_access",
            user_id=self.user_id,
            action=action.value,
            success=success,
        )
