"""Broker session lifecycle controller.

The controller is the only component that changes a user's connection
state. Each transition reads the stored record, talks to the broker if
needed, and applies its result as one atomic store write:

    unconfigured --configure--> configured --authorization_url--> (awaiting)
    (awaiting) --complete_authorization--> authorized --validate--> connected
    authorized/connected --token rejected | disconnect--> disconnected

Kite access tokens cannot be refreshed. Any Unauthorized answer from the
broker ends the session and the user has to go through the login redirect
again; nothing here retries on its own.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime
from typing import Optional, Type

from sqlalchemy.orm import Session

from src.config import Settings, get_settings
from src.core.brokers.base import BrokerClient
from src.core.brokers.exceptions import (
    CredentialConflict,
    ExchangeFailed,
    InvalidInput,
    NotAuthorized,
    NotConfigured,
    OAuthFailed,
    Unauthorized,
)
from src.core.brokers.kite_client import KiteClient
from src.core.brokers.models import (
    ConnectionState,
    ConnectionStatus,
    CredentialSnapshot,
    DisconnectReason,
    ValidationResult,
)
from src.core.brokers.store import CredentialStore

logger = logging.getLogger(__name__)

ClientFactory = Type[BrokerClient]

STATUS_MESSAGES = {
    ConnectionState.UNCONFIGURED: "Zerodha API keys are not configured. Please set up your API credentials.",
    ConnectionState.CONFIGURED: "API keys are configured but authorization is required.",
    ConnectionState.AWAITING_AUTHORIZATION: "Waiting for Zerodha authorization.",
    ConnectionState.AUTHORIZED: "Zerodha authorization received. Test the connection to start trading.",
    ConnectionState.CONNECTED: "Zerodha account is connected and ready for trading",
    ConnectionState.DISCONNECTED: "Your Zerodha session has ended. Please re-authorize.",
}


def request_token_digest(request_token: str) -> str:
    """Digest stored in place of a consumed request token."""
    return hashlib.sha256(request_token.encode("utf-8")).hexdigest()


class BrokerSessionController:
    """Orchestrates configure, authorize, validate and disconnect."""

    def __init__(
        self,
        store: CredentialStore,
        client_factory: ClientFactory = KiteClient,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.client_factory = client_factory
        self.settings = settings or get_settings()

    def client_for(self, snapshot: CredentialSnapshot) -> BrokerClient:
        """Build a broker client from stored credentials."""
        return self.client_factory(snapshot.api_key, snapshot.api_secret, snapshot.access_token)

    def configure(self, user_id: str, api_key: str, api_secret: str) -> CredentialSnapshot:
        """Store a new API key and secret.

        Any access token issued for earlier keys is dropped with them.

        Raises:
            InvalidInput: If either value is blank
        """
        api_key = (api_key or "").strip()
        api_secret = (api_secret or "").strip()
        if not api_key or not api_secret:
            raise InvalidInput("API Key and Secret are required")

        snapshot = self.store.set(
            user_id,
            api_key=api_key,
            api_secret=api_secret,
            access_token=None,
            is_connected=False,
            disconnect_reason=None,
        )
        logger.info(f"Stored Zerodha credentials for user {user_id}")
        return snapshot

    def authorization_url(self, user_id: str) -> str:
        """Build the broker login URL for the stored API key. Writes nothing.

        Raises:
            NotConfigured: If key or secret is missing
        """
        snapshot = self.store.get(user_id)
        if not snapshot.has_credentials:
            raise NotConfigured()

        logger.info(f"Generating Zerodha login URL for user {user_id}")
        return self.client_factory.build_authorization_url(
            snapshot.api_key, self.settings.callback_url
        )

    def complete_authorization(
        self,
        user_id: str,
        request_token: Optional[str],
        status: Optional[str],
    ) -> CredentialSnapshot:
        """Handle the broker redirect: exchange the request token.

        Stateless; everything is derived from the caller and the query
        parameters.

        Raises:
            OAuthFailed: Broker reported failure or sent no request token
            NotConfigured: No API key on record
            ExchangeFailed: Replayed token, or the broker refused the exchange.
                A broker refusal downgrades the record to disconnected; a
                replayed token is refused locally and leaves the record as is.
        """
        if status != "success" or not request_token:
            logger.info(f"Zerodha authorization failed for user {user_id} (status={status})")
            raise OAuthFailed()

        snapshot = self.store.get(user_id)
        if not snapshot.has_credentials:
            raise NotConfigured("User not found or missing API key")

        digest = request_token_digest(request_token)
        if digest == snapshot.request_token_digest:
            # Replays fail closed without downgrading; the live session stays
            logger.warning(f"Replayed request token rejected for user {user_id}")
            raise ExchangeFailed("request token already used")

        client = self.client_for(snapshot)
        try:
            access_token = client.exchange_request_token(
                snapshot.api_key, snapshot.api_secret, request_token
            )
        except ExchangeFailed as e:
            logger.error(f"Token exchange failed for user {user_id}: {e.reason}")
            self.store.set(
                user_id,
                access_token=None,
                request_token_digest=digest,
                disconnect_reason=DisconnectReason.EXCHANGE_FAILED.value,
            )
            raise

        snapshot = self.store.set(
            user_id,
            access_token=access_token,
            is_connected=False,
            last_sync=datetime.utcnow(),
            request_token_digest=digest,
            disconnect_reason=None,
        )
        logger.info(f"Token exchange successful for user {user_id}")
        return snapshot

    def validate(self, user_id: str) -> ValidationResult:
        """Check the access token live and record balance.

        Raises:
            NotConfigured: No credentials on record
            NotAuthorized: No access token on record
            Unauthorized: Broker rejected the token (session is revoked first)
            BrokerUnavailable: Transport failure (state left unchanged)
            CredentialConflict: Record changed during validation
        """
        snapshot = self.store.get(user_id)
        if not snapshot.access_token:
            if not snapshot.has_credentials:
                raise NotConfigured("Zerodha credentials not found")
            raise NotAuthorized()

        client = self.client_for(snapshot)
        try:
            profile = client.fetch_profile()
            margins = client.fetch_margins()
        except Unauthorized:
            self.revoke_session(user_id, DisconnectReason.TOKEN_REJECTED, snapshot.version)
            raise

        now = datetime.utcnow()
        self.store.set(
            user_id,
            expected_version=snapshot.version,
            is_connected=True,
            balance=margins.available_cash,
            last_sync=now,
        )
        logger.info(
            f"Zerodha connection validated for user {user_id} "
            f"(account={profile.external_id}, balance={margins.available_cash})"
        )
        return ValidationResult(profile=profile, balance=margins.available_cash, validated_at=now)

    def revoke_session(
        self,
        user_id: str,
        reason: DisconnectReason,
        expected_version: Optional[int] = None,
    ) -> CredentialSnapshot:
        """Drop the access token after the broker rejected it.

        API key and secret are kept so the user can re-authorize straight
        away. If the record moved on since `expected_version` (for example a
        fresh token arrived), the newer state wins and nothing is written.
        """
        try:
            snapshot = self.store.set(
                user_id,
                expected_version=expected_version,
                access_token=None,
                is_connected=False,
                disconnect_reason=reason.value,
            )
        except CredentialConflict:
            logger.info(f"Skipped revoking session for user {user_id}: record changed")
            return self.store.get(user_id)

        logger.warning(f"Zerodha session revoked for user {user_id} ({reason.value})")
        return snapshot

    def disconnect(self, user_id: str) -> CredentialSnapshot:
        """Forget all credentials and reset status."""
        return self.store.clear(user_id, DisconnectReason.USER_DISCONNECT)

    def status(self, user_id: str) -> ConnectionStatus:
        """Summarize the link state for display."""
        snapshot = self.store.get(user_id)
        state = snapshot.state
        return ConnectionStatus(
            state=state,
            message=STATUS_MESSAGES[state],
            can_trade=state == ConnectionState.CONNECTED,
            needs_auth=state in (
                ConnectionState.CONFIGURED,
                ConnectionState.DISCONNECTED,
            ) and snapshot.has_credentials,
            needs_credentials=not snapshot.has_credentials,
            balance=snapshot.balance,
            last_sync=snapshot.last_sync,
            has_api_key=bool(snapshot.api_key),
            has_access_token=bool(snapshot.access_token),
        )


def get_session_controller(db: Session) -> BrokerSessionController:
    """Factory function for the session lifecycle controller."""
    return BrokerSessionController(CredentialStore(db))
