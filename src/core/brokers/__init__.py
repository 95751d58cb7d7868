"""Broker integration module: credential and session lifecycle.

Supports:
- Zerodha Kite Connect (request token redirect flow)

Usage:
    from src.core.brokers import get_session_controller, get_position_sync_service

    controller = get_session_controller(db)
    controller.configure(user.id, api_key, api_secret)
    login_url = controller.authorization_url(user.id)

    # After the broker redirects back with a request token
    controller.complete_authorization(user.id, request_token, status)
    result = controller.validate(user.id)

    positions = get_position_sync_service(db).list_positions(user.id)
"""

from src.core.brokers.models import (
    ConnectionState,
    ConnectionStatus,
    CredentialSnapshot,
    DisconnectReason,
    BrokerProfile,
    BrokerMargins,
    BrokerPosition,
    BrokerHolding,
    PositionBook,
    ValidationResult,
)
from src.core.brokers.base import BrokerClient
from src.core.brokers.codec import SecretCodec, get_secret_codec
from src.core.brokers.kite_client import KiteClient
from src.core.brokers.store import CredentialStore, get_credential_store
from src.core.brokers.lifecycle import BrokerSessionController, get_session_controller
from src.core.brokers.sync import PositionSyncService, get_position_sync_service

__all__ = [
    # Models
    "ConnectionState",
    "ConnectionStatus",
    "CredentialSnapshot",
    "DisconnectReason",
    "BrokerProfile",
    "BrokerMargins",
    "BrokerPosition",
    "BrokerHolding",
    "PositionBook",
    "ValidationResult",
    # Clients
    "BrokerClient",
    "KiteClient",
    # Persistence
    "SecretCodec",
    "get_secret_codec",
    "CredentialStore",
    "get_credential_store",
    # Services
    "BrokerSessionController",
    "get_session_controller",
    "PositionSyncService",
    "get_position_sync_service",
]
