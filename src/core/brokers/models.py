"""Broker integration data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class ConnectionState(str, Enum):
    """Lifecycle state of a user's broker link."""

    UNCONFIGURED = "unconfigured"
    CONFIGURED = "configured"
    AWAITING_AUTHORIZATION = "awaiting_authorization"
    AUTHORIZED = "authorized"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class DisconnectReason(str, Enum):
    """Why a link dropped to the disconnected state."""

    USER_DISCONNECT = "user_disconnect"
    TOKEN_REJECTED = "token_rejected"
    EXCHANGE_FAILED = "exchange_failed"


@dataclass(frozen=True)
class CredentialSnapshot:
    """Unsealed view of a stored BrokerCredential row."""

    user_id: str
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    access_token: Optional[str] = None
    is_connected: bool = False
    balance: float = 0.0
    last_sync: Optional[datetime] = None
    request_token_digest: Optional[str] = None
    disconnect_reason: Optional[str] = None
    version: int = 0

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret)

    @property
    def state(self) -> ConnectionState:
        """Derive the lifecycle state from the stored fields."""
        if self.access_token:
            return ConnectionState.CONNECTED if self.is_connected else ConnectionState.AUTHORIZED
        if self.disconnect_reason:
            return ConnectionState.DISCONNECTED
        if self.has_credentials:
            return ConnectionState.CONFIGURED
        return ConnectionState.UNCONFIGURED


@dataclass
class BrokerProfile:
    """Account profile as reported by the broker."""

    display_name: str
    external_id: str
    broker_name: str
    email: Optional[str] = None


@dataclass
class BrokerMargins:
    """Equity segment margins."""

    available_cash: float
    net: float = 0.0
    utilised: float = 0.0


@dataclass
class BrokerPosition:
    """An open position fetched from the broker."""

    symbol: str
    exchange: str
    product: str
    quantity: int
    average_price: float
    last_price: float
    pnl: float
    unrealised: float

    @property
    def is_open(self) -> bool:
        return self.quantity != 0


@dataclass
class PositionBook:
    """Net (carried) and day positions."""

    net: List[BrokerPosition] = field(default_factory=list)
    day: List[BrokerPosition] = field(default_factory=list)

    def open_only(self) -> "PositionBook":
        """Drop closed (zero quantity) positions."""
        return PositionBook(
            net=[p for p in self.net if p.is_open],
            day=[p for p in self.day if p.is_open],
        )


@dataclass
class BrokerHolding:
    """A long-term (delivery) holding."""

    symbol: str
    exchange: str
    isin: Optional[str]
    quantity: int
    average_price: float
    last_price: float
    pnl: float


@dataclass
class ValidationResult:
    """Result of a successful live validation."""

    profile: BrokerProfile
    balance: float
    validated_at: datetime


@dataclass
class ConnectionStatus:
    """User-facing summary of the link state."""

    state: ConnectionState
    message: str
    can_trade: bool
    needs_auth: bool
    needs_credentials: bool
    balance: float
    last_sync: Optional[datetime]
    has_api_key: bool
    has_access_token: bool
