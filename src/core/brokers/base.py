"""Base broker client abstraction."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from src.core.brokers.models import BrokerHolding, BrokerMargins, BrokerProfile, PositionBook


class BrokerClient(ABC):
    """Abstract base class for broker protocol clients.

    A client is stateless apart from the credentials it is constructed
    with. Each broker client implements methods to:
    1. Build the authorization URL for the redirect flow
    2. Exchange a single-use request token for an access token
    3. Fetch profile, margins, positions and holdings with that token

    Authenticated calls raise Unauthorized when the broker rejects the
    token and BrokerUnavailable on transport failure; callers rely on the
    distinction to decide whether re-authorization is needed.
    """

    def __init__(self, api_key: str, api_secret: str, access_token: Optional[str] = None):
        self.api_key = api_key
        self.api_secret = api_secret
        self.access_token = access_token

    @staticmethod
    @abstractmethod
    def build_authorization_url(api_key: str, redirect_uri: str) -> str:
        """Build the broker login URL. No network call.

        Args:
            api_key: Broker app API key
            redirect_uri: Where the broker sends the user afterwards

        Returns:
            URL to send the user to
        """
        pass

    @abstractmethod
    def exchange_request_token(self, api_key: str, api_secret: str, request_token: str) -> str:
        """Exchange a request token for an access token.

        Request tokens are single-use, so this is never retried.

        Raises:
            ExchangeFailed: On any non-success outcome
        """
        pass

    @abstractmethod
    def fetch_profile(self) -> BrokerProfile:
        """Fetch the account profile."""
        pass

    @abstractmethod
    def fetch_margins(self) -> BrokerMargins:
        """Fetch equity margins."""
        pass

    @abstractmethod
    def fetch_positions(self) -> PositionBook:
        """Fetch net and day positions."""
        pass

    @abstractmethod
    def fetch_holdings(self) -> List[BrokerHolding]:
        """Fetch delivery holdings."""
        pass
