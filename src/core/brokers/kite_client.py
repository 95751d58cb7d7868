"""Zerodha Kite Connect protocol client.

Thin wrapper over the Kite Connect v3 HTTP API covering the calls the
portal needs to link an account: login URL construction, request token
exchange, and read-only profile/margins/positions/holdings queries.

Docs: https://kite.trade/docs/connect/v3/
"""

from __future__ import annotations

import hashlib
import logging
from typing import List, Optional, Type, TypeVar
from urllib.parse import urlencode

import requests
from pydantic import BaseModel, ValidationError

from src.config import get_settings
from src.core.brokers.base import BrokerClient
from src.core.brokers.exceptions import (
    BrokerProtocolError,
    BrokerUnavailable,
    ExchangeFailed,
    Unauthorized,
)
from src.core.brokers.models import (
    BrokerHolding,
    BrokerMargins,
    BrokerPosition,
    BrokerProfile,
    PositionBook,
)
from src.core.brokers.schemas import (
    ErrorEnvelope,
    HoldingsEnvelope,
    MarginsEnvelope,
    PositionData,
    PositionsEnvelope,
    ProfileEnvelope,
    SessionEnvelope,
)

logger = logging.getLogger(__name__)

KITE_VERSION = "3"

# error_type values Kite uses when the session itself is no longer valid
TOKEN_ERROR_TYPES = {"TokenException", "PermissionException"}

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def mask(value: Optional[str], visible: int = 6) -> str:
    """Masked preview of a secret for log lines."""
    if not value:
        return "<empty>"
    return value[:visible] + "***"


class KiteClient(BrokerClient):
    """Kite Connect client bound to one user's credentials."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        access_token: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
        base_url: Optional[str] = None,
    ):
        super().__init__(api_key, api_secret, access_token)
        settings = get_settings()
        self.timeout = timeout if timeout is not None else settings.broker_timeout_seconds
        self.base_url = (base_url or settings.kite_api_url).rstrip("/")
        self._session = session or requests.Session()

    @staticmethod
    def build_authorization_url(api_key: str, redirect_uri: str) -> str:
        """Build the Kite Connect login URL."""
        query = urlencode({"api_key": api_key, "v": KITE_VERSION, "redirect_url": redirect_uri})
        return f"{get_settings().kite_login_url}?{query}"

    @staticmethod
    def checksum(api_key: str, request_token: str, api_secret: str) -> str:
        """SHA-256 of api_key + request_token + api_secret, as Kite expects."""
        return hashlib.sha256((api_key + request_token + api_secret).encode("utf-8")).hexdigest()

    def exchange_request_token(self, api_key: str, api_secret: str, request_token: str) -> str:
        """Exchange a request token for an access token via POST /session/token."""
        logger.info(
            f"Exchanging request token (api_key={mask(api_key)}, "
            f"request_token_length={len(request_token)})"
        )

        try:
            response = self._session.post(
                f"{self.base_url}/session/token",
                data={
                    "api_key": api_key,
                    "request_token": request_token,
                    "checksum": self.checksum(api_key, request_token, api_secret),
                },
                headers={"X-Kite-Version": KITE_VERSION},
                timeout=self.timeout,
            )
        except requests.Timeout:
            raise ExchangeFailed("timed out waiting for broker")
        except requests.RequestException as e:
            raise ExchangeFailed(f"network error: {e}")

        if not response.ok:
            raise ExchangeFailed(self._error_message(response))

        try:
            envelope = SessionEnvelope.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ExchangeFailed(f"unexpected session response: {e}")

        if envelope.status != "success" or not envelope.data.access_token:
            raise ExchangeFailed("broker did not return an access token")

        return envelope.data.access_token

    def fetch_profile(self) -> BrokerProfile:
        data = self._get("/user/profile", ProfileEnvelope).data
        return BrokerProfile(
            display_name=data.user_name,
            external_id=data.user_id,
            broker_name=data.broker,
            email=data.email,
        )

    def fetch_margins(self) -> BrokerMargins:
        equity = self._get("/user/margins", MarginsEnvelope).data.equity
        return BrokerMargins(
            available_cash=equity.available.cash,
            net=equity.net,
            utilised=equity.utilised.debits if equity.utilised else 0.0,
        )

    def fetch_positions(self) -> PositionBook:
        data = self._get("/portfolio/positions", PositionsEnvelope).data
        return PositionBook(
            net=[self._to_position(p) for p in data.net],
            day=[self._to_position(p) for p in data.day],
        )

    def fetch_holdings(self) -> List[BrokerHolding]:
        return [
            BrokerHolding(
                symbol=h.tradingsymbol,
                exchange=h.exchange,
                isin=h.isin,
                quantity=h.quantity,
                average_price=h.average_price,
                last_price=h.last_price,
                pnl=h.pnl,
            )
            for h in self._get("/portfolio/holdings", HoldingsEnvelope).data
        ]

    # Internals

    @staticmethod
    def _to_position(p: PositionData) -> BrokerPosition:
        return BrokerPosition(
            symbol=p.tradingsymbol,
            exchange=p.exchange,
            product=p.product,
            quantity=p.quantity,
            average_price=p.average_price,
            last_price=p.last_price,
            pnl=p.pnl,
            unrealised=p.unrealised,
        )

    def _get(self, path: str, schema: Type[SchemaT]) -> SchemaT:
        """Authenticated GET parsed into `schema`.

        Raises:
            Unauthorized: Missing token, or the broker rejected it
            BrokerUnavailable: Timeout, connection failure, 5xx or throttling
            BrokerProtocolError: Body does not match the schema
        """
        if not self.access_token:
            raise Unauthorized("Access token required. Please complete OAuth flow first.")

        try:
            response = self._session.get(
                f"{self.base_url}{path}",
                headers={
                    "Authorization": f"token {self.api_key}:{self.access_token}",
                    "X-Kite-Version": KITE_VERSION,
                },
                timeout=self.timeout,
            )
        except requests.Timeout:
            logger.warning(f"Kite timeout after {self.timeout}s on {path}")
            raise BrokerUnavailable(f"Timed out fetching {path} from Zerodha")
        except requests.RequestException as e:
            logger.warning(f"Kite request failed on {path}: {e}")
            raise BrokerUnavailable(f"Could not reach Zerodha: {e}")

        self._raise_for_error(path, response)

        try:
            return schema.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            logger.error(f"Unexpected Kite response shape on {path}: {e}")
            raise BrokerProtocolError(f"Unexpected response from Zerodha for {path}")

    def _raise_for_error(self, path: str, response: requests.Response) -> None:
        if response.ok:
            return

        error_type = self._error_type(response)
        message = self._error_message(response)

        if response.status_code in (401, 403) or error_type in TOKEN_ERROR_TYPES:
            logger.info(f"Kite rejected access token on {path}: {message}")
            raise Unauthorized()
        if response.status_code >= 500 or response.status_code == 429:
            logger.warning(f"Kite server error {response.status_code} on {path}: {message}")
            raise BrokerUnavailable(f"Zerodha returned {response.status_code}")

        logger.error(f"Kite API error {response.status_code} on {path}: {message}")
        raise BrokerProtocolError(f"Zerodha rejected {path}: {message}")

    @staticmethod
    def _parse_error(response: requests.Response) -> Optional[ErrorEnvelope]:
        try:
            return ErrorEnvelope.model_validate(response.json())
        except (ValueError, ValidationError):
            return None

    def _error_type(self, response: requests.Response) -> Optional[str]:
        envelope = self._parse_error(response)
        return envelope.error_type if envelope else None

    def _error_message(self, response: requests.Response) -> str:
        envelope = self._parse_error(response)
        if envelope and envelope.message:
            return envelope.message
        return f"HTTP {response.status_code}: {response.text[:200]}"
