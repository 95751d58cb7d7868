"""Tests for the Kite Connect client."""

import hashlib
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from src.core.brokers.exceptions import (
    BrokerProtocolError,
    BrokerUnavailable,
    ExchangeFailed,
    Unauthorized,
)
from src.core.brokers.kite_client import KiteClient, mask


def kite_response(status_code=200, payload=None, text=""):
    """Build a fake requests.Response."""
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.text = text
    if payload is None:
        response.json.side_effect = ValueError("No JSON")
    else:
        response.json.return_value = payload
    return response


def make_client(session, access_token="access-token"):
    return KiteClient(
        "api-key",
        "api-secret",
        access_token,
        timeout=5,
        session=session,
        base_url="https://api.kite.test",
    )


class TestAuthorizationUrl:
    """Tests for the login URL."""

    def test_login_url_carries_api_key_and_redirect(self):
        """Should include api_key, version and redirect URL."""
        url = KiteClient.build_authorization_url("my-key", "http://portal/api/zerodha/callback")

        parsed = urlparse(url)
        query = parse_qs(parsed.query)
        assert parsed.netloc == "kite.zerodha.com"
        assert query["api_key"] == ["my-key"]
        assert query["v"] == ["3"]
        assert query["redirect_url"] == ["http://portal/api/zerodha/callback"]


class TestExchangeRequestToken:
    """Tests for POST /session/token."""

    def test_checksum_is_sha256_of_key_token_secret(self):
        """Checksum should match Kite's documented formula."""
        expected = hashlib.sha256(b"keytokensecret").hexdigest()

        assert KiteClient.checksum("key", "token", "secret") == expected

    def test_successful_exchange_returns_access_token(self):
        """Should post the checksum and return the access token."""
        session = MagicMock()
        session.post.return_value = kite_response(
            payload={"status": "success", "data": {"access_token": "fresh-token", "user_id": "AB1234"}}
        )
        client = make_client(session, access_token=None)

        token = client.exchange_request_token("api-key", "api-secret", "req-token")

        assert token == "fresh-token"
        args, kwargs = session.post.call_args
        assert args[0] == "https://api.kite.test/session/token"
        assert kwargs["data"]["checksum"] == KiteClient.checksum("api-key", "req-token", "api-secret")
        assert kwargs["headers"]["X-Kite-Version"] == "3"
        assert kwargs["timeout"] == 5

    def test_rejected_token_raises_exchange_failed(self):
        """Broker errors should raise ExchangeFailed with the broker message."""
        session = MagicMock()
        session.post.return_value = kite_response(
            403,
            {"status": "error", "message": "Token is invalid or has expired.", "error_type": "TokenException"},
        )
        client = make_client(session, access_token=None)

        with pytest.raises(ExchangeFailed) as exc_info:
            client.exchange_request_token("api-key", "api-secret", "used-token")

        assert "expired" in exc_info.value.reason

    def test_timeout_raises_exchange_failed(self):
        """Transport failures during exchange are exchange failures."""
        session = MagicMock()
        session.post.side_effect = requests.Timeout()
        client = make_client(session, access_token=None)

        with pytest.raises(ExchangeFailed):
            client.exchange_request_token("api-key", "api-secret", "req-token")

    def test_missing_access_token_raises_exchange_failed(self):
        """A success envelope without a token is still a failure."""
        session = MagicMock()
        session.post.return_value = kite_response(payload={"status": "success", "data": {}})
        client = make_client(session, access_token=None)

        with pytest.raises(ExchangeFailed):
            client.exchange_request_token("api-key", "api-secret", "req-token")


class TestAuthenticatedCalls:
    """Tests for profile, margins, positions and holdings."""

    def test_sends_token_authorization_header(self):
        """Should authenticate with 'token key:access'."""
        session = MagicMock()
        session.get.return_value = kite_response(
            payload={"status": "success", "data": {"user_id": "AB1234", "user_name": "Asha", "broker": "ZERODHA"}}
        )
        client = make_client(session)

        profile = client.fetch_profile()

        assert profile.external_id == "AB1234"
        assert profile.display_name == "Asha"
        headers = session.get.call_args.kwargs["headers"]
        assert headers["Authorization"] == "token api-key:access-token"

    def test_margins_use_equity_available_cash(self):
        """Balance should come from equity.available.cash."""
        session = MagicMock()
        session.get.return_value = kite_response(
            payload={
                "status": "success",
                "data": {
                    "equity": {
                        "net": 99000.0,
                        "available": {"cash": 100000.0, "collateral": 0},
                        "utilised": {"debits": 1000.0},
                    },
                    "commodity": {"net": 0},
                },
            }
        )
        client = make_client(session)

        margins = client.fetch_margins()

        assert margins.available_cash == 100000.0
        assert margins.net == 99000.0
        assert margins.utilised == 1000.0

    def test_positions_keep_net_and_day(self):
        """Should map both position lists."""
        position = {
            "tradingsymbol": "INFY",
            "exchange": "NSE",
            "product": "CNC",
            "quantity": 10,
            "average_price": 1500.0,
            "last_price": 1510.0,
            "pnl": 100.0,
            "unrealised": 100.0,
        }
        session = MagicMock()
        session.get.return_value = kite_response(
            payload={"status": "success", "data": {"net": [position], "day": []}}
        )
        client = make_client(session)

        book = client.fetch_positions()

        assert [p.symbol for p in book.net] == ["INFY"]
        assert book.day == []

    def test_token_exception_raises_unauthorized(self):
        """403 TokenException means the session is gone."""
        session = MagicMock()
        session.get.return_value = kite_response(
            403,
            {"status": "error", "message": "Incorrect `api_key` or `access_token`.", "error_type": "TokenException"},
        )
        client = make_client(session)

        with pytest.raises(Unauthorized):
            client.fetch_profile()

    def test_server_error_raises_broker_unavailable(self):
        """5xx should be treated as retryable."""
        session = MagicMock()
        session.get.return_value = kite_response(503, text="Service Unavailable")
        client = make_client(session)

        with pytest.raises(BrokerUnavailable):
            client.fetch_margins()

    def test_timeout_raises_broker_unavailable(self):
        """Timeouts should not look like a rejected token."""
        session = MagicMock()
        session.get.side_effect = requests.Timeout()
        client = make_client(session)

        with pytest.raises(BrokerUnavailable):
            client.fetch_positions()

    def test_unexpected_shape_raises_protocol_error(self):
        """Missing fields should raise BrokerProtocolError."""
        session = MagicMock()
        session.get.return_value = kite_response(payload={"status": "success", "data": {"equity": {}}})
        client = make_client(session)

        with pytest.raises(BrokerProtocolError):
            client.fetch_margins()

    def test_input_exception_raises_protocol_error(self):
        """Other 4xx errors are protocol errors, not token problems."""
        session = MagicMock()
        session.get.return_value = kite_response(
            400, {"status": "error", "message": "Invalid segment", "error_type": "InputException"}
        )
        client = make_client(session)

        with pytest.raises(BrokerProtocolError):
            client.fetch_holdings()

    def test_no_token_makes_no_request(self):
        """Without an access token nothing is sent."""
        session = MagicMock()
        client = make_client(session, access_token=None)

        with pytest.raises(Unauthorized):
            client.fetch_profile()

        session.get.assert_not_called()


class TestMask:
    """Tests for log masking."""

    def test_mask_hides_most_of_value(self):
        assert mask("abcdefghijkl") == "abcdef***"
        assert mask(None) == "<empty>"
