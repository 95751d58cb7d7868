"""Tests for PositionSyncService."""

import pytest

from src.core.brokers.exceptions import BrokerUnavailable, NotAuthorized, Unauthorized
from src.core.brokers.models import (
    BrokerHolding,
    BrokerMargins,
    BrokerPosition,
    ConnectionState,
    PositionBook,
)
from src.core.brokers.sync import PositionSyncService


def position(symbol, quantity):
    return BrokerPosition(
        symbol=symbol,
        exchange="NSE",
        product="MIS",
        quantity=quantity,
        average_price=100.0,
        last_price=101.0,
        pnl=float(quantity),
        unrealised=float(quantity),
    )


@pytest.fixture
def sync_service(controller):
    return PositionSyncService(controller)


class TestListPositions:
    """Tests for open position listing."""

    def test_closed_positions_are_dropped(self, sync_service, broker, connected_user):
        """Zero-quantity positions should never be returned."""
        broker.fetch_positions.return_value = PositionBook(
            net=[position("INFY", 10), position("TCS", 0), position("SBIN", -5)],
            day=[position("TCS", 0), position("INFY", 10)],
        )

        book = sync_service.list_positions(connected_user.id)

        assert [p.symbol for p in book.net] == ["INFY", "SBIN"]
        assert [p.symbol for p in book.day] == ["INFY"]
        assert all(p.quantity != 0 for p in book.net + book.day)

    def test_no_token_needs_auth_without_broker_call(self, sync_service, controller, client_factory, user):
        """Should fail with needsAuth before touching the broker."""
        controller.configure(user.id, "kite-api-key", "kite-api-secret")

        with pytest.raises(NotAuthorized) as exc_info:
            sync_service.list_positions(user.id)

        assert exc_info.value.hints == {"needsAuth": True}
        client_factory.assert_not_called()

    def test_unconfigured_user_needs_credentials_too(self, sync_service, user):
        """Users without keys should be routed to configure first."""
        with pytest.raises(NotAuthorized) as exc_info:
            sync_service.list_positions(user.id)

        assert exc_info.value.hints == {"needsAuth": True, "needsCredentials": True}

    def test_rejected_token_revokes_session(self, sync_service, controller, broker, connected_user):
        """Unauthorized from the broker should downgrade the record."""
        broker.fetch_positions.side_effect = Unauthorized()

        with pytest.raises(Unauthorized):
            sync_service.list_positions(connected_user.id)

        snapshot = controller.store.get(connected_user.id)
        assert snapshot.access_token is None
        assert snapshot.is_connected is False
        assert snapshot.state == ConnectionState.DISCONNECTED

    def test_unavailable_broker_keeps_session(self, sync_service, controller, broker, connected_user):
        """Transport failures should propagate without side effects."""
        broker.fetch_positions.side_effect = BrokerUnavailable()

        with pytest.raises(BrokerUnavailable):
            sync_service.list_positions(connected_user.id)

        assert controller.store.get(connected_user.id).state == ConnectionState.CONNECTED


class TestMarginsAndHoldings:
    """Tests for margins and holdings."""

    def test_margins_pass_through(self, sync_service, broker, connected_user):
        broker.fetch_margins.return_value = BrokerMargins(available_cash=5000.0, net=4800.0, utilised=200.0)

        margins = sync_service.get_margins(connected_user.id)

        assert margins.available_cash == 5000.0
        assert margins.utilised == 200.0

    def test_sold_out_holdings_are_dropped(self, sync_service, broker, connected_user):
        """Holdings with zero quantity should be skipped."""
        broker.fetch_holdings.return_value = [
            BrokerHolding("INFY", "NSE", "INE009A01021", 5, 1400.0, 1500.0, 500.0),
            BrokerHolding("TCS", "NSE", "INE467B01029", 0, 3000.0, 3100.0, 0.0),
        ]

        holdings = sync_service.list_holdings(connected_user.id)

        assert [h.symbol for h in holdings] == ["INFY"]
