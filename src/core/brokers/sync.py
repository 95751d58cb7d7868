"""Read-only position and margin queries over a live broker session."""

from __future__ import annotations

import logging
from typing import Callable, List, TypeVar

from sqlalchemy.orm import Session

from src.core.brokers.base import BrokerClient
from src.core.brokers.exceptions import NotAuthorized, Unauthorized
from src.core.brokers.lifecycle import BrokerSessionController, get_session_controller
from src.core.brokers.models import (
    BrokerHolding,
    BrokerMargins,
    DisconnectReason,
    PositionBook,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PositionSyncService:
    """Service for fetching positions, margins and holdings for a user.

    Needs an access token on record; no broker call is made without one.
    If the broker rejects the token the session is revoked before the
    error reaches the caller, so the user is never shown as connected with
    a dead token.
    """

    def __init__(self, controller: BrokerSessionController):
        self.controller = controller

    def list_positions(self, user_id: str) -> PositionBook:
        """Open net and day positions; closed (zero quantity) ones are dropped."""
        book = self._with_session(user_id, lambda client: client.fetch_positions())
        active = book.open_only()
        logger.debug(
            f"Fetched positions for user {user_id}: "
            f"{len(active.net)}/{len(book.net)} net, {len(active.day)}/{len(book.day)} day open"
        )
        return active

    def get_margins(self, user_id: str) -> BrokerMargins:
        """Current equity margins."""
        return self._with_session(user_id, lambda client: client.fetch_margins())

    def list_holdings(self, user_id: str) -> List[BrokerHolding]:
        """Delivery holdings with non-zero quantity."""
        holdings = self._with_session(user_id, lambda client: client.fetch_holdings())
        return [h for h in holdings if h.quantity != 0]

    def _with_session(self, user_id: str, call: Callable[[BrokerClient], T]) -> T:
        snapshot = self.controller.store.get(user_id)
        if not snapshot.access_token:
            if not snapshot.has_credentials:
                raise NotAuthorized(
                    "Zerodha credentials not found. Please configure and authorize your account.",
                    hints={"needsAuth": True, "needsCredentials": True},
                )
            raise NotAuthorized()

        client = self.controller.client_for(snapshot)
        try:
            return call(client)
        except Unauthorized:
            self.controller.revoke_session(
                user_id, DisconnectReason.TOKEN_REJECTED, snapshot.version
            )
            raise


def get_position_sync_service(db: Session) -> PositionSyncService:
    """Factory function for position sync service."""
    return PositionSyncService(get_session_controller(db))
