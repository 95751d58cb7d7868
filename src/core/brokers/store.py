"""Credential store for per-user broker credentials.

Every write is one UPDATE keyed by user id and committed immediately, so a
transition is either fully applied or not at all. Sensitive fields are
sealed inside `set` and opened inside `get`; callers only ever handle
plaintext and never see ciphertext.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, NoReturn, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.core.brokers.codec import SecretCodec, get_secret_codec
from src.core.brokers.exceptions import CredentialConflict, NotFound, StorageUnavailable
from src.core.brokers.models import CredentialSnapshot, DisconnectReason
from src.db.models import BrokerCredential, User, utcnow

logger = logging.getLogger(__name__)

SEALED_FIELDS = ("api_key", "api_secret", "access_token")
WRITABLE_FIELDS = SEALED_FIELDS + (
    "is_connected",
    "balance",
    "last_sync",
    "request_token_digest",
    "disconnect_reason",
)


class CredentialStore:
    """Repository for BrokerCredential rows, scoped to one user per call."""

    def __init__(self, db: Session, codec: Optional[SecretCodec] = None):
        """Initialize store with database session and sealing codec."""
        self.db = db
        self.codec = codec or get_secret_codec()

    def get(self, user_id: str) -> CredentialSnapshot:
        """Load and unseal a user's credentials.

        Creates the empty record for accounts that predate it.

        Raises:
            NotFound: If the user does not exist
            StorageUnavailable: On database failure
            DecodeError: If a stored value cannot be unsealed
        """
        try:
            row = self._ensure_row(user_id)
        except SQLAlchemyError as e:
            self._fail("read", user_id, e)
        return self._to_snapshot(row)

    def set(
        self,
        user_id: str,
        expected_version: Optional[int] = None,
        **fields: Any,
    ) -> CredentialSnapshot:
        """Merge-update the given fields, leaving siblings untouched.

        Args:
            user_id: Owner of the record
            expected_version: If given, only write when the row is still at
                this version
            **fields: Columns to write; sealed fields are plaintext here

        Raises:
            CredentialConflict: The row changed since `expected_version`, or
                is_connected was set on a record whose token is gone
        """
        unknown = set(fields) - set(WRITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown credential fields: {sorted(unknown)}")

        values: Dict[str, Any] = {}
        for name, value in fields.items():
            if name in SEALED_FIELDS and value is not None:
                value = self.codec.seal(value)
            values[name] = value

        # access_token absent implies not connected
        if "access_token" in values and values["access_token"] is None:
            values["is_connected"] = False

        stmt = update(BrokerCredential).where(BrokerCredential.user_id == user_id)
        if expected_version is not None:
            stmt = stmt.where(BrokerCredential.version == expected_version)
        if values.get("is_connected") and "access_token" not in values:
            stmt = stmt.where(BrokerCredential.access_token.isnot(None))

        self._execute(user_id, stmt, values)
        return self.get(user_id)

    def clear(
        self,
        user_id: str,
        reason: DisconnectReason = DisconnectReason.USER_DISCONNECT,
    ) -> CredentialSnapshot:
        """Remove all sensitive fields and reset status fields in one write."""
        stmt = update(BrokerCredential).where(BrokerCredential.user_id == user_id)
        self._execute(user_id, stmt, self._cleared_values(reason))
        logger.info(f"Cleared broker credentials for user {user_id} ({reason.value})")
        return self.get(user_id)

    def clear_all(self, reason: DisconnectReason = DisconnectReason.USER_DISCONNECT) -> int:
        """Clear credentials for every user holding any. Operator use only.

        Returns:
            Number of records cleared
        """
        values = self._cleared_values(reason)
        values["version"] = BrokerCredential.version + 1
        values["updated_at"] = utcnow()
        stmt = (
            update(BrokerCredential)
            .where(
                (BrokerCredential.api_key.isnot(None))
                | (BrokerCredential.api_secret.isnot(None))
                | (BrokerCredential.access_token.isnot(None))
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError as e:
            self._fail("clear_all", "*", e)
        logger.warning(f"Cleared broker credentials for {result.rowcount} users")
        return result.rowcount

    def reseal_all(self) -> int:
        """Re-seal every stored secret under the primary key.

        Returns:
            Number of records rewritten
        """
        count = 0
        try:
            rows = self.db.query(BrokerCredential).populate_existing().all()
            for row in rows:
                changed = False
                for name in SEALED_FIELDS:
                    value = getattr(row, name)
                    if value is not None:
                        setattr(row, name, self.codec.rotate(value))
                        changed = True
                if changed:
                    row.version = row.version + 1
                    count += 1
            self.db.commit()
        except SQLAlchemyError as e:
            self._fail("reseal", "*", e)
        return count

    # Internals

    @staticmethod
    def _cleared_values(reason: DisconnectReason) -> Dict[str, Any]:
        return {
            "api_key": None,
            "api_secret": None,
            "access_token": None,
            "last_sync": None,
            "is_connected": False,
            "balance": 0.0,
            "disconnect_reason": reason.value,
        }

    def _ensure_row(self, user_id: str) -> BrokerCredential:
        row = (
            self.db.query(BrokerCredential)
            .populate_existing()
            .filter(BrokerCredential.user_id == user_id)
            .first()
        )
        if row is not None:
            return row

        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFound(f"User {user_id} not found")

        row = BrokerCredential(user_id=user_id, is_connected=False, balance=0.0, version=0)
        self.db.add(row)
        self.db.commit()
        logger.debug(f"Created empty broker credential record for user {user_id}")
        return row

    def _execute(self, user_id: str, stmt, values: Dict[str, Any]) -> None:
        try:
            self._ensure_row(user_id)
            values = dict(values)
            values["version"] = BrokerCredential.version + 1
            values["updated_at"] = utcnow()
            result = self.db.execute(
                stmt.values(**values).execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                self.db.rollback()
                raise CredentialConflict()
            self.db.commit()
        except SQLAlchemyError as e:
            self._fail("write", user_id, e)

    def _fail(self, action: str, user_id: str, error: SQLAlchemyError) -> NoReturn:
        self.db.rollback()
        logger.error(f"Credential store {action} failed for user {user_id}: {error}")
        raise StorageUnavailable() from error

    def _to_snapshot(self, row: BrokerCredential) -> CredentialSnapshot:
        opened = {
            name: (self.codec.open(getattr(row, name)) if getattr(row, name) is not None else None)
            for name in SEALED_FIELDS
        }
        return CredentialSnapshot(
            user_id=row.user_id,
            is_connected=bool(row.is_connected) and opened["access_token"] is not None,
            balance=row.balance or 0.0,
            last_sync=row.last_sync,
            request_token_digest=row.request_token_digest,
            disconnect_reason=row.disconnect_reason,
            version=row.version,
            **opened,
        )


def get_credential_store(db: Session) -> CredentialStore:
    """Factory function for the credential store."""
    return CredentialStore(db)
