"""Tests for CredentialStore."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from src.core.brokers.codec import SecretCodec
from src.core.brokers.exceptions import (
    CredentialConflict,
    DecodeError,
    NotFound,
    StorageUnavailable,
)
from src.core.brokers.models import ConnectionState, DisconnectReason
from src.core.brokers.store import CredentialStore
from src.db.models import BrokerCredential, User


def raw_row(db, user_id) -> BrokerCredential:
    return (
        db.query(BrokerCredential)
        .populate_existing()
        .filter(BrokerCredential.user_id == user_id)
        .one()
    )


class TestCredentialStoreReads:
    """Tests for loading credentials."""

    def test_new_user_is_unconfigured(self, store, user):
        """Empty record should read as unconfigured."""
        snapshot = store.get(user.id)

        assert snapshot.api_key is None
        assert snapshot.access_token is None
        assert snapshot.is_connected is False
        assert snapshot.balance == 0.0
        assert snapshot.state == ConnectionState.UNCONFIGURED

    def test_creates_missing_record(self, db, store):
        """Users without a credential row should get an empty one."""
        legacy = User(email="legacy@example.com", password_hash="x")
        db.add(legacy)
        db.commit()

        snapshot = store.get(legacy.id)

        assert snapshot.user_id == legacy.id
        assert raw_row(db, legacy.id).version == 0

    def test_unknown_user_raises_not_found(self, store):
        """Should raise NotFound for a user that does not exist."""
        with pytest.raises(NotFound):
            store.get("no-such-user")


class TestCredentialStoreWrites:
    """Tests for merge-updates and sealing."""

    def test_set_leaves_other_fields_untouched(self, store, user):
        """Writing one field should not reset its siblings."""
        store.set(user.id, api_key="key", api_secret="secret")

        snapshot = store.set(user.id, balance=5000.0)

        assert snapshot.api_key == "key"
        assert snapshot.api_secret == "secret"
        assert snapshot.balance == 5000.0

    def test_sensitive_fields_are_sealed_at_rest(self, db, store, codec, user):
        """Stored columns should never hold plaintext secrets."""
        store.set(user.id, api_key="key", api_secret="secret", access_token="token")

        row = raw_row(db, user.id)
        assert row.api_key != "key"
        assert row.api_secret != "secret"
        assert row.access_token != "token"
        assert codec.open(row.access_token) == "token"

    def test_each_write_bumps_version(self, store, user):
        """Version should increase on every write."""
        first = store.set(user.id, api_key="key")
        second = store.set(user.id, api_secret="secret")

        assert second.version == first.version + 1

    def test_clearing_token_forces_disconnected(self, store, user):
        """Removing the access token should also clear is_connected."""
        store.set(user.id, api_key="key", api_secret="secret", access_token="token")
        store.set(user.id, is_connected=True)

        snapshot = store.set(user.id, access_token=None)

        assert snapshot.is_connected is False

    def test_rejects_unknown_fields(self, store, user):
        """Should refuse to write columns it does not own."""
        with pytest.raises(ValueError):
            store.set(user.id, version=99)

    def test_unreadable_value_raises_decode_error(self, db, user):
        """Values sealed under a retired key should fail on read."""
        CredentialStore(db, SecretCodec(["old-key"])).set(user.id, api_key="key")

        with pytest.raises(DecodeError):
            CredentialStore(db, SecretCodec(["new-key"])).get(user.id)


class TestCredentialStoreConcurrency:
    """Tests for conditional writes."""

    def test_stale_version_raises_conflict(self, store, user):
        """A write based on an outdated read should be rejected."""
        before = store.set(user.id, api_key="key", api_secret="secret", access_token="token")
        store.set(user.id, balance=10.0)

        with pytest.raises(CredentialConflict):
            store.set(user.id, expected_version=before.version, is_connected=True)

        assert store.get(user.id).is_connected is False

    def test_cannot_connect_without_token(self, store, user):
        """is_connected=True should not land on a record with no token."""
        store.set(user.id, api_key="key", api_secret="secret")

        with pytest.raises(CredentialConflict):
            store.set(user.id, is_connected=True)

    def test_matching_version_writes(self, store, user):
        """A write at the current version should succeed."""
        current = store.set(user.id, api_key="key", api_secret="secret", access_token="token")

        snapshot = store.set(user.id, expected_version=current.version, is_connected=True)

        assert snapshot.is_connected is True
        assert snapshot.state == ConnectionState.CONNECTED


class TestCredentialStoreClear:
    """Tests for clearing credentials."""

    def test_clear_removes_everything(self, store, user):
        """Clear should drop all secrets and reset status."""
        store.set(user.id, api_key="key", api_secret="secret", access_token="token", balance=100.0)
        store.set(user.id, is_connected=True)

        snapshot = store.clear(user.id, DisconnectReason.USER_DISCONNECT)

        assert snapshot.api_key is None
        assert snapshot.api_secret is None
        assert snapshot.access_token is None
        assert snapshot.last_sync is None
        assert snapshot.is_connected is False
        assert snapshot.balance == 0.0
        assert snapshot.disconnect_reason == "user_disconnect"
        assert snapshot.state == ConnectionState.DISCONNECTED

    def test_clear_all_only_counts_linked_users(self, db, store, user):
        """clear_all should touch only records holding credentials."""
        other = User(email="other@example.com", password_hash="x")
        db.add(other)
        db.commit()
        store.get(other.id)
        store.set(user.id, api_key="key", api_secret="secret")

        cleared = store.clear_all()

        assert cleared == 1
        assert store.get(user.id).api_key is None

    def test_reseal_all_rotates_keys(self, db, user):
        """Stored secrets should open under the new key after resealing."""
        CredentialStore(db, SecretCodec(["old-key"])).set(user.id, api_key="key", api_secret="secret")

        rotated = CredentialStore(db, SecretCodec(["new-key", "old-key"])).reseal_all()

        assert rotated == 1
        assert CredentialStore(db, SecretCodec(["new-key"])).get(user.id).api_secret == "secret"


class TestCredentialStoreFailures:
    """Tests for storage errors."""

    def test_database_error_raises_storage_unavailable(self, codec):
        """SQLAlchemy errors should surface as StorageUnavailable and roll back."""
        db = MagicMock()
        db.query.side_effect = OperationalError("SELECT", {}, Exception("disk I/O error"))
        store = CredentialStore(db, codec)

        with pytest.raises(StorageUnavailable):
            store.set("user-1", api_key="key")

        db.rollback.assert_called_once()
