"""Shared fixtures: in-memory database, sealing codec and a mocked broker."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.core.brokers.base import BrokerClient
from src.core.brokers.codec import SecretCodec
from src.core.brokers.lifecycle import BrokerSessionController
from src.core.brokers.models import BrokerMargins, BrokerProfile, PositionBook
from src.core.brokers.store import CredentialStore
from src.db.models import Base, BrokerCredential, User

TEST_CALLBACK_URL = "http://portal.test/api/zerodha/callback"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def user(db):
    """A portal user with an empty credential record."""
    user = User(email="trader@example.com", name="Trader", password_hash="not-used")
    db.add(user)
    db.flush()
    db.add(BrokerCredential(user_id=user.id, is_connected=False, balance=0.0, version=0))
    db.commit()
    return user


@pytest.fixture
def codec():
    return SecretCodec(["test-credential-key"])


@pytest.fixture
def store(db, codec):
    return CredentialStore(db, codec)


@pytest.fixture
def broker():
    """Mocked broker client returned by the client factory."""
    client = MagicMock(spec=BrokerClient)
    client.exchange_request_token.return_value = "access-token-1"
    client.fetch_profile.return_value = BrokerProfile(
        display_name="Asha Trader",
        external_id="AB1234",
        broker_name="ZERODHA",
        email="trader@example.com",
    )
    client.fetch_margins.return_value = BrokerMargins(available_cash=125000.5, net=125000.5)
    client.fetch_positions.return_value = PositionBook()
    client.fetch_holdings.return_value = []
    return client


@pytest.fixture
def client_factory(broker):
    """Stands in for the KiteClient class."""
    factory = MagicMock(return_value=broker)
    factory.build_authorization_url.side_effect = (
        lambda api_key, redirect_uri: f"https://kite.test/connect/login?api_key={api_key}&v=3"
    )
    return factory


@pytest.fixture
def controller(store, client_factory):
    settings = MagicMock()
    settings.callback_url = TEST_CALLBACK_URL
    return BrokerSessionController(store, client_factory=client_factory, settings=settings)


@pytest.fixture
def connected_user(controller, user):
    """A user driven through configure, authorize and validate."""
    controller.configure(user.id, "kite-api-key", "kite-api-secret")
    controller.complete_authorization(user.id, "request-token-1", "success")
    controller.validate(user.id)
    return user
