"""Tests for the brokers CLI commands."""

from contextlib import contextmanager
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from src.cli.brokers import app
from src.core.brokers.exceptions import Unauthorized

runner = CliRunner()


@pytest.fixture
def cli(db, controller):
    """Point the CLI at the test database and mocked broker."""

    @contextmanager
    def test_db():
        yield db

    with patch("src.cli.brokers.get_db", test_db), patch(
        "src.cli.brokers.get_session_controller", return_value=controller
    ):
        yield


class TestBrokersCli:
    """Tests for `broker-link brokers ...`."""

    def test_configure_then_status(self, cli, user):
        result = runner.invoke(
            app,
            ["configure", "--api-key", "kite-api-key", "--api-secret", "kite-api-secret", "-u", user.email],
        )
        assert result.exit_code == 0
        assert "kite-api-key" not in result.output

        result = runner.invoke(app, ["status", "-u", user.email])
        assert result.exit_code == 0
        assert "configured" in result.output

    def test_validate_reports_rejected_token(self, cli, broker, connected_user):
        """A rejected token should exit non-zero with a re-auth hint."""
        broker.fetch_profile.side_effect = Unauthorized()

        result = runner.invoke(app, ["validate", "-u", connected_user.email])

        assert result.exit_code == 1
        assert "token_rejected" in result.output
        assert "login-url" in result.output

    def test_unknown_user(self, cli):
        result = runner.invoke(app, ["status", "-u", "nobody@example.com"])

        assert result.exit_code == 1
