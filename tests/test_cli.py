"""Tests for the operator command-line interface."""

from unittest.mock import AsyncMock

import pytest

from decimal import Decimal

from src import cli
from src.helpers.config import RelaySettings
from src.relay.service import RelayService


def settings() -> RelaySettings:
    return RelaySettings.model_validate({"chains": (), "sync_enabled": False})


@pytest.fixture
def configured(monkeypatch: pytest.MonkeyPatch) -> None:
    """Skip environment loading and global logging setup."""
    monkeypatch.setattr(cli, "load_settings", settings)
    monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)


class TestParser:
    """Tests for build_parser."""

    def test_register(self) -> None:
        """Test register arguments are parsed into typed values."""
        args = cli.build_parser().parse_args(
            [
                "register",
                "--chain-id",
                "84532",
                "--endpoint",
                "https://relay.example",
                "--peer-public-key",
                "pk",
                "--stake",
                "100.5",
            ]
        )

        assert args.command == "register"
        assert args.chain_id == 84532
        assert args.stake == Decimal("100.5")

    def test_command_required(self) -> None:
        """Test a subcommand must be given."""
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])

    def test_update_fields_optional(self) -> None:
        """Test update accepts either field alone."""
        args = cli.build_parser().parse_args(["update", "--endpoint", "https://new"])

        assert args.endpoint == "https://new"
        assert args.peer_public_key is None

    def test_acknowledge(self) -> None:
        """Test acknowledge takes an optional chain id."""
        args = cli.build_parser().parse_args(["acknowledge", "--chain-id", "84532"])

        assert args.command == "acknowledge"
        assert args.chain_id == 84532


class TestStakingCommand:
    """Tests for mapping parsed arguments to service calls."""

    @pytest.mark.asyncio
    async def test_register_converts_stake(self) -> None:
        """Test the stake is converted to token base units."""
        args = cli.build_parser().parse_args(
            ["register", "--endpoint", "https://relay", "--peer-public-key", "pk", "--stake", "100"]
        )
        service = AsyncMock(spec=RelayService)

        await cli._staking_command(args, 84532)(service)

        service.register.assert_awaited_once_with(84532, "https://relay", "pk", 100_000_000)

    @pytest.mark.asyncio
    async def test_emergency_withdraw(self) -> None:
        """Test owner recovery passes the token and amount."""
        args = cli.build_parser().parse_args(
            ["emergency-withdraw", "--token", "0xabc", "--amount", "1.5"]
        )
        service = AsyncMock(spec=RelayService)

        await cli._staking_command(args, 1)(service)

        service.emergency_withdraw.assert_awaited_once_with(1, "0xabc", 1_500_000)

    def test_too_precise_amount(self) -> None:
        """Test amounts finer than the token allows are rejected."""
        args = cli.build_parser().parse_args(["increase-stake", "--amount", "0.0000001"])

        with pytest.raises(ValueError, match="decimals"):
            cli._staking_command(args, 1)


def test_quote() -> None:
    """Test a valid and an out-of-range quote."""
    assert cli.run_quote(settings(), "standard", "500", 30) == 0
    assert cli.run_quote(settings(), "standard", "5000", 30) == 1


@pytest.mark.usefixtures("configured")
class TestMain:
    """Tests for main dispatch."""

    def test_quote(self) -> None:
        """Test quotes need no chain access."""
        assert cli.main(["quote", "premium", "150", "60"]) == 0

    def test_no_chain_configured(self) -> None:
        """Test staking commands need a configured network."""
        assert cli.main(["unstake"]) == 2

    def test_configuration_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test invalid configuration exits with status 2."""

        def broken() -> RelaySettings:
            msg = "RELAY_REGISTRY_ADDRESS environment variable is not set"
            raise ValueError(msg)

        monkeypatch.setattr(cli, "load_settings", broken)

        assert cli.main(["quote", "standard", "10", "30"]) == 2


class TestAcknowledge:
    """Tests for clearing a transaction of unknown outcome."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tx_hash", ["0xfeed", None])
    async def test_run_acknowledge(
        self, monkeypatch: pytest.MonkeyPatch, tx_hash: str | None
    ) -> None:
        """Test the service clears the hash and the service is stopped."""
        service = AsyncMock(spec=RelayService)
        service.acknowledge_unknown.return_value = tx_hash
        monkeypatch.setattr(cli, "RelayService", lambda settings: service)

        assert await cli.run_acknowledge(settings(), 84532) == 0

        service.start.assert_awaited_once_with(run_loops=False)
        service.acknowledge_unknown.assert_awaited_once_with(84532)
        service.stop.assert_awaited_once()

    @pytest.mark.usefixtures("configured")
    def test_dispatch(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test main routes acknowledge to the resolved chain."""
        run_acknowledge = AsyncMock(return_value=0)
        monkeypatch.setattr(cli, "run_acknowledge", run_acknowledge)
        monkeypatch.setattr(cli, "_resolve_chain_id", lambda settings, chain_id: 84532)

        assert cli.main(["acknowledge"]) == 0

        run_acknowledge.assert_awaited_once()
        assert run_acknowledge.await_args.args[1] == 84532

    @pytest.mark.usefixtures("configured")
    def test_no_chain_configured(self) -> None:
        """Test acknowledge needs a configured network."""
        assert cli.main(["acknowledge"]) == 2
