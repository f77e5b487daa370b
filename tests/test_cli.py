"""Tests for the rtc-call command line interface."""

from unittest.mock import patch

import pytest
from click.testing import CliRunner

from rtc_call.cli import cli
from rtc_call.exceptions import SignalingError
from rtc_call.room import is_valid_room_code


@pytest.fixture
def runner():
    return CliRunner()


class TestHelp:
    """Every command must render its help text."""

    @pytest.mark.parametrize("args", [[], ["room"], ["join"], ["serve"]])
    def test_help(self, runner, args):
        result = runner.invoke(cli, args + ["--help"])
        assert result.exit_code == 0
        assert "Usage:" in result.output


class TestRoomCommand:
    def test_reuses_valid_code(self, runner):
        result = runner.invoke(cli, ["room", "#abc-defg-hij"])
        assert result.exit_code == 0
        assert result.output.strip().splitlines()[-1] == "abc-defg-hij"

    def test_generates_code(self, runner):
        result = runner.invoke(cli, ["room"])
        assert result.exit_code == 0
        assert is_valid_room_code(result.output.strip().splitlines()[-1])


class TestJoinCommand:
    def test_passes_options(self, runner):
        with patch("rtc_call.cli.run_peer") as run_peer:
            result = runner.invoke(
                cli,
                [
                    "join",
                    "--room", "abc-defg-hij",
                    "--impolite",
                    "--signaling", "ws://relay:9000",
                    "--play-from", "clip.mp4",
                ],
            )

        assert result.exit_code == 0
        assert "Welcome to room #abc-defg-hij" in result.output
        assert "Created room" not in result.output
        run_peer.assert_called_once_with(
            "abc-defg-hij",
            polite=False,
            signaling_url="ws://relay:9000",
            play_from="clip.mp4",
            record_to=None,
        )

    def test_creates_room_when_missing(self, runner):
        with patch("rtc_call.cli.run_peer") as run_peer:
            result = runner.invoke(cli, ["join"])

        assert result.exit_code == 0
        assert "Created room" in result.output
        code = run_peer.call_args.args[0]
        assert is_valid_room_code(code)
        assert run_peer.call_args.kwargs["polite"] is None

    def test_unreachable_relay_exits_nonzero(self, runner):
        with patch("rtc_call.cli.run_peer", side_effect=SignalingError("unreachable")):
            result = runner.invoke(cli, ["join", "--room", "abc-defg-hij"])
        assert result.exit_code == 1


class TestServeCommand:
    def test_runs_relay(self, runner):
        with patch("rtc_call.cli.asyncio.run") as run:
            result = runner.invoke(cli, ["serve", "--port", "9001"])
        assert result.exit_code == 0
        run.assert_called_once()
        run.call_args.args[0].close()
