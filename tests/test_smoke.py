"""Smoke tests for the rtc-call package.

These tests verify that the installed package is structurally sound: every
module importable, the public names exported, and the CLI entry point
reachable. They are intentionally lightweight and fast.
"""

import importlib

import pytest
from click.testing import CliRunner

import rtc_call
from rtc_call.cli import cli


# ── Module imports ────────────────────────────────────────────────────────────


class TestModuleImports:
    """Each rtc_call module must be importable without error."""

    @pytest.mark.parametrize(
        "module",
        [
            "rtc_call.room",
            "rtc_call.protocol",
            "rtc_call.signaling",
            "rtc_call.signaling_server",
            "rtc_call.connection",
            "rtc_call.session",
            "rtc_call.coordinator",
            "rtc_call.config",
            "rtc_call.media",
            "rtc_call.rtc_peer",
            "rtc_call.cli",
        ],
    )
    def test_import(self, module):
        importlib.import_module(module)

    def test_public_names(self):
        """Everything in __all__ must resolve."""
        for name in rtc_call.__all__:
            assert hasattr(rtc_call, name), name


# ── CLI entry point ───────────────────────────────────────────────────────────


class TestCLIEntryPoint:
    """The CLI entry point must be reachable and respond to --help."""

    def test_main_help(self):
        """rtc-call --help must exit 0 and list core commands."""
        runner = CliRunner()
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "join" in result.output
        assert "room" in result.output
        assert "serve" in result.output

    def test_log_level_option(self):
        """--log-level is accepted before a subcommand."""
        runner = CliRunner()
        result = runner.invoke(cli, ["--log-level", "debug", "room", "abc-defg-hij"])
        assert result.exit_code == 0
        assert result.output.strip().splitlines()[-1] == "abc-defg-hij"
