"""Tests for ewbridge.cli."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import AsyncMock, patch

from typer.testing import CliRunner

from ewbridge.cli import app
from ewbridge.config import Settings
from ewbridge.devices import Device
from ewbridge.exceptions import AuthenticationError

runner = CliRunner()

SETTINGS = Settings(
    app_id="app-id",
    app_secret="app-secret",
    redirect_url="https://bridge.example/oauth/callback",
)

DEVICES = [
    Device("d1", "Lamp", True, "on"),
    Device("d2", "Strip", False, [{"outlet": 0, "switch": "off"}]),
]


def _invoke(args: list[str], settings: Settings = SETTINGS) -> Any:
    with patch("ewbridge.cli.Settings.from_env", return_value=settings):
        return runner.invoke(app, args)


class TestHelp:
    def test_no_command_shows_help(self):
        result = runner.invoke(app, [])
        assert result.exit_code == 0
        assert "devices" in result.output


class TestDevices:
    def test_lists_devices(self):
        with (
            patch("ewbridge.cli.Client.login", new_callable=AsyncMock) as login,
            patch(
                "ewbridge.cli.Client.fetch_devices", new_callable=AsyncMock, return_value=DEVICES
            ),
        ):
            result = _invoke(["devices", "--email", "a@b.com", "--password", "x"])

        assert result.exit_code == 0, result.output
        login.assert_awaited_once_with("a@b.com", "x", None)
        assert "Lamp (d1): online, on" in result.output
        assert "Strip (d2): offline, #0 off" in result.output

    def test_json_output(self):
        with (
            patch("ewbridge.cli.Client.login", new_callable=AsyncMock),
            patch(
                "ewbridge.cli.Client.fetch_devices", new_callable=AsyncMock, return_value=DEVICES
            ),
        ):
            result = _invoke(["devices", "--email", "a@b.com", "--password", "x", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data[0] == {"id": "d1", "name": "Lamp", "online": True, "switchState": "on"}

    def test_login_failure(self):
        with patch(
            "ewbridge.cli.Client.login",
            new_callable=AsyncMock,
            side_effect=AuthenticationError("Login failed: wrong password", error_code=10001),
        ):
            result = _invoke(["devices", "--email", "a@b.com", "--password", "x"])

        assert result.exit_code == 1
        assert "wrong password" in result.output

    def test_unconfigured(self):
        result = _invoke(["devices", "--email", "a@b.com", "--password", "x"], Settings())
        assert result.exit_code == 1
        assert "EWELINK_APP_ID" in result.output


class TestToggle:
    def test_toggle(self):
        with (
            patch("ewbridge.cli.Client.login", new_callable=AsyncMock),
            patch(
                "ewbridge.cli.Client.toggle",
                new_callable=AsyncMock,
                return_value={"switch": "on"},
            ) as toggle,
        ):
            result = _invoke(["toggle", "d1", "on", "--email", "a@b.com", "--password", "x"])

        assert result.exit_code == 0, result.output
        toggle.assert_awaited_once_with("d1", "on", None)
        assert 'Command sent to d1: {"switch": "on"}' in result.output

    def test_outlets(self):
        with (
            patch("ewbridge.cli.Client.login", new_callable=AsyncMock),
            patch("ewbridge.cli.Client.toggle", new_callable=AsyncMock, return_value={}) as toggle,
        ):
            result = _invoke(
                ["toggle", "d1", "off", "-o", "0", "-o", "2", "--email", "a", "--password", "x"]
            )

        assert result.exit_code == 0, result.output
        toggle.assert_awaited_once_with("d1", "off", [0, 2])

    def test_invalid_state_skips_login(self):
        with patch("ewbridge.cli.Client.login", new_callable=AsyncMock) as login:
            result = _invoke(["toggle", "d1", "flip", "--email", "a", "--password", "x"])

        assert result.exit_code == 1
        assert "Invalid state" in result.output
        login.assert_not_called()


class TestOAuthUrl:
    def test_prints_url(self):
        result = _invoke(["oauth-url"])
        assert result.exit_code == 0
        assert result.output.startswith("https://c2ccdn.coolkit.cc/oauth/index.html?clientId=app-id")

    def test_requires_redirect(self):
        result = _invoke(["oauth-url"], Settings(app_id="a", app_secret="s"))
        assert result.exit_code == 1
        assert "Redirect URL" in result.output


class TestServe:
    def test_runs_server_with_overrides(self):
        with patch("ewbridge.server.run") as run:
            result = _invoke(["serve", "--port", "8123"])

        assert result.exit_code == 0, result.output
        (settings,) = run.call_args[0]
        assert settings.port == 8123
        assert settings.app_id == "app-id"
