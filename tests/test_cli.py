from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import httpx
import pytest
import typer
from typer.testing import CliRunner

from cli.app import app
from cli.client import ApiClient
from cli.config import CLIConfig, load_config


class StubClient:
    def __init__(self, config) -> None:
        self.config = config
        self.sent: List[tuple[str, Dict[str, Any]]] = []
        self.series_calls: List[tuple[str, str, Optional[int]]] = []
        self.registered: List[tuple[str, Optional[str]]] = []
        self.closed = False

    def list_devices(self) -> List[Dict[str, Any]]:
        return [{"id": "abc", "deviceKey": "raph_device", "deviceName": "Raph ESP32 Device"}]

    def register_device(self, device_key: str, device_name: Optional[str] = None) -> Dict[str, Any]:
        self.registered.append((device_key, device_name))
        return {"id": "abc", "deviceKey": device_key, "deviceName": device_name}

    def send_reading(self, device_key: str, reading: Dict[str, Any]) -> Dict[str, Any]:
        self.sent.append((device_key, reading))
        return {"deviceId": "abc", "timestamp": "2024-01-01T00:00:00Z", **reading}

    def get_series(self, device_key: str, metric: str, minutes: Optional[int] = None):
        self.series_calls.append((device_key, metric, minutes))
        return [
            {"timestamp": "2024-01-01T00:00:00Z", "value": 0.25},
            {"timestamp": "2024-01-01T00:01:00Z", "value": 1.0},
        ]

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def stub(monkeypatch) -> StubClient:
    client = StubClient(config=None)

    def factory(config):
        client.config = config
        return client

    monkeypatch.setattr("cli.app.ApiClient", factory)
    return client


def test_devices_command(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["devices"])

    assert result.exit_code == 0
    assert "raph_device (Raph ESP32 Device)" in result.stdout
    assert stub.closed is True


def test_register_command(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["register", "garden_node", "--name", "Garden"])

    assert result.exit_code == 0
    assert stub.registered == [("garden_node", "Garden")]
    assert "Registered garden_node." in result.stdout


def test_send_command_maps_options_to_payload(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(
        app,
        ["send", "raph_device", "-t", "21.5", "--rain", "rain", "--mode", "AUTO"],
    )

    assert result.exit_code == 0, result.stdout
    device_key, reading = stub.sent[0]
    assert device_key == "raph_device"
    assert reading["temperature"] == 21.5
    assert reading["rainStatus"] == "RAIN"
    assert reading["mode"] == "AUTO"
    assert reading["servoStatus"] is None
    assert "Reading stored." in result.stdout


def test_series_command(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(
        app,
        ["--base-url", "http://telemetry.local/", "series", "raph_device", "-m", "rain", "--minutes", "60"],
    )

    assert result.exit_code == 0
    assert stub.series_calls == [("raph_device", "rain", 60)]
    assert stub.config.base_url == "http://telemetry.local"
    assert "Series: rain (2 points)" in result.stdout
    assert "0.25" in result.stdout


def test_load_config_reads_environment(monkeypatch) -> None:
    monkeypatch.setenv("API_BASE_URL", "http://env.local/")
    monkeypatch.setenv("CLI_TIMEOUT", "not-a-number")

    config = load_config()

    assert config == CLIConfig(base_url="http://env.local", timeout=30.0)


def test_api_client_reports_http_errors(monkeypatch) -> None:
    client = ApiClient(CLIConfig(base_url="http://telemetry.local"))
    transport = httpx.MockTransport(
        lambda request: httpx.Response(404, json={"detail": "Device 'ghost' not found."})
    )
    client._client = httpx.Client(base_url="http://telemetry.local", transport=transport)

    with pytest.raises(typer.Exit):
        client.send_reading("ghost", {"temperature": 1.0})
    client.close()


def test_api_client_drops_unset_fields() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"deviceId": "abc"})

    client = ApiClient(CLIConfig(base_url="http://telemetry.local"))
    client._client = httpx.Client(
        base_url="http://telemetry.local", transport=httpx.MockTransport(handler)
    )

    client.send_reading("raph_device", {"temperature": 20.0, "humidity": None})

    assert seen[0].url.path == "/devices/raph_device/telemetry"
    assert json.loads(seen[0].content) == {"temperature": 20.0}
    client.close()
