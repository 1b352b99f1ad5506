from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_device, render_devices, render_reading, render_series
from models.records import DeviceMode, Metric, RainStatus, ServoStatus


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the telemetry service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1, message="CLI state is uninitialized.")
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Service base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Request timeout in seconds.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("devices")
def devices_command(ctx: typer.Context) -> None:
    """List registered devices."""
    state = _get_state(ctx)
    render_devices(state.client.list_devices())


@app.command("register")
def register_command(
    ctx: typer.Context,
    device_key: str = typer.Argument(..., help="External device key, e.g. the MQTT client id."),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Human readable device name."),
) -> None:
    """Register a device so its telemetry is accepted."""
    state = _get_state(ctx)
    device = state.client.register_device(device_key, name)
    typer.secho(f"Registered {device_key}.", fg=typer.colors.GREEN)
    render_device(device)


@app.command("send")
def send_command(
    ctx: typer.Context,
    device_key: str = typer.Argument(..., help="Device key the reading belongs to."),
    temperature: Optional[float] = typer.Option(None, "--temperature", "-t"),
    humidity: Optional[float] = typer.Option(None, "--humidity", "-u"),
    light: Optional[float] = typer.Option(None, "--light", "-l", help="Light intensity."),
    rain: Optional[RainStatus] = typer.Option(None, "--rain", case_sensitive=False),
    servo: Optional[ServoStatus] = typer.Option(None, "--servo", case_sensitive=False),
    mode: Optional[DeviceMode] = typer.Option(None, "--mode", case_sensitive=False),
) -> None:
    """Post a single reading, as a device would."""
    state = _get_state(ctx)
    reading = state.client.send_reading(
        device_key,
        {
            "temperature": temperature,
            "humidity": humidity,
            "lightIntensity": light,
            "rainStatus": rain.value if rain else None,
            "servoStatus": servo.value if servo else None,
            "mode": mode.value if mode else None,
        },
    )
    typer.secho("Reading stored.", fg=typer.colors.GREEN)
    render_reading(reading)


@app.command("series")
def series_command(
    ctx: typer.Context,
    device_key: str = typer.Argument(..., help="Device key to query."),
    metric: Metric = typer.Option(Metric.temperature, "--metric", "-m", case_sensitive=False),
    minutes: Optional[int] = typer.Option(
        None, "--minutes", min=1, help="Trailing window; the service defaults to 30."
    ),
) -> None:
    """Print the downsampled series for one metric."""
    state = _get_state(ctx)
    points = state.client.get_series(device_key, metric.value, minutes)
    render_series(metric.value, points)
