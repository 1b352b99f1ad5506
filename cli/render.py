from __future__ import annotations

from typing import Any, Dict, Iterable, List

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_devices(devices: List[Dict[str, Any]]) -> None:
    echo_heading("Devices")
    if not devices:
        typer.echo("No devices registered.")
        return
    for device in devices:
        name = device.get("deviceName") or "-"
        typer.echo(f"  - {device.get('deviceKey')} ({name}) id={device.get('id')}")


def render_device(device: Dict[str, Any]) -> None:
    echo_heading("Device")
    echo_key_values(
        [
            ("id", device.get("id")),
            ("deviceKey", device.get("deviceKey")),
            ("deviceName", device.get("deviceName")),
            ("createdAt", device.get("createdAt")),
        ]
    )


def render_reading(reading: Dict[str, Any]) -> None:
    echo_heading("Stored Reading")
    echo_key_values(
        (key, reading.get(key))
        for key in (
            "deviceId",
            "timestamp",
            "temperature",
            "humidity",
            "lightIntensity",
            "rainStatus",
            "servoStatus",
            "mode",
        )
    )


def render_series(metric: str, points: List[Dict[str, Any]]) -> None:
    echo_heading(f"Series: {metric} ({len(points)} points)")
    if not points:
        typer.echo("No readings in the requested window.")
        return
    for point in points:
        typer.echo(f"  {point.get('timestamp')}  {point.get('value')}")
