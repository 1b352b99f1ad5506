from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the telemetry service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    def list_devices(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/devices")

    def register_device(self, device_key: str, device_name: Optional[str] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"deviceKey": device_key}
        if device_name:
            body["deviceName"] = device_name
        return self._request("POST", "/devices", json=body)

    def send_reading(self, device_key: str, reading: Dict[str, Any]) -> Dict[str, Any]:
        payload = {key: value for key, value in reading.items() if value is not None}
        return self._request("POST", f"/devices/{device_key}/telemetry", json=payload)

    def get_series(
        self, device_key: str, metric: str, minutes: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"deviceKey": device_key}
        if minutes is not None:
            params["minutes"] = minutes
        return self._request("GET", f"/telemetries/{metric}", params=params)

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            typer.secho(
                f"Could not reach {self._config.base_url}: {exc}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(code=1) from exc
        return response.json()

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: Any = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
