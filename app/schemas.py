"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models.records import Device, DeviceMode, DownsampledPoint, RainStatus, Reading, ServoStatus


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DeviceCreate(ApiModel):
    device_key: str = Field(..., min_length=1, max_length=128)
    device_name: Optional[str] = Field(default=None, max_length=256)


class DeviceOut(ApiModel):
    id: str
    device_key: str
    device_name: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_device(cls, device: Device) -> "DeviceOut":
        return cls(
            id=device.id,
            device_key=device.device_key,
            device_name=device.device_name,
            created_at=device.created_at,
            updated_at=device.updated_at,
        )


class TelemetryIn(ApiModel):
    """A sensor sample as reported by a device."""

    temperature: Optional[float] = None
    humidity: Optional[float] = None
    light_intensity: Optional[float] = None
    rain_status: Optional[RainStatus] = None
    servo_status: Optional[ServoStatus] = None
    mode: Optional[DeviceMode] = None
    timestamp: Optional[datetime] = Field(
        default=None, description="Sample time; defaults to the time of receipt."
    )


class ReadingOut(ApiModel):
    device_id: str
    timestamp: datetime
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    light_intensity: Optional[float] = None
    rain_status: Optional[RainStatus] = None
    servo_status: Optional[ServoStatus] = None
    mode: Optional[DeviceMode] = None

    @classmethod
    def from_reading(cls, reading: Reading) -> "ReadingOut":
        return cls(
            device_id=reading.device_id,
            timestamp=reading.timestamp,
            temperature=reading.temperature,
            humidity=reading.humidity,
            light_intensity=reading.light_intensity,
            rain_status=reading.rain_status,
            servo_status=reading.servo_status,
            mode=reading.mode,
        )


class TelemetryPoint(ApiModel):
    timestamp: datetime
    value: float

    @classmethod
    def from_point(cls, point: DownsampledPoint) -> "TelemetryPoint":
        return cls(timestamp=point.timestamp, value=point.value)


class AllSeriesResponse(ApiModel):
    temperature: List[TelemetryPoint] = Field(default_factory=list)
    humidity: List[TelemetryPoint] = Field(default_factory=list)
    light: List[TelemetryPoint] = Field(default_factory=list)
    rain: List[TelemetryPoint] = Field(default_factory=list)
    servo: List[TelemetryPoint] = Field(default_factory=list)
