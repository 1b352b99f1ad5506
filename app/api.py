"""HTTP route definitions for the service."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.schemas import (
    AllSeriesResponse,
    DeviceCreate,
    DeviceOut,
    ReadingOut,
    TelemetryIn,
    TelemetryPoint,
)
from datastore.telemetry_store import DeviceAlreadyExistsError
from services.telemetry import TelemetryService, build_default_service

router = APIRouter()

_MAX_WINDOW_MINUTES = 60 * 24 * 30


def get_service() -> TelemetryService:
    return build_default_service()


@router.get(
    "/devices",
    response_model=List[DeviceOut],
    summary="List registered devices, newest first.",
)
async def list_devices(
    service: TelemetryService = Depends(get_service),
) -> List[DeviceOut]:
    return [DeviceOut.from_device(device) for device in service.list_devices()]


@router.post(
    "/devices",
    status_code=status.HTTP_201_CREATED,
    response_model=DeviceOut,
    summary="Register a device key.",
)
async def register_device(
    body: DeviceCreate,
    service: TelemetryService = Depends(get_service),
) -> DeviceOut:
    try:
        device = service.register_device(body.device_key, body.device_name)
    except DeviceAlreadyExistsError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return DeviceOut.from_device(device)


@router.post(
    "/devices/{device_key}/telemetry",
    status_code=status.HTTP_201_CREATED,
    response_model=ReadingOut,
    summary="Store a reading and check it for automatic state changes.",
)
async def ingest_telemetry(
    device_key: str,
    body: TelemetryIn,
    service: TelemetryService = Depends(get_service),
) -> ReadingOut:
    try:
        reading = service.ingest(device_key, **body.model_dump())
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return ReadingOut.from_reading(reading)


@router.get(
    "/telemetries",
    response_model=AllSeriesResponse,
    summary="Downsampled series for every metric of a device.",
)
async def get_all_series(
    device_key: str = Query(..., alias="deviceKey", min_length=1, max_length=128),
    minutes: Optional[int] = Query(None, ge=1, le=_MAX_WINDOW_MINUTES),
    service: TelemetryService = Depends(get_service),
) -> AllSeriesResponse:
    try:
        series = service.all_series(device_key, minutes)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return AllSeriesResponse(
        **{
            metric.value: [TelemetryPoint.from_point(point) for point in points]
            for metric, points in series.items()
        }
    )


@router.get(
    "/telemetries/{metric}",
    response_model=List[TelemetryPoint],
    summary="Downsampled series for one metric of a device.",
)
async def get_series(
    metric: str,
    device_key: str = Query(..., alias="deviceKey", min_length=1, max_length=128),
    minutes: Optional[int] = Query(None, ge=1, le=_MAX_WINDOW_MINUTES),
    service: TelemetryService = Depends(get_service),
) -> List[TelemetryPoint]:
    try:
        points = service.series(device_key, metric, minutes)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return [TelemetryPoint.from_point(point) for point in points]


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
