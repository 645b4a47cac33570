"""Open-Meteo weather source and the per-garden weather cache reader."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Protocol
from urllib import error, parse, request

from pydantic import BaseModel, Field, ValidationError

from garden_advisor.storage.base import GardenStore

logger = logging.getLogger(__name__)

CURRENT_FIELDS: dict[str, str] = {
    "temperature_2m": "temperature",
    "apparent_temperature": "apparent_temperature",
    "relative_humidity_2m": "humidity",
    "wind_speed_10m": "wind_speed",
    "wind_gusts_10m": "wind_gusts",
    "weather_code": "weather_code",
    "uv_index": "uv_index",
    "dew_point_2m": "dew_point",
    "soil_temperature_0cm": "soil_temperature_0cm",
    "soil_temperature_6cm": "soil_temperature_6cm",
    "soil_moisture_0_to_1cm": "soil_moisture",
}
DAILY_FIELDS: dict[str, str] = {
    "temperature_2m_max": "temp_max",
    "temperature_2m_min": "temp_min",
    "apparent_temperature_max": "apparent_temp_max",
    "apparent_temperature_min": "apparent_temp_min",
    "precipitation_sum": "precipitation_sum",
    "precipitation_probability_max": "precipitation_probability",
    "weather_code": "weather_code",
    "sunrise": "sunrise",
    "sunset": "sunset",
    "uv_index_max": "uv_index_max",
    "wind_gusts_10m_max": "wind_gusts_max",
    "et0_fao_evapotranspiration": "et0_evapotranspiration",
    "shortwave_radiation_sum": "shortwave_radiation_sum",
}
FORECAST_DAYS = 7


class WeatherFetchFailed(RuntimeError):
    pass


class WeatherData(BaseModel):
    current: dict[str, Any]
    daily: list[dict[str, Any]] = Field(default_factory=list)


class WeatherSource(Protocol):
    def fetch(self, lat: float, lng: float) -> WeatherData: ...


class OpenMeteoClient:
    def __init__(
        self,
        *,
        base_url: str = "https://api.open-meteo.com/v1/forecast",
        timeout_s: float = 10.0,
    ) -> None:
        self.base_url = base_url
        self.timeout_s = timeout_s

    def fetch(self, lat: float, lng: float) -> WeatherData:
        query = parse.urlencode(
            {
                "latitude": lat,
                "longitude": lng,
                "current": ",".join(CURRENT_FIELDS),
                "daily": ",".join(DAILY_FIELDS),
                "forecast_days": FORECAST_DAYS,
                "timezone": "auto",
            }
        )
        req = request.Request(url=f"{self.base_url}?{query}", method="GET")
        try:
            with request.urlopen(req, timeout=self.timeout_s) as response:
                body = response.read().decode("utf-8")
        except error.HTTPError as exc:
            raise WeatherFetchFailed(f"Weather API error: {exc.code}") from exc
        except (TimeoutError, error.URLError) as exc:
            raise WeatherFetchFailed(f"Weather API unreachable: {exc}") from exc
        try:
            return parse_open_meteo(json.loads(body))
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise WeatherFetchFailed(f"Weather API returned an unexpected body: {exc}") from exc


def parse_open_meteo(payload: dict[str, Any]) -> WeatherData:
    current_raw = payload["current"]
    current = {target: current_raw.get(source) for source, target in CURRENT_FIELDS.items()}
    daily_raw = payload["daily"]
    daily = []
    for index, date in enumerate(daily_raw["time"]):
        day = {"date": date}
        for source, target in DAILY_FIELDS.items():
            values = daily_raw.get(source) or []
            day[target] = values[index] if index < len(values) else None
        daily.append(day)
    return WeatherData(current=current, daily=daily)


def get_cached_weather(
    store: GardenStore,
    garden_id: str,
    *,
    max_age_s: int,
    now: datetime,
) -> WeatherData | None:
    """Return the newest cached forecast for the garden if it is fresh enough."""
    cached = store.get_latest_weather(garden_id)
    if cached is None:
        return None
    if now - cached.fetched_at > timedelta(seconds=max_age_s):
        logger.debug("weather_cache event=stale garden_id=%s", garden_id)
        return None
    try:
        return WeatherData.model_validate(cached.forecast)
    except ValidationError:
        logger.warning("weather_cache event=unreadable garden_id=%s", garden_id)
        return None
