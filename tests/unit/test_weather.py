import io
from datetime import timedelta
from urllib import error

import pytest
from conftest import NOW

from garden_advisor.integrations import weather as weather_module
from garden_advisor.integrations.weather import (
    OpenMeteoClient,
    WeatherFetchFailed,
    get_cached_weather,
    parse_open_meteo,
)

OPEN_METEO_BODY = {
    "current": {"temperature_2m": 22.4, "relative_humidity_2m": 51, "soil_moisture_0_to_1cm": 0.21},
    "daily": {
        "time": ["2025-06-10", "2025-06-11"],
        "temperature_2m_max": [27.0, 30.5],
        "temperature_2m_min": [14.0, 16.2],
        "precipitation_probability_max": [10, 80],
    },
}


def test_parse_open_meteo_renames_fields_and_pivots_daily() -> None:
    data = parse_open_meteo(OPEN_METEO_BODY)

    assert data.current["temperature"] == 22.4
    assert data.current["humidity"] == 51
    assert data.current["soil_moisture"] == 0.21
    assert data.current["uv_index"] is None
    assert [day["date"] for day in data.daily] == ["2025-06-10", "2025-06-11"]
    assert data.daily[1]["temp_max"] == 30.5
    assert data.daily[1]["precipitation_probability"] == 80
    assert data.daily[0]["sunrise"] is None


def test_fetch_maps_http_error(monkeypatch) -> None:
    def _urlopen(req, timeout):
        raise error.HTTPError(req.full_url, 503, "Unavailable", hdrs=None, fp=io.BytesIO(b""))

    monkeypatch.setattr(weather_module.request, "urlopen", _urlopen)

    with pytest.raises(WeatherFetchFailed, match="503"):
        OpenMeteoClient().fetch(45.5, -122.6)


def test_fetch_rejects_unexpected_body(monkeypatch) -> None:
    class _Response(io.BytesIO):
        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

    monkeypatch.setattr(weather_module.request, "urlopen", lambda req, timeout: _Response(b'{"oops": 1}'))

    with pytest.raises(WeatherFetchFailed):
        OpenMeteoClient().fetch(45.5, -122.6)


def test_cached_weather_respects_max_age(store) -> None:
    forecast = parse_open_meteo(OPEN_METEO_BODY).model_dump(mode="json")
    store.save_weather("garden-1", forecast, fetched_at=NOW - timedelta(hours=2))

    fresh = get_cached_weather(store, "garden-1", max_age_s=3 * 3600, now=NOW)
    stale = get_cached_weather(store, "garden-1", max_age_s=3600, now=NOW)

    assert fresh is not None
    assert fresh.current["temperature"] == 22.4
    assert stale is None
    assert get_cached_weather(store, "garden-2", max_age_s=3600, now=NOW) is None
