from datetime import timedelta

import pytest
from conftest import ENCRYPTION_SECRET, NOW, make_task

from garden_advisor.config.settings import Settings
from garden_advisor.integrations.photos import PhotoLoader
from garden_advisor.integrations.weather import WeatherData
from garden_advisor.jobs.context_builder import PHOTO_PLACEHOLDER, ContextBuilder, describe_photo
from garden_advisor.storage.models import CareLog, SensorReading

PIXEL = "data:image/png;base64,iVBORw0KGgo="


def _care_log(log_id, *, hours_ago, target_type="plant", target_id="plant-1", photo_url=None, notes=None):
    return CareLog(
        id=log_id,
        target_type=target_type,
        target_id=target_id,
        action_type="water",
        notes=notes,
        photo_url=photo_url,
        logged_at=NOW - timedelta(hours=hours_ago),
    )


def _builder(store, settings=None):
    return ContextBuilder(store, PhotoLoader(), settings or Settings(encryption_key=ENCRYPTION_SECRET))


def test_build_collects_zone_state_inside_windows(store) -> None:
    store.add_care_log(_care_log("recent", hours_ago=24 * 3, notes="soaked"))
    store.add_care_log(_care_log("zone-level", hours_ago=2, target_type="zone", target_id="zone-1"))
    store.add_care_log(_care_log("too-old", hours_ago=24 * 15))
    store.add_care_log(_care_log("other-zone", hours_ago=1, target_type="zone", target_id="zone-2"))
    store.add_sensor_reading(
        SensorReading(id="r1", zone_id="zone-1", sensor_type="moisture", value=21.5, unit="%", recorded_at=NOW - timedelta(hours=3))
    )
    store.add_sensor_reading(
        SensorReading(id="r2", zone_id="zone-1", sensor_type="moisture", value=40.0, unit="%", recorded_at=NOW - timedelta(hours=49))
    )

    context = _builder(store).build(garden_id="garden-1", zone_id="zone-1", user_id="user-1", now=NOW)

    assert context.current_date == "2025-06-10"
    assert context.garden.hardiness_zone == "8b"
    assert context.garden.location.lat == 45.5
    assert context.zone.soil_type == "loam"
    assert [plant.name for plant in context.zone.plants] == ["Tomato"]
    assert [log.notes for log in context.zone.recent_care_logs] == [None, "soaked"]
    assert [reading.value for reading in context.zone.sensor_readings] == [21.5]
    assert context.user_skill_level == "beginner"
    assert context.weather is None


def test_existing_tasks_include_pending_and_recently_resolved(store) -> None:
    store.insert_task(make_task("pending"))
    store.insert_task(make_task("done-yesterday", status="completed", completed_at=NOW - timedelta(days=1)))
    store.insert_task(make_task("done-long-ago", status="completed", completed_at=NOW - timedelta(days=8)))
    store.insert_task(make_task("other-zone", zone_id="zone-2"))

    context = _builder(store).build(garden_id="garden-1", zone_id="zone-1", user_id="user-1", now=NOW)

    assert {task.id for task in context.existing_tasks} == {"pending", "done-yesterday"}


def test_weather_is_carried_into_the_snapshot(store) -> None:
    weather = WeatherData(current={"temperature": 20}, daily=[{"date": "2025-06-10", "temp_max": 25}])

    context = _builder(store).build(
        garden_id="garden-1", zone_id="zone-1", user_id="user-1", now=NOW, weather=weather
    )

    assert context.weather.current == {"temperature": 20}
    assert context.weather.forecast[0]["temp_max"] == 25


def test_missing_zone_or_foreign_zone_raises_lookup_error(store) -> None:
    builder = _builder(store)

    with pytest.raises(LookupError):
        builder.build(garden_id="garden-1", zone_id="nope", user_id="user-1", now=NOW)
    with pytest.raises(LookupError):
        builder.build(garden_id="garden-404", zone_id="zone-1", user_id="user-1", now=NOW)


def test_photo_selection_takes_top_n_plus_recent(store) -> None:
    settings = Settings(encryption_key=ENCRYPTION_SECRET, photo_top_n=1, photo_recent_hours=24)
    store.add_care_log(_care_log("newest", hours_ago=1, photo_url=PIXEL, notes="leaf spots"))
    store.add_care_log(_care_log("today", hours_ago=5, photo_url=PIXEL))
    store.add_care_log(_care_log("last-week", hours_ago=24 * 3, photo_url=PIXEL))
    store.add_care_log(_care_log("no-photo", hours_ago=2))

    context = _builder(store, settings).build(
        garden_id="garden-1", zone_id="zone-1", user_id="user-1", now=NOW
    )

    assert len(context.photos) == 2
    assert context.photos[0].description == (
        "Care log photo: water action on plant 'Tomato' (2025-06-10) - 'leaf spots'"
    )
    assert all(photo.data_url == PIXEL for photo in context.photos)


def test_unloadable_photo_is_skipped(store) -> None:
    store.add_care_log(_care_log("stored", hours_ago=1, photo_url="uploads/leaf.jpg"))
    store.add_care_log(_care_log("inline", hours_ago=2, photo_url=PIXEL))

    context = _builder(store).build(garden_id="garden-1", zone_id="zone-1", user_id="user-1", now=NOW)

    assert [photo.data_url for photo in context.photos] == [PIXEL]


def test_photo_data_can_be_left_unloaded(store, monkeypatch) -> None:
    store.add_care_log(_care_log("stored", hours_ago=1, photo_url="uploads/leaf.jpg"))
    store.add_care_log(_care_log("inline", hours_ago=2, photo_url=PIXEL))
    builder = _builder(store)

    def _no_downloads(url):
        raise AssertionError(f"unexpected photo load: {url}")

    monkeypatch.setattr(builder.photo_loader, "load", _no_downloads)

    context = builder.build(
        garden_id="garden-1", zone_id="zone-1", user_id="user-1", now=NOW, load_photo_data=False
    )

    assert [photo.data_url for photo in context.photos] == [PHOTO_PLACEHOLDER] * 2
    assert context.photos[0].description.startswith("Care log photo: water action on plant 'Tomato'")


def test_photo_query_failure_degrades_to_no_photos(store, monkeypatch) -> None:
    original = store.list_care_logs

    def _flaky(target_ids, *, since, photos_only=False, limit=None):
        if photos_only:
            raise RuntimeError("storage offline")
        return original(target_ids, since=since, photos_only=photos_only, limit=limit)

    monkeypatch.setattr(store, "list_care_logs", _flaky)

    context = _builder(store).build(garden_id="garden-1", zone_id="zone-1", user_id="user-1", now=NOW)

    assert context.photos == ()


def test_describe_photo_for_zone_target() -> None:
    log = _care_log("z", hours_ago=0, target_type="zone", target_id="zone-1")

    assert describe_photo(log, {}) == "Care log photo: water action on zone 'zone' (2025-06-10)"
