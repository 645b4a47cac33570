"""System prompt for zone analysis, shared by both providers."""

from __future__ import annotations

import json

from garden_advisor.ai.models import AnalysisContext
from garden_advisor.ai.schemas import render_contract_block

ANALYSIS_USER_INSTRUCTION = (
    "Analyze this garden zone. Review existing tasks and provide your operations "
    "(create/update/complete/cancel) as JSON."
)


def build_analysis_system_prompt(context: AnalysisContext) -> str:
    lines: list[str] = [
        "You are an expert garden advisor with deep knowledge of horticulture, plant biology, "
        "and seasonal care.",
        "Your job is to analyze a specific garden zone and keep its task list accurate: "
        "create new tasks, update or close existing ones.",
        "",
        "## Output Format",
        "",
        render_contract_block(),
        "",
        "## Garden Context",
        "",
        f"Garden name: {context.garden.name}",
    ]
    if context.garden.hardiness_zone:
        lines.append(f"USDA hardiness zone: {context.garden.hardiness_zone}")
    if context.garden.location:
        lines.append(f"Location: {context.garden.location.lat}, {context.garden.location.lng}")
    lines.append(f"Current date: {context.current_date}")
    if context.user_skill_level:
        lines.append(
            f"Gardener skill level: {context.user_skill_level} "
            "(adjust advice complexity accordingly)"
        )

    zone = context.zone
    lines.extend(["", "## Zone Details", "", f"Zone ID: {zone.id}", f"Zone name: {zone.name}"])
    if zone.soil_type:
        lines.append(f"Soil type: {zone.soil_type}")
    if zone.sun_exposure:
        lines.append(f"Sun exposure: {zone.sun_exposure}")

    if zone.plants:
        lines.extend(["", "## Plants in this zone", ""])
        for plant in zone.plants:
            lines.append(f"- **{plant.name}** (ID: {plant.id})")
            if plant.variety:
                lines.append(f"  Variety: {plant.variety}")
            if plant.date_planted:
                lines.append(f"  Planted: {plant.date_planted}")
            if plant.growth_stage:
                lines.append(f"  Growth stage: {plant.growth_stage}")
            if plant.care_profile:
                lines.append(f"  Care profile: {json.dumps(plant.care_profile, sort_keys=True)}")

    if zone.recent_care_logs:
        lines.extend(["", "## Recent care logs", ""])
        for log in zone.recent_care_logs:
            suffix = f" ({log.notes})" if log.notes else ""
            lines.append(f"- {log.action_type} on target {log.target_id} at {log.logged_at}{suffix}")

    if zone.sensor_readings:
        lines.extend(["", "## Sensor readings", ""])
        for reading in zone.sensor_readings:
            lines.append(
                f"- {reading.sensor_type}: {reading.value} {reading.unit} (at {reading.recorded_at})"
            )

    if context.existing_tasks:
        lines.extend(["", "## Existing tasks", ""])
        lines.append(
            "Reference these ids in update/complete/cancel operations. Only pending tasks "
            "can be changed; completed and cancelled ones are shown for history."
        )
        for task in context.existing_tasks:
            lines.append(f"- {json.dumps(task.model_dump(exclude_none=True), sort_keys=True)}")

    if context.weather:
        lines.extend(["", "## Weather", ""])
        lines.append(f"Current conditions: {json.dumps(context.weather.current, sort_keys=True)}")
        if context.weather.forecast:
            lines.append(f"Forecast: {json.dumps(list(context.weather.forecast), sort_keys=True)}")

    if context.photos:
        lines.extend(["", "## Attached Photos", ""])
        lines.append(
            f"{len(context.photos)} photo(s) are attached to this analysis request. "
            "Each photo has a description:"
        )
        for photo in context.photos:
            lines.append(f"- {photo.description}")
        lines.append(
            "Examine the photos for visible plant health issues, pests, disease symptoms, "
            "or growth progress."
        )

    lines.extend(
        [
            "",
            "## Instructions",
            "",
            "1. Consider plant needs, recent care, sensor data, weather and existing tasks together.",
            "2. Produce specific, actionable tasks that reference actual plant names and ids.",
            "3. Do not create a task that duplicates a pending one; update it instead.",
            "4. Complete tasks the care logs show were done; cancel tasks that no longer apply.",
            "5. Priorities: 'urgent' within 24 hours, 'today' today, 'upcoming' within a week, "
            "'informational' is FYI.",
            "6. Add observations about overall zone health and alerts for pests, disease, "
            "frost or drought.",
        ]
    )
    return "\n".join(lines)
