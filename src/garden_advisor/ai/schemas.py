"""Structured output contract for zone analysis.

The same Pydantic models validate model output and render the instruction
block placed in the system prompt, so the two cannot drift apart.
"""

from __future__ import annotations

import json
import re
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from garden_advisor.ai.errors import SchemaViolation

TargetType = Literal["zone", "plant"]
ActionType = Literal["water", "fertilize", "harvest", "prune", "plant", "monitor", "protect", "other"]
Priority = Literal["urgent", "today", "upcoming", "informational"]

LABEL_MAX_CHARS = 60
CONTEXT_MAX_CHARS = 200
_DATE_PREFIX_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})[T ]")


def trim_time_of_day(value: str) -> str:
    """Reduce ``2025-06-11T00:00`` style values to their date; leave anything else as sent."""
    value = value.strip()
    match = _DATE_PREFIX_RE.match(value)
    return match.group(1) if match else value


class ContractModel(BaseModel):
    """Base for AI-facing payloads: camelCase on the wire, unknown keys dropped."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class CreateOperation(ContractModel):
    op: Literal["create"]
    target_type: TargetType = Field(description="what the task applies to")
    target_id: str = Field(min_length=1, description="the zone id or plant id")
    action_type: ActionType
    priority: Priority
    label: str = Field(max_length=LABEL_MAX_CHARS, description="short human-readable label")
    suggested_date: str = Field(min_length=1, description="YYYY-MM-DD")
    context: str | None = Field(
        default=None, max_length=CONTEXT_MAX_CHARS, description="brief explanation"
    )
    recurrence: str | None = Field(default=None, description="free-form hint, e.g. every 3 days")
    photo_requested: bool | None = Field(
        default=None, description="ask the gardener to attach a photo when done"
    )

    @field_validator("suggested_date")
    @classmethod
    def normalize_suggested_date(cls, value: str) -> str:
        return trim_time_of_day(value)


class UpdateOperation(ContractModel):
    op: Literal["update"]
    task_id: str = Field(min_length=1, description="id of an existing pending task")
    priority: Priority | None = None
    label: str | None = Field(default=None, max_length=LABEL_MAX_CHARS)
    suggested_date: str | None = Field(default=None, min_length=1)
    context: str | None = Field(default=None, max_length=CONTEXT_MAX_CHARS)
    recurrence: str | None = None
    photo_requested: bool | None = None

    @field_validator("suggested_date")
    @classmethod
    def normalize_suggested_date(cls, value: str | None) -> str | None:
        return trim_time_of_day(value) if value is not None else None


class CompleteOperation(ContractModel):
    op: Literal["complete"]
    task_id: str = Field(min_length=1, description="id of an existing pending task")
    reason: str | None = Field(
        default=None, max_length=CONTEXT_MAX_CHARS, description="why the task is done"
    )


class CancelOperation(ContractModel):
    op: Literal["cancel"]
    task_id: str = Field(min_length=1, description="id of an existing pending task")
    reason: str | None = Field(
        default=None, max_length=CONTEXT_MAX_CHARS, description="why the task is no longer needed"
    )


Operation = Annotated[
    Union[CreateOperation, UpdateOperation, CompleteOperation, CancelOperation],
    Field(discriminator="op"),
]
OperationKind = Literal["create", "update", "complete", "cancel"]

OPERATION_MODELS: dict[str, type[ContractModel]] = {
    "create": CreateOperation,
    "update": UpdateOperation,
    "complete": CompleteOperation,
    "cancel": CancelOperation,
}


class AnalysisResult(ContractModel):
    """Validated model output for one zone."""

    operations: list[Operation]
    observations: list[str] = Field(default_factory=list)
    alerts: list[str] = Field(default_factory=list)


# Rendered into the prompt and asserted against the validator in tests.
CONTRACT_EXAMPLE: dict[str, Any] = {
    "operations": [
        {
            "op": "create",
            "targetType": "plant",
            "targetId": "<plant id from the context>",
            "actionType": "water",
            "priority": "today",
            "label": "Deep-water the tomatoes",
            "suggestedDate": "2025-06-11",
            "context": "Soil moisture is low and a hot week is forecast",
            "recurrence": "every 2 days",
            "photoRequested": False,
        },
        {
            "op": "update",
            "taskId": "<existing task id>",
            "priority": "urgent",
            "suggestedDate": "2025-06-12",
        },
        {"op": "complete", "taskId": "<existing task id>", "reason": "Care log shows it was done"},
        {"op": "cancel", "taskId": "<existing task id>", "reason": "Rain made this unnecessary"},
    ],
    "observations": ["Zone is healthy overall"],
    "alerts": ["Frost expected on Thursday night"],
}


def validate_analysis_payload(payload: Any, *, provider: str = "unknown") -> AnalysisResult:
    """Validate parsed JSON against the contract, raising SchemaViolation on mismatch."""
    try:
        return AnalysisResult.model_validate(payload)
    except ValidationError as exc:
        errors = exc.errors(include_url=False, include_context=False)
        raise SchemaViolation(
            f"{provider} output failed contract validation: {len(errors)} error(s)",
            provider=provider,
            errors=errors,
        ) from exc


def render_contract_block() -> str:
    """Render the instruction block describing the output contract."""
    lines = [
        "Respond ONLY with a JSON object (no extra text) of this shape:",
        '{"operations": [<operation>, ...], "observations": [<string>, ...], '
        '"alerts": [<string>, ...]}',
        '"observations" and "alerts" are optional.',
        "",
        'Each operation is one of the following, selected by its "op" field:',
    ]
    for kind, model in OPERATION_MODELS.items():
        lines.append("")
        lines.append(f'Operation "{kind}":')
        schema = model.model_json_schema(by_alias=True)
        required = set(schema.get("required", []))
        for name, prop in schema.get("properties", {}).items():
            marker = "required" if name in required else "optional"
            line = f'  "{name}": {_describe_property(prop)} ({marker})'
            description = prop.get("description")
            if description:
                line += f" - {description}"
            lines.append(line)
    lines.append("")
    lines.append("Example:")
    lines.append(json.dumps(CONTRACT_EXAMPLE, indent=2))
    return "\n".join(lines)


def _describe_property(schema: dict[str, Any]) -> str:
    if "anyOf" in schema:
        options = [item for item in schema["anyOf"] if item.get("type") != "null"]
        return " | ".join(_describe_property(item) for item in options)
    if "const" in schema:
        return json.dumps(schema["const"])
    if "enum" in schema:
        return " | ".join(json.dumps(value) for value in schema["enum"])
    kind = schema.get("type")
    if kind == "string":
        if "maxLength" in schema:
            return f"<string, max {schema['maxLength']} chars>"
        return "<string>"
    if kind == "boolean":
        return "true | false"
    if kind == "array":
        return f"[{_describe_property(schema.get('items', {}))}, ...]"
    return "<value>"
