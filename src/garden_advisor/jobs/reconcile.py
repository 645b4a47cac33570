"""Applies AI-proposed operations to the task table, one operation at a time."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Sequence
from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel

from garden_advisor.ai.schemas import (
    CancelOperation,
    CompleteOperation,
    CreateOperation,
    Operation,
    OperationKind,
    UpdateOperation,
)
from garden_advisor.jobs.queue import Clock, utc_now
from garden_advisor.storage.base import GardenStore
from garden_advisor.storage.models import TaskRecord

logger = logging.getLogger(__name__)

OutcomeStatus = Literal["applied", "skipped", "failed"]

STALE_OR_MISSING = "stale_or_missing_task"
DUPLICATE = "duplicate"

_TASK_ID_NAMESPACE = uuid.UUID("6f1d3c5e-8a1b-4f7e-9d2c-5b8e0a4c7f31")
_NON_NULLABLE_UPDATE_FIELDS = frozenset({"priority", "label", "suggested_date", "photo_requested"})


class OperationOutcome(BaseModel):
    index: int
    op: OperationKind
    task_id: str | None = None
    status: OutcomeStatus
    reason: str | None = None


class ReconciliationReport(BaseModel):
    analysis_id: str
    zone_id: str
    outcomes: list[OperationOutcome]

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    def summary(self) -> dict[str, int]:
        return {status: self.count(status) for status in ("applied", "skipped", "failed")}


def _require_iso_date(value: str) -> None:
    # Only this operation fails; the rest of the batch still applies.
    try:
        parsed = date.fromisoformat(value)
    except ValueError:
        parsed = None
    if parsed is None or parsed.isoformat() != value:
        raise ValueError(f"suggested date {value!r} is not YYYY-MM-DD")


def derive_task_id(analysis_id: str, index: int) -> str:
    """Stable id for the task created by operation ``index`` of an analysis."""
    return str(uuid.uuid5(_TASK_ID_NAMESPACE, f"{analysis_id}:{index}"))


class _Scope(BaseModel):
    analysis_id: str
    garden_id: str
    zone_id: str
    index: int
    now: datetime


class Reconciler:
    def __init__(self, store: GardenStore, *, clock: Clock = utc_now) -> None:
        self.store = store
        self.clock = clock
        self._handlers: dict[str, Callable[[Any, _Scope], OperationOutcome]] = {
            "create": self._create,
            "update": self._update,
            "complete": self._resolve,
            "cancel": self._resolve,
        }

    def apply(
        self,
        operations: Sequence[Operation],
        *,
        analysis_id: str,
        garden_id: str,
        zone_id: str,
    ) -> ReconciliationReport:
        outcomes: list[OperationOutcome] = []
        for index, operation in enumerate(operations):
            scope = _Scope(
                analysis_id=analysis_id,
                garden_id=garden_id,
                zone_id=zone_id,
                index=index,
                now=self.clock(),
            )
            handler = self._handlers[operation.op]
            try:
                outcome = handler(operation, scope)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "reconcile event=op_failed analysis_id=%s index=%d op=%s error=%s",
                    analysis_id,
                    index,
                    operation.op,
                    exc,
                    exc_info=True,
                )
                outcome = OperationOutcome(
                    index=index,
                    op=operation.op,
                    task_id=getattr(operation, "task_id", None),
                    status="failed",
                    reason=f"{type(exc).__name__}: {exc}",
                )
            outcomes.append(outcome)

        report = ReconciliationReport(analysis_id=analysis_id, zone_id=zone_id, outcomes=outcomes)
        logger.info(
            "reconcile event=done analysis_id=%s zone_id=%s applied=%d skipped=%d failed=%d",
            analysis_id,
            zone_id,
            report.count("applied"),
            report.count("skipped"),
            report.count("failed"),
        )
        return report

    def _create(self, operation: CreateOperation, scope: _Scope) -> OperationOutcome:
        _require_iso_date(operation.suggested_date)
        task_id = derive_task_id(scope.analysis_id, scope.index)
        task = TaskRecord(
            id=task_id,
            garden_id=scope.garden_id,
            zone_id=scope.zone_id,
            target_type=operation.target_type,
            target_id=operation.target_id,
            action_type=operation.action_type,
            priority=operation.priority,
            status="pending",
            label=operation.label,
            suggested_date=operation.suggested_date,
            context=operation.context,
            recurrence=operation.recurrence,
            photo_requested=bool(operation.photo_requested),
            source_analysis_id=scope.analysis_id,
            created_at=scope.now,
            updated_at=scope.now,
        )
        if not self.store.insert_task(task):
            logger.info("reconcile event=create_replayed task_id=%s", task_id)
            return OperationOutcome(
                index=scope.index, op="create", task_id=task_id, status="skipped", reason=DUPLICATE
            )
        return OperationOutcome(index=scope.index, op="create", task_id=task_id, status="applied")

    def _update(self, operation: UpdateOperation, scope: _Scope) -> OperationOutcome:
        changes: dict[str, Any] = {}
        for field in operation.model_fields_set - {"op", "task_id"}:
            value = getattr(operation, field)
            if value is None and field in _NON_NULLABLE_UPDATE_FIELDS:
                continue
            changes[field] = value
        if changes.get("suggested_date") is not None:
            _require_iso_date(changes["suggested_date"])
        changes["updated_at"] = scope.now
        changes["source_analysis_id"] = scope.analysis_id
        return self._guarded(operation, scope, changes)

    def _resolve(
        self, operation: CompleteOperation | CancelOperation, scope: _Scope
    ) -> OperationOutcome:
        changes: dict[str, Any] = {
            "status": "completed" if operation.op == "complete" else "cancelled",
            "completed_at": scope.now,
            "completed_via": "ai",
            "updated_at": scope.now,
            "source_analysis_id": scope.analysis_id,
        }
        if operation.reason:
            changes["context"] = operation.reason
        return self._guarded(operation, scope, changes)

    def _guarded(
        self,
        operation: UpdateOperation | CompleteOperation | CancelOperation,
        scope: _Scope,
        changes: dict[str, Any],
    ) -> OperationOutcome:
        updated = self.store.update_pending_task(
            operation.task_id, zone_id=scope.zone_id, changes=changes
        )
        if updated is None:
            logger.info(
                "reconcile event=skipped op=%s task_id=%s cause=%s",
                operation.op,
                operation.task_id,
                self._skip_cause(operation.task_id, scope.zone_id),
            )
            return OperationOutcome(
                index=scope.index,
                op=operation.op,
                task_id=operation.task_id,
                status="skipped",
                reason=STALE_OR_MISSING,
            )
        return OperationOutcome(
            index=scope.index, op=operation.op, task_id=operation.task_id, status="applied"
        )

    def _skip_cause(self, task_id: str, zone_id: str) -> str:
        current = self.store.get_task(task_id)
        if current is None:
            return "not_found"
        if current.zone_id != zone_id:
            return "other_zone"
        return f"status_{current.status}"
