from datetime import timedelta

from conftest import NOW, make_task

from garden_advisor.ai.schemas import validate_analysis_payload
from garden_advisor.jobs.reconcile import (
    DUPLICATE,
    STALE_OR_MISSING,
    Reconciler,
    derive_task_id,
)


def _operations(*ops):
    return validate_analysis_payload({"operations": list(ops)}).operations


def _create(label="Mulch the bed", **overrides):
    op = {
        "op": "create",
        "targetType": "zone",
        "targetId": "zone-1",
        "actionType": "other",
        "priority": "upcoming",
        "label": label,
        "suggestedDate": "2025-06-14",
    }
    op.update(overrides)
    return op


def _apply(store, clock, operations, analysis_id="analysis-1", zone_id="zone-1"):
    return Reconciler(store, clock=clock).apply(
        operations, analysis_id=analysis_id, garden_id="garden-1", zone_id=zone_id
    )


def test_create_inserts_pending_task_with_ai_fields(store, clock) -> None:
    ops = _operations(
        _create(
            targetType="plant",
            targetId="plant-1",
            actionType="water",
            priority="today",
            label="Deep-water the tomatoes",
            context="Hot week ahead",
            recurrence="every 2 days",
            photoRequested=True,
        )
    )

    report = _apply(store, clock, ops)

    assert report.summary() == {"applied": 1, "skipped": 0, "failed": 0}
    task = store.get_task(derive_task_id("analysis-1", 0))
    assert task is not None
    assert task.status == "pending"
    assert task.zone_id == "zone-1"
    assert task.garden_id == "garden-1"
    assert task.target_type == "plant"
    assert task.target_id == "plant-1"
    assert task.action_type == "water"
    assert task.priority == "today"
    assert task.label == "Deep-water the tomatoes"
    assert task.context == "Hot week ahead"
    assert task.recurrence == "every 2 days"
    assert task.photo_requested is True
    assert task.source_analysis_id == "analysis-1"
    assert task.created_at == NOW


def test_failing_middle_operation_does_not_block_its_neighbours(store, clock) -> None:
    store.insert_task(make_task("t-done", status="completed", completed_at=NOW - timedelta(hours=1)))
    ops = _operations(
        _create(label="First"),
        {"op": "update", "taskId": "t-done", "priority": "urgent"},
        _create(label="Third"),
    )

    report = _apply(store, clock, ops)

    assert [outcome.status for outcome in report.outcomes] == ["applied", "skipped", "applied"]
    assert report.outcomes[1].reason == STALE_OR_MISSING
    assert store.get_task(derive_task_id("analysis-1", 0)).label == "First"
    assert store.get_task(derive_task_id("analysis-1", 2)).label == "Third"


def test_completing_an_already_completed_task_is_a_noop(store, clock) -> None:
    done_at = NOW - timedelta(hours=3)
    store.insert_task(
        make_task("t-1", status="completed", context="watered by hand", completed_at=done_at)
    )

    report = _apply(
        store, clock, _operations({"op": "complete", "taskId": "t-1", "reason": "Rain fell"})
    )

    assert report.outcomes[0].status == "skipped"
    assert report.outcomes[0].reason == STALE_OR_MISSING
    task = store.get_task("t-1")
    assert task.status == "completed"
    assert task.completed_via == "user"
    assert task.completed_at == done_at
    assert task.context == "watered by hand"


def test_replaying_the_same_analysis_does_not_duplicate_tasks(store, clock) -> None:
    ops = _operations(_create(label="Only once"))

    first = _apply(store, clock, ops)
    second = _apply(store, clock, ops)

    assert first.outcomes[0].status == "applied"
    assert second.outcomes[0].status == "skipped"
    assert second.outcomes[0].reason == DUPLICATE
    tasks = store.list_zone_tasks("zone-1", resolved_since=NOW - timedelta(days=7))
    assert [task.label for task in tasks] == ["Only once"]


def test_update_changes_only_the_fields_that_were_sent(store, clock) -> None:
    store.insert_task(make_task("t-1"))

    report = _apply(
        store,
        clock,
        _operations({"op": "update", "taskId": "t-1", "priority": "urgent", "suggestedDate": "2025-06-11"}),
    )

    assert report.outcomes[0].status == "applied"
    task = store.get_task("t-1")
    assert task.priority == "urgent"
    assert task.suggested_date == "2025-06-11"
    assert task.label == "Water tomatoes"
    assert task.context == "original context"
    assert task.status == "pending"
    assert task.updated_at == NOW
    assert task.source_analysis_id == "analysis-1"


def test_complete_with_reason_overwrites_context(store, clock) -> None:
    store.insert_task(make_task("t-1"))

    _apply(store, clock, _operations({"op": "complete", "taskId": "t-1", "reason": "Care log shows it was done"}))

    task = store.get_task("t-1")
    assert task.status == "completed"
    assert task.completed_via == "ai"
    assert task.completed_at == NOW
    assert task.context == "Care log shows it was done"


def test_cancel_without_reason_keeps_context(store, clock) -> None:
    store.insert_task(make_task("t-1"))

    _apply(store, clock, _operations({"op": "cancel", "taskId": "t-1"}))

    task = store.get_task("t-1")
    assert task.status == "cancelled"
    assert task.completed_via == "ai"
    assert task.context == "original context"


def test_operations_cannot_touch_tasks_in_another_zone(store, clock) -> None:
    store.insert_task(make_task("t-other", zone_id="zone-2"))

    report = _apply(store, clock, _operations({"op": "cancel", "taskId": "t-other"}))

    assert report.outcomes[0].status == "skipped"
    assert store.get_task("t-other").status == "pending"


def test_unknown_task_id_is_skipped(store, clock) -> None:
    report = _apply(store, clock, _operations({"op": "complete", "taskId": "missing"}))

    assert report.summary() == {"applied": 0, "skipped": 1, "failed": 0}


def test_store_error_is_isolated_to_its_operation(store, clock, monkeypatch) -> None:
    store.insert_task(make_task("t-1"))

    def _boom(task_id, *, zone_id, changes):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(store, "update_pending_task", _boom)

    report = _apply(
        store,
        clock,
        _operations({"op": "complete", "taskId": "t-1"}, _create(label="Still created")),
    )

    assert report.outcomes[0].status == "failed"
    assert report.outcomes[0].reason == "RuntimeError: connection reset"
    assert report.outcomes[1].status == "applied"


def test_derived_task_ids_are_stable_and_distinct() -> None:
    assert derive_task_id("a", 0) == derive_task_id("a", 0)
    assert derive_task_id("a", 0) != derive_task_id("a", 1)
    assert derive_task_id("a", 0) != derive_task_id("b", 0)


def test_replaying_a_mixed_batch_leaves_rows_unchanged(store, clock) -> None:
    for task_id in ("t-upd", "t-done", "t-cancel"):
        store.insert_task(make_task(task_id))
    ops = _operations(
        _create(label="Stake the peppers"),
        {"op": "update", "taskId": "t-upd", "priority": "urgent", "label": "Water today"},
        {"op": "complete", "taskId": "t-done", "reason": "Logged this morning"},
        {"op": "cancel", "taskId": "t-cancel", "reason": "Rain is forecast"},
    )
    task_ids = [derive_task_id("analysis-1", 0), "t-upd", "t-done", "t-cancel"]

    first = _apply(store, clock, ops)
    rows_after_first = {task_id: store.get_task(task_id).model_dump() for task_id in task_ids}
    second = _apply(store, clock, ops)
    rows_after_second = {task_id: store.get_task(task_id).model_dump() for task_id in task_ids}

    assert [outcome.status for outcome in first.outcomes] == ["applied"] * 4
    assert [(outcome.status, outcome.reason) for outcome in second.outcomes] == [
        ("skipped", DUPLICATE),
        ("applied", None),
        ("skipped", STALE_OR_MISSING),
        ("skipped", STALE_OR_MISSING),
    ]
    assert rows_after_second == rows_after_first
    assert rows_after_second["t-upd"]["label"] == "Water today"
    assert rows_after_second["t-done"]["status"] == "completed"
    assert rows_after_second["t-cancel"]["status"] == "cancelled"


def test_unparseable_suggested_date_fails_only_its_operation(store, clock) -> None:
    store.insert_task(make_task("t-1"))
    ops = _operations(
        _create(label="Someday", suggestedDate="next week"),
        {"op": "update", "taskId": "t-1", "suggestedDate": "20250615"},
        _create(label="Dated", suggestedDate="2025-06-15T07:00:00Z"),
    )

    report = _apply(store, clock, ops)

    assert [outcome.status for outcome in report.outcomes] == ["failed", "failed", "applied"]
    assert report.outcomes[0].reason.startswith("ValueError: suggested date 'next week'")
    assert store.get_task(derive_task_id("analysis-1", 0)) is None
    assert store.get_task("t-1").suggested_date == "2025-06-12"
    assert store.get_task(derive_task_id("analysis-1", 2)).suggested_date == "2025-06-15"
