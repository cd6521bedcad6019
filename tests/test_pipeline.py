"""Tests for the operation pipeline."""

import asyncio

import pytest

from meatledger.audit import AuditLogger
from meatledger.engine import OperationPipeline, StepStatus
from meatledger.models.audit import AuditEventType
from meatledger.services.storage import TransientStoreError


class Recorder:
    """Builds step actions that record their calls."""

    def __init__(self):
        self.calls: list[str] = []

    def ok(self, name, result=None):
        async def action(ctx):
            self.calls.append(name)
            return result
        return action

    def fail(self, name, error):
        async def action(ctx):
            self.calls.append(name)
            raise error
        return action


def _pipeline(recorder, auto_compensate=False, audit_logger=None):
    return (
        OperationPipeline("close_test", audit_logger=audit_logger, auto_compensate=auto_compensate)
        .step("one", recorder.ok("one", 1), compensate=recorder.ok("undo_one"))
        .step("two", recorder.ok("two", 2), compensate=recorder.ok("undo_two"))
        .step(
            "three",
            recorder.fail("three", TransientStoreError("stock write failed", code="unavailable")),
            compensate=recorder.ok("undo_three"),
        )
    )


class TestOperationPipeline:

    def test_steps_run_in_order_with_context(self):
        seen = {}

        async def first(ctx):
            return 41

        async def second(ctx):
            seen.update(ctx)
            return ctx["first"] + 1

        pipeline = OperationPipeline("demo").step("first", first).step("second", second)
        log = asyncio.run(pipeline.run())

        assert seen == {"first": 41}
        assert pipeline.context["second"] == 42
        assert log.completed == ["first", "second"]
        assert log.succeeded

    def test_failure_attaches_completion_log(self):
        recorder = Recorder()
        pipeline = _pipeline(recorder)

        with pytest.raises(TransientStoreError) as exc_info:
            asyncio.run(pipeline.run())

        log = exc_info.value.completion_log
        assert log is pipeline.log
        assert log.completed == ["one", "two"]
        assert log.failed_step == "three"
        assert log.pending == ["one", "two"]
        assert not log.succeeded
        # Nothing compensated unless asked to
        assert recorder.calls == ["one", "two", "three"]

    def test_auto_compensate_runs_in_reverse(self):
        recorder = Recorder()
        pipeline = _pipeline(recorder, auto_compensate=True)

        with pytest.raises(TransientStoreError):
            asyncio.run(pipeline.run())

        assert recorder.calls == ["one", "two", "three", "undo_two", "undo_one"]
        assert pipeline.log.compensated == ["two", "one"]
        assert pipeline.log.pending == []

    def test_rollback_on_demand(self):
        recorder = Recorder()
        pipeline = _pipeline(recorder)

        async def scenario():
            with pytest.raises(TransientStoreError):
                await pipeline.run()
            await pipeline.rollback()
            # A second rollback has nothing left to do
            await pipeline.rollback()

        asyncio.run(scenario())
        assert recorder.calls == ["one", "two", "three", "undo_two", "undo_one"]

    def test_partial_step_compensated_when_flagged(self):
        recorder = Recorder()
        pipeline = (
            OperationPipeline("demo", auto_compensate=True)
            .step("one", recorder.ok("one"), compensate=recorder.ok("undo_one"))
            .step(
                "stock",
                recorder.fail("stock", TransientStoreError("1 of 2 stock updates failed")),
                compensate=recorder.ok("undo_stock"),
                compensate_partial=True,
            )
        )

        with pytest.raises(TransientStoreError):
            asyncio.run(pipeline.run())

        assert recorder.calls == ["one", "stock", "undo_stock", "undo_one"]

    def test_failed_compensation_is_recorded_and_others_still_run(self):
        recorder = Recorder()
        pipeline = (
            OperationPipeline("demo", auto_compensate=True)
            .step("one", recorder.ok("one"), compensate=recorder.ok("undo_one"))
            .step(
                "two",
                recorder.ok("two"),
                compensate=recorder.fail("undo_two", TransientStoreError("offline")),
            )
            .step("three", recorder.fail("three", TransientStoreError("offline")))
        )

        with pytest.raises(TransientStoreError):
            asyncio.run(pipeline.run())

        assert recorder.calls == ["one", "two", "three", "undo_two", "undo_one"]
        statuses = {record.step: record.status for record in pipeline.log.records
                    if record.status is not StepStatus.COMPLETED}
        assert statuses == {
            "three": StepStatus.FAILED,
            "two": StepStatus.COMPENSATION_FAILED,
            "one": StepStatus.COMPENSATED,
        }
        assert pipeline.log.pending == ["two"]

    def test_non_ledger_errors_propagate_unchanged(self):
        async def boom(ctx):
            raise KeyError("missing")

        pipeline = OperationPipeline("demo").step("boom", boom)
        with pytest.raises(KeyError):
            asyncio.run(pipeline.run())
        assert pipeline.log.failed_step == "boom"

    def test_steps_are_audited(self):
        audit_logger = AuditLogger()
        pipeline = _pipeline(Recorder(), auto_compensate=True, audit_logger=audit_logger)

        with pytest.raises(TransientStoreError):
            asyncio.run(pipeline.run())

        event_types = [event.event_type for event in audit_logger.recent_events]
        assert event_types == [
            AuditEventType.STEP_COMPLETED,
            AuditEventType.STEP_COMPLETED,
            AuditEventType.STEP_FAILED,
            AuditEventType.COMPENSATION_APPLIED,
            AuditEventType.COMPENSATION_APPLIED,
        ]
        failed = audit_logger.recent_events[2]
        assert failed.details["completed_steps"] == ["one", "two"]
        assert failed.error_code == "unavailable"
        assert {e.correlation_id for e in audit_logger.recent_events} == {pipeline.log.correlation_id}

    def test_log_to_dict(self):
        pipeline = _pipeline(Recorder())
        with pytest.raises(TransientStoreError):
            asyncio.run(pipeline.run())

        data = pipeline.log.to_dict()
        assert data["operation"] == "close_test"
        assert data["failed_step"] == "three"
        assert data["records"][-1]["error_code"] == "unavailable"
