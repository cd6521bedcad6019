"""
Operation Pipeline

Closing or deleting an invoice touches several documents (counter,
invoice, client balance, stock entries) with no transaction spanning
them. The pipeline runs those writes as named steps in a fixed order and
keeps a CompletionLog of what was done.

DESIGN DECISION: A failed step is NOT rolled back automatically by default.
The error propagates with the CompletionLog attached, so the caller
knows exactly which writes happened. Compensations (one per step, run in
reverse order) execute only when auto_compensate is enabled or when
rollback() is called explicitly.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

import structlog

from meatledger.audit import AuditLogger, create_correlation_id
from meatledger.errors import LedgerError
from meatledger.models.audit import AuditEventBuilder


logger = structlog.get_logger(__name__)

# A step receives the pipeline context: results of earlier steps keyed by step name
StepAction = Callable[[dict[str, Any]], Awaitable[Any]]


class StepStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    COMPENSATED = "compensated"
    COMPENSATION_FAILED = "compensation_failed"


@dataclass
class PipelineStep:
    name: str
    action: StepAction
    compensate: Optional[StepAction] = None
    # The compensation is also safe for a step that failed halfway
    compensate_partial: bool = False


@dataclass
class StepRecord:
    step: str
    status: StepStatus
    error: Optional[str] = None
    error_code: Optional[str] = None


@dataclass
class CompletionLog:
    """
    Record of one pipeline run.

    `completed` lists the steps whose writes went through, in order.
    After a failure, `pending` lists those that are still in effect.
    """
    operation: str
    correlation_id: UUID
    records: list[StepRecord] = field(default_factory=list)

    def _steps(self, status: StepStatus) -> list[str]:
        return [record.step for record in self.records if record.status is status]

    @property
    def completed(self) -> list[str]:
        return self._steps(StepStatus.COMPLETED)

    @property
    def compensated(self) -> list[str]:
        return self._steps(StepStatus.COMPENSATED)

    @property
    def failed_step(self) -> Optional[str]:
        failed = self._steps(StepStatus.FAILED)
        return failed[0] if failed else None

    @property
    def succeeded(self) -> bool:
        return self.failed_step is None

    @property
    def pending(self) -> list[str]:
        """Completed steps that have not been compensated."""
        undone = set(self.compensated)
        return [step for step in self.completed if step not in undone]

    def to_dict(self) -> dict:
        return {
            "operation": self.operation,
            "correlation_id": str(self.correlation_id),
            "completed": self.completed,
            "failed_step": self.failed_step,
            "compensated": self.compensated,
            "records": [
                {
                    "step": record.step,
                    "status": record.status.value,
                    "error": record.error,
                    "error_code": record.error_code,
                }
                for record in self.records
            ],
        }


class OperationPipeline:
    """
    Runs the steps of one multi-document operation.

    Usage:
        pipeline = (
            OperationPipeline("close_client_invoice", audit_logger, correlation_id)
            .step("assign_number", assign_number)
            .step("persist_invoice", persist_invoice, compensate=remove_invoice)
        )
        log = await pipeline.run()
        invoice = pipeline.context["persist_invoice"]
    """

    def __init__(
        self,
        operation: str,
        audit_logger: Optional[AuditLogger] = None,
        correlation_id: Optional[UUID] = None,
        auto_compensate: bool = False,
    ):
        self.operation = operation
        self.context: dict[str, Any] = {}
        self.log = CompletionLog(
            operation=operation,
            correlation_id=correlation_id or create_correlation_id(),
        )
        self._audit_logger = audit_logger
        self._auto_compensate = auto_compensate
        self._steps: list[PipelineStep] = []

    def step(
        self,
        name: str,
        action: StepAction,
        compensate: Optional[StepAction] = None,
        compensate_partial: bool = False,
    ) -> "OperationPipeline":
        self._steps.append(PipelineStep(
            name=name,
            action=action,
            compensate=compensate,
            compensate_partial=compensate_partial,
        ))
        return self

    async def run(self) -> CompletionLog:
        """
        Run every step in order.

        Raises:
            The first step's exception, unchanged. A LedgerError carries
            this pipeline's CompletionLog in its completion_log attribute.
        """
        for step in self._steps:
            try:
                self.context[step.name] = await step.action(self.context)
            except Exception as e:
                await self._record_failure(step, e)
                if self._auto_compensate:
                    await self.rollback()
                raise

            self.log.records.append(StepRecord(step=step.name, status=StepStatus.COMPLETED))
            if self._audit_logger:
                await self._audit_logger.log(AuditEventBuilder.step_completed(
                    operation=self.operation,
                    step=step.name,
                    correlation_id=self.log.correlation_id,
                ))

        return self.log

    async def rollback(self) -> CompletionLog:
        """
        Compensate every pending step, most recent first.

        The failed step is included when it was registered with
        compensate_partial.

        A compensation that fails is recorded and the remaining ones
        still run; check `pending` on the returned log.
        """
        pending = set(self.log.pending)
        failed_step = self.log.failed_step
        if failed_step and failed_step not in self.log.compensated:
            pending.update(
                step.name for step in self._steps
                if step.name == failed_step and step.compensate_partial
            )
        for step in reversed(self._steps):
            if step.name not in pending or step.compensate is None:
                continue
            try:
                await step.compensate(self.context)
            except Exception as e:
                code = e.code if isinstance(e, LedgerError) else None
                self.log.records.append(StepRecord(
                    step=step.name,
                    status=StepStatus.COMPENSATION_FAILED,
                    error=str(e),
                    error_code=code,
                ))
                logger.error(
                    "compensation_failed",
                    operation=self.operation,
                    step=step.name,
                    error=str(e),
                )
                succeeded, error_message = False, str(e)
            else:
                self.log.records.append(StepRecord(step=step.name, status=StepStatus.COMPENSATED))
                succeeded, error_message = True, None

            if self._audit_logger:
                await self._audit_logger.log(AuditEventBuilder.compensation_applied(
                    operation=self.operation,
                    step=step.name,
                    succeeded=succeeded,
                    correlation_id=self.log.correlation_id,
                    error_message=error_message,
                ))

        return self.log

    async def _record_failure(self, step: PipelineStep, error: Exception) -> None:
        code = error.code if isinstance(error, LedgerError) else None
        self.log.records.append(StepRecord(
            step=step.name,
            status=StepStatus.FAILED,
            error=str(error),
            error_code=code,
        ))
        if isinstance(error, LedgerError):
            error.completion_log = self.log

        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.step_failed(
                operation=self.operation,
                step=step.name,
                error_message=str(error),
                correlation_id=self.log.correlation_id,
                completed_steps=self.log.completed,
                error_code=code,
            ))
