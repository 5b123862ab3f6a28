"""
Saga orchestration for multi-step order workflows.

Implements the Saga pattern: each step commits on its own and registers a
compensating action. When a step fails, completed steps are compensated in
reverse order and the failure is re-raised to the caller.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)

ForwardAction = Callable[[Dict[str, Any]], Awaitable[Any]]
CompensatingAction = Callable[[Dict[str, Any], Any], Awaitable[None]]


class SagaState(Enum):
    """Saga execution states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    COMPENSATING = "compensating"
    COMPENSATED = "compensated"


class StepStatus(Enum):
    """Step execution status."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    COMPENSATED = "compensated"
    COMPENSATION_FAILED = "compensation_failed"


class SagaStep:
    """
    Represents a single step in a saga.

    Each step has:
    - Forward action (the main operation)
    - Compensating action (rollback/undo operation)
    """

    def __init__(
        self,
        name: str,
        forward_action: ForwardAction,
        compensating_action: Optional[CompensatingAction] = None,
    ):
        """
        Initialize saga step.

        Args:
            name: Step name
            forward_action: Async function receiving the saga context
            compensating_action: Async function receiving the context and the step result
        """
        self.name = name
        self.forward_action = forward_action
        self.compensating_action = compensating_action
        self.status = StepStatus.PENDING
        self.result: Optional[Any] = None
        self.error: Optional[str] = None

    async def execute(self, context: Dict[str, Any]) -> Any:
        """
        Execute the forward action.

        Raises:
            Exception: If step execution fails
        """
        logger.debug("saga_step_executing", step=self.name)

        try:
            self.result = await self.forward_action(context)
        except Exception as e:
            self.status = StepStatus.FAILED
            self.error = str(e)
            logger.warning("saga_step_failed", step=self.name, error=str(e))
            raise

        self.status = StepStatus.COMPLETED
        logger.debug("saga_step_completed", step=self.name)
        return self.result

    async def compensate(self, context: Dict[str, Any]) -> None:
        """
        Execute the compensating action.

        Compensation failures are logged and leave the step in
        COMPENSATION_FAILED for manual follow-up.
        """
        if self.compensating_action is None:
            return

        if self.status != StepStatus.COMPLETED:
            logger.info("saga_step_skip_compensation", step=self.name, status=self.status.value)
            return

        logger.info("saga_step_compensating", step=self.name)

        try:
            await self.compensating_action(context, self.result)
        except Exception as e:
            self.status = StepStatus.COMPENSATION_FAILED
            self.error = str(e)
            logger.error("saga_step_compensation_failed", step=self.name, error=str(e))
            return

        self.status = StepStatus.COMPENSATED
        logger.info("saga_step_compensated", step=self.name)


class Saga:
    """
    Represents a saga (multi-step workflow without a spanning transaction).

    Orchestrates steps with compensating actions for rollback.
    """

    def __init__(self, name: str, saga_id: Optional[str] = None):
        """
        Initialize saga.

        Args:
            name: Saga name
            saga_id: Optional saga ID (generated if not provided)
        """
        self.saga_id = saga_id or str(uuid.uuid4())
        self.name = name
        self.steps: List[SagaStep] = []
        self.state = SagaState.PENDING
        self.context: Dict[str, Any] = {}
        self.created_at = datetime.now(timezone.utc)
        self.completed_at: Optional[datetime] = None

    def add_step(
        self,
        name: str,
        forward_action: ForwardAction,
        compensating_action: Optional[CompensatingAction] = None,
    ) -> "Saga":
        """
        Add a step to the saga.

        Returns:
            Saga: Self for method chaining
        """
        self.steps.append(
            SagaStep(
                name=name,
                forward_action=forward_action,
                compensating_action=compensating_action,
            )
        )
        return self

    @property
    def compensated_steps(self) -> List[SagaStep]:
        return [step for step in self.steps if step.status == StepStatus.COMPENSATED]

    async def execute(self) -> Dict[str, Any]:
        """
        Execute the saga.

        Executes all steps in order. If any step fails, executes
        compensating actions in reverse order and re-raises the failure.

        Returns:
            Dict[str, Any]: The saga context, holding each step's result
            under ``<step name>_result``

        Raises:
            Exception: The error of the failed step, after compensation
        """
        logger.info("saga_execution_started", saga_id=self.saga_id, name=self.name)

        self.state = SagaState.IN_PROGRESS
        completed_steps: List[SagaStep] = []

        for step in self.steps:
            try:
                result = await step.execute(self.context)
            except Exception as e:
                logger.warning(
                    "saga_execution_failed",
                    saga_id=self.saga_id,
                    name=self.name,
                    step=step.name,
                    error=str(e),
                )
                self.state = SagaState.COMPENSATING
                await self._compensate(completed_steps)
                self.state = SagaState.COMPENSATED
                self.completed_at = datetime.now(timezone.utc)
                raise

            completed_steps.append(step)
            self.context[f"{step.name}_result"] = result

        self.state = SagaState.COMPLETED
        self.completed_at = datetime.now(timezone.utc)

        logger.info(
            "saga_completed_successfully",
            saga_id=self.saga_id,
            name=self.name,
            steps_completed=len(completed_steps),
        )
        return self.context

    async def _compensate(self, completed_steps: List[SagaStep]) -> None:
        """
        Execute compensating actions for completed steps in reverse order.

        Args:
            completed_steps: List of completed steps to compensate
        """
        logger.info(
            "saga_compensation_started",
            saga_id=self.saga_id,
            steps_to_compensate=len(completed_steps),
        )

        for step in reversed(completed_steps):
            await step.compensate(self.context)

        logger.info("saga_compensation_completed", saga_id=self.saga_id)
