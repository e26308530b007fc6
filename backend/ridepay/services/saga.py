"""
Saga orchestration for multi-step payment workflows.

Each step has a forward action and an optional compensating action. When
a step fails, completed steps are compensated in reverse order and the
original error is re-raised.

Example workflow: claim referral -> authorize at processor -> persist ledger rows
"""

from __future__ import annotations

from enum import Enum
import logging
from typing import Any, Callable, Dict, List, Optional

from ridepay.core.ulid_helper import generate_ulid

logger = logging.getLogger(__name__)

SagaContext = Dict[str, Any]
ForwardAction = Callable[[SagaContext], Any]
CompensatingAction = Callable[[SagaContext, Any], None]


class SagaState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    COMPENSATING = "compensating"
    COMPENSATED = "compensated"


class StepStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    COMPENSATED = "compensated"
    COMPENSATION_FAILED = "compensation_failed"


class SagaStep:
    """A single saga step: forward action plus compensating action."""

    def __init__(
        self,
        name: str,
        forward_action: ForwardAction,
        compensating_action: Optional[CompensatingAction] = None,
    ) -> None:
        self.name = name
        self.forward_action = forward_action
        self.compensating_action = compensating_action
        self.status = StepStatus.PENDING
        self.result: Any = None
        self.error: Optional[str] = None

    def execute(self, context: SagaContext) -> Any:
        try:
            self.result = self.forward_action(context)
        except Exception as e:
            self.status = StepStatus.FAILED
            self.error = str(e)
            raise
        self.status = StepStatus.COMPLETED
        return self.result

    def compensate(self, context: SagaContext) -> None:
        if self.compensating_action is None or self.status != StepStatus.COMPLETED:
            return
        try:
            self.compensating_action(context, self.result)
            self.status = StepStatus.COMPENSATED
        except Exception as e:
            # Left for manual follow-up; the original failure is what the caller sees
            self.status = StepStatus.COMPENSATION_FAILED
            self.error = str(e)
            logger.error(f"Saga step {self.name} compensation failed: {e}", exc_info=True)


class Saga:
    """
    Ordered list of steps executed as one logical operation.

    Results are stored in the shared context under ``"<step name>"`` so
    later steps can read what earlier ones produced.
    """

    def __init__(self, name: str, saga_id: Optional[str] = None) -> None:
        self.name = name
        self.saga_id = saga_id or generate_ulid()
        self.steps: List[SagaStep] = []
        self.state = SagaState.PENDING
        self.context: SagaContext = {}

    def add_step(
        self,
        name: str,
        forward_action: ForwardAction,
        compensating_action: Optional[CompensatingAction] = None,
    ) -> "Saga":
        self.steps.append(SagaStep(name, forward_action, compensating_action))
        return self

    def execute(self) -> SagaContext:
        self.state = SagaState.IN_PROGRESS
        completed: List[SagaStep] = []
        for step in self.steps:
            try:
                self.context[step.name] = step.execute(self.context)
            except Exception as e:
                logger.warning(
                    f"Saga {self.name}[{self.saga_id}] failed at step {step.name}: {e}; compensating"
                )
                self.state = SagaState.COMPENSATING
                for done in reversed(completed):
                    done.compensate(self.context)
                self.state = SagaState.COMPENSATED
                raise
            completed.append(step)

        self.state = SagaState.COMPLETED
        logger.debug(f"Saga {self.name}[{self.saga_id}] completed")
        return self.context
