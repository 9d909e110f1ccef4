"""In-memory execution state store."""

import copy
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from ..models.core import (
    ExecutionStatusEnum,
    StepExecutionRecord,
    WorkflowExecution,
)
from .exceptions import ExecutionNotFoundError, InvalidStateTransitionError
from .logging import get_logger

logger = get_logger(__name__)


ALLOWED_TRANSITIONS = {
    ExecutionStatusEnum.RUNNING: frozenset({
        ExecutionStatusEnum.PAUSED,
        ExecutionStatusEnum.CANCELLED,
        ExecutionStatusEnum.COMPLETED,
        ExecutionStatusEnum.FAILED,
    }),
    ExecutionStatusEnum.PAUSED: frozenset({
        ExecutionStatusEnum.RUNNING,
        ExecutionStatusEnum.CANCELLED,
    }),
    ExecutionStatusEnum.CANCELLED: frozenset(),
    ExecutionStatusEnum.COMPLETED: frozenset(),
    ExecutionStatusEnum.FAILED: frozenset(),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionStateStore:
    """
    Table of executions keyed by execution id.

    All mutation goes through this class under one lock, and every read hands
    out a deep copy, so callers can never alter stored state by accident.
    Executions are kept until ``clear_execution`` or ``clear`` is called.
    """

    def __init__(self):
        self._executions: Dict[str, WorkflowExecution] = {}
        self._lock = threading.RLock()

    def _require(self, execution_id: str) -> WorkflowExecution:
        execution = self._executions.get(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        return execution

    def create_execution(self, workflow_id: str, variables: Optional[Dict[str, Any]] = None) -> WorkflowExecution:
        """
        Create a running execution seeded with ``variables``.

        Args:
            workflow_id: ID of the workflow being executed
            variables: Initial variable bindings

        Returns:
            Snapshot of the new execution
        """
        execution = WorkflowExecution(
            id=str(uuid.uuid4()),
            workflow_id=workflow_id,
            status=ExecutionStatusEnum.RUNNING,
            variables=copy.deepcopy(dict(variables or {})),
            current_step=None,
            step_history=[],
            start_time=utcnow(),
        )
        with self._lock:
            self._executions[execution.id] = execution
            logger.debug(f"Created execution {execution.id} for workflow {workflow_id}")
            return execution.model_copy(deep=True)

    def get_execution(self, execution_id: str) -> WorkflowExecution:
        """Return a snapshot of the execution.

        Raises:
            ExecutionNotFoundError: If the id is unknown
        """
        with self._lock:
            return self._require(execution_id).model_copy(deep=True)

    def exists(self, execution_id: str) -> bool:
        with self._lock:
            return execution_id in self._executions

    def get_status(self, execution_id: str) -> ExecutionStatusEnum:
        with self._lock:
            return self._require(execution_id).status

    def get_variables(self, execution_id: str) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._require(execution_id).variables)

    def set_variable(self, execution_id: str, name: str, value: Any) -> None:
        with self._lock:
            self._require(execution_id).variables[name] = copy.deepcopy(value)

    def merge_variables(self, execution_id: str, values: Dict[str, Any]) -> None:
        """Overwrite bindings with ``values``; keys not in ``values`` are untouched."""
        with self._lock:
            self._require(execution_id).variables.update(copy.deepcopy(values))

    def set_current_step(self, execution_id: str, step_id: Optional[str]) -> None:
        with self._lock:
            self._require(execution_id).current_step = step_id

    def append_step_record(self, execution_id: str, record: StepExecutionRecord) -> int:
        """Append a record to the history and return its index."""
        with self._lock:
            history = self._require(execution_id).step_history
            history.append(record.model_copy(deep=True))
            return len(history) - 1

    def update_step_record(self, execution_id: str, index: int, **changes: Any) -> StepExecutionRecord:
        """
        Update the record at ``index`` in place.

        A record may only change while it is the most recent entry for its
        step; once the same step has been recorded again it is frozen.

        Raises:
            ExecutionNotFoundError: If the id is unknown
            InvalidStateTransitionError: If the record has been superseded
        """
        with self._lock:
            history = self._require(execution_id).step_history
            record = history[index]
            if any(later.step_id == record.step_id for later in history[index + 1:]):
                raise InvalidStateTransitionError(
                    f"Step record for {record.step_id} has been superseded",
                    execution_id=execution_id
                )
            updated = record.model_copy(update=copy.deepcopy(changes))
            history[index] = updated
            return updated.model_copy(deep=True)

    def transition(
        self,
        execution_id: str,
        target: ExecutionStatusEnum,
        allowed_from: Optional[Iterable[ExecutionStatusEnum]] = None,
        error: Optional[str] = None,
        variables: Optional[Dict[str, Any]] = None,
    ) -> WorkflowExecution:
        """
        Move an execution to ``target`` atomically.

        Args:
            execution_id: Execution to update
            target: New status
            allowed_from: Statuses the caller accepts as a starting point; the
                transition table is always enforced on top of this
            error: Error message to record
            variables: Bindings merged before the status change

        Returns:
            Snapshot after the transition

        Raises:
            ExecutionNotFoundError: If the id is unknown
            InvalidStateTransitionError: If the move is not legal from the current status
        """
        with self._lock:
            execution = self._require(execution_id)
            current = execution.status
            permitted = target in ALLOWED_TRANSITIONS[current]
            if allowed_from is not None and current not in set(allowed_from):
                permitted = False
            if not permitted:
                raise InvalidStateTransitionError(
                    f"Cannot move execution {execution_id} from {current.value} to {target.value}",
                    execution_id=execution_id,
                    current_status=current.value,
                    requested_status=target.value
                )

            if variables:
                execution.variables.update(copy.deepcopy(variables))
            execution.status = target
            if error is not None:
                execution.error = error
            if target.is_terminal:
                execution.end_time = utcnow()

            logger.debug(f"Execution {execution_id}: {current.value} -> {target.value}")
            return execution.model_copy(deep=True)

    def list_active(self) -> List[WorkflowExecution]:
        """Snapshots of every running or paused execution."""
        with self._lock:
            return [
                execution.model_copy(deep=True)
                for execution in self._executions.values()
                if execution.status.is_active
            ]

    def list_by_workflow(self, workflow_id: str) -> List[WorkflowExecution]:
        with self._lock:
            return [
                execution.model_copy(deep=True)
                for execution in self._executions.values()
                if execution.workflow_id == workflow_id
            ]

    def list_all(self) -> List[WorkflowExecution]:
        with self._lock:
            return [execution.model_copy(deep=True) for execution in self._executions.values()]

    def clear_execution(self, execution_id: str) -> bool:
        """Evict one execution; returns False if it was not stored."""
        with self._lock:
            removed = self._executions.pop(execution_id, None)
        if removed is not None:
            logger.debug(f"Cleared execution {execution_id}")
        return removed is not None

    def clear(self) -> int:
        """Evict every execution and return how many were stored."""
        with self._lock:
            count = len(self._executions)
            self._executions.clear()
        logger.debug(f"Cleared {count} executions")
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._executions)
