"""Workflow engine: step dispatch loop and execution control surface."""

import asyncio
from typing import Any, Dict, List, Optional, Set

from ..models.core import (
    ExecutionStatusEnum,
    StepExecutionRecord,
    StepStatusEnum,
    Workflow,
    WorkflowExecution,
)
from .collaborators import AgentCapability, HumanCheckpointHandler, RAGPipeline, ToolCapability
from .exceptions import (
    ExecutionCancelledError,
    ExecutionInterruptedError,
    ExecutionPausedError,
    InvalidStateTransitionError,
    StepExecutionError,
    StorageError,
    WorkflowEngineError,
    WorkflowValidationError,
)
from .executors import STEP_EXECUTORS, ExecutionContext, StepRun
from .expressions import ExpressionEvaluator, evaluate_expression
from .logging import get_logger, logging_context
from .resolver import InputResolver
from .result import Failure, Result, Success
from .state_manager import ExecutionStateStore, utcnow

logger = get_logger(__name__)


class WorkflowEngine:
    """Runs workflows step by step and exposes pause/resume/cancel controls.

    Every public method returns a ``Success`` or ``Failure``; no error escapes
    to the caller. Pause and cancel are cooperative: they take effect at the
    next step boundary, never interrupting a step already in flight.
    """

    def __init__(
        self,
        agent_capability: Optional[AgentCapability] = None,
        tool_capability: Optional[ToolCapability] = None,
        rag_pipelines: Optional[Dict[str, RAGPipeline]] = None,
        human_handler: Optional[HumanCheckpointHandler] = None,
        expression_evaluator: Optional[ExpressionEvaluator] = None,
        strict_variables: bool = False,
        state_store: Optional[ExecutionStateStore] = None,
        repository=None,
    ):
        """Initialize the workflow engine.

        Args:
            agent_capability: Runs agent steps; agent steps fail without it
            tool_capability: Tool catalog for tool steps
            rag_pipelines: Retrieval pipelines by name for rag steps
            human_handler: Answers human_in_the_loop steps
            expression_evaluator: Replaces the default templating evaluator
            strict_variables: Fail steps whose variable inputs are unbound
            state_store: Store holding executions; a new one is created if omitted
            repository: Optional ExecutionRepository receiving terminal snapshots
        """
        self.agent_capability = agent_capability
        self.tool_capability = tool_capability
        self.rag_pipelines: Dict[str, RAGPipeline] = dict(rag_pipelines or {})
        self.human_handler = human_handler
        self.evaluator: ExpressionEvaluator = expression_evaluator or evaluate_expression
        self.resolver = InputResolver(self.evaluator, strict_variables=strict_variables)
        self.store = state_store or ExecutionStateStore()
        self.repository = repository

        self._tasks: Dict[str, asyncio.Task] = {}
        self._dispatching: Set[str] = set()

        logger.info(f"WorkflowEngine initialized with strict_variables={strict_variables}")

    # Control surface

    async def execute(self, workflow: Workflow, input: Optional[Dict[str, Any]] = None) -> Result:
        """
        Run a workflow to the end.

        Args:
            workflow: Workflow definition
            input: Initial variable bindings

        Returns:
            Success with the completed execution, or Failure with the error
            that stopped it. The execution stays in the store either way.
        """
        created = self._create_execution(workflow, input)
        if created.is_failure:
            return created
        return await self._run(workflow, created.value.id)

    async def start(self, workflow: Workflow, input: Optional[Dict[str, Any]] = None) -> Result:
        """
        Create an execution and dispatch it in the background.

        Must be called from a running event loop.

        Returns:
            Success with the initial running snapshot
        """
        created = self._create_execution(workflow, input)
        if created.is_failure:
            return created

        execution = created.value
        task = asyncio.create_task(self._run(workflow, execution.id))
        self._tasks[execution.id] = task
        return Success(execution)

    async def wait(self, execution_id: str) -> Result:
        """Wait for a started execution and return its final result."""
        task = self._tasks.get(execution_id)
        if task is None:
            found = self.get_execution(execution_id)
            if found.is_failure:
                return found
            return self._result_for(found.value)
        try:
            return await asyncio.shield(task)
        finally:
            if task.done():
                self._tasks.pop(execution_id, None)

    def pause(self, execution_id: str) -> Result:
        """Request a pause; the dispatch loop stops before its next step."""
        try:
            self.store.transition(
                execution_id, ExecutionStatusEnum.PAUSED,
                allowed_from=[ExecutionStatusEnum.RUNNING]
            )
        except WorkflowEngineError as e:
            logger.warning(f"Pause of execution {execution_id} rejected: {e.message}")
            return Failure(e)

        logger.info(f"Paused execution {execution_id}")
        return Success(None)

    def resume(self, execution_id: str, input: Optional[Dict[str, Any]] = None) -> Result:
        """
        Mark a paused execution running again, merging ``input`` into its variables.

        Only the status changes; step dispatch is not restarted.
        """
        try:
            execution = self.store.transition(
                execution_id, ExecutionStatusEnum.RUNNING,
                allowed_from=[ExecutionStatusEnum.PAUSED],
                variables=input
            )
        except WorkflowEngineError as e:
            logger.warning(f"Resume of execution {execution_id} rejected: {e.message}")
            return Failure(e)

        logger.info(f"Resumed execution {execution_id}")
        return Success(execution)

    def cancel(self, execution_id: str) -> Result:
        """Cancel a running or paused execution."""
        try:
            execution = self.store.transition(
                execution_id, ExecutionStatusEnum.CANCELLED,
                allowed_from=[ExecutionStatusEnum.RUNNING, ExecutionStatusEnum.PAUSED]
            )
        except WorkflowEngineError as e:
            logger.warning(f"Cancel of execution {execution_id} rejected: {e.message}")
            return Failure(e)

        logger.info(f"Cancelled execution {execution_id}")
        self._archive(execution)
        return Success(None)

    def get_execution(self, execution_id: str) -> Result:
        try:
            return Success(self.store.get_execution(execution_id))
        except WorkflowEngineError as e:
            return Failure(e)

    def list_active(self) -> List[WorkflowExecution]:
        return self.store.list_active()

    def list_executions(self, workflow_id: Optional[str] = None) -> List[WorkflowExecution]:
        """Executions of one workflow, or all of them when no id is given."""
        if workflow_id is None:
            return self.store.list_all()
        return self.store.list_by_workflow(workflow_id)

    def clear_execution(self, execution_id: str) -> Result:
        """Evict an execution from the store.

        Executions still being dispatched, by ``execute`` or ``start``, are
        refused with InvalidStateTransitionError.
        """
        task = self._tasks.get(execution_id)
        if execution_id in self._dispatching or (task is not None and not task.done()):
            return Failure(InvalidStateTransitionError(
                f"Execution {execution_id} is still being dispatched",
                execution_id=execution_id
            ))
        self._tasks.pop(execution_id, None)
        return Success(self.store.clear_execution(execution_id))

    def clear(self) -> int:
        """Evict every execution that is not being dispatched; returns how many were evicted."""
        self._tasks = {key: task for key, task in self._tasks.items() if not task.done()}
        if not self._dispatching and not self._tasks:
            return self.store.clear()

        cleared = 0
        for execution in self.store.list_all():
            if execution.id in self._dispatching or execution.id in self._tasks:
                continue
            cleared += self.store.clear_execution(execution.id)
        return cleared

    async def shutdown(self) -> None:
        """Cancel every background dispatch that is still running."""
        pending = [task for task in self._tasks.values() if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()
        logger.info(f"WorkflowEngine shut down, cancelled {len(pending)} running executions")

    # Dispatch

    def _create_execution(self, workflow: Workflow, input: Optional[Dict[str, Any]]) -> Result:
        validation = workflow.validate_structure()
        if not validation.is_valid:
            error = WorkflowValidationError(
                f"Workflow {workflow.id} is invalid",
                validation_errors=validation.errors,
                workflow_id=workflow.id
            )
            logger.error(f"Refusing to execute workflow {workflow.id}: {validation.errors}")
            return Failure(error)

        try:
            return Success(self.store.create_execution(workflow.id, input))
        except Exception as e:
            logger.error(f"Failed to create execution for workflow {workflow.id}: {e}", exc_info=True)
            return Failure(e)

    async def _run(self, workflow: Workflow, execution_id: str) -> Result:
        context = ExecutionContext(self.store, execution_id, workflow.id)

        with logging_context(execution_id=execution_id, workflow_id=workflow.id):
            logger.info(f"Starting execution {execution_id} of workflow {workflow.id}")
            if workflow.timeout:
                logger.debug(f"Workflow {workflow.id} declares an advisory timeout of {workflow.timeout}ms")

            self._dispatching.add(execution_id)
            try:
                await self.run_steps(workflow.steps, context)
                # A pause or cancel during the last step must not be overwritten.
                self._check_interrupted(context)
                execution = self.store.transition(
                    execution_id, ExecutionStatusEnum.COMPLETED,
                    allowed_from=[ExecutionStatusEnum.RUNNING]
                )
            except ExecutionInterruptedError as e:
                logger.info(f"Execution {execution_id} stopped: {e.message}")
                return Failure(e)
            except asyncio.CancelledError:
                self._abandon(execution_id)
                raise
            except Exception as e:
                return self._fail(execution_id, e)
            finally:
                self._dispatching.discard(execution_id)

            logger.info(f"Execution {execution_id} completed")
            self._archive(execution)
            return Success(execution)

    def _fail(self, execution_id: str, error: Exception) -> Failure:
        message = error.message if isinstance(error, WorkflowEngineError) else str(error)
        try:
            execution = self.store.transition(
                execution_id, ExecutionStatusEnum.FAILED,
                allowed_from=[ExecutionStatusEnum.RUNNING],
                error=message
            )
        except WorkflowEngineError:
            # Paused, cancelled or evicted while the failing step was in flight.
            logger.warning(f"Execution {execution_id} failed after leaving running state: {message}")
            return Failure(error)

        logger.error(f"Execution {execution_id} failed: {message}")
        self._archive(execution)
        return Failure(error)

    def _abandon(self, execution_id: str) -> None:
        """Cancel an execution whose dispatch task was cancelled, e.g. by ``shutdown``."""
        try:
            execution = self.store.transition(
                execution_id, ExecutionStatusEnum.CANCELLED,
                allowed_from=[ExecutionStatusEnum.RUNNING, ExecutionStatusEnum.PAUSED],
                error="Dispatch was cancelled"
            )
        except WorkflowEngineError as e:
            logger.warning(f"Dispatch of execution {execution_id} cancelled: {e.message}")
            return

        logger.warning(f"Dispatch of execution {execution_id} cancelled, execution cancelled")
        self._archive(execution)

    @staticmethod
    def _result_for(execution: WorkflowExecution) -> Result:
        """Rebuild the result of a finished dispatch from the stored snapshot."""
        if execution.status == ExecutionStatusEnum.FAILED:
            return Failure(StepExecutionError(
                execution.error or f"Execution {execution.id} failed",
                execution_id=execution.id
            ))
        if execution.status == ExecutionStatusEnum.PAUSED:
            return Failure(ExecutionPausedError(execution.id))
        if execution.status == ExecutionStatusEnum.CANCELLED:
            return Failure(ExecutionCancelledError(execution.id))
        return Success(execution)

    async def run_steps(self, steps, context: ExecutionContext) -> None:
        """Run a step list in order, checking for pause/cancel before each step."""
        for step in steps:
            self._check_interrupted(context)
            await self._execute_step(step, context)

    def _check_interrupted(self, context: ExecutionContext) -> None:
        status = context.status()
        if status == ExecutionStatusEnum.PAUSED:
            raise ExecutionPausedError(context.execution_id)
        if status == ExecutionStatusEnum.CANCELLED:
            raise ExecutionCancelledError(context.execution_id)

    async def _execute_step(self, step, context: ExecutionContext) -> Any:
        executor = STEP_EXECUTORS[step.type]
        run = StepRun()

        context.set_current_step(step.id)
        index = context.append_record(StepExecutionRecord(
            step_id=step.id,
            step_type=step.type,
            status=StepStatusEnum.RUNNING,
            start_time=utcnow(),
        ))

        with logging_context(step_id=step.id):
            logger.debug(f"Starting {step.type} step {step.id}")
            try:
                output = await executor.execute(step, context, run, self)
            except Exception as e:
                error = self._as_step_error(e, step, context)
                context.update_record(
                    index,
                    status=StepStatusEnum.FAILED,
                    end_time=utcnow(),
                    input=run.input,
                    error=error.message,
                    retry_count=run.retry_count,
                )
                if isinstance(e, ExecutionInterruptedError):
                    raise
                logger.warning(f"Step {step.id} failed: {error.message}")
                if error is e:
                    raise
                raise error from e
            except asyncio.CancelledError:
                context.update_record(
                    index,
                    status=StepStatusEnum.FAILED,
                    end_time=utcnow(),
                    input=run.input,
                    error=f"Step {step.id} was cancelled",
                    retry_count=run.retry_count,
                )
                raise

            context.update_record(
                index,
                status=StepStatusEnum.COMPLETED,
                end_time=utcnow(),
                input=run.input,
                output=output,
                retry_count=run.retry_count,
            )
            output_name = getattr(step, "output", None)
            if output_name:
                context.set_variable(output_name, output)

            logger.debug(f"Completed {step.type} step {step.id}")
            return output

    @staticmethod
    def _as_step_error(error: Exception, step, context: ExecutionContext) -> WorkflowEngineError:
        if isinstance(error, WorkflowEngineError):
            if "execution_id" not in error.context:
                error.add_context(execution_id=context.execution_id)
            if "step_id" not in error.context:
                error.add_context(step_id=step.id)
            return error
        return StepExecutionError(
            f"Step {step.id} failed: {error}",
            step_id=step.id,
            execution_id=context.execution_id,
            details={"cause": type(error).__name__}
        )

    def _archive(self, execution: WorkflowExecution) -> None:
        if self.repository is None:
            return
        try:
            self.repository.save_execution(execution)
        except StorageError as e:
            logger.error(f"Failed to archive execution {execution.id}: {e.message}")
        except Exception as e:
            logger.error(f"Failed to archive execution {execution.id}: {e}", exc_info=True)
