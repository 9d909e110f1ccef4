"""Step executors, one per step kind, and the contexts they run against."""

import asyncio
import copy
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..models.core import (
    AgentStep,
    ConditionalStep,
    ExecutionStatusEnum,
    HumanInTheLoopStep,
    LoopStep,
    ParallelStep,
    RAGStep,
    StepExecutionRecord,
    StepType,
    ToolStep,
    TransformStep,
    STEP_MODELS,
)
from .collaborators import maybe_await
from .error_recovery import RetryConfig, RetryingCall
from .exceptions import (
    CollaboratorNotConfiguredError,
    ExpressionEvaluationError,
    InvalidLoopCollectionError,
    InvalidQueryError,
    PipelineNotFoundError,
    StepTimeoutError,
    ToolNotFoundError,
    WorkflowEngineError,
)
from .logging import get_logger, logging_context
from .state_manager import ExecutionStateStore

if TYPE_CHECKING:
    from .execution_engine import WorkflowEngine

logger = get_logger(__name__)


class ExecutionContext:
    """
    The state a step list runs against.

    The top-level context writes through to the state store, so every
    variable write and history entry lands on the shared execution. Parallel
    branches get a ``BranchContext`` instead.
    """

    def __init__(self, store: ExecutionStateStore, execution_id: str, workflow_id: str):
        self.store = store
        self.execution_id = execution_id
        self.workflow_id = workflow_id

    def status(self) -> ExecutionStatusEnum:
        return self.store.get_status(self.execution_id)

    def variables(self) -> Dict[str, Any]:
        return self.store.get_variables(self.execution_id)

    def set_variable(self, name: str, value: Any) -> None:
        self.store.set_variable(self.execution_id, name, value)

    def set_current_step(self, step_id: Optional[str]) -> None:
        self.store.set_current_step(self.execution_id, step_id)

    def append_record(self, record: StepExecutionRecord) -> int:
        return self.store.append_step_record(self.execution_id, record)

    def update_record(self, index: int, **changes: Any) -> None:
        self.store.update_step_record(self.execution_id, index, **changes)

    def branch(self) -> "BranchContext":
        """Fork an isolated context seeded with a copy of the current variables."""
        return BranchContext(self.store, self.execution_id, self.workflow_id, self.variables())


class BranchContext(ExecutionContext):
    """
    Isolated context for one parallel branch.

    Variables and step history are private to the branch. Status is still
    read from the parent execution so a pause or cancel stops the branch at
    its next step boundary.
    """

    def __init__(self, store: ExecutionStateStore, execution_id: str, workflow_id: str, variables: Dict[str, Any]):
        super().__init__(store, execution_id, workflow_id)
        self._variables = variables
        self.step_history: List[StepExecutionRecord] = []
        self.current_step: Optional[str] = None

    def variables(self) -> Dict[str, Any]:
        return copy.deepcopy(self._variables)

    def set_variable(self, name: str, value: Any) -> None:
        self._variables[name] = copy.deepcopy(value)

    def set_current_step(self, step_id: Optional[str]) -> None:
        self.current_step = step_id

    def append_record(self, record: StepExecutionRecord) -> int:
        self.step_history.append(record.model_copy(deep=True))
        return len(self.step_history) - 1

    def update_record(self, index: int, **changes: Any) -> None:
        self.step_history[index] = self.step_history[index].model_copy(update=copy.deepcopy(changes))

    def branch(self) -> "BranchContext":
        return BranchContext(self.store, self.execution_id, self.workflow_id, self.variables())


class StepRun:
    """What an executor reports about a step besides its output."""

    def __init__(self):
        self.input: Any = None
        self.retry_count: Optional[int] = None


class StepExecutor:
    """Base class for step executors."""

    step_type: StepType

    async def execute(self, step, context: ExecutionContext, run: StepRun, engine: "WorkflowEngine") -> Any:
        raise NotImplementedError

    @staticmethod
    async def call_collaborator(step, call, engine: "WorkflowEngine", run: StepRun,
                                timeout: Optional[int] = None, retry=None) -> Any:
        """
        Invoke a collaborator with the step's timeout and retry policy.

        Args:
            step: Step being executed
            call: Zero-argument callable starting the collaborator call
            engine: Owning engine
            run: Receives the retry count
            timeout: Timeout in milliseconds, or None
            retry: RetryPolicy, or None for a single attempt

        Raises:
            StepTimeoutError: If an attempt exceeds ``timeout``
        """
        async def attempt():
            if timeout is None:
                return await maybe_await(call())
            try:
                return await asyncio.wait_for(maybe_await(call()), timeout / 1000.0)
            except asyncio.TimeoutError as e:
                raise StepTimeoutError(timeout, step_id=step.id) from e

        if retry is None:
            return await attempt()

        retrying = RetryingCall(RetryConfig.from_policy(retry), f"step {step.id}")
        try:
            return await retrying.run(attempt)
        finally:
            run.retry_count = retrying.retries_used

    @staticmethod
    def evaluate(engine: "WorkflowEngine", step, expression: str, variables: Dict[str, Any]) -> Any:
        """Run the engine's evaluator, reporting its failures as ExpressionEvaluationError."""
        try:
            return engine.evaluator(expression, variables)
        except WorkflowEngineError:
            raise
        except Exception as e:
            raise ExpressionEvaluationError(
                f"Cannot evaluate expression of step {step.id}: {e}",
                expression=expression,
                context={"step_id": step.id}
            ) from e


class AgentStepExecutor(StepExecutor):
    step_type = StepType.AGENT

    async def execute(self, step: AgentStep, context, run, engine):
        agent = engine.agent_capability
        if agent is None:
            raise CollaboratorNotConfiguredError("Agent capability", step_id=step.id)

        run.input = engine.resolver.resolve(step.input, context.variables())
        return await self.call_collaborator(
            step, lambda: agent.execute(step.agent_id, run.input), engine, run,
            timeout=step.timeout, retry=step.retry
        )


class ToolStepExecutor(StepExecutor):
    step_type = StepType.TOOL

    async def execute(self, step: ToolStep, context, run, engine):
        registry = engine.tool_capability
        if registry is None:
            raise CollaboratorNotConfiguredError("Tool capability", step_id=step.id)

        run.input = engine.resolver.resolve(step.input, context.variables())
        tool = await maybe_await(registry.get(step.tool_name))
        if tool is None:
            raise ToolNotFoundError(step.tool_name, step_id=step.id)

        return await self.call_collaborator(
            step, lambda: tool.execute(run.input), engine, run,
            timeout=step.timeout, retry=step.retry
        )


class ConditionalStepExecutor(StepExecutor):
    step_type = StepType.CONDITIONAL

    async def execute(self, step: ConditionalStep, context, run, engine):
        condition = self.evaluate(engine, step, step.condition, context.variables())
        run.input = condition

        if condition:
            logger.debug(f"Condition of step {step.id} is truthy, running then branch")
            await engine.run_steps(step.then, context)
        elif step.else_:
            logger.debug(f"Condition of step {step.id} is falsy, running else branch")
            await engine.run_steps(step.else_, context)
        return None


class ParallelStepExecutor(StepExecutor):
    """Each branch runs against a private copy of the variables; the output
    lists each branch's final variables in declaration order."""

    step_type = StepType.PARALLEL

    async def execute(self, step: ParallelStep, context, run, engine):
        branches = [context.branch() for _ in step.branches]

        async def run_branch(index: int, branch_context: BranchContext):
            with logging_context(branch=index):
                await engine.run_steps(step.branches[index], branch_context)
            return branch_context.variables()

        results = await asyncio.gather(
            *(run_branch(index, branch_context) for index, branch_context in enumerate(branches)),
            return_exceptions=True
        )

        for result in results:
            if isinstance(result, BaseException):
                raise result
        return list(results)


class LoopStepExecutor(StepExecutor):
    step_type = StepType.LOOP

    async def execute(self, step: LoopStep, context, run, engine):
        collection = engine.resolver.resolve(step.collection, context.variables())
        if not isinstance(collection, (list, tuple)):
            raise InvalidLoopCollectionError(type(collection).__name__, step_id=step.id)

        limit = step.max_iterations if step.max_iterations is not None else len(collection)
        iterations = min(len(collection), limit)
        run.input = {"iterations": iterations}

        for index in range(iterations):
            context.set_variable(step.item_variable, collection[index])
            await engine.run_steps(step.steps, context)
        return None


class HumanInTheLoopStepExecutor(StepExecutor):
    step_type = StepType.HUMAN_IN_THE_LOOP

    async def execute(self, step: HumanInTheLoopStep, context, run, engine):
        handler = engine.human_handler
        if handler is None:
            raise CollaboratorNotConfiguredError("Human checkpoint handler", step_id=step.id)

        run.input = {"prompt": step.prompt, "options": step.options}
        return await self.call_collaborator(
            step, lambda: handler(step.prompt, step.options), engine, run, timeout=step.timeout
        )


class RAGStepExecutor(StepExecutor):
    step_type = StepType.RAG

    async def execute(self, step: RAGStep, context, run, engine):
        pipeline = engine.rag_pipelines.get(step.pipeline)
        if pipeline is None:
            raise PipelineNotFoundError(step.pipeline, step_id=step.id)

        query = engine.resolver.resolve(step.query, context.variables())
        if not isinstance(query, str):
            raise InvalidQueryError(type(query).__name__, step_id=step.id)

        run.input = query
        return await maybe_await(pipeline.query(query, limit=step.top_k))


class TransformStepExecutor(StepExecutor):
    step_type = StepType.TRANSFORM

    async def execute(self, step: TransformStep, context, run, engine):
        variables = context.variables()
        run.input = engine.resolver.resolve(step.input, variables)
        return self.evaluate(engine, step, step.expression, {**variables, "$input": run.input})


STEP_EXECUTORS: Dict[str, StepExecutor] = {
    executor.step_type.value: executor
    for executor in (
        AgentStepExecutor(),
        ToolStepExecutor(),
        ConditionalStepExecutor(),
        ParallelStepExecutor(),
        LoopStepExecutor(),
        HumanInTheLoopStepExecutor(),
        RAGStepExecutor(),
        TransformStepExecutor(),
    )
}

_model_types = {model.model_fields["type"].default for model in STEP_MODELS}
if _model_types != set(STEP_EXECUTORS) or set(STEP_EXECUTORS) != {kind.value for kind in StepType}:
    raise RuntimeError(
        f"Step executors {sorted(STEP_EXECUTORS)} do not cover step models {sorted(_model_types)}"
    )
