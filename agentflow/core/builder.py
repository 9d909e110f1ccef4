"""Fluent builder for workflow definitions."""

import itertools
from typing import Any, Callable, Dict, List, Optional

from ..models.core import (
    AgentStep,
    ConditionalStep,
    ExpressionInput,
    HumanInTheLoopStep,
    LiteralInput,
    LoopStep,
    ParallelStep,
    RAGStep,
    RetryPolicy,
    ToolStep,
    TransformStep,
    VariableInput,
    Workflow,
    WorkflowTrigger,
)

DEFAULT_HUMAN_TIMEOUT_MS = 5 * 60 * 1000


class WorkflowBuilder:
    """
    Build a ``Workflow`` step by step.

    Steps get ids ``step-1``, ``step-2``, ... in the order they are added.
    Nested builders for branches and loop bodies share the counter, so ids are
    unique across the whole tree. Pass ``step_id`` to choose an id explicitly.

    Example:
        workflow = (
            WorkflowBuilder("support")
            .agent("triage", input=WorkflowBuilder.variable("ticket"), output="triage")
            .condition("${urgent}", lambda b: b.tool("page", WorkflowBuilder.variable("triage")))
            .build()
        )
    """

    def __init__(self, workflow_id: str, version: str = "1.0.0", _counter=None):
        self.workflow_id = workflow_id
        self.workflow_version = version
        self.workflow_name: Optional[str] = None
        self.timeout: Optional[int] = None
        self.metadata: Optional[Dict[str, Any]] = None
        self.triggers: Optional[List[WorkflowTrigger]] = None
        self.steps: List[Any] = []
        self._counter = _counter or itertools.count(1)

    def name(self, name: str) -> "WorkflowBuilder":
        self.workflow_name = name
        return self

    def with_timeout(self, milliseconds: int) -> "WorkflowBuilder":
        self.timeout = milliseconds
        return self

    def with_metadata(self, metadata: Dict[str, Any]) -> "WorkflowBuilder":
        self.metadata = metadata
        return self

    def with_triggers(self, *triggers: WorkflowTrigger) -> "WorkflowBuilder":
        self.triggers = list(triggers)
        return self

    def agent(self, agent_id: str, input, output: Optional[str] = None,
              retry: Optional[RetryPolicy] = None, timeout: Optional[int] = None,
              step_id: Optional[str] = None) -> "WorkflowBuilder":
        self.steps.append(AgentStep(
            id=step_id or self._next_step_id(),
            agent_id=agent_id,
            input=input,
            output=output,
            retry=retry,
            timeout=timeout,
        ))
        return self

    def tool(self, tool_name: str, input, output: Optional[str] = None,
             retry: Optional[RetryPolicy] = None, timeout: Optional[int] = None,
             step_id: Optional[str] = None) -> "WorkflowBuilder":
        self.steps.append(ToolStep(
            id=step_id or self._next_step_id(),
            tool_name=tool_name,
            input=input,
            output=output,
            retry=retry,
            timeout=timeout,
        ))
        return self

    def condition(self, expression: str,
                  then_builder: Callable[["WorkflowBuilder"], Any],
                  else_builder: Optional[Callable[["WorkflowBuilder"], Any]] = None,
                  step_id: Optional[str] = None) -> "WorkflowBuilder":
        step_id = step_id or self._next_step_id()
        then_steps = self._nested(then_builder)
        else_steps = self._nested(else_builder) if else_builder else None

        self.steps.append(ConditionalStep(
            id=step_id,
            condition=expression,
            then=then_steps,
            else_=else_steps,
        ))
        return self

    def parallel(self, *branch_builders: Callable[["WorkflowBuilder"], Any],
                 step_id: Optional[str] = None) -> "WorkflowBuilder":
        step_id = step_id or self._next_step_id()
        branches = [self._nested(branch_builder) for branch_builder in branch_builders]

        self.steps.append(ParallelStep(
            id=step_id,
            branches=branches,
            wait_for_all=True,
        ))
        return self

    def loop(self, collection, item_variable: str,
             loop_builder: Callable[["WorkflowBuilder"], Any],
             max_iterations: Optional[int] = None,
             step_id: Optional[str] = None) -> "WorkflowBuilder":
        step_id = step_id or self._next_step_id()
        body = self._nested(loop_builder)

        self.steps.append(LoopStep(
            id=step_id,
            collection=collection,
            item_variable=item_variable,
            max_iterations=max_iterations,
            steps=body,
        ))
        return self

    def human_approval(self, prompt: str, options: Optional[List[str]] = None,
                       timeout: Optional[int] = DEFAULT_HUMAN_TIMEOUT_MS,
                       assignee: Optional[str] = None, output: Optional[str] = None,
                       step_id: Optional[str] = None) -> "WorkflowBuilder":
        self.steps.append(HumanInTheLoopStep(
            id=step_id or self._next_step_id(),
            prompt=prompt,
            options=options,
            timeout=timeout,
            assignee=assignee,
            output=output,
        ))
        return self

    def rag(self, pipeline: str, query, top_k: Optional[int] = None,
            output: Optional[str] = None, step_id: Optional[str] = None) -> "WorkflowBuilder":
        self.steps.append(RAGStep(
            id=step_id or self._next_step_id(),
            pipeline=pipeline,
            query=query,
            top_k=top_k,
            output=output,
        ))
        return self

    def transform(self, input, expression: str, output: Optional[str] = None,
                  step_id: Optional[str] = None) -> "WorkflowBuilder":
        self.steps.append(TransformStep(
            id=step_id or self._next_step_id(),
            input=input,
            expression=expression,
            output=output,
        ))
        return self

    @staticmethod
    def literal(value: Any) -> LiteralInput:
        return LiteralInput(value=value)

    @staticmethod
    def variable(name: str) -> VariableInput:
        return VariableInput(name=name)

    @staticmethod
    def expression(expression: str) -> ExpressionInput:
        return ExpressionInput(expression=expression)

    @staticmethod
    def retry(max_retries: int, initial_delay: int = 1000, max_delay: int = 30000,
              backoff_multiplier: float = 2.0,
              retryable_errors: Optional[List[str]] = None) -> RetryPolicy:
        return RetryPolicy(
            max_retries=max_retries,
            initial_delay=initial_delay,
            max_delay=max_delay,
            backoff_multiplier=backoff_multiplier,
            retryable_errors=retryable_errors,
        )

    def build(self) -> Workflow:
        """Build the workflow. The result is validated by the model but not
        checked with ``validate_structure``."""
        return Workflow(
            id=self.workflow_id,
            name=self.workflow_name or self.workflow_id,
            version=self.workflow_version,
            steps=list(self.steps),
            triggers=self.triggers,
            timeout=self.timeout,
            metadata=self.metadata,
        )

    def _nested(self, build: Callable[["WorkflowBuilder"], Any]) -> List[Any]:
        nested = WorkflowBuilder(self.workflow_id, self.workflow_version, _counter=self._counter)
        build(nested)
        return nested.steps

    def _next_step_id(self) -> str:
        return f"step-{next(self._counter)}"
