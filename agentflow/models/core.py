"""Core Pydantic models for the workflow engine."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialising with camelCase aliases and accepting either spelling."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """Dump the model the way it travels over a network boundary."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ExecutionStatusEnum(str, Enum):
    """Enumeration of workflow execution statuses."""
    RUNNING = "running"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in (ExecutionStatusEnum.RUNNING, ExecutionStatusEnum.PAUSED)


TERMINAL_STATUSES = frozenset({
    ExecutionStatusEnum.COMPLETED,
    ExecutionStatusEnum.CANCELLED,
    ExecutionStatusEnum.FAILED,
})


class StepStatusEnum(str, Enum):
    """Enumeration of step execution statuses."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class StepType(str, Enum):
    """Discriminator values for workflow steps."""
    AGENT = "agent"
    TOOL = "tool"
    CONDITIONAL = "conditional"
    PARALLEL = "parallel"
    LOOP = "loop"
    HUMAN_IN_THE_LOOP = "human_in_the_loop"
    RAG = "rag"
    TRANSFORM = "transform"


class ValidationResult(BaseModel):
    """Result of workflow validation."""
    is_valid: bool = Field(..., description="Whether the workflow is valid")
    errors: List[str] = Field(default_factory=list, description="List of validation errors")
    warnings: List[str] = Field(default_factory=list, description="List of validation warnings")


# Step inputs

class LiteralInput(CamelModel):
    """Input embedded directly in the step definition."""
    type: Literal["literal"] = "literal"
    value: Any = None


class VariableInput(CamelModel):
    """Input read from the execution's variable bindings."""
    type: Literal["variable"] = "variable"
    name: str = Field(..., description="Name of the variable to read")

    @field_validator('name')
    @classmethod
    def validate_name(cls, name):
        if not name or not name.strip():
            raise ValueError("Variable name cannot be empty")
        return name.strip()


class ExpressionInput(CamelModel):
    """Input computed by the expression evaluator."""
    type: Literal["expression"] = "expression"
    expression: str = Field(..., description="Expression evaluated against the variables")


StepInput = Annotated[
    Union[LiteralInput, VariableInput, ExpressionInput],
    Field(discriminator="type"),
]


class RetryPolicy(CamelModel):
    """Retry policy for agent and tool steps."""
    max_retries: int = Field(..., ge=0, description="Maximum number of retries")
    initial_delay: int = Field(1000, ge=0, description="Initial delay in milliseconds")
    max_delay: int = Field(30000, ge=0, description="Maximum delay in milliseconds")
    backoff_multiplier: float = Field(2.0, ge=1.0, description="Backoff multiplier")
    retryable_errors: Optional[List[str]] = Field(
        None, description="Exception class names that may be retried; all errors when omitted"
    )


# Steps

class BaseStep(CamelModel):
    """Fields shared by every step kind."""
    id: str = Field(..., description="Unique identifier for the step")

    @field_validator('id')
    @classmethod
    def validate_id(cls, id_value):
        """Ensure step ID is not blank."""
        if not id_value or not id_value.strip():
            raise ValueError("Step ID cannot be empty")
        return id_value.strip()


class AgentStep(BaseStep):
    """Delegates to the agent collaborator."""
    type: Literal["agent"] = "agent"
    agent_id: Optional[str] = Field(None, description="Agent the collaborator should run")
    input: StepInput
    output: Optional[str] = None
    retry: Optional[RetryPolicy] = None
    timeout: Optional[int] = Field(None, gt=0, description="Timeout in milliseconds")


class ToolStep(BaseStep):
    """Invokes a named tool from the tool catalog."""
    type: Literal["tool"] = "tool"
    tool_name: str
    input: StepInput
    output: Optional[str] = None
    retry: Optional[RetryPolicy] = None
    timeout: Optional[int] = Field(None, gt=0, description="Timeout in milliseconds")

    @field_validator('tool_name')
    @classmethod
    def validate_tool_name(cls, tool_name):
        if not tool_name or not tool_name.strip():
            raise ValueError("Tool name cannot be empty")
        return tool_name.strip()


class ConditionalStep(BaseStep):
    """Runs `then` or `else` depending on a condition expression."""
    type: Literal["conditional"] = "conditional"
    condition: str
    then: List["WorkflowStep"] = Field(default_factory=list)
    else_: Optional[List["WorkflowStep"]] = Field(None, alias="else")


class ParallelStep(BaseStep):
    """Runs independent branches concurrently against isolated state."""
    type: Literal["parallel"] = "parallel"
    branches: List[List["WorkflowStep"]] = Field(default_factory=list)
    wait_for_all: bool = True


class LoopStep(BaseStep):
    """Runs `steps` once per element of a collection."""
    type: Literal["loop"] = "loop"
    collection: StepInput
    item_variable: str
    max_iterations: Optional[int] = Field(None, ge=0)
    steps: List["WorkflowStep"] = Field(default_factory=list)

    @field_validator('item_variable')
    @classmethod
    def validate_item_variable(cls, item_variable):
        if not item_variable or not item_variable.strip():
            raise ValueError("Loop item variable cannot be empty")
        return item_variable.strip()


class HumanInTheLoopStep(BaseStep):
    """Suspends until the human-checkpoint handler answers."""
    type: Literal["human_in_the_loop"] = "human_in_the_loop"
    prompt: str
    options: Optional[List[str]] = None
    timeout: Optional[int] = Field(None, gt=0, description="Timeout in milliseconds")
    assignee: Optional[str] = None
    output: Optional[str] = None


class RAGStep(BaseStep):
    """Queries a named retrieval pipeline."""
    type: Literal["rag"] = "rag"
    pipeline: str
    query: StepInput
    top_k: Optional[int] = Field(None, gt=0)
    output: Optional[str] = None

    @field_validator('pipeline')
    @classmethod
    def validate_pipeline(cls, pipeline):
        if not pipeline or not pipeline.strip():
            raise ValueError("Pipeline name cannot be empty")
        return pipeline.strip()


class TransformStep(BaseStep):
    """Evaluates an expression over the variables plus `$input`."""
    type: Literal["transform"] = "transform"
    input: StepInput
    expression: str
    output: Optional[str] = None


WorkflowStep = Annotated[
    Union[
        AgentStep,
        ToolStep,
        ConditionalStep,
        ParallelStep,
        LoopStep,
        HumanInTheLoopStep,
        RAGStep,
        TransformStep,
    ],
    Field(discriminator="type"),
]

STEP_MODELS = (
    AgentStep,
    ToolStep,
    ConditionalStep,
    ParallelStep,
    LoopStep,
    HumanInTheLoopStep,
    RAGStep,
    TransformStep,
)

for _model in (ConditionalStep, ParallelStep, LoopStep):
    _model.model_rebuild()


def iter_steps(steps: List[Any]):
    """Yield every step in a step list, depth first, including nested ones."""
    for step in steps:
        yield step
        if isinstance(step, ConditionalStep):
            yield from iter_steps(step.then)
            yield from iter_steps(step.else_ or [])
        elif isinstance(step, ParallelStep):
            for branch in step.branches:
                yield from iter_steps(branch)
        elif isinstance(step, LoopStep):
            yield from iter_steps(step.steps)


class WorkflowTrigger(CamelModel):
    """Trigger configuration for a workflow."""
    type: Literal["manual", "scheduled", "event", "webhook"]
    config: Optional[Dict[str, Any]] = None


class Workflow(CamelModel):
    """Immutable workflow definition."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique identifier for the workflow")
    name: Optional[str] = Field(None, description="Human-readable name, defaults to the ID")
    version: str = Field("1.0.0", description="Semantic version")
    steps: List[WorkflowStep] = Field(default_factory=list)
    triggers: Optional[List[WorkflowTrigger]] = None
    timeout: Optional[int] = Field(None, gt=0, description="Advisory overall timeout in milliseconds")
    metadata: Optional[Dict[str, Any]] = None

    @field_validator('id')
    @classmethod
    def validate_id(cls, id_value):
        if not id_value or not id_value.strip():
            raise ValueError("Workflow ID cannot be empty")
        return id_value.strip()

    @model_validator(mode='before')
    @classmethod
    def default_name(cls, data):
        """Fall back to the ID when no name is given."""
        if isinstance(data, dict) and not data.get("name") and data.get("id"):
            data = {**data, "name": data["id"]}
        return data

    def validate_structure(self) -> ValidationResult:
        """Perform structural checks the field validators cannot express."""
        errors = []
        warnings = []

        seen = set()
        for step in iter_steps(self.steps):
            if step.id in seen:
                errors.append(f"Duplicate step ID: {step.id}")
            seen.add(step.id)

            if isinstance(step, ConditionalStep) and not step.then:
                warnings.append(f"Conditional step '{step.id}' has an empty then branch")
            elif isinstance(step, ParallelStep):
                if not step.branches:
                    warnings.append(f"Parallel step '{step.id}' has no branches")
                elif any(not branch for branch in step.branches):
                    warnings.append(f"Parallel step '{step.id}' has an empty branch")
            elif isinstance(step, LoopStep) and not step.steps:
                warnings.append(f"Loop step '{step.id}' has an empty body")

        return ValidationResult(
            is_valid=len(errors) == 0,
            errors=errors,
            warnings=warnings
        )


class StepExecutionRecord(CamelModel):
    """Append-only audit entry for one step run."""
    step_id: str
    step_type: StepType
    status: StepStatusEnum = StepStatusEnum.RUNNING
    start_time: datetime
    end_time: Optional[datetime] = None
    input: Any = None
    output: Any = None
    error: Optional[str] = None
    retry_count: Optional[int] = None


class WorkflowExecution(CamelModel):
    """Mutable run record of one workflow execution."""
    id: str
    workflow_id: str
    status: ExecutionStatusEnum
    variables: Dict[str, Any] = Field(default_factory=dict)
    current_step: Optional[str] = None
    step_history: List[StepExecutionRecord] = Field(default_factory=list)
    start_time: datetime
    end_time: Optional[datetime] = None
    error: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        """Serialise as {id, workflowId, status, variables, currentStep, stepHistory, startTime, endTime?, error?}."""
        data = self.model_dump(mode="json", by_alias=True)
        data["currentStep"] = data.get("currentStep") or ""
        for key in ("endTime", "error"):
            if data.get(key) is None:
                data.pop(key, None)
        return data
