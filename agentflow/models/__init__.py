"""Data models for the workflow engine."""

from .core import (
    ExecutionStatusEnum,
    StepStatusEnum,
    StepType,
    LiteralInput,
    VariableInput,
    ExpressionInput,
    StepInput,
    RetryPolicy,
    AgentStep,
    ToolStep,
    ConditionalStep,
    ParallelStep,
    LoopStep,
    HumanInTheLoopStep,
    RAGStep,
    TransformStep,
    WorkflowStep,
    WorkflowTrigger,
    Workflow,
    StepExecutionRecord,
    WorkflowExecution,
    ValidationResult,
)

__all__ = [
    "ExecutionStatusEnum",
    "StepStatusEnum",
    "StepType",
    "LiteralInput",
    "VariableInput",
    "ExpressionInput",
    "StepInput",
    "RetryPolicy",
    "AgentStep",
    "ToolStep",
    "ConditionalStep",
    "ParallelStep",
    "LoopStep",
    "HumanInTheLoopStep",
    "RAGStep",
    "TransformStep",
    "WorkflowStep",
    "WorkflowTrigger",
    "Workflow",
    "StepExecutionRecord",
    "WorkflowExecution",
    "ValidationResult",
]
