"""Core workflow engine components."""

from .exceptions import (
    WorkflowEngineError,
    ExecutionNotFoundError,
    InvalidStateTransitionError,
    StepExecutionError,
    ToolNotFoundError,
    PipelineNotFoundError,
    CollaboratorNotConfiguredError,
    InvalidLoopCollectionError,
    InvalidQueryError,
    StepTimeoutError,
    ExecutionInterruptedError,
    ExecutionPausedError,
    ExecutionCancelledError,
    UnresolvedVariableError,
    ExpressionEvaluationError,
    WorkflowValidationError,
    ToolRegistryError,
    StorageError,
    ConfigurationError,
    APIError,
)
from .logging import setup_logging, get_logger
from .result import Success, Failure, Result
from .expressions import evaluate_expression
from .resolver import InputResolver
from .collaborators import ToolRegistry, FunctionTool
from .state_manager import ExecutionStateStore
from .execution_engine import WorkflowEngine
from .builder import WorkflowBuilder

__all__ = [
    "WorkflowEngineError",
    "ExecutionNotFoundError",
    "InvalidStateTransitionError",
    "StepExecutionError",
    "ToolNotFoundError",
    "PipelineNotFoundError",
    "CollaboratorNotConfiguredError",
    "InvalidLoopCollectionError",
    "InvalidQueryError",
    "StepTimeoutError",
    "ExecutionInterruptedError",
    "ExecutionPausedError",
    "ExecutionCancelledError",
    "UnresolvedVariableError",
    "ExpressionEvaluationError",
    "WorkflowValidationError",
    "ToolRegistryError",
    "StorageError",
    "ConfigurationError",
    "APIError",
    "setup_logging",
    "get_logger",
    "Success",
    "Failure",
    "Result",
    "evaluate_expression",
    "InputResolver",
    "ToolRegistry",
    "FunctionTool",
    "ExecutionStateStore",
    "WorkflowEngine",
    "WorkflowBuilder",
]
