"""Custom exceptions for the workflow engine with detailed error information."""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for categorizing exceptions."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors for better classification."""
    VALIDATION = "validation"
    EXECUTION = "execution"
    STATE = "state"
    STORAGE = "storage"
    NETWORK = "network"
    CONFIGURATION = "configuration"
    NOT_FOUND = "not_found"


class WorkflowEngineError(Exception):
    """Base exception for all workflow engine errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.EXECUTION,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.severity = severity
        self.category = category
        self.details = details or {}
        self.recoverable = recoverable
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "details": self.details,
            "recoverable": self.recoverable,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__
        }

    def add_context(self, **kwargs):
        """Add additional context to the exception."""
        self.context.update(kwargs)
        return self

    def add_details(self, **kwargs):
        """Add additional details to the exception."""
        self.details.update(kwargs)
        return self


class ExecutionNotFoundError(WorkflowEngineError):
    """Raised when an execution id is unknown to the state store."""

    def __init__(self, execution_id: str, **kwargs):
        super().__init__(
            f"Execution {execution_id} not found",
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.NOT_FOUND,
            **kwargs
        )
        self.execution_id = execution_id
        self.add_context(execution_id=execution_id)


class InvalidStateTransitionError(WorkflowEngineError):
    """Raised when a control operation conflicts with the execution's status."""

    def __init__(
        self,
        message: str,
        execution_id: Optional[str] = None,
        current_status: Optional[str] = None,
        requested_status: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.STATE,
            **kwargs
        )
        self.current_status = current_status
        self.requested_status = requested_status
        if execution_id:
            self.add_context(execution_id=execution_id)
        if current_status:
            self.add_details(current_status=current_status)
        if requested_status:
            self.add_details(requested_status=requested_status)


class StepExecutionError(WorkflowEngineError):
    """Raised when a step fails during dispatch."""

    def __init__(
        self,
        message: str,
        step_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.EXECUTION)
        super().__init__(message, **kwargs)
        self.step_id = step_id
        if step_id:
            self.add_context(step_id=step_id)
        if execution_id:
            self.add_context(execution_id=execution_id)


class ToolNotFoundError(StepExecutionError):
    """Raised when a tool step names a tool the catalog does not have."""

    def __init__(self, tool_name: str, **kwargs):
        super().__init__(
            f"Tool not found: {tool_name}",
            category=ErrorCategory.NOT_FOUND,
            **kwargs
        )
        self.tool_name = tool_name
        self.add_context(tool_name=tool_name)


class PipelineNotFoundError(StepExecutionError):
    """Raised when a rag step names an unknown retrieval pipeline."""

    def __init__(self, pipeline: str, **kwargs):
        super().__init__(
            f"RAG pipeline not found: {pipeline}",
            category=ErrorCategory.NOT_FOUND,
            **kwargs
        )
        self.pipeline = pipeline
        self.add_context(pipeline=pipeline)


class CollaboratorNotConfiguredError(StepExecutionError):
    """Raised when a step kind is dispatched but its collaborator was never supplied."""

    def __init__(self, collaborator: str, **kwargs):
        super().__init__(
            f"{collaborator} is not configured",
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        self.add_context(collaborator=collaborator)


class InvalidLoopCollectionError(StepExecutionError):
    """Raised when a loop collection does not resolve to a sequence."""

    def __init__(self, actual_type: str, **kwargs):
        super().__init__(
            f"Loop collection must be an array, got {actual_type}",
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        self.add_details(actual_type=actual_type)


class InvalidQueryError(StepExecutionError):
    """Raised when a rag query does not resolve to text."""

    def __init__(self, actual_type: str, **kwargs):
        super().__init__(
            f"RAG query must be a string, got {actual_type}",
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        self.add_details(actual_type=actual_type)


class StepTimeoutError(StepExecutionError):
    """Raised when a collaborator call exceeds the step's timeout."""

    def __init__(self, timeout_ms: int, **kwargs):
        super().__init__(
            f"Step timed out after {timeout_ms}ms",
            recoverable=True,
            **kwargs
        )
        self.timeout_ms = timeout_ms
        self.add_details(timeout_ms=timeout_ms)


class ExecutionInterruptedError(WorkflowEngineError):
    """Raised at a step boundary when the execution is no longer running."""

    status = None

    def __init__(self, execution_id: str, **kwargs):
        super().__init__(
            f"Execution {execution_id} was {self.status}",
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.STATE,
            **kwargs
        )
        self.execution_id = execution_id
        self.add_context(execution_id=execution_id)


class ExecutionPausedError(ExecutionInterruptedError):
    """The execution was paused before the next step could start."""
    status = "paused"


class ExecutionCancelledError(ExecutionInterruptedError):
    """The execution was cancelled before the next step could start."""
    status = "cancelled"


class UnresolvedVariableError(WorkflowEngineError):
    """Raised in strict mode when a variable input names an unbound variable."""

    def __init__(self, name: str, **kwargs):
        super().__init__(
            f"Variable not found: {name}",
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        self.name = name
        self.add_context(variable=name)


class ExpressionEvaluationError(WorkflowEngineError):
    """Raised when an expression evaluator cannot produce a value."""

    def __init__(self, message: str, expression: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.EXECUTION,
            **kwargs
        )
        if expression is not None:
            self.add_context(expression=expression)


class WorkflowValidationError(WorkflowEngineError):
    """Raised when a workflow definition fails validation."""

    def __init__(
        self,
        message: str,
        validation_errors: Optional[List[str]] = None,
        workflow_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        self.validation_errors = validation_errors or []
        if workflow_id:
            self.add_context(workflow_id=workflow_id)
        if validation_errors:
            self.add_details(validation_errors=validation_errors)


class ToolRegistryError(WorkflowEngineError):
    """Raised when tool registry operations fail."""

    def __init__(
        self,
        message: str,
        tool_name: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if tool_name:
            self.add_context(tool_name=tool_name)
        if operation:
            self.add_context(operation=operation)


class StorageError(WorkflowEngineError):
    """Raised when storage operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.STORAGE,
            recoverable=True,
            **kwargs
        )
        if operation:
            self.add_context(operation=operation)
        if table:
            self.add_context(table=table)


class ConfigurationError(WorkflowEngineError):
    """Raised when configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if config_key:
            self.add_context(config_key=config_key)


class APIError(WorkflowEngineError):
    """Raised when API operations fail."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        endpoint: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.NETWORK,
            **kwargs
        )
        self.status_code = status_code
        if endpoint:
            self.add_context(endpoint=endpoint)
        self.add_details(status_code=status_code)


def create_error_response(error: WorkflowEngineError) -> Dict[str, Any]:
    """Create a standardized error response from a WorkflowEngineError."""
    return {
        "error": error.error_code,
        "message": error.message,
        "details": {
            **error.details,
            "severity": error.severity.value,
            "category": error.category.value,
            "recoverable": error.recoverable,
            "timestamp": error.timestamp.isoformat()
        },
        "context": error.context
    }
