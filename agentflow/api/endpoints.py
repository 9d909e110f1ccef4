"""FastAPI REST endpoints for the workflow engine."""

from typing import Dict, List, Any, Optional
from fastapi import APIRouter, HTTPException, Depends, Query, status
from fastapi.responses import JSONResponse, Response
from pydantic import Field, model_validator

from ..core.execution_engine import WorkflowEngine
from ..core.exceptions import (
    APIError,
    ExecutionNotFoundError,
    WorkflowEngineError,
    WorkflowValidationError,
    create_error_response,
)
from ..core.logging import get_logger
from ..core.middleware import status_code_for_error
from ..models.core import CamelModel, Workflow
from ..storage.repository import ExecutionRepository

logger = get_logger(__name__)

# Create router
router = APIRouter(prefix="/api/v1", tags=["workflow"])

# Global instances (initialized by the application factory)
_engine: Optional[WorkflowEngine] = None
_repository: Optional[ExecutionRepository] = None


def init_dependencies(engine: WorkflowEngine, repository: ExecutionRepository):
    """Initialize the global dependencies."""
    global _engine, _repository
    _engine = engine
    _repository = repository


def get_engine() -> WorkflowEngine:
    """Dependency to get the workflow engine."""
    if _engine is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Workflow engine not initialized"
        )
    return _engine


def get_repository() -> ExecutionRepository:
    """Dependency to get the execution repository."""
    if _repository is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Execution repository not initialized"
        )
    return _repository


def _http_error(error: Exception) -> HTTPException:
    if isinstance(error, WorkflowEngineError):
        return HTTPException(status_code=status_code_for_error(error), detail=create_error_response(error))
    logger.error(f"Unexpected error: {error}", exc_info=error)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "InternalError",
            "message": "An unexpected error occurred",
            "details": {"original_error": str(error)}
        }
    )


# Request/Response models

class RegisterWorkflowResponse(CamelModel):
    """Response model for workflow registration."""
    workflow_id: str = Field(..., description="ID of the registered workflow")
    message: str = Field(..., description="Success message")
    validation_warnings: List[str] = Field(default_factory=list, description="Validation warnings")


class StartExecutionRequest(CamelModel):
    """Request model for starting an execution."""
    workflow_id: Optional[str] = Field(None, description="ID of a registered workflow")
    workflow: Optional[Workflow] = Field(None, description="Inline workflow definition")
    input: Dict[str, Any] = Field(default_factory=dict, description="Initial variables")
    wait: bool = Field(False, description="Run to completion before responding")

    @model_validator(mode='after')
    def check_workflow_source(self):
        if (self.workflow_id is None) == (self.workflow is None):
            raise ValueError("Provide exactly one of workflowId or workflow")
        return self


class ResumeExecutionRequest(CamelModel):
    """Request model for resuming a paused execution."""
    input: Optional[Dict[str, Any]] = Field(None, description="Variables merged before resuming")


# Workflow endpoints

@router.post(
    "/workflows",
    status_code=status.HTTP_201_CREATED,
    summary="Register a workflow definition"
)
async def register_workflow(
    workflow: Workflow,
    repository: ExecutionRepository = Depends(get_repository)
) -> Dict[str, Any]:
    """
    Validate and store a workflow definition.

    Raises:
        HTTPException: 400 if the definition has structural errors
    """
    validation = workflow.validate_structure()
    if not validation.is_valid:
        logger.warning(f"Rejected workflow {workflow.id}: {validation.errors}")
        raise _http_error(WorkflowValidationError(
            f"Workflow {workflow.id} is invalid",
            validation_errors=validation.errors,
            workflow_id=workflow.id
        ))

    try:
        repository.save_workflow(workflow)
    except WorkflowEngineError as e:
        raise _http_error(e)

    logger.info(f"Registered workflow {workflow.id} v{workflow.version}")
    return RegisterWorkflowResponse(
        workflow_id=workflow.id,
        message=f"Workflow '{workflow.name}' registered successfully",
        validation_warnings=validation.warnings
    ).to_wire()


@router.get("/workflows", summary="List registered workflows")
async def list_workflows(repository: ExecutionRepository = Depends(get_repository)) -> List[Dict[str, Any]]:
    try:
        return [workflow.to_wire() for workflow in repository.list_workflows()]
    except WorkflowEngineError as e:
        raise _http_error(e)


@router.get("/workflows/{workflow_id}", summary="Get a workflow definition")
async def get_workflow(
    workflow_id: str,
    repository: ExecutionRepository = Depends(get_repository)
) -> Dict[str, Any]:
    try:
        workflow = repository.get_workflow(workflow_id)
    except WorkflowEngineError as e:
        raise _http_error(e)

    if workflow is None:
        raise _http_error(APIError(f"Workflow {workflow_id} not found", status_code=404))
    return workflow.to_wire()


@router.delete(
    "/workflows/{workflow_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a workflow definition"
)
async def delete_workflow(
    workflow_id: str,
    repository: ExecutionRepository = Depends(get_repository)
):
    try:
        deleted = repository.delete_workflow(workflow_id)
    except WorkflowEngineError as e:
        raise _http_error(e)

    if not deleted:
        raise _http_error(APIError(f"Workflow {workflow_id} not found", status_code=404))
    logger.info(f"Deleted workflow {workflow_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Execution endpoints

@router.post("/executions", summary="Start a workflow execution")
async def start_execution(
    request: StartExecutionRequest,
    engine: WorkflowEngine = Depends(get_engine),
    repository: ExecutionRepository = Depends(get_repository)
) -> JSONResponse:
    """
    Start an execution of a registered or inline workflow.

    With ``wait`` the response is the finished execution (200); otherwise it is
    the initial running snapshot (202) and dispatch continues in the background.
    """
    workflow = request.workflow
    if workflow is None:
        try:
            workflow = repository.get_workflow(request.workflow_id)
        except WorkflowEngineError as e:
            raise _http_error(e)
        if workflow is None:
            raise _http_error(APIError(f"Workflow {request.workflow_id} not found", status_code=404))

    started = await engine.start(workflow, request.input)
    if started.is_failure:
        raise _http_error(started.error)

    execution_id = started.value.id
    logger.info(f"Started execution {execution_id} of workflow {workflow.id}")

    if not request.wait:
        return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=started.value.to_wire())

    await engine.wait(execution_id)
    result = engine.get_execution(execution_id)
    if result.is_failure:
        raise _http_error(result.error)
    return JSONResponse(status_code=status.HTTP_200_OK, content=result.value.to_wire())


@router.get("/executions", summary="List executions")
async def list_executions(
    workflow_id: Optional[str] = Query(None, alias="workflowId"),
    active: bool = Query(False),
    engine: WorkflowEngine = Depends(get_engine)
) -> List[Dict[str, Any]]:
    executions = engine.list_active() if active else engine.list_executions(workflow_id)
    if workflow_id is not None:
        executions = [execution for execution in executions if execution.workflow_id == workflow_id]
    return [execution.to_wire() for execution in executions]


@router.get("/executions/{execution_id}", summary="Get an execution")
async def get_execution(
    execution_id: str,
    engine: WorkflowEngine = Depends(get_engine),
    repository: ExecutionRepository = Depends(get_repository)
) -> Dict[str, Any]:
    """Return the live execution, falling back to the archive once it has been cleared."""
    result = engine.get_execution(execution_id)
    if result.is_success:
        return result.value.to_wire()

    try:
        archived = repository.get_execution(execution_id)
    except WorkflowEngineError as e:
        raise _http_error(e)
    if archived is None:
        raise _http_error(result.error)
    return archived.to_wire()


@router.post("/executions/{execution_id}/pause", summary="Pause an execution")
async def pause_execution(execution_id: str, engine: WorkflowEngine = Depends(get_engine)) -> Dict[str, Any]:
    result = engine.pause(execution_id)
    if result.is_failure:
        raise _http_error(result.error)
    return engine.get_execution(execution_id).unwrap().to_wire()


@router.post("/executions/{execution_id}/resume", summary="Resume a paused execution")
async def resume_execution(
    execution_id: str,
    request: Optional[ResumeExecutionRequest] = None,
    engine: WorkflowEngine = Depends(get_engine)
) -> Dict[str, Any]:
    result = engine.resume(execution_id, request.input if request else None)
    if result.is_failure:
        raise _http_error(result.error)
    return result.value.to_wire()


@router.post("/executions/{execution_id}/cancel", summary="Cancel an execution")
async def cancel_execution(execution_id: str, engine: WorkflowEngine = Depends(get_engine)) -> Dict[str, Any]:
    result = engine.cancel(execution_id)
    if result.is_failure:
        raise _http_error(result.error)
    return engine.get_execution(execution_id).unwrap().to_wire()


@router.delete(
    "/executions/{execution_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Evict an execution from memory"
)
async def delete_execution(execution_id: str, engine: WorkflowEngine = Depends(get_engine)):
    result = engine.clear_execution(execution_id)
    if result.is_failure:
        raise _http_error(result.error)
    if not result.value:
        raise _http_error(ExecutionNotFoundError(execution_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
