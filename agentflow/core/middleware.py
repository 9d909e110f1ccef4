"""Middleware for error handling and request logging."""

import time
import uuid
from datetime import datetime, timezone
from typing import Callable
from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .exceptions import (
    APIError,
    ConfigurationError,
    ExecutionNotFoundError,
    InvalidStateTransitionError,
    StorageError,
    ToolRegistryError,
    UnresolvedVariableError,
    WorkflowEngineError,
    WorkflowValidationError,
    create_error_response,
)
from .logging import get_logger, logging_context


logger = get_logger(__name__)


def status_code_for_error(error: WorkflowEngineError) -> int:
    """Map a workflow engine error to the HTTP status that describes it."""
    if isinstance(error, APIError):
        return error.status_code
    if isinstance(error, ExecutionNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, InvalidStateTransitionError):
        return status.HTTP_409_CONFLICT
    if isinstance(error, (WorkflowValidationError, UnresolvedVariableError)):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(error, ToolRegistryError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(error, StorageError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(error, ConfigurationError):
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return status.HTTP_500_INTERNAL_SERVER_ERROR


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turns uncaught errors into JSON responses and tags each request with an id."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        start_time = time.time()

        with logging_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else "unknown"
        ):
            try:
                response = await call_next(request)
                response.headers["X-Request-ID"] = request_id
                return response

            except WorkflowEngineError as e:
                duration = time.time() - start_time
                logger.warning(
                    f"Workflow engine error: {request.method} {request.url.path} - "
                    f"Error: {e.error_code} - Duration: {duration:.3f}s",
                    extra={"extra_fields": {"error_details": e.to_dict()}}
                )
                return JSONResponse(
                    status_code=status_code_for_error(e),
                    content=create_error_response(e),
                    headers={"X-Request-ID": request_id}
                )

            except Exception as e:
                duration = time.time() - start_time
                logger.error(
                    f"Unexpected error: {request.method} {request.url.path} - "
                    f"Error: {str(e)} - Duration: {duration:.3f}s",
                    exc_info=True
                )
                return JSONResponse(
                    status_code=500,
                    content={
                        "error": "InternalServerError",
                        "message": "An unexpected error occurred",
                        "details": {
                            "error_type": type(e).__name__,
                            "timestamp": datetime.now(timezone.utc).isoformat()
                        },
                        "request_id": request_id
                    },
                    headers={"X-Request-ID": request_id}
                )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request with its status and duration."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        logger.debug(
            f"Request started: {request.method} {request.url.path} - "
            f"Query params: {dict(request.query_params)}"
        )

        response = await call_next(request)

        duration = time.time() - start_time
        logger.info(
            f"Request completed: {request.method} {request.url.path} - "
            f"Status: {response.status_code} - Duration: {duration:.3f}s"
        )
        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        return response
