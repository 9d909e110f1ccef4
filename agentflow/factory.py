"""Application factory for creating FastAPI instances."""

from datetime import datetime, timezone
from typing import Dict, Optional
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from sqlalchemy import text

from .config import AppConfig, get_config, validate_config
from .core.collaborators import AgentCapability, HumanCheckpointHandler, RAGPipeline, ToolRegistry
from .core.execution_engine import WorkflowEngine
from .core.logging import setup_logging, get_logger
from .storage.database import Database
from .storage.repository import ExecutionRepository
from .api.endpoints import router, init_dependencies

logger = get_logger(__name__)


class ApplicationState:
    """Container for application state and components."""

    def __init__(self):
        self.config: Optional[AppConfig] = None
        self.database: Optional[Database] = None
        self.repository: Optional[ExecutionRepository] = None
        self.tool_registry: Optional[ToolRegistry] = None
        self.engine: Optional[WorkflowEngine] = None


def initialize_components(
    config: AppConfig,
    tool_registry: Optional[ToolRegistry] = None,
    agent_capability: Optional[AgentCapability] = None,
    rag_pipelines: Optional[Dict[str, RAGPipeline]] = None,
    human_handler: Optional[HumanCheckpointHandler] = None,
) -> ApplicationState:
    """Create the database, repository and engine described by ``config``."""
    state = ApplicationState()
    state.config = config

    state.database = Database(config.database_url, echo=config.database_echo)
    state.database.create_tables()
    logger.info("Database tables created")

    state.repository = ExecutionRepository(state.database)
    state.tool_registry = tool_registry or ToolRegistry()
    state.engine = WorkflowEngine(
        agent_capability=agent_capability,
        tool_capability=state.tool_registry,
        rag_pipelines=rag_pipelines,
        human_handler=human_handler,
        strict_variables=config.strict_variables,
        repository=state.repository if config.enable_execution_archive else None,
    )
    logger.info("Core components initialized")
    return state


def create_app(
    config: Optional[AppConfig] = None,
    tool_registry: Optional[ToolRegistry] = None,
    agent_capability: Optional[AgentCapability] = None,
    rag_pipelines: Optional[Dict[str, RAGPipeline]] = None,
    human_handler: Optional[HumanCheckpointHandler] = None,
) -> FastAPI:
    """Create and configure a FastAPI application instance.

    Collaborators are optional; step kinds whose collaborator is missing fail
    when dispatched.
    """
    if config is None:
        config = get_config()

    validate_config(config)

    setup_logging(
        level=config.log_level.value,
        log_file=config.log_file,
        log_format=config.log_format,
        structured=config.structured_logging,
        max_size=config.log_max_size,
        backup_count=config.log_backup_count
    )

    state = initialize_components(
        config,
        tool_registry=tool_registry,
        agent_capability=agent_capability,
        rag_pipelines=rag_pipelines,
        human_handler=human_handler,
    )
    init_dependencies(state.engine, state.repository)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {config.app_name} v{config.app_version}")
        yield
        logger.info(f"Shutting down {config.app_name}")
        try:
            await state.engine.shutdown()
        finally:
            state.database.dispose()

    app = FastAPI(
        title=config.app_name,
        description="Workflow engine for agent, tool, retrieval and human-in-the-loop automation",
        version=config.app_version,
        debug=config.debug,
        lifespan=lifespan
    )
    app.state.agentflow = state

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=config.cors_methods,
            allow_headers=["*"],
        )

    from .core.middleware import ErrorHandlingMiddleware, RequestLoggingMiddleware

    if config.enable_request_logging:
        app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(ErrorHandlingMiddleware)

    app.include_router(router)
    add_health_endpoints(app, config, state)

    return app


def add_health_endpoints(app: FastAPI, config: AppConfig, state: ApplicationState) -> None:
    """Add health check endpoints to the application."""

    @app.get("/health")
    async def health_check():
        """Basic health check endpoint."""
        return {
            "status": "healthy",
            "service": config.app_name.lower().replace(" ", "-"),
            "version": config.app_version
        }

    @app.get("/health/ready")
    async def readiness_check():
        """Readiness check: database reachable and engine initialized."""
        checks = {}
        try:
            with state.database.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            checks["database"] = {"status": "healthy"}
        except Exception as e:
            logger.error(f"Database readiness check failed: {e}")
            checks["database"] = {"status": "unhealthy", "error": str(e)}

        checks["engine"] = {
            "status": "healthy" if state.engine is not None else "unhealthy",
            "active_executions": len(state.engine.list_active()) if state.engine else 0
        }

        ready = all(check["status"] == "healthy" for check in checks.values())
        return JSONResponse(
            status_code=200 if ready else 503,
            content={
                "ready": ready,
                "checks": checks,
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        )
