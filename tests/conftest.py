"""Pytest configuration and fixtures."""

import asyncio
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from agentflow.config import get_testing_config, reset_config
from agentflow.core.collaborators import ToolRegistry
from agentflow.core.execution_engine import WorkflowEngine
from agentflow.factory import create_app
from agentflow.storage.database import Database
from agentflow.storage.repository import ExecutionRepository


class RecordingAgent:
    """Agent capability that echoes its input and remembers every call."""

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self.hook = None

    async def execute(self, agent_id, input):
        self.calls.append({"agent_id": agent_id, "input": input})
        if self.hook is not None:
            self.hook(agent_id, input)
        return {"agent": agent_id, "input": input}


class StaticPipeline:
    """RAG pipeline returning canned documents."""

    def __init__(self, documents: Optional[List[str]] = None):
        self.documents = documents or ["doc-1", "doc-2", "doc-3"]
        self.queries: List[Dict[str, Any]] = []

    async def query(self, text, limit=None):
        self.queries.append({"text": text, "limit": limit})
        documents = self.documents[:limit] if limit else list(self.documents)
        return {"query": text, "documents": documents}


class FlakyTool:
    """Tool that fails a fixed number of times before succeeding."""

    def __init__(self, failures: int, error_type=ConnectionError):
        self.failures = failures
        self.error_type = error_type
        self.attempts = 0

    def execute(self, input):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise self.error_type(f"attempt {self.attempts} failed")
        return {"ok": True, "attempts": self.attempts}


class SlowTool:
    """Async tool that sleeps before answering."""

    def __init__(self, delay: float):
        self.delay = delay

    async def execute(self, input):
        await asyncio.sleep(self.delay)
        return input


def fail_tool(input):
    raise ValueError("boom")


@pytest.fixture
def collected():
    """Inputs seen by the ``collect`` tool, in call order."""
    return []


@pytest.fixture
def tool_registry(collected):
    """Tool registry with a few simple tools."""
    registry = ToolRegistry()
    registry.register_tool("echo", lambda input: input, "Returns its input")
    registry.register_tool("upper", lambda input: str(input).upper(), "Upper-cases its input")
    registry.register_tool("fail", fail_tool, "Always raises")

    def collect(input):
        collected.append(input)
        return len(collected)

    registry.register_tool("collect", collect, "Records its input")
    return registry


@pytest.fixture
def agent():
    return RecordingAgent()


@pytest.fixture
def pipeline():
    return StaticPipeline()


@pytest.fixture
def human_answers():
    """Prompts seen by the human handler."""
    return []


@pytest.fixture
def human_handler(human_answers):
    async def handler(prompt, options):
        human_answers.append((prompt, options))
        return options[0] if options else "ok"
    return handler


@pytest.fixture
def engine(agent, tool_registry, pipeline, human_handler):
    """Workflow engine wired to in-memory collaborators."""
    return WorkflowEngine(
        agent_capability=agent,
        tool_capability=tool_registry,
        rag_pipelines={"docs": pipeline},
        human_handler=human_handler,
    )


@pytest.fixture
def database():
    """In-memory database with all tables created."""
    db = Database("sqlite:///:memory:")
    db.create_tables()
    yield db
    db.dispose()


@pytest.fixture
def repository(database):
    return ExecutionRepository(database)


@pytest.fixture
def test_config():
    """Create test configuration."""
    reset_config()
    return get_testing_config()


@pytest.fixture
def app(test_config, tool_registry, agent, pipeline, human_handler):
    """FastAPI application backed by an in-memory database."""
    return create_app(
        test_config,
        tool_registry=tool_registry,
        agent_capability=agent,
        rag_pipelines={"docs": pipeline},
        human_handler=human_handler,
    )


@pytest.fixture
def client(app):
    """Create a test client."""
    with TestClient(app) as test_client:
        yield test_client
