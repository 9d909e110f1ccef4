"""Agentflow: a workflow engine for agent, tool, retrieval and human-in-the-loop steps."""

__version__ = "1.0.0"
