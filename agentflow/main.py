"""Entry point for serving the workflow engine with uvicorn."""

from fastapi import FastAPI

from .config import load_config
from .factory import create_app


def create_application() -> FastAPI:
    """Build the application from ``.env`` and ``AGENTFLOW_*`` variables."""
    return create_app(load_config())


def main() -> None:
    import uvicorn

    config = load_config()
    uvicorn.run("agentflow.main:create_application", factory=True, **config.get_uvicorn_config())


if __name__ == "__main__":
    main()
