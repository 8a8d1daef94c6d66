"""HTTP API for triggering task runs.

``POST /api/run-task`` validates the request synchronously and then streams
progress events as newline-delimited JSON while the run executes in a
worker thread. The listing endpoints back a repository/branch/model picker.
"""

from __future__ import annotations

import logging
import threading
from functools import lru_cache
from typing import Any, Callable

from fastapi import Body, Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from .config import Config
from .events import ProgressChannel, QueueObserver
from .github_client import HostingError
from .models import TaskRequest, TaskValidationError
from .ollama_client import GenerationError
from .orchestrator import TaskOrchestrator
from .services import create_generation_client, create_hosting_client, create_orchestrator

logger = logging.getLogger(__name__)

app = FastAPI(title="agentpr")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache
def get_config() -> Config:
    return Config.from_env()


def get_orchestrator(config: Config = Depends(get_config)) -> TaskOrchestrator:
    return create_orchestrator(config)


def get_generation_client(config: Config = Depends(get_config)):
    return create_generation_client(config)


def get_hosting_factory(config: Config = Depends(get_config)) -> Callable[[str], Any]:
    return lambda token: create_hosting_client(config, token)


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


@app.get("/api/models")
def list_models(client=Depends(get_generation_client)):
    """Models available on the generation backend."""
    try:
        return client.list_models()
    except GenerationError as e:
        logger.error(f"Error fetching models: {e}")
        return _error(500, "Failed to fetch models from the generation backend")


@app.post("/api/repos")
def list_repositories(
    payload: dict = Body(...),
    hosting_factory=Depends(get_hosting_factory),
):
    token = payload.get("token")
    if not token:
        return _error(400, "GitHub token is required")
    try:
        return hosting_factory(token).list_repositories()
    except HostingError as e:
        logger.error(f"Error fetching repositories: {e}")
        return _error(500, "Failed to fetch repositories")


@app.post("/api/branches")
def list_branches(
    payload: dict = Body(...),
    hosting_factory=Depends(get_hosting_factory),
):
    token, owner, repo = payload.get("token"), payload.get("owner"), payload.get("repo")
    if not token or not owner or not repo:
        return _error(400, "Token, owner, and repo are required")
    try:
        return hosting_factory(token).list_branches(owner, repo)
    except HostingError as e:
        logger.error(f"Error fetching branches: {e}")
        return _error(500, "Failed to fetch branches")


def _run_in_background(
    orchestrator: TaskOrchestrator,
    request: TaskRequest,
    channel: ProgressChannel,
) -> None:
    try:
        orchestrator.run(request, channel)
    except Exception:
        # run() reports stage failures itself; this is a bug in the pipeline
        logger.exception("Unexpected error in task run")
        channel.close()


@app.post("/api/run-task")
def run_task(
    payload: dict = Body(...),
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
):
    """Start a run and stream its progress events."""
    try:
        request = TaskRequest.from_payload(payload)
    except TaskValidationError as e:
        return _error(400, "Missing required parameters", problems=e.problems)

    observer = QueueObserver()
    channel = ProgressChannel(observer)
    worker = threading.Thread(
        target=_run_in_background,
        args=(orchestrator, request, channel),
        name=f"run-{request.repository}",
        daemon=True,
    )
    worker.start()
    logger.info(f"Started run for {request.repository}@{request.base_branch}")

    return StreamingResponse(
        observer.lines(),
        media_type="application/x-ndjson",
        headers={"Cache-Control": "no-cache"},
    )


def run_server(host: str = "127.0.0.1", port: int = 3001, log_level: str = "info") -> None:
    """Run the API server."""
    import uvicorn
    uvicorn.run(app, host=host, port=port, log_level=log_level)
