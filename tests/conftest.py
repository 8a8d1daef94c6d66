"""Shared test fixtures for agentpr tests."""

from __future__ import annotations

from pathlib import Path

import git
import pytest

from agentpr.codebase import CodebaseDigestRunner, DigestResult
from agentpr.events import ProgressChannel
from agentpr.git_manager import MockGitManager
from agentpr.github_client import MockGitHubClient
from agentpr.models import ROLES, ProgressEvent, TaskRequest
from agentpr.ollama_client import MockGenerationClient
from agentpr.orchestrator import TaskOrchestrator


@pytest.fixture(autouse=True)
def stub_directory_tree(request, monkeypatch):
    """Replace the cdigest call with a fixed tree unless a test opts in."""
    if request.node.get_closest_marker("cdigest"):
        return

    def analyze(self, repo_path):
        return DigestResult(tree=f"{repo_path.name}/", metrics="Files: stubbed", success=True)

    monkeypatch.setattr(CodebaseDigestRunner, "analyze", analyze)


@pytest.fixture
def models() -> dict[str, str]:
    """A model for every stage role."""
    return {role: f"{role}-model" for role in ROLES}


@pytest.fixture
def task_request(models: dict[str, str]) -> TaskRequest:
    """A complete, valid task request."""
    return TaskRequest(
        access_token="ghp_testtoken",
        repository="octocat/hello",
        base_branch="main",
        task_description="Add a health check endpoint",
        models=models,
    )


@pytest.fixture
def generation_client() -> MockGenerationClient:
    return MockGenerationClient()


@pytest.fixture
def repo_ops(tmp_path: Path) -> MockGitManager:
    return MockGitManager(tmp_path / "workspaces")


@pytest.fixture
def github() -> MockGitHubClient:
    return MockGitHubClient()


@pytest.fixture
def orchestrator(
    generation_client: MockGenerationClient,
    repo_ops: MockGitManager,
    github: MockGitHubClient,
) -> TaskOrchestrator:
    """Orchestrator wired to mock collaborators."""
    return TaskOrchestrator(
        generation_client=generation_client,
        repo_ops=repo_ops,
        hosting_factory=lambda token: github,
    )


@pytest.fixture
def events() -> list[ProgressEvent]:
    return []


@pytest.fixture
def channel(events: list[ProgressEvent]) -> ProgressChannel:
    """Channel that records delivered events into ``events``."""
    return ProgressChannel(events.append)


@pytest.fixture
def working_copy(tmp_path: Path) -> Path:
    """A small git repository with one commit."""
    path = tmp_path / "working_copy"
    repo = git.Repo.init(path)
    repo.config_writer().set_value("user", "name", "Test User").release()
    repo.config_writer().set_value("user", "email", "test@example.com").release()

    (path / "README.md").write_text("# Hello\n\nA tiny web service.\n")
    (path / "app").mkdir()
    (path / "app" / "server.py").write_text(
        "def health():\n    return 'ok'\n\n\ndef index():\n    return 'hello'\n"
    )
    (path / "app" / "util.py").write_text("def add(a, b):\n    return a + b\n")
    repo.index.add(["README.md", "app/server.py", "app/util.py"])
    repo.index.commit("Initial commit")
    return path
