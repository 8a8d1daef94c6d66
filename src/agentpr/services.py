"""Wiring of collaborators from configuration."""

from __future__ import annotations

from .config import Config
from .git_manager import GitManager, MockGitManager
from .github_client import GitHubClient, MockGitHubClient
from .ollama_client import MockGenerationClient, OllamaClient
from .orchestrator import TaskOrchestrator


def create_generation_client(config: Config):
    if config.mock_mode:
        return MockGenerationClient()
    return OllamaClient(base_url=config.ollama_url, timeout=config.generation_timeout)


def create_hosting_client(config: Config, token: str):
    if config.mock_mode:
        return MockGitHubClient(token)
    return GitHubClient(token, api_url=config.github_api_url, timeout=config.github_timeout)


def create_orchestrator(config: Config) -> TaskOrchestrator:
    """Build an orchestrator with real or mock collaborators."""
    if config.mock_mode:
        repo_ops = MockGitManager(config.workspace_dir)
    else:
        repo_ops = GitManager(
            workspace_dir=config.workspace_dir,
            author_name=config.git_author_name,
            author_email=config.git_author_email,
        )

    return TaskOrchestrator(
        generation_client=create_generation_client(config),
        repo_ops=repo_ops,
        hosting_factory=lambda token: create_hosting_client(config, token),
        default_branch_prefix=config.default_branch_prefix,
    )
