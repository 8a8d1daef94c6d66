"""Tests for the CLI."""

import pytest
from typer.testing import CliRunner

from agentpr import __version__
from agentpr.cli import app

runner = CliRunner()


@pytest.fixture
def isolated_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("AGENTPR_WORKSPACE_DIR", str(tmp_path / "workspaces"))
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("AGENTPR_MOCK_MODE", raising=False)
    monkeypatch.delenv("AGENTPR_CONFIG_DIR", raising=False)
    return tmp_path


class TestCLI:
    """Tests for CLI commands."""

    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_help(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "pull request" in result.stdout
        for command in ("run", "serve", "repos", "branches", "models"):
            assert command in result.stdout

    def test_run_mock(self, isolated_env):
        result = runner.invoke(app, [
            "run", "--repo", "octocat/hello", "--task", "Add a health check", "--mock",
        ])

        assert result.exit_code == 0, result.stdout
        assert "Task plan generated" in result.stdout
        assert "Pull request #1 opened" in result.stdout
        assert "https://github.com/octocat/hello/pull/1" in result.stdout
        assert (isolated_env / "workspaces").is_dir()

    def test_run_requires_token_without_mock(self, isolated_env):
        result = runner.invoke(app, ["run", "--repo", "octocat/hello", "--task", "Add docs"])

        assert result.exit_code == 1
        assert "access_token is required" in result.stdout

    def test_run_rejects_bad_repository(self, isolated_env):
        result = runner.invoke(app, ["run", "-r", "not-a-repo", "-t", "Add docs", "--mock"])

        assert result.exit_code == 1
        assert "owner/name" in result.stdout

    def test_run_rejects_unknown_role(self, isolated_env):
        result = runner.invoke(app, [
            "run", "-r", "octocat/hello", "-t", "Add docs", "--mock", "--model-for", "poet=llama",
        ])

        assert result.exit_code != 0
        assert "Unknown role" in result.output

    def test_repos_mock(self, isolated_env):
        result = runner.invoke(app, ["repos", "--mock"])
        assert result.exit_code == 0
        assert "octocat/demo" in result.stdout

    def test_branches_mock(self, isolated_env):
        result = runner.invoke(app, ["branches", "--repo", "octocat/demo", "--mock"])
        assert result.exit_code == 0
        assert "main" in result.stdout

    def test_models_mock(self, isolated_env):
        result = runner.invoke(app, ["models", "--mock"])
        assert result.exit_code == 0
        assert "mock-model" in result.stdout
        assert "reviewer" in result.stdout
