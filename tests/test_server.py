"""Tests for the HTTP API."""

import json

import pytest
from fastapi.testclient import TestClient

from agentpr import server
from agentpr.ollama_client import GenerationError
from agentpr.orchestrator import TaskOrchestrator


@pytest.fixture
def client(orchestrator: TaskOrchestrator, generation_client, github):
    server.app.dependency_overrides[server.get_orchestrator] = lambda: orchestrator
    server.app.dependency_overrides[server.get_generation_client] = lambda: generation_client
    server.app.dependency_overrides[server.get_hosting_factory] = lambda: (lambda token: github)
    yield TestClient(server.app)
    server.app.dependency_overrides.clear()


def run_payload(**overrides):
    payload = {
        "token": "ghp_testtoken",
        "repo": "octocat/hello",
        "baseBranch": "main",
        "task": "Add a health check endpoint",
        "agentModels": {
            "planner": "llama3.1:8b",
            "branchNamer": "llama3.1:8b",
            "analyzer": "llama3.1:8b",
            "implementer": "qwen2.5-coder:7b",
            "reviewer": "qwen2.5-coder:14b",
            "prWriter": "llama3.1:8b",
        },
    }
    payload.update(overrides)
    return payload


def read_events(response):
    return [json.loads(line) for line in response.text.splitlines() if line.strip()]


class TestRunTask:
    """Tests for POST /api/run-task."""

    def test_streams_progress_events(self, client, github):
        response = client.post("/api/run-task", json=run_payload())

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        events = read_events(response)
        assert len(events) == 20
        assert [e["severity"] for e in events[:2]] == ["info", "success"]
        assert events[-1]["message"] == "Pull request created successfully!"
        assert events[-1]["payload"]["prUrl"] == "https://github.com/octocat/hello/pull/1"
        assert len(github.pull_requests) == 1

    def test_models_reach_stages(self, client, generation_client):
        client.post("/api/run-task", json=run_payload())

        used = {call["role"]: call["model"] for call in generation_client.calls}
        assert used["reviewer"] == "qwen2.5-coder:14b"
        assert used["branch_namer"] == "llama3.1:8b"

    def test_missing_task_is_rejected(self, client, generation_client):
        response = client.post("/api/run-task", json=run_payload(task="  "))

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Missing required parameters"
        assert "task_description is required" in body["problems"]
        assert generation_client.calls == []

    def test_missing_model_is_rejected(self, client):
        payload = run_payload()
        del payload["agentModels"]["reviewer"]

        response = client.post("/api/run-task", json=payload)

        assert response.status_code == 400
        assert any("reviewer" in p for p in response.json()["problems"])

    def test_failed_run_ends_with_error_event(self, client, repo_ops):
        repo_ops.fail_on.add("clone")

        response = client.post("/api/run-task", json=run_payload())

        events = read_events(response)
        assert events[-1]["severity"] == "error"
        assert events[-1]["message"].startswith("Task failed during clone")
        assert sum(e["severity"] == "error" for e in events) == 1


class TestListings:
    """Tests for the listing endpoints."""

    def test_models(self, client):
        response = client.get("/api/models")
        assert response.status_code == 200
        assert response.json()[0]["name"] == "mock-model"

    def test_models_backend_down(self, client, generation_client, monkeypatch):
        def fail():
            raise GenerationError("connection refused")

        monkeypatch.setattr(generation_client, "list_models", fail)

        response = client.get("/api/models")

        assert response.status_code == 500
        assert "error" in response.json()

    def test_repos(self, client):
        response = client.post("/api/repos", json={"token": "ghp_x"})
        assert response.status_code == 200
        assert response.json()[0]["full_name"] == "octocat/demo"

    def test_repos_requires_token(self, client):
        response = client.post("/api/repos", json={})
        assert response.status_code == 400
        assert response.json() == {"error": "GitHub token is required"}

    def test_branches(self, client):
        response = client.post("/api/branches", json={"token": "t", "owner": "octocat", "repo": "demo"})
        assert response.json() == [{"name": "main", "protected": False}]

    def test_branches_requires_all_fields(self, client):
        response = client.post("/api/branches", json={"token": "t", "owner": "octocat"})
        assert response.status_code == 400
        assert response.json()["error"] == "Token, owner, and repo are required"

    def test_hosting_failure(self, client, github):
        github.should_fail = True
        response = client.post("/api/repos", json={"token": "t"})
        assert response.status_code == 500
