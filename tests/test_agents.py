"""Unit tests for agents.py."""

import json
from pathlib import Path

import pytest

from agentpr import prompts
from agentpr.agents import (
    BranchNamerAgent,
    CodebaseAnalyzerAgent,
    ImplementerAgent,
    PlannerAgent,
    PRWriterAgent,
    ReviewerAgent,
    StageError,
    extract_json,
    parse_file_changes,
    parse_pull_request,
    parse_review,
)
from agentpr.git_manager import MockGitManager
from agentpr.models import ChangeSet, FileChange, ReviewResult
from agentpr.ollama_client import MockGenerationClient


def client_with(**responses: str) -> MockGenerationClient:
    return MockGenerationClient(responses=responses)


class TestExtractJson:
    """Tests for extract_json."""

    def test_plain_object(self):
        assert extract_json('{"a": 1}') == {"a": 1}

    def test_fenced_block_with_chatter(self):
        text = 'Here you go:\n```json\n{"title": "Add docs"}\n```\nHope that helps!'
        assert extract_json(text) == {"title": "Add docs"}

    def test_no_json(self):
        assert extract_json("just words") is None

    def test_invalid_json(self):
        assert extract_json("{not: json}") is None


class TestPlannerAgent:
    """Tests for PlannerAgent."""

    def test_returns_trimmed_plan(self):
        client = client_with(planner="\n\n1. Step one\n2. Step two\n\n")
        plan = PlannerAgent(client, "llama").execute("Add docs")
        assert plan == "1. Step one\n2. Step two"

    def test_uses_role_system_instruction_and_model(self):
        client = client_with(planner="1. x")
        PlannerAgent(client, "llama").execute("Add docs")
        call = client.calls[0]
        assert call["model"] == "llama"
        assert call["system"] == prompts.system_for("planner")
        assert "Add docs" in call["prompt"]

    def test_generation_failure_raises_stage_error(self):
        client = MockGenerationClient()
        client.fail_roles.add("planner")
        with pytest.raises(StageError) as exc_info:
            PlannerAgent(client, "llama").execute("Add docs")
        assert exc_info.value.role == "planner"
        assert "generation failed" in str(exc_info.value)

    def test_blank_plan_is_a_failure(self):
        client = client_with(planner="   \n")
        with pytest.raises(StageError):
            PlannerAgent(client, "llama").execute("Add docs")


class TestBranchNamerAgent:
    """Tests for BranchNamerAgent."""

    def test_normalizes_generated_name(self):
        client = client_with(branch_namer="Fix the Login Bug!!")
        name = BranchNamerAgent(client, "llama").execute("Fix login", "1. plan")
        assert name == "feature/fix-the-login-bug"

    def test_only_plan_prefix_is_sent(self):
        client = client_with(branch_namer="fix/x")
        plan = "A" * 400 + "B" * 600
        BranchNamerAgent(client, "llama").execute("Fix login", plan)
        prompt = client.calls[0]["prompt"]
        assert "A" * 400 + "B" * 100 in prompt
        assert "B" * 101 not in prompt

    def test_custom_prefix(self):
        client = client_with(branch_namer="tidy imports")
        name = BranchNamerAgent(client, "llama", default_prefix="chore").execute("t", "p")
        assert name == "chore/tidy-imports"

    def test_unusable_output_is_a_failure(self):
        client = client_with(branch_namer="???")
        with pytest.raises(StageError):
            BranchNamerAgent(client, "llama").execute("t", "p")


class TestCodebaseAnalyzerAgent:
    """Tests for CodebaseAnalyzerAgent."""

    def test_sends_digest_of_working_copy(self, working_copy: Path):
        client = client_with(analyzer="  A tiny web service.  ")
        context = CodebaseAnalyzerAgent(client, "llama").execute(working_copy, "Add a health check")
        assert context == "A tiny web service."
        prompt = client.calls[0]["prompt"]
        assert "server.py" in prompt
        assert ".git" not in prompt.split("## File Excerpts")[0]


class TestImplementerAgent:
    """Tests for ImplementerAgent."""

    def test_applies_changes_and_returns_change_set(self, tmp_path: Path):
        response = json.dumps({
            "files": [{"path": "src/health.py", "content": "OK = True\n", "action": "create"}],
            "summary": "Add health module",
        })
        agent = ImplementerAgent(client_with(implementer=response), "llama", MockGitManager())
        change_set = agent.execute(tmp_path, "Add health", "1. add", "context")

        assert change_set.summary == "Add health module"
        assert change_set.files == ["src/health.py"]
        assert (tmp_path / "src" / "health.py").read_text() == "OK = True\n"

    def test_no_changes_is_a_failure(self, tmp_path: Path):
        agent = ImplementerAgent(client_with(implementer="I cannot do that."), "llama", MockGitManager())
        with pytest.raises(StageError) as exc_info:
            agent.execute(tmp_path, "task", "plan", "context")
        assert "no valid file changes" in str(exc_info.value)

    def test_path_escaping_working_copy_is_a_failure(self, tmp_path: Path):
        (tmp_path / "wc").mkdir()
        response = json.dumps({"files": [{"path": "../evil.txt", "content": "x", "action": "create"}]})
        agent = ImplementerAgent(client_with(implementer=response), "llama", MockGitManager())
        with pytest.raises(StageError) as exc_info:
            agent.execute(tmp_path / "wc", "task", "plan", "context")
        assert "could not apply changes" in str(exc_info.value)
        assert not (tmp_path / "evil.txt").exists()

    def test_apply_improvements_uses_improver_instruction(self, tmp_path: Path):
        (tmp_path / "a.py").write_text("x = 1\n")
        response = json.dumps({"files": [{"path": "a.py", "content": "x = 2\n", "action": "update"}]})
        client = client_with(improver=response)
        agent = ImplementerAgent(client, "llama", MockGitManager())

        count = agent.apply_improvements(tmp_path, "- use 2", ["a.py"])

        assert count == 1
        assert (tmp_path / "a.py").read_text() == "x = 2\n"
        assert client.roles_called() == ["improver"]
        assert "x = 1" in client.calls[0]["prompt"]
        assert client.calls[0]["model"] == "llama"


class TestParseFileChanges:
    """Tests for parse_file_changes."""

    def test_normalizes_unknown_action(self):
        changes, _ = parse_file_changes('{"files": [{"path": "a", "content": "x", "action": "modify"}]}')
        assert changes[0].action == "update"

    def test_skips_entries_without_path(self):
        changes, _ = parse_file_changes('{"files": [{"content": "x"}, {"path": "b", "action": "delete"}]}')
        assert [c.path for c in changes] == ["b"]
        assert changes[0].content is None


class TestParseReview:
    """Tests for parse_review."""

    def test_json_with_improvements(self):
        review = parse_review('{"has_improvements": true, "improvements": ["Add tests"], "summary": "Close"}')
        assert review.has_improvements
        assert review.improvements == ["Add tests"]
        assert review.summary == "Close"

    def test_json_without_improvements(self):
        review = parse_review('{"has_improvements": false, "improvements": [], "summary": "Ready"}')
        assert not review.has_improvements
        assert review.improvements == []

    def test_flag_without_details_means_no_improvements(self):
        review = parse_review('{"has_improvements": true, "improvements": []}')
        assert not review.has_improvements

    def test_string_flag(self):
        review = parse_review('{"has_improvements": "yes", "improvements": "Rename x"}')
        assert review.has_improvements
        assert review.improvements == ["Rename x"]

    def test_plain_text_lgtm(self):
        assert not parse_review("LGTM, ship it.").has_improvements

    def test_plain_text_feedback(self):
        review = parse_review("The handler swallows errors; log them.")
        assert review.has_improvements
        assert review.improvements == ["The handler swallows errors; log them."]


class TestReviewerAgent:
    """Tests for ReviewerAgent."""

    def test_reviews_current_file_content(self, tmp_path: Path):
        (tmp_path / "a.py").write_text("print('hi')\n")
        client = client_with(reviewer='{"has_improvements": false, "improvements": [], "summary": "ok"}')
        change_set = ChangeSet([FileChange("a.py", "print('hi')\n", "create"), FileChange("b.py", None, "delete")])

        review = ReviewerAgent(client, "llama").execute(tmp_path, change_set, "Say hi")

        assert review == ReviewResult(False, [], "ok")
        prompt = client.calls[0]["prompt"]
        assert "print('hi')" in prompt
        assert "Deleted: b.py" in prompt


class TestPRWriterAgent:
    """Tests for PRWriterAgent and parse_pull_request."""

    def test_json_output(self):
        client = client_with(pr_writer='{"title": "Add health check", "body": "Adds /health."}')
        content = PRWriterAgent(client, "llama").execute(
            "Add health", "1. add", ChangeSet(summary="s"), ReviewResult(False)
        )
        assert content.title == "Add health check"
        assert content.body == "Adds /health."

    def test_text_fallback(self):
        content = parse_pull_request("# Title: Add health check\n\nBody: Adds a /health endpoint.")
        assert content.title == "Add health check"
        assert content.body == "Adds a /health endpoint."

    def test_review_improvements_are_mentioned(self):
        client = client_with(pr_writer='{"title": "t", "body": "b"}')
        PRWriterAgent(client, "llama").execute(
            "task", "plan", ChangeSet(summary="s"), ReviewResult(True, ["Add tests"], "Needs tests")
        )
        assert "Add tests" in client.calls[0]["prompt"]

    def test_empty_title_is_a_failure(self):
        client = client_with(pr_writer="   \n")
        with pytest.raises(StageError):
            PRWriterAgent(client, "llama").execute("t", "p", ChangeSet(), ReviewResult(False))
