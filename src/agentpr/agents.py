"""Stage agents.

Each agent makes exactly one call to the generation client with a fixed
system instruction, then post-processes the text deterministically. Agents
hold no run state; the orchestrator builds a fresh set for every run.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol

from . import prompts
from .branch_names import DEFAULT_PREFIX, normalize_branch_name
from .codebase import build_digest, read_files
from .models import ChangeSet, FileChange, PullRequestContent, ReviewResult

logger = logging.getLogger(__name__)

VALID_ACTIONS = ("create", "update", "delete")

# Review text that means "nothing to improve" when no JSON is returned
_NO_IMPROVEMENTS_RE = re.compile(
    r"\b(lgtm|looks good to me|no (further |additional )?(improvements|changes|issues))\b",
    re.IGNORECASE,
)


class GenerationClient(Protocol):
    """Anything that can turn a prompt into text."""

    def generate(self, model: str, prompt: str, system: str = "") -> str:
        ...


class ChangeApplier(Protocol):
    """Writes file changes into a working copy."""

    def apply_changes(self, working_copy: Path, changes: list[FileChange]) -> int:
        ...


class StageError(Exception):
    """Raised when a stage cannot complete."""

    def __init__(self, role: str, message: str):
        super().__init__(f"{role}: {message}")
        self.role = role


def extract_json(text: str) -> Optional[dict]:
    """Pull the first JSON object out of generated text.

    Looks inside fenced code blocks first, then at the outermost braces.
    """
    candidates = []
    fenced = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", text, re.DOTALL)
    if fenced:
        candidates.append(fenced.group(1))
    braces = re.search(r"\{.*\}", text, re.DOTALL)
    if braces:
        candidates.append(braces.group(0))

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return None


class StageAgent:
    """Base class: one role, one model, one generation call."""

    role: str = ""

    def __init__(self, client: GenerationClient, model: str):
        self.client = client
        self.model = model

    def _generate(self, role: Optional[str] = None, **variables: Any) -> str:
        role = role or self.role
        prompt = prompts.render(role, **variables)
        try:
            return self.client.generate(self.model, prompt, prompts.system_for(role))
        except Exception as exc:
            logger.error(f"{self.__class__.__name__} generation failed: {exc}")
            raise StageError(self.role, f"generation failed: {exc}") from exc


class PlannerAgent(StageAgent):
    role = "planner"

    def execute(self, task: str) -> str:
        plan = self._generate(task=task).strip()
        if not plan:
            raise StageError(self.role, "model returned an empty plan")
        return plan


class BranchNamerAgent(StageAgent):
    """Names the branch from the task and the start of the plan."""

    role = "branch_namer"

    def __init__(self, client: GenerationClient, model: str, default_prefix: str = DEFAULT_PREFIX):
        super().__init__(client, model)
        self.default_prefix = default_prefix

    def execute(self, task: str, plan: str) -> str:
        raw = self._generate(task=task, plan_preview=plan[: prompts.PLAN_PREVIEW_CHARS])
        try:
            return normalize_branch_name(raw, default_prefix=self.default_prefix)
        except ValueError as exc:
            raise StageError(self.role, str(exc)) from exc


class CodebaseAnalyzerAgent(StageAgent):
    """Summarizes the working copy for the implementer."""

    role = "analyzer"

    def __init__(self, client: GenerationClient, model: str, max_files: int = 8):
        super().__init__(client, model)
        self.max_files = max_files

    def execute(self, working_copy: Path, task: str) -> str:
        digest = build_digest(working_copy, task, max_files=self.max_files)
        return self._generate(task=task, digest=digest.to_text()).strip()


def parse_file_changes(text: str) -> tuple[list[FileChange], str]:
    """Parse the implementer's JSON into file changes and a summary."""
    data = extract_json(text)
    if data is None:
        return [], ""

    changes = []
    for file_data in data.get("files") or []:
        if not isinstance(file_data, dict):
            continue
        path = str(file_data.get("path") or "").strip()
        if not path:
            continue
        action = str(file_data.get("action") or "update").lower()
        if action not in VALID_ACTIONS:
            action = "update"
        content = file_data.get("content")
        changes.append(FileChange(
            path=path,
            content=None if content is None else str(content),
            action=action,
        ))
    return changes, str(data.get("summary") or data.get("commit_message") or "")


class ImplementerAgent(StageAgent):
    """Writes code changes into the working copy.

    ``execute`` produces the change set. ``apply_improvements`` edits the
    working copy again after review without producing a new change set.
    """

    role = "implementer"

    def __init__(self, client: GenerationClient, model: str, applier: ChangeApplier):
        super().__init__(client, model)
        self.applier = applier

    def _apply(self, working_copy: Path, text: str) -> tuple[list[FileChange], str]:
        changes, summary = parse_file_changes(text)
        if not changes:
            raise StageError(self.role, "no valid file changes found in response")
        try:
            self.applier.apply_changes(working_copy, changes)
        except Exception as exc:
            raise StageError(self.role, f"could not apply changes: {exc}") from exc
        return changes, summary

    def execute(self, working_copy: Path, task: str, plan: str, context: str) -> ChangeSet:
        digest = build_digest(working_copy, task, include_tree=False)
        text = self._generate(
            task=task,
            plan=plan,
            context=context,
            files=digest.format_files(),
        )
        changes, summary = self._apply(working_copy, text)
        return ChangeSet(changes=changes, summary=summary or f"Implement: {task[:60]}")

    def apply_improvements(
        self,
        working_copy: Path,
        improvements: str,
        files: Optional[list[str]] = None,
    ) -> int:
        current = read_files(working_copy, files or [])
        text = self._generate(
            role="improver",
            improvements=improvements,
            files="\n\n".join(f"### {p}\n```\n{c}\n```" for p, c in current.items()),
        )
        changes, _ = self._apply(working_copy, text)
        return len(changes)


def parse_review(text: str) -> ReviewResult:
    """Interpret the reviewer's output.

    JSON output is used as is. Plain text counts as "no improvements" only
    when it says so explicitly; otherwise the whole text is the feedback.
    """
    data = extract_json(text)
    if data is not None and "has_improvements" in data:
        raw = data.get("improvements") or []
        if isinstance(raw, str):
            improvements = [raw] if raw.strip() else []
        else:
            improvements = [str(item) for item in raw if str(item).strip()]
        flag = data.get("has_improvements")
        if isinstance(flag, str):
            flag = flag.strip().lower() in ("true", "yes", "1")
        has_improvements = bool(flag) and bool(improvements)
        return ReviewResult(
            has_improvements=has_improvements,
            improvements=improvements if has_improvements else [],
            summary=str(data.get("summary") or ""),
        )

    stripped = text.strip()
    if _NO_IMPROVEMENTS_RE.search(stripped):
        return ReviewResult(has_improvements=False, summary=stripped)
    return ReviewResult(has_improvements=True, improvements=[stripped], summary=stripped[:500])


class ReviewerAgent(StageAgent):
    role = "reviewer"

    def execute(self, working_copy: Path, change_set: ChangeSet, task: str) -> ReviewResult:
        current = read_files(working_copy, [c.path for c in change_set.changes if c.action != "delete"])
        deleted = [c.path for c in change_set.changes if c.action == "delete"]
        files = "\n\n".join(f"### {p}\n```\n{c}\n```" for p, c in current.items())
        if deleted:
            files += "\n\nDeleted: " + ", ".join(deleted)
        text = self._generate(task=task, summary=change_set.describe(), files=files or "(none)")
        return parse_review(text)


def parse_pull_request(text: str) -> PullRequestContent:
    """Parse title and body; falls back to first line as title."""
    data = extract_json(text)
    if data is not None and data.get("title"):
        return PullRequestContent(
            title=str(data["title"]).strip(),
            body=str(data.get("body") or "").strip(),
        )

    lines = text.strip().splitlines()
    title = lines[0] if lines else ""
    title = re.sub(r"^\s*(#+\s*)?(title\s*:\s*)?", "", title, flags=re.IGNORECASE).strip()
    body = "\n".join(lines[1:]).strip()
    body = re.sub(r"^\s*body\s*:\s*", "", body, flags=re.IGNORECASE)
    return PullRequestContent(title=title, body=body)


class PRWriterAgent(StageAgent):
    role = "pr_writer"

    def execute(
        self,
        task: str,
        plan: str,
        change_set: ChangeSet,
        review: ReviewResult,
    ) -> PullRequestContent:
        review_text = review.summary
        if review.has_improvements:
            review_text += "\n\nApplied improvements:\n" + review.improvements_text()
        text = self._generate(
            task=task,
            plan=plan,
            changes=change_set.describe(),
            review=review_text.strip() or "No review comments.",
        )
        content = parse_pull_request(text)
        if not content.title:
            raise StageError(self.role, "model returned no pull request title")
        return content


class StageAgents:
    """The six agents used by one run."""

    def __init__(
        self,
        client: GenerationClient,
        models: Mapping[str, str],
        applier: ChangeApplier,
        default_prefix: str = DEFAULT_PREFIX,
    ):
        self.planner = PlannerAgent(client, models["planner"])
        self.branch_namer = BranchNamerAgent(client, models["branch_namer"], default_prefix)
        self.analyzer = CodebaseAnalyzerAgent(client, models["analyzer"])
        self.implementer = ImplementerAgent(client, models["implementer"], applier)
        self.reviewer = ReviewerAgent(client, models["reviewer"])
        self.pr_writer = PRWriterAgent(client, models["pr_writer"])
