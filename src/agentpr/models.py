"""Data model for task runs.

A run is driven by one immutable ``TaskRequest``. The orchestrator owns a
``RunState`` for the lifetime of the run and reports progress as a stream of
``ProgressEvent`` values.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

# Stage roles that need a model assigned before a run can start
ROLES = (
    "planner",
    "branch_namer",
    "analyzer",
    "implementer",
    "reviewer",
    "pr_writer",
)

# Field names accepted from web clients
ROLE_ALIASES = {
    "branchNamer": "branch_namer",
    "prWriter": "pr_writer",
    "developer": "implementer",
    "embedder": "analyzer",
}

REPOSITORY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")


class TaskValidationError(ValueError):
    """Raised when a task request is missing or has empty required fields."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("Invalid task request: " + "; ".join(problems))


def normalize_model_assignment(models: Optional[Mapping[str, Any]]) -> dict[str, str]:
    """Map client-supplied role names onto the canonical role names.

    Unknown roles are kept so validation can ignore them explicitly.
    """
    if not models:
        return {}
    normalized: dict[str, str] = {}
    for role, model in models.items():
        canonical = ROLE_ALIASES.get(role, role)
        # Canonical names win over aliases
        if canonical in normalized and role != canonical:
            continue
        normalized[canonical] = "" if model is None else str(model).strip()
    return normalized


@dataclass(frozen=True)
class TaskRequest:
    """Everything needed to start one run."""

    access_token: str
    repository: str
    base_branch: str
    task_description: str
    models: Mapping[str, str] = field(default_factory=dict)

    @property
    def owner(self) -> str:
        return self.repository.split("/", 1)[0]

    @property
    def repo_name(self) -> str:
        return self.repository.split("/", 1)[1]

    def model_for(self, role: str) -> str:
        return self.models[role]

    def validate(self) -> None:
        """Check that every field is present and non-empty.

        Raises:
            TaskValidationError: Listing every problem found.
        """
        problems = []
        for name in ("access_token", "repository", "base_branch", "task_description"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                problems.append(f"{name} is required")

        if isinstance(self.repository, str) and self.repository.strip():
            if not REPOSITORY_PATTERN.match(self.repository.strip()):
                problems.append(
                    f"repository must look like owner/name, got {self.repository!r}"
                )

        missing_roles = [
            role for role in ROLES
            if not str((self.models or {}).get(role) or "").strip()
        ]
        if missing_roles:
            problems.append("model assignment missing for: " + ", ".join(missing_roles))

        if problems:
            raise TaskValidationError(problems)

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> TaskRequest:
        """Build and validate a request from a JSON payload.

        Accepts both the web client's camelCase keys and snake_case keys.

        Raises:
            TaskValidationError: If the payload is incomplete.
        """
        def pick(*keys: str) -> str:
            for key in keys:
                value = data.get(key)
                if value is not None:
                    return str(value).strip()
            return ""

        models = data.get("agentModels", data.get("models"))
        if models is not None and not isinstance(models, Mapping):
            raise TaskValidationError(["agentModels must be an object"])

        request = cls(
            access_token=pick("token", "access_token"),
            repository=pick("repo", "repository"),
            base_branch=pick("baseBranch", "base_branch"),
            task_description=pick("task", "task_description"),
            models=normalize_model_assignment(models),
        )
        request.validate()
        return request


class Severity(str, Enum):
    """Severity of a progress event."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class ProgressEvent:
    """A single progress notification for the observer of a run."""

    severity: Severity
    message: str
    payload: Optional[dict] = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "severity": self.severity.value,
            "message": self.message,
            "timestamp": self.timestamp,
        }
        if self.payload is not None:
            data["payload"] = self.payload
        return data

    def to_json(self) -> str:
        """Serialize to a single line of JSON."""
        return json.dumps(self.to_dict(), default=str)


@dataclass
class FileChange:
    """A file change produced by the implementer."""

    path: str
    content: Optional[str]  # None for deletions
    action: str  # "create", "update", or "delete"

    def to_dict(self) -> dict:
        return {"path": self.path, "action": self.action}


@dataclass
class ChangeSet:
    """Edits applied to the working copy by the implementer."""

    changes: list[FileChange] = field(default_factory=list)
    summary: str = ""

    @property
    def files(self) -> list[str]:
        return [change.path for change in self.changes]

    def describe(self) -> str:
        """Render the change set as text for later prompts."""
        lines = [self.summary] if self.summary else []
        for change in self.changes:
            lines.append(f"- {change.action}: {change.path}")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "summary": self.summary,
            "files": [change.to_dict() for change in self.changes],
        }


@dataclass
class ReviewResult:
    """Outcome of the self-review pass."""

    has_improvements: bool
    improvements: list[str] = field(default_factory=list)
    summary: str = ""

    def improvements_text(self) -> str:
        return "\n".join(f"- {item}" for item in self.improvements)

    def to_dict(self) -> dict:
        return {
            "hasImprovements": self.has_improvements,
            "improvements": list(self.improvements),
            "summary": self.summary,
        }


@dataclass
class PullRequestContent:
    """Title and body of the pull request to open."""

    title: str
    body: str

    def to_dict(self) -> dict:
        return {"title": self.title, "body": self.body}


@dataclass
class PullRequestRef:
    """Reference to an opened pull request."""

    url: str
    number: int

    def to_dict(self) -> dict:
        return {"prUrl": self.url, "prNumber": self.number}


class RunStatus(str, Enum):
    """Position of a run in the pipeline."""

    NOT_STARTED = "not_started"
    PLANNED = "planned"
    NAMED = "named"
    CLONED = "cloned"
    BRANCHED = "branched"
    ANALYZED = "analyzed"
    IMPLEMENTED = "implemented"
    REVIEWED = "reviewed"
    PUSHED = "pushed"
    PR_WRITTEN = "pr_written"
    PR_OPENED = "pr_opened"
    ABORTED = "aborted"


PIPELINE_ORDER = [
    RunStatus.NOT_STARTED,
    RunStatus.PLANNED,
    RunStatus.NAMED,
    RunStatus.CLONED,
    RunStatus.BRANCHED,
    RunStatus.ANALYZED,
    RunStatus.IMPLEMENTED,
    RunStatus.REVIEWED,
    RunStatus.PUSHED,
    RunStatus.PR_WRITTEN,
    RunStatus.PR_OPENED,
]

TERMINAL_STATUSES = (RunStatus.PR_OPENED, RunStatus.ABORTED)


class RunStateError(RuntimeError):
    """Raised on an illegal run state transition."""

    pass


@dataclass
class RunState:
    """Mutable state of one run.

    Fields accumulate as stages complete and are never cleared. ``status``
    only moves forward one step at a time, or to ABORTED.
    """

    status: RunStatus = RunStatus.NOT_STARTED
    plan: Optional[str] = None
    branch_name: Optional[str] = None
    working_copy: Optional[Any] = None
    codebase_context: Optional[str] = None
    change_set: Optional[ChangeSet] = None
    review: Optional[ReviewResult] = None
    improvements_applied: bool = False
    pr_content: Optional[PullRequestContent] = None
    pull_request: Optional[PullRequestRef] = None
    failed_stage: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def advance(self, status: RunStatus, **fields: Any) -> None:
        """Move to the next status and record the stage output.

        Raises:
            RunStateError: If ``status`` is not the next one in the pipeline
                or a field was already recorded.
        """
        if self.is_terminal:
            raise RunStateError(f"Run already finished with status {self.status.value}")

        expected = PIPELINE_ORDER[PIPELINE_ORDER.index(self.status) + 1]
        if status != expected:
            raise RunStateError(
                f"Cannot move from {self.status.value} to {status.value}; "
                f"expected {expected.value}"
            )

        for name, value in fields.items():
            if getattr(self, name) is not None:
                raise RunStateError(f"{name} already recorded")
            setattr(self, name, value)
        self.status = status

    def abort(self, stage: str, error: str) -> None:
        if self.is_terminal:
            raise RunStateError(f"Run already finished with status {self.status.value}")
        self.failed_stage = stage
        self.error = error
        self.status = RunStatus.ABORTED


@dataclass
class RunOutcome:
    """Terminal outcome of a run."""

    success: bool
    state: RunState
    pull_request: Optional[PullRequestRef] = None
    error: Optional[str] = None
    stage: Optional[str] = None
