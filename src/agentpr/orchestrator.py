"""Task orchestrator.

Runs one task request through the pipeline:

    plan -> branch name -> clone -> create branch -> analyze -> implement
    -> review (-> apply improvements) -> commit and push -> PR content -> open PR

Every transition is announced with an ``info`` event and confirmed with a
``success`` event. The first failure ends the run with a single ``error``
event. Nothing that already happened is undone: a clone, a local branch or
a pushed branch may be left behind by a failed run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

from .agents import ChangeApplier, GenerationClient, StageAgents
from .branch_names import DEFAULT_PREFIX
from .events import ProgressChannel
from .models import (
    PullRequestRef,
    RunOutcome,
    RunState,
    RunStatus,
    TaskRequest,
)

logger = logging.getLogger(__name__)


class RepositoryOperations(ChangeApplier, Protocol):
    def clone(self, token: str, owner: str, repo_name: str, base_branch: str) -> Path:
        ...

    def create_branch(self, working_copy: Path, branch_name: str) -> None:
        ...

    def commit(self, working_copy: Path, message: str) -> str:
        ...

    def push(self, working_copy: Path, branch_name: str) -> None:
        ...


class HostingOperations(Protocol):
    def create_pull_request(
        self,
        owner: str,
        repo: str,
        head: str,
        base: str,
        title: str,
        body: str,
    ) -> PullRequestRef:
        ...


HostingFactory = Callable[[str], HostingOperations]


@dataclass(frozen=True)
class Stage:
    """One pipeline transition as seen by the observer."""

    name: str
    start_message: str
    done_message: str


PLAN = Stage("plan", "Planning task decomposition...", "Task plan generated")
NAME = Stage("branch-name", "Generating branch name...", "Branch name generated")
CLONE = Stage("clone", "Cloning repository...", "Repository cloned successfully")
BRANCH = Stage("create-branch", "Creating new branch...", "New branch created")
ANALYZE = Stage("analyze", "Analyzing codebase...", "Codebase analysis completed")
IMPLEMENT = Stage("implement", "Implementing changes...", "Changes implemented")
REVIEW = Stage("review", "Reviewing changes...", "Changes reviewed")
IMPROVE = Stage("improve", "Applying review improvements...", "Review improvements applied")
FINALIZE = Stage("commit-push", "Committing and pushing changes...", "Changes committed and branch pushed")
WRITE_PR = Stage("pr-content", "Generating pull request content...", "Pull request content generated")
OPEN_PR = Stage("pr-create", "Creating pull request...", "Pull request created successfully!")


def commit_message(task: str, plan: str) -> str:
    return f"{task}\n\n{plan}"


class RunAborted(Exception):
    """Internal signal: a transition failed and the run must stop."""

    def __init__(self, stage: Stage, cause: BaseException):
        super().__init__(f"{stage.name}: {cause}")
        self.stage = stage
        self.cause = cause


class TaskOrchestrator:
    """Sequences stage agents and external operations for task runs.

    The orchestrator itself holds only shared, stateless collaborators, so
    one instance can serve concurrent runs. Each ``run`` call creates its own
    ``RunState`` and agents.
    """

    def __init__(
        self,
        generation_client: GenerationClient,
        repo_ops: RepositoryOperations,
        hosting_factory: HostingFactory,
        default_branch_prefix: str = DEFAULT_PREFIX,
    ):
        """Initialize the orchestrator.

        Args:
            generation_client: Shared text generation backend.
            repo_ops: Clone/branch/commit/push operations.
            hosting_factory: Builds a hosting client for an access token.
            default_branch_prefix: Category used for branch names without one.
        """
        self.generation_client = generation_client
        self.repo_ops = repo_ops
        self.hosting_factory = hosting_factory
        self.default_branch_prefix = default_branch_prefix

    def _step(
        self,
        channel: ProgressChannel,
        stage: Stage,
        action: Callable[[], Any],
        payload: Optional[Callable[[Any], Optional[dict]]] = None,
        record: Optional[Callable[[Any], None]] = None,
    ) -> Any:
        """Announce, run and confirm one transition.

        ``payload`` builds the success event data and ``record`` stores the
        result in the run state. Both run before the success event.

        Raises:
            RunAborted: If ``action``, ``record`` or ``payload`` raises.
        """
        logger.info(f"[{stage.name}] {stage.start_message}")
        channel.info(stage.start_message, {"stage": stage.name})
        try:
            result = action()
            data = payload(result) if payload else None
            if record:
                record(result)
        except Exception as exc:
            raise RunAborted(stage, exc) from exc

        channel.success(stage.done_message, {"stage": stage.name, **(data or {})})
        return result

    def run(self, request: TaskRequest, channel: ProgressChannel) -> RunOutcome:
        """Run one task request to completion or abort.

        Args:
            request: The task to run.
            channel: Where progress events go. Opened here, closed on return.

        Returns:
            RunOutcome with the pull request reference, or the abort error.

        Raises:
            TaskValidationError: Before anything happens if the request is
                incomplete. The channel is never opened in that case.
        """
        request.validate()

        state = RunState()
        channel.open()
        try:
            try:
                self._run_pipeline(request, state, channel)
            except RunAborted as aborted:
                message = f"Task failed during {aborted.stage.name}: {aborted.cause}"
                logger.error(message)
                state.abort(aborted.stage.name, str(aborted.cause))
                channel.error(message, {"stage": aborted.stage.name})
                return RunOutcome(
                    success=False,
                    state=state,
                    error=str(aborted.cause),
                    stage=aborted.stage.name,
                )
        finally:
            channel.close()

        logger.info(f"Run finished: {state.pull_request.url}")
        return RunOutcome(success=True, state=state, pull_request=state.pull_request)

    def _run_pipeline(self, request: TaskRequest, state: RunState, channel: ProgressChannel) -> None:
        agents = StageAgents(
            self.generation_client,
            request.models,
            self.repo_ops,
            default_prefix=self.default_branch_prefix,
        )
        task = request.task_description

        plan = self._step(
            channel, PLAN,
            lambda: agents.planner.execute(task),
            lambda plan: {"plan": plan},
            lambda plan: state.advance(RunStatus.PLANNED, plan=plan),
        )

        branch_name = self._step(
            channel, NAME,
            lambda: agents.branch_namer.execute(task, plan),
            lambda name: {"branchName": name},
            lambda name: state.advance(RunStatus.NAMED, branch_name=name),
        )

        working_copy = self._step(
            channel, CLONE,
            lambda: self.repo_ops.clone(
                request.access_token, request.owner, request.repo_name, request.base_branch
            ),
            record=lambda path: state.advance(RunStatus.CLONED, working_copy=path),
        )

        self._step(
            channel, BRANCH,
            lambda: self.repo_ops.create_branch(working_copy, branch_name),
            lambda _: {"branchName": branch_name},
            lambda _: state.advance(RunStatus.BRANCHED),
        )

        context = self._step(
            channel, ANALYZE,
            lambda: agents.analyzer.execute(working_copy, task),
            record=lambda text: state.advance(RunStatus.ANALYZED, codebase_context=text),
        )

        change_set = self._step(
            channel, IMPLEMENT,
            lambda: agents.implementer.execute(working_copy, task, plan, context),
            lambda changes: {"changes": changes.to_dict()},
            lambda changes: state.advance(RunStatus.IMPLEMENTED, change_set=changes),
        )

        review = self._step(
            channel, REVIEW,
            lambda: agents.reviewer.execute(working_copy, change_set, task),
            lambda result: {"reviewResult": result.to_dict()},
            lambda result: state.advance(RunStatus.REVIEWED, review=result),
        )

        if review.has_improvements:
            def mark_improved(_: int) -> None:
                state.improvements_applied = True

            self._step(
                channel, IMPROVE,
                lambda: agents.implementer.apply_improvements(
                    working_copy, review.improvements_text(), change_set.files
                ),
                lambda count: {"filesChanged": count},
                mark_improved,
            )

        def finalize() -> str:
            commit_hash = self.repo_ops.commit(working_copy, commit_message(task, plan))
            self.repo_ops.push(working_copy, branch_name)
            return commit_hash

        self._step(
            channel, FINALIZE,
            finalize,
            lambda commit_hash: {"commit": commit_hash, "branchName": branch_name},
            lambda _: state.advance(RunStatus.PUSHED),
        )

        pr_content = self._step(
            channel, WRITE_PR,
            lambda: agents.pr_writer.execute(task, plan, change_set, review),
            lambda content: {"title": content.title},
            lambda content: state.advance(RunStatus.PR_WRITTEN, pr_content=content),
        )

        self._step(
            channel, OPEN_PR,
            lambda: self.hosting_factory(request.access_token).create_pull_request(
                request.owner,
                request.repo_name,
                branch_name,
                request.base_branch,
                pr_content.title,
                pr_content.body,
            ),
            lambda ref: ref.to_dict(),
            lambda ref: state.advance(RunStatus.PR_OPENED, pull_request=ref),
        )
