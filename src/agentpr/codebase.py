"""Working copy digests for the codebase analyzer and implementer.

The directory tree and size metrics come from codebase-digest (``cdigest``).
The files themselves are the ones git would track (``git ls-files``), ranked
by how well their paths and contents match the task wording.
"""

from __future__ import annotations

import logging
import re
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import git
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

logger = logging.getLogger(__name__)

# Files that describe a project, always worth showing
ANCHOR_FILES = {"readme.md", "pyproject.toml", "package.json", "setup.py", "cargo.toml", "go.mod"}

STOP_WORDS = {
    "the", "and", "for", "with", "that", "this", "from", "into", "add", "use",
    "make", "should", "when", "are", "not", "all", "new", "can", "will",
}

_WORD_RE = re.compile(r"[a-z0-9]{3,}")

DIGEST_TIMEOUT = 60


@dataclass
class DigestResult:
    """Tree and metrics sections produced by codebase-digest."""

    tree: str
    metrics: str
    success: bool
    error: Optional[str] = None


class CodebaseDigestRunner:
    """Runs ``cdigest`` on a working copy and splits its markdown report."""

    def __init__(self, max_depth: Optional[int] = 6, max_size_kb: int = 200):
        self.max_depth = max_depth
        self.max_size_kb = max_size_kb

    def command(self, repo_path: Path, output_path: Path) -> list[str]:
        cmd = ["cdigest", str(repo_path)]
        if self.max_depth is not None:
            cmd.extend(["-d", str(self.max_depth)])
        cmd.extend([
            "-o", "markdown",
            "--max-size", str(self.max_size_kb),
            "--show-size",
            "--no-content",
            "-f", str(output_path),
        ])
        return cmd

    def analyze(self, repo_path: Path) -> DigestResult:
        """Build the tree and metrics of a working copy.

        Failures are reported in the result rather than raised.
        """
        if not repo_path.is_dir():
            return DigestResult("", "", False, f"Working copy does not exist: {repo_path}")

        with tempfile.TemporaryDirectory(prefix="agentpr-digest-") as tmp:
            output_path = Path(tmp) / "digest.md"
            try:
                result = subprocess.run(
                    self.command(repo_path, output_path),
                    capture_output=True,
                    stdin=subprocess.DEVNULL,
                    text=True,
                    timeout=DIGEST_TIMEOUT,
                    cwd=repo_path,
                )
            except subprocess.TimeoutExpired:
                return DigestResult("", "", False, f"codebase-digest timed out after {DIGEST_TIMEOUT} seconds")
            except FileNotFoundError:
                return DigestResult(
                    "", "", False, "codebase-digest not found. Install with: pip install codebase-digest"
                )

            report = output_path.read_text(encoding="utf-8") if output_path.exists() else ""

        # cdigest can exit non-zero after writing a usable report
        if report.strip():
            tree, metrics = split_report(report)
            return DigestResult(tree=tree, metrics=metrics, success=True)

        detail = (result.stderr or "").strip() or f"exit code {result.returncode}"
        return DigestResult("", "", False, f"codebase-digest failed: {detail}")


def split_report(report: str) -> tuple[str, str]:
    """Pick the tree and metrics sections out of a markdown report.

    Returns the whole report as the tree when no section headings match.
    """
    sections: dict[str, list[str]] = {"tree": [], "metrics": []}
    current = None
    for line in report.splitlines():
        if line.startswith("Debug:") or line.startswith("Analyzing:"):
            continue
        if line.startswith("#"):
            heading = line.lower()
            if any(word in heading for word in ("tree", "structure", "directory")):
                current = "tree"
            elif any(word in heading for word in ("metric", "statistic", "summary")):
                current = "metrics"
            else:
                current = None
            continue
        if current:
            sections[current].append(line)

    tree = "\n".join(sections["tree"]).strip()
    metrics = "\n".join(sections["metrics"]).strip()
    if not tree and not metrics:
        return report.strip(), ""
    return tree, metrics


@dataclass
class CodebaseDigest:
    """Text view of a working copy."""

    tree: str
    files: dict[str, str] = field(default_factory=dict)
    total_files: int = 0
    metrics: str = ""

    def format_files(self) -> str:
        return "\n\n".join(
            f"### {path}\n```\n{content}\n```" for path, content in self.files.items()
        )

    def to_text(self) -> str:
        text = f"## Directory Tree ({self.total_files} files)\n{self.tree}\n\n"
        if self.metrics:
            text += f"## Metrics\n{self.metrics}\n\n"
        return text + f"## File Excerpts\n{self.format_files()}"


def keywords(text: str) -> set[str]:
    """Lowercase words of three or more characters, minus stop words."""
    return {w for w in _WORD_RE.findall(text.lower()) if w not in STOP_WORDS}


def confined_path(working_copy: Path, relative: str) -> Optional[Path]:
    """Path of a file inside the working copy, or None.

    Symlinks and paths that resolve outside the working copy give None, so
    nothing outside the checkout ends up in a prompt.
    """
    root = Path(working_copy)
    path = root / relative
    if path.is_symlink():
        return None
    base = root.resolve()
    resolved = path.resolve()
    if resolved != base and base not in resolved.parents:
        return None
    return path


def list_files(root: Path, max_size_kb: int = 200) -> list[Path]:
    """List tracked and untracked-but-not-ignored files, relative to root."""
    try:
        repo = git.Repo(root)
        output = repo.git.ls_files("--cached", "--others", "--exclude-standard", "-z")
    except (InvalidGitRepositoryError, NoSuchPathError, GitCommandError) as e:
        logger.warning(f"Cannot list files of {root}: {e}")
        return []

    files = []
    for name in sorted(set(filter(None, output.split("\0")))):
        path = confined_path(root, name)
        if path is None or not path.is_file():
            continue
        if path.stat().st_size > max_size_kb * 1024:
            continue
        files.append(Path(name))
    return files


def read_text(path: Path, max_chars: int) -> Optional[str]:
    try:
        content = path.read_text(encoding="utf-8")
    except (UnicodeDecodeError, OSError):
        return None
    if len(content) > max_chars:
        content = content[:max_chars] + "\n... (truncated)"
    return content


def score_file(rel: Path, content: str, terms: set[str]) -> int:
    """Relevance of a file to the task terms.

    Path matches weigh more than content matches.
    """
    path_words = keywords(str(rel).replace("/", " ").replace("_", " ").replace(".", " "))
    score = 3 * len(terms & path_words)
    lowered = content.lower()
    score += sum(1 for term in terms if term in lowered)
    if rel.name.lower() in ANCHOR_FILES:
        score += 2
    return score


def build_digest(
    working_copy: Path,
    task: str,
    max_files: int = 8,
    max_file_chars: int = 4000,
    include_tree: bool = True,
    runner: Optional[CodebaseDigestRunner] = None,
) -> CodebaseDigest:
    """Build a digest of the working copy focused on a task.

    Args:
        working_copy: Root of the checkout.
        task: Task description used to rank files.
        max_files: Number of file excerpts to include.
        max_file_chars: Characters kept from each file.
        include_tree: Run codebase-digest for the tree and metrics.
        runner: Runner to use instead of a default one.

    Returns:
        CodebaseDigest with the tree and the top-ranked excerpts.
    """
    root = Path(working_copy)
    files = list_files(root)
    terms = keywords(task)

    scored = []
    for rel in files:
        content = read_text(root / rel, max_file_chars)
        if content is None:
            continue
        scored.append((score_file(rel, content, terms), str(rel), content))

    scored.sort(key=lambda item: (-item[0], item[1]))
    selected = {path: content for score, path, content in scored[:max_files] if score > 0}

    tree, metrics = "", ""
    if include_tree:
        result = (runner or CodebaseDigestRunner()).analyze(root)
        if result.success:
            tree, metrics = result.tree, result.metrics
        else:
            logger.warning(f"Directory tree unavailable: {result.error}")
            tree = f"[codebase-digest failed: {result.error}]"

    logger.debug(f"Digest of {root}: {len(files)} files, {len(selected)} excerpts")
    return CodebaseDigest(tree=tree, files=selected, total_files=len(files), metrics=metrics)


def read_files(working_copy: Path, paths: list[str], max_chars: int = 8000) -> dict[str, str]:
    """Read the current content of files in the working copy.

    Missing or unreadable files and paths leaving the working copy are
    skipped.
    """
    contents = {}
    for rel in paths:
        path = confined_path(working_copy, rel)
        if path is None or not path.is_file():
            continue
        content = read_text(path, max_chars)
        if content is not None:
            contents[rel] = content
    return contents
