"""CLI entrypoint for agentpr.

Runs a task from the terminal, serves the HTTP API, and lists the
repositories, branches and models a run can use.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .config import Config
from .events import ProgressChannel
from .github_client import HostingError
from .models import ProgressEvent, ROLES, TaskRequest, TaskValidationError
from .ollama_client import GenerationError
from .services import create_generation_client, create_hosting_client, create_orchestrator

app = typer.Typer(
    name="agentpr",
    help="Turn a task description into a reviewed pull request.",
    add_completion=False,
)

console = Console()

SEVERITY_STYLES = {
    "info": "cyan",
    "success": "green",
    "warning": "yellow",
    "error": "bold red",
}

SEVERITY_ICONS = {
    "info": "..",
    "success": "ok",
    "warning": "!!",
    "error": "xx",
}


def setup_logging(verbose: bool = False, level_name: str = "WARNING") -> None:
    """Configure logging with Rich handler.

    Args:
        verbose: If True, set DEBUG level.
        level_name: Level otherwise. Runs use WARNING so progress events
            stay readable.
    """
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"agentpr version {__version__}")
        raise typer.Exit()


class ConsoleObserver:
    """Prints progress events as they arrive."""

    def __init__(self, show_payload: bool = False):
        self.show_payload = show_payload

    def __call__(self, event: ProgressEvent) -> None:
        severity = event.severity.value
        style = SEVERITY_STYLES.get(severity, "white")
        console.print(f"[{style}]{SEVERITY_ICONS.get(severity, '  ')} {event.message}[/{style}]")

        payload = event.payload or {}
        if "branchName" in payload and severity == "success":
            console.print(f"   [dim]branch:[/dim] {payload['branchName']}")
        if "prUrl" in payload:
            console.print(f"   [bold]{payload['prUrl']}[/bold]")
        if self.show_payload and "plan" in payload:
            console.print(payload["plan"], markup=False)


def parse_model_overrides(values: Optional[List[str]]) -> dict[str, str]:
    """Parse ``role=model`` pairs.

    Raises:
        typer.BadParameter: On malformed pairs or unknown roles.
    """
    overrides = {}
    for value in values or []:
        role, sep, model = value.partition("=")
        role = role.strip()
        if not sep or not role or not model.strip():
            raise typer.BadParameter(f"Expected role=model, got {value!r}")
        if role not in ROLES:
            raise typer.BadParameter(f"Unknown role {role!r}. Roles: {', '.join(ROLES)}")
        overrides[role] = model.strip()
    return overrides


def load_config(config_dir: Optional[Path], mock: bool) -> Config:
    config = Config.from_env(config_dir)
    if mock:
        config.mock_mode = True

    errors = config.validate()
    if errors:
        console.print("[red]Configuration errors:[/red]")
        for error in errors:
            console.print(f"  - {error}")
        raise typer.Exit(1)
    return config


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Turn a task description into a reviewed pull request."""
    pass


@app.command()
def run(
    repo: str = typer.Option(..., "--repo", "-r", help="Target repository as owner/name."),
    task: str = typer.Option(..., "--task", "-t", help="What to change, in plain language."),
    base: str = typer.Option("main", "--base", "-b", help="Branch to start from and open the PR against."),
    token: Optional[str] = typer.Option(
        None,
        "--token",
        envvar="GITHUB_TOKEN",
        help="GitHub access token (defaults to $GITHUB_TOKEN).",
    ),
    model: Optional[str] = typer.Option(
        None,
        "--model",
        "-m",
        help="Model for every stage (overrides models.yaml default).",
    ),
    model_for: Optional[List[str]] = typer.Option(
        None,
        "--model-for",
        help="Model for one stage as role=model. Repeatable.",
    ),
    config_dir: Optional[Path] = typer.Option(
        None,
        "--config-dir",
        "-c",
        help="Directory containing models.yaml.",
    ),
    mock: bool = typer.Option(
        False,
        "--mock",
        help="Use mock generation, git and GitHub collaborators.",
    ),
    show_plan: bool = typer.Option(False, "--show-plan", help="Print the generated plan."),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
) -> None:
    """Run one task end to end and open a pull request.

    Examples:
        agentpr run --repo octocat/hello --task "Add a health check endpoint"

        agentpr run -r octocat/hello -t "Fix typo in README" --model-for reviewer=llama3.1:8b

        agentpr run -r octocat/hello -t "Add docs" --mock
    """
    setup_logging(verbose)
    config = load_config(config_dir, mock)

    overrides = parse_model_overrides(model_for)
    if model:
        config.models.default = model

    token = token or config.github_token
    if mock and not token:
        token = "mock-token"

    try:
        request = TaskRequest(
            access_token=token or "",
            repository=repo,
            base_branch=base,
            task_description=task,
            models=config.models.assignment(overrides),
        )
        request.validate()
    except TaskValidationError as e:
        console.print("[red]Invalid task:[/red]")
        for problem in e.problems:
            console.print(f"  - {problem}")
        raise typer.Exit(1)

    console.print(f"[bold]Task:[/bold] {task}")
    console.print(f"[dim]{repo}@{base}{' (mock)' if config.mock_mode else ''}[/dim]\n")

    orchestrator = create_orchestrator(config)
    channel = ProgressChannel(ConsoleObserver(show_payload=show_plan))
    outcome = orchestrator.run(request, channel)

    if not outcome.success:
        raise typer.Exit(1)

    console.print(
        f"\n[bold green]Pull request #{outcome.pull_request.number} opened:[/bold green] "
        f"{outcome.pull_request.url}"
    )


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Interface to bind."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to listen on."),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
) -> None:
    """Serve the HTTP API."""
    from .server import run_server

    config = Config.from_env()
    setup_logging(verbose, config.log_level)
    bind_host = host or config.host
    bind_port = port or config.port
    console.print(f"[bold]agentpr API[/bold] on http://{bind_host}:{bind_port}")
    run_server(host=bind_host, port=bind_port, log_level=config.log_level.lower())


@app.command()
def repos(
    token: Optional[str] = typer.Option(None, "--token", envvar="GITHUB_TOKEN", help="GitHub access token."),
    mock: bool = typer.Option(False, "--mock", help="Use the mock GitHub client."),
) -> None:
    """List repositories the token can access."""
    config = load_config(None, mock)
    token = token or config.github_token
    if not token and not config.mock_mode:
        console.print("[red]Error:[/red] GitHub token is required (--token or $GITHUB_TOKEN)")
        raise typer.Exit(1)

    try:
        repositories = create_hosting_client(config, token or "mock-token").list_repositories()
    except HostingError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    table = Table(title="Repositories")
    table.add_column("Repository", style="cyan")
    table.add_column("Default branch")
    table.add_column("Private")
    for item in repositories:
        table.add_row(item["full_name"] or "", item["default_branch"] or "", "yes" if item["private"] else "no")
    console.print(table)


@app.command()
def branches(
    repo: str = typer.Option(..., "--repo", "-r", help="Repository as owner/name."),
    token: Optional[str] = typer.Option(None, "--token", envvar="GITHUB_TOKEN", help="GitHub access token."),
    mock: bool = typer.Option(False, "--mock", help="Use the mock GitHub client."),
) -> None:
    """List branches of a repository."""
    config = load_config(None, mock)
    owner, sep, name = repo.partition("/")
    token = token or config.github_token
    if not sep or not owner or not name:
        console.print(f"[red]Error:[/red] Repository must look like owner/name, got {repo!r}")
        raise typer.Exit(1)
    if not token and not config.mock_mode:
        console.print("[red]Error:[/red] GitHub token is required (--token or $GITHUB_TOKEN)")
        raise typer.Exit(1)

    try:
        items = create_hosting_client(config, token or "mock-token").list_branches(owner, name)
    except HostingError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    table = Table(title=f"Branches of {repo}")
    table.add_column("Branch", style="cyan")
    table.add_column("Protected")
    for item in items:
        table.add_row(item["name"] or "", "yes" if item["protected"] else "no")
    console.print(table)


@app.command()
def models(
    mock: bool = typer.Option(False, "--mock", help="Use the mock generation client."),
) -> None:
    """List models available on the generation backend."""
    config = load_config(None, mock)
    try:
        available = create_generation_client(config).list_models()
    except GenerationError as e:
        console.print(f"[red]Error:[/red] {e}")
        console.print("[dim]Hint: start Ollama with: ollama serve[/dim]")
        raise typer.Exit(1)

    table = Table(title="Models")
    table.add_column("Model", style="cyan")
    table.add_column("Size (GB)", justify="right")
    for item in available:
        table.add_row(item["name"], f"{item['size'] / 1e9:.1f}")
    console.print(table)

    assignment = config.models.assignment()
    console.print("\n[bold]Stage assignment[/bold]")
    for role in ROLES:
        console.print(f"  {role}: {assignment[role]}")


if __name__ == "__main__":
    app()
