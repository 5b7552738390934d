"""
FORMBOT CLI — The Interface

  formbot run     --repo <path> --fixes <json> --change-id <id>   (apply + publish)
  formbot suggest --repo <path> --issues <json>                   (issues → fix suggestions)

Plus utilities:
  - formbot status        (check credentials + tools)
  - formbot init <path>   (bootstrap .formbot in a repo)
"""

from __future__ import annotations

import json
import shutil
from pathlib import Path
from typing import Any, Optional

import typer
from dotenv import load_dotenv
from loguru import logger
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from formbot.catalog import ISSUE_KINDS, FixSuggestion, Issue
from formbot.config_loader import FormbotConfig, load_config, validate_api_keys
from formbot.controller import Controller
from formbot.generator import FixGenerator
from formbot.identity import __codename__, __tagline__, __version__, BANNER
from formbot.router import Router

# Load .env from current directory or home
load_dotenv()
load_dotenv(Path.home() / ".formbot" / ".env")

app = typer.Typer(
    name="formbot",
    help=f"{__codename__} — {__tagline__}\nApplies performance fixes and keeps one PR per change.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__codename__} v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
):
    pass


# ---------------------------------------------------------------------------
# Banner
# ---------------------------------------------------------------------------


def _print_banner():
    console.print(f"[bright_green]{BANNER}[/]")
    console.print(f"  [dim]v{__version__} — {__tagline__}[/]\n")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def run(
    repo: Path = typer.Option(..., "--repo", "-r", help="Path to the target repository"),
    fixes: Path = typer.Option(..., "--fixes", "-f", help="JSON list of issues or fix suggestions"),
    change_id: str = typer.Option(..., "--change-id", "-c", help="Originating change (PR number, commit, ...)"),
    base: Optional[str] = typer.Option(None, "--base", "-b", help="PR base branch (default: current branch)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Apply fixes on a dedicated branch and create or update the PR."""
    _print_banner()
    _configure_logging(verbose)

    repo = repo.resolve()
    if not repo.exists():
        console.print(f"[red]Repository not found: {repo}[/]")
        raise typer.Exit(1)

    config = load_config(repo)
    records = _read_records(fixes)
    suggestions = _to_suggestions(records, repo, config)

    controller = Controller(
        repo_path=repo,
        config=config,
        change_id=change_id,
        base_branch=base,
    )
    controller.run(suggestions)

    report = controller.last_report
    status = report.status if report else "unknown"
    status_color = {
        "published": "green",
        "no_fixes": "yellow",
        "nothing_applied": "yellow",
        "publish_failed": "yellow",
    }.get(status, "red")

    console.print(f"\n[bold {status_color}]Status: {status}[/]")
    if report and report.error:
        console.print(f"[dim]{escape(report.error)}[/]")
    if status == "failed":
        raise typer.Exit(1)


@app.command()
def suggest(
    repo: Path = typer.Option(..., "--repo", "-r", help="Path to the target repository"),
    issues: Path = typer.Option(..., "--issues", "-i", help="JSON list of analyzer issues"),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Write suggestions here instead of stdout"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Turn analyzer issues into fix suggestions (AI when configured, templates otherwise)."""
    _configure_logging(verbose)

    repo = repo.resolve()
    config = load_config(repo)
    parsed = _parse_issues(_read_records(issues))

    generator = FixGenerator(Router(config.ai), repo, config.fixes)
    suggestions = generator.suggest_all(parsed)

    payload = json.dumps([s.model_dump(by_alias=True) for s in suggestions], indent=2)
    if out:
        out.write_text(payload + "\n", encoding="utf-8")
        console.print(f"[green]✅ {len(suggestions)} suggestion(s) written to {out}[/]")
    else:
        typer.echo(payload)


@app.command()
def status(
    repo: Optional[Path] = typer.Option(None, "--repo", "-r"),
):
    """Check FORMBOT configuration and readiness."""
    _print_banner()

    config = load_config(repo.resolve() if repo else None)

    keys = validate_api_keys(config)
    key_table = Table(title="Credentials", border_style="cyan")
    key_table.add_column("Key")
    key_table.add_column("Status")

    for key, available in keys.items():
        status_str = "[green]✓ Available[/]" if available else "[red]✗ Missing[/]"
        key_table.add_row(key, status_str)

    console.print(key_table)
    if not keys["AZURE_OPENAI_API_KEY"]:
        console.print("[dim]No AI key: every fix will use its deterministic template.[/]")

    console.print(f"\n[bold]AI:[/]")
    console.print(f"  Endpoint:    {config.ai.endpoint}")
    console.print(f"  Deployment:  {config.ai.deployment}")
    console.print(f"  API version: {config.ai.api_version}")

    console.print(f"\n[bold]Git:[/]")
    console.print(f"  Remote:   {config.git.remote}")
    console.print(f"  Branch:   {config.git.branch_template}")
    console.print(f"  Identity: {config.git.user_name} <{config.git.user_email}>")

    repository = f"{config.github.owner}/{config.github.repo}" if config.github.owner else "(unset)"
    console.print(f"\n[bold]PR host:[/] {config.github.api_url} {repository}")

    tools_table = Table(title="System Tools", border_style="cyan")
    tools_table.add_column("Tool")
    tools_table.add_column("Status")

    for tool in ["git"]:
        found = shutil.which(tool)
        s = f"[green]✓ {found}[/]" if found else "[dim]✗ Not found[/]"
        tools_table.add_row(tool, s)

    console.print(tools_table)


@app.command()
def init(
    repo: Optional[Path] = typer.Argument(None, help="Path to repository"),
):
    """Initialize .formbot directory in a repository."""
    _print_banner()

    repo = (repo or Path.cwd()).resolve()
    fb_dir = repo / ".formbot"
    fb_dir.mkdir(exist_ok=True)
    (fb_dir / "logs").mkdir(exist_ok=True)

    config_path = fb_dir / "config.yaml"
    if not config_path.exists():
        config_path.write_text("""# FORMBOT repo-level config overrides
# These merge with the built-in defaults.

# git:
#   branch_template: "formbot-fixes/{change_id}"
#   remote: origin

# github:
#   owner: my-org
#   repo: my-forms

# fixes:
#   enabled:
#     - css-import-fix
#     - css-background-image-fix
#   max_background_image_fixes: 3
""")

    gitignore = repo / ".gitignore"
    ignore_entries = [".formbot/logs/"]
    if gitignore.exists():
        content = gitignore.read_text()
        additions = [e for e in ignore_entries if e not in content]
        if additions:
            with open(gitignore, "a") as f:
                f.write("\n# FORMBOT\n")
                for e in additions:
                    f.write(f"{e}\n")
    else:
        gitignore.write_text("# FORMBOT\n" + "\n".join(ignore_entries) + "\n")

    console.print(f"[green]✅ Initialized FORMBOT in {fb_dir}[/]")
    console.print(f"  Config:  {config_path}")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _read_records(path: Path) -> list[dict[str, Any]]:
    if not path.exists():
        console.print(f"[red]File not found: {path}[/]")
        raise typer.Exit(1)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid JSON in {path}: {e}[/]")
        raise typer.Exit(1)

    # analyzer reports wrap their findings
    if isinstance(data, dict):
        data = data.get("issues") or data.get("fixes") or []
    if not isinstance(data, list):
        console.print(f"[red]Expected a JSON list in {path}[/]")
        raise typer.Exit(1)
    return [r for r in data if isinstance(r, dict)]


def _parse_issues(records: list[dict[str, Any]]) -> list[Issue]:
    """Validate issue records one by one; a malformed record is skipped."""
    issues: list[Issue] = []
    for record in records:
        try:
            issues.append(Issue.model_validate(record))
        except ValidationError as e:
            logger.warning(f"[CLI] Skipping malformed {record.get('type')} issue: {e}")
    return issues


def _to_suggestions(records: list[dict[str, Any]], repo: Path, config: FormbotConfig) -> list[FixSuggestion | dict]:
    """Fix records pass through raw; analyzer issues go through the generator first."""
    suggestions: list[FixSuggestion | dict] = [r for r in records if r.get("type") not in ISSUE_KINDS]
    issues = _parse_issues([r for r in records if r.get("type") in ISSUE_KINDS])

    if issues:
        generator = FixGenerator(Router(config.ai), repo, config.fixes)
        suggestions.extend(generator.suggest_all(issues))
    return suggestions


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    if verbose:
        logger.add(
            lambda msg: console.print(f"[dim]{escape(msg)}[/]", highlight=False),
            level="DEBUG",
            format="{time:HH:mm:ss} | {level:<7} | {message}",
        )
    else:
        logger.add(
            lambda msg: console.print(f"[dim]{escape(msg)}[/]", highlight=False),
            level="WARNING",
            format="{message}",
        )


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    app()
