"""
FORMBOT Controller — The Brainstem

It is NOT smart. It is deterministic.

Pipeline: Filter → Branch → Patch (per file) → Commit → Push → Restore → PR

Responsibilities:
  - Reduce the suggestion list to the mechanically-fixable subset
  - Own the fix branch for the duration of a run
  - Contain per-fix failures
  - Leave the repository on the branch it started on
  - Create or update the PR

It never decides what a fix looks like. It only coordinates.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from formbot.audit_logger import AuditLogger
from formbot.catalog import FileChange, FixCatalog, FixSuggestion
from formbot.config_loader import FormbotConfig, load_config
from formbot.event_bus import EventBus
from formbot.patcher import AlreadyApplied, FilePatcher, PatchError
from formbot.publisher import GitHubHost, HostError, PRPublisher, PullRequestHost
from formbot.state import PullRequestRecord, RunReport
from formbot.workspace import BranchLifecycle, WorkspaceError, build_commit_message

console = Console()


class DirtyRepoError(WorkspaceError):
    """Raised when the repository has uncommitted changes."""
    pass


class Controller:
    """
    Runs one batch of fix suggestions for one originating change.

    run() never raises. The outcome of the last run is kept on
    `last_report`; the return value is the PR record or None.
    """

    def __init__(
        self,
        repo_path: Path,
        config: FormbotConfig | None = None,
        change_id: str | int = "",
        base_branch: str | None = None,
        host: PullRequestHost | None = None,
        bus: EventBus | None = None,
    ):
        self.repo_path = repo_path.resolve()
        self.config = config or load_config(repo_path)
        self.change_id = str(change_id)
        self.base_branch = base_branch

        self.patcher = FilePatcher(self.repo_path, self.config.fixes.annotation_tag)
        self.publisher = PRPublisher(host or GitHubHost(self.config.github))

        if bus is None:
            bus = EventBus()
            AuditLogger(self.repo_path / self.config.workspace.log_dir / "audit.jsonl", bus)
        self.bus = bus

        self.last_report: RunReport | None = None
        self._lifecycle: BranchLifecycle | None = None

    def run(self, suggestions: Iterable[FixSuggestion | dict]) -> PullRequestRecord | None:
        """Apply, commit, push and publish. Returns the PR record or None."""
        report = RunReport(change_id=self.change_id)
        self.last_report = report
        self._lifecycle = None

        try:
            return self._run(list(suggestions), report)
        except Exception as e:
            logger.exception("[CONTROLLER] Run failed")
            report.status = "failed"
            report.error = str(e)
            if self._lifecycle is not None:
                report.restored = self._lifecycle.restored
            self._emit("run_failed", {"error": str(e), "restored": report.restored})
            console.print(f"[red]💥 Error: {e}[/]")
            return None
        finally:
            self._print_summary(report)

    # -----------------------------------------------------------------------
    # Pipeline
    # -----------------------------------------------------------------------

    def _run(self, suggestions: list[FixSuggestion | dict], report: RunReport) -> PullRequestRecord | None:
        # ── 1. Filter ──
        eligible = FixCatalog(suggestions, enabled=self.config.fixes.enabled).eligible()
        if not eligible:
            logger.info("[CONTROLLER] No mechanically-fixable suggestions")
            report.status = "no_fixes"
            return None

        git = self.config.git
        lifecycle = BranchLifecycle(
            self.repo_path,
            git.branch_for(self.change_id),
            remote=git.remote,
            timeout=git.timeout_seconds,
        )
        self._preflight(lifecycle)
        self._lifecycle = lifecycle

        report.fix_branch = lifecycle.branch_name
        self._emit("run_started", {"fixes": len(eligible), "branch": lifecycle.branch_name})
        console.print(Panel(
            f"[bold green]Change:[/] {self.change_id}\n"
            f"[bold]Fixes:[/] {len(eligible)} eligible of {len(suggestions)}  |  "
            f"[bold]Branch:[/] {lifecycle.branch_name}",
            title="⚡ FORMBOT",
            border_style="bright_green",
        ))

        # ── 2. Identity ──
        lifecycle.configure_identity(git.user_name, git.user_email)

        # ── 3-6. Branch, patch, commit, push; restore on the way out ──
        try:
            with lifecycle.session() as state:
                report.base_branch = self.base_branch or state.original_branch
                self._emit("branch_created", {
                    "branch": state.fix_branch_name,
                    "original_branch": state.original_branch,
                    "original_sha": state.original_sha,
                    "remote_exists": state.remote_exists,
                })

                report.changes = self._apply_all(eligible)
                applied = report.applied
                if applied:
                    lifecycle.stage_files(dict.fromkeys(c.file_path for c in applied))
                    report.commit_sha = lifecycle.commit(build_commit_message(self.change_id, applied))
                    lifecycle.push(force=True)
                    self._emit("pushed", {"branch": state.fix_branch_name, "sha": report.commit_sha})
        finally:
            report.restored = lifecycle.restored
            if lifecycle.restored is not None:
                self._emit("branch_restored", {"branch": lifecycle.state.restore_target, "ok": lifecycle.restored})

        if not applied:
            logger.warning("[CONTROLLER] No fix applied; nothing committed")
            report.status = "nothing_applied"
            return None

        # ── 7. Publish ──
        try:
            record = self.publisher.publish(report.fix_branch, report.base_branch, self.change_id, applied)
        except HostError as e:
            # the pushed branch stays; a re-run retries the publish
            logger.error(f"[PUBLISH] {e}")
            report.status = "publish_failed"
            report.error = str(e)
            self._emit("run_failed", {"error": str(e), "stage": "publish"})
            return None

        report.pull_request = record
        report.status = "published"
        self._emit("pr_published", {
            "number": record.number,
            "url": record.url,
            "action": record.action,
            "files_changed": record.files_changed,
        })
        return record

    def _preflight(self, lifecycle: BranchLifecycle) -> None:
        """Refuse to start on a dirty tree or a detached HEAD without a base."""
        dirty = lifecycle.dirty_files(ignore_prefix=self.config.workspace.state_dir.rstrip("/") + "/")
        if dirty:
            console.print("[red]🚫 Cannot run: repository has uncommitted changes:[/]")
            for f in dirty[:5]:
                console.print(f"  [dim]{f}[/]")
            raise DirtyRepoError("Clean your repository before running FORMBOT.")

        if self.base_branch is None and lifecycle.current_branch() == "HEAD":
            raise WorkspaceError("Detached HEAD: pass a base branch for the PR")

    def _apply_all(self, eligible: list[FixSuggestion]) -> list[FileChange]:
        """Apply every fix; a failing fix is recorded and skipped."""
        changes: list[FileChange] = []

        for fix in eligible:
            try:
                change = self.patcher.apply(fix)
            except AlreadyApplied as e:
                logger.info(f"[PATCH] {e}")
                change = FileChange(file_path=fix.file, description=fix.description, error=str(e))
            except (PatchError, OSError, UnicodeDecodeError) as e:
                logger.warning(f"[PATCH] Skipping {fix.type} on {fix.file}: {e}")
                change = FileChange(file_path=fix.file, description=fix.description, error=str(e))

            changes.append(change)
            self._emit("fix_applied" if change.success else "fix_failed", {
                "file": change.file_path,
                "type": fix.type,
                "description": change.description,
                "error": change.error,
            })

        return changes

    # -----------------------------------------------------------------------
    # Display / events
    # -----------------------------------------------------------------------

    def _print_summary(self, report: RunReport) -> None:
        if report.changes:
            table = Table(title="Fixes", border_style="magenta")
            table.add_column("File")
            table.add_column("Result")
            table.add_column("Description")
            for change in report.changes:
                result = "[green]applied[/]" if change.success else f"[yellow]skipped[/] {change.error[:60]}"
                table.add_row(change.file_path, result, change.description)
            console.print(table)

        if report.pull_request:
            pr = report.pull_request
            console.print(Panel(
                f"PR #{pr.number} ({pr.action}): {pr.url}\n"
                f"Files changed: {pr.files_changed}",
                title="✅ Published",
                border_style="green",
            ))

    def _emit(self, event_type: str, payload: dict) -> None:
        payload = {"change_id": self.change_id, **payload}
        self.bus.emit(event_type, "controller", payload)
