"""
FORMBOT Branch Lifecycle

Owns the git branch used to stage fixes for one originating change:

  START → LOCAL_CLEANUP → BRANCH_CREATED → FILES_STAGED → COMMITTED → PUSHED → RESTORED

Any failure jumps straight to RESTORED. Restoration runs from a context
manager so every exit path checks the original branch back out.
Single working tree, strictly sequential; never run two lifecycles
against the same repository at once.
"""

from __future__ import annotations

import subprocess
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator

from loguru import logger

from formbot.catalog import FileChange
from formbot.state import BranchState


class WorkspaceError(Exception):
    pass


class GitError(WorkspaceError):
    """A git command exited non-zero (or could not run at all)."""

    def __init__(self, command: list[str], message: str, returncode: int | None = None):
        self.command = command
        self.message = message.strip()
        self.returncode = returncode
        super().__init__(f"Git failed: {' '.join(command)}\n{self.message}")


class LifecycleStage(str, Enum):
    START = "start"
    LOCAL_CLEANUP = "local_cleanup"
    BRANCH_CREATED = "branch_created"
    FILES_STAGED = "files_staged"
    COMMITTED = "committed"
    PUSHED = "pushed"
    RESTORED = "restored"


def build_commit_message(change_id: str, changes: Iterable[FileChange]) -> str:
    """Commit message enumerating every applied fix and its impact."""
    applied = [c for c in changes if c.success]
    lines = [
        f"perf: apply {len(applied)} automated performance fix(es) for {change_id}",
        "",
    ]
    for i, change in enumerate(applied, 1):
        lines.append(f"{i}. {change.description}")
        if change.impact:
            lines.append(f"   Impact: {change.impact}")
    return "\n".join(lines).rstrip() + "\n"


class BranchLifecycle:
    """
    Manages the fix branch inside the caller's working tree.
    """

    def __init__(
        self,
        repo_path: Path,
        branch_name: str,
        remote: str = "origin",
        timeout: int = 120,
    ):
        self.repo_path = repo_path.resolve()
        self.branch_name = branch_name
        self.remote = remote
        self.timeout = timeout
        self.stage = LifecycleStage.START
        self.state: BranchState | None = None
        self.restored: bool | None = None

    # -- scoped lifecycle ------------------------------------------------------

    @contextmanager
    def session(self) -> Iterator[BranchState]:
        """
        Record the original branch, clean stale local state, create the
        fix branch from HEAD and hand control to the caller. The original
        branch is checked out again on the way out, whatever happened.
        """
        original_branch = self.current_branch()
        original_sha = self.current_sha()
        if original_branch == self.branch_name:
            raise WorkspaceError(
                f"Already on {self.branch_name}; check out the originating branch first"
            )

        self.state = BranchState(
            fix_branch_name=self.branch_name,
            original_branch=original_branch,
            original_sha=original_sha,
        )
        self.stage = LifecycleStage.START
        self.restored = None

        try:
            self._advance(LifecycleStage.LOCAL_CLEANUP)
            if self.delete_local_branch():
                logger.info(f"[WORKSPACE] Removed stale local branch {self.branch_name}")
            self.state.remote_exists = self.remote_branch_exists()
            if self.state.remote_exists:
                logger.info(f"[WORKSPACE] {self.branch_name} exists on {self.remote}; will force-push")

            self.create_branch()
            yield self.state
        finally:
            self.restored = self.restore()

    def _advance(self, stage: LifecycleStage) -> None:
        logger.debug(f"[WORKSPACE] {self.stage.value} → {stage.value}")
        self.stage = stage

    # -- git operations --------------------------------------------------------

    def configure_identity(self, name: str, email: str) -> bool:
        """Set the committer identity for this repository. Safe to repeat."""
        try:
            self._git("config", "user.name", name)
            self._git("config", "user.email", email)
            return True
        except GitError as e:
            logger.warning(f"[WORKSPACE] Could not configure git user: {e.message}")
            return False

    def current_branch(self) -> str:
        return self._git("rev-parse", "--abbrev-ref", "HEAD", capture=True).strip()

    def current_sha(self) -> str:
        return self._git("rev-parse", "HEAD", capture=True).strip()

    def dirty_files(self, ignore_prefix: str = ".formbot/") -> list[str]:
        """Uncommitted changes, ignoring formbot's own state directory."""
        status = self._git("status", "--porcelain", capture=True)
        return [
            line for line in status.splitlines()
            if line.strip() and not line[3:].startswith(ignore_prefix)
        ]

    def delete_local_branch(self) -> bool:
        """Delete the local fix branch. False when there was nothing to delete."""
        if not self._branch_exists(self.branch_name):
            return False
        self._git("branch", "-D", self.branch_name)
        return True

    def remote_branch_exists(self) -> bool:
        try:
            heads = self._git("ls-remote", "--heads", self.remote, self.branch_name, capture=True)
        except GitError as e:
            logger.warning(f"[WORKSPACE] Remote check failed: {e.message}")
            return False
        return bool(heads.strip())

    def create_branch(self) -> None:
        """Create and check out the fix branch from the current HEAD."""
        self._git("checkout", "-b", self.branch_name)
        self._advance(LifecycleStage.BRANCH_CREATED)
        logger.info(f"[WORKSPACE] Created branch {self.branch_name}")

    def stage_files(self, paths: Iterable[str]) -> None:
        paths = list(paths)
        if not paths:
            raise WorkspaceError("Nothing to stage")
        self._git("add", "--", *paths)
        self._advance(LifecycleStage.FILES_STAGED)

    def commit(self, message: str) -> str:
        self._git("commit", "-m", message)
        sha = self.current_sha()
        self._advance(LifecycleStage.COMMITTED)
        logger.info(f"[WORKSPACE] Committed {sha[:10]} on {self.branch_name}")
        return sha

    def push(self, force: bool = True) -> None:
        """Push the fix branch. Force by default: a previous run may own the remote branch."""
        cmd = ["push", "-u", self.remote, self.branch_name]
        if force:
            cmd.insert(1, "--force")

        self._git(*cmd)
        self._advance(LifecycleStage.PUSHED)
        logger.info(f"[WORKSPACE] Pushed (force={force}): {self.branch_name}")

    def restore(self) -> bool:
        """Best-effort checkout of the original branch. Never raises."""
        if self.state is None:
            return True

        target = self.state.restore_target
        try:
            self._git("checkout", "--force", target)
        except GitError as e:
            logger.error(
                f"[WORKSPACE] Could not restore {target}; the working tree needs "
                f"attention: {e.message}"
            )
            return False
        finally:
            self.stage = LifecycleStage.RESTORED

        logger.info(f"[WORKSPACE] Restored {target}")
        return True

    # -- plumbing --------------------------------------------------------------

    def _branch_exists(self, name: str) -> bool:
        """Check if a local branch exists."""
        res = self._git("branch", "--list", name, capture=True)
        return any(line.strip("* ").strip() == name for line in res.splitlines())

    def _git(self, *args: str, capture: bool = False) -> str:
        return self._run_cmd(["git", *args], cwd=self.repo_path, timeout=self.timeout, capture=capture)

    @staticmethod
    def _run_cmd(cmd: list[str], cwd: Path, timeout: int, capture: bool = False) -> str:
        try:
            result = subprocess.run(cmd, cwd=cwd, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired as e:
            raise GitError(cmd, f"timed out after {timeout}s") from e
        except OSError as e:
            raise GitError(cmd, str(e)) from e

        if result.returncode != 0:
            raise GitError(cmd, result.stderr or result.stdout, result.returncode)
        return result.stdout if capture else ""
