import pytest

from conftest import git
from formbot.catalog import FileChange
from formbot.workspace import (
    BranchLifecycle,
    GitError,
    LifecycleStage,
    WorkspaceError,
    build_commit_message,
)

BRANCH = "formbot-fixes/42"


def test_session_creates_branch_and_restores(repo):
    lifecycle = BranchLifecycle(repo, BRANCH)
    sha = git(repo, "rev-parse", "HEAD")

    with lifecycle.session() as state:
        assert git(repo, "rev-parse", "--abbrev-ref", "HEAD") == BRANCH
        assert state.original_branch == "main"
        assert state.original_sha == sha
        assert state.remote_exists is False
        assert lifecycle.stage is LifecycleStage.BRANCH_CREATED

    assert git(repo, "rev-parse", "--abbrev-ref", "HEAD") == "main"
    assert lifecycle.stage is LifecycleStage.RESTORED
    assert lifecycle.restored is True


def test_session_restores_on_error(repo):
    lifecycle = BranchLifecycle(repo, BRANCH)

    with pytest.raises(RuntimeError):
        with lifecycle.session():
            (repo / "a.css").write_text("changed\n")
            raise RuntimeError("boom")

    assert git(repo, "rev-parse", "--abbrev-ref", "HEAD") == "main"
    # forced checkout discards the half-applied edit
    assert (repo / "a.css").read_text().startswith("@import")


def test_delete_local_branch_reports_absence(repo):
    lifecycle = BranchLifecycle(repo, BRANCH)
    assert lifecycle.delete_local_branch() is False

    git(repo, "branch", BRANCH)
    assert lifecycle.delete_local_branch() is True
    assert git(repo, "branch", "--list", BRANCH) == ""


def test_stale_local_branch_is_replaced(repo):
    git(repo, "branch", BRANCH)
    lifecycle = BranchLifecycle(repo, BRANCH)

    with lifecycle.session():
        assert git(repo, "rev-parse", "--abbrev-ref", "HEAD") == BRANCH


def test_commit_and_force_push(repo, remote):
    lifecycle = BranchLifecycle(repo, BRANCH)

    with lifecycle.session():
        (repo / "a.css").write_text("/* fixed */\n")
        lifecycle.stage_files(["a.css"])
        sha = lifecycle.commit("perf: fix a.css")
        lifecycle.push()
        assert lifecycle.stage is LifecycleStage.PUSHED

    assert git(remote, "rev-parse", BRANCH) == sha
    assert lifecycle.remote_branch_exists() is True

    # a second run sees the remote branch and overwrites it
    again = BranchLifecycle(repo, BRANCH)
    with again.session() as state:
        assert state.remote_exists is True
        (repo / "a.css").write_text("/* fixed again */\n")
        again.stage_files(["a.css"])
        second = again.commit("perf: fix a.css again")
        again.push()

    assert git(remote, "rev-parse", BRANCH) == second
    assert git(remote, "rev-list", "--count", BRANCH) == "2"


def test_push_failure_still_restores(repo):
    git(repo, "remote", "set-url", "origin", str(repo.parent / "missing.git"))
    lifecycle = BranchLifecycle(repo, BRANCH)

    with pytest.raises(GitError) as exc:
        with lifecycle.session():
            (repo / "a.css").write_text("/* fixed */\n")
            lifecycle.stage_files(["a.css"])
            lifecycle.commit("perf: fix")
            lifecycle.push()

    assert "push" in exc.value.command
    assert git(repo, "rev-parse", "--abbrev-ref", "HEAD") == "main"


def test_git_error_carries_command_and_message(repo):
    lifecycle = BranchLifecycle(repo, BRANCH)
    with pytest.raises(GitError) as exc:
        lifecycle._git("checkout", "no-such-branch")

    assert exc.value.command[:2] == ["git", "checkout"]
    assert "no-such-branch" in exc.value.message


def test_refuses_to_start_on_the_fix_branch(repo):
    git(repo, "checkout", "-b", BRANCH)
    with pytest.raises(WorkspaceError):
        with BranchLifecycle(repo, BRANCH).session():
            pass


def test_dirty_files_ignore_state_dir(repo):
    lifecycle = BranchLifecycle(repo, BRANCH)
    (repo / ".formbot" / "logs").mkdir(parents=True)
    (repo / ".formbot" / "logs" / "audit.jsonl").write_text("{}\n")
    assert lifecycle.dirty_files() == []

    (repo / "a.css").write_text("dirty\n")
    assert lifecycle.dirty_files() == [" M a.css"]


def test_remote_check_without_remote_is_false(repo):
    lifecycle = BranchLifecycle(repo, BRANCH, remote="nowhere")
    assert lifecycle.remote_branch_exists() is False


def test_configure_identity(repo):
    lifecycle = BranchLifecycle(repo, BRANCH)
    assert lifecycle.configure_identity("Bot", "bot@example.com") is True
    assert lifecycle.configure_identity("Bot", "bot@example.com") is True
    assert git(repo, "config", "user.name") == "Bot"


def test_commit_message_enumerates_applied_fixes():
    message = build_commit_message("42", [
        FileChange(file_path="a.css", description="Comment out @import in a.css", impact="Faster FCP", success=True),
        FileChange(file_path="b.js", description="broken", success=False),
        FileChange(file_path="c.js", description="Flag DOM access", impact="Better INP", success=True),
    ])

    assert message.startswith("perf: apply 2 automated performance fix(es) for 42")
    assert "1. Comment out @import in a.css" in message
    assert "   Impact: Faster FCP" in message
    assert "2. Flag DOM access" in message
    assert "broken" not in message
