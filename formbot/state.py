from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from formbot.catalog import FileChange


class BranchState(BaseModel):
    """Where the repo was before the fix branch took over, and where it is going."""
    fix_branch_name: str
    original_branch: str
    original_sha: str
    remote_exists: bool = False

    @property
    def restore_target(self) -> str:
        # detached HEAD has no branch name to go back to
        return self.original_sha if self.original_branch == "HEAD" else self.original_branch


class PullRequestRecord(BaseModel):
    """The externally visible result of a run."""
    number: int
    url: str
    branch: str
    base: str = ""
    files_changed: int = 0
    fixes: list[FileChange] = Field(default_factory=list)
    action: Literal["created", "updated"] = "created"


class RunReport(BaseModel):
    """Outcome of one Controller.run(), successful or not."""
    change_id: str
    status: Literal[
        "pending",
        "no_fixes",
        "nothing_applied",
        "published",
        "publish_failed",
        "failed",
    ] = "pending"
    fix_branch: str = ""
    base_branch: str = ""
    commit_sha: str = ""
    changes: list[FileChange] = Field(default_factory=list)
    pull_request: PullRequestRecord | None = None
    error: str = ""
    restored: bool | None = None

    @property
    def applied(self) -> list[FileChange]:
        return [c for c in self.changes if c.success]

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)
