"""
FORMBOT PR Publisher

Create-or-update exactly one pull request per originating change.
An open PR for the same head/base gets a fresh body (number kept);
otherwise a new PR is opened. Re-running is how failures are retried.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable

import requests
from loguru import logger

from formbot.catalog import FileChange
from formbot.config_loader import GitHubConfig
from formbot.identity import __codename__, __tagline__
from formbot.state import PullRequestRecord


class HostError(Exception):
    """The PR host refused or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HostPull:
    number: int
    url: str
    body: str = ""


# ---------------------------------------------------------------------------
# Hosts
# ---------------------------------------------------------------------------

class PullRequestHost(ABC):
    """The three REST calls the publisher needs."""

    @abstractmethod
    def list_open_pulls(self, head: str, base: str) -> list[HostPull]:
        ...

    @abstractmethod
    def create_pull(self, title: str, head: str, base: str, body: str) -> HostPull:
        ...

    @abstractmethod
    def update_pull(self, number: int, body: str) -> HostPull:
        ...


class GitHubHost(PullRequestHost):
    """GitHub REST v3 pulls API over a requests.Session."""

    def __init__(self, config: GitHubConfig, session: requests.Session | None = None):
        self.config = config
        self.base_url = config.api_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/vnd.github+json",
            "User-Agent": f"{__codename__.lower()}-publisher",
        })
        if config.token:
            self.session.headers["Authorization"] = f"Bearer {config.token}"

    @property
    def configured(self) -> bool:
        return bool(self.config.token and self.config.owner and self.config.repo)

    @property
    def _pulls_path(self) -> str:
        return f"/repos/{self.config.owner}/{self.config.repo}/pulls"

    def list_open_pulls(self, head: str, base: str) -> list[HostPull]:
        # GitHub filters head as "owner:branch"
        data = self._request("GET", self._pulls_path, params={
            "state": "open",
            "head": f"{self.config.owner}:{head}",
            "base": base,
        })
        return [self._to_pull(p) for p in data or []]

    def create_pull(self, title: str, head: str, base: str, body: str) -> HostPull:
        data = self._request("POST", self._pulls_path, json={
            "title": title,
            "head": head,
            "base": base,
            "body": body,
        })
        return self._to_pull(data)

    def update_pull(self, number: int, body: str) -> HostPull:
        data = self._request("PATCH", f"{self._pulls_path}/{number}", json={"body": body})
        return self._to_pull(data)

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        if not self.configured:
            raise HostError("GitHub host not configured (need GITHUB_TOKEN and GITHUB_REPOSITORY)")

        url = f"{self.base_url}{path}"
        try:
            r = self.session.request(method, url, timeout=self.config.timeout_seconds, **kwargs)
        except requests.RequestException as e:
            raise HostError(f"{method} {path} failed: {e}") from e

        if not r.ok:
            raise HostError(f"{method} {path} returned {r.status_code}: {r.text[:300]}", r.status_code)
        try:
            return r.json()
        except ValueError as e:
            raise HostError(f"{method} {path} returned non-JSON body", r.status_code) from e

    @staticmethod
    def _to_pull(data: dict) -> HostPull:
        return HostPull(
            number=int(data["number"]),
            url=data.get("html_url") or data.get("url", ""),
            body=data.get("body") or "",
        )


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def render_pr_title(originating_id: str, count: int) -> str:
    return f"perf: {count} automated performance fix(es) for {originating_id}"


def render_pr_body(
    originating_id: str,
    changes: list[FileChange],
    fix_branch: str,
    base_branch: str,
    updated: bool = False,
) -> str:
    body = "## ⚡ Automated Performance Fixes\n\n"
    if updated:
        body += (
            "> 🔄 **Updated** by a later run. The branch was force-pushed; "
            "the list below replaces the previous one.\n\n"
        )

    body += f"""**Originating change:** {originating_id}
**Branch:** `{fix_branch}` → `{base_branch}`

### Fixes applied ({len(changes)})
"""
    for i, change in enumerate(changes, 1):
        body += f"{i}. **{change.description}**\n"
        body += f"   - File: `{change.file_path}`\n"
        if change.impact:
            body += f"   - Impact: {change.impact}\n"

    body += f"""
### How to merge

**From the web UI:** review the *Files changed* tab, then click **Merge pull request**.

**From the command line:**
```bash
git fetch origin {fix_branch}
git checkout {base_branch}
git merge --no-ff origin/{fix_branch}
git push origin {base_branch}
```

---
*Generated by {__codename__} — {__tagline__}*
"""
    return body


# ---------------------------------------------------------------------------
# Publisher
# ---------------------------------------------------------------------------

class PRPublisher:
    def __init__(self, host: PullRequestHost):
        self.host = host

    def publish(
        self,
        fix_branch: str,
        base_branch: str,
        originating_id: str,
        changes: Iterable[FileChange],
    ) -> PullRequestRecord | None:
        """
        Create or update the PR for `fix_branch` → `base_branch`.

        Returns None when nothing was applied. Host failures raise HostError.
        """
        applied = [c for c in changes if c.success]
        if not applied:
            logger.info("[PUBLISH] Nothing to publish")
            return None

        existing = self.host.list_open_pulls(fix_branch, base_branch)
        if existing:
            pull = existing[0]
            body = render_pr_body(originating_id, applied, fix_branch, base_branch, updated=True)
            pull = self.host.update_pull(pull.number, body)
            action = "updated"
            logger.info(f"[PUBLISH] Updated PR #{pull.number}: {pull.url}")
        else:
            body = render_pr_body(originating_id, applied, fix_branch, base_branch)
            title = render_pr_title(originating_id, len(applied))
            pull = self.host.create_pull(title, fix_branch, base_branch, body)
            action = "created"
            logger.info(f"[PUBLISH] Created PR #{pull.number}: {pull.url}")

        return PullRequestRecord(
            number=pull.number,
            url=pull.url,
            branch=fix_branch,
            base=base_branch,
            files_changed=len({c.file_path for c in applied}),
            fixes=applied,
            action=action,
        )
