import subprocess
from pathlib import Path

import pytest

from formbot.publisher import HostError, HostPull, PullRequestHost


A_CSS = "@import url('x.css');\nbody { color: red; }\n"

B_CSS = """.hero {
  background-image: url('/content/dam/hero.png');
  height: 300px;
}
"""

FUNCTIONS_JS = """/**
 * Loads the country list.
 */
function fetchCountries(globals) {
  if (globals.field) {
    return fetch('/api/countries').then(r => r.json());
  }
  return [];
}

const highlight = function (globals) {
  document.querySelector('.panel').style.display = 'none';
};
"""


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True, text=True)
    return result.stdout.strip()


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    """A working repo on `main` with one commit, pushed to a bare `origin`."""
    remote = tmp_path / "remote.git"
    subprocess.run(["git", "init", "--bare", str(remote)], check=True, capture_output=True)

    work = tmp_path / "work"
    work.mkdir()
    git(work, "init")
    git(work, "symbolic-ref", "HEAD", "refs/heads/main")
    git(work, "config", "user.name", "Test User")
    git(work, "config", "user.email", "test@example.com")
    git(work, "config", "commit.gpgsign", "false")

    (work / "a.css").write_text(A_CSS)
    (work / "styles").mkdir()
    (work / "styles" / "b.css").write_text(B_CSS)
    (work / "scripts").mkdir()
    (work / "scripts" / "functions.js").write_text(FUNCTIONS_JS)

    git(work, "add", ".")
    git(work, "commit", "-m", "init")
    git(work, "remote", "add", "origin", str(remote))
    git(work, "push", "-u", "origin", "main")
    return work


@pytest.fixture
def remote(repo: Path) -> Path:
    return repo.parent / "remote.git"


class FakeHost(PullRequestHost):
    """In-memory PR host keyed by (head, base)."""

    def __init__(self):
        self.pulls: dict[int, dict] = {}
        self.calls: list[str] = []
        self.fail = False
        self._next = 1

    def list_open_pulls(self, head, base):
        self.calls.append("list")
        self._check()
        return [
            HostPull(number=n, url=p["url"], body=p["body"])
            for n, p in self.pulls.items()
            if p["head"] == head and p["base"] == base
        ]

    def create_pull(self, title, head, base, body):
        self.calls.append("create")
        self._check()
        number = self._next
        self._next += 1
        self.pulls[number] = {
            "title": title, "head": head, "base": base, "body": body,
            "url": f"https://example.test/pull/{number}",
        }
        return HostPull(number=number, url=self.pulls[number]["url"], body=body)

    def update_pull(self, number, body):
        self.calls.append("update")
        self._check()
        self.pulls[number]["body"] = body
        return HostPull(number=number, url=self.pulls[number]["url"], body=body)

    def _check(self):
        if self.fail:
            raise HostError("host unavailable", 503)


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()
