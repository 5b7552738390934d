import pytest
import requests

from formbot.catalog import FileChange
from formbot.config_loader import GitHubConfig
from formbot.publisher import GitHubHost, HostError, PRPublisher, render_pr_body

BRANCH = "formbot-fixes/42"


def _changes():
    return [
        FileChange(file_path="a.css", description="Comment out @import in a.css",
                   impact="Improves FCP", success=True),
        FileChange(file_path="b.css", description="could not apply", success=False),
    ]


def test_nothing_to_publish_returns_none(host):
    publisher = PRPublisher(host)
    assert publisher.publish(BRANCH, "main", "42", []) is None
    assert publisher.publish(BRANCH, "main", "42", [FileChange(file_path="a.css")]) is None
    assert host.calls == []


def test_create_then_update_keeps_number(host):
    publisher = PRPublisher(host)

    first = publisher.publish(BRANCH, "main", "42", _changes())
    assert first.action == "created"
    assert first.files_changed == 1
    assert first.branch == BRANCH
    assert [c.file_path for c in first.fixes] == ["a.css"]

    second = publisher.publish(BRANCH, "main", "42", _changes())
    assert second.action == "updated"
    assert second.number == first.number
    assert host.calls.count("create") == 1
    assert "Updated" in host.pulls[first.number]["body"]


def test_other_base_gets_its_own_pr(host):
    publisher = PRPublisher(host)
    first = publisher.publish(BRANCH, "main", "42", _changes())
    other = publisher.publish(BRANCH, "release", "42", _changes())
    assert other.number != first.number


def test_host_failure_propagates(host):
    host.fail = True
    with pytest.raises(HostError):
        PRPublisher(host).publish(BRANCH, "main", "42", _changes())


def test_body_lists_fixes_and_merge_paths():
    body = render_pr_body("42", [c for c in _changes() if c.success], BRANCH, "main")

    assert "Fixes applied (1)" in body
    assert "Comment out @import in a.css" in body
    assert "`a.css`" in body
    assert "Improves FCP" in body
    assert "Merge pull request" in body
    assert f"git merge --no-ff origin/{BRANCH}" in body
    assert "Updated" not in body


# ---------------------------------------------------------------------------
# GitHub host
# ---------------------------------------------------------------------------

class _Response:
    def __init__(self, status_code, data):
        self.status_code = status_code
        self._data = data
        self.text = str(data)

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return self._data


class _Session:
    def __init__(self, responses):
        self.headers = {}
        self.requests = []
        self._responses = list(responses)

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _config(**overrides):
    values = {"owner": "acme", "repo": "forms", "token": "t0ken"}
    values.update(overrides)
    return GitHubConfig(**values)


def test_github_list_uses_owner_prefixed_head():
    session = _Session([_Response(200, [{"number": 7, "html_url": "https://gh/pull/7", "body": "x"}])])
    gh = GitHubHost(_config(), session=session)

    pulls = gh.list_open_pulls(BRANCH, "main")

    assert pulls[0].number == 7
    method, url, kwargs = session.requests[0]
    assert method == "GET"
    assert url == "https://api.github.com/repos/acme/forms/pulls"
    assert kwargs["params"] == {"state": "open", "head": f"acme:{BRANCH}", "base": "main"}
    assert session.headers["Authorization"] == "Bearer t0ken"


def test_github_create_and_update():
    session = _Session([
        _Response(201, {"number": 8, "html_url": "https://gh/pull/8"}),
        _Response(200, {"number": 8, "html_url": "https://gh/pull/8", "body": "new"}),
    ])
    gh = GitHubHost(_config(), session=session)

    created = gh.create_pull("title", BRANCH, "main", "body")
    updated = gh.update_pull(8, "new")

    assert created.url == "https://gh/pull/8"
    assert session.requests[0][2]["json"]["head"] == BRANCH
    assert session.requests[1][0] == "PATCH"
    assert session.requests[1][1].endswith("/pulls/8")
    assert updated.body == "new"


def test_github_errors_become_host_errors():
    session = _Session([
        _Response(422, {"message": "Validation Failed"}),
        requests.ConnectionError("down"),
    ])
    gh = GitHubHost(_config(), session=session)

    with pytest.raises(HostError) as exc:
        gh.create_pull("title", BRANCH, "main", "body")
    assert exc.value.status_code == 422

    with pytest.raises(HostError):
        gh.list_open_pulls(BRANCH, "main")


def test_github_unconfigured_raises_without_calling():
    session = _Session([])
    gh = GitHubHost(_config(token=None), session=session)
    assert gh.configured is False
    with pytest.raises(HostError):
        gh.list_open_pulls(BRANCH, "main")
    assert session.requests == []
