import json

from typer.testing import CliRunner

from formbot import __version__
from formbot.cli import app

runner = CliRunner()


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"FORMBOT v{__version__}" in result.stdout


def test_run_with_nothing_fixable(tmp_path):
    fixes = tmp_path / "fixes.json"
    fixes.write_text(json.dumps([{"type": "slow-rule", "file": "a.css"}]))

    result = runner.invoke(app, ["run", "--repo", str(tmp_path), "--fixes", str(fixes), "--change-id", "42"])

    assert result.exit_code == 0
    assert "no_fixes" in result.stdout


def test_run_rejects_missing_repo(tmp_path):
    fixes = tmp_path / "fixes.json"
    fixes.write_text("[]")

    result = runner.invoke(app, [
        "run", "--repo", str(tmp_path / "missing"), "--fixes", str(fixes), "--change-id", "42",
    ])
    assert result.exit_code == 1


def test_suggest_writes_templates(tmp_path, monkeypatch):
    monkeypatch.delenv("AZURE_OPENAI_API_KEY", raising=False)
    (tmp_path / "a.css").write_text("@import url('x.css');\n")
    issues = tmp_path / "issues.json"
    issues.write_text(json.dumps({"issues": [
        {"type": "css-import-blocking", "file": "a.css", "line": 1, "importUrl": "x.css"},
    ]}))
    out = tmp_path / "suggestions.json"

    result = runner.invoke(app, ["suggest", "--repo", str(tmp_path), "--issues", str(issues), "--out", str(out)])

    assert result.exit_code == 0
    suggestions = json.loads(out.read_text())
    assert suggestions[0]["type"] == "css-import-fix"
    assert suggestions[0]["originalCode"] == "@import url('x.css');"


def test_init_bootstraps_repo(tmp_path):
    result = runner.invoke(app, ["init", str(tmp_path)])

    assert result.exit_code == 0
    assert (tmp_path / ".formbot" / "config.yaml").exists()
    assert ".formbot/logs/" in (tmp_path / ".gitignore").read_text()


def test_status(tmp_path):
    result = runner.invoke(app, ["status", "--repo", str(tmp_path)])
    assert result.exit_code == 0
    assert "AZURE_OPENAI_API_KEY" in result.stdout


def test_run_skips_malformed_issue_records(tmp_path, monkeypatch):
    monkeypatch.delenv("AZURE_OPENAI_API_KEY", raising=False)
    fixes = tmp_path / "fixes.json"
    fixes.write_text(json.dumps([
        {"type": "css-import-blocking", "file": "a.css", "line": "n/a"},
        {"type": "rule-cycle", "file": None},
    ]))

    result = runner.invoke(app, ["run", "--repo", str(tmp_path), "--fixes", str(fixes), "--change-id", "42"])

    assert result.exit_code == 0
    assert "no_fixes" in result.stdout
