"""
Configuration loader for FORMBOT.
Merges defaults with per-repo .formbot/config.yaml overrides,
then applies environment overrides for credentials.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class AIConfig(BaseModel):
    endpoint: str = "https://forms-azure-openai-stg-eastus2.openai.azure.com/"
    deployment: str = "gpt-4.1-garage-week"
    api_version: str = "2024-12-01-preview"
    api_key: str | None = None
    temperature: float = 0.3
    max_tokens: int = 1000


class GitConfig(BaseModel):
    remote: str = "origin"
    user_name: str = "AEM Forms Performance Bot"
    user_email: str = "performance-bot@github-actions"
    branch_template: str = "formbot-fixes/{change_id}"
    timeout_seconds: int = 120

    def branch_for(self, change_id: str | int) -> str:
        return self.branch_template.format(change_id=change_id)


class GitHubConfig(BaseModel):
    api_url: str = "https://api.github.com"
    owner: str = ""
    repo: str = ""
    token: str | None = None
    timeout_seconds: int = 30


class FixesConfig(BaseModel):
    enabled: list[str] = Field(default_factory=lambda: [
        "css-import-fix",
        "css-background-image-fix",
        "http-request-in-custom-function-fix",
        "dom-access-in-custom-function-fix",
    ])
    max_background_image_fixes: int = 3
    annotation_tag: str = "@formbot-perf"


class WorkspaceConfig(BaseModel):
    state_dir: str = ".formbot"
    log_dir: str = ".formbot/logs"


class FormbotConfig(BaseModel):
    ai: AIConfig = Field(default_factory=AIConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    fixes: FixesConfig = Field(default_factory=FixesConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"

# env var -> (section, key)
_ENV_OVERRIDES = {
    "AZURE_OPENAI_API_KEY": ("ai", "api_key"),
    "AZURE_OPENAI_ENDPOINT": ("ai", "endpoint"),
    "AZURE_OPENAI_DEPLOYMENT": ("ai", "deployment"),
    "AZURE_OPENAI_API_VERSION": ("ai", "api_version"),
    "GITHUB_TOKEN": ("github", "token"),
    "GITHUB_API_URL": ("github", "api_url"),
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _env_overrides(environ: dict[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for var, (section, key) in _ENV_OVERRIDES.items():
        value = environ.get(var)
        if value:
            overrides.setdefault(section, {})[key] = value

    # GITHUB_REPOSITORY is "owner/repo" in Actions
    repository = environ.get("GITHUB_REPOSITORY", "")
    if "/" in repository:
        owner, repo = repository.split("/", 1)
        overrides.setdefault("github", {}).update({"owner": owner, "repo": repo})

    return overrides


def load_config(
    repo_path: Path | None = None,
    environ: dict[str, str] | None = None,
) -> FormbotConfig:
    """
    Load config by merging:
      1. Built-in defaults (formbot/config.yaml)
      2. Repo-level overrides (<repo>/.formbot/config.yaml)
      3. Environment variable overrides (credentials, endpoint, repository)

    This is the only place the process environment is read; everything
    downstream receives the resulting FormbotConfig explicitly.
    """
    # 1. Built-in defaults
    with open(_DEFAULT_CONFIG_PATH, "r") as f:
        base: dict[str, Any] = yaml.safe_load(f) or {}

    # 2. Repo overrides
    if repo_path:
        repo_config = repo_path / ".formbot" / "config.yaml"
        if repo_config.exists():
            with open(repo_config, "r") as f:
                overrides: dict[str, Any] = yaml.safe_load(f) or {}
            base = _deep_merge(base, overrides)

    # 3. Env overrides
    env = os.environ if environ is None else environ
    base = _deep_merge(base, _env_overrides(dict(env)))

    return FormbotConfig(**base)


def validate_api_keys(config: FormbotConfig | None = None) -> dict[str, bool]:
    """Check which credentials are available."""
    if config is not None:
        return {
            "AZURE_OPENAI_API_KEY": bool(config.ai.api_key),
            "GITHUB_TOKEN": bool(config.github.token),
        }
    return {
        "AZURE_OPENAI_API_KEY": bool(os.environ.get("AZURE_OPENAI_API_KEY")),
        "GITHUB_TOKEN": bool(os.environ.get("GITHUB_TOKEN")),
    }
