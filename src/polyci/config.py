# config.py
from __future__ import annotations

import os
import platform
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional

DEFAULT_STATE_DIR = ".polyci"
DEFAULT_RETENTION_DAYS = 7
DEFAULT_CACHE_VERSION = "v1"
DEFAULT_NOTIFY_CHANNEL = "ci-notifications"
DEFAULT_SLACK_API = "https://slack.com/api"


def _platform_name() -> str:
    # mirrors runner.os: Linux / macOS / Windows
    name = platform.system()
    return "macOS" if name == "Darwin" else (name or "Unknown")


def _frozen(env: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return MappingProxyType({str(k): str(v) for k, v in (env or {}).items()})


@dataclass(frozen=True)
class PipelineConfig:
    """
    Immutable configuration for one pipeline run.

    Loaded once at run start and handed to every component. Workflow-level
    env pins (tool versions etc.) live in `env`, which is read-only.
    """
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state_dir: Path = Path(DEFAULT_STATE_DIR)
    retention_days: int = DEFAULT_RETENTION_DAYS
    cache_version: str = DEFAULT_CACHE_VERSION
    platform: str = field(default_factory=_platform_name)
    env: Mapping[str, str] = field(default_factory=lambda: _frozen({}))

    repository: str = ""
    branch: str = ""
    server_url: str = ""

    notify_channel: str = DEFAULT_NOTIFY_CHANNEL
    slack_token: str | None = None
    slack_api: str = DEFAULT_SLACK_API

    coverage_url: str | None = None
    coverage_token: str | None = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "PipelineConfig":
        environ = os.environ if environ is None else environ
        cfg = cls(
            state_dir=Path(environ.get("POLYCI_STATE_DIR", DEFAULT_STATE_DIR)),
            retention_days=int(environ.get("POLYCI_RETENTION_DAYS", str(DEFAULT_RETENTION_DAYS))),
            cache_version=environ.get("POLYCI_CACHE_VERSION", DEFAULT_CACHE_VERSION),
            repository=environ.get("POLYCI_REPOSITORY", ""),
            server_url=environ.get("POLYCI_SERVER_URL", ""),
            notify_channel=environ.get("POLYCI_NOTIFY_CHANNEL", DEFAULT_NOTIFY_CHANNEL),
            slack_token=environ.get("SLACK_BOT_TOKEN") or None,
            slack_api=environ.get("POLYCI_SLACK_API", DEFAULT_SLACK_API),
            coverage_url=environ.get("POLYCI_COVERAGE_URL") or None,
            coverage_token=environ.get("POLYCI_COVERAGE_TOKEN") or None,
        )
        return cfg.with_overrides(**overrides) if overrides else cfg

    def with_overrides(self, **changes) -> "PipelineConfig":
        if "env" in changes:
            changes["env"] = _frozen(changes["env"])
        if "state_dir" in changes:
            changes["state_dir"] = Path(changes["state_dir"])
        return replace(self, **changes)

    @property
    def cache_dir(self) -> Path:
        return self.state_dir / "cache"

    @property
    def artifact_dir(self) -> Path:
        return self.state_dir / "artifacts"

    @property
    def runs_dir(self) -> Path:
        return self.state_dir / "runs"

    @property
    def work_dir(self) -> Path:
        return self.state_dir / "work" / self.run_id

    @property
    def run_url(self) -> str:
        if not self.server_url or not self.repository:
            return f"run {self.run_id}"
        return f"{self.server_url.rstrip('/')}/{self.repository}/runs/{self.run_id}"
