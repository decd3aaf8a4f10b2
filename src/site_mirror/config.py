from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping

MODES = ("link", "hosted")

DEFAULT_FIRECRAWL_URL = "http://localhost:3002"


class ConfigError(ValueError):
    """Invalid process configuration."""


def _int_env(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = (environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e
    if value < 0:
        raise ConfigError(f"{name} must be >= 0, got {value}")
    return value


@dataclass(frozen=True)
class MirrorSettings:
    working_dir: Path
    mode: str = "link"
    max_pages: int = 100
    timeout_s: int = 45
    per_host_delay_s: float = 0.0
    firecrawl_url: str = DEFAULT_FIRECRAWL_URL
    firecrawl_api_key: str = ""
    poll_interval_s: float = 2.0
    max_polls: int = 900
    log_level: str = "INFO"
    show_progress: bool = True

    def __post_init__(self) -> None:
        if self.mode not in MODES:
            raise ConfigError(f"mode must be one of {', '.join(MODES)}, got {self.mode!r}")
        if self.max_pages < 0:
            raise ConfigError("max_pages must be >= 0")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "MirrorSettings":
        env = os.environ if environ is None else environ
        workdir = (
            env.get("SITE_MIRROR_WORKDIR")
            or env.get("GPTSCRIPT_WORKSPACE_DIR")
            or os.getcwd()
        )
        return cls(
            working_dir=Path(workdir).resolve(),
            mode=(env.get("SITE_MIRROR_MODE") or "link").strip().lower(),
            max_pages=_int_env(env, "SITE_MIRROR_MAX_PAGES", 100),
            firecrawl_url=env.get("FIRECRAWL_URL") or DEFAULT_FIRECRAWL_URL,
            firecrawl_api_key=env.get("FIRECRAWL_API_KEY") or "",
            log_level=(env.get("SITE_MIRROR_LOG_LEVEL") or "INFO").upper(),
        )

    def with_overrides(self, **overrides: Any) -> "MirrorSettings":
        changes = {k: v for k, v in overrides.items() if v is not None}
        if "working_dir" in changes:
            changes["working_dir"] = Path(changes["working_dir"]).resolve()
        return replace(self, **changes)
