"""
Loading and validation of the A11yScout configuration.

The schema is a Pydantic model; values come from a YAML or JSON file and
may be overridden by the environment variables the scanner service has
always honoured (``SCANNER_MAX_CONCURRENT``, ``SCANNER_MAX_ATTEMPTS``,
``SCANNER_TIMEOUT``, ``QUEUE_CHECK_INTERVAL``, ``DB_PATH``).
"""
from __future__ import annotations

import errno
import json
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from a11y_scout.crawler.url_filter import (
    BLOCKED_EXTENSIONS,
    MAX_URL_LENGTH,
    REPORT_MARKERS,
    UrlPolicy,
)


class ScoutConfig(BaseModel):
    """Configuration shared by the crawler, the queue processor and the CLI."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    database: str = Field("data/a11y_scout.db", min_length=1, description="SQLite file of the queue and results.")

    # crawl limits
    max_pages: int = Field(100, ge=1, description="Default page cap for a crawl.")
    max_depth: int = Field(5, ge=0, description="Default link depth for a crawl.")
    page_timeout: float = Field(30.0, gt=0, description="Fetch/analyze timeout per page (seconds).")
    politeness_delay: float = Field(0.5, ge=0, description="Pause between two pages of one crawl.")
    user_agent: str = Field("A11yScout/1.0 (+accessibility scanner)", min_length=1)
    retry_times: int = Field(2, ge=0, description="Retries for 429/5xx responses.")
    include_documents: bool = Field(False, description="Analyze same-site PDF documents.")
    expand_to_queue: bool = Field(False, description="Also push discovered links into the durable queue.")
    max_url_length: int = Field(MAX_URL_LENGTH, ge=16)

    # scheduler
    max_concurrent_scans: int = Field(2, ge=1, description="Domains crawled at the same time.")
    max_attempts: int = Field(3, ge=1, description="Consecutive failures before a URL is dropped.")
    startup_timeout: float = Field(45.0, gt=0, description="Crawler resource acquisition timeout.")
    poll_interval: float = Field(15.0, gt=0, description="Seconds between scheduling passes.")
    reconcile_interval: float = Field(120.0, gt=0, description="Seconds between stale-lock sweeps.")
    batch_size: int = Field(20, ge=1, description="Queue entries inspected per scheduling pass.")

    @field_validator("user_agent", mode="before")
    def _strip_user_agent(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v

    def url_policy(self) -> UrlPolicy:
        return UrlPolicy(
            max_length=self.max_url_length,
            blocked_extensions=BLOCKED_EXTENSIONS,
            report_markers=REPORT_MARKERS,
        )


_DEFAULT_CFG = Path("configs/default.yaml")

# env var -> (field, converter)
_ENV_OVERRIDES: Dict[str, tuple[str, Any]] = {
    "SCANNER_MAX_CONCURRENT": ("max_concurrent_scans", int),
    "SCANNER_MAX_ATTEMPTS": ("max_attempts", int),
    "SCANNER_TIMEOUT": ("startup_timeout", lambda v: int(v) / 1000.0),
    "QUEUE_CHECK_INTERVAL": ("poll_interval", lambda v: int(v) / 1000.0),
    "DB_PATH": ("database", str),
}


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TypeError(f"Top level of YAML must be a mapping, got {type(data).__name__}")
    return data


def _read_json(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8")) or {}
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TypeError(f"Top level of JSON must be a mapping, got {type(data).__name__}")
    return data


def env_overrides(environ: Optional[Mapping[str, str]] = None) -> dict[str, Any]:
    """Collect configuration overrides from environment variables."""
    environ = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    for var, (field, convert) in _ENV_OVERRIDES.items():
        raw = environ.get(var)
        if raw is None or raw.strip() == "":
            continue
        try:
            overrides[field] = convert(raw.strip())
        except ValueError as exc:
            raise ValueError(f"Invalid value for {var}: {raw!r}") from exc
    return overrides


def load_config(
    path: Union[str, Path, None],
    environ: Optional[Mapping[str, str]] = None,
) -> ScoutConfig:
    """
    Read YAML or JSON and return a validated :class:`ScoutConfig`.

    ``path=None`` uses ``configs/default.yaml`` when it exists and the
    built-in defaults otherwise. An explicit path that does not exist
    raises ``FileNotFoundError``.
    """
    data: dict[str, Any] = {}
    if path is None:
        if _DEFAULT_CFG.is_file():
            data = _read_file(_DEFAULT_CFG)
    else:
        path_obj = Path(path).expanduser().resolve()
        if not path_obj.is_file():
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(path_obj))
        data = _read_file(path_obj)

    data.update(env_overrides(environ))
    return ScoutConfig(**data)


def _read_file(path_obj: Path) -> dict[str, Any]:
    suffix = path_obj.suffix.lower()
    if suffix in (".yaml", ".yml"):
        return _read_yaml(path_obj)
    if suffix == ".json":
        return _read_json(path_obj)
    raise ValueError(f"Unsupported config format: {suffix}")


__all__ = ["ScoutConfig", "load_config", "env_overrides"]
