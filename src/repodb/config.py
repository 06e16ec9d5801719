"""Configuration loading from environment variables and repodb.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_CONFIG_FILENAME = "repodb.toml"
_DEFAULT_API_URL = "https://api.github.com"

ENCODINGS = ("journal", "entity_files")


@dataclass
class RemoteConfig:
    """Hosted Git service access."""

    api_url: str = _DEFAULT_API_URL
    token: str = ""
    repo_name: str = "repodb-data"
    timeout: float = 10.0
    retries: int = 2
    retry_backoff: float = 0.5
    user_agent: str = "repodb/0.1"


@dataclass
class CacheConfig:
    """TTL (seconds) per cache region and the per-region entry bound."""

    threads_ttl: float = 600.0
    messages_ttl: float = 300.0
    thread_detail_ttl: float = 600.0
    max_entries: int = 512


@dataclass
class TimelineConfig:
    """Thread/message encoding."""

    encoding: str = "journal"
    journal_scan_limit: int | None = 12
    conflict_retries: int = 2


@dataclass
class RepoDBConfig:
    """Top-level repodb configuration."""

    remote: RemoteConfig = field(default_factory=RemoteConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    timeline: TimelineConfig = field(default_factory=TimelineConfig)
    log_level: str = "INFO"


def load_config(config_path: Path | None = None) -> RepoDBConfig:
    """Load configuration from environment variables and optional repodb.toml.

    Priority: environment variables > repodb.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.repodb/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, Path.home() / ".repodb" / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    remote_data = file_data.get("remote", {})
    cache_data = file_data.get("cache", {})
    timeline_data = file_data.get("timeline", {})

    token = os.getenv("REPODB_GITHUB_TOKEN") or os.getenv("GITHUB_TOKEN") or remote_data.get("token", "")
    scan_limit = timeline_data.get("journal_scan_limit", 12)

    config = RepoDBConfig(
        remote=RemoteConfig(
            api_url=os.getenv("REPODB_API_URL", remote_data.get("api_url", _DEFAULT_API_URL)),
            token=token,
            repo_name=os.getenv("REPODB_REPO_NAME", remote_data.get("repo_name", "repodb-data")),
            timeout=float(os.getenv("REPODB_TIMEOUT", remote_data.get("timeout", 10.0))),
            retries=int(os.getenv("REPODB_RETRIES", remote_data.get("retries", 2))),
            retry_backoff=float(remote_data.get("retry_backoff", 0.5)),
        ),
        cache=CacheConfig(
            threads_ttl=float(cache_data.get("threads_ttl", 600.0)),
            messages_ttl=float(cache_data.get("messages_ttl", 300.0)),
            thread_detail_ttl=float(cache_data.get("thread_detail_ttl", 600.0)),
            max_entries=int(cache_data.get("max_entries", 512)),
        ),
        timeline=TimelineConfig(
            encoding=os.getenv("REPODB_ENCODING", timeline_data.get("encoding", "journal")),
            # 0 in the file means "scan every journal"
            journal_scan_limit=int(scan_limit) or None,
            conflict_retries=int(timeline_data.get("conflict_retries", 2)),
        ),
        log_level=os.getenv("REPODB_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    if config.timeline.encoding not in ENCODINGS:
        raise ValueError(
            f"Unknown timeline encoding '{config.timeline.encoding}'. Available: {list(ENCODINGS)}"
        )
    return config
