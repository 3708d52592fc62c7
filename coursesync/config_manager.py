from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from coursesync.models import AppConfig

DEFAULT_CONFIG_PATH = "coursesync.yaml"

# environment variable -> dotted config path
ENV_OVERRIDES = {
    "TODOIST_API_KEY": "todoist.api_token",
    "TODOIST_BASE_URL": "todoist.base_url",
    "COURSE_DIRECTORY_URL": "courses.directory_url",
    "COURSESYNC_IGNORED_PHRASES": "courses.ignored_phrases",
    "COURSESYNC_STATE_PATH": "paths.state_path",
    "COURSESYNC_CACHE_PATH": "paths.cache_path",
    "COURSESYNC_INTERVAL_SECONDS": "sync.interval_seconds",
    "COURSESYNC_DRY_RUN": "sync.dry_run",
    "COURSESYNC_LOG_LEVEL": "log_level",
}


def _deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _env_updates(environ: Mapping[str, str]) -> dict[str, Any]:
    updates: dict[str, Any] = {}
    for env_name, dotted in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is None or not value.strip():
            continue
        node = updates
        *parents, leaf = dotted.split(".")
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value.strip()
    return updates


class ConfigManager:
    def __init__(
        self,
        config_path: str | os.PathLike[str] | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.environ = os.environ if environ is None else environ
        self.config_path = Path(config_path or self.environ.get("COURSESYNC_CONFIG") or DEFAULT_CONFIG_PATH)

    def _read_file(self) -> dict[str, Any]:
        if not self.config_path.exists():
            return {}
        with self.config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config root must be a mapping: {self.config_path}")
        return data

    def load(self) -> AppConfig:
        merged = _deep_merge(self._read_file(), _env_updates(self.environ))
        config = AppConfig.from_dict(merged)
        for source in config.sources:
            if not source.url and source.url_env:
                source.url = str(self.environ.get(source.url_env, "") or "").strip()
        return config

    def masked(self) -> dict[str, Any]:
        config = self.load().to_dict()
        if config.get("todoist", {}).get("api_token"):
            config["todoist"]["api_token"] = "***"
        for source in config.get("sources", []):
            if source.get("url"):
                source["url"] = "***"
        if config.get("courses", {}).get("directory_url"):
            config["courses"]["directory_url"] = "***"
        return config
