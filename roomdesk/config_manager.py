from __future__ import annotations

import copy
import errno
import logging
import os
import threading
from pathlib import Path
from typing import Any

import yaml

from roomdesk.models import AppConfig, default_app_config


logger = logging.getLogger(__name__)

MASK = "***"

# (section, key) pairs never echoed back by the console API.
SECRET_FIELDS = (("backend", "api_token"),)


def merge_settings(current: dict[str, Any], changes: dict[str, Any]) -> dict[str, Any]:
    """Nested sections merge key by key; any other value replaces the old one."""
    result = copy.deepcopy(current)
    for name, change in changes.items():
        existing = result.get(name)
        if isinstance(change, dict) and isinstance(existing, dict):
            result[name] = merge_settings(existing, change)
        else:
            result[name] = change
    return result


def render_yaml(settings: dict[str, Any]) -> str:
    return yaml.safe_dump(settings, sort_keys=False, allow_unicode=True, default_flow_style=False)


def strip_echoed_secrets(payload: dict[str, Any]) -> dict[str, Any]:
    """Drop secret fields the caller sent back blank or still masked."""
    cleaned = copy.deepcopy(payload)
    for section_name, key in SECRET_FIELDS:
        section = cleaned.get(section_name)
        if not isinstance(section, dict) or key not in section:
            continue
        if str(section.get(key) or "").strip() in {"", MASK}:
            del section[key]
        if not section:
            del cleaned[section_name]
    return cleaned


class ConfigManager:
    """YAML-backed console settings shared by every request thread."""

    def __init__(self, config_path: str | os.PathLike[str]) -> None:
        self.config_path = Path(config_path)
        self._lock = threading.RLock()
        if not self.config_path.exists():
            logger.info(f"writing default settings to {self.config_path}")
            self.save(default_app_config())

    def load(self) -> AppConfig:
        with self._lock:
            text = self.config_path.read_text(encoding="utf-8")
        return AppConfig.from_dict(yaml.safe_load(text) or {})

    def save(self, config: AppConfig) -> None:
        with self._lock:
            self._write(render_yaml(config.to_dict()))

    def _write(self, text: str) -> None:
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        staging = self.config_path.with_name(self.config_path.name + ".tmp")
        staging.write_text(text, encoding="utf-8")
        try:
            staging.replace(self.config_path)
        except OSError as exc:
            # A bind-mounted file cannot be swapped out; overwrite it in place.
            if exc.errno != errno.EBUSY:
                raise
            logger.warning(f"{self.config_path} is busy; rewriting in place")
            self.config_path.write_text(text, encoding="utf-8")
            staging.unlink(missing_ok=True)

    def update(self, payload: dict[str, Any]) -> AppConfig:
        with self._lock:
            settings = merge_settings(self.load().to_dict(), strip_echoed_secrets(payload))
            updated = AppConfig.from_dict(settings)
            self.save(updated)
        return updated

    def masked(self) -> dict[str, Any]:
        settings = self.load().to_dict()
        for section_name, key in SECRET_FIELDS:
            section = settings.get(section_name) or {}
            if section.get(key):
                section[key] = MASK
        return settings
