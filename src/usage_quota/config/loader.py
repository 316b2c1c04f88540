from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Mapping

from .policy import QuotaPolicy, load_quota_policy

_LOGGER = logging.getLogger(__name__)


class Settings:
    """JSON settings file that reloads itself when its mtime moves forward."""

    def __init__(self, path: str, *, logger: logging.Logger | None = None):
        self.path = path
        self._logger = logger or _LOGGER
        self._data: Dict[str, Any] = {}
        self._mtime = 0.0
        self.reload(force=True)

    @property
    def data(self) -> Dict[str, Any]:
        self.reload()
        return self._data

    def policy(self) -> QuotaPolicy:
        return load_quota_policy(self.data)

    def reload(self, force: bool = False) -> None:
        try:
            st = os.stat(self.path)
        except FileNotFoundError:
            self._data = {}
            self._mtime = 0.0
            return
        if not force and st.st_mtime <= self._mtime:
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                loaded = json.load(f)
        except (json.JSONDecodeError, OSError) as exc:
            self._logger.warning("Failed to reload settings from %s: %s", self.path, exc)
            return
        if not isinstance(loaded, dict):
            self._logger.warning("Ignoring settings in %s: top level must be an object", self.path)
            return
        changed = changed_keys(self._data, loaded)
        if changed:
            self._logger.info(
                "Settings reloaded from %s",
                self.path,
                extra={"event": "settings_reload", "diff": changed},
            )
        self._data = loaded
        self._mtime = st.st_mtime


def _flatten(value: Any, prefix: str, out: Dict[str, Any]) -> None:
    if isinstance(value, Mapping) and value:
        for key in value:
            _flatten(value[key], f"{prefix}.{key}" if prefix else str(key), out)
    else:
        out[prefix or "<root>"] = value


def changed_keys(old: Mapping[str, Any], new: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Dotted keys whose leaf value differs between two settings snapshots."""
    before: Dict[str, Any] = {}
    after: Dict[str, Any] = {}
    _flatten(old, "", before)
    _flatten(new, "", after)
    before.pop("<root>", None)
    after.pop("<root>", None)
    diff: Dict[str, Dict[str, Any]] = {}
    for key in sorted(set(before) | set(after)):
        prev = before.get(key)
        curr = after.get(key)
        if key not in before or key not in after or prev != curr:
            diff[key] = {"old": prev, "new": curr}
    return diff


__all__ = ["Settings", "changed_keys"]
