"""Config payload lookup for the config server, plus in-memory telemetry storage."""

import json
import logging
import threading
from collections import deque
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

from engine.exemptions import load_exemptions
from engine.profiles import get_builtin_archetype, get_builtin_rule
from engine.schema import archetype_errors, rule_errors

from .settings import settings


logger = logging.getLogger(__name__)


class ConfigStore:
    """
    Serves archetypes, rules and exemptions from a directory laid out as

        {root}/{archetype}.json
        {root}/rules/{rule}-rule.json
        {root}/{archetype}-exemptions.json
        {root}/{archetype}-exemptions/*-{archetype}-exemptions.json

    falling back to the built-in profiles. Invalid files are skipped.
    Names must already have been validated by the caller.
    """

    def __init__(self, root: Optional[str] = None, max_events: int = 1000):
        self.root = Path(root) if root else None
        self._events: Deque[Dict[str, Any]] = deque(maxlen=max_events)
        self._lock = threading.RLock()

    @property
    def source(self) -> str:
        return "directory" if self.root is not None else "builtin"

    def _read(self, relative: str) -> Optional[Any]:
        if self.root is None:
            return None
        path = self.root / relative
        if not path.is_file() or not path.resolve().is_relative_to(self.root.resolve()):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Could not read %s: %s", path, e)
            return None

    def get_archetype(self, name: str) -> Optional[Dict[str, Any]]:
        payload = self._read(f"{name}.json")
        if payload is not None:
            errors = archetype_errors(payload)
            if not errors and payload.get("name") == name:
                return payload
            logger.error("Invalid archetype file for %s: %s", name, "; ".join(errors) or "name mismatch")
        return get_builtin_archetype(name)

    def get_rule(self, archetype: str, rule: str) -> Optional[Dict[str, Any]]:
        if self.get_archetype(archetype) is None:
            return None
        payload = self._read(f"rules/{rule}-rule.json")
        if payload is not None:
            errors = rule_errors(payload)
            if not errors and payload.get("name") == rule:
                return payload
            logger.error("Invalid rule file for %s: %s", rule, "; ".join(errors) or "name mismatch")
        return get_builtin_rule(rule)

    def list_rules(self, archetype: str) -> Optional[List[Dict[str, Any]]]:
        config = self.get_archetype(archetype)
        if config is None:
            return None
        rules = []
        for rule_name in config["rules"]:
            rule = self.get_rule(archetype, rule_name)
            if rule is not None:
                rules.append(rule)
        return rules

    def get_exemptions(self, archetype: str) -> List[Dict[str, Any]]:
        local_path = str(self.root) if self.root is not None else None
        return [e.to_dict() for e in load_exemptions(archetype, local_path=local_path)]

    # -- telemetry ----------------------------------------------------------

    def record_event(self, event: Dict[str, Any]) -> None:
        with self._lock:
            self._events.append(event)

    def events(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._events)


_store: Optional[ConfigStore] = None


def get_storage() -> ConfigStore:
    """Get the global config store."""
    global _store
    if _store is None:
        _store = ConfigStore(settings.config_path, settings.max_telemetry_events)
    return _store


def init_storage(root: Optional[str] = None, max_events: int = 1000) -> ConfigStore:
    """Replace the global config store (tests point it at a temporary directory)."""
    global _store
    _store = ConfigStore(root, max_events)
    return _store
