"""
Configuration resolution for the analysis engine.

An archetype name resolves to an immutable ExecutionConfig by trying, in
order, the config server, a local config directory, and the built-in
profiles. A source whose payload fails validation is skipped in favour
of the next one. A configured server that cannot be reached is a hard
error: there is no silent fallback away from a server the caller asked
for.
"""

import json
import logging
import uuid
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Optional

import httpx

from .errors import ConfigurationError
from .exemptions import load_exemptions
from .profiles import get_builtin_archetype, get_builtin_rule
from .remote import RemoteConfigClient, is_valid_name
from .schema import archetype_errors, rule_errors
from .settings import EngineSettings, settings as default_settings
from .types import ArchetypeConfig, ExecutionConfig, RuleConfig

logger = logging.getLogger(__name__)

_SECRET_OPTIONS = {"shared_secret", "sharedSecret"}


class ConfigCache:
    """Archetype name -> ExecutionConfig, for the lifetime of a resolver."""

    def __init__(self):
        self._configs: Dict[str, ExecutionConfig] = {}

    def get(self, name: str) -> Optional[ExecutionConfig]:
        return self._configs.get(name)

    def set(self, name: str, config: ExecutionConfig) -> None:
        self._configs[name] = config

    def clear(self) -> None:
        self._configs.clear()

    def names(self) -> List[str]:
        return list(self._configs)

    def __contains__(self, name: str) -> bool:
        return name in self._configs

    def __len__(self) -> int:
        return len(self._configs)


def _read_local_json(base: Path, relative: str) -> Optional[Any]:
    """Read ``base/relative`` if it exists and stays inside base."""
    path = base / relative
    if not path.is_file():
        return None
    if not path.resolve().is_relative_to(base.resolve()):
        logger.error("Config file %s escapes %s, ignoring", path, base)
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Could not read config file %s: %s", path, e)
        return None


class ConfigResolver:
    """Resolves archetypes, their rules and exemptions."""

    def __init__(self, config_server: Optional[str] = None, local_path: Optional[str] = None,
                 shared_secret: Optional[str] = None, retries: int = 3,
                 retry_delay: float = 1.0, timeout: float = 10.0,
                 client: Optional[httpx.Client] = None, cache: Optional[ConfigCache] = None,
                 cli_options: Optional[Dict[str, Any]] = None):
        self.remote: Optional[RemoteConfigClient] = None
        if config_server:
            self.remote = RemoteConfigClient(config_server, shared_secret=shared_secret,
                                             retries=retries, retry_delay=retry_delay,
                                             timeout=timeout, client=client)
        self.local_path = Path(local_path) if local_path else None
        self.cache = cache if cache is not None else ConfigCache()
        self.cli_options = {k: v for k, v in (cli_options or {}).items()
                            if k not in _SECRET_OPTIONS}

    @classmethod
    def from_settings(cls, engine_settings: Optional[EngineSettings] = None,
                      client: Optional[httpx.Client] = None,
                      cache: Optional[ConfigCache] = None) -> "ConfigResolver":
        s = engine_settings or default_settings
        return cls(config_server=s.server_url, local_path=s.local_config_path,
                   shared_secret=s.shared_secret, retries=s.remote_retries,
                   retry_delay=s.retry_delay, timeout=s.request_timeout,
                   client=client, cache=cache, cli_options=s.options_echo())

    # -- public API ---------------------------------------------------------

    def resolve(self, archetype: str) -> ExecutionConfig:
        """Return the ExecutionConfig for an archetype, resolving it once."""
        cached = self.cache.get(archetype)
        if cached is not None:
            return cached

        if not is_valid_name(archetype):
            raise ConfigurationError(f"Invalid archetype name: {archetype!r}", archetype=archetype)

        correlation_id = uuid.uuid4().hex
        logger.info("[%s] Resolving configuration for archetype %s", correlation_id, archetype)

        archetype_config = self._load_archetype(archetype, correlation_id)
        rules = self._load_rules(archetype_config, correlation_id)
        exemptions = load_exemptions(archetype, remote=self.remote,
                                     local_path=str(self.local_path) if self.local_path else None,
                                     correlation_id=correlation_id)

        config = ExecutionConfig(
            archetype=archetype_config,
            rules=tuple(rules),
            exemptions=tuple(exemptions),
            cli_options=MappingProxyType(dict(self.cli_options)),
            correlation_id=correlation_id,
        )
        self.cache.set(archetype, config)
        logger.info("[%s] Archetype %s resolved: %d rules, %d exemptions",
                    correlation_id, archetype, len(rules), len(exemptions))
        return config

    def get_loaded_configs(self) -> List[str]:
        return self.cache.names()

    def clear_loaded_configs(self) -> None:
        self.cache.clear()

    def close(self) -> None:
        if self.remote is not None:
            self.remote.close()

    # -- archetype ----------------------------------------------------------

    def _accept_archetype(self, payload: Any, source: str, name: str,
                          correlation_id: str) -> Optional[ArchetypeConfig]:
        if payload is None:
            return None
        errors = archetype_errors(payload)
        if errors:
            logger.error("[%s] Archetype %s from %s failed validation: %s",
                         correlation_id, name, source, "; ".join(errors))
            return None
        logger.info("[%s] Using archetype %s from %s", correlation_id, name, source)
        return ArchetypeConfig.from_dict(payload)

    def _load_archetype(self, name: str, correlation_id: str) -> ArchetypeConfig:
        if self.remote is not None:
            # Network failures propagate as ConfigurationError
            payload = self.remote.fetch_archetype(name, correlation_id)
            config = self._accept_archetype(payload, self.remote.base_url, name, correlation_id)
            if config is not None:
                return config

        if self.local_path is not None:
            payload = _read_local_json(self.local_path, f"{name}.json")
            config = self._accept_archetype(payload, str(self.local_path), name, correlation_id)
            if config is not None:
                return config

        config = self._accept_archetype(get_builtin_archetype(name), "built-in", name,
                                        correlation_id)
        if config is not None:
            return config

        raise ConfigurationError(f"No valid configuration found for archetype {name}",
                                 archetype=name)

    # -- rules --------------------------------------------------------------

    def _accept_rule(self, payload: Any, source: str, rule_name: str,
                     correlation_id: str) -> Optional[RuleConfig]:
        if payload is None:
            return None
        errors = rule_errors(payload)
        if errors:
            logger.error("[%s] Rule %s from %s failed validation: %s",
                         correlation_id, rule_name, source, "; ".join(errors))
            return None
        if payload["name"] != rule_name:
            logger.error("[%s] Rule %s from %s is named %s, ignoring",
                         correlation_id, rule_name, source, payload["name"])
            return None
        return RuleConfig.from_dict(payload)

    def _load_rule(self, archetype: str, rule_name: str,
                   correlation_id: str) -> Optional[RuleConfig]:
        if self.remote is not None:
            payload = self.remote.fetch_rule(archetype, rule_name, correlation_id)
            rule = self._accept_rule(payload, self.remote.base_url, rule_name, correlation_id)
            if rule is not None:
                return rule

        if self.local_path is not None:
            payload = _read_local_json(self.local_path, f"rules/{rule_name}-rule.json")
            rule = self._accept_rule(payload, str(self.local_path), rule_name, correlation_id)
            if rule is not None:
                return rule

        return self._accept_rule(get_builtin_rule(rule_name), "built-in", rule_name,
                                 correlation_id)

    def _load_rules(self, archetype: ArchetypeConfig, correlation_id: str) -> List[RuleConfig]:
        rules: List[RuleConfig] = []
        seen = set()
        for rule_name in archetype.rules:
            if rule_name in seen:
                continue
            seen.add(rule_name)
            if not is_valid_name(rule_name):
                logger.error("[%s] Dropping rule with invalid name %r from %s",
                             correlation_id, rule_name, archetype.name)
                continue
            rule = self._load_rule(archetype.name, rule_name, correlation_id)
            if rule is None:
                logger.error("[%s] Dropping rule %s: no valid definition found for %s",
                             correlation_id, rule_name, archetype.name)
                continue
            rules.append(rule)
        return rules


# Process-wide resolver built from the global settings
_resolver: Optional[ConfigResolver] = None


def get_resolver() -> ConfigResolver:
    global _resolver
    if _resolver is None:
        _resolver = ConfigResolver.from_settings()
    return _resolver


def get_config(archetype: Optional[str] = None) -> ExecutionConfig:
    """Resolve an archetype using the process-wide resolver."""
    return get_resolver().resolve(archetype or default_settings.archetype)


def get_loaded_configs() -> List[str]:
    return get_resolver().get_loaded_configs()


def clear_loaded_configs() -> None:
    """Forget every cached archetype; the next get_config re-resolves."""
    get_resolver().clear_loaded_configs()
