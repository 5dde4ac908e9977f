"""
Repository-level overrides read from ``.xfi-config.yml`` at the repository root.

Supported keys:
    sensitive_file_false_positives: repository-relative paths or globs
        that are never evaluated
    additional_rules: inline rule objects appended to the archetype's rules

Unknown keys are ignored. JSON files are read with the same YAML loader.
"""

import fnmatch
import logging
import os
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

import yaml

from .errors import ValidationError
from .schema import validate_rule
from .types import ExecutionConfig, FileData, RuleConfig

logger = logging.getLogger(__name__)

CONFIG_NAMES = [".xfi-config.yml", ".xfi-config.yaml", ".xfi-config.json"]


@dataclass
class RepoConfig:
    """Overrides declared by the repository itself."""
    sensitive_file_false_positives: List[str] = field(default_factory=list)
    additional_rules: List[RuleConfig] = field(default_factory=list)
    source: Optional[str] = None

    def is_false_positive(self, file: FileData) -> bool:
        if file.is_global:
            return False
        relative = file.relative_path.replace(os.sep, "/").lstrip("/")
        return any(relative == p.lstrip("/") or fnmatch.fnmatchcase(relative, p.lstrip("/"))
                   for p in self.sensitive_file_false_positives)

    def filter_files(self, files: List[FileData]) -> List[FileData]:
        kept = [f for f in files if not self.is_false_positive(f)]
        if len(kept) != len(files):
            logger.info("Skipping %d files listed as sensitive false positives",
                        len(files) - len(kept))
        return kept

    def apply(self, config: ExecutionConfig) -> ExecutionConfig:
        """Return config extended with the additional rules.

        The resolved config is shared through the cache, so it is never
        modified in place.
        """
        if not self.additional_rules:
            return config
        existing = {r.name for r in config.rules}
        extra = tuple(r for r in self.additional_rules if r.name not in existing)
        if len(extra) != len(self.additional_rules):
            logger.warning("Ignoring additional rules that shadow archetype rules")
        return replace(config, rules=config.rules + extra)


def find_repo_config(repo_path: str) -> Optional[str]:
    """Path to the repository's override file, or None."""
    for name in CONFIG_NAMES:
        path = os.path.join(repo_path, name)
        if os.path.isfile(path):
            return path
    return None


def _parse_rules(entries: Any, source: str) -> List[RuleConfig]:
    if not isinstance(entries, list):
        logger.error("additional_rules in %s must be a list", source)
        return []
    rules = []
    for entry in entries:
        try:
            rules.append(RuleConfig.from_dict(validate_rule(entry)))
        except ValidationError as e:
            logger.error("Dropping additional rule from %s: %s", source, e)
    return rules


def load_repo_config(repo_path: str) -> RepoConfig:
    """
    Load repository overrides, or empty overrides if there are none.

    A malformed file is logged and treated as absent.
    """
    path = find_repo_config(repo_path)
    if path is None:
        return RepoConfig()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error("Failed to load repository config %s: %s", path, e)
        return RepoConfig()

    if not isinstance(data, dict):
        logger.error("Repository config %s must be a mapping", path)
        return RepoConfig()

    false_positives = data.get("sensitive_file_false_positives") or []
    if not isinstance(false_positives, list):
        logger.error("sensitive_file_false_positives in %s must be a list", path)
        false_positives = []

    config = RepoConfig(
        sensitive_file_false_positives=[str(p) for p in false_positives],
        additional_rules=_parse_rules(data.get("additional_rules") or [], path),
        source=path,
    )
    logger.info("Loaded repository config %s (%d false positives, %d extra rules)",
                path, len(config.sensitive_file_false_positives), len(config.additional_rules))
    return config


def save_repo_config(config: RepoConfig, path: str) -> None:
    data: Dict[str, Any] = {
        "sensitive_file_false_positives": list(config.sensitive_file_false_positives),
        "additional_rules": [r.to_dict() for r in config.additional_rules],
    }
    with open(path, "w", encoding="utf-8") as f:
        yaml.dump(data, f, default_flow_style=False, indent=2)
