"""
Core types for the x-fidelity analysis engine.

This module provides the shared dataclasses used across configuration
resolution, rule execution, location resolution and reporting.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Tuple


# Sentinel file name for repository-wide checks
REPO_GLOBAL_CHECK = "REPO_GLOBAL_CHECK"

DEFAULT_ARCHETYPE = "node-fullstack"

Severity = Literal["fatality", "error", "warning", "info", "hint", "exempt"]
Confidence = Literal["high", "medium", "low"]

# Higher value wins when ranking issues
SEVERITY_RANK: Dict[str, int] = {
    "fatality": 5,
    "error": 4,
    "warning": 3,
    "info": 2,
    "hint": 1,
    "exempt": 0,
}


def freeze(value: Any) -> Any:
    """Recursively convert dicts/lists into read-only equivalents."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    return value


def thaw(value: Any) -> Any:
    """Inverse of freeze, for serialization."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [thaw(v) for v in value]
    return value


@dataclass(frozen=True)
class ArchetypeSettings:
    """Structural and version constraints attached to an archetype."""
    minimum_dependency_versions: Mapping[str, str]
    standard_structure: Any
    blacklist_patterns: Tuple[str, ...]
    whitelist_patterns: Tuple[str, ...]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArchetypeSettings":
        return cls(
            minimum_dependency_versions=freeze(data.get("minimumDependencyVersions") or {}),
            standard_structure=freeze(data.get("standardStructure") or {}),
            blacklist_patterns=tuple(data.get("blacklistPatterns") or ()),
            whitelist_patterns=tuple(data.get("whitelistPatterns") or ()),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "minimumDependencyVersions": thaw(self.minimum_dependency_versions),
            "standardStructure": thaw(self.standard_structure),
            "blacklistPatterns": list(self.blacklist_patterns),
            "whitelistPatterns": list(self.whitelist_patterns),
        }


@dataclass(frozen=True)
class ArchetypeConfig:
    """A named project profile."""
    name: str
    rules: Tuple[str, ...]
    operators: Tuple[str, ...]
    facts: Tuple[str, ...]
    config: ArchetypeSettings
    plugins: Tuple[str, ...] = ()
    description: str = ""
    version: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArchetypeConfig":
        return cls(
            name=data["name"],
            rules=tuple(data.get("rules") or ()),
            operators=tuple(data.get("operators") or ()),
            facts=tuple(data.get("facts") or ()),
            config=ArchetypeSettings.from_dict(data.get("config") or {}),
            plugins=tuple(data.get("plugins") or ()),
            description=data.get("description", ""),
            version=str(data.get("version", "")),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "rules": list(self.rules),
            "operators": list(self.operators),
            "facts": list(self.facts),
            "config": self.config.to_dict(),
        }
        if self.plugins:
            data["plugins"] = list(self.plugins)
        if self.description:
            data["description"] = self.description
        if self.version:
            data["version"] = self.version
        return data


@dataclass(frozen=True)
class RuleConfig:
    """A declarative rule: condition tree plus the event fired on success."""
    name: str
    conditions: Mapping[str, Any]
    event: Mapping[str, Any]
    error_behavior: Optional[Literal["swallow", "fatal"]] = None
    on_error: Optional[Mapping[str, Any]] = None
    description: str = ""
    recommendations: Tuple[str, ...] = ()
    priority: int = 1

    @property
    def event_type(self) -> str:
        return self.event.get("type", "warning")

    @property
    def message(self) -> str:
        params = self.event.get("params") or {}
        return params.get("message", "")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleConfig":
        return cls(
            name=data["name"],
            conditions=freeze(data["conditions"]),
            event=freeze(data["event"]),
            error_behavior=data.get("errorBehavior"),
            on_error=freeze(data["onError"]) if data.get("onError") else None,
            description=data.get("description", ""),
            recommendations=tuple(data.get("recommendations") or ()),
            priority=int(data.get("priority", 1)),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "conditions": thaw(self.conditions),
            "event": thaw(self.event),
        }
        if self.error_behavior:
            data["errorBehavior"] = self.error_behavior
        if self.on_error:
            data["onError"] = thaw(self.on_error)
        if self.description:
            data["description"] = self.description
        if self.recommendations:
            data["recommendations"] = list(self.recommendations)
        if self.priority != 1:
            data["priority"] = self.priority
        return data

    def with_event_type(self, event_type: str) -> "RuleConfig":
        event = dict(self.event)
        event["type"] = event_type
        return replace(self, event=freeze(event))


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 date or datetime; naive values are taken as UTC."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Exemption:
    """A time-bounded suppression of one rule for one repository."""
    repo_url: str
    rule: str
    expiration_date: datetime
    reason: str = ""

    def is_active(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.expiration_date > now

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Exemption":
        return cls(
            repo_url=data["repoUrl"],
            rule=data["rule"],
            expiration_date=parse_timestamp(data["expirationDate"]),
            reason=data.get("reason", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repoUrl": self.repo_url,
            "rule": self.rule,
            "expirationDate": self.expiration_date.isoformat(),
            "reason": self.reason,
        }


@dataclass(frozen=True)
class ExecutionConfig:
    """Everything one analysis run needs, resolved once and never mutated."""
    archetype: ArchetypeConfig
    rules: Tuple[RuleConfig, ...]
    exemptions: Tuple[Exemption, ...] = ()
    cli_options: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    correlation_id: str = ""

    @property
    def name(self) -> str:
        return self.archetype.name


@dataclass(frozen=True)
class FileData:
    """One analysis unit: a real file or the repository-wide sentinel."""
    file_name: str
    file_path: str
    content: str = ""
    relative_path: str = ""

    @property
    def is_global(self) -> bool:
        return self.file_name == REPO_GLOBAL_CHECK

    @classmethod
    def global_check(cls) -> "FileData":
        return cls(file_name=REPO_GLOBAL_CHECK, file_path=REPO_GLOBAL_CHECK,
                   content="", relative_path=REPO_GLOBAL_CHECK)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fileName": self.file_name,
            "filePath": self.file_path,
            "fileContent": self.content,
            "content": self.content,
            "relativePath": self.relative_path,
        }


def sort_units(files: Iterable[FileData]) -> List[FileData]:
    """Order units so the global sentinel always comes last."""
    units = list(files)
    return [f for f in units if not f.is_global] + [f for f in units if f.is_global]


@dataclass(frozen=True)
class LocationInfo:
    """A 1-based source range with provenance."""
    start_line: int
    start_column: int
    end_line: int
    end_column: int
    source: str
    confidence: Confidence

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startLine": self.start_line,
            "startColumn": self.start_column,
            "endLine": self.end_line,
            "endColumn": self.end_column,
            "source": self.source,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class LocationExtractionResult:
    location: LocationInfo
    found: bool
    confidence: Confidence


@dataclass(frozen=True)
class Issue:
    """One fired rule against one unit."""
    rule_name: str
    level: str
    message: str
    file_path: str
    details: Mapping[str, Any]
    location: LocationInfo
    original_level: Optional[str] = None
    snippet: Optional[str] = None

    @property
    def is_exempt(self) -> bool:
        return self.level == "exempt"

    def raw(self) -> Dict[str, Any]:
        """The shape location extractors operate on."""
        return {"ruleFailure": self.rule_name, "level": self.level,
                "details": thaw(self.details)}

    def exempted(self) -> "Issue":
        return replace(self, level="exempt", original_level=self.level)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "ruleFailure": self.rule_name,
            "level": self.level,
            "message": self.message,
            "details": thaw(self.details),
            "location": self.location.to_dict(),
        }
        if self.original_level:
            data["originalLevel"] = self.original_level
        if self.snippet:
            data["snippet"] = self.snippet
        return data


class IssueReport:
    """Per-file issues plus aggregate counts.

    Built incrementally as units complete. Counts are always derived by
    summation so the order in which files are added does not matter.
    """

    def __init__(self, archetype: str = ""):
        self.archetype = archetype
        self.files: Dict[str, List[Issue]] = {}
        self.file_count = 0
        self.metadata: Dict[str, Any] = {}

    def add(self, file_path: str, issues: Iterable[Issue]) -> None:
        issues = list(issues)
        if not issues:
            return
        self.files.setdefault(file_path, []).extend(issues)

    def merge(self, other: "IssueReport") -> None:
        for file_path, issues in other.files.items():
            self.add(file_path, issues)

    def issues(self) -> List[Issue]:
        return [issue for issues in self.files.values() for issue in issues]

    def _count(self, level: str) -> int:
        return sum(1 for issue in self.issues() if issue.level == level)

    @property
    def total_issues(self) -> int:
        return len(self.issues())

    @property
    def error_count(self) -> int:
        return self._count("error")

    @property
    def warning_count(self) -> int:
        return self._count("warning")

    @property
    def fatality_count(self) -> int:
        return self._count("fatality")

    @property
    def exempt_count(self) -> int:
        return self._count("exempt")

    @property
    def info_count(self) -> int:
        return self._count("info") + self._count("hint")

    @property
    def has_fatalities(self) -> bool:
        return self.fatality_count > 0

    @property
    def highest_severity(self) -> Optional[str]:
        levels = [issue.level for issue in self.issues()]
        if not levels:
            return None
        return max(levels, key=lambda lvl: SEVERITY_RANK.get(lvl, 0))

    def to_dict(self) -> Dict[str, Any]:
        paths = sorted(p for p in self.files if p != REPO_GLOBAL_CHECK)
        if REPO_GLOBAL_CHECK in self.files:
            paths.append(REPO_GLOBAL_CHECK)
        data = {
            "archetype": self.archetype,
            "fileCount": self.file_count,
            "totalIssues": self.total_issues,
            "warningCount": self.warning_count,
            "errorCount": self.error_count,
            "fatalityCount": self.fatality_count,
            "exemptCount": self.exempt_count,
            "infoCount": self.info_count,
            "issueDetails": [
                {"filePath": path, "errors": [i.to_dict() for i in self.files[path]]}
                for path in paths
            ],
        }
        data.update(self.metadata)
        return data
