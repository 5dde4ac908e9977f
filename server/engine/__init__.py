"""
x-fidelity analysis engine package.

This package resolves archetype configuration, evaluates declarative rules
against repository files through pluggable facts and operators, and
reports issues with resolved source locations.
"""

from .types import (
    ArchetypeConfig, ArchetypeSettings, RuleConfig, ExecutionConfig, Exemption,
    FileData, Issue, IssueReport, LocationInfo, LocationExtractionResult,
    REPO_GLOBAL_CHECK, Severity, Confidence
)

from .errors import (
    EngineError, ConfigurationError, ValidationError, RegistryError,
    UnknownFactError, UnknownOperatorError, UnknownErrorActionError,
    PluginRegistrationError, PluginInitializationError,
    WorkerError, TaskTimeoutError, WorkerCrashedError, PoolShutdownError,
    InvalidRepoUrlError, EvaluationError
)

from .registry import (
    FactDefn, OperatorDefn, Plugin, PluginRegistry, PluginResult,
    get_registry, register_plugin, wait_for_all_plugins
)

from .config import (
    ConfigCache, ConfigResolver, get_config, get_loaded_configs, clear_loaded_configs
)

from .exemptions import normalize_repo_url, is_exempt, load_exemptions, ExemptionStore
from .locations import LocationResolver, extract_location
from .scheduler import AnalysisScheduler, SchedulePlan
from .workers import WorkerPool
from .runner import ExecutionEngine
from .analyzer import analyze_codebase

__all__ = [
    # Types
    "ArchetypeConfig", "ArchetypeSettings", "RuleConfig", "ExecutionConfig", "Exemption",
    "FileData", "Issue", "IssueReport", "LocationInfo", "LocationExtractionResult",
    "REPO_GLOBAL_CHECK", "Severity", "Confidence",

    # Errors
    "EngineError", "ConfigurationError", "ValidationError", "RegistryError",
    "UnknownFactError", "UnknownOperatorError", "UnknownErrorActionError",
    "PluginRegistrationError", "PluginInitializationError",
    "WorkerError", "TaskTimeoutError", "WorkerCrashedError", "PoolShutdownError",
    "InvalidRepoUrlError", "EvaluationError",

    # Registry
    "FactDefn", "OperatorDefn", "Plugin", "PluginRegistry", "PluginResult",
    "get_registry", "register_plugin", "wait_for_all_plugins",

    # Config
    "ConfigCache", "ConfigResolver", "get_config", "get_loaded_configs", "clear_loaded_configs",

    # Exemptions
    "normalize_repo_url", "is_exempt", "load_exemptions", "ExemptionStore",

    # Execution
    "LocationResolver", "extract_location", "AnalysisScheduler", "SchedulePlan",
    "WorkerPool", "ExecutionEngine", "analyze_codebase"
]
