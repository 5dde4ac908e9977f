"""
Exception hierarchy for the analysis engine.

Configuration errors are the only hard stop. Everything else is raised
at the point of failure and recovered by the caller one level up
(next config source, next extractor, next file unit).
"""

from typing import List, Optional


class EngineError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(EngineError):
    """A configured remote source could not be reached or returned an error."""

    def __init__(self, message: str, archetype: Optional[str] = None,
                 url: Optional[str] = None):
        super().__init__(message)
        self.archetype = archetype
        self.url = url


class ValidationError(EngineError):
    """A payload failed schema validation."""

    def __init__(self, kind: str, name: str, errors: List[str]):
        self.kind = kind
        self.name = name
        self.errors = list(errors)
        super().__init__(f"Invalid {kind} '{name}': {'; '.join(self.errors)}")


class RegistryError(EngineError):
    """Base class for lookups against the extensibility registry."""


class UnknownFactError(RegistryError):
    def __init__(self, name: str):
        super().__init__(f"Unknown fact: {name}")
        self.name = name


class UnknownOperatorError(RegistryError):
    def __init__(self, name: str):
        super().__init__(f"Unknown operator: {name}")
        self.name = name


class UnknownErrorActionError(RegistryError):
    def __init__(self, name: str):
        super().__init__(f"Unknown error action: {name}")
        self.name = name


class PluginRegistrationError(RegistryError):
    """A plugin definition is missing required fields."""


class PluginInitializationError(RegistryError):
    """One or more plugins failed to initialize."""

    def __init__(self, message: str, failed: Optional[List[str]] = None):
        super().__init__(message)
        self.failed = list(failed or [])


class WorkerError(EngineError):
    """Base class for worker pool task failures."""


class TaskTimeoutError(WorkerError):
    def __init__(self, task_id: str, timeout: float):
        super().__init__(f"Task {task_id} timed out after {timeout}s")
        self.task_id = task_id
        self.timeout = timeout


class WorkerCrashedError(WorkerError):
    def __init__(self, worker_id: int, task_id: str):
        super().__init__(f"Worker {worker_id} crashed; task {task_id} rejected")
        self.worker_id = worker_id
        self.task_id = task_id


class PoolShutdownError(WorkerError):
    """Submission after shutdown, or no live workers remain."""


class InvalidRepoUrlError(EngineError, ValueError):
    def __init__(self, url: str):
        super().__init__(f"Invalid repository URL: {url!r}")
        self.url = url


class EvaluationError(EngineError):
    """A fact or operator raised while evaluating one rule against one unit."""

    def __init__(self, rule_name: str, file_path: str, cause: BaseException):
        super().__init__(f"Rule {rule_name} failed on {file_path}: {cause}")
        self.rule_name = rule_name
        self.file_path = file_path
        self.cause = cause
