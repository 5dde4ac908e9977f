"""
Registry for plugins, facts, operators and error actions.

Plugins contribute named facts (data producers), operators (predicates)
and functions (error actions and helpers). The engine looks these up by
name only; a miss raises a typed RegistryError rather than an import
failure.

Plugin initialization is asynchronous. Each plugin's ``initialize`` hook
runs on a background thread, and ``wait_for_all_plugins`` is the barrier
callers must pass before evaluating any rule.
"""

import concurrent.futures
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional

from .errors import (
    PluginInitializationError,
    PluginRegistrationError,
    RegistryError,
    UnknownErrorActionError,
    UnknownFactError,
    UnknownOperatorError,
)

logger = logging.getLogger(__name__)

InitStatus = Literal["initializing", "completed", "failed"]

# fn(params, almanac) -> value
FactFn = Callable[[Dict[str, Any], Any], Any]
# fn(fact_value, compare_value) -> bool
OperatorFn = Callable[[Any, Any], bool]


@dataclass(frozen=True)
class FactDefn:
    """A named data producer.

    Attributes:
        name: Name referenced by rule conditions
        fn: Callable taking (params, almanac)
        description: Human-readable description
        priority: Evaluation hint, higher runs first
        offload: Run on the worker pool instead of the orchestrating thread
    """
    name: str
    fn: FactFn
    description: str = ""
    priority: int = 1
    offload: bool = False


@dataclass(frozen=True)
class OperatorDefn:
    name: str
    fn: OperatorFn
    description: str = ""


@dataclass(frozen=True)
class PluginContext:
    """Handed to a plugin's initialize hook."""
    registry: "PluginRegistry"
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PluginResult:
    success: bool
    data: Any = None
    error: Optional[str] = None


@dataclass
class Plugin:
    """A bundle of facts, operators and callable functions."""
    name: str
    version: str
    description: str = ""
    facts: List[FactDefn] = field(default_factory=list)
    operators: List[OperatorDefn] = field(default_factory=list)
    functions: Dict[str, Callable[..., Any]] = field(default_factory=dict)
    initialize: Optional[Callable[[PluginContext], None]] = None
    cleanup: Optional[Callable[[], None]] = None


class PluginRegistry:
    """Central registry for plugins."""

    def __init__(self, max_init_workers: int = 4):
        self._plugins: Dict[str, Plugin] = {}
        self._status: Dict[str, InitStatus] = {}
        self._errors: Dict[str, str] = {}
        self._futures: Dict[str, concurrent.futures.Future] = {}
        self._max_init_workers = max_init_workers
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None
        self._lock = threading.RLock()

    # -- registration -------------------------------------------------------

    def register_plugin(self, plugin: Plugin, options: Optional[Dict[str, Any]] = None) -> None:
        """Register a plugin and start its initialization if it has one."""
        if plugin is None or not getattr(plugin, "name", None) or not getattr(plugin, "version", None):
            raise PluginRegistrationError("Invalid plugin format: name and version are required")

        with self._lock:
            if plugin.name in self._plugins:
                logger.warning("Plugin %s is already registered, skipping", plugin.name)
                return
            self._plugins[plugin.name] = plugin

            if plugin.initialize is None:
                self._status[plugin.name] = "completed"
            else:
                self._status[plugin.name] = "initializing"
                context = PluginContext(registry=self, options=dict(options or {}))
                self._futures[plugin.name] = self._get_executor().submit(
                    self._run_initialize, plugin, context)

        logger.info("Registered plugin %s v%s (%d facts, %d operators)",
                    plugin.name, plugin.version, len(plugin.facts), len(plugin.operators))

    def _get_executor(self) -> concurrent.futures.ThreadPoolExecutor:
        if self._executor is None:
            self._executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=self._max_init_workers, thread_name_prefix="plugin-init")
        return self._executor

    def _run_initialize(self, plugin: Plugin, context: PluginContext) -> None:
        try:
            plugin.initialize(context)
        except Exception as e:
            with self._lock:
                self._status[plugin.name] = "failed"
                self._errors[plugin.name] = str(e)
            logger.error("Plugin %s failed to initialize: %s", plugin.name, e)
            raise
        with self._lock:
            self._status[plugin.name] = "completed"
        logger.debug("Plugin %s initialized", plugin.name)

    # -- initialization barrier ---------------------------------------------

    def is_plugin_ready(self, name: str) -> bool:
        return self._status.get(name) == "completed"

    def get_initialization_status(self) -> Dict[str, InitStatus]:
        """Snapshot of plugin initialization states."""
        with self._lock:
            return dict(self._status)

    def wait_for_plugin(self, name: str, timeout: Optional[float] = None) -> None:
        """Block until one plugin has initialized; raise if it failed."""
        if name not in self._plugins:
            raise RegistryError(f"Plugin {name} is not registered")
        future = self._futures.get(name)
        if future is not None:
            try:
                future.result(timeout=timeout)
            except concurrent.futures.TimeoutError:
                raise PluginInitializationError(
                    f"Plugin {name} did not initialize within {timeout}s", [name])
            except Exception as e:
                raise PluginInitializationError(
                    f"Plugin {name} failed to initialize: {e}", [name]) from e
        if self._status.get(name) == "failed":
            raise PluginInitializationError(
                f"Plugin {name} failed to initialize: {self._errors.get(name)}", [name])

    def wait_for_all_plugins(self, timeout: Optional[float] = None) -> None:
        """Barrier: every registered plugin has completed, or raise listing the failures."""
        with self._lock:
            futures = dict(self._futures)
        if futures:
            done, pending = concurrent.futures.wait(futures.values(), timeout=timeout)
            if pending:
                stuck = [n for n, f in futures.items() if f in pending]
                raise PluginInitializationError(
                    f"Plugins still initializing after {timeout}s: {', '.join(stuck)}", stuck)

        failed = [n for n, s in self.get_initialization_status().items() if s == "failed"]
        if failed:
            raise PluginInitializationError(
                f"Plugin initialization failed: {', '.join(sorted(failed))}", sorted(failed))

    # -- lookups ------------------------------------------------------------

    def get_plugin(self, name: str) -> Optional[Plugin]:
        return self._plugins.get(name)

    def get_plugin_names(self) -> List[str]:
        return list(self._plugins)

    def get_plugin_facts(self) -> List[FactDefn]:
        facts = []
        for plugin in self._plugins.values():
            facts.extend(plugin.facts)
        return facts

    def get_plugin_operators(self) -> List[OperatorDefn]:
        operators = []
        for plugin in self._plugins.values():
            operators.extend(plugin.operators)
        return operators

    def get_fact(self, name: str) -> FactDefn:
        for fact in self.get_plugin_facts():
            if fact.name == name:
                return fact
        raise UnknownFactError(name)

    def get_operator(self, name: str) -> OperatorDefn:
        for operator in self.get_plugin_operators():
            if operator.name == name:
                return operator
        raise UnknownOperatorError(name)

    def get_error_action(self, key: str) -> Callable[..., Any]:
        """Resolve a ``pluginName:functionName`` key."""
        plugin_name, sep, function_name = key.partition(":")
        if not sep:
            raise UnknownErrorActionError(key)
        plugin = self._plugins.get(plugin_name)
        if plugin is None or function_name not in plugin.functions:
            raise UnknownErrorActionError(key)
        return plugin.functions[function_name]

    def execute_plugin_function(self, plugin_name: str, function_name: str,
                                *args: Any, **kwargs: Any) -> PluginResult:
        """Call a plugin function, capturing its outcome instead of raising."""
        plugin = self._plugins.get(plugin_name)
        if plugin is None:
            return PluginResult(False, error=f"Plugin {plugin_name} not found")
        fn = plugin.functions.get(function_name)
        if fn is None:
            return PluginResult(False, error=f"Function {function_name} not found in plugin {plugin_name}")
        try:
            return PluginResult(True, data=fn(*args, **kwargs))
        except Exception as e:
            logger.error("Plugin function %s:%s failed: %s", plugin_name, function_name, e)
            return PluginResult(False, error=str(e))

    # -- lifecycle ----------------------------------------------------------

    def cleanup(self) -> None:
        """Run every plugin's cleanup hook; failures are logged and skipped."""
        for plugin in list(self._plugins.values()):
            if plugin.cleanup is None:
                continue
            try:
                plugin.cleanup()
            except Exception as e:
                logger.warning("Cleanup failed for plugin %s: %s", plugin.name, e)

    def reset(self) -> None:
        with self._lock:
            self._plugins.clear()
            self._status.clear()
            self._errors.clear()
            self._futures.clear()
            if self._executor is not None:
                self._executor.shutdown(wait=False)
                self._executor = None


# Global registry instance
_registry = PluginRegistry()


def get_registry() -> PluginRegistry:
    """Get the global plugin registry."""
    return _registry


def register_plugin(plugin: Plugin, options: Optional[Dict[str, Any]] = None) -> None:
    """Register a plugin in the global registry."""
    _registry.register_plugin(plugin, options)


def wait_for_all_plugins(timeout: Optional[float] = None) -> None:
    _registry.wait_for_all_plugins(timeout)
