"""
Built-in plugins for the analysis engine.

Usage:
    from plugins import register_builtin_plugins

    register_builtin_plugins()          # into the global registry
    register_builtin_plugins(registry)  # into an isolated one
"""

from typing import List, Optional

from engine.registry import Plugin, PluginRegistry, get_registry

from .ast_metrics import plugin as ast_plugin
from .dependency import plugin as dependency_plugin
from .filesystem import plugin as filesystem_plugin
from .patterns import plugin as patterns_plugin
from .required_files import plugin as required_files_plugin

BUILTIN_PLUGINS: List[Plugin] = [
    filesystem_plugin,
    patterns_plugin,
    dependency_plugin,
    required_files_plugin,
    ast_plugin,
]


def register_builtin_plugins(registry: Optional[PluginRegistry] = None) -> PluginRegistry:
    """Register every built-in plugin; already registered ones are skipped."""
    registry = registry or get_registry()
    for plugin in BUILTIN_PLUGINS:
        registry.register_plugin(plugin)
    return registry


__all__ = [
    "BUILTIN_PLUGINS",
    "register_builtin_plugins",
    "ast_plugin",
    "dependency_plugin",
    "filesystem_plugin",
    "patterns_plugin",
    "required_files_plugin",
]
