"""
Shared fixtures for engine, plugin and server tests.
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

import pytest

from engine.config import ConfigCache
from engine.registry import FactDefn, OperatorDefn, Plugin, PluginRegistry
from engine.types import (
    ArchetypeConfig,
    ExecutionConfig,
    FileData,
    RuleConfig,
)


PER_FILE = {"fact": "fileData", "path": "$.fileName", "operator": "notEqual",
            "value": "REPO_GLOBAL_CHECK"}
GLOBAL_ONLY = {"fact": "fileData", "path": "$.fileName", "operator": "equal",
               "value": "REPO_GLOBAL_CHECK"}


def make_archetype(name: str = "test-archetype", rules: List[str] = None,
                   facts: List[str] = None, operators: List[str] = None) -> Dict[str, Any]:
    return {
        "name": name,
        "rules": rules or ["todo-iterative"],
        "operators": operators or ["fileContains"],
        "facts": facts or ["repoFileAnalysis"],
        "config": {
            "minimumDependencyVersions": {},
            "standardStructure": {},
            "blacklistPatterns": [],
            "whitelistPatterns": [r".*\.(py|js|ts|md)$"],
        },
    }


def make_rule(name: str = "todo-iterative", level: str = "warning",
              conditions: Dict[str, Any] = None, **extra: Any) -> Dict[str, Any]:
    rule = {
        "name": name,
        "conditions": conditions or {"all": [
            PER_FILE,
            {
                "fact": "repoFileAnalysis",
                "params": {"checkPattern": ["TODO"], "resultFact": "todoMatches"},
                "operator": "fileContains",
                "value": True,
            },
        ]},
        "event": {"type": level, "params": {
            "message": f"{name} fired",
            "details": {"fact": "todoMatches"},
        }},
    }
    rule.update(extra)
    return rule


def future_date(days: int = 30) -> str:
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


def past_date(days: int = 30) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()


def write_json(path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")


@pytest.fixture
def registry():
    """A registry with the built-in plugins, isolated from the global one."""
    from plugins import register_builtin_plugins
    reg = PluginRegistry()
    register_builtin_plugins(reg)
    reg.wait_for_all_plugins(timeout=30)
    yield reg
    reg.reset()


@pytest.fixture
def counting_registry():
    """A registry with one counting fact and a threshold operator."""
    calls = {"count": 0}

    def counted(params, almanac):
        calls["count"] += 1
        file_data = almanac.fact_value("fileData")
        return len(file_data["fileContent"])

    reg = PluginRegistry()
    reg.register_plugin(Plugin(
        name="counter",
        version="1.0.0",
        facts=[FactDefn("contentLength", counted, offload=True)],
        operators=[OperatorDefn("atLeast", lambda a, b: a is not None and a >= b)],
    ))
    reg.calls = calls
    yield reg
    reg.reset()


@pytest.fixture
def config_dir(tmp_path):
    """A local config directory holding one archetype and its rule."""
    root = tmp_path / "config"
    write_json(root / "test-archetype.json", make_archetype())
    write_json(root / "rules" / "todo-iterative-rule.json", make_rule())
    return root


@pytest.fixture
def cache():
    return ConfigCache()


@pytest.fixture
def repo(tmp_path):
    """A small repository with one TODO file and one clean file."""
    root = tmp_path / "repo"
    (root / "src").mkdir(parents=True)
    (root / "src" / "app.py").write_text("def main():\n    # TODO: remove\n    return 1\n")
    (root / "src" / "util.py").write_text("def helper():\n    return 2\n")
    (root / "README.md").write_text("# repo\n")
    return root


def execution_config(rules: List[Dict[str, Any]], facts: List[str], operators: List[str],
                     exemptions=(), name: str = "test-archetype") -> ExecutionConfig:
    archetype = make_archetype(name, rules=[r["name"] for r in rules],
                               facts=facts, operators=operators)
    return ExecutionConfig(
        archetype=ArchetypeConfig.from_dict(archetype),
        rules=tuple(RuleConfig.from_dict(r) for r in rules),
        exemptions=tuple(exemptions),
        correlation_id="test",
    )


def file_unit(path: str, content: str) -> FileData:
    name = path.rsplit("/", 1)[-1]
    return FileData(file_name=name, file_path=path, content=content, relative_path=path)
