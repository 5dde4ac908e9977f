"""
Required files plugin: files every repository of an archetype must ship.
"""

import logging
import os
from typing import Any, Dict, List, Mapping

from engine.file_filter import EXCLUDED_DIRS
from engine.registry import FactDefn, OperatorDefn, Plugin

logger = logging.getLogger(__name__)

DEFAULT_REQUIRED_FILES = ["README.md"]


def _repository_files(repo_path: str) -> List[str]:
    files = []
    for dirpath, dirnames, filenames in os.walk(repo_path):
        dirnames[:] = [d for d in dirnames if d not in EXCLUDED_DIRS]
        for name in filenames:
            files.append(os.path.relpath(os.path.join(dirpath, name), repo_path).replace(os.sep, "/"))
    return files


def missing_required_files(params: Dict[str, Any], almanac: Any) -> Dict[str, Any]:
    """Required paths (case-insensitive, repository-relative) that do not exist."""
    required = params.get("requiredFiles")
    if required is None:
        required = DEFAULT_REQUIRED_FILES
    repo_path = almanac.fact_value("repoPath")
    if not repo_path or not os.path.isdir(repo_path):
        return {"missing": [], "total": len(required), "found": 0}

    present = {p.lower() for p in _repository_files(repo_path)}
    missing = [p for p in required if p.lstrip("/").lower() not in present]
    return {"missing": missing, "total": len(required), "found": len(required) - len(missing)}


def missing_required_files_operator(fact_value: Any, compare_value: Any) -> bool:
    if not isinstance(fact_value, Mapping):
        return False
    return (len(fact_value.get("missing") or []) > 0) == bool(compare_value)


plugin = Plugin(
    name="xfiPluginRequiredFiles",
    version="1.0.0",
    description="Checks for required files in the repository",
    facts=[
        FactDefn("missingRequiredFiles", missing_required_files,
                 "Checks for required files in the repository"),
    ],
    operators=[
        OperatorDefn("missingRequiredFiles", missing_required_files_operator,
                     "At least one required file is missing"),
    ],
)
