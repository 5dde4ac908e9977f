"""
Filesystem plugin: per-file pattern search and repository layout checks.

Facts:
    repoFileAnalysis: regex matches in the current file, with positions
    directoryStructure: relative directories present in the repository

Operators:
    fileContains: the analysis found at least one match
    nonStandardDirectoryStructure: a directory from the standard layout is missing
"""

import logging
import os
import re
from typing import Any, Dict, List, Mapping, Optional

from engine.file_filter import EXCLUDED_DIRS
from engine.registry import FactDefn, OperatorDefn, Plugin
from engine.types import REPO_GLOBAL_CHECK

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_LENGTH = 50
MAX_DIRECTORY_DEPTH = 6

_SENSITIVE_ASSIGNMENT = re.compile(
    r"(?i)((?:password|passwd|secret|token|api[_-]?key|auth)[\w-]*\s*[:=]\s*['\"]?)([^'\"\s,;]+)")


def mask_sensitive_data(text: str) -> str:
    """Replace the value side of credential-looking assignments."""
    def _mask(match: "re.Match[str]") -> str:
        value = match.group(2)
        return match.group(1) + value[:2] + "*" * max(len(value) - 2, 3)
    return _SENSITIVE_ASSIGNMENT.sub(_mask, text)


def _context(line: str, start: int, end: int, length: int) -> str:
    if length <= 0 or length >= len(line):
        return line
    half = length // 2
    lo = max(0, start - half)
    hi = min(len(line), end + half)
    text = line[lo:hi]
    if lo > 0:
        text = "..." + text
    if hi < len(line):
        text = text + "..."
    return text


def repo_file_analysis(params: Dict[str, Any], almanac: Any) -> Dict[str, Any]:
    patterns = params.get("checkPattern") or []
    if isinstance(patterns, str):
        patterns = [patterns]
    context_length = int(params.get("contextLength", DEFAULT_CONTEXT_LENGTH))
    capture_groups = bool(params.get("captureGroups", False))

    file_data = almanac.fact_value("fileData") or {}
    content = file_data.get("fileContent") or ""
    summary = {"totalMatches": 0, "patterns": list(patterns), "hasPositionData": True}
    if file_data.get("fileName") == REPO_GLOBAL_CHECK or not patterns or not content:
        return {"result": [], "matches": [], "summary": summary}

    compiled = [(p, re.compile(p)) for p in patterns]
    matches: List[Dict[str, Any]] = []
    for line_number, line in enumerate(content.split("\n"), start=1):
        for pattern, regex in compiled:
            for m in regex.finditer(line):
                if not m.group(0):
                    continue
                start_column = m.start() + 1
                end_column = start_column + len(m.group(0))
                entry = {
                    "pattern": pattern,
                    "match": m.group(0),
                    "lineNumber": line_number,
                    "columnNumber": start_column,
                    "range": {
                        "start": {"line": line_number, "column": start_column},
                        "end": {"line": line_number, "column": end_column},
                    },
                    "context": mask_sensitive_data(_context(line, m.start(), m.end(), context_length)),
                }
                if capture_groups and m.groups():
                    entry["groups"] = list(m.groups())
                matches.append(entry)

    logger.debug("repoFileAnalysis found %d matches in %s", len(matches), file_data.get("filePath"))
    summary["totalMatches"] = len(matches)
    return {
        "result": [{"match": m["pattern"], "lineNumber": m["lineNumber"], "line": m["context"]}
                   for m in matches],
        "matches": matches,
        "summary": summary,
    }


def file_contains(fact_value: Any, compare_value: Any) -> bool:
    if not isinstance(fact_value, Mapping):
        return False
    found = len(fact_value.get("result") or []) > 0
    return found == bool(compare_value)


def directory_structure(params: Dict[str, Any], almanac: Any) -> Optional[List[str]]:
    """Repository-relative directories, '/'-separated, excluding tool directories."""
    repo_path = almanac.fact_value("repoPath")
    if not repo_path or not os.path.isdir(repo_path):
        return None
    root = os.path.abspath(repo_path)
    found: List[str] = []
    for dirpath, dirnames, _ in os.walk(root):
        relative = os.path.relpath(dirpath, root)
        depth = 0 if relative == "." else relative.count(os.sep) + 1
        dirnames[:] = sorted(d for d in dirnames if d not in EXCLUDED_DIRS)
        if depth >= MAX_DIRECTORY_DEPTH:
            dirnames[:] = []
        if relative != ".":
            found.append(relative.replace(os.sep, "/"))
    return found


def _expected_directories(structure: Any, prefix: str = "") -> List[str]:
    if not isinstance(structure, Mapping):
        return []
    expected = []
    for name, children in structure.items():
        path = f"{prefix}/{name}" if prefix else name
        expected.append(path)
        expected.extend(_expected_directories(children, path))
    return expected


def missing_directories(actual: List[str], standard: Any) -> List[str]:
    present = set(actual)
    return [d for d in _expected_directories(standard) if d not in present]


def non_standard_directory_structure(fact_value: Any, compare_value: Any) -> bool:
    if fact_value is None or not isinstance(compare_value, Mapping):
        return False
    missing = missing_directories(list(fact_value), compare_value)
    if missing:
        logger.debug("Missing standard directories: %s", ", ".join(missing))
    return bool(missing)


plugin = Plugin(
    name="xfiPluginFilesystem",
    version="1.0.0",
    description="File content pattern analysis and directory layout checks",
    facts=[
        FactDefn("repoFileAnalysis", repo_file_analysis,
                 "Regex analysis of the current file with match positions"),
        FactDefn("directoryStructure", directory_structure,
                 "Directories present in the repository"),
    ],
    operators=[
        OperatorDefn("fileContains", file_contains, "The file analysis found matches"),
        OperatorDefn("nonStandardDirectoryStructure", non_standard_directory_structure,
                     "The repository is missing directories from the standard layout"),
    ],
)
