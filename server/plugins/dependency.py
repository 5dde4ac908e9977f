"""
Dependency plugin: installed package versions against archetype minimums.

Installed versions come from the engine's ``dependencyData`` fact. When
the caller supplied none, they are read from the repository's
``package.json`` and ``node_modules``. Version ranges use npm's caret and
tilde forms; comparisons are done with ``packaging.version``.
"""

import json
import logging
import os
import re
from typing import Any, Dict, List, Optional, Tuple

from packaging.version import InvalidVersion, Version

from engine.registry import FactDefn, OperatorDefn, Plugin

logger = logging.getLogger(__name__)

MANIFEST = "package.json"
DEPENDENCY_SECTIONS = ("dependencies", "devDependencies", "peerDependencies")

_VERSION_PREFIX = re.compile(r"^[\s^~>=<v]+")


def parse_version(text: str) -> Optional[Version]:
    """Best-effort parse of an npm version or the lower bound of a range."""
    if not text:
        return None
    first = text.split("||")[0].strip().split(" ")[0]
    try:
        return Version(_VERSION_PREFIX.sub("", first))
    except InvalidVersion:
        return None


def version_bounds(required: str) -> Tuple[Optional[Version], Optional[Version]]:
    """(lower, exclusive upper) for a requirement; upper is None when open-ended."""
    required = required.strip()
    lower = parse_version(required)
    if lower is None:
        return None, None
    major, minor, micro = (list(lower.release) + [0, 0])[:3]
    if required.startswith("^"):
        if major > 0:
            return lower, Version(f"{major + 1}.0.0")
        if minor > 0:
            return lower, Version(f"0.{minor + 1}.0")
        return lower, Version(f"0.0.{micro + 1}")
    if required.startswith("~"):
        return lower, Version(f"{major}.{minor + 1}.0")
    return lower, None


def satisfies(installed: str, required: str) -> Optional[bool]:
    """Whether installed meets required; None when either is unparseable."""
    version = parse_version(installed)
    lower, upper = version_bounds(required)
    if version is None or lower is None:
        return None
    if version.is_prerelease:
        return version >= lower
    if version < lower:
        return False
    return upper is None or version < upper


def collect_installed_dependencies(repo_path: str) -> Dict[str, str]:
    """Versions declared in package.json, refined by node_modules when installed."""
    manifest = os.path.join(repo_path, MANIFEST)
    if not os.path.isfile(manifest):
        return {}
    try:
        with open(manifest, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Could not read %s: %s", manifest, e)
        return {}

    versions: Dict[str, str] = {}
    for section in DEPENDENCY_SECTIONS:
        for name, spec in (data.get(section) or {}).items():
            versions.setdefault(name, str(spec))

    for name in list(versions):
        installed = os.path.join(repo_path, "node_modules", name, MANIFEST)
        if not os.path.isfile(installed):
            continue
        try:
            with open(installed, "r", encoding="utf-8") as f:
                versions[name] = str(json.load(f).get("version", versions[name]))
        except (OSError, ValueError) as e:
            logger.debug("Could not read %s: %s", installed, e)
    return versions


def _manifest_location(repo_path: Optional[str], dependency: str) -> Optional[Dict[str, Any]]:
    if not repo_path:
        return None
    manifest = os.path.join(repo_path, MANIFEST)
    try:
        with open(manifest, "r", encoding="utf-8") as f:
            lines = f.read().split("\n")
    except OSError:
        return None
    needle = f'"{dependency}"'
    for number, line in enumerate(lines, start=1):
        column = line.find(needle)
        if column >= 0:
            return {
                "manifestPath": MANIFEST,
                "startLine": number,
                "startColumn": column + 1,
                "endLine": number,
                "endColumn": len(line) + 1,
            }
    return None


def repo_dependency_analysis(params: Dict[str, Any], almanac: Any) -> List[Dict[str, Any]]:
    dependency_data = almanac.fact_value("dependencyData") or {}
    minimums = dependency_data.get("minimumDependencyVersions") or {}
    installed = dependency_data.get("installedDependencyVersions") or {}
    repo_path = almanac.fact_value("repoPath")
    if not installed and repo_path:
        installed = collect_installed_dependencies(repo_path)

    failures = []
    for name, required in sorted(minimums.items()):
        current = installed.get(name)
        if current is None:
            continue
        ok = satisfies(current, required)
        if ok is None:
            logger.error("Cannot compare %s versions %r and %r", name, current, required)
            continue
        if not ok:
            failure = {"dependency": name, "currentVersion": current, "requiredVersion": required}
            location = _manifest_location(repo_path, name)
            if location:
                failure["location"] = location
            logger.error("Dependency below minimum: %s", failure)
            failures.append(failure)
    return failures


def outdated_framework(fact_value: Any, compare_value: Any) -> bool:
    if not isinstance(fact_value, list):
        return False
    return (len(fact_value) > 0) == bool(compare_value)


plugin = Plugin(
    name="xfiPluginDependency",
    version="1.0.0",
    description="Installed dependency versions against archetype minimums",
    facts=[
        FactDefn("repoDependencyAnalysis", repo_dependency_analysis,
                 "Dependencies whose installed version is below the minimum"),
    ],
    operators=[
        OperatorDefn("outdatedFramework", outdated_framework,
                     "At least one dependency is below its minimum version"),
    ],
)
