"""
Repository file collection for the analysis engine.

Walks a repository and yields FileData for every file that passes the
archetype's blacklist/whitelist patterns. Patterns are regular
expressions matched against the repository-relative path written with
forward slashes and a leading slash (e.g. ``/src/index.ts``), so the
location of the checkout itself never affects matching.

Usage:
    from engine.file_filter import collect_file_data

    files = collect_file_data(repo_path, config.archetype.config)
"""

import logging
import os
import re
from functools import lru_cache
from typing import FrozenSet, Iterable, List, Optional, Pattern

from .types import ArchetypeSettings, FileData

logger = logging.getLogger(__name__)


# ============================================================================
# ALWAYS-PRUNED DIRECTORIES
# ============================================================================
# Never descended into regardless of archetype patterns. Version control
# metadata and dependency trees are large and never analysis targets.
EXCLUDED_DIRS: FrozenSet[str] = frozenset([
    ".git",
    ".svn",
    ".hg",
    "node_modules",
    "bower_components",
    "jspm_packages",
    ".venv",
    "venv",
    "__pycache__",
    ".pytest_cache",
    ".mypy_cache",
    ".tox",
    ".xfiResults",
])

MAX_FILE_BYTES = 2_000_000


@lru_cache(maxsize=256)
def _compile(pattern: str) -> Pattern[str]:
    return re.compile(pattern)


def _inside(path: str, root: str) -> bool:
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


def _match_path(file_path: str, repo_path: str) -> Optional[str]:
    """Repository-relative match path, or None if file_path escapes the repository."""
    normalized = os.path.abspath(file_path)
    root = os.path.abspath(repo_path)
    if not _inside(normalized, root):
        logger.warning("Potential path traversal attempt detected: %s", file_path)
        return None
    relative = os.path.relpath(normalized, root).replace(os.sep, "/")
    return "/" if relative == "." else "/" + relative


def is_blacklisted(file_path: str, repo_path: str, patterns: Iterable[str]) -> bool:
    """True if the path escapes the repository or matches any blacklist pattern."""
    match_path = _match_path(file_path, repo_path)
    if match_path is None:
        return True
    return any(_compile(p).search(match_path) for p in patterns)


def is_whitelisted(file_path: str, repo_path: str, patterns: Iterable[str]) -> bool:
    """True if the path is inside the repository and matches a whitelist pattern."""
    match_path = _match_path(file_path, repo_path)
    if match_path is None:
        return False
    return any(_compile(p).search(match_path) for p in patterns)


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        return f.read()


def collect_file_data(repo_path: str, settings: ArchetypeSettings) -> List[FileData]:
    """Collect analyzable files under repo_path in directory-walk order.

    Symlinks are followed only while they resolve inside the repository,
    and each real directory is visited once.
    """
    root = os.path.realpath(repo_path)
    files: List[FileData] = []
    visited = set()

    for dirpath, dirnames, filenames in os.walk(root, followlinks=True):
        real_dir = os.path.realpath(dirpath)
        if real_dir in visited or not _inside(real_dir, root):
            dirnames[:] = []
            continue
        visited.add(real_dir)

        dirnames[:] = sorted(
            d for d in dirnames
            if d not in EXCLUDED_DIRS
            and not is_blacklisted(os.path.join(dirpath, d), root, settings.blacklist_patterns)
        )

        for name in sorted(filenames):
            path = os.path.join(dirpath, name)
            real_path = os.path.realpath(path)
            if not _inside(real_path, root):
                logger.warning("Skipping %s: resolves outside the repository", path)
                continue
            if is_blacklisted(path, root, settings.blacklist_patterns):
                continue
            if not is_whitelisted(path, root, settings.whitelist_patterns):
                continue
            try:
                if os.path.getsize(real_path) > MAX_FILE_BYTES:
                    logger.info("Skipping %s: larger than %d bytes", path, MAX_FILE_BYTES)
                    continue
                content = _read_text(real_path)
            except OSError as e:
                logger.warning("Error reading file %s: %s", path, e)
                continue
            files.append(FileData(
                file_name=name,
                file_path=path,
                content=content,
                relative_path=os.path.relpath(path, root),
            ))

    logger.debug("Collected %d files from %s", len(files), root)
    return files
