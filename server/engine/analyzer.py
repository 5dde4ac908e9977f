"""
End-to-end analysis of one repository against one archetype.

    resolve config -> plugin barrier -> collect files -> repository overrides
    -> schedule -> evaluate changed files -> reuse cached results -> report

Usage:
    from engine.analyzer import analyze_codebase

    report = analyze_codebase("/path/to/repo", "node-fullstack")
    if report.has_fatalities:
        ...
"""

import configparser
import logging
import os
import time
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional

from .config import ConfigResolver, get_resolver
from .file_filter import collect_file_data
from .registry import PluginRegistry, get_registry
from .repo_config import load_repo_config
from .runner import ExecutionEngine
from .scheduler import AnalysisScheduler
from .settings import EngineSettings, settings as default_settings
from .telemetry import Telemetry
from .types import FileData, Issue, IssueReport
from .workers import WorkerPool

logger = logging.getLogger(__name__)


def get_repo_url(repo_path: str) -> Optional[str]:
    """The ``origin`` remote URL from the repository's .git/config, if any."""
    path = os.path.join(repo_path, ".git", "config")
    if not os.path.isfile(path):
        return None
    parser = configparser.ConfigParser(strict=False, interpolation=None)
    try:
        parser.read(path, encoding="utf-8")
    except configparser.Error as e:
        logger.warning("Could not parse %s: %s", path, e)
        return None
    section = 'remote "origin"'
    if parser.has_section(section):
        return parser.get(section, "url", fallback=None)
    return None


def analyze_codebase(repo_path: str, archetype: Optional[str] = None,
                     resolver: Optional[ConfigResolver] = None,
                     registry: Optional[PluginRegistry] = None,
                     scheduler: Optional[AnalysisScheduler] = None,
                     pool: Optional[WorkerPool] = None,
                     telemetry: Optional[Telemetry] = None,
                     repo_url: Optional[str] = None,
                     installed_dependencies: Optional[Mapping[str, str]] = None,
                     engine_settings: Optional[EngineSettings] = None,
                     plugin_timeout: Optional[float] = None) -> IssueReport:
    """
    Analyze a repository and return its issue report.

    Args:
        repo_path: Repository root
        archetype: Archetype name; defaults to the configured one
        resolver: Config resolver; defaults to the process-wide one
        registry: Plugin registry; the built-in plugins are registered
            into it when it is empty
        scheduler: Keep one across calls to skip unchanged files. Its
            background refresh is started here and left to the caller
            to stop
        pool: Worker pool for offloaded facts; one is created and shut
            down when not given
        repo_url: Repository identity for exemptions; read from
            .git/config when not given

    Raises:
        ConfigurationError: the configured config server could not be used
        PluginInitializationError: a plugin failed to initialize
    """
    s = engine_settings or default_settings
    archetype = archetype or s.archetype
    resolver = resolver or get_resolver()
    registry = registry or get_registry()
    if not registry.get_plugin_names():
        from plugins import register_builtin_plugins
        register_builtin_plugins(registry)

    start = time.time()
    started_at = datetime.now(timezone.utc)
    repo_path = os.path.abspath(repo_path)

    config = resolver.resolve(archetype)
    registry.wait_for_all_plugins(timeout=plugin_timeout)

    telemetry = telemetry or Telemetry(client=resolver.remote, enabled=s.telemetry_enabled,
                                       correlation_id=config.correlation_id)
    repo_url = repo_url or get_repo_url(repo_path)

    repo_config = load_repo_config(repo_path)
    config = repo_config.apply(config)
    files = repo_config.filter_files(collect_file_data(repo_path, config.archetype.config))

    owned_scheduler = scheduler is None
    scheduler = scheduler or AnalysisScheduler(s.batch_size, s.hash_batch_size)
    plan = scheduler.plan(files)

    cached: Dict[str, List[Issue]] = {}
    to_run: List[FileData] = plan.ordered_files()
    for file in plan.cache_hits:
        issues = scheduler.cached_results(file.file_path)
        if issues is None:
            to_run.append(file)
        else:
            cached[file.file_path] = issues

    owned_pool = pool is None
    pool = pool or WorkerPool(s.worker_count, s.worker_timeout)
    try:
        engine = ExecutionEngine(registry, worker_pool=pool, telemetry=telemetry)
        report = engine.run(to_run, config, repo_url=repo_url, repo_path=repo_path,
                            installed_dependencies=installed_dependencies, all_files=files)
    finally:
        if owned_pool:
            pool.shutdown()

    scheduler.commit(plan)
    # A kept scheduler pre-hashes recent changes between runs
    if not owned_scheduler and not scheduler.refreshing:
        scheduler.start_background_refresh(s.rehash_interval)
    for file in to_run:
        scheduler.record_results(file.file_path, report.files.get(file.file_path, []))
    for file_path, issues in cached.items():
        report.add(file_path, issues)

    finished_at = datetime.now(timezone.utc)
    report.file_count = len(files)
    report.metadata.update({
        "repoPath": repo_path,
        "repoUrl": repo_url,
        "startTime": started_at.isoformat(),
        "finishTime": finished_at.isoformat(),
        "durationSeconds": round(time.time() - start, 3),
        "options": dict(config.cli_options),
        "cacheHits": len(cached),
        "estimatedSpeedup": plan.estimated_speedup,
    })

    telemetry.send("analysisEnd", {
        "archetype": config.name,
        "repoUrl": repo_url,
        "fileCount": report.file_count,
        "totalIssues": report.total_issues,
        "fatalityCount": report.fatality_count,
        "durationSeconds": report.metadata["durationSeconds"],
    })
    logger.info("[%s] Analysis of %s finished: %d files, %d issues (%d fatal) in %.2fs",
                config.correlation_id, repo_path, report.file_count, report.total_issues,
                report.fatality_count, report.metadata["durationSeconds"])
    return report
