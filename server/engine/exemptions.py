"""
Exemption store.

Exemptions are time-bounded suppressions of one rule for one repository.
They are loaded from the config server, then local files, then the
built-in defaults, and matched against a normalized repository identity.
"""

import fnmatch
import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, List, Optional, Tuple

from .errors import ConfigurationError, InvalidRepoUrlError
from .profiles import get_builtin_exemptions
from .remote import RemoteConfigClient, is_valid_name
from .schema import exemption_errors
from .telemetry import NULL_TELEMETRY, Telemetry
from .types import Exemption

logger = logging.getLogger(__name__)

_HTTP_URL = re.compile(r"^https?://([^/]+)/([^/]+)/([^/]+?)(?:\.git)?/?$")
_SSH_URL = re.compile(r"^git@([^:]+):(.+?)(?:\.git)?$")
_SHORT_FORM = re.compile(r"^([\w.-]+)/([\w.-]+?)(?:\.git)?$")


def normalize_repo_url(url: str) -> str:
    """Collapse HTTPS, SSH and ``org/repo`` forms into ``git@host:org/repo.git``.

    Raises InvalidRepoUrlError for anything else.
    """
    if not isinstance(url, str) or not url.strip():
        raise InvalidRepoUrlError(url)
    url = url.strip()

    match = _SSH_URL.match(url)
    if match:
        return f"git@{match.group(1)}:{match.group(2)}.git"

    match = _HTTP_URL.match(url)
    if match:
        host = match.group(1).split("@")[-1]
        return f"git@{host}:{match.group(2)}/{match.group(3)}.git"

    match = _SHORT_FORM.match(url)
    if match:
        return f"git@github.com:{match.group(1)}/{match.group(2)}.git"

    raise InvalidRepoUrlError(url)


def _parse_entries(payload: Any, source: str) -> List[Exemption]:
    """Validate one loaded array; bad entries are dropped individually."""
    if not isinstance(payload, list):
        logger.warning("Exemptions from %s are not an array, ignoring", source)
        return []

    exemptions = []
    for index, entry in enumerate(payload):
        errors = exemption_errors(entry)
        if errors:
            logger.warning("Dropping malformed exemption #%d from %s: %s",
                           index, source, "; ".join(errors))
            continue
        exemptions.append(Exemption.from_dict(entry))
    return exemptions


def _read_json(path: Path) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _is_inside(path: Path, directory: Path) -> bool:
    try:
        return path.resolve().is_relative_to(directory.resolve())
    except OSError:
        return False


def _load_local(archetype: str, local_path: str) -> Tuple[bool, List[Exemption]]:
    """Read the legacy file plus the sharded directory.

    Returns (found_any_source, exemptions).
    """
    base = Path(local_path)
    found = False
    exemptions: List[Exemption] = []

    legacy = base / f"{archetype}-exemptions.json"
    if legacy.is_file():
        found = True
        if not _is_inside(legacy, base):
            logger.warning("Exemption file %s escapes %s, skipping", legacy, base)
        else:
            try:
                exemptions.extend(_parse_entries(_read_json(legacy), str(legacy)))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Could not read exemption file %s: %s", legacy, e)

    shard_dir = base / f"{archetype}-exemptions"
    if shard_dir.is_dir():
        found = True
        suffix = f"-{archetype}-exemptions.json"
        for path in sorted(shard_dir.iterdir()):
            if not path.name.endswith(suffix) or not path.is_file():
                continue
            if not _is_inside(path, shard_dir):
                logger.warning("Exemption file %s escapes %s, skipping", path, shard_dir)
                continue
            try:
                exemptions.extend(_parse_entries(_read_json(path), str(path)))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Could not read exemption file %s: %s", path, e)

    return found, exemptions


def load_exemptions(archetype: str, remote: Optional[RemoteConfigClient] = None,
                    local_path: Optional[str] = None,
                    correlation_id: str = "") -> List[Exemption]:
    """Load exemptions for an archetype: remote, then local files, then built-in.

    Exemption sources never abort a run. A failing remote is logged and the
    next source is tried.
    """
    if not is_valid_name(archetype):
        logger.error("Refusing to load exemptions for invalid archetype name %r", archetype)
        return []

    if remote is not None:
        try:
            payload = remote.fetch_exemptions(archetype, correlation_id)
        except ConfigurationError as e:
            logger.error("[%s] Failed to fetch remote exemptions for %s: %s",
                         correlation_id, archetype, e)
        else:
            if isinstance(payload, list):
                exemptions = _parse_entries(payload, f"{remote.base_url} ({archetype})")
                logger.info("[%s] Loaded %d remote exemptions for %s",
                            correlation_id, len(exemptions), archetype)
                return exemptions
            logger.warning("[%s] Remote exemptions for %s are not an array, falling back",
                           correlation_id, archetype)

    if local_path:
        found, exemptions = _load_local(archetype, local_path)
        if found:
            logger.info("Loaded %d local exemptions for %s", len(exemptions), archetype)
            return exemptions

    return _parse_entries(get_builtin_exemptions(archetype), f"built-in ({archetype})")


def _rule_matches(rule_name: str, pattern: str) -> bool:
    return rule_name == pattern or fnmatch.fnmatchcase(rule_name, pattern)


def is_exempt(repo_url: Optional[str], rule_name: str, exemptions: Iterable[Exemption],
              now: Optional[datetime] = None, telemetry: Optional[Telemetry] = None) -> bool:
    """Return True if an unexpired exemption covers (repo_url, rule_name)."""
    if not repo_url:
        logger.warning("No repository URL available; exemptions cannot apply to %s", rule_name)
        return False

    now = now or datetime.now(timezone.utc)
    telemetry = telemetry or NULL_TELEMETRY

    try:
        normalized = normalize_repo_url(repo_url)
    except InvalidRepoUrlError as e:
        logger.error("Cannot check exemptions: %s", e)
        return False

    for exemption in exemptions:
        try:
            exemption_repo = normalize_repo_url(exemption.repo_url)
        except InvalidRepoUrlError:
            logger.warning("Skipping exemption with invalid repoUrl %r", exemption.repo_url)
            continue
        if exemption_repo != normalized or not _rule_matches(rule_name, exemption.rule):
            continue
        if not exemption.is_active(now):
            continue

        logger.error("Exemption applied: rule %s for %s until %s (%s)", rule_name,
                     normalized, exemption.expiration_date.isoformat(), exemption.reason)
        telemetry.send("exemptionAllowed", {
            "repoUrl": normalized,
            "rule": rule_name,
            "expirationDate": exemption.expiration_date.isoformat(),
            "reason": exemption.reason,
        })
        return True

    return False


class ExemptionStore:
    """Exemptions for one archetype, checked rule by rule."""

    def __init__(self, exemptions: Iterable[Exemption], telemetry: Optional[Telemetry] = None):
        self.exemptions: Tuple[Exemption, ...] = tuple(exemptions)
        self.telemetry = telemetry or NULL_TELEMETRY

    def __len__(self) -> int:
        return len(self.exemptions)

    def exempt_rules(self, repo_url: Optional[str], rule_names: Iterable[str],
                     now: Optional[datetime] = None) -> List[str]:
        """Rule names currently exempted for a repository."""
        rule_names = list(rule_names)
        if not repo_url:
            if self.exemptions:
                logger.warning("No repository URL available; %d exemptions ignored",
                               len(self.exemptions))
            return []
        return [name for name in rule_names
                if is_exempt(repo_url, name, self.exemptions, now, self.telemetry)]
