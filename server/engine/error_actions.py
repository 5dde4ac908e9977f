"""
Error actions: recovery hooks run when a rule fails to evaluate.

A rule names its hook in ``onError.action``. Names of the form
``pluginName:functionName`` resolve through the plugin registry; the
built-in actions are ``sendNotification`` and ``logToFile``. The error
context handed to any action has sensitive values redacted.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from .errors import UnknownErrorActionError
from .registry import PluginRegistry, PluginResult

logger = logging.getLogger(__name__)

SENSITIVE_FIELDS = ("password", "apikey", "token", "secret", "key", "auth")
REDACTED = "[REDACTED]"
MAX_DEPTH = 8


def safe_serialize(value: Any, depth: int = 0) -> Any:
    """JSON-friendly copy of value with sensitive keys redacted."""
    if depth > MAX_DEPTH:
        return "[MaxDepth]"
    if isinstance(value, dict) or hasattr(value, "items"):
        result = {}
        for key, item in value.items():
            lowered = str(key).lower()
            if any(f in lowered for f in SENSITIVE_FIELDS):
                result[str(key)] = REDACTED
            else:
                result[str(key)] = safe_serialize(item, depth + 1)
        return result
    if isinstance(value, (list, tuple, set)):
        return [safe_serialize(v, depth + 1) for v in value]
    if isinstance(value, BaseException):
        return {"type": type(value).__name__, "message": str(value)}
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


@dataclass(frozen=True)
class ErrorActionContext:
    """What went wrong, handed to the action."""
    rule_name: str
    file_path: str
    level: str
    error: BaseException
    params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return safe_serialize({
            "rule": self.rule_name,
            "filePath": self.file_path,
            "level": self.level,
            "error": self.error,
            "params": self.params,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })


def send_notification(context: Dict[str, Any], params: Dict[str, Any]) -> Dict[str, Any]:
    channel = params.get("channel", "log")
    logger.warning("Notification (%s): rule %s failed on %s: %s", channel,
                   context.get("rule"), context.get("filePath"),
                   (context.get("error") or {}).get("message"))
    return {"notified": True, "channel": channel}


def log_to_file(context: Dict[str, Any], params: Dict[str, Any]) -> Dict[str, Any]:
    path = params.get("filePath")
    if not path:
        logger.error("Rule error: %s", json.dumps(context, sort_keys=True))
        return {"logged": True, "filePath": None}
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps(context, sort_keys=True) + "\n")
    return {"logged": True, "filePath": path}


BUILTIN_ACTIONS: Dict[str, Callable[[Dict[str, Any], Dict[str, Any]], Any]] = {
    "sendNotification": send_notification,
    "logToFile": log_to_file,
}


def execute_error_action(action: str, context: ErrorActionContext,
                         registry: Optional[PluginRegistry] = None) -> PluginResult:
    """Run one error action. Never raises; the outcome is in the result."""
    payload = context.to_dict()
    params = safe_serialize(context.params)

    if ":" in action:
        if registry is None:
            return PluginResult(False, error=f"No registry to resolve {action}")
        try:
            fn = registry.get_error_action(action)
        except UnknownErrorActionError as e:
            logger.error("Error action %s for rule %s: %s", action, context.rule_name, e)
            return PluginResult(False, error=str(e))
    else:
        fn = BUILTIN_ACTIONS.get(action)
        if fn is None:
            logger.error("Unknown error action %s for rule %s", action, context.rule_name)
            return PluginResult(False, error=f"Unknown error action: {action}")

    try:
        return PluginResult(True, data=fn(payload, params))
    except Exception as e:
        logger.error("Error action %s for rule %s failed: %s", action, context.rule_name, e)
        return PluginResult(False, error=str(e))
