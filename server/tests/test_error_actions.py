"""
Tests for rule error actions and context redaction.
"""

import json

from engine.error_actions import (
    REDACTED,
    ErrorActionContext,
    execute_error_action,
    safe_serialize,
)
from engine.registry import Plugin, PluginRegistry


def _context(**params):
    return ErrorActionContext(
        rule_name="todo-iterative",
        file_path="/repo/app.py",
        level="warning",
        error=ValueError("bad regex"),
        params=params,
    )


class TestSafeSerialize:
    def test_sensitive_keys_are_redacted(self):
        data = safe_serialize({
            "password": "p",
            "apiKey": "k",
            "nested": {"authHeader": "Bearer x", "safe": 1},
            "items": [{"token": "t"}],
        })
        assert data["password"] == REDACTED
        assert data["apiKey"] == REDACTED
        assert data["nested"] == {"authHeader": REDACTED, "safe": 1}
        assert data["items"] == [{"token": REDACTED}]

    def test_exceptions_and_objects(self):
        assert safe_serialize(KeyError("x")) == {"type": "KeyError", "message": "'x'"}
        assert safe_serialize(object()).startswith("<object")

    def test_depth_is_bounded(self):
        value = {}
        current = value
        for _ in range(20):
            current["child"] = {}
            current = current["child"]
        text = json.dumps(safe_serialize(value))
        assert "[MaxDepth]" in text

    def test_context_to_dict(self):
        data = _context(secretValue="s", channel="ops").to_dict()
        assert data["rule"] == "todo-iterative"
        assert data["error"] == {"type": "ValueError", "message": "bad regex"}
        assert data["params"] == {"secretValue": REDACTED, "channel": "ops"}
        assert "timestamp" in data


class TestExecuteErrorAction:
    def test_send_notification(self, caplog):
        result = execute_error_action("sendNotification", _context(channel="ops"))
        assert result.success
        assert result.data == {"notified": True, "channel": "ops"}
        assert "bad regex" in caplog.text

    def test_log_to_file(self, tmp_path):
        path = tmp_path / "logs" / "errors.jsonl"
        result = execute_error_action("logToFile", _context(filePath=str(path)))
        assert result.success
        record = json.loads(path.read_text().splitlines()[0])
        assert record["filePath"] == "/repo/app.py"
        assert record["error"]["message"] == "bad regex"

    def test_plugin_action(self):
        calls = []
        registry = PluginRegistry()
        registry.register_plugin(Plugin(name="alerts", version="1.0.0",
                                        functions={"page": lambda ctx, params: calls.append(ctx)}))
        result = execute_error_action("alerts:page", _context(), registry)
        assert result.success
        assert calls[0]["rule"] == "todo-iterative"

    def test_unknown_actions_fail_without_raising(self, caplog):
        assert not execute_error_action("noSuchAction", _context()).success
        assert not execute_error_action("alerts:page", _context(), PluginRegistry()).success
        assert not execute_error_action("alerts:page", _context()).success
        assert "Unknown error action" in caplog.text

    def test_failing_action_is_captured(self):
        registry = PluginRegistry()

        def broken(ctx, params):
            raise OSError("disk full")

        registry.register_plugin(Plugin(name="alerts", version="1.0.0",
                                        functions={"page": broken}))
        result = execute_error_action("alerts:page", _context(), registry)
        assert not result.success
        assert result.error == "disk full"
