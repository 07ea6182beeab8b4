"""Tests for centralized logging helpers."""
import json
import logging

from common.logging_utils import (
    JsonFormatter,
    Timer,
    configure_logging,
    extra_context,
    is_debug_enabled,
    redact,
    safe_url,
)


class TestLoggingHelpers:
    def test_extra_context_drops_none(self):
        assert extra_context(event="x", outcome=None, count=0) == {"event": "x", "count": 0}

    def test_safe_url_redacts_api_key(self):
        url = "https://libraries.io/api/pypi/flask/dependents?per_page=100&api_key=SECRET"
        cleaned = safe_url(url)
        assert "SECRET" not in cleaned
        assert "per_page=100" in cleaned

    def test_safe_url_without_query_unchanged(self):
        assert safe_url("https://pypi.org/pypi/flask/json") == "https://pypi.org/pypi/flask/json"

    def test_redact_free_text(self):
        assert "hunter2" not in redact("failed: token=hunter2 retry")

    def test_timer_measures(self):
        with Timer() as t:
            pass
        assert t.duration_ms() >= 0

    def test_json_formatter_includes_extra(self):
        record = logging.LogRecord("depsim", logging.INFO, __file__, 1, "hello %s", ("x",), None)
        record.component = "engine"
        payload = json.loads(JsonFormatter().format(record))
        assert payload["message"] == "hello x"
        assert payload["component"] == "engine"
        assert payload["level"] == "INFO"


class TestConfigureLogging:
    def test_env_level_and_single_handler(self, monkeypatch):
        monkeypatch.setenv("DEPSIM_LOG_LEVEL", "DEBUG")
        configure_logging()
        configure_logging()
        root = logging.getLogger()
        ours = [h for h in root.handlers if getattr(h, "_depsim_handler", False)]
        assert len(ours) == 1
        assert is_debug_enabled(root)
        configure_logging("WARNING")
        assert not is_debug_enabled(root)

    def test_json_format_env(self, monkeypatch):
        monkeypatch.setenv("DEPSIM_LOG_FORMAT", "json")
        configure_logging("INFO")
        ours = [h for h in logging.getLogger().handlers if getattr(h, "_depsim_handler", False)]
        assert isinstance(ours[0].formatter, JsonFormatter)
        monkeypatch.delenv("DEPSIM_LOG_FORMAT")
        configure_logging("INFO")
