"""
Unit Tests for Logging Configuration
====================================
"""

import sys

from mermaid_docs.config.logging import QUIET_LOGGERS, build_logging_config


def test_console_goes_to_stderr(settings_factory):
    config = build_logging_config(settings_factory())

    assert config["handlers"]["stderr"]["stream"] is sys.stderr
    assert config["handlers"]["stderr"]["formatter"] == "plain"
    assert config["loggers"][""]["handlers"] == ["stderr"]


def test_production_uses_json(settings_factory):
    config = build_logging_config(settings_factory(environment="production"))

    assert config["handlers"]["stderr"]["formatter"] == "json"


def test_rotating_file_when_configured(settings_factory, tmp_path):
    log_file = tmp_path / "logs" / "mermaid-docs.log"

    config = build_logging_config(settings_factory(log_file=log_file))

    assert config["handlers"]["file"]["filename"] == str(log_file)
    assert config["loggers"][""]["handlers"] == ["stderr", "file"]
    assert log_file.parent.is_dir()


def test_quiet_loggers(settings_factory):
    config = build_logging_config(settings_factory())

    for name, level in QUIET_LOGGERS.items():
        assert config["loggers"][name]["level"] == level
