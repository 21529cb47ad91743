"""Tests for logging utilities."""
import logging
import os

from sar.logging_utils import (
    log_error, log_warn, log_info, log_success,
    log_debug, setup_logging, _colorize, _should_use_colors
)


def test_logging_functions(capsys):
    """Test that logging functions write to stderr."""
    log_error("Test error")
    log_warn("Test warning")
    log_info("Test info")
    log_success("Test success")

    err = capsys.readouterr().err
    assert "Test error" in err
    assert "Test warning" in err
    assert "Test info" in err
    assert "Test success" in err


def test_debug_only_when_enabled(capsys, monkeypatch):
    """Test that debug output depends on DEBUG=1."""
    monkeypatch.delenv("DEBUG", raising=False)
    log_debug("hidden")
    assert capsys.readouterr().err == ""

    monkeypatch.setenv("DEBUG", "1")
    log_debug("shown")
    assert "shown" in capsys.readouterr().err


def test_color_detection(monkeypatch):
    """Test color detection."""
    assert isinstance(_should_use_colors(), bool)

    monkeypatch.setenv("NO_COLOR", "1")
    monkeypatch.setenv("FORCE_COLOR", "1")
    assert not _should_use_colors()
    assert _colorize("text", "\033[31m") == "text"

    monkeypatch.delenv("NO_COLOR")
    monkeypatch.setenv("TERM", "xterm")
    assert _should_use_colors()


def test_setup_logging_to_file(sock_dir):
    """Test that router logging goes to the configured file."""
    log_file = os.path.join(sock_dir, "router.log")
    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    try:
        setup_logging(logging.INFO, log_file)
        logging.getLogger("sar.test").info("hello from the router")
    finally:
        for handler in root.handlers:
            if handler not in before:
                handler.close()
                root.removeHandler(handler)
        root.setLevel(level)

    with open(log_file) as f:
        line = f.read()
    assert "sar[%d]: INFO hello from the router" % os.getpid() in line
