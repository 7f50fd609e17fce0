"""
Application module tests: logging setup
"""
import importlib
import logging
from contextlib import contextmanager

import pytest

import chatroom.main
from chatroom.core.config import AppSettings, config_loader
from chatroom.main import setup_logging


pytestmark = pytest.mark.unit


@contextmanager
def bare_root_logger():
    """Run with no root handlers, restoring the previous ones afterwards"""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    root.handlers.clear()
    try:
        yield root
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = handlers
        root.setLevel(level)


def test_setup_logging_writes_to_log_file(tmp_path):
    log_file = tmp_path / "relay.log"
    settings = AppSettings(log_file=str(log_file), config_watch=False)

    with bare_root_logger() as root:
        setup_logging(settings)
        logging.getLogger("chatroom.orchestration.session_manager").info("User zed logged in")

        assert root.level == logging.INFO
        assert any(isinstance(handler, logging.FileHandler) for handler in root.handlers)

    assert "chatroom.orchestration.session_manager - INFO - User zed logged in" in log_file.read_text()


def test_debug_setting_lowers_level(tmp_path):
    with bare_root_logger() as root:
        setup_logging(AppSettings(debug=True, config_watch=False))

        assert root.level == logging.DEBUG


def test_importing_app_configures_logging(tmp_path, monkeypatch):
    log_file = tmp_path / "import.log"
    monkeypatch.setattr(
        config_loader, "settings", AppSettings(log_file=str(log_file), config_watch=False)
    )

    with bare_root_logger() as root:
        importlib.reload(chatroom.main)
        logging.getLogger("chatroom.main").info("Starting Chat Room Relay...")

        assert root.handlers

    assert "Starting Chat Room Relay..." in log_file.read_text()
