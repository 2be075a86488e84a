"""
Tests for logging setup and configuration utilities.

测试日志设置和配置工具功能。
"""

import logging
from pathlib import Path
from typing import Generator
from unittest.mock import Mock, patch

import pytest

from plugin_hub.infrastructure.config.models import LoggingConfig
from plugin_hub.infrastructure.logging.setup import InterceptHandler, setup_logging


@pytest.fixture(autouse=True)
def restore_root_logger() -> Generator[None, None, None]:
    """Keep setup_logging from leaking handlers into other tests."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSetupLogging:
    """测试日志设置主函数"""

    @patch('plugin_hub.infrastructure.logging.setup.loguru_logger')
    def test_console_and_file_sinks(self, mock_logger: Mock, tmp_path: Path) -> None:
        """测试控制台和文件输出"""
        config = LoggingConfig(level="debug", log_directory=str(tmp_path / "logs"))

        setup_logging(config)

        mock_logger.remove.assert_called_once()
        assert mock_logger.add.call_count == 2
        file_call = mock_logger.add.call_args_list[1]
        assert file_call.args[0] == tmp_path / "logs" / "plugin_hub.log"
        assert file_call.kwargs["level"] == "DEBUG"
        assert file_call.kwargs["rotation"] == "10MB"
        assert file_call.kwargs["retention"] == 5
        assert (tmp_path / "logs").is_dir()

    @patch('plugin_hub.infrastructure.logging.setup.loguru_logger')
    def test_console_only(self, mock_logger: Mock, tmp_path: Path) -> None:
        """测试仅控制台输出"""
        config = LoggingConfig(file_enabled=False, log_directory=str(tmp_path / "logs"))

        setup_logging(config)

        assert mock_logger.add.call_count == 1
        assert not (tmp_path / "logs").exists()

    @patch('plugin_hub.infrastructure.logging.setup.loguru_logger')
    def test_intercept_handler_installed(self, mock_logger: Mock) -> None:
        """测试标准库日志被转发"""
        setup_logging(LoggingConfig(console_enabled=False, file_enabled=False))

        handlers = logging.getLogger().handlers
        assert any(isinstance(h, InterceptHandler) for h in handlers)


class TestInterceptHandler:
    """测试日志拦截处理器"""

    @patch('plugin_hub.infrastructure.logging.setup.loguru_logger')
    def test_forwards_record(self, mock_logger: Mock) -> None:
        """测试记录转发到loguru"""
        mock_logger.level.return_value.name = "WARNING"
        handler = InterceptHandler()
        record = logging.LogRecord(
            "plugin_hub.test", logging.WARNING, __file__, 10, "hello %s", ("world",), None
        )

        handler.emit(record)

        mock_logger.opt.return_value.log.assert_called_once_with("WARNING", "hello world")

    @patch('plugin_hub.infrastructure.logging.setup.loguru_logger')
    def test_unknown_level_uses_number(self, mock_logger: Mock) -> None:
        """测试未知日志级别"""
        mock_logger.level.side_effect = ValueError("unknown level")
        handler = InterceptHandler()
        record = logging.LogRecord("x", 15, __file__, 1, "custom", None, None)
        record.levelname = "CUSTOM"

        handler.emit(record)

        mock_logger.opt.return_value.log.assert_called_once_with(15, "custom")
