import pytest
from unittest.mock import MagicMock

from libero_installer.config.settings import InstallerSettings
from libero_installer.state import BootMode, InstallerState
from libero_installer.utils.executor import Executor
from libero_installer.utils.logger import RichAppLogger


@pytest.fixture
def mock_rich_logger():
    """Provides a fully-mocked RichAppLogger instance for dependency injection."""
    mock_logger = MagicMock(spec=RichAppLogger)

    mock_context_manager = MagicMock()
    mock_context_manager.__enter__.return_value = None
    mock_context_manager.__exit__.return_value = None
    mock_logger.execution_step.return_value = mock_context_manager
    mock_logger.log_file_path = "/var/log/libero-installer/installer.log"

    return mock_logger


@pytest.fixture
def mock_executor(mock_rich_logger):
    """An Executor double whose run() succeeds and whose queries return no output."""
    executor = MagicMock(spec=Executor)
    executor.logger = mock_rich_logger
    executor.dry_run = False
    executor.run.return_value = (0, "", "")
    executor.execute_command.return_value = (0, "", "")
    return executor


@pytest.fixture
def settings(tmp_path):
    return InstallerSettings(
        install_root=str(tmp_path / "mnt" / "gentoo"),
        cache_dir="/var/cache/libero-installer",
    )


@pytest.fixture
def state(settings):
    return InstallerState.from_settings(settings, boot_mode=BootMode.UEFI)
