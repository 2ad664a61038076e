import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


def _parse_rotation(value) -> int:
    """Turn a size string like "5MB" or "512KB" into bytes."""
    rot_str = str(value).upper().strip()
    max_bytes = 5 * 1024 * 1024  # Default
    try:
        if rot_str.endswith('MB'):
            max_bytes = int(rot_str[:-2]) * 1024 * 1024
        elif rot_str.endswith('KB'):
            max_bytes = int(rot_str[:-2]) * 1024
        elif rot_str.isdigit():
            max_bytes = int(rot_str)
    except ValueError:
        pass
    return max_bytes


class Logger:
    """Thin logger with console and optional rotating file output."""

    _configured = False

    @classmethod
    def setup(cls, settings: dict):
        """
        Global configuration for all Logger instances.

        Args:
            settings: Dictionary containing 'level', 'file', 'dir',
                      'rotation' and 'backup_count'
        """
        if cls._configured:
            return

        level_name = str(settings.get('level', 'INFO')).upper()
        level = getattr(logging, level_name, logging.INFO)

        # Configure root logger to affect all modules
        root = logging.getLogger()
        root.setLevel(level)

        if not root.handlers:
            formatter = logging.Formatter(
                '[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )

            # 1. Console Handler
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(formatter)
            root.addHandler(console_handler)

            # 2. File Handler (Rotating)
            if settings.get('file', False):
                try:
                    log_dir = Path(settings.get('dir') or Path.cwd() / "logs")
                    log_dir.mkdir(parents=True, exist_ok=True)

                    file_handler = RotatingFileHandler(
                        log_dir / "clearview.log",
                        maxBytes=_parse_rotation(settings.get('rotation', '5MB')),
                        backupCount=int(settings.get('backup_count', 5)),
                    )
                    file_handler.setFormatter(formatter)
                    root.addHandler(file_handler)
                except OSError as e:
                    root.warning(f"Failed to initialize file logger: {e}")

        cls._configured = True

    def __init__(self, name: str = "Clearview"):
        self.logger = logging.getLogger(name)

    def info(self, message: str):
        self.logger.info(message)

    def warning(self, message: str):
        self.logger.warning(message)

    def error(self, message: str):
        self.logger.error(message)

    def debug(self, message: str):
        self.logger.debug(message)

    def critical(self, message: str):
        self.logger.critical(message)

    def exception(self, message: str):
        self.logger.exception(message)
