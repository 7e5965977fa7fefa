"""Logging utilities"""

import logging
import platform
import sys
from pathlib import Path
from typing import Optional

# Global variable to store log file path
_log_file_path = None


def get_app_data_directory() -> Path:
    """Get application data directory"""
    system = platform.system()

    if system == "Windows":
        app_data = Path.home() / "AppData" / "Local" / "GridStitch"
    elif system == "Darwin":
        app_data = Path.home() / "Library" / "Application Support" / "GridStitch"
    else:
        app_data = Path.home() / ".local" / "share" / "gridstitch"

    return app_data


def _is_writable(log_dir: Path) -> bool:
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        test_file = log_dir / ".test_write"
        test_file.write_text("test")
        test_file.unlink()
        return True
    except OSError:
        return False


def get_logs_directory() -> Path:
    """Get logs directory with fallbacks"""
    # Platform-specific location first, then local logs directory
    for log_dir in (get_app_data_directory() / "logs", Path("logs")):
        if _is_writable(log_dir):
            return log_dir

    # Fallback: Use current directory
    return Path(".")


def setup_logger(name: str, level: int = logging.INFO, log_to_file: bool = True) -> logging.Logger:
    """Setup logger with consistent formatting"""
    global _log_file_path

    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        # Console handler
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

        if log_to_file:
            try:
                log_file = get_logs_directory() / "gridstitch.log"
                file_handler = logging.FileHandler(str(log_file), mode='a', encoding='utf-8')
                file_handler.setLevel(logging.DEBUG)
                file_handler.setFormatter(formatter)
                logger.addHandler(file_handler)
                _log_file_path = log_file
                logger.debug(f"Logging to: {log_file.absolute()}")
            except OSError as e:
                # If file logging fails, continue without it
                logger.warning(f"Could not set up file logging: {e}")

    return logger


def get_log_file_path() -> Optional[Path]:
    """Get the path to the log file"""
    return _log_file_path
