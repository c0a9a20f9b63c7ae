import logging
from pathlib import Path
from typing import Optional

LOG_FILENAME = "transcode.log"


def setup_logging(output_dir: Path, debug: bool = False, log_path: Optional[Path] = None) -> logging.Logger:
    """
    Setup logging configuration for VBT.

    Creates the output directory and transcode.log file.
    Returns configured logger instance.

    Args:
        output_dir: Directory where output files are written
        debug: If True, enable DEBUG level logging (full encoder command lines)
        log_path: Optional path to log file (overrides output_dir)
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    log_file = Path(log_path) if log_path else (output_dir / LOG_FILENAME)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[logging.FileHandler(log_file, encoding="utf-8")],
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file} (debug={'ON' if debug else 'OFF'})")

    return logger


def log_section(logger: logging.Logger, title: str) -> None:
    """Write a banner line so one batch is easy to find in a long log."""
    bar = "=" * 60
    logger.info(bar)
    logger.info(title.upper())
    logger.info(bar)
