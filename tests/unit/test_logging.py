"""Unit tests for logging infrastructure."""
import logging
from vbt.infrastructure.logging import LOG_FILENAME, log_section, setup_logging


def test_setup_logging_creates_log_file(tmp_path):
    """Test that setup_logging creates log file."""
    output_dir = tmp_path / "output"

    logger = setup_logging(output_dir, debug=False)

    assert isinstance(logger, logging.Logger)
    log_file = output_dir / LOG_FILENAME
    assert log_file.exists()
    assert "Logging initialized" in log_file.read_text(encoding="utf-8")


def test_setup_logging_debug_mode(tmp_path):
    logger = setup_logging(tmp_path, debug=True)
    assert logger.getEffectiveLevel() == logging.DEBUG


def test_setup_logging_normal_mode(tmp_path):
    logger = setup_logging(tmp_path, debug=False)
    assert logger.getEffectiveLevel() == logging.INFO


def test_setup_logging_custom_path(tmp_path):
    custom = tmp_path / "logs" / "run.log"
    setup_logging(tmp_path / "out", log_path=custom)
    assert custom.exists()
    assert not (tmp_path / "out" / LOG_FILENAME).exists()


def test_log_section_banner(tmp_path):
    logger = setup_logging(tmp_path)
    log_section(logger, "Batch Start")

    lines = (tmp_path / LOG_FILENAME).read_text(encoding="utf-8").splitlines()
    assert lines[-2].endswith("BATCH START")
    assert lines[-1].endswith("=" * 60)
    assert lines[-3].endswith("=" * 60)
