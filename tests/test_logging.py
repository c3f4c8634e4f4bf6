"""Unit tests for log sinks."""

import logging
import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from appointment_tracker.logging_setup import (
    ROOT_LOGGER,
    RingBufferHandler,
    TimestampRotatingFileHandler,
    get_ring_buffer,
    level_from_name,
    setup_logging,
)


@pytest.fixture
def package_logger():
    """Restore the package logger after setup_logging() reconfigures it."""
    logger = logging.getLogger(ROOT_LOGGER)
    saved = (list(logger.handlers), logger.level, logger.propagate)
    yield logger
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        if handler is not get_ring_buffer():
            handler.close()
    handlers, level, propagate = saved
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = propagate


def isolated_logger(name, handler):
    logger = logging.getLogger(name)
    logger.handlers = [handler]
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    return logger


class TestLevels:
    @pytest.mark.parametrize("name,level", [
        ("debug", logging.DEBUG),
        ("INFO", logging.INFO),
        ("warn", logging.WARNING),
        ("fatal", logging.CRITICAL),
    ])
    def test_level_from_name(self, name, level):
        assert level_from_name(name) == level

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            level_from_name("chatty")


class TestRotation:
    def test_rotates_to_timestamped_file(self, tmp_path):
        log_file = tmp_path / "logs" / "tracker.log"
        handler = TimestampRotatingFileHandler(log_file, max_bytes=200)
        logger = isolated_logger("test.rotation", handler)
        try:
            for n in range(10):
                logger.info(f"line {n} " + "x" * 50)
        finally:
            handler.close()

        rotated = list(log_file.parent.glob("tracker.log.*"))
        assert rotated
        assert log_file.exists()
        assert log_file.stat().st_size <= 200


class TestRingBuffer:
    def test_keeps_most_recent(self):
        buffer = RingBufferHandler(capacity=3)
        logger = isolated_logger("test.ring", buffer)
        for n in range(5):
            logger.warning(f"message {n}")

        records = buffer.recent()
        assert [r["message"] for r in records] == ["message 2", "message 3", "message 4"]
        assert records[-1]["level"] == "WARNING"
        assert records[-1]["logger"] == "test.ring"
        assert [r["message"] for r in buffer.recent(1)] == ["message 4"]

    def test_zero_limit_returns_nothing(self):
        buffer = RingBufferHandler(capacity=3)
        logger = isolated_logger("test.ring.zero", buffer)
        logger.warning("only message")

        assert buffer.recent(0) == []
        assert len(buffer.recent(None)) == 1


class TestSetupLogging:
    def test_handlers_are_replaced_not_stacked(self, package_logger, tmp_path):
        setup_logging("debug", tmp_path / "tracker.log")
        setup_logging("info", tmp_path / "tracker.log")

        assert len(package_logger.handlers) == 3
        assert package_logger.level == logging.INFO
        assert get_ring_buffer() in package_logger.handlers

    def test_records_reach_file_and_buffer(self, package_logger, tmp_path):
        log_file = tmp_path / "tracker.log"
        setup_logging("info", log_file)

        logging.getLogger(f"{ROOT_LOGGER}.tests").info("hello from the tracker")
        for handler in package_logger.handlers:
            handler.flush()

        assert "| INFO    | appointment_tracker.tests | hello from the tracker" in log_file.read_text()
        assert get_ring_buffer().recent(1)[0]["message"] == "hello from the tracker"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
