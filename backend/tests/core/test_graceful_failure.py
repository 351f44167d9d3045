"""
Tests for the graceful_failure context manager and coroutine decorator.
"""
import logging
from unittest.mock import MagicMock

import pytest

from proctor.core.graceful_failure import (
    GracefulFailureDecorator,
    graceful_failure,
    graceful_failure_decorator,
)


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing."""
    return MagicMock(spec=logging.Logger)


class TestGracefulFailureContextManager:
    """Tests for the graceful_failure context manager."""

    def test_no_exception_logs_nothing(self, mock_logger):
        """The body runs normally and nothing is logged."""
        result = []

        with graceful_failure("record attempt activity", mock_logger):
            result.append("executed")

        assert result == ["executed"]
        mock_logger.log.assert_not_called()

    def test_exception_is_swallowed_and_logged(self, mock_logger):
        """Exceptions stop at the context manager and are logged at WARNING."""
        with graceful_failure("record attempt activity", mock_logger):
            raise RuntimeError("database is locked")

        mock_logger.log.assert_called_once()
        level, message = mock_logger.log.call_args[0]
        assert level == logging.WARNING
        assert message == "Failed to record attempt activity: database is locked"
        assert mock_logger.log.call_args[1]["exc_info"] is False

    def test_context_and_level(self, mock_logger):
        """Context pairs are rendered into the message at the chosen level."""
        with graceful_failure(
            "aggregate live session stats",
            mock_logger,
            log_level=logging.ERROR,
            exc_info=True,
            context={"session_id": 7},
        ):
            raise ValueError("bad row")

        level, message = mock_logger.log.call_args[0]
        assert level == logging.ERROR
        assert message == "Failed to aggregate live session stats (session_id=7): bad row"
        assert mock_logger.log.call_args[1]["exc_info"] is True

    def test_work_before_failure_is_kept(self, mock_logger):
        """Side effects before the exception are preserved."""
        processed = []

        for session_id in (1, 2, 3):
            with graceful_failure("process session", mock_logger):
                if session_id == 2:
                    raise ValueError("broken")
                processed.append(session_id)

        assert processed == [1, 3]
        assert mock_logger.log.call_count == 1


class TestGracefulFailureDecorator:
    """Tests for the coroutine decorator."""

    async def test_returns_result_on_success(self, mock_logger):
        @graceful_failure_decorator("persist no-show assignments", logger=mock_logger)
        async def persist(count):
            return count

        assert await persist(3) == 3
        mock_logger.log.assert_not_called()

    async def test_returns_default_on_failure(self, mock_logger):
        """A raising coroutine yields the configured default."""

        @graceful_failure_decorator(
            "persist no-show assignments", logger=mock_logger, default=0
        )
        async def persist():
            raise RuntimeError("commit failed")

        assert await persist() == 0
        level, message = mock_logger.log.call_args[0]
        assert level == logging.WARNING
        assert "commit failed" in message

    async def test_default_is_none(self, mock_logger):
        @graceful_failure_decorator("load snapshot", logger=mock_logger)
        async def load():
            raise ValueError("missing")

        assert await load() is None

    async def test_uses_module_logger_by_default(self, caplog):
        """Without an explicit logger the wrapped function's module logger is used."""

        @graceful_failure_decorator("flaky operation", log_level=logging.ERROR)
        async def flaky():
            raise ValueError("boom")

        with caplog.at_level(logging.ERROR):
            await flaky()

        assert "Failed to flaky operation: boom" in caplog.text
        assert caplog.records[-1].name == __name__

    def test_preserves_metadata(self):
        @graceful_failure_decorator("documented")
        async def documented():
            """Docstring kept."""

        assert documented.__name__ == "documented"
        assert documented.__doc__ == "Docstring kept."

    def test_alias(self):
        assert graceful_failure_decorator is GracefulFailureDecorator
