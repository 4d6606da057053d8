"""Error capture for user state operations, kept for offline reconciliation."""
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CapturedError:
    """One captured failure: where it happened and which identifiers were involved."""

    operation: str
    error_type: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)
    captured_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class ErrorCapture:
    """
    Records failures with the operation name and the identifiers involved.

    Every capture is logged. The most recent captures are also kept in memory
    so that an operator (or a test) can inspect what needs reconciling
    between the cache tier and the durable tier. Nothing here retries or
    repairs state.
    """

    def __init__(self, max_records: int = 1000) -> None:
        self._records: deque[CapturedError] = deque(maxlen=max_records)

    def capture(
        self,
        exc: BaseException,
        *,
        operation: str,
        expected: bool = False,
        **context: Any,
    ) -> CapturedError:
        """
        Record a failure.

        Args:
            exc: The exception that ended (or degraded) the operation.
            operation: Qualified operation name, e.g. 'UsernameRegistry.claim'.
            expected: True for validation and conflict failures. These are logged
                without a traceback since they are caller errors, not outages.
            **context: Identifiers involved (uid, username, table, field, ...).

        Returns:
            The captured record.
        """
        record = CapturedError(
            operation=operation,
            error_type=type(exc).__name__,
            message=str(exc),
            context=context,
        )
        self._records.append(record)
        extra = {"operation": operation, "error_type": record.error_type, **context}
        if expected:
            logger.warning("user_state_rejected operation=%s error=%s", operation, exc, extra=extra)
        else:
            logger.error(
                "user_state_failed operation=%s error=%s",
                operation,
                exc,
                extra=extra,
                exc_info=exc,
            )
        return record

    def recent(self, operation: str | None = None) -> list[CapturedError]:
        """Captured records, oldest first, optionally filtered by operation."""
        if operation is None:
            return list(self._records)
        return [r for r in self._records if r.operation == operation]

    def clear(self) -> None:
        """Drop all captured records."""
        self._records.clear()


class _ErrorCaptureState:
    """Container for the process-wide error capture."""

    capture: ErrorCapture = ErrorCapture()


_state = _ErrorCaptureState()


def get_error_capture() -> ErrorCapture:
    """Get the process-wide error capture."""
    return _state.capture


def set_error_capture(capture: ErrorCapture) -> None:
    """Replace the process-wide error capture."""
    _state.capture = capture
