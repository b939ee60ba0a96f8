"""Operation runner and logging setup.

Each CLI invocation runs exactly one lifecycle operation. SIGTERM and
SIGINT set the reconciler's cancel event so that an in-progress wait is
abandoned within one poll interval instead of running to its deadline.
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .client import PoolClient
from .config import Config
from .errors import ReconcileError
from .models import PoolState
from .reconciler import PoolReconciler

logger = logging.getLogger(__name__)

# Exit codes
EXIT_SUCCESS = 0
EXIT_OPERATION_FAILED = 1
EXIT_CONFIGURATION_ERROR = 2

# LogRecord attributes that are not structured "extra" fields
_RESERVED_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure structured JSON logging on stderr.

    Stdout is reserved for the resulting pool state.
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from the HTTP pipeline
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


@dataclass
class OperationResult:
    """Result of a single lifecycle operation."""

    operation: str
    pool_id: str | None = None
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    state: PoolState | None = None
    error: Exception | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def exit_code(self) -> int:
        return EXIT_SUCCESS if self.success else EXIT_OPERATION_FAILED


def _log_result(result: OperationResult) -> None:
    extra: dict[str, Any] = {
        "operation": result.operation,
        "pool_id": result.pool_id,
        "duration_seconds": result.duration_seconds,
    }

    if result.error is not None:
        extra["error"] = str(result.error)
        extra["error_type"] = type(result.error).__name__
        if isinstance(result.error, ReconcileError) and result.error.phase is not None:
            extra["phase"] = result.error.phase.value
        logger.error("Operation failed", extra=extra)
    else:
        logger.info("Operation succeeded", extra=extra)


async def run_operation(
    operation: str,
    action: Callable[[PoolReconciler], Awaitable[PoolState | None]],
    config: Config,
    client: PoolClient,
    *,
    pool_id: str | None = None,
    handle_signals: bool = True,
) -> OperationResult:
    """Run one lifecycle operation and capture its outcome.

    Args:
        operation: Operation name for logging (create, read, ...).
        action: Coroutine function performing the operation.
        config: Validated configuration.
        client: Pool client to inject into the reconciler.
        pool_id: Pool ID if known up front.
        handle_signals: Install SIGTERM/SIGINT handlers that cancel waits.

    Returns:
        OperationResult holding the resulting state or the error. Errors
        from a create that got as far as assigning an ID keep that ID.
    """
    cancel_event = asyncio.Event()
    reconciler = PoolReconciler.from_config(config, client, cancel_event=cancel_event)
    result = OperationResult(operation=operation, pool_id=pool_id)

    loop = asyncio.get_running_loop()
    signals = (signal.SIGTERM, signal.SIGINT) if handle_signals else ()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal, cancelling", extra={"signal": sig.name})
        cancel_event.set()

    for sig in signals:
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    logger.info(
        "Starting operation",
        extra={"operation": operation, "pool_id": pool_id, "region": config.region},
    )

    try:
        result.state = await action(reconciler)
        if result.state is not None:
            result.pool_id = result.state.id
    except ReconcileError as e:
        result.error = e
        if result.pool_id is None:
            result.pool_id = e.pool_id
    finally:
        result.end_time = datetime.now(UTC)
        for sig in signals:
            loop.remove_signal_handler(sig)

    _log_result(result)
    return result
