"""Request-scoped log context and per-step timing for the transformation pipeline."""

import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterator, List, Optional

from .logging_config import get_logger
from .protocols import LoggerProtocol


@dataclass(frozen=True)
class LogContext:
    """Identifies one request (or batch item) across every log line it produces."""

    correlation_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    operation: str = ""
    component: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def with_operation(self, operation: str) -> "LogContext":
        return replace(self, operation=operation, metadata=dict(self.metadata))

    def with_metadata(self, **kwargs) -> "LogContext":
        return replace(self, metadata={**self.metadata, **kwargs})

    @property
    def prefix(self) -> str:
        tag = f"[{self.correlation_id}]"
        return f"[{self.operation}] {tag}" if self.operation else tag


def _render(message: str, context: Optional[LogContext], fields: Dict[str, Any]) -> str:
    if context is not None:
        message = f"{context.prefix} {message}"
        fields = {**context.metadata, **fields}
    if not fields:
        return message
    rendered = ", ".join(f"{key}={value}" for key, value in fields.items())
    return f"{message} ({rendered})"


class StructuredLogger:
    """Thin wrapper that prefixes the correlation id and appends key=value fields."""

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self._logger = logger or get_logger(name)

    def debug(self, message: str, context: Optional[LogContext] = None, **fields):
        self._logger.debug(_render(message, context, fields))

    def info(self, message: str, context: Optional[LogContext] = None, **fields):
        self._logger.info(_render(message, context, fields))

    def warning(self, message: str, context: Optional[LogContext] = None, **fields):
        self._logger.warning(_render(message, context, fields))

    def error(self, message: str, context: Optional[LogContext] = None, **fields):
        self._logger.error(_render(message, context, fields))


@dataclass
class StepMetric:
    """Timing of a single pipeline step (crop, resize, encode, ...)."""

    operation: str
    started_at: float
    finished_at: float
    success: bool
    error_message: Optional[str] = None

    @property
    def duration(self) -> float:
        return self.finished_at - self.started_at

    @property
    def duration_ms(self) -> float:
        return round(self.duration * 1000, 2)


class MetricsCollector:
    """Thread-safe, in-memory store of step timings.

    Shared by every pipeline run of a service, so batch workers record into
    it concurrently.
    """

    def __init__(self):
        self._metrics: List[StepMetric] = []
        self._lock = threading.Lock()

    def record_metric(self, metric: StepMetric):
        with self._lock:
            self._metrics.append(metric)

    def get_metrics(self, operation: Optional[str] = None) -> List[StepMetric]:
        with self._lock:
            snapshot = list(self._metrics)
        return [m for m in snapshot if operation is None or m.operation == operation]

    def get_summary(self, operation: Optional[str] = None) -> Dict[str, Any]:
        """
        Aggregate the recorded timings.

        Returns an empty dict when nothing matches, otherwise counts plus
        total/avg/min/max duration in seconds.
        """
        metrics = self.get_metrics(operation)
        if not metrics:
            return {}

        total = len(metrics)
        succeeded = sum(1 for m in metrics if m.success)
        durations = sorted(m.duration for m in metrics)
        elapsed = sum(durations)
        return {
            "total_operations": total,
            "successful_operations": succeeded,
            "failed_operations": total - succeeded,
            "success_rate": succeeded / total,
            "avg_duration": elapsed / total,
            "min_duration": durations[0],
            "max_duration": durations[-1],
            "total_duration": elapsed,
        }

    def clear_metrics(self):
        with self._lock:
            self._metrics = []


@contextmanager
def step_timer(
    operation: str,
    logger: Optional[LoggerProtocol] = None,
    metrics_collector: Optional[MetricsCollector] = None,
    context: Optional[LogContext] = None,
) -> Iterator[None]:
    """
    Time the enclosed block as one pipeline step.

    Success is logged at DEBUG and failure at WARNING, both with the
    elapsed milliseconds. Exceptions propagate unchanged.
    """
    step_context = (context or LogContext()).with_operation(operation)
    metric = StepMetric(operation=operation, started_at=time.perf_counter(), finished_at=0.0, success=False)
    try:
        yield
        metric.success = True
    except Exception as e:
        metric.error_message = str(e)
        raise
    finally:
        metric.finished_at = time.perf_counter()
        if logger is not None:
            if metric.success:
                logger.debug(f"Completed {operation}", step_context, duration_ms=metric.duration_ms)
            else:
                logger.warning(
                    f"Failed {operation}: {metric.error_message}",
                    step_context,
                    duration_ms=metric.duration_ms,
                )
        if metrics_collector is not None:
            metrics_collector.record_metric(metric)
