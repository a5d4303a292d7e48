"""Operation timing and recommendations for persistence calls.

The monitor keeps one running aggregate per operation name (count, successes,
min, max, total duration) instead of storing every sample, so memory stays flat
no matter how long the process runs.
"""

from __future__ import annotations

import threading
import time
from datetime import UTC, datetime
from enum import Enum
from types import TracebackType
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field

from semantic_store.config import MonitoringConfig
from semantic_store.exceptions import DisposedError


class RecommendationSeverity(str, Enum):
    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class OperationStatistics(BaseModel):
    """Aggregated statistics for one operation name."""

    operation_name: str
    count: int = 0
    success_count: int = 0
    failure_count: int = 0
    total_duration: float = 0.0
    average_duration: float = 0.0
    min_duration: float = 0.0
    max_duration: float = 0.0
    success_rate: float = 0.0
    last_recorded: datetime | None = None


class PerformanceMetrics(BaseModel):
    """Snapshot across all operations."""

    total_operations: int = 0
    successful_operations: int = 0
    failed_operations: int = 0
    success_rate: float = 0.0
    average_duration: float = 0.0
    total_duration: float = 0.0
    operation_statistics: dict[str, OperationStatistics] = Field(default_factory=dict)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class PerformanceRecommendation(BaseModel):
    category: str
    severity: RecommendationSeverity
    message: str
    operation_name: str | None = None
    suggested_actions: list[str] = Field(default_factory=list)


class _Aggregate:
    __slots__ = ("count", "successes", "total", "minimum", "maximum", "last_recorded")

    def __init__(self) -> None:
        self.count = 0
        self.successes = 0
        self.total = 0.0
        self.minimum = 0.0
        self.maximum = 0.0
        self.last_recorded: datetime | None = None

    def add(self, duration: float, success: bool) -> None:
        if self.count == 0:
            self.minimum = self.maximum = duration
        else:
            self.minimum = min(self.minimum, duration)
            self.maximum = max(self.maximum, duration)
        self.count += 1
        self.total += duration
        if success:
            self.successes += 1
        self.last_recorded = datetime.now(UTC)

    def to_statistics(self, name: str) -> OperationStatistics:
        return OperationStatistics(
            operation_name=name,
            count=self.count,
            success_count=self.successes,
            failure_count=self.count - self.successes,
            total_duration=self.total,
            average_duration=self.total / self.count if self.count else 0.0,
            min_duration=self.minimum,
            max_duration=self.maximum,
            success_rate=self.successes / self.count * 100 if self.count else 0.0,
            last_recorded=self.last_recorded,
        )


class OperationContext:
    """Timer for one tracked operation; use as a sync or async context manager.

    An exception escaping the block marks the operation failed. Callers can also
    call ``mark_failed`` for failures that do not raise.
    """

    def __init__(
        self,
        monitor: PerformanceMonitor,
        operation_name: str,
        metadata: dict[str, Any] | None = None,
    ):
        self._monitor = monitor
        self.operation_name = operation_name
        self.metadata: dict[str, Any] = dict(metadata or {})
        self.success = True
        self.failure_reason: str | None = None
        self._started = time.perf_counter()
        self._finished = False

    @property
    def elapsed(self) -> float:
        return time.perf_counter() - self._started

    def mark_failed(self, reason: str | None = None) -> None:
        self.success = False
        self.failure_reason = reason
        if reason:
            self.metadata["failure_reason"] = reason

    def finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        self._monitor.record_operation(self.operation_name, self.elapsed, self.success)

    def __enter__(self) -> OperationContext:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc is not None and self.success:
            self.mark_failed(f"{type(exc).__name__}: {exc}")
        self.finish()

    async def __aenter__(self) -> OperationContext:
        return self.__enter__()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.__exit__(exc_type, exc, tb)


class PerformanceMonitor:
    """Thread-safe operation tracker.

    Example:
        >>> monitor = PerformanceMonitor()
        >>> with monitor.start_operation("LoadModel"):
        ...     pass
        >>> monitor.get_statistics("LoadModel").count
        1
    """

    def __init__(self, config: MonitoringConfig | None = None):
        self.config = config or MonitoringConfig()
        self._lock = threading.Lock()
        self._aggregates: dict[str, _Aggregate] = {}
        self._closed = False

    def _check_open(self) -> None:
        if self._closed:
            raise DisposedError("PerformanceMonitor has been closed")

    def start_operation(
        self, operation_name: str, metadata: dict[str, Any] | None = None
    ) -> OperationContext:
        self._check_open()
        if not operation_name:
            raise ValueError("operation_name must not be empty")
        return OperationContext(self, operation_name, metadata)

    def record_operation(self, operation_name: str, duration: float, success: bool = True) -> None:
        """Merge one completed operation into its running aggregate."""
        self._check_open()
        if duration < 0:
            raise ValueError(f"duration must be non-negative, got {duration}")
        with self._lock:
            self._aggregates.setdefault(operation_name, _Aggregate()).add(duration, success)
        if not success:
            logger.debug(f"Operation {operation_name} failed after {duration:.3f}s")

    def get_statistics(self, operation_name: str) -> OperationStatistics | None:
        self._check_open()
        with self._lock:
            aggregate = self._aggregates.get(operation_name)
            return aggregate.to_statistics(operation_name) if aggregate else None

    def get_metrics(self) -> PerformanceMetrics:
        self._check_open()
        with self._lock:
            statistics = {
                name: aggregate.to_statistics(name) for name, aggregate in self._aggregates.items()
            }

        total = sum(s.count for s in statistics.values())
        successes = sum(s.success_count for s in statistics.values())
        total_duration = sum(s.total_duration for s in statistics.values())
        return PerformanceMetrics(
            total_operations=total,
            successful_operations=successes,
            failed_operations=total - successes,
            success_rate=successes / total * 100 if total else 0.0,
            average_duration=total_duration / total if total else 0.0,
            total_duration=total_duration,
            operation_statistics=statistics,
        )

    def get_recommendations(self) -> list[PerformanceRecommendation]:
        """Derive tuning hints from the current aggregates."""
        metrics = self.get_metrics()
        cfg = self.config
        recommendations: list[PerformanceRecommendation] = []

        if (
            metrics.total_operations > cfg.min_operations_for_reliability
            and metrics.success_rate < cfg.min_success_rate
        ):
            recommendations.append(
                PerformanceRecommendation(
                    category="Reliability",
                    severity=RecommendationSeverity.HIGH,
                    message=f"Overall success rate is {metrics.success_rate:.1f}%",
                    suggested_actions=[
                        "Review error logs for recurring failures",
                        "Check storage backend availability and credentials",
                        "Consider raising retry attempts for transient errors",
                    ],
                )
            )

        if metrics.total_operations and metrics.average_duration > cfg.max_average_duration_seconds:
            recommendations.append(
                PerformanceRecommendation(
                    category="Performance",
                    severity=RecommendationSeverity.MEDIUM,
                    message=f"Average operation duration is {metrics.average_duration:.2f}s",
                    suggested_actions=[
                        "Enable lazy loading for large models",
                        "Enable caching for frequently loaded models",
                        "Increase max_concurrent_operations",
                    ],
                )
            )

        for name, stats in metrics.operation_statistics.items():
            if stats.count > cfg.operation_min_count and stats.success_rate < cfg.operation_min_success_rate:
                recommendations.append(
                    PerformanceRecommendation(
                        category="Operation Reliability",
                        severity=RecommendationSeverity.MEDIUM,
                        operation_name=name,
                        message=f"{name} success rate is {stats.success_rate:.1f}%",
                        suggested_actions=[
                            f"Investigate failures of {name}",
                            "Add error handling around the failing calls",
                        ],
                    )
                )
            if stats.average_duration > cfg.operation_max_average_duration_seconds:
                recommendations.append(
                    PerformanceRecommendation(
                        category="Operation Performance",
                        severity=RecommendationSeverity.MEDIUM,
                        operation_name=name,
                        message=f"{name} averages {stats.average_duration:.2f}s",
                        suggested_actions=[
                            f"Profile {name}",
                            "Reduce payload size or batch the work",
                        ],
                    )
                )
            if (
                stats.count > cfg.variance_min_count
                and stats.max_duration > stats.average_duration * cfg.variance_ratio
            ):
                recommendations.append(
                    PerformanceRecommendation(
                        category="Performance Consistency",
                        severity=RecommendationSeverity.LOW,
                        operation_name=name,
                        message=(
                            f"{name} peaks at {stats.max_duration:.2f}s against an average of "
                            f"{stats.average_duration:.2f}s"
                        ),
                        suggested_actions=[
                            "Look for contention or throttling on the backend",
                            "Check network latency to the storage endpoint",
                        ],
                    )
                )

        if metrics.total_operations > cfg.high_volume_operations:
            recommendations.append(
                PerformanceRecommendation(
                    category="Resource Management",
                    severity=RecommendationSeverity.INFO,
                    message=f"{metrics.total_operations} operations recorded",
                    suggested_actions=[
                        "Reset metrics periodically",
                        "Export metrics to an external monitoring system",
                    ],
                )
            )

        return recommendations

    def reset_metrics(self) -> None:
        self._check_open()
        with self._lock:
            self._aggregates.clear()
        logger.info("Performance metrics reset")

    def close(self) -> None:
        with self._lock:
            self._aggregates.clear()
            self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed
