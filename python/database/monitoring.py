"""
Database Performance Monitoring for the Postcode Hierarchy Service

This module provides:
- Query timing context manager for slow query detection
- Prometheus metrics for query latency and counts
- In-process per-operation statistics

Usage:
    from database.monitoring import query_timer, get_db_metrics

    with query_timer("match_outcodes_by_prefix"):
        rows = session.execute(query).scalars().all()
"""

import logging
import time
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from functools import wraps
from typing import Optional, Dict, Any, Callable

from prometheus_client import Histogram, Counter

logger = logging.getLogger(__name__)


# ============================================
# CONFIGURATION
# ============================================

@dataclass
class MonitoringConfig:
    """Configuration for database monitoring."""
    slow_query_threshold_ms: float = 1000.0  # Log queries slower than this
    warning_threshold_ms: float = 500.0       # Info-log queries slower than this
    enable_prometheus: bool = True
    enable_logging: bool = True


_config = MonitoringConfig()


def configure_monitoring(
    slow_query_threshold_ms: float = 1000.0,
    warning_threshold_ms: float = 500.0,
    enable_prometheus: bool = True,
    enable_logging: bool = True
) -> None:
    """
    Configure monitoring settings.

    Args:
        slow_query_threshold_ms: Log queries slower than this (ms)
        warning_threshold_ms: Info-log queries slower than this (ms)
        enable_prometheus: Enable Prometheus metrics
        enable_logging: Enable logging
    """
    global _config
    _config = MonitoringConfig(
        slow_query_threshold_ms=slow_query_threshold_ms,
        warning_threshold_ms=warning_threshold_ms,
        enable_prometheus=enable_prometheus,
        enable_logging=enable_logging
    )


# ============================================
# PROMETHEUS METRICS
# ============================================

db_query_duration = Histogram(
    'postcodes_db_query_duration_seconds',
    'Database query duration in seconds',
    ['operation', 'status'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

db_query_total = Counter(
    'postcodes_db_query_total',
    'Total number of database queries',
    ['operation', 'status']
)

db_slow_queries_total = Counter(
    'postcodes_db_slow_queries_total',
    'Total number of slow database queries',
    ['operation']
)


# ============================================
# QUERY STATS TRACKING
# ============================================

@dataclass
class QueryStats:
    """Statistics for a single query type."""
    operation: str
    count: int = 0
    total_time_ms: float = 0.0
    max_time_ms: float = 0.0
    errors: int = 0
    slow_queries: int = 0
    last_executed: Optional[datetime] = None

    @property
    def avg_time_ms(self) -> float:
        """Average query time in milliseconds."""
        return self.total_time_ms / self.count if self.count > 0 else 0.0

    def record(self, duration_ms: float, error: bool = False, slow: bool = False) -> None:
        """Record a query execution."""
        self.count += 1
        self.total_time_ms += duration_ms
        self.max_time_ms = max(self.max_time_ms, duration_ms)
        self.last_executed = datetime.now()

        if error:
            self.errors += 1
        if slow:
            self.slow_queries += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'operation': self.operation,
            'count': self.count,
            'avg_time_ms': round(self.avg_time_ms, 2),
            'max_time_ms': round(self.max_time_ms, 2),
            'errors': self.errors,
            'slow_queries': self.slow_queries,
            'last_executed': self.last_executed.isoformat() if self.last_executed else None
        }


class QueryStatsCollector:
    """Thread-safe collector for query statistics."""

    def __init__(self):
        self._stats: Dict[str, QueryStats] = {}
        self._lock = threading.Lock()

    def record(self, operation: str, duration_ms: float, error: bool = False, slow: bool = False) -> None:
        with self._lock:
            if operation not in self._stats:
                self._stats[operation] = QueryStats(operation=operation)
            self._stats[operation].record(duration_ms, error, slow)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {op: stats.to_dict() for op, stats in self._stats.items()}

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()


_stats_collector = QueryStatsCollector()


def get_db_metrics() -> Dict[str, Any]:
    """Get per-operation query statistics."""
    return _stats_collector.get_stats()


def reset_metrics() -> None:
    """Reset all collected metrics."""
    _stats_collector.reset()


# ============================================
# QUERY TIMER
# ============================================

@contextmanager
def query_timer(operation: str):
    """
    Context manager to time and monitor database queries.

    Logs slow queries and records metrics for monitoring.

    Args:
        operation: Name of the operation (e.g., 'match_outcodes_by_prefix')
    """
    start_time = time.perf_counter()
    error_occurred = False

    try:
        yield
    except Exception:
        error_occurred = True
        raise
    finally:
        duration = time.perf_counter() - start_time
        duration_ms = duration * 1000

        is_slow = duration_ms > _config.slow_query_threshold_ms
        is_warning = duration_ms > _config.warning_threshold_ms

        _stats_collector.record(
            operation=operation,
            duration_ms=duration_ms,
            error=error_occurred,
            slow=is_slow
        )

        if _config.enable_prometheus:
            status = "error" if error_occurred else "success"
            db_query_duration.labels(operation=operation, status=status).observe(duration)
            db_query_total.labels(operation=operation, status=status).inc()

            if is_slow:
                db_slow_queries_total.labels(operation=operation).inc()

        if _config.enable_logging:
            if is_slow:
                logger.warning(
                    f"SLOW QUERY: {operation} took {duration_ms:.2f}ms "
                    f"(threshold: {_config.slow_query_threshold_ms}ms)"
                )
            elif is_warning and not error_occurred:
                logger.info(f"Query {operation} took {duration_ms:.2f}ms")


def timed_query(operation: str):
    """
    Decorator to time and monitor repository query methods.

    Usage:
        @timed_query("resolve_ward_chain")
        def resolve_ward_chain(self, ...):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            with query_timer(operation):
                return func(*args, **kwargs)
        return wrapper
    return decorator
