"""In-process metrics, latency and error tracking.

Samples are kept in bounded in-memory buffers (reset on restart) for the admin
dashboards, and mirrored to a per-instance prometheus_client registry for
scraping at `/metrics`.
"""

import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, Iterator, List, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, Summary, generate_latest
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from erpinsight.models.constants import MAX_ERROR_RECORDS, MAX_LATENCY_RECORDS, MAX_METRIC_SAMPLES
from erpinsight.database.models import ConversationDB, InsightDB, MessageDB

logger = logging.getLogger(__name__)

REQUEST_METRIC = "ai_request"
ERROR_METRIC = "ai_errors"
LATENCY_METRIC = "ai_request_latency_ms"


class MetricSample(BaseModel):
    name: str
    value: float
    tags: Dict[str, str] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class LatencyRecord(BaseModel):
    """One timed request."""

    endpoint: str
    method: str
    duration_ms: float
    status_code: int = 200
    user_id: Optional[str] = None
    user_role: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ErrorRecord(BaseModel):
    """One recorded failure."""

    type: str
    message: str
    endpoint: Optional[str] = None
    user_id: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)


def _percentile(sorted_values: List[float], fraction: float) -> float:
    index = min(len(sorted_values) - 1, int(len(sorted_values) * fraction))
    return sorted_values[index]


class MetricsRegistry:
    """Bounded metric, latency and error buffers plus a Prometheus mirror."""

    def __init__(self, max_samples: int = MAX_METRIC_SAMPLES,
                 max_latency_records: int = MAX_LATENCY_RECORDS,
                 max_error_records: int = MAX_ERROR_RECORDS):
        self._lock = threading.Lock()
        self._samples: Deque[MetricSample] = deque(maxlen=max_samples)
        self._latencies: Deque[LatencyRecord] = deque(maxlen=max_latency_records)
        self._errors: Deque[ErrorRecord] = deque(maxlen=max_error_records)

        self.prometheus_registry = CollectorRegistry()
        self._prom_samples = Summary(
            "erpinsight_metric", "Engine metric samples by name", ["name"],
            registry=self.prometheus_registry,
        )
        self._prom_latency = Histogram(
            "erpinsight_request_latency_seconds", "Request latency", ["endpoint", "method", "status"],
            registry=self.prometheus_registry,
        )
        self._prom_errors = Counter(
            "erpinsight_errors_total", "Recorded errors", ["type"],
            registry=self.prometheus_registry,
        )

    # Metrics

    def record_metric(self, name: str, value: float, tags: Optional[Dict[str, str]] = None) -> None:
        sample = MetricSample(name=name, value=value, tags={k: str(v) for k, v in (tags or {}).items()})
        with self._lock:
            self._samples.append(sample)
        self._prom_samples.labels(name=name).observe(value)

    def increment_counter(self, name: str, tags: Optional[Dict[str, str]] = None, increment: float = 1) -> None:
        self.record_metric(name, increment, tags)

    def _matching(self, name: str, tags: Optional[Dict[str, str]], since: Optional[datetime]) -> List[MetricSample]:
        with self._lock:
            samples = list(self._samples)
        wanted = {k: str(v) for k, v in (tags or {}).items()}
        return [
            s for s in samples
            if s.name == name
            and (since is None or s.timestamp >= since)
            and all(s.tags.get(k) == v for k, v in wanted.items())
        ]

    def get_metric_sum(self, name: str, tags: Optional[Dict[str, str]] = None,
                       since: Optional[datetime] = None) -> float:
        """Sum of samples whose tags include every given tag."""
        return sum(s.value for s in self._matching(name, tags, since))

    def get_metric_avg(self, name: str, tags: Optional[Dict[str, str]] = None,
                       since: Optional[datetime] = None) -> float:
        matching = self._matching(name, tags, since)
        if not matching:
            return 0.0
        return sum(s.value for s in matching) / len(matching)

    # Latency

    def log_latency(self, record: LatencyRecord) -> None:
        with self._lock:
            self._latencies.append(record)
        self.record_metric(LATENCY_METRIC, record.duration_ms, {
            "endpoint": record.endpoint,
            "method": record.method,
            "status": str(record.status_code),
        })
        self._prom_latency.labels(
            endpoint=record.endpoint, method=record.method, status=str(record.status_code),
        ).observe(record.duration_ms / 1000.0)

    def get_latency_logs(self, endpoint: Optional[str] = None, min_duration_ms: Optional[float] = None,
                         limit: Optional[int] = None) -> List[LatencyRecord]:
        with self._lock:
            records = list(self._latencies)
        if endpoint:
            records = [r for r in records if r.endpoint == endpoint]
        if min_duration_ms:
            records = [r for r in records if r.duration_ms >= min_duration_ms]
        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records[:limit] if limit else records

    def get_latency_stats(self, endpoint: Optional[str] = None,
                          since: Optional[datetime] = None) -> Dict[str, float]:
        with self._lock:
            records = list(self._latencies)
        durations = sorted(
            r.duration_ms for r in records
            if (endpoint is None or r.endpoint == endpoint) and (since is None or r.timestamp >= since)
        )
        if not durations:
            return {"count": 0, "avg_ms": 0, "min_ms": 0, "max_ms": 0, "p50_ms": 0, "p95_ms": 0, "p99_ms": 0}
        return {
            "count": len(durations),
            "avg_ms": round(sum(durations) / len(durations)),
            "min_ms": durations[0],
            "max_ms": durations[-1],
            "p50_ms": _percentile(durations, 0.5),
            "p95_ms": _percentile(durations, 0.95),
            "p99_ms": _percentile(durations, 0.99),
        }

    @contextmanager
    def track_latency(self, endpoint: str, method: str, user_id: Optional[str] = None,
                      user_role: Optional[str] = None) -> Iterator[Dict[str, Any]]:
        """Time the wrapped block; exceptions are recorded as status 500 and re-raised.

        The yielded dict may carry a `status_code`, and an `endpoint` that replaces
        the one given here, set by the caller.
        """
        state: Dict[str, Any] = {"status_code": 200, "endpoint": endpoint}
        start = time.perf_counter()
        error = None
        try:
            yield state
        except Exception as e:
            state["status_code"] = 500
            error = str(e)
            raise
        finally:
            self.log_latency(LatencyRecord(
                endpoint=state["endpoint"],
                method=method,
                duration_ms=(time.perf_counter() - start) * 1000.0,
                status_code=state["status_code"],
                user_id=user_id,
                user_role=user_role,
                error=error,
            ))

    # Errors

    def log_error(self, record: ErrorRecord) -> None:
        with self._lock:
            self._errors.append(record)
        self.increment_counter(ERROR_METRIC, {"type": record.type, "endpoint": record.endpoint or "unknown"})
        self._prom_errors.labels(type=record.type).inc()
        logger.warning(f"Recorded error {record.type}: {record.message}")

    def get_error_logs(self, error_type: Optional[str] = None, since: Optional[datetime] = None,
                       limit: Optional[int] = None) -> List[ErrorRecord]:
        with self._lock:
            records = list(self._errors)
        if error_type:
            records = [r for r in records if r.type == error_type]
        if since:
            records = [r for r in records if r.timestamp >= since]
        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records[:limit] if limit else records

    def get_error_counts(self, since: Optional[datetime] = None) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for record in self.get_error_logs(since=since):
            counts[record.type] = counts.get(record.type, 0) + 1
        return counts

    # Usage

    def track_usage(self, user_id: str, role: str, endpoint: str) -> None:
        self.increment_counter(REQUEST_METRIC, {"role": role, "endpoint": endpoint, "user_id": str(user_id)})

    def usage_by_role(self) -> Dict[str, float]:
        usage: Dict[str, float] = {}
        for sample in self._matching(REQUEST_METRIC, None, None):
            role = sample.tags.get("role")
            if role:
                usage[role] = usage.get(role, 0) + sample.value
        return usage

    def active_users(self, since: datetime) -> int:
        return len({s.tags.get("user_id") for s in self._matching(REQUEST_METRIC, None, since)})

    def get_usage_stats(self, db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Combine in-memory usage samples with insight counts from the database."""
        now = now or datetime.utcnow()
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)

        total_insights = db.query(func.count(InsightDB.id)).scalar() or 0
        insights_today = db.query(func.count(InsightDB.id)).filter(InsightDB.generated_at >= today).scalar() or 0
        by_type = dict(db.query(InsightDB.insight_type, func.count(InsightDB.id)).group_by(InsightDB.insight_type).all())
        by_severity = dict(db.query(InsightDB.severity, func.count(InsightDB.id)).group_by(InsightDB.severity).all())

        total_requests = self.get_metric_sum(REQUEST_METRIC)
        total_errors = self.get_metric_sum(ERROR_METRIC)
        error_rate = (total_errors / total_requests) * 100 if total_requests > 0 else 0

        return {
            "total_conversations": db.query(func.count(ConversationDB.id)).scalar() or 0,
            "total_messages": db.query(func.count(MessageDB.id)).scalar() or 0,
            "total_insights": total_insights,
            "insights_today": insights_today,
            "insights_by_type": by_type,
            "insights_by_severity": by_severity,
            "usage_by_role": self.usage_by_role(),
            "avg_response_time_ms": self.get_latency_stats()["avg_ms"],
            "error_rate": round(error_rate, 2),
            "active_users": self.active_users(now - timedelta(days=1)),
        }

    def get_metrics_dashboard(self, db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
        usage = self.get_usage_stats(db, now)
        latency = self.get_latency_stats()
        total_requests = self.get_metric_sum(REQUEST_METRIC)
        total_errors = self.get_metric_sum(ERROR_METRIC)
        return {
            "overview": {
                "total_requests": total_requests,
                "total_errors": total_errors,
                "error_rate": round((total_errors / total_requests) * 100, 2) if total_requests > 0 else 0,
                "avg_latency_ms": latency["avg_ms"],
            },
            "latency": {
                "p50_ms": latency["p50_ms"],
                "p95_ms": latency["p95_ms"],
                "p99_ms": latency["p99_ms"],
            },
            "insights": {
                "total": usage["total_insights"],
                "today": usage["insights_today"],
                "by_type": usage["insights_by_type"],
                "by_severity": usage["insights_by_severity"],
            },
            "usage": {
                "by_role": usage["usage_by_role"],
                "active_users": usage["active_users"],
            },
            "errors": {
                "by_type": self.get_error_counts(),
                "recent": [r.model_dump(mode="json") for r in self.get_error_logs(limit=10)],
            },
        }

    def export_prometheus(self) -> bytes:
        return generate_latest(self.prometheus_registry)

    def reset(self) -> None:
        """Clear the in-memory buffers. Prometheus series keep their totals."""
        with self._lock:
            self._samples.clear()
            self._latencies.clear()
            self._errors.clear()


# Process-wide default instance
metrics = MetricsRegistry()
