from collections import Counter, defaultdict
from dataclasses import dataclass


@dataclass
class MetricBucket:
    count: int = 0
    errors: int = 0
    latency_total_ms: float = 0.0

    def record(self, duration_ms: float, error: bool) -> None:
        self.count += 1
        if error:
            self.errors += 1
        self.latency_total_ms += duration_ms

    def snapshot(self) -> dict[str, float | int]:
        avg = self.latency_total_ms / self.count if self.count else 0.0
        return {
            "count": self.count,
            "errors": self.errors,
            "avg_latency_ms": round(avg, 2),
        }


class ServiceMetrics:
    """Process-local counters exposed on ``GET /metrics``."""

    def __init__(self) -> None:
        self.requests = MetricBucket()
        self.by_path: defaultdict[str, MetricBucket] = defaultdict(MetricBucket)
        self.rejections: Counter[int] = Counter()
        self.reservations: Counter[str] = Counter()
        self.broadcasts = 0
        self.deliveries = 0
        self.dropped_connections = 0

    def record_request(self, path: str, duration_ms: float, error: bool) -> None:
        self.requests.record(duration_ms, error)
        self.by_path[path].record(duration_ms, error)

    def record_rejection(self, status_code: int) -> None:
        self.rejections[status_code] += 1

    def record_reservation(self, outcome: str) -> None:
        self.reservations[outcome] += 1

    def record_broadcast(self, delivered: int, dropped: int) -> None:
        self.broadcasts += 1
        self.deliveries += delivered
        self.dropped_connections += dropped

    def snapshot(self) -> dict[str, object]:
        requests = self.requests.snapshot()
        return {
            "requests_total": requests["count"],
            "errors_total": requests["errors"],
            "avg_latency_ms": requests["avg_latency_ms"],
            "rejections": {str(code): total for code, total in sorted(self.rejections.items())},
            "reservations": dict(self.reservations),
            "broadcasts_total": self.broadcasts,
            "deliveries_total": self.deliveries,
            "dropped_connections_total": self.dropped_connections,
            "by_path": {path: bucket.snapshot() for path, bucket in self.by_path.items()},
        }


service_metrics = ServiceMetrics()
