from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock

from fastapi import Request

logger = logging.getLogger("agency_workflow")


@dataclass
class MetricsSnapshot:
    requests_total: int
    requests_5xx: int
    total_latency_ms: float
    transitions_total: int
    transitions_rejected: int


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = Lock()
        self._requests_total = 0
        self._requests_5xx = 0
        self._total_latency_ms = 0.0
        self._transitions_total = 0
        self._transitions_rejected = 0
        self._by_route_status: dict[tuple[str, int], int] = {}
        self._by_target_stage: dict[str, int] = {}

    def record(self, *, route: str, status_code: int, latency_ms: float) -> None:
        with self._lock:
            self._requests_total += 1
            if status_code >= 500:
                self._requests_5xx += 1
            self._total_latency_ms += latency_ms
            key = (route, status_code)
            self._by_route_status[key] = self._by_route_status.get(key, 0) + 1

    def record_transition(self, *, to_stage: str, accepted: bool) -> None:
        with self._lock:
            if not accepted:
                self._transitions_rejected += 1
                return
            self._transitions_total += 1
            self._by_target_stage[to_stage] = self._by_target_stage.get(to_stage, 0) + 1

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                requests_total=self._requests_total,
                requests_5xx=self._requests_5xx,
                total_latency_ms=self._total_latency_ms,
                transitions_total=self._transitions_total,
                transitions_rejected=self._transitions_rejected,
            )

    def to_prometheus(self) -> str:
        snap = self.snapshot()
        avg_latency = (
            snap.total_latency_ms / snap.requests_total if snap.requests_total else 0.0
        )
        lines = [
            "# HELP agency_workflow_requests_total Total HTTP requests",
            "# TYPE agency_workflow_requests_total counter",
            f"agency_workflow_requests_total {snap.requests_total}",
            "# HELP agency_workflow_requests_5xx_total Total 5xx HTTP requests",
            "# TYPE agency_workflow_requests_5xx_total counter",
            f"agency_workflow_requests_5xx_total {snap.requests_5xx}",
            "# HELP agency_workflow_request_avg_latency_ms Average request latency ms",
            "# TYPE agency_workflow_request_avg_latency_ms gauge",
            f"agency_workflow_request_avg_latency_ms {avg_latency:.2f}",
            "# HELP agency_workflow_transitions_total Committed stage transitions",
            "# TYPE agency_workflow_transitions_total counter",
            f"agency_workflow_transitions_total {snap.transitions_total}",
            "# HELP agency_workflow_transitions_rejected_total Rejected stage transitions",
            "# TYPE agency_workflow_transitions_rejected_total counter",
            f"agency_workflow_transitions_rejected_total {snap.transitions_rejected}",
        ]
        with self._lock:
            for (route, status_code), count in sorted(self._by_route_status.items()):
                lines.append(
                    "agency_workflow_route_requests_total"
                    f'{{route="{route}",status="{status_code}"}} {count}'
                )
            for stage, count in sorted(self._by_target_stage.items()):
                lines.append(
                    f'agency_workflow_stage_transitions_total{{to_stage="{stage}"}} {count}'
                )
        return "\n".join(lines) + "\n"


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


async def observe_request(
    request: Request,
    call_next,
    *,
    metrics: MetricsRegistry,
):
    start = time.perf_counter()
    path = request.url.path
    try:
        response = await call_next(request)
        latency_ms = (time.perf_counter() - start) * 1000.0
        metrics.record(route=path, status_code=response.status_code, latency_ms=latency_ms)
        logger.info(
            "request_complete method=%s path=%s status=%s latency_ms=%.2f",
            request.method,
            path,
            response.status_code,
            latency_ms,
        )
        return response
    except Exception:
        latency_ms = (time.perf_counter() - start) * 1000.0
        metrics.record(route=path, status_code=500, latency_ms=latency_ms)
        logger.exception(
            "request_failed method=%s path=%s latency_ms=%.2f",
            request.method,
            path,
            latency_ms,
        )
        raise
