from __future__ import annotations

import time
from collections import deque, defaultdict
from dataclasses import dataclass
from typing import Deque, Dict


@dataclass
class MetricSample:
    ts: float
    model: str
    mode: str
    ttft_ms: float
    tokens_out: int
    duration_ms: float
    tokens_per_second: float
    stream: bool
    outcome: str = "ok"


class MetricsAggregator:
    def __init__(self, capacity: int = 500):
        self.capacity = capacity
        self.samples: Deque[MetricSample] = deque(maxlen=capacity)
        self.start_ts = time.time()
        self.mode_counters: Dict[str, Dict[str, int]] = defaultdict(
            lambda: {
                "total_requests": 0,
                "streaming_requests": 0,
                "errors": 0,
                "cancelled": 0,
            }
        )

    def add(self, sample: MetricSample):
        self.samples.append(sample)
        counters = self.mode_counters[sample.mode]
        counters["total_requests"] += 1
        if sample.stream:
            counters["streaming_requests"] += 1
        if sample.outcome == "cancelled":
            counters["cancelled"] += 1
        elif sample.outcome != "ok":
            counters["errors"] += 1

    def summary(self) -> dict:
        base = {
            "uptime_seconds": time.time() - self.start_ts,
            "requests_by_mode": dict(self.mode_counters),
            "schema_version": 1,
        }
        ok = [s for s in self.samples if s.outcome == "ok"]
        if not ok:
            base["rolling"] = {"count": len(self.samples)}
            return base
        ttfts_sorted = sorted(s.ttft_ms for s in ok)
        tps = [s.tokens_per_second for s in ok if s.tokens_per_second > 0]
        base["rolling"] = {
            "count": len(self.samples),
            "avg_ttft_ms": sum(ttfts_sorted) / len(ttfts_sorted),
            "p95_ttft_ms": ttfts_sorted[int(0.95 * (len(ttfts_sorted) - 1))],
            "avg_duration_ms": sum(s.duration_ms for s in ok) / len(ok),
            "avg_tokens_per_second": (sum(tps) / len(tps)) if tps else None,
        }
        return base
