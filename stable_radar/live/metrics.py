"""Minimal, clean metrics for the radar runner.

This file intentionally small: a Histogram and Metrics container.
"""
from __future__ import annotations
import time
import statistics
from collections import deque
from typing import Dict, Any


class Histogram:
    def __init__(self, max_samples: int = 4096):
        self._buf = deque(maxlen=max_samples)

    def observe(self, value: float) -> None:
        self._buf.append(float(value))

    def snapshot(self) -> Dict[str, float]:
        if not self._buf:
            return {"count": 0}
        data = sorted(self._buf)
        n = len(data)

        def pct(p: float) -> float:
            idx = int(p * (n - 1))
            return float(data[idx])

        return {
            "count": n,
            "p50": pct(0.5),
            "p90": pct(0.9),
            "p99": pct(0.99),
            "min": float(data[0]),
            "max": float(data[-1]),
            "mean": statistics.fmean(data),
        }


class Metrics:
    """Runtime metrics container.

    Counters are process-wide (all chains); per-chain detail lives in each
    ChainState snapshot.
    """

    HISTOGRAMS = ("latency_height", "latency_query", "frame_time")

    def __init__(self) -> None:
        self.started_monotonic = time.perf_counter()

        # milliseconds
        self.latency_height = Histogram()
        self.latency_query = Histogram()
        self.frame_time = Histogram(max_samples=1024)

        self.counters = {
            "height_polls": 0,
            "height_errors": 0,
            "queries": 0,
            "query_errors": 0,
            "decode_errors": 0,
            "transfers_accepted": 0,
            "transfers_duplicate": 0,
            "ticks_skipped_busy": 0,
            "blips_discovered": 0,
            "snapshots_written": 0,
        }
        self.gauges: Dict[str, float] = {}

    def inc(self, key: str, value: int = 1) -> None:
        self.counters[key] = self.counters.get(key, 0) + int(value)

    def set_gauge(self, name: str, value: float) -> None:
        self.gauges[name] = float(value)

    def snapshot(self) -> Dict[str, Any]:
        up = time.perf_counter() - self.started_monotonic
        out: Dict[str, Any] = {
            "uptime_sec": round(up, 1),
            "counters": dict(self.counters),
            "gauges": dict(self.gauges),
        }
        for name in self.HISTOGRAMS:
            out[name] = getattr(self, name).snapshot()
        return out

    def to_prometheus(self) -> str:
        snap = self.snapshot()
        lines = []

        for key, value in snap.get("counters", {}).items():
            lines.append(f"# TYPE {key}_total counter")
            lines.append(f"{key}_total {value}")

        lines.append("# TYPE uptime_sec gauge")
        lines.append(f"uptime_sec {snap.get('uptime_sec', 0)}")
        for key, value in snap.get("gauges", {}).items():
            lines.append(f"# TYPE {key} gauge")
            lines.append(f"{key} {value}")

        for hist_name in self.HISTOGRAMS:
            hist_data = snap.get(hist_name, {})
            if hist_data.get("count", 0) > 0:
                lines.append(f"# TYPE {hist_name}_ms summary")
                lines.append(f"{hist_name}_ms_count {hist_data.get('count', 0)}")
                lines.append(f"{hist_name}_ms_sum {hist_data.get('mean', 0) * hist_data.get('count', 0)}")
                for pct in ["p50", "p90", "p99"]:
                    if pct in hist_data:
                        quantile = {"p50": "0.5", "p90": "0.9", "p99": "0.99"}[pct]
                        lines.append(f"{hist_name}_ms{{quantile=\"{quantile}\"}} {hist_data[pct]}")

        return "\n".join(lines) + "\n"


__all__ = ["Metrics", "Histogram"]
