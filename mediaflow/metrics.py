"""
Thread-safe in-memory metrics collector for the orchestrator.

Tracks:
  - Traffic: submissions and inbound provider webhooks
  - Outcomes: jobs / executions completed and failed (by error kind)
  - Latency: job wall-clock duration per operation
  - Usage: completed provider jobs per provider/model (billing counter)
  - Saturation: active jobs, queue depth (gauges)

All data is ephemeral (resets on restart); the execution store keeps the
durable history.
"""

import time
import threading
from typing import Dict, List
from collections import defaultdict

_lock = threading.Lock()

# ── Counters ──────────────────────────────────────────────────────────────────
_counters: Dict[str, int] = defaultdict(int)

# ── Latency samples (last 100 per key) ───────────────────────────────────────
_latency_samples: Dict[str, List[float]] = defaultdict(list)
MAX_SAMPLES = 100

# ── Time-series (per-minute buckets, last 60 minutes) ─────────────────────────
_timeseries: Dict[str, Dict[int, int]] = defaultdict(lambda: defaultdict(int))
MAX_MINUTES = 60

# ── Gauges ────────────────────────────────────────────────────────────────────
_gauges: Dict[str, float] = defaultdict(float)

# ── Error log (last 50 job failures) ──────────────────────────────────────────
_recent_errors: List[dict] = []
MAX_ERRORS = 50


def _minute_bucket() -> int:
    return int(time.time()) // 60 * 60


# ── Public API ────────────────────────────────────────────────────────────────

def inc_counter(name: str, amount: int = 1):
    """Increment a counter (e.g. 'jobs.completed', 'usage.replicate.minimax/video-01')."""
    with _lock:
        _counters[name] += amount
        _timeseries[name][_minute_bucket()] += amount


def get_counter(name: str) -> int:
    with _lock:
        return _counters.get(name, 0)


def record_latency(key: str, duration_ms: float):
    """Record a latency sample in milliseconds."""
    with _lock:
        samples = _latency_samples[key]
        samples.append(duration_ms)
        if len(samples) > MAX_SAMPLES:
            _latency_samples[key] = samples[-MAX_SAMPLES:]


def set_gauge(name: str, value: float):
    """Set a gauge value (e.g. 'queue_depth', 'active_jobs')."""
    with _lock:
        _gauges[name] = value


def record_usage(provider: str, model_id: str):
    """Usage counter for one completed provider job."""
    inc_counter(f"usage.{provider}.{model_id}")


def record_error(operation: str, error_kind: str, message: str, execution_id: str = ""):
    """Record a job failure for root-cause analysis."""
    with _lock:
        _recent_errors.append({
            "timestamp": time.time(),
            "operation": operation,
            "error_kind": error_kind,
            "message": message[:300],
            "execution_id": execution_id,
        })
        if len(_recent_errors) > MAX_ERRORS:
            _recent_errors.pop(0)


def reset():
    """Clear all collected data."""
    with _lock:
        _counters.clear()
        _latency_samples.clear()
        _timeseries.clear()
        _gauges.clear()
        _recent_errors.clear()


def get_snapshot() -> dict:
    """
    Return a complete metrics snapshot for the /metrics endpoint.
    Thread-safe read of all collected data.
    """
    now = time.time()
    minute_now = int(now) // 60 * 60

    with _lock:
        latency_stats = {}
        for key, samples in _latency_samples.items():
            if not samples:
                continue
            sorted_s = sorted(samples)
            n = len(sorted_s)
            latency_stats[key] = {
                "p50": sorted_s[n // 2],
                "p95": sorted_s[int(n * 0.95)] if n >= 20 else sorted_s[-1],
                "avg": sum(sorted_s) / n,
                "count": n,
            }

        cutoff = minute_now - MAX_MINUTES * 60
        for buckets in _timeseries.values():
            for k in [k for k in buckets if k < cutoff]:
                del buckets[k]

        # Job failure rate over the last 5 minutes
        recent_cutoff = minute_now - 5 * 60
        finished = 0
        failed = 0
        for name in ("jobs.completed", "jobs.failed"):
            for bucket_time, count in _timeseries.get(name, {}).items():
                if bucket_time >= recent_cutoff:
                    finished += count
                    if name == "jobs.failed":
                        failed += count

        failure_rate = (failed / finished * 100) if finished > 0 else 0

        error_kinds: Dict[str, int] = defaultdict(int)
        for err in _recent_errors:
            error_kinds[f"{err['operation']}:{err['error_kind']}"] += 1

        return {
            "timestamp": now,
            "counters": dict(_counters),
            "gauges": dict(_gauges),
            "latency": latency_stats,
            "job_failure_rate_5m": round(failure_rate, 2),
            "recent_errors": list(_recent_errors[-10:]),
            "error_kinds": dict(error_kinds),
            "uptime_seconds": now - _gauges.get("start_time", now),
        }
