"""
In-process instrumentation for the generation engine.

Provider calls report an outcome per backend and operation, video jobs
report their status transitions, and failures keep a short trail for the
/metrics endpoint. Nothing here is persisted; the job store holds the
durable history.
"""

import time
import threading
from collections import defaultdict, deque
from contextlib import contextmanager
from typing import Deque, Dict, Iterator

WINDOW = 100
MAX_FAILURES = 50

PROVIDER_OUTCOMES = ("ok", "retry", "error")

_lock = threading.Lock()
_counters: Dict[str, int] = defaultdict(int)
_durations: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=WINDOW))
_gauges: Dict[str, float] = {}
_failures: Deque[dict] = deque(maxlen=MAX_FAILURES)
_providers: Dict[str, Dict[str, int]] = defaultdict(lambda: dict.fromkeys(PROVIDER_OUTCOMES, 0))


def inc_counter(name: str, amount: int = 1):
    with _lock:
        _counters[name] += amount


def get_counter(name: str) -> int:
    with _lock:
        return _counters.get(name, 0)


def set_gauge(name: str, value: float):
    with _lock:
        _gauges[name] = value


def observe(name: str, duration_ms: float):
    """Add a duration to the rolling window kept for `name`."""
    with _lock:
        _durations[name].append(duration_ms)


@contextmanager
def timed(name: str) -> Iterator[None]:
    started = time.monotonic()
    try:
        yield
    finally:
        observe(name, (time.monotonic() - started) * 1000)


def provider_call(provider: str, operation: str, outcome: str):
    """Count one attempt against a backend; outcome is ok, retry or error."""
    if outcome not in PROVIDER_OUTCOMES:
        raise ValueError(f"Unknown provider outcome: {outcome}")
    with _lock:
        _providers[f"{provider}.{operation}"][outcome] += 1


def job_transition(kind: str, status: str):
    """e.g. job_transition("video", "completed") bumps video_jobs.completed."""
    inc_counter(f"{kind}_jobs.{status}")


def record_failure(source: str, code: str, message: str, ref: str = ""):
    with _lock:
        _failures.append({
            "timestamp": time.time(),
            "source": source,
            "code": code,
            "message": message[:300],
            "ref": ref,
        })


def _summarize(samples: list[float]) -> dict:
    ordered = sorted(samples)
    n = len(ordered)
    return {
        "count": n,
        "avg": sum(ordered) / n,
        "p50": ordered[n // 2],
        "p95": ordered[min(n - 1, int(n * 0.95))],
        "max": ordered[-1],
    }


def get_snapshot() -> dict:
    now = time.time()
    with _lock:
        providers = {}
        for key, outcomes in _providers.items():
            attempts = sum(outcomes.values())
            providers[key] = {
                **outcomes,
                "error_rate": round(outcomes["error"] / attempts * 100, 2) if attempts else 0.0,
            }

        failure_codes: Dict[str, int] = defaultdict(int)
        for failure in _failures:
            failure_codes[failure["code"]] += 1

        return {
            "timestamp": now,
            "uptime_seconds": now - _gauges.get("start_time", now),
            "counters": dict(_counters),
            "gauges": dict(_gauges),
            "durations_ms": {name: _summarize(list(s)) for name, s in _durations.items() if s},
            "providers": providers,
            "failure_codes": dict(failure_codes),
            "recent_failures": list(_failures)[-10:],
        }


def reset():
    with _lock:
        _counters.clear()
        _durations.clear()
        _gauges.clear()
        _failures.clear()
        _providers.clear()
