"""Per-operation timings for reloads, downloads and uploads.

Every sample remembers whether the timed block raised, so a slow reload and a
failed one can be told apart in the summary printed at exit.
"""

import inspect
import logging
import time
from contextlib import contextmanager
from functools import wraps
from typing import Callable

# operation name -> [(seconds, ok)]
_samples: dict[str, list[tuple[float, bool]]] = {}


def reset_stats():
    _samples.clear()


def get_stats() -> dict[str, dict]:
    """Summaries keyed by operation name.

    Each entry has ``count``, ``failed``, ``total_ms``, ``avg_ms``, ``min_ms``
    and ``max_ms``. Failed samples count towards the durations too.
    """
    result = {}
    for name, samples in _samples.items():
        if not samples:
            continue
        durations_ms = [seconds * 1000 for seconds, _ in samples]
        total = sum(durations_ms)
        result[name] = {
            "count": len(samples),
            "failed": sum(1 for _, ok in samples if not ok),
            "total_ms": total,
            "avg_ms": total / len(samples),
            "min_ms": min(durations_ms),
            "max_ms": max(durations_ms),
        }
    return result


def log_stats():
    stats = get_stats()
    if not stats:
        logging.debug("[timing] nothing recorded")
        return
    # Slowest operations first
    for name, s in sorted(stats.items(), key=lambda kv: kv[1]["total_ms"], reverse=True):
        logging.info(
            f"[timing] {name}: n={s['count']} failed={s['failed']} "
            f"total={s['total_ms']:.1f}ms avg={s['avg_ms']:.2f}ms max={s['max_ms']:.2f}ms"
        )


@contextmanager
def time_operation(name: str, log_individual: bool = False):
    """Record how long the block takes, including time spent suspended on ``await``."""
    start = time.perf_counter()
    ok = False
    try:
        yield
        ok = True
    finally:
        elapsed = time.perf_counter() - start
        _samples.setdefault(name, []).append((elapsed, ok))
        if log_individual:
            logging.debug(f"[timing] {name}: {elapsed * 1000:.2f}ms{'' if ok else ' (failed)'}")


def timed(name: str = "", log_individual: bool = False):
    """Decorator form of ``time_operation`` for plain and coroutine functions.

    The operation name defaults to the function name.
    """

    def decorator(func: Callable):
        op_name = name or func.__name__

        if inspect.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                with time_operation(op_name, log_individual=log_individual):
                    return await func(*args, **kwargs)

            return async_wrapper

        @wraps(func)
        def wrapper(*args, **kwargs):
            with time_operation(op_name, log_individual=log_individual):
                return func(*args, **kwargs)

        return wrapper

    return decorator
