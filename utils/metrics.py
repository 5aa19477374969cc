"""Simple instrumentation helpers."""

from __future__ import annotations

import logging
import time
from collections import Counter
from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger("metrics")

# Global counter tracking errors per label
errors: Counter[str] = Counter()
# Global counter tracking calls per label
calls: Counter[str] = Counter()


@contextmanager
def measure(label: str) -> Iterator[None]:
    """Measure execution time of a block of code.

    Records the duration at DEBUG level and counts calls and exceptions per
    label. Works around ``await`` points as well, so it can wrap a remote
    round-trip.
    """
    start = time.perf_counter()
    calls[label] += 1
    try:
        yield
    except Exception:
        errors[label] += 1
        raise
    finally:
        elapsed = time.perf_counter() - start
        logger.debug("%s took %.3fs", label, elapsed)


def snapshot() -> dict[str, dict[str, int]]:
    """Return a copy of the counters, keyed by label."""
    return {
        label: {"calls": calls[label], "errors": errors[label]}
        for label in sorted(set(calls) | set(errors))
    }
