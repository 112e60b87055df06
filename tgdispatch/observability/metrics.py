from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple


_LOCK = threading.Lock()
_COUNTERS: Dict[str, int] = {}
_COUNTERS_LABELLED: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], int] = {}


def inc(name: str, value: int = 1) -> None:
    with _LOCK:
        _COUNTERS[name] = _COUNTERS.get(name, 0) + value


def get_counter(name: str) -> int:
    return _COUNTERS.get(name, 0)


def inc_labelled(name: str, labels: Dict[str, str], value: int = 1) -> None:
    key = (name, tuple(sorted(labels.items())))
    with _LOCK:
        _COUNTERS_LABELLED[key] = _COUNTERS_LABELLED.get(key, 0) + value


def get_counter_labelled(name: str, labels: Dict[str, str]) -> int:
    key = (name, tuple(sorted(labels.items())))
    return _COUNTERS_LABELLED.get(key, 0)


def list_counters() -> List[Tuple[str, int]]:
    with _LOCK:
        return sorted(_COUNTERS.items())


def list_counters_labelled() -> List[Tuple[str, Tuple[Tuple[str, str], ...], int]]:
    with _LOCK:
        return sorted((name, labels, val) for (name, labels), val in _COUNTERS_LABELLED.items())


@dataclass
class Timer:
    """Accumulates ``<name>_ms_sum`` / ``<name>_count``; ``elapsed_s`` is set on exit."""

    name: str
    labels: Optional[Dict[str, str]] = None
    start: float = 0.0
    elapsed_s: float = 0.0

    def __enter__(self):
        self.start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.elapsed_s = time.perf_counter() - self.start
        dur_ms = int(self.elapsed_s * 1000)
        if self.labels:
            inc_labelled(f"{self.name}_ms_sum", self.labels, dur_ms)
            inc_labelled(f"{self.name}_count", self.labels, 1)
        else:
            inc(f"{self.name}_ms_sum", dur_ms)
            inc(f"{self.name}_count", 1)


def reset() -> None:
    """Reset all in-process metrics (for tests)."""
    with _LOCK:
        _COUNTERS.clear()
        _COUNTERS_LABELLED.clear()
