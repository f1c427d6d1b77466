"""
Timing Utilities.

Context manager for measuring a code block with perf_counter(). Used for
per-attempt engine timing and queue item durations.

Example:
    with timeit("attempt:google") as t:
        audio = await adapter.synthesize(text, voice, speed)
    print(f"Took {t.timing.seconds:.3f}s")
"""
from __future__ import annotations

from dataclasses import dataclass
from time import perf_counter
from typing import Any, Dict, Optional


@dataclass
class Timing:
    """
    Timing measurement result.

    Attributes:
        name: Identifier for what was timed.
        seconds: Duration in seconds.
        meta: Optional metadata for additional context.
    """
    name: str
    seconds: float
    meta: Optional[Dict[str, Any]] = None

    @property
    def ms(self) -> int:
        return int(round(self.seconds * 1000))


class timeit:
    """
    Context manager for timing code blocks.

    The result is available as .timing after the block exits, including
    when the block raised or was cancelled.
    """

    def __init__(self, name: str, meta: Optional[Dict[str, Any]] = None):
        self.name = name
        self.meta = meta
        self._t0: float | None = None
        self.timing: Timing | None = None

    def __enter__(self) -> "timeit":
        self._t0 = perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        t1 = perf_counter()
        if self._t0 is None:
            raise RuntimeError("timeit exited without being entered")
        self.timing = Timing(name=self.name, seconds=(t1 - self._t0), meta=self.meta)

    @property
    def elapsed(self) -> float:
        """Seconds since entering the block (usable inside it)."""
        if self._t0 is None:
            return 0.0
        return perf_counter() - self._t0
