from __future__ import annotations

import asyncio
import math
from collections import deque
from typing import Callable, Deque, List, Optional, Tuple


PulseHandler = Callable[[], None]


class InvalidTempoConfiguration(ValueError):
    """BPM, correction or resolution that cannot produce a positive pulse period."""


def pulse_period(bpm: float, correction: float = 0.0, resolution: int = 24) -> float:
    """Seconds between MIDI clock pulses.

    `correction` is a percentage applied to `bpm` before the period is computed,
    so +2 plays 2% faster. `resolution` is pulses per quarter note.
    """
    if not math.isfinite(resolution) or int(resolution) != resolution or resolution <= 0:
        raise InvalidTempoConfiguration(f"resolution must be a positive integer, got {resolution!r}")
    effective = float(bpm) + (float(correction) / 100.0) * float(bpm)
    if not math.isfinite(effective) or effective <= 0.0:
        raise InvalidTempoConfiguration(f"bpm {bpm!r} with correction {correction!r}% is not a playable tempo")
    return (60.0 / effective) / int(resolution)


class ClockScheduler:
    """Single repeating pulse timer on an asyncio loop.

    Deadlines advance from the previous deadline rather than from the time the
    callback ran, so scheduling latency does not accumulate. Retuning rescales
    the time left until the pending pulse to the new period, keeping the phase
    of the cadence across tempo changes.
    """

    def __init__(self, on_pulse: PulseHandler, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.on_pulse = on_pulse
        self._loop = loop
        self.bpm: Optional[float] = None
        self.correction: float = 0.0
        self.resolution: int = 24
        self._interval: Optional[float] = None
        self._next_call: Optional[float] = None
        self._handle: Optional[asyncio.TimerHandle] = None
        self._halted = False
        self.pulses = 0
        self._jitter_ms: Deque[float] = deque(maxlen=512)

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    @property
    def running(self) -> bool:
        return self._handle is not None

    @property
    def interval(self) -> Optional[float]:
        return self._interval

    def settings(self) -> Optional[Tuple[float, float, int]]:
        if self.bpm is None:
            return None
        return (self.bpm, self.correction, self.resolution)

    def retune(self, bpm: float, correction: float = 0.0, resolution: int = 24) -> None:
        # Validate before touching any timer state
        interval = pulse_period(bpm, correction, resolution)
        if self.running and self.settings() == (float(bpm), float(correction), int(resolution)):
            return
        previous = self._interval
        self.bpm = float(bpm)
        self.correction = float(correction)
        self.resolution = int(resolution)
        self._interval = interval
        if self._halted:
            return
        now = self.loop.time()
        if self._handle is None or previous is None or self._next_call is None:
            self._next_call = now + interval
        else:
            remaining = max(0.0, self._next_call - now)
            self._next_call = now + remaining * (interval / previous)
            self._handle.cancel()
        self._handle = self.loop.call_at(self._next_call, self._fire)

    def stop(self) -> None:
        self._halted = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._next_call = None

    def resume(self) -> None:
        self._halted = False
        if self._handle is not None or self._interval is None:
            return
        self._next_call = self.loop.time() + self._interval
        self._handle = self.loop.call_at(self._next_call, self._fire)

    def _fire(self) -> None:
        if self._next_call is None or self._interval is None:
            self._handle = None
            return
        now = self.loop.time()
        # Record jitter relative to scheduled time
        self._jitter_ms.append(max(0.0, (now - self._next_call) * 1000.0))
        self._next_call += self._interval
        if self._next_call <= now:
            # Loop stalled for more than a period: resync instead of bursting
            self._next_call = now + self._interval
        self._handle = self.loop.call_at(self._next_call, self._fire)
        self.pulses += 1
        self.on_pulse()

    def _percentile(self, values: List[float], pct: float) -> float:
        if not values:
            return 0.0
        xs = sorted(values)
        k = (len(xs) - 1) * pct
        f = int(k)
        c = min(f + 1, len(xs) - 1)
        if f == c:
            return xs[f]
        d0 = xs[f] * (c - k)
        d1 = xs[c] * (k - f)
        return d0 + d1

    def get_metrics(self) -> dict:
        samples = list(self._jitter_ms)
        return {
            "pulses": self.pulses,
            "intervalMs": round(self._interval * 1000.0, 3) if self._interval else None,
            "jitterMsP95": round(self._percentile(samples, 0.95), 3),
            "jitterMsP99": round(self._percentile(samples, 0.99), 3),
        }
