from __future__ import annotations

import argparse
import asyncio
import statistics
from typing import Dict, Optional

from djlink2midi.clock import ClockScheduler, pulse_period
from djlink2midi.midi_out import VirtualSink


def percentiles(samples, ps):
    if not samples:
        return {p: 0.0 for p in ps}
    s = sorted(samples)
    out = {}
    for p in ps:
        k = (len(s) - 1) * (p / 100.0)
        f = int(k)
        c = min(f + 1, len(s) - 1)
        if f == c:
            out[p] = s[f]
        else:
            d0 = s[f] * (c - k)
            d1 = s[c] * (k - f)
            out[p] = d0 + d1
    return out


def cadence_jitter_ms(stamps, interval, since=None):
    """Per-pulse deviation from `interval`, in ms.

    With `since`, only pulses stamped after that time are compared, so the
    pulse straddling a retune is not counted against the new cadence.
    """
    if since is not None:
        stamps = [ts for ts in stamps if ts > since]
    return [abs((b - a) - interval) * 1000.0 for a, b in zip(stamps, stamps[1:])]


async def run(bpm: float, seconds: float, resolution: int, correction: float, retune_to: Optional[float]) -> Dict[int, float]:
    loop = asyncio.get_running_loop()
    sink = VirtualSink(now=loop.time)
    clk = ClockScheduler(sink.clock, loop=loop)
    clk.retune(bpm, correction, resolution)
    retuned_at = None
    if retune_to is not None:
        await asyncio.sleep(seconds / 2.0)
        retuned_at = loop.time()
        clk.retune(retune_to, correction, resolution)
        await asyncio.sleep(seconds / 2.0)
    else:
        await asyncio.sleep(seconds)
    clk.stop()

    # Jitter against the cadence in force after any retune
    interval = pulse_period(retune_to if retune_to is not None else bpm, correction, resolution)
    stamps = [ts for _, ts in sink.events]
    jit_ms = cadence_jitter_ms(stamps, interval, since=retuned_at)
    p = percentiles(jit_ms, [50, 95, 99])
    avg = statistics.mean(jit_ms) if jit_ms else 0.0
    print(f"bpm={bpm} retune_to={retune_to} seconds={seconds} pulses={clk.pulses}")
    print(f"pulse interval target={interval*1000:.3f}ms avg_jitter={avg:.3f}ms p50={p[50]:.3f}ms p95={p[95]:.3f}ms p99={p[99]:.3f}ms")
    print(f"scheduler metrics: {clk.get_metrics()}")
    return p


def main():
    ap = argparse.ArgumentParser(description="Pulse generator jitter smoke test")
    ap.add_argument("--bpm", type=float, default=120.0)
    ap.add_argument("--seconds", type=float, default=5.0)
    ap.add_argument("--resolution", type=int, default=24)
    ap.add_argument("--correction", type=float, default=0.0)
    ap.add_argument("--retune-to", type=float, default=None, help="Retune to this BPM halfway through")
    args = ap.parse_args()
    asyncio.run(run(args.bpm, args.seconds, args.resolution, args.correction, args.retune_to))


if __name__ == "__main__":
    main()
