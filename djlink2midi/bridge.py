from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Optional, Tuple

from djlink2midi.clock import ClockScheduler, pulse_period
from djlink2midi.midi_out import ClockSink
from djlink2midi.status import PLAYING_STATES, StatusAggregator, StatusReport
from djlink2midi.transport import TransportController


@dataclass(frozen=True)
class BridgeConfig:
    resolution: int = 24
    correction: float = 0.0
    playing_states: FrozenSet[int] = PLAYING_STATES
    player_slots: Tuple[int, ...] = (1, 2)
    clock_while_stopped: bool = True

    def __post_init__(self) -> None:
        # Reject a resolution/correction pair that could never schedule
        pulse_period(120.0, self.correction, self.resolution)


class Bridge:
    """Owns the aggregator, scheduler and controller; `on_status` is the event entry point."""

    def __init__(self, sink: ClockSink, config: BridgeConfig = BridgeConfig(), loop: Optional[asyncio.AbstractEventLoop] = None):
        self.config = config
        self.sink = sink
        self.aggregator = StatusAggregator(config.playing_states, config.player_slots)
        self.scheduler = ClockScheduler(sink.clock, loop=loop)
        self.controller = TransportController(
            sink,
            self.scheduler,
            resolution=config.resolution,
            correction=config.correction,
            clock_while_stopped=config.clock_while_stopped,
        )

    def on_status(self, report: StatusReport) -> None:
        self.controller.update(self.aggregator.ingest(report))

    def get_state(self) -> Dict[str, Any]:
        return {
            "bpm": self.aggregator.bpm,
            "armedBpm": self.controller.armed_bpm,
            "transport": "playing" if self.controller.playing else "stopped",
            "master": self.aggregator.master_id,
            "beatInMeasure": self.aggregator.beat_in_measure,
            "resolution": self.config.resolution,
            "correction": self.config.correction,
            "devices": self.aggregator.snapshot(),
            "clock": self.scheduler.get_metrics(),
        }

    def shutdown(self) -> None:
        self.controller.shutdown()
