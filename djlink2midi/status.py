from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Optional, Set


# Play-state codes that count as "actively playing": playing, looping,
# cue-play and searching.
PLAYING_STATES: FrozenSet[int] = frozenset({3, 4, 7, 9})


@dataclass(frozen=True)
class StatusReport:
    device_id: int
    is_master: bool
    track_bpm: float
    slider_pitch: float
    beat_in_measure: int
    play_state: int

    @property
    def effective_bpm(self) -> float:
        return (self.track_bpm * (100.0 + self.slider_pitch)) / 100.0


@dataclass(frozen=True)
class DerivedState:
    bpm: Optional[float]
    is_playing: bool
    beat_in_measure: Optional[int] = None


class StatusAggregator:
    """Latest status report per device, plus the tempo and transport derived from it.

    - The master is the device whose latest report claimed master; BPM and
      beat come from that report only.
    - `is_playing` scans every tracked device on every report.
    - Devices are never expired; a silent device keeps its last play state.
    """

    def __init__(self, playing_states: Iterable[int] = PLAYING_STATES, player_slots: Iterable[int] = (1, 2)) -> None:
        self.playing_states: FrozenSet[int] = frozenset(playing_states)
        self.player_slots: FrozenSet[int] = frozenset(player_slots)
        self.devices: Dict[int, StatusReport] = {}
        self.master_id: Optional[int] = None
        self._unknown_logged: Set[int] = set()

    def ingest(self, report: StatusReport) -> DerivedState:
        dev = report.device_id
        if dev not in self.player_slots and dev not in self._unknown_logged:
            self._unknown_logged.add(dev)
            print(f"[status] device {dev} is outside player slots {sorted(self.player_slots)}; tracking anyway", flush=True)
        self.devices[dev] = report
        if report.is_master:
            self.master_id = dev
        elif dev == self.master_id:
            # Master handed off; BPM stays absent until someone claims it
            self.master_id = None
        return self.derived()

    @property
    def master(self) -> Optional[StatusReport]:
        if self.master_id is None:
            return None
        return self.devices.get(self.master_id)

    @property
    def bpm(self) -> Optional[float]:
        m = self.master
        return m.effective_bpm if m is not None else None

    @property
    def beat_in_measure(self) -> Optional[int]:
        # Tracked for future phase alignment; nothing downstream acts on it
        m = self.master
        return m.beat_in_measure if m is not None else None

    def is_playing(self) -> bool:
        return any(r.play_state in self.playing_states for r in self.devices.values())

    def derived(self) -> DerivedState:
        return DerivedState(bpm=self.bpm, is_playing=self.is_playing(), beat_in_measure=self.beat_in_measure)

    def snapshot(self) -> Dict[str, Dict[str, object]]:
        return {
            str(dev): {
                "master": dev == self.master_id,
                "bpm": round(r.effective_bpm, 3),
                "playState": r.play_state,
                "beat": r.beat_in_measure,
            }
            for dev, r in sorted(self.devices.items())
        }
