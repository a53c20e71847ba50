from __future__ import annotations

from typing import Optional

from djlink2midi.clock import ClockScheduler, InvalidTempoConfiguration
from djlink2midi.midi_out import ClockSink
from djlink2midi.status import DerivedState


class TransportController:
    """Turns derived tempo/transport state into scheduler retunes and MIDI start/stop.

    Two independent sub-states:
    - tempo: unset -> armed(bpm); retunes the scheduler whenever the derived BPM
      differs from the armed one.
    - transport: stopped <-> playing; emits exactly one start/stop per flip.

    With `clock_while_stopped` (the default) clock pulses keep running while
    stopped, as MIDI Clock expects. Otherwise the pulse generator is halted on
    stop and resumed on start.
    """

    def __init__(self, sink: ClockSink, scheduler: ClockScheduler, resolution: int = 24, correction: float = 0.0, clock_while_stopped: bool = True):
        self.sink = sink
        self.scheduler = scheduler
        self.resolution = resolution
        self.correction = float(correction)
        self.clock_while_stopped = clock_while_stopped
        self.armed_bpm: Optional[float] = None
        self.playing = False
        self._rejected_bpm: Optional[float] = None
        if not clock_while_stopped:
            self.scheduler.stop()

    def update(self, state: DerivedState) -> None:
        if state.bpm is not None and state.bpm != self.armed_bpm:
            self._update_tempo(state.bpm)
        if state.is_playing != self.playing:
            self._update_is_playing(state.is_playing)

    def _update_tempo(self, bpm: float) -> None:
        try:
            self.scheduler.retune(bpm, self.correction, self.resolution)
        except InvalidTempoConfiguration as e:
            if bpm != self._rejected_bpm:
                self._rejected_bpm = bpm
                print(f"[clock] ignoring tempo: {e}", flush=True)
            return
        if self.armed_bpm is None:
            print("[clock] Starting timer", flush=True)
        self.armed_bpm = bpm
        self._rejected_bpm = None
        shown = f"{bpm} + {self.correction}%" if self.correction != 0 else f"{bpm}"
        print(f"[clock] Setting bpm to: {shown}", flush=True)

    def _update_is_playing(self, is_playing: bool) -> None:
        self.playing = is_playing
        if is_playing:
            self.sink.start()
            if not self.clock_while_stopped:
                self.scheduler.resume()
        else:
            if not self.clock_while_stopped:
                self.scheduler.stop()
            self.sink.stop()
        print(f"[transport] Sent {'START' if is_playing else 'STOP'} message", flush=True)

    def shutdown(self) -> None:
        self.scheduler.stop()
        if self.playing:
            self.playing = False
            self.sink.stop()
            print("[transport] Sent STOP message", flush=True)
