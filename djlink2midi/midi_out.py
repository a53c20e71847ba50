from __future__ import annotations

from typing import List, Tuple


class ClockSink:
    """Abstract sink for MIDI real-time messages used by the transport controller."""

    def clock(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def start(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def stop(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class MidoSink(ClockSink):
    def __init__(self, out_port):
        import mido

        self.out = out_port
        # Real-time messages carry no data; build them once
        self._clock = mido.Message("clock")
        self._start = mido.Message("start")
        self._stop = mido.Message("stop")

    def clock(self) -> None:
        self.out.send(self._clock)

    def start(self) -> None:
        self.out.send(self._start)

    def stop(self) -> None:
        self.out.send(self._stop)

    def close(self) -> None:
        close = getattr(self.out, "close", None)
        if close is not None:
            close()


class VirtualSink(ClockSink):
    """A minimal sink capturing messages for tests and demos.

    Records tuples like (type, timestamp); timestamp is None unless a clock
    function is supplied.
    """

    def __init__(self, now=None) -> None:
        self.now = now
        self.events: List[Tuple[str, object]] = []

    def _record(self, kind: str) -> None:
        self.events.append((kind, self.now() if self.now else None))

    def clock(self) -> None:
        self._record("clock")

    def start(self) -> None:
        self._record("start")

    def stop(self) -> None:
        self._record("stop")

    def types(self) -> List[str]:
        return [e[0] for e in self.events]


def list_output_names() -> List[str]:
    import mido

    return list(mido.get_output_names())


def open_mido_output(name: str):
    """Open the MIDI output called `name`.

    An exact match wins; otherwise a unique substring match is accepted.
    Raises SystemExit naming the available outputs when nothing matches,
    since the bridge has nothing to do without its clock destination.
    """
    import mido

    names = list_output_names()
    if name in names:
        return mido.open_output(name)
    candidates = [n for n in names if name in n]
    if len(candidates) == 1:
        return mido.open_output(candidates[0])
    listing = "\n".join(f"\t'{n}'" for n in names) or "\t(none)"
    raise SystemExit(f"MIDI output '{name}' not found; available outputs:\n{listing}")
