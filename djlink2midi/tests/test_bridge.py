import io
import unittest
from contextlib import redirect_stdout

from djlink2midi.bridge import Bridge, BridgeConfig
from djlink2midi.clock import InvalidTempoConfiguration, pulse_period
from djlink2midi.midi_out import VirtualSink
from djlink2midi.status import StatusReport

from loop_fakes import FakeLoop


def status(device_id, is_master=False, bpm=128.0, pitch=0.0, beat=1, play_state=0):
    return StatusReport(device_id, is_master, bpm, pitch, beat, play_state)


class TestBridge(unittest.TestCase):
    def setUp(self):
        self.loop = FakeLoop()
        self.sink = VirtualSink(now=self.loop.time)
        self.out = io.StringIO()
        self._redirect = redirect_stdout(self.out)
        self._redirect.__enter__()

    def tearDown(self):
        self._redirect.__exit__(None, None, None)

    def test_config_defaults(self):
        cfg = BridgeConfig()
        self.assertEqual(cfg.resolution, 24)
        self.assertEqual(cfg.correction, 0.0)
        self.assertEqual(cfg.playing_states, frozenset({3, 4, 7, 9}))
        self.assertTrue(cfg.clock_while_stopped)

    def test_config_rejects_bad_clock_settings(self):
        with self.assertRaises(InvalidTempoConfiguration):
            BridgeConfig(resolution=0)
        with self.assertRaises(InvalidTempoConfiguration):
            BridgeConfig(correction=-100.0)
        for res in (float("nan"), float("inf")):
            with self.assertRaises(InvalidTempoConfiguration):
                BridgeConfig(resolution=res)

    def test_reports_drive_clock_and_transport(self):
        b = Bridge(self.sink, BridgeConfig(resolution=24, correction=0.0), loop=self.loop)
        b.on_status(status(2, play_state=0))
        self.assertEqual(self.sink.events, [])
        b.on_status(status(1, is_master=True, bpm=120.0, play_state=1))
        self.loop.advance(0.99)
        self.assertEqual(self.sink.types(), ["clock"] * 47)
        b.on_status(status(1, is_master=True, bpm=120.0, play_state=3))
        b.on_status(status(2, play_state=0))
        b.on_status(status(1, is_master=True, bpm=120.0, play_state=3))
        self.assertEqual(self.sink.types().count("start"), 1)
        b.on_status(status(1, is_master=True, bpm=120.0, play_state=5))
        self.assertEqual(self.sink.types()[-1], "stop")

    def test_pitch_and_correction_reach_scheduler(self):
        b = Bridge(self.sink, BridgeConfig(resolution=24, correction=2.0), loop=self.loop)
        b.on_status(status(1, is_master=True, bpm=120.0, pitch=4.0))
        self.assertAlmostEqual(b.scheduler.bpm, 124.8, places=9)
        self.assertAlmostEqual(b.scheduler.interval, pulse_period(124.8, 2.0, 24), places=12)

    def test_master_switch(self):
        b = Bridge(self.sink, loop=self.loop)
        b.on_status(status(1, is_master=True, bpm=126.0))
        b.on_status(status(2, is_master=True, bpm=130.0))
        b.on_status(status(1, is_master=False, bpm=90.0))
        self.assertEqual(b.controller.armed_bpm, 130.0)
        self.assertEqual(b.scheduler.bpm, 130.0)

    def test_master_without_track_keeps_previous_cadence(self):
        b = Bridge(self.sink, loop=self.loop)
        b.on_status(status(1, is_master=True, bpm=126.0))
        b.on_status(status(1, is_master=True, bpm=0.0))
        self.assertEqual(b.scheduler.bpm, 126.0)
        self.assertTrue(b.scheduler.running)
        self.assertIn("ignoring tempo", self.out.getvalue())

    def test_get_state(self):
        b = Bridge(self.sink, BridgeConfig(correction=1.5), loop=self.loop)
        b.on_status(status(2, is_master=True, bpm=120.0, beat=4, play_state=3))
        self.loop.advance(0.1)
        st = b.get_state()
        self.assertEqual(st["bpm"], 120.0)
        self.assertEqual(st["armedBpm"], 120.0)
        self.assertEqual(st["transport"], "playing")
        self.assertEqual(st["master"], 2)
        self.assertEqual(st["beatInMeasure"], 4)
        self.assertEqual(st["correction"], 1.5)
        self.assertEqual(list(st["devices"].keys()), ["2"])
        self.assertGreater(st["clock"]["pulses"], 0)

    def test_shutdown(self):
        b = Bridge(self.sink, loop=self.loop)
        b.on_status(status(1, is_master=True, bpm=120.0, play_state=3))
        b.shutdown()
        self.assertEqual(self.sink.types()[-1], "stop")
        self.assertFalse(b.scheduler.running)
        count = len(self.sink.events)
        self.loop.advance(1.0)
        self.assertEqual(len(self.sink.events), count)


if __name__ == "__main__":
    unittest.main()
