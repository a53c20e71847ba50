import unittest
from unittest import mock

from djlink2midi.midi_out import MidoSink, VirtualSink, open_mido_output


class RecordingOut:
    def __init__(self):
        self.sent = []
        self.closed = False

    def send(self, msg):
        self.sent.append(msg)

    def close(self):
        self.closed = True


class TestMidoSink(unittest.TestCase):
    def test_realtime_messages(self):
        out = RecordingOut()
        sink = MidoSink(out)
        sink.start()
        sink.clock()
        sink.clock()
        sink.stop()
        self.assertEqual([m.type for m in out.sent], ["start", "clock", "clock", "stop"])
        self.assertEqual(out.sent[0].bytes(), [0xFA])
        self.assertEqual(out.sent[1].bytes(), [0xF8])
        self.assertEqual(out.sent[3].bytes(), [0xFC])
        sink.close()
        self.assertTrue(out.closed)


class TestVirtualSink(unittest.TestCase):
    def test_records_with_timestamps(self):
        t = [0.0]
        sink = VirtualSink(now=lambda: t[0])
        sink.start()
        t[0] = 0.5
        sink.clock()
        self.assertEqual(sink.events, [("start", 0.0), ("clock", 0.5)])
        self.assertEqual(sink.types(), ["start", "clock"])

    def test_records_without_clock(self):
        sink = VirtualSink()
        sink.stop()
        self.assertEqual(sink.events, [("stop", None)])


class TestOpenOutput(unittest.TestCase):
    names = ["Microsoft GS Wavetable Synth 0", "IAC Driver Bus 1", "IAC Driver Bus 2"]

    def test_exact_match(self):
        with mock.patch("mido.get_output_names", return_value=self.names), mock.patch("mido.open_output", return_value="port") as op:
            self.assertEqual(open_mido_output("IAC Driver Bus 1"), "port")
        op.assert_called_once_with("IAC Driver Bus 1")

    def test_unique_substring(self):
        with mock.patch("mido.get_output_names", return_value=self.names), mock.patch("mido.open_output", return_value="port") as op:
            open_mido_output("Wavetable")
        op.assert_called_once_with("Microsoft GS Wavetable Synth 0")

    def test_ambiguous_or_missing_is_fatal(self):
        for name in ("IAC", "Digitakt"):
            with mock.patch("mido.get_output_names", return_value=self.names), mock.patch("mido.open_output") as op:
                with self.assertRaises(SystemExit) as cm:
                    open_mido_output(name)
            op.assert_not_called()
            self.assertIn("'IAC Driver Bus 2'", str(cm.exception.code))


if __name__ == "__main__":
    unittest.main()
