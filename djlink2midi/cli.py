from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from typing import List, Optional

from djlink2midi.bridge import Bridge, BridgeConfig
from djlink2midi.clock import InvalidTempoConfiguration
from djlink2midi.midi_out import MidoSink, list_output_names, open_mido_output
from djlink2midi.prolink import ProlinkNetwork, interface_info, list_interfaces
from djlink2midi.ws_server import StateServer

VERSION = "1.0.3"


async def run(args: argparse.Namespace, config: BridgeConfig) -> None:
    loop = asyncio.get_running_loop()
    iface = interface_info(args.interface)
    out = open_mido_output(args.midi)
    sink = MidoSink(out)
    bridge = Bridge(sink, config, loop=loop)

    network = ProlinkNetwork(iface, bridge.on_status, device_number=args.device_number, device_name=args.device_name)
    print(f"[net] Connecting to the network on {iface.name} ({iface.ip})", flush=True)
    await network.start()

    server: Optional[StateServer] = None
    if args.ws_port:
        server = StateServer(bridge, port=args.ws_port)
        await server.start()

    print("Program started", flush=True)
    print(f"Using network interface: {args.interface}", flush=True)
    print(f"Using MIDI interface:    {args.midi}", flush=True)
    print("Waiting for players to report tempo...", flush=True)

    done = asyncio.Event()

    def shutdown(*_):
        loop.call_soon_threadsafe(done.set)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        await done.wait()
    finally:
        bridge.shutdown()
        network.close()
        if server is not None:
            await server.close()
        sink.close()
        print("[net] shutting down", flush=True)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="djlink2midi", description="Send MIDI Clock following the tempo master of a Pro DJ Link network")
    ap.add_argument("-i", "--interface", help="Network interface to use")
    ap.add_argument("-m", "--midi", help="MIDI interface to use")
    ap.add_argument("-r", "--resolution", type=int, default=24, help="MIDI clock resolution (pulses per quarter note)")
    ap.add_argument("-c", "--correction", type=float, default=0.0, help="BPM correction in percent")
    ap.add_argument("--device-number", type=int, default=5, help="Player number to announce on the network (default: 5)")
    ap.add_argument("--device-name", default="djlink2midi", help="Device name to announce on the network")
    ap.add_argument("--ws-port", type=int, default=0, help="Serve bridge state on ws://127.0.0.1:PORT (0 = off)")
    ap.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    return ap


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    if not args.interface:
        print("Please specify network interface with -i option from:")
        for name in list_interfaces():
            print(f"\t'{name}'")
        print()
    if not args.midi:
        print("Please specify MIDI interface with -m option from:")
        for name in list_output_names():
            print(f"\t'{name}'")
        print()
    if not args.midi or not args.interface:
        sys.exit(1)

    try:
        config = BridgeConfig(resolution=args.resolution, correction=args.correction)
    except InvalidTempoConfiguration as e:
        raise SystemExit(f"invalid clock settings: {e}")

    asyncio.run(run(args, config))


if __name__ == "__main__":
    main()
