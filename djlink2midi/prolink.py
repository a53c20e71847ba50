"""Minimal Pro DJ Link participant.

Joins the network as a virtual player by broadcasting keep-alive packets on
port 50000, so players send their status packets to us on port 50002.
Only the fields the bridge needs are decoded:

- CDJ status (type 0x0a): device number, flags, play state, pitch, BPM, beat in bar
- Mixer status (type 0x29): device number, flags, pitch, BPM, beat in bar

Offsets follow the packet layouts documented by the dysentery project.
"""

from __future__ import annotations

import asyncio
import ipaddress
import socket
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import psutil

from djlink2midi.status import StatusReport


MAGIC = b"Qspt1WmJOL"
ANNOUNCE_PORT = 50000
STATUS_PORT = 50002
KEEPALIVE_INTERVAL = 1.5

PKT_KEEPALIVE = 0x06
PKT_CDJ_STATUS = 0x0A
PKT_MIXER_STATUS = 0x29

KEEPALIVE_LEN = 0x36
CDJ_STATUS_MIN_LEN = 0xA7
MIXER_STATUS_LEN = 0x38

FLAG_MASTER = 0x20

DEVICE_TYPE_CDJ = 0x01
DEVICE_TYPES = {DEVICE_TYPE_CDJ: "player", 0x03: "mixer", 0x04: "rekordbox"}

NO_TRACK_BPM = 0xFFFF
PITCH_NORMAL = 0x100000

_REUSE_PORT = hasattr(socket, "SO_REUSEPORT")


def _u16(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset:offset + 2], "big")


def _u32(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset:offset + 4], "big")


def pitch_to_percent(raw: int) -> float:
    """Convert a raw pitch field (0x100000 = normal speed) to a +/- percentage."""
    return (raw - PITCH_NORMAL) * 100.0 / PITCH_NORMAL


def bpm_from_raw(raw: int) -> float:
    # 0xffff means no track loaded
    if raw == NO_TRACK_BPM:
        return 0.0
    return raw / 100.0


def parse_status(data: bytes) -> Optional[StatusReport]:
    """Decode a status packet received on port 50002; None for anything else."""
    if len(data) < 0x25 or not data.startswith(MAGIC):
        return None
    kind = data[0x0A]
    if kind == PKT_CDJ_STATUS:
        if len(data) < CDJ_STATUS_MIN_LEN:
            return None
        flags = data[0x89]
        return StatusReport(
            device_id=data[0x21],
            is_master=bool(flags & FLAG_MASTER),
            track_bpm=bpm_from_raw(_u16(data, 0x92)),
            slider_pitch=pitch_to_percent(_u32(data, 0x8C)),
            beat_in_measure=data[0xA6],
            play_state=data[0x7B],
        )
    if kind == PKT_MIXER_STATUS:
        if len(data) < MIXER_STATUS_LEN:
            return None
        flags = data[0x27]
        return StatusReport(
            device_id=data[0x21],
            is_master=bool(flags & FLAG_MASTER),
            track_bpm=bpm_from_raw(_u16(data, 0x2E)),
            slider_pitch=pitch_to_percent(_u32(data, 0x28)),
            beat_in_measure=data[0x37],
            play_state=0,
        )
    return None


@dataclass(frozen=True)
class DeviceAnnouncement:
    name: str
    number: int
    ip: str
    device_type: int


def parse_keepalive(data: bytes) -> Optional[DeviceAnnouncement]:
    if len(data) < KEEPALIVE_LEN or not data.startswith(MAGIC) or data[0x0A] != PKT_KEEPALIVE:
        return None
    name = data[0x0C:0x20].split(b"\x00", 1)[0].decode("ascii", "replace")
    return DeviceAnnouncement(
        name=name,
        number=data[0x24],
        ip=socket.inet_ntoa(data[0x2C:0x30]),
        device_type=data[0x34],
    )


def build_keepalive(number: int, name: str, mac: bytes, ip: str) -> bytes:
    pkt = bytearray(KEEPALIVE_LEN)
    pkt[0:10] = MAGIC
    pkt[0x0A] = PKT_KEEPALIVE
    encoded = name.encode("ascii", "replace")[:20]
    pkt[0x0C:0x0C + len(encoded)] = encoded
    pkt[0x20] = 0x01
    pkt[0x21] = 0x02
    pkt[0x22:0x24] = KEEPALIVE_LEN.to_bytes(2, "big")
    pkt[0x24] = int(number) & 0xFF
    pkt[0x25] = 0x01
    pkt[0x26:0x2C] = bytes(mac[:6]).ljust(6, b"\x00")
    pkt[0x2C:0x30] = socket.inet_aton(ip)
    pkt[0x30] = 0x01
    pkt[0x34] = DEVICE_TYPE_CDJ
    return bytes(pkt)


@dataclass(frozen=True)
class InterfaceInfo:
    name: str
    ip: str
    broadcast: str
    mac: bytes


def list_interfaces() -> List[str]:
    return sorted(psutil.net_if_addrs().keys())


def _parse_mac(text: str) -> bytes:
    hexdigits = text.replace(":", "").replace("-", "").replace(".", "")
    try:
        raw = bytes.fromhex(hexdigits)
    except ValueError:
        return b"\x00" * 6
    return raw[:6].ljust(6, b"\x00")


def interface_info(name: str) -> InterfaceInfo:
    """IPv4 address, broadcast address and MAC of the named interface."""
    addrs = psutil.net_if_addrs()
    if name not in addrs:
        listing = "\n".join(f"\t'{n}'" for n in sorted(addrs)) or "\t(none)"
        raise SystemExit(f"network interface '{name}' not found; available interfaces:\n{listing}")
    ip = None
    broadcast = None
    mac = b"\x00" * 6
    for a in addrs[name]:
        if a.family == socket.AF_INET and ip is None:
            ip = a.address
            broadcast = a.broadcast
            if not broadcast and a.netmask:
                net = ipaddress.IPv4Network(f"{a.address}/{a.netmask}", strict=False)
                broadcast = str(net.broadcast_address)
        elif a.family == psutil.AF_LINK:
            mac = _parse_mac(a.address)
    if ip is None:
        raise SystemExit(f"network interface '{name}' has no IPv4 address")
    return InterfaceInfo(name=name, ip=ip, broadcast=broadcast or "255.255.255.255", mac=mac)


class StatusProtocol(asyncio.DatagramProtocol):
    def __init__(self, on_status: Callable[[StatusReport], None]):
        self.on_status = on_status

    def datagram_received(self, data: bytes, addr) -> None:
        report = parse_status(data)
        if report is not None:
            self.on_status(report)


class AnnounceProtocol(asyncio.DatagramProtocol):
    """Tracks peers seen on the announcement port, ignoring our own keep-alives."""

    def __init__(self, own_number: int, own_ip: str):
        self.own_number = own_number
        self.own_ip = own_ip
        self.devices: Dict[int, DeviceAnnouncement] = {}

    def datagram_received(self, data: bytes, addr) -> None:
        dev = parse_keepalive(data)
        if dev is None:
            return
        if dev.number == self.own_number and dev.ip == self.own_ip:
            return
        known = self.devices.get(dev.number)
        self.devices[dev.number] = dev
        if known is None or known.name != dev.name:
            kind = DEVICE_TYPES.get(dev.device_type, "device")
            print(f"[net] New device on network: {dev.name} ({kind} #{dev.number} at {dev.ip})", flush=True)


class ProlinkNetwork:
    """UDP endpoints for announcing ourselves and receiving player status."""

    def __init__(
        self,
        iface: InterfaceInfo,
        on_status: Callable[[StatusReport], None],
        device_number: int = 5,
        device_name: str = "djlink2midi",
        bind_host: str = "0.0.0.0",
        announce_port: int = ANNOUNCE_PORT,
        status_port: int = STATUS_PORT,
        keepalive_interval: float = KEEPALIVE_INTERVAL,
    ):
        self.iface = iface
        self.on_status = on_status
        self.device_number = device_number
        self.device_name = device_name
        self.bind_host = bind_host
        self.announce_port = announce_port
        self.status_port = status_port
        self.keepalive_interval = keepalive_interval
        self.announce_transport: Optional[asyncio.DatagramTransport] = None
        self.status_transport: Optional[asyncio.DatagramTransport] = None
        self.announcer: Optional[AnnounceProtocol] = None
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        self.announce_transport, self.announcer = await loop.create_datagram_endpoint(
            lambda: AnnounceProtocol(self.device_number, self.iface.ip),
            local_addr=(self.bind_host, self.announce_port),
            allow_broadcast=True,
            reuse_port=_REUSE_PORT or None,
        )
        self.status_transport, _ = await loop.create_datagram_endpoint(
            lambda: StatusProtocol(self.on_status),
            local_addr=(self.bind_host, self.status_port),
            reuse_port=_REUSE_PORT or None,
        )
        self._task = asyncio.create_task(self._announce_loop())

    async def _announce_loop(self) -> None:
        pkt = build_keepalive(self.device_number, self.device_name, self.iface.mac, self.iface.ip)
        while True:
            if self.announce_transport is not None:
                self.announce_transport.sendto(pkt, (self.iface.broadcast, self.announce_port))
            await asyncio.sleep(self.keepalive_interval)

    def close(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        for t in (self.announce_transport, self.status_transport):
            if t is not None:
                t.close()
        self.announce_transport = None
        self.status_transport = None
