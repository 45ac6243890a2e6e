"""Per-stream state: payload types, state flags, statistics and the stream log."""

from __future__ import annotations

import copy
import ipaddress
import time
from dataclasses import dataclass, field
from enum import IntEnum, IntFlag
from typing import Iterator

MAX_PID = 0x2000
DOC_LINE_LIMIT = 1000
DEFAULT_MAX_PAGE_SIZE = 10
STREAMING_TIMEOUT_SECONDS = 5


class PayloadType(IntEnum):
    """What a discovered UDP stream is carrying."""

    UNDEFINED = 0
    UDP_TS = 1
    RTP_TS = 2
    A324_CTP = 3
    BYTE_STREAM = 4
    SMPTE2110_20_VIDEO = 5
    SMPTE2110_30_AUDIO = 6
    SMPTE2110_40_ANC = 7


_PAYLOAD_LABELS = {
    PayloadType.UNDEFINED: "???",
    PayloadType.UDP_TS: "UDP",
    PayloadType.RTP_TS: "RTP",
    PayloadType.A324_CTP: "STL",
    PayloadType.BYTE_STREAM: "UNK",
    PayloadType.SMPTE2110_20_VIDEO: "21V",
    PayloadType.SMPTE2110_30_AUDIO: "21A",
    PayloadType.SMPTE2110_40_ANC: "21D",
}


def payload_type_desc(pt) -> str:
    """Three letter label for a payload type; unknown values give '???'."""
    try:
        return _PAYLOAD_LABELS[PayloadType(pt)]
    except ValueError:
        return _PAYLOAD_LABELS[PayloadType.UNDEFINED]


class ItemState(IntFlag):
    """State flags carried by each discovered stream."""

    NONE = 0
    SELECTED = 1 << 0
    CC_ERROR = 1 << 1
    PCAP_RECORD_START = 1 << 2
    PCAP_RECORDING = 1 << 3
    PCAP_RECORD_STOP = 1 << 4
    SHOW_PIDS = 1 << 5
    SHOW_TR101290 = 1 << 6
    DST_DUPLICATE = 1 << 7
    SHOW_IAT_HISTOGRAM = 1 << 8
    HIDDEN = 1 << 9
    SHOW_STREAMMODEL = 1 << 10
    SHOW_PROCESSES = 1 << 11
    STREAM_FORWARD_START = 1 << 12
    STREAM_FORWARDING = 1 << 13
    STREAM_FORWARD_STOP = 1 << 14
    JSON_PROBE_ACTIVE = 1 << 15
    SHOW_SCTE35 = 1 << 16
    SHOW_STREAM_LOG = 1 << 17
    SHOW_CLOCKS = 1 << 18


def hash_index_cal_hash(addr: int, port: int) -> int:
    """16-bit lookup hash: the low three nibbles of the address, then the low nibble of the port."""
    return ((addr << 4) & 0xFFF0) | (port & 0x000F)


def _timestamp(when: float) -> str:
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(when))


def _truncated_ms(us: int) -> int:
    """Microseconds to milliseconds, truncating toward zero."""
    return int(us / 1000)


class DocumentFull(Exception):
    """Raised when a display document has reached its line limit."""


@dataclass
class DisplayDoc:
    """A scrollable, append-only list of text lines."""

    lines: list[str] = field(default_factory=list)
    display_line_from: int = 0
    page_size: int = 0
    max_page_size: int = DEFAULT_MAX_PAGE_SIZE

    @property
    def line_count(self) -> int:
        return len(self.lines)

    def append(self, line: str) -> int:
        """Add a line and return the new line count."""
        if self.line_count > DOC_LINE_LIMIT:
            raise DocumentFull(f"document holds more than {DOC_LINE_LIMIT} lines")
        self.lines.append(line)
        if self.line_count < self.max_page_size:
            self.page_size = self.line_count
        return self.line_count

    def append_with_time(self, msg: str, when=None) -> int:
        """Add a line prefixed with a local timestamp (now when `when` is None)."""
        t = time.time() if when is None else when
        return self.append(f"{_timestamp(t)}: {msg}")

    def append_cc_error(self, pid: int, when=None) -> int:
        """Add a timestamped continuity-counter error line."""
        return self.append_with_time("CC Errors in stream", when)

    def page_up(self) -> None:
        self.display_line_from = max(0, self.display_line_from - self.page_size)

    def page_down(self) -> None:
        self.display_line_from += self.page_size
        if self.display_line_from + self.page_size >= self.line_count:
            self.display_line_from = self.line_count - self.page_size - 1
        if self.display_line_from < 0:
            self.display_line_from = 0

    def visible_lines(self) -> list[str]:
        """The lines on the current page."""
        start = self.display_line_from
        return self.lines[start:start + self.max_page_size]

    def position_label(self) -> str:
        return f"[{self.display_line_from} of {self.line_count}]"

    def clear(self) -> None:
        self.lines.clear()
        self.display_line_from = 0
        self.page_size = 0
        self.max_page_size = DEFAULT_MAX_PAGE_SIZE


@dataclass
class PidStats:
    """Counters for one transport stream PID."""

    enabled: bool = False
    packet_count: int = 0
    cc_errors: int = 0
    tei_errors: int = 0
    has_pcr: bool = False
    mbps: float = 0.0


@dataclass
class StreamStats:
    """Counters for a whole stream and each PID seen in it."""

    packet_count: int = 0
    cc_errors: int = 0
    mbps: float = 0.0
    bps: int = 0
    pids: dict[int, PidStats] = field(default_factory=dict)

    def record_packet(self, pid: int, cc_error: bool = False) -> PidStats:
        """Count one packet on `pid`, optionally with a continuity error."""
        if not 0 <= pid < MAX_PID:
            raise ValueError(f"PID {pid:#x} outside 0x0000..0x1fff")
        entry = self.pids.setdefault(pid, PidStats())
        entry.enabled = True
        entry.packet_count += 1
        self.packet_count += 1
        if cc_error:
            entry.cc_errors += 1
            self.cc_errors += 1
        return entry

    def enabled_pids(self) -> Iterator[tuple[int, PidStats]]:
        """Yield (pid, stats) for every enabled PID in ascending order."""
        for pid in sorted(self.pids):
            entry = self.pids[pid]
            if entry.enabled:
                yield pid, entry

    def reset(self) -> None:
        self.packet_count = 0
        self.cc_errors = 0
        self.mbps = 0.0
        self.bps = 0
        self.pids.clear()

    def clone(self) -> "StreamStats":
        return copy.deepcopy(self)


@dataclass
class DiscoveredItem:
    """A UDP stream seen on the network, identified by its source and destination."""

    src_addr: str
    src_port: int
    dst_addr: str
    dst_port: int
    first_seen: float = field(default_factory=time.time)
    last_updated: float = 0.0
    payload_type: PayloadType = PayloadType.UNDEFINED
    state: ItemState = ItemState.NONE
    src_origin_remote_host: bool = True
    stats: StreamStats = field(default_factory=StreamStats)
    stats_to_file_summary: StreamStats = field(default_factory=StreamStats)
    stats_to_file_detailed_cc_errors: int = 0
    iat_lwm_us: int = 50_000_000
    iat_hwm_us: int = -1
    iat_cur_us: int = 0
    iat_hwm_us_last_nsecond: int = 0
    bitrate_hwm_us_10ms: int = 0
    bitrate_hwm_us_10ms_last_nsecond: int = 0
    bitrate_hwm_us_100ms: int = 0
    bitrate_hwm_us_100ms_last_nsecond: int = 0
    not_multiple_of_seven_error: int = 0
    has_hidden_duplicates: bool = False
    warning_indicator_label: str = ""
    forward_slot_nr: int = 0
    forward_url: str = ""
    filename: str = ""
    detailed_filename: str = ""
    is_ltn_encoder: bool = False
    doc_stream_log: DisplayDoc = field(default_factory=DisplayDoc)
    doc_scte35: DisplayDoc = field(default_factory=DisplayDoc)

    def __post_init__(self) -> None:
        self._src_ip = ipaddress.IPv4Address(self.src_addr)
        self._dst_ip = ipaddress.IPv4Address(self.dst_addr)
        for port in (self.src_port, self.dst_port):
            if not 0 <= port <= 0xFFFF:
                raise ValueError(f"port {port} outside 0..65535")
        if not self.last_updated:
            self.last_updated = self.first_seen
        self.cache_hash_key = hash_index_cal_hash(int(self._dst_ip), self.dst_port)
        if not self.doc_stream_log.lines:
            self.doc_stream_log.append_with_time("Logging begins", self.first_seen)

    @property
    def srcaddr(self) -> str:
        return f"{self.src_addr}:{self.src_port}"

    @property
    def dstaddr(self) -> str:
        return f"{self.dst_addr}:{self.dst_port}"

    @property
    def dst_key(self) -> int:
        """Sort key built from destination address and port."""
        return (int(self._dst_ip) << 16) | self.dst_port

    def set_state(self, state: ItemState) -> None:
        self.state |= state

    def clear_state(self, state: ItemState) -> None:
        self.state &= ~state

    def has_state(self, state: ItemState) -> bool:
        return bool(self.state & state)

    def toggle_state(self, state: ItemState) -> bool:
        """Flip a flag and return whether it is now set."""
        if self.has_state(state):
            self.clear_state(state)
        else:
            self.set_state(state)
        return self.has_state(state)

    def is_streaming(self, now: float) -> bool:
        return not (self.last_updated + STREAMING_TIMEOUT_SECONDS < now)

    def is_duplicate(self, other: "DiscoveredItem") -> bool:
        return (
            self._src_ip == other._src_ip
            and self._dst_ip == other._dst_ip
            and self.src_port == other.src_port
            and self.dst_port == other.dst_port
        )

    def is_dst_duplicate(self, other: "DiscoveredItem") -> bool:
        return self.dst_key == other.dst_key

    def update_warning_indicators(self, iat_max: int) -> str:
        """Refresh the four character warning label and return it."""
        blank = "-"
        if self.payload_type in (PayloadType.RTP_TS, PayloadType.UDP_TS):
            self.warning_indicator_label = "".join((
                "I" if _truncated_ms(self.iat_hwm_us) > iat_max else blank,
                "D" if self.has_hidden_duplicates else blank,
                "P" if self.not_multiple_of_seven_error else blank,
                "T",
            ))
        elif self.payload_type in (
            PayloadType.BYTE_STREAM,
            PayloadType.A324_CTP,
            PayloadType.SMPTE2110_20_VIDEO,
            PayloadType.SMPTE2110_30_AUDIO,
            PayloadType.SMPTE2110_40_ANC,
        ):
            pass
        else:
            self.warning_indicator_label = "????"
        self.warning_indicator_label = self.warning_indicator_label[:4]
        return self.warning_indicator_label

    def reset_stats(self) -> None:
        """Start a new measurement period."""
        self.stats.reset()
        self.iat_lwm_us = 5_000_000
        self.iat_hwm_us = -1
        self.bitrate_hwm_us_10ms = 0
        self.bitrate_hwm_us_100ms = 0
        try:
            self.doc_stream_log.append_with_time("Operator manually reset statistics")
        except DocumentFull:
            pass