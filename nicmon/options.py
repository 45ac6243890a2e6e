"""Command line options for the NIC monitor."""

from __future__ import annotations

import getopt
import os
import re
import socket
import sys
import time
from dataclasses import dataclass, field
from enum import IntEnum

DEFAULT_PCAP_FILTER = "udp dst portrange 4000-4999"
DEFAULT_STORAGE_LOCATION = "/storage/packet_captures"
DEFAULT_JSON_HTTP_URL = "http://127.0.0.1:13400/nicmonitor"
FILE_WRITE_INTERVAL = 5
JSON_WRITE_INTERVAL = 1
MAX_URL_FORWARDERS = 3
DEFAULT_IAT_MAX_MS = 45
DEFAULT_BUFFER_SIZE = 64 * 1024 * 1024
MIN_BUFFER_SIZE = 2 * 1048576
MIN_SNAPLEN = 2048
DEFAULT_SNAPLEN = 65535 if sys.platform == "darwin" else 8192
MAX_H264_PID = 0x1FFF

_TS_SYNC_BYTE = 0x47
_LOOP_SUFFIX = ":loop"

_SHORT_OPTS = "?hd:B:D:EF:i:I:t:vMn:w:RS:T"
_LONG_OPTS = [
    "pcap-buffer-size=",
    "stats-summary-dir=",
    "pcap-filter=",
    "help",
    "input=",
    "iat-max=",
    "stats-write-interval=",
    "terminate-after=",
    "verbose",
    "ui",
    "danger-skip-freespace-check",
    "pcap-record-dir=",
    "record-single-file",
    "pcap-packet-size=",
    "stats-detailed-dir=",
    "record-as-transport",
    "record-on-startup",
    "udp-forwarder=",
    "measure-scheduling-quanta",
    "show-h264-metadata=",
    "http-json-reporting=",
    "report-rtp-headers",
    "measure-sei-latency-always",
    "report-memory-usage",
    "measure-scheduling-stalls",
]

_FORWARDER_RE = re.compile(r"udp://([^:]{1,63}):\s*([+-]?\d+)")
_HEX_PID_RE = re.compile(r"0x([0-9a-fA-F]+)")
_LEADING_INT_RE = re.compile(r"\s*([+-]?\d+)")


class OptionsError(ValueError):
    """The command line could not be used; the message says why."""


class HelpRequested(OptionsError):
    """The operator asked for the usage text."""


class UnknownInterfaceError(OptionsError):
    """The input named neither a transport file, a URL nor a network interface."""


class InputType(IntEnum):
    """Where packets are read from."""

    PCAP = 0
    MPEGTS_FILE = 1
    MPEGTS_AVDEVICE = 2


@dataclass
class UrlForwarder:
    """A UDP destination that a selected stream can be forwarded to."""

    addr: str
    port: int

    @property
    def uilabel(self) -> str:
        return f"{self.addr}:{self.port}"


def _default_forwarders() -> list[UrlForwarder]:
    return [UrlForwarder(f"227.1.240.{i + 7}", 4001) for i in range(MAX_URL_FORWARDERS)]


@dataclass
class Options:
    """Everything the monitor is configured with."""

    ifname: str | None = None
    iftype: InputType = InputType.PCAP
    file_loops: bool = False
    recording_dir: str | None = None
    verbose: int = 0
    monitor: bool = False
    end_time: float = 0.0
    iat_max: int = DEFAULT_IAT_MAX_MS
    automatically_record: bool = False
    automatically_json_probe: bool = False
    record_with_segments: bool = True
    record_as_ts: bool = False
    skip_free_space_check: bool = False
    gather_h264_metadata: bool = False
    h264_metadata_pid: int = 0
    report_rtp_headers: bool = False
    measure_sei_latency_always: bool = False
    report_memory_usage: bool = False
    measure_scheduling_quanta: bool = False
    measure_scheduling_stalls: bool = False
    file_prefix: str | None = None
    detailed_file_prefix: str | None = None
    file_write_interval: int = FILE_WRITE_INTERVAL
    json_write_interval: int = JSON_WRITE_INTERVAL
    pcap_filter: str = DEFAULT_PCAP_FILTER
    snaplen: int = DEFAULT_SNAPLEN
    buffer_size: int = DEFAULT_BUFFER_SIZE
    json_http_url: str = DEFAULT_JSON_HTTP_URL
    url_forwards: list[UrlForwarder] = field(default_factory=_default_forwarders)


def _atoi(text: str) -> int:
    """Leading decimal integer of `text`, or 0 when there is none."""
    m = _LEADING_INT_RE.match(text)
    return int(m.group(1)) if m else 0


def parse_forwarder_url(url: str) -> UrlForwarder:
    """Parse 'udp://a.b.c.d:port' into a forwarder."""
    m = _FORWARDER_RE.match(url)
    if not m:
        raise ValueError("Error parsing forwarding url, check syntax. Must be udp://a.b.c.d:port")
    return UrlForwarder(m.group(1), int(m.group(2)))


def _is_transport_file(path: str) -> bool:
    if not os.path.isfile(path):
        return False
    try:
        with open(path, "rb") as handle:
            first = handle.read(1)
    except OSError:
        return False
    return first == bytes([_TS_SYNC_BYTE])


def _interface_names() -> list[str]:
    try:
        return [name for _, name in socket.if_nameindex()]
    except (AttributeError, OSError):
        return []


def classify_input(name: str) -> tuple[InputType, str, bool]:
    """Decide what kind of input `name` is.

    Returns the input type, the name with any ':loop' suffix removed,
    and whether a file input should loop.
    """
    loops = False
    if "srt://" in name or "udp://" in name:
        return InputType.MPEGTS_AVDEVICE, name, loops
    if _LOOP_SUFFIX in name:
        loops = True
        name = name[: len(name) - len(_LOOP_SUFFIX)]
    if _is_transport_file(name):
        return InputType.MPEGTS_FILE, name, loops
    interfaces = _interface_names()
    if name not in interfaces:
        available = ", ".join(interfaces) or "none"
        raise UnknownInterfaceError(
            f"No such network interface '{name}', available interfaces: {available}"
        )
    return InputType.PCAP, name, loops


def usage() -> str:
    """The command line help text."""
    lines = [
        "A tool to monitor PCAP multicast ISO13818 traffic.",
        "Usage:",
        "  -i <iface | filename.ts | filename.ts:loop>",
        "  -v Increase level of verbosity.",
        "  -h Display command line help.",
        "  -t <#seconds>. Stop after N seconds [def: 0 - unlimited]",
        "  -M Display an interactive console with stats.",
        f"  -D <dir> Write any PCAP recordings in this target directory prefix. "
        f"[def: {DEFAULT_STORAGE_LOCATION} else /tmp]",
        "  -d <dir> Write summary stats per stream in this target directory prefix, every -n seconds.",
        "  -w <dir> Write detailed per pid stats per stream in this target directory prefix, every -n seconds.",
        f"  -n <seconds> Interval to update -d file based stats [def: {FILE_WRITE_INTERVAL}]",
        f"  -F '<string>' Use a custom pcap filter. [def: '{DEFAULT_PCAP_FILTER}']",
        f"  -S <number> Packet buffer size [def: {DEFAULT_SNAPLEN}] (min: {MIN_SNAPLEN})",
        f"  -B <number> Buffer size [def: {DEFAULT_BUFFER_SIZE}]",
        "  -R Automatically record all discovered streams",
        "  -E Record in a single file, don't segment into 60sec files",
        "  -T Record int a TS format where possible [default is PCAP]",
        f"  -I <#> (ms) max allowable IAT measured in ms [def: {DEFAULT_IAT_MAX_MS}]",
        "",
        f"  --udp-forwarder udp://a.b.c.d:port   Add up to {MAX_URL_FORWARDERS} url forwarders.",
        "  --danger-skip-freespace-check        Skip the Disk Free space check, "
        "don't stop recording when disk has < 10pct free.",
        "  --measure-sei-latency-always         Look for the LTN SEI timing data, "
        "regardless of PMT version descriptoring.",
        "  --measure-scheduling-quanta          Test the scheduling quanta for 1000us sleep granularity.",
        "  --show-h264-metadata 0xnnnn          Analyze the given H264 PID (or detect it), "
        "show different codec stats (Experimental).",
        "  --report-rtp-headers                 For RTP UDP/TS streams, dump each RTP header to console.",
        "  --http-json-reporting http://url     Send 1sec json stats reports for all discovered "
        "streams [def: disabled] (Experimental).",
        "    Eg. http://127.0.0.1:13400/whatever_resource_name_you_want",
        "  --report-memory-usage                Report memory usage and growth every 5 seconds.",
        "  --measure-scheduling-stalls          Test the scheduling system for 1000us sleeps "
        "that lasted more than 3000us.",
    ]
    return "\n".join(lines) + "\n"


def parse_arguments(argv=None) -> Options:
    """Build Options from command line arguments (without the program name)."""
    if argv is None:
        argv = sys.argv[1:]
    try:
        pairs, _ = getopt.gnu_getopt(list(argv), _SHORT_OPTS, _LONG_OPTS)
    except getopt.GetoptError as exc:
        raise OptionsError(str(exc)) from exc

    opts = Options()
    forwarder_idx = 0

    for opt, arg in pairs:
        if opt in ("-B", "--pcap-buffer-size"):
            opts.buffer_size = max(_atoi(arg), MIN_BUFFER_SIZE)
        elif opt in ("-d", "--stats-summary-dir"):
            opts.file_prefix = arg
        elif opt in ("-F", "--pcap-filter"):
            opts.pcap_filter = arg
        elif opt in ("-?", "-h", "--help"):
            raise HelpRequested(usage())
        elif opt in ("-i", "--input"):
            opts.iftype, opts.ifname, opts.file_loops = classify_input(arg)
        elif opt in ("-I", "--iat-max"):
            opts.iat_max = _atoi(arg)
        elif opt in ("-n", "--stats-write-interval"):
            opts.file_write_interval = max(_atoi(arg), 1)
        elif opt in ("-t", "--terminate-after"):
            opts.end_time = time.time() + _atoi(arg)
        elif opt in ("-v", "--verbose"):
            opts.verbose += 1
        elif opt in ("-M", "--ui"):
            opts.monitor = True
        elif opt in ("-D", "--pcap-record-dir"):
            opts.recording_dir = arg
        elif opt in ("-E", "--record-single-file"):
            opts.record_with_segments = False
        elif opt in ("-S", "--pcap-packet-size"):
            opts.snaplen = max(_atoi(arg), MIN_SNAPLEN)
        elif opt in ("-w", "--stats-detailed-dir"):
            opts.detailed_file_prefix = arg
        elif opt in ("-T", "--record-as-transport"):
            opts.record_as_ts = True
        elif opt in ("-R", "--record-on-startup"):
            opts.automatically_record = True
        elif opt == "--danger-skip-freespace-check":
            opts.skip_free_space_check = True
        elif opt == "--udp-forwarder":
            if forwarder_idx == MAX_URL_FORWARDERS:
                raise OptionsError(
                    f"Error, too many forwarders defined, max is {MAX_URL_FORWARDERS}"
                )
            try:
                opts.url_forwards[forwarder_idx] = parse_forwarder_url(arg)
            except ValueError as exc:
                raise OptionsError(str(exc)) from exc
            forwarder_idx += 1
        elif opt == "--measure-scheduling-quanta":
            opts.measure_scheduling_quanta = True
        elif opt == "--show-h264-metadata":
            opts.gather_h264_metadata = True
            m = _HEX_PID_RE.match(arg)
            if not m or int(m.group(1), 16) > MAX_H264_PID:
                raise OptionsError(usage())
            opts.h264_metadata_pid = int(m.group(1), 16)
        elif opt == "--http-json-reporting":
            opts.automatically_json_probe = True
            opts.json_http_url = arg
        elif opt == "--report-rtp-headers":
            opts.report_rtp_headers = True
        elif opt == "--measure-sei-latency-always":
            opts.measure_sei_latency_always = True
        elif opt == "--report-memory-usage":
            opts.report_memory_usage = True
        elif opt == "--measure-scheduling-stalls":
            opts.measure_scheduling_stalls = True

    if opts.ifname is None:
        raise OptionsError("Error, -i is mandatory.")
    return opts