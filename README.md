# nicmon

Building blocks for watching multicast transport-stream traffic. The package
keeps track of each UDP stream it is told about: its source and destination,
its payload type, a set of state flags, per-stream and per-PID packet and
continuity-error counters, and a short scrollable log. It also parses the
monitor's command line into an options object.

## Installing

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Modules

### `nicmon.streams`

- `PayloadType`: what a stream carries (`UDP_TS`, `RTP_TS`, `A324_CTP`,
  `BYTE_STREAM`, the SMPTE 2110 types, or `UNDEFINED`).
- `payload_type_desc(pt)`: the three-letter label for a payload type, such as
  `"UDP"` or `"RTP"`. Unknown values give `"???"`.
- `ItemState`: the flags a stream can carry, such as `SELECTED`, `HIDDEN`,
  `DST_DUPLICATE`, `PCAP_RECORD_START` and `SHOW_PIDS`.
- `hash_index_cal_hash(addr, port)`: the 16-bit lookup hash built from a
  destination address and port.
- `DisplayDoc`: a list of text lines you can page through. Use `append`,
  `append_with_time`, `append_cc_error`, `page_up`, `page_down`,
  `visible_lines`, `position_label` and `clear`. Appending to a document that
  already holds more than 1000 lines raises `DocumentFull`.
- `PidStats` and `StreamStats`: the counters. `StreamStats.record_packet(pid,
  cc_error)` counts one packet and raises `ValueError` for a PID outside
  0x0000..0x1fff. `enabled_pids()` yields the PIDs in ascending order. There
  are also `reset()` and `clone()`.
- `DiscoveredItem`: one stream. It has the state helpers `set_state`,
  `clear_state`, `has_state` and `toggle_state`, and the checks `is_streaming`,
  `is_duplicate` and `is_dst_duplicate`. `update_warning_indicators(iat_max)`
  returns the four-character warning label. `reset_stats()` starts a new
  measurement period.

### `nicmon.registry`

`StreamRegistry` holds every stream, sorted by destination address and port.

- `find_or_create(src_addr, src_port, dst_addr, dst_port, now)` returns the
  existing stream or creates a new one. A new stream that shares a destination
  with another is marked as a duplicate.
- `housekeeping(now)` runs at most once every six seconds. It hides stale
  duplicates, refreshes the duplicate flags, and purges hidden streams that
  have not been updated for three minutes. It returns the purged streams.
- Selection: `select_first`, `select_next`, `select_prev`, `select_all`,
  `select_none`.
- Operations on the selected streams: `toggle_record`, `toggle_show_pids`,
  `toggle_show_tr101290`, `toggle_show_iats`, `toggle_show_clocks`,
  `toggle_show_processes`, `toggle_show_streammodel`,
  `toggle_forward(slot_nr)`, `toggle_json_probe`, `toggle_scte35`,
  `toggle_show_stream_log`, `hide_selected`, `stream_log_page_up`,
  `stream_log_page_down`, `scte35_page_up`, `scte35_page_down`.
- For every stream: `unhide_all`, `abort`, `reset_stats` and `clear`.

```python
from nicmon.registry import StreamRegistry
from nicmon.streams import ItemState

registry = StreamRegistry()
item = registry.find_or_create("192.168.1.1", 5000, "227.1.1.1", 4001, now=0)
item.stats.record_packet(0x100, cc_error=False)

registry.select_first()
registry.toggle_show_pids()
assert item.has_state(ItemState.SHOW_PIDS)
```

### `nicmon.options`

- `parse_arguments(argv)` turns a command-line argument list into `Options`.
  The list does not include the program name. `-i` is required.
- If the arguments cannot be used, `parse_arguments` raises `OptionsError`.
  A request for help raises `HelpRequested`, which carries the `usage()` text.
- `classify_input(name)` decides whether an input is a URL, a transport-stream
  file (optionally with a `:loop` suffix) or a network interface. It raises
  `UnknownInterfaceError` when the input is none of these.
- `parse_forwarder_url("udp://a.b.c.d:port")` returns a `UrlForwarder`.

## What this package does not do

There is no command to run and no interactive console view. The package does
not capture packets from a network interface and does not read transport-stream
files. It writes no summary or detailed report files and posts no JSON reports.
The pieces above keep the state and counters. Feeding them packets and
presenting the results is left to the code that uses them.