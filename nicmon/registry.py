"""The set of discovered streams, kept in destination order, with operator selection."""

from __future__ import annotations

import ipaddress
import threading
from typing import Iterable, Iterator

from nicmon.streams import DiscoveredItem, ItemState, hash_index_cal_hash

HOUSEKEEPING_INTERVAL_SECONDS = 6
PURGE_AGE_SECONDS = 3 * 60


class StreamRegistry:
    """Every stream seen so far, sorted by destination address and port.

    A hash index keyed on the destination gives fast lookup of the exact
    stream for each incoming packet; collisions are resolved by a full
    comparison of source and destination.
    """

    def __init__(
        self,
        automatically_record: bool = False,
        automatically_json_probe: bool = False,
        local_addresses: Iterable[str] = (),
    ) -> None:
        self.automatically_record = automatically_record
        self.automatically_json_probe = automatically_json_probe
        self.local_addresses = frozenset(local_addresses)
        self.cache_hit = 0
        self.cache_miss = 0
        self.last_list_housekeeping = 0.0
        self._items: list[DiscoveredItem] = []
        self._index: dict[int, list[DiscoveredItem]] = {}
        self._lock = threading.RLock()

    # -- container behaviour -------------------------------------------------

    def __iter__(self) -> Iterator[DiscoveredItem]:
        with self._lock:
            return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def items(self) -> list[DiscoveredItem]:
        """A snapshot of every stream in destination order."""
        with self._lock:
            return list(self._items)

    @property
    def visible_items(self) -> list[DiscoveredItem]:
        with self._lock:
            return [e for e in self._items if not e.has_state(ItemState.HIDDEN)]

    @property
    def selected_items(self) -> list[DiscoveredItem]:
        with self._lock:
            return [e for e in self._items if e.has_state(ItemState.SELECTED)]

    @property
    def cache_hit_ratio(self) -> float:
        if not self.cache_hit:
            return 0.0
        return 100.0 - (self.cache_miss / self.cache_hit) * 100.0

    # -- lookup ----------------------------------------------------------------

    def find_or_create(self, src_addr, src_port, dst_addr, dst_port, now=None) -> DiscoveredItem:
        """Return the stream for this address tuple, creating it on first sight."""
        src_ip = ipaddress.IPv4Address(src_addr)
        dst_ip = ipaddress.IPv4Address(dst_addr)
        key = hash_index_cal_hash(int(dst_ip), dst_port)

        with self._lock:
            found = next(
                (
                    e for e in self._index.get(key, ())
                    if e._src_ip == src_ip and e._dst_ip == dst_ip
                    and e.src_port == src_port and e.dst_port == dst_port
                ),
                None,
            )
            if found is not None:
                self.cache_hit += 1
                return found

            self.cache_miss += 1
            kwargs = {} if now is None else {"first_seen": now}
            item = DiscoveredItem(str(src_ip), src_port, str(dst_ip), dst_port, **kwargs)
            item.src_origin_remote_host = str(src_ip) not in self.local_addresses
            self._insert(item)
            self._index.setdefault(item.cache_hash_key, []).append(item)
            if self.automatically_record:
                item.set_state(ItemState.PCAP_RECORD_START)
            if self.automatically_json_probe:
                item.set_state(ItemState.JSON_PROBE_ACTIVE)
            return item

    def _insert(self, item: DiscoveredItem) -> None:
        b = item.dst_key
        for pos, e in enumerate(self._items):
            a = e.dst_key
            if a < b:
                continue
            if a == b:
                item.set_state(ItemState.DST_DUPLICATE)
                e.set_state(ItemState.DST_DUPLICATE)
            self._items.insert(pos, item)
            return
        self._items.append(item)

    def _remove(self, item: DiscoveredItem) -> None:
        self._items.remove(item)
        bucket = self._index.get(item.cache_hash_key)
        if bucket is not None:
            bucket.remove(item)
            if not bucket:
                del self._index[item.cache_hash_key]

    # -- housekeeping ------------------------------------------------------------

    def housekeeping(self, now) -> list[DiscoveredItem]:
        """Hide stale duplicates, refresh duplicate flags, purge old hidden streams.

        Runs at most once every six seconds; returns the streams purged.
        """
        if self.last_list_housekeeping + HOUSEKEEPING_INTERVAL_SECONDS > now:
            return []
        self.last_list_housekeeping = now

        with self._lock:
            for e in self._items:
                if not e.has_state(ItemState.DST_DUPLICATE):
                    continue
                if e.is_streaming(now):
                    e.clear_state(ItemState.HIDDEN)
                else:
                    e.set_state(ItemState.HIDDEN)

            for e in self._items:
                active = 0
                e_streaming = e.is_streaming(now)
                for f in self._items:
                    if e.is_duplicate(f):
                        continue
                    if not e.is_dst_duplicate(f):
                        continue
                    f_streaming = f.is_streaming(now)
                    if e_streaming and f_streaming:
                        active += 1
                        f.clear_state(ItemState.HIDDEN)
                        f.set_state(ItemState.DST_DUPLICATE)
                    if e_streaming and not f_streaming:
                        e.has_hidden_duplicates = True
                if e_streaming:
                    if active:
                        e.set_state(ItemState.DST_DUPLICATE)
                    else:
                        e.clear_state(ItemState.DST_DUPLICATE)

            purged = [
                e for e in self._items
                if e.has_state(ItemState.HIDDEN)
                and e.last_updated
                and e.last_updated + PURGE_AGE_SECONDS < now
            ]
            for e in purged:
                self._remove(e)
        return purged

    # -- selection -----------------------------------------------------------------

    def select_first(self) -> None:
        with self._lock:
            if self._items:
                self._items[0].set_state(ItemState.SELECTED)

    def select_next(self) -> None:
        with self._lock:
            do_select = False
            last = self._items[-1] if self._items else None
            for e in self._items:
                if e.has_state(ItemState.HIDDEN):
                    continue
                if e.has_state(ItemState.SELECTED):
                    # The last entry in the list keeps its selection.
                    if e is not last:
                        e.clear_state(ItemState.SELECTED)
                    do_select = True
                elif do_select:
                    e.set_state(ItemState.SELECTED)
                    break

    def select_prev(self) -> None:
        with self._lock:
            prev = None
            for e in self._items:
                if e.has_state(ItemState.HIDDEN):
                    continue
                if e.has_state(ItemState.SELECTED) and prev is not None:
                    e.clear_state(ItemState.SELECTED)
                    prev.set_state(ItemState.SELECTED)
                    break
                prev = e

    def select_all(self) -> None:
        with self._lock:
            for e in self._items:
                e.set_state(ItemState.SELECTED)

    def select_none(self) -> None:
        with self._lock:
            for e in self._items:
                e.clear_state(ItemState.SELECTED)

    # -- operations on the selection -------------------------------------------------

    def _toggle_selected(self, flag: ItemState) -> None:
        with self._lock:
            for e in self._items:
                if e.has_state(ItemState.SELECTED):
                    e.toggle_state(flag)

    def toggle_record(self) -> None:
        with self._lock:
            for e in self.selected_items:
                if e.has_state(ItemState.PCAP_RECORDING) or e.has_state(ItemState.PCAP_RECORD_START):
                    e.set_state(ItemState.PCAP_RECORD_STOP)
                else:
                    e.set_state(ItemState.PCAP_RECORD_START)

    def abort(self) -> None:
        """Ask every recording and forwarding stream to stop."""
        with self._lock:
            for e in self._items:
                if e.has_state(ItemState.PCAP_RECORDING) or e.has_state(ItemState.PCAP_RECORD_START):
                    e.set_state(ItemState.PCAP_RECORD_STOP)
                if e.has_state(ItemState.STREAM_FORWARDING) or e.has_state(ItemState.STREAM_FORWARD_START):
                    e.set_state(ItemState.STREAM_FORWARD_STOP)

    def toggle_show_pids(self) -> None:
        self._toggle_selected(ItemState.SHOW_PIDS)

    def toggle_show_tr101290(self) -> None:
        self._toggle_selected(ItemState.SHOW_TR101290)

    def toggle_show_iats(self) -> None:
        self._toggle_selected(ItemState.SHOW_IAT_HISTOGRAM)

    def toggle_show_clocks(self) -> None:
        with self._lock:
            for e in self.selected_items:
                if e.has_state(ItemState.SHOW_CLOCKS):
                    e.clear_state(ItemState.SHOW_CLOCKS)
                else:
                    e.set_state(ItemState.SHOW_CLOCKS | ItemState.SHOW_STREAMMODEL)

    def toggle_show_processes(self) -> None:
        self._toggle_selected(ItemState.SHOW_PROCESSES)

    def toggle_show_streammodel(self) -> None:
        self._toggle_selected(ItemState.SHOW_STREAMMODEL)

    def toggle_forward(self, slot_nr) -> None:
        with self._lock:
            for e in self.selected_items:
                if e.has_state(ItemState.STREAM_FORWARDING) or e.has_state(ItemState.STREAM_FORWARD_START):
                    e.set_state(ItemState.STREAM_FORWARD_STOP)
                    e.forward_slot_nr = 0
                else:
                    e.forward_slot_nr = slot_nr
                    e.set_state(ItemState.STREAM_FORWARD_START)

    def toggle_json_probe(self) -> None:
        self._toggle_selected(ItemState.JSON_PROBE_ACTIVE)

    def toggle_scte35(self) -> None:
        self._toggle_selected(ItemState.SHOW_SCTE35)

    def toggle_show_stream_log(self) -> None:
        self._toggle_selected(ItemState.SHOW_STREAM_LOG)

    def hide_selected(self) -> None:
        """Hide the selected streams, except those being recorded."""
        with self._lock:
            for e in self.selected_items:
                if e.has_state(ItemState.PCAP_RECORDING):
                    continue
                e.set_state(ItemState.HIDDEN)

    def unhide_all(self) -> None:
        with self._lock:
            for e in self._items:
                e.clear_state(ItemState.HIDDEN)

    def stream_log_page_up(self) -> None:
        with self._lock:
            for e in self.selected_items:
                e.doc_stream_log.page_up()

    def stream_log_page_down(self) -> None:
        with self._lock:
            for e in self.selected_items:
                e.doc_stream_log.page_down()

    def scte35_page_up(self) -> None:
        with self._lock:
            for e in self.selected_items:
                e.doc_scte35.page_up()

    def scte35_page_down(self) -> None:
        with self._lock:
            for e in self.selected_items:
                e.doc_scte35.page_down()

    # -- lifecycle --------------------------------------------------------------------

    def reset_stats(self) -> None:
        with self._lock:
            for e in self._items:
                e.reset_stats()

    def clear(self) -> int:
        """Forget every stream and return how many there were."""
        with self._lock:
            count = len(self._items)
            self._items.clear()
            self._index.clear()
            return count