import pytest

from nicmon.streams import (
    DisplayDoc,
    DiscoveredItem,
    DocumentFull,
    ItemState,
    PayloadType,
    StreamStats,
    hash_index_cal_hash,
    payload_type_desc,
)


def make_item(src="10.0.0.1", sport=5000, dst="227.1.1.1", dport=4001, **kw):
    return DiscoveredItem(src, sport, dst, dport, first_seen=1000.0, **kw)


@pytest.mark.parametrize(
    "pt,label",
    [
        (PayloadType.UNDEFINED, "???"),
        (PayloadType.UDP_TS, "UDP"),
        (PayloadType.RTP_TS, "RTP"),
        (PayloadType.A324_CTP, "STL"),
        (PayloadType.BYTE_STREAM, "UNK"),
        (PayloadType.SMPTE2110_20_VIDEO, "21V"),
        (PayloadType.SMPTE2110_30_AUDIO, "21A"),
        (PayloadType.SMPTE2110_40_ANC, "21D"),
    ],
)
def test_payload_type_desc(pt, label):
    assert payload_type_desc(pt) == label


def test_payload_type_desc_out_of_range():
    assert payload_type_desc(8) == "???"
    assert payload_type_desc(99) == "???"


def test_hash_worked_example():
    assert hash_index_cal_hash(0x12345678, 0xABCD) == 0x678D


@pytest.mark.parametrize("addr,port", [(0xE3010101, 4001), (0, 0), (0xFFFFFFFF, 65535)])
def test_hash_invariants(addr, port):
    h = hash_index_cal_hash(addr, port)
    assert 0 <= h <= 0xFFFF
    assert h & 0xF == port & 0xF
    assert h >> 4 == addr & 0xFFF


def test_doc_append_counts_and_page_size():
    doc = DisplayDoc()
    for n in range(1, 15):
        assert doc.append(f"line {n}") == n
    assert doc.page_size == doc.max_page_size - 1
    assert doc.line_count == 14


def test_doc_limit_raises():
    doc = DisplayDoc()
    for n in range(1001):
        doc.append(str(n))
    with pytest.raises(DocumentFull):
        doc.append("too many")
    assert doc.line_count == 1001


def test_doc_paging_clamps():
    doc = DisplayDoc()
    for n in range(20):
        doc.append(str(n))
    doc.page_down()
    assert doc.display_line_from == doc.page_size
    doc.page_down()
    assert doc.display_line_from == doc.line_count - doc.page_size - 1
    for _ in range(5):
        doc.page_up()
    assert doc.display_line_from == 0


def test_doc_visible_lines_and_label():
    doc = DisplayDoc()
    for n in range(3):
        doc.append(f"l{n}")
    assert doc.visible_lines() == ["l0", "l1", "l2"]
    assert doc.position_label() == "[0 of 3]"


def test_doc_page_down_short_doc_stays_at_zero():
    doc = DisplayDoc()
    doc.append("a")
    doc.page_down()
    assert doc.display_line_from == 0


def test_doc_timed_lines():
    doc = DisplayDoc()
    doc.append_with_time("hello", 0)
    doc.append_cc_error(0x100, 0)
    assert doc.lines[0].endswith(": hello")
    assert doc.lines[1].endswith(": CC Errors in stream")
    assert doc.lines[0].split(": ")[0] == doc.lines[1].split(": ")[0]


def test_doc_clear():
    doc = DisplayDoc()
    doc.append("x")
    doc.clear()
    assert doc.lines == []
    assert doc.page_size == 0


def test_stream_stats_record_and_enabled():
    stats = StreamStats()
    stats.record_packet(0x100)
    stats.record_packet(0x100, cc_error=True)
    stats.record_packet(0x0)
    assert stats.packet_count == 3
    assert stats.cc_errors == 1
    pids = list(stats.enabled_pids())
    assert [pid for pid, _ in pids] == [0x0, 0x100]
    assert pids[1][1].packet_count == 2
    assert pids[1][1].cc_errors == 1


@pytest.mark.parametrize("pid", [-1, 0x2000])
def test_stream_stats_bad_pid(pid):
    with pytest.raises(ValueError):
        StreamStats().record_packet(pid)


def test_stream_stats_clone_is_independent_and_reset():
    stats = StreamStats()
    stats.record_packet(0x31)
    copy = stats.clone()
    stats.record_packet(0x31, cc_error=True)
    assert copy.packet_count == 1
    assert copy.pids[0x31].cc_errors == 0
    stats.reset()
    assert stats.packet_count == 0
    assert list(stats.enabled_pids()) == []


def test_item_labels_and_initial_log():
    item = make_item(src="192.168.1.1", sport=1234, dst="227.1.20.80", dport=4001)
    assert item.srcaddr == "192.168.1.1:1234"
    assert item.dstaddr == "227.1.20.80:4001"
    assert item.doc_stream_log.line_count == 1
    assert item.doc_stream_log.lines[0].endswith("Logging begins")
    assert item.iat_hwm_us == -1
    assert item.cache_hash_key & 0xF == 4001 & 0xF


def test_item_rejects_bad_address():
    with pytest.raises(ValueError):
        make_item(dst="not-an-ip")


def test_item_state_ops():
    item = make_item()
    item.set_state(ItemState.SELECTED | ItemState.HIDDEN)
    assert item.has_state(ItemState.SELECTED)
    item.clear_state(ItemState.HIDDEN)
    assert not item.has_state(ItemState.HIDDEN)
    assert item.toggle_state(ItemState.SHOW_PIDS) is True
    assert item.toggle_state(ItemState.SHOW_PIDS) is False


def test_item_is_streaming():
    item = make_item()
    assert item.is_streaming(item.last_updated + 5)
    assert not item.is_streaming(item.last_updated + 6)


def test_item_duplicates():
    a = make_item(src="10.0.0.1")
    b = make_item(src="10.0.0.1")
    c = make_item(src="10.0.0.2")
    d = make_item(dport=4002)
    assert a.is_duplicate(b)
    assert not a.is_duplicate(c)
    assert a.is_dst_duplicate(c)
    assert not a.is_dst_duplicate(d)
    assert a.dst_key < d.dst_key


def test_warning_indicators_ts():
    item = make_item(payload_type=PayloadType.UDP_TS)
    item.iat_hwm_us = 50_000
    assert item.update_warning_indicators(45) == "I--T"
    item.iat_hwm_us = 1000
    item.has_hidden_duplicates = True
    item.not_multiple_of_seven_error = 3
    assert item.update_warning_indicators(45) == "-DPT"


def test_warning_indicators_other_types():
    item = make_item(payload_type=PayloadType.UNDEFINED)
    assert item.update_warning_indicators(45) == "????"
    item.payload_type = PayloadType.BYTE_STREAM
    assert item.update_warning_indicators(45) == "????"
    fresh = make_item(payload_type=PayloadType.A324_CTP)
    assert fresh.update_warning_indicators(45) == ""


def test_item_reset_stats():
    item = make_item()
    item.stats.record_packet(0x100, cc_error=True)
    item.iat_hwm_us = 9000
    item.bitrate_hwm_us_10ms = 7
    item.reset_stats()
    assert item.stats.packet_count == 0
    assert item.iat_hwm_us == -1
    assert item.iat_lwm_us == 5_000_000
    assert item.bitrate_hwm_us_10ms == 0
    assert item.doc_stream_log.lines[-1].endswith("Operator manually reset statistics")