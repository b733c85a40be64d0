import pytest

from sointuvm.wasm_macros import WasmMacros


def test_data_is_little_endian():
    wm = WasmMacros()
    assert wm.data_b(7) == ""
    wm.data_w(0x1234)
    wm.data_d(0x01020304)
    assert wm.data() == bytes([7, 0x34, 0x12, 0x04, 0x03, 0x02, 0x01])


def test_data_labels_point_to_offsets():
    wm = WasmMacros()
    wm.set_data_label("first")
    wm.data_w(1)
    wm.set_data_label("second")
    wm.data_d(2)
    assert wm.get_label("first") == 0
    assert wm.get_label("second") == len(wm.data()) - 4


def test_block_labels_follow_data():
    wm = WasmMacros()
    wm.data_d(5)
    wm.set_block_label("buf")
    wm.block(100)
    wm.set_block_label("after")
    assert wm.get_label("buf") == len(wm.data())
    assert wm.get_label("after") - wm.get_label("buf") == 100
    assert wm.data() == (5).to_bytes(4, "little")


def test_align_rounds_up_to_block_alignment():
    wm = WasmMacros()
    wm.data_b(1)
    wm.align()
    wm.set_block_label("aligned")
    assert wm.get_label("aligned") == 128
    wm.align()
    wm.set_block_label("again")
    assert wm.get_label("again") == 128


def test_memory_pages():
    wm = WasmMacros()
    assert wm.memory_pages() == 0
    wm.block(65536)
    assert wm.memory_pages() == 1
    wm.block(1)
    assert wm.memory_pages() == 2


def test_unknown_label_is_zero():
    assert WasmMacros().get_label("missing") == 0


def test_to_byte_truncates():
    wm = WasmMacros()
    assert wm.to_byte(256 + 3) == 3
    assert wm.to_byte(-1) == 255


def test_out_of_range_data_rejected():
    with pytest.raises(OverflowError):
        WasmMacros().data_w(1 << 16)