"""Helpers called from WebAssembly text templates to lay out memory."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class WasmMacros:
    """Tracks initialized data and the memory blocks allocated after it.

    All initialized data must be written with the data_* methods before any
    call to block, which allocates uninitialized memory.
    """

    block_align: int = 128
    labels: dict[str, int] = field(default_factory=dict)
    _data: bytearray = field(default_factory=bytearray)
    _block_start: int = 0

    def set_data_label(self, label: str) -> str:
        self.labels[label] = len(self._data)
        return ""

    def set_block_label(self, label: str) -> str:
        self.labels[label] = self._block_start
        return ""

    def align(self) -> str:
        align = self.block_align
        self._block_start += align - 1 - ((self._block_start + align - 1) % align)
        return ""

    def memory_pages(self) -> int:
        """Number of 64 KiB pages needed for everything allocated so far."""
        return (self._block_start + 65535) // 65536

    def get_label(self, label: str) -> int:
        return self.labels.get(label, 0)

    def _write(self, value: int, size: int) -> str:
        self._data.extend(value.to_bytes(size, "little"))
        self._block_start += size
        return ""

    def data_b(self, value: int) -> str:
        return self._write(value, 1)

    def data_w(self, value: int) -> str:
        return self._write(value, 2)

    def data_d(self, value: int) -> str:
        return self._write(value, 4)

    def block(self, value: int) -> str:
        self._block_start += value
        return ""

    def to_byte(self, value: int) -> int:
        return value & 0xFF

    def data(self) -> bytes:
        """The initialized data written so far."""
        return bytes(self._data)