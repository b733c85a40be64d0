"""Helpers called from x86 assembly templates: registers, sections and stack bookkeeping."""

from __future__ import annotations

import struct
from typing import Any

from .featureset import AllFeatures

_PUSHAD_ORDER = ("eax", "ecx", "edx", "ebx", "esp", "ebp", "esi", "edi")
_FPU_STATE_SIZE = 108


class MacroError(ValueError):
    """Raised when a template calls a macro with invalid arguments."""


def _to_float32(value: float) -> float:
    return struct.unpack("<f", struct.pack("<f", value))[0]


def _float32_bits(value: float) -> int:
    return struct.unpack("<I", struct.pack("<f", value))[0]


def name_for_float(value: float) -> str:
    """Assembly label for a 32-bit float constant."""
    text = "%#g" % _to_float32(value)
    text = text.replace(".", "_", 1).replace("-", "m", 1).replace("+", "p", 1)
    return "FCONST_" + text


def name_for_int(value: int) -> str:
    """Assembly label for an integer constant."""
    return f"ICONST_{value}"


class X86Macros:
    """State and helpers for generating 386 / amd64 assembly from templates.

    ``stacklocs`` names the values currently on the machine stack, bottom
    first, so that templates can refer to them by name.
    """

    def __init__(
        self,
        os: str,
        amd64: bool,
        features: Any = None,
        disable_sections: bool = False,
    ) -> None:
        self.os = os
        self.amd64 = amd64
        self.features = features if features is not None else AllFeatures()
        self.disable_sections = disable_sections
        self.stacklocs: list[str] = []
        self._float_consts: dict[float, None] = {}
        self._int_consts: dict[int, None] = {}
        self._calls: set[str] = set()
        self._stackframes: dict[str, list[str]] = {}

    def constants(self) -> str:
        """Data definitions of all constants used so far."""
        lines = [
            f"{name_for_float(v):<23} dd 0x{_float32_bits(v):x}\n"
            for v in self._float_consts
        ]
        lines += [f"{name_for_int(v):<23} dd 0x{v:x}\n" for v in self._int_consts]
        return "".join(lines)

    # register names

    def ptrsize(self) -> int:
        return 8 if self.amd64 else 4

    def dptr(self) -> str:
        return "dq" if self.amd64 else "dd"

    def ptrword(self) -> str:
        return "qword" if self.amd64 else "dword"

    def _reg(self, name: str) -> str:
        return ("r" if self.amd64 else "e") + name

    def ax(self) -> str:
        return self._reg("ax")

    def bx(self) -> str:
        return self._reg("bx")

    def cx(self) -> str:
        return self._reg("cx")

    def dx(self) -> str:
        return self._reg("dx")

    def si(self) -> str:
        return self._reg("si")

    def di(self) -> str:
        return self._reg("di")

    def sp(self) -> str:
        return self._reg("sp")

    def bp(self) -> str:
        return self._reg("bp")

    def wrk(self) -> str:
        return self.bp()

    def val(self) -> str:
        return self.si()

    def com(self) -> str:
        return self.bx()

    def inp(self) -> str:
        return self.dx()

    # calls and stack frames

    def save_stack(self, scope: str) -> str:
        self._stackframes[scope] = list(self.stacklocs)
        return ""

    def call(self, funcname: str) -> str:
        self._calls.add(funcname)
        self._stackframes[funcname] = list(self.stacklocs)
        return "call    " + funcname

    def tail_call(self, funcname: str) -> str:
        self._calls.add(funcname)
        self._stackframes[funcname] = list(self.stacklocs)
        return "jmp     " + funcname

    def has_call(self, funcname: str) -> bool:
        return funcname in self._calls

    # sections

    def sect_text(self, name: str) -> str:
        if self.os == "windows":
            if self.disable_sections:
                return "section .code align=1"
            return f"section .{name} code align=1"
        if self.os == "darwin":
            return "section .text align=1"
        if self.disable_sections:
            return "section .text. progbits alloc exec nowrite align=1"
        return f"section .text.{name} progbits alloc exec nowrite align=1"

    def sect_data(self, name: str) -> str:
        if self.os in ("windows", "darwin"):
            if self.os == "windows" and not self.disable_sections:
                return f"section .{name} data align=1"
            return "section .data align=1"
        if not self.disable_sections:
            return f"section .data.{name} progbits alloc noexec write align=1"
        return "section .data progbits alloc exec nowrite align=1"

    def sect_bss(self, name: str) -> str:
        if self.os in ("windows", "darwin"):
            if self.os == "windows" and not self.disable_sections:
                return f"section .{name} bss align=256"
        elif not self.disable_sections:
            return f"section .bss.{name} nobits alloc noexec write align=256"
        return "section .bss align=256"

    def data(self, label: str) -> str:
        return f"{self.sect_data(label)}\n{label}:"

    def func(self, funcname: str, *args: str) -> str:
        """Start a function; the stack is taken from a saved scope, by default its own name."""
        if len(args) > 1:
            raise MacroError(
                f'Func macro "{funcname}" can take only one additional scope '
                f'parameter, "[{" ".join(args)}]" were given'
            )
        scope = args[0] if args else funcname
        self.stacklocs = self._stackframes.get(scope, []) + ["retaddr_" + funcname]
        return f"{self.sect_text(funcname)}\n{funcname}:"

    # stack manipulation

    def push(self, value: str, name: str) -> str:
        self.stacklocs.append(name)
        return f"push    {value}\t\t; Stack: {self.fmt_stack()} "

    def push_regs(self, *args: str) -> str:
        """Push registers given as (register, name) pairs."""
        if len(args) % 2:
            raise MacroError("push_regs takes (register, name) pairs")
        pairs = list(zip(args[::2], args[1::2]))
        if self.amd64:
            return "".join("\n" + self.push(reg, name) for reg, name in pairs)
        for name in _PUSHAD_ORDER:
            for reg, alias in pairs:
                if reg == name:
                    name = alias
            self.stacklocs.append(name)
        return f"\npushad  ; Stack: {self.fmt_stack()}"

    def pop_regs(self, *args: str) -> str:
        if self.amd64:
            return "".join("\n" + self.pop(reg) for reg in reversed(args))
        if len(self.stacklocs) < len(_PUSHAD_ORDER):
            raise MacroError("not enough values on the stack to popad")
        popped = self.stacklocs[-len(_PUSHAD_ORDER) :]
        described = ", ".join(
            reg if reg == name else f"{reg} = {name}"
            for reg, name in zip(_PUSHAD_ORDER, popped)
        )
        del self.stacklocs[-len(_PUSHAD_ORDER) :]
        return f"\npopad  ; Popped: {described}. Stack: {self.fmt_stack()}"

    def pop(self, register: str) -> str:
        if not self.stacklocs:
            raise MacroError("cannot pop from an empty stack")
        last = self.stacklocs.pop()
        return f"pop     {register}      ; {register} = {last}, Stack: {self.fmt_stack()} "

    def _fpu_state_size(self) -> int:
        step = self.ptrsize()
        return -(-_FPU_STATE_SIZE // step) * step

    def save_fpu_state(self) -> str:
        size = self._fpu_state_size()
        self.stacklocs.extend(f"F{i}" for i in range(0, size, self.ptrsize()))
        return f"sub     {self.sp()}, {size}\nfsave   [{self.sp()}]"

    def load_fpu_state(self) -> str:
        size = self._fpu_state_size()
        count = size // self.ptrsize()
        if len(self.stacklocs) < count:
            raise MacroError("not enough values on the stack to restore FPU state")
        del self.stacklocs[len(self.stacklocs) - count :]
        return f"frstor   [{self.sp()}]\nadd     {self.sp()}, {size}"

    def stack(self, name: str) -> str:
        """Address of a named stack value relative to the stack pointer."""
        try:
            index = self.stacklocs.index(name)
        except ValueError:
            raise MacroError(f"unknown symbol {name}") from None
        pos = (len(self.stacklocs) - index - 1) * self.ptrsize()
        return f"{self.sp()} + {pos}" if pos else self.sp()

    def fmt_stack(self) -> str:
        return ", ".join(reversed(self.stacklocs))

    # exports and inputs

    def export(self, name: str, num_params: int) -> str:
        if not self.amd64 and self.os == "windows":
            mangled = f"_{name}@{num_params * 4}"
            return f"global {mangled}\n{mangled}:"
        if self.os == "darwin":
            return f"global _{name}\n_{name}:"
        return f"global {name}\n{name}:"

    def export_func(self, name: str, *args: str) -> str:
        """Export a function; parameters not passed in registers go on the stack."""
        if self.amd64:
            num_registers = 4 if self.os == "windows" else 6
        else:
            num_registers = 0  # stdcall: everything on the stack
        stack_params = list(args[num_registers:])
        self.stacklocs = list(reversed(stack_params)) + ["retaddr_" + name]
        return f"{self.sect_text(name)}\n{self.export(name, len(stack_params))}"

    def input(self, unit: str, port: str) -> str:
        number = self.features.input_number(unit, port)
        return f"{self.inp()} + {number * 4}" if number else self.inp()

    def modulation(self, unit: str, port: str) -> str:
        number = self.features.input_number(unit, port)
        return f"{self.wrk()} + {number * 4 + 32}"

    def prepare(self, value: str, *args: str) -> str:
        if not self.amd64:
            return ""
        if len(args) > 1:
            raise MacroError("macro Prepare cannot accept more than one register parameter")
        if args:
            return f"\nlea     r9, [rel {value}]\nlea\t\tr9, [r9 + {args[0]}]"
        return f"\nlea     r9, [rel {value}]"

    def use(self, value: str, *args: str) -> str:
        if self.amd64:
            return "r9"
        if len(args) > 1:
            raise MacroError("macro Use cannot accept more than one register parameter")
        if args:
            return f"{value} + {args[0]}"
        return value

    # constants; defined last so the names do not shadow builtins in the class body

    def float(self, value):
        """Register a float constant and return its label."""
        self._float_consts.setdefault(_to_float32(value), None)
        return name_for_float(value)

    def int(self, value):
        """Register an integer constant and return its label."""
        self._int_consts.setdefault(value, None)
        return name_for_int(value)