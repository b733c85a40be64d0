"""Patch compiler, software synthesizer, pattern packing and template helpers for a modular music VM."""

__version__ = "0.1.0"