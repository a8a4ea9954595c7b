"""Resolve, inspect and probe Linux kernel modules in pure Python."""

__version__ = "0.1.0"

__all__ = [
    "array",
    "config",
    "context",
    "hash",
    "loaded",
    "module",
    "probe",
    "signature",
    "strbuf",
    "util",
]