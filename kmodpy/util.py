"""String, path and file helpers shared across the package."""

from __future__ import annotations

import errno
import os
import stat
from collections.abc import Iterator
from typing import IO

PATH_MAX = 4096

USEC_PER_SEC = 1_000_000
NSEC_PER_USEC = 1_000

KMOD_EXTENSION_UNCOMPRESSED = ".ko"
KMOD_EXTENSIONS = (KMOD_EXTENSION_UNCOMPRESSED, ".ko.gz", ".ko.xz")

MODULE_INIT_IGNORE_MODVERSIONS = 1
MODULE_INIT_IGNORE_VERMAGIC = 2

_U64_MASK = (1 << 64) - 1
_LONG_MAX = (1 << 63) - 1
_LONG_MIN = -(1 << 63)
_C_SPACE = " \t\n\v\f\r"


# string handling -------------------------------------------------------------

def alias_normalize(alias: str) -> str:
    """Replace dashes with underscores, leaving ``[...]`` ranges untouched.

    Raises ValueError on an unbalanced bracket.
    """
    out: list[str] = []
    limit = min(len(alias), PATH_MAX - 1)
    i = 0
    while i < limit:
        c = alias[i]
        if c == "\0":
            break
        if c == "-":
            out.append("_")
        elif c == "]":
            raise ValueError(f"invalid alias: {alias!r}")
        elif c == "[":
            close = alias.find("]", i)
            if close < 0:
                raise ValueError(f"invalid alias: {alias!r}")
            out.append(alias[i:close + 1])
            i = close
        else:
            out.append(c)
        i += 1
    return "".join(out)


def underscores(s: str) -> str:
    """Return ``s`` with dashes replaced by underscores outside ``[...]``.

    Raises ValueError on an unbalanced bracket or when ``s`` is None.
    """
    if s is None:
        raise ValueError("no string given")
    out: list[str] = []
    i = 0
    while i < len(s):
        c = s[i]
        if c == "-":
            out.append("_")
        elif c == "]":
            raise ValueError(f"invalid pattern: {s!r}")
        elif c == "[":
            close = s.find("]", i)
            if close < 0:
                raise ValueError(f"invalid pattern: {s!r}")
            out.append(s[i:close + 1])
            i = close
        else:
            out.append(c)
        i += 1
    return "".join(out)


def modname_normalize(modname: str) -> str:
    """Return the module name up to the first dot, dashes as underscores."""
    out: list[str] = []
    for c in modname[:PATH_MAX - 1]:
        if c in ("\0", "."):
            break
        out.append("_" if c == "-" else c)
    return "".join(out)


def path_to_modname(path: str) -> str:
    """Return the normalized module name of a module file path.

    Raises ValueError when the path has no base name.
    """
    base = path.rpartition("/")[2]
    if not base:
        raise ValueError(f"no module name in path {path!r}")
    return modname_normalize(base)


def path_ends_with_kmod_ext(path: str) -> bool:
    """Tell whether ``path`` ends with a kernel module extension."""
    return any(len(path) > len(ext) and path.endswith(ext) for ext in KMOD_EXTENSIONS)


# read-like and write-like helpers ---------------------------------------------

def read_str_safe(fd: int, buflen: int) -> str:
    """Read at most ``buflen - 1`` bytes from ``fd`` as a string."""
    todo = buflen - 1
    chunks: list[bytes] = []
    while todo > 0:
        try:
            data = os.read(fd, todo)
        except BlockingIOError:
            continue
        if not data:
            break
        chunks.append(data)
        todo -= len(data)
    raw = b"".join(chunks).split(b"\0", 1)[0]
    return raw.decode("utf-8", errors="surrogateescape")


def write_str_safe(fd: int, data: str | bytes) -> int:
    """Write all of ``data`` to ``fd``; return the number of bytes written."""
    if isinstance(data, str):
        data = data.encode("utf-8", errors="surrogateescape")
    view = memoryview(data)
    done = 0
    while done < len(view):
        try:
            written = os.write(fd, view[done:])
        except BlockingIOError:
            continue
        if written == 0:
            break
        done += written
    return done


def _strtol(text: str, base: int) -> tuple[int, int]:
    """Parse like strtol(3): return the value and the index where parsing stopped."""
    i = 0
    n = len(text)
    while i < n and text[i] in _C_SPACE:
        i += 1
    negative = False
    if i < n and text[i] in "+-":
        negative = text[i] == "-"
        i += 1

    def is_digit(ch: str, b: int) -> bool:
        try:
            return int(ch, 36) < b
        except ValueError:
            return False

    if base in (0, 16) and text[i:i + 2].lower() == "0x" and i + 2 < n and is_digit(text[i + 2], 16):
        i += 2
        base = 16
    elif base == 0:
        base = 8 if text[i:i + 1] == "0" else 10

    start = i
    value = 0
    while i < n and is_digit(text[i], base):
        value = value * base + int(text[i], 36)
        i += 1
    if i == start:
        return 0, 0
    return (-value if negative else value), i


def _parse_number(text: str, base: int) -> int:
    value, end = _strtol(text, base)
    if end == 0 or end >= len(text) or text[end] not in _C_SPACE:
        raise ValueError(f"invalid number: {text!r}")
    return value


def read_str_long(fd: int, base: int = 10) -> int:
    """Read a whitespace-terminated signed number from ``fd``."""
    value = _parse_number(read_str_safe(fd, 32), base)
    return max(_LONG_MIN, min(_LONG_MAX, value))


def read_str_ulong(fd: int, base: int = 10) -> int:
    """Read a whitespace-terminated unsigned number from ``fd``."""
    value = _parse_number(read_str_safe(fd, 32), base)
    if value > _U64_MASK:
        return _U64_MASK
    if value < 0:
        if -value > _U64_MASK:
            return _U64_MASK
        return value & _U64_MASK
    return value


def read_wrapped_lines(fp: IO[str]) -> Iterator[tuple[int, str]]:
    """Yield logical lines joined across backslash-newline escapes.

    Each item is ``(line_number, text)`` where ``line_number`` counts the
    physical lines consumed so far, including this logical line.
    """
    linenum = 0
    while True:
        buf: list[str] = []
        physical = 0
        while True:
            ch = fp.read(1)
            if ch == "":
                if not buf:
                    return
                physical += 1
                break
            if ch == "\n":
                physical += 1
                break
            if ch == "\\":
                ch = fp.read(1)
                if ch == "\n":
                    physical += 1
                    continue
                if ch == "":
                    continue
            buf.append(ch)
        linenum += physical
        yield linenum, "".join(buf)


# path handling ---------------------------------------------------------------

def path_is_absolute(p: str) -> bool:
    """Tell whether ``p`` starts at the root."""
    if p is None:
        raise ValueError("no path given")
    return p.startswith("/")


def path_make_absolute_cwd(p: str) -> str:
    """Return ``p`` made absolute against the current working directory."""
    if path_is_absolute(p):
        return p
    return f"{os.getcwd()}/{p}"


def mkdir_p(path: str, mode: int = 0o755) -> None:
    """Create ``path`` and every missing parent directory.

    Raises NotADirectoryError if an existing component is not a directory.
    """
    pending: list[str] = []
    current = path
    while current:
        try:
            st = os.stat(current)
        except OSError:
            st = None
        if st is not None:
            if stat.S_ISDIR(st.st_mode):
                break
            raise NotADirectoryError(errno.ENOTDIR, os.strerror(errno.ENOTDIR), current)
        pending.append(current)
        current = current.rpartition("/")[0].rstrip("/")
    for directory in reversed(pending):
        try:
            os.mkdir(directory, mode)
        except FileExistsError:
            pass


def mkdir_parents(path: str, mode: int = 0o755) -> None:
    """Create the parent directories of ``path``, not ``path`` itself."""
    end = path.rfind("/")
    if end < 0:
        return
    mkdir_p(path[:end], mode)


def ts_usec(sec: int, nsec: int) -> int:
    """Convert seconds and nanoseconds to microseconds."""
    return sec * USEC_PER_SEC + nsec // NSEC_PER_USEC


def stat_mstamp(st: os.stat_result) -> int:
    """Return the modification time of a stat result in microseconds."""
    sec, nsec = divmod(st.st_mtime_ns, 1_000_000_000)
    return ts_usec(sec, nsec)


# misc ------------------------------------------------------------------------

def add_u64_overflow(a: int, b: int) -> tuple[int, bool]:
    """Add two unsigned 64-bit values; return the wrapped sum and overflow flag."""
    total = a + b
    return total & _U64_MASK, total > _U64_MASK


def align_power2(u: int) -> int:
    """Round ``u`` up to the next power of two."""
    if u < 1:
        raise ValueError("value must be positive")
    return 1 << (u - 1).bit_length()