"""Modules currently loaded in the running kernel, as reported by sysfs and procfs."""

from __future__ import annotations

import errno
import os
import re
import stat
from dataclasses import dataclass
from typing import Any

from kmodpy.config import InitState
from kmodpy.module import KmodError, Module
from kmodpy.util import read_str_long, read_str_safe, read_str_ulong

LOG_ERR = 3
LOG_DEBUG = 7

SYSFS_MODULES = "/sys/module"
PROC_MODULES = "/proc/modules"

_STRICT_LONG = re.compile(r"[ \t\n\v\f\r]*[+-]?[0-9]+")


@dataclass(frozen=True)
class Section:
    """A section of a loaded module and the address it was loaded at."""

    name: str
    address: int


def _tokens(line: str) -> list[str]:
    return [tok for tok in re.split(r"[ \t]+", line) if tok]


def _first_token(line: str) -> str | None:
    tokens = _tokens(line.rstrip("\n"))
    return tokens[0] if tokens else None


def modules_from_loaded(ctx: Any, proc_modules: str = PROC_MODULES) -> list[Module]:
    """Return a module for every line of the kernel's list of loaded modules."""
    try:
        fp = open(proc_modules, encoding="utf-8", errors="surrogateescape")
    except OSError as exc:
        ctx.log(LOG_ERR, f"could not open {proc_modules}: {exc.strerror}")
        raise KmodError(exc.errno or errno.ENOENT) from exc

    modules: list[Module] = []
    with fp:
        for line in fp:
            name = _first_token(line)
            if name is None:
                ctx.log(LOG_ERR, "could not get module from an empty line")
                continue
            modules.append(ctx.module_from_name(name))
    return modules


def initstate_str(state: int) -> str | None:
    """Return the kernel's name for an init state, or None if it is unknown."""
    try:
        return InitState(state).label()
    except ValueError:
        return None


def _open_read(path: str) -> int:
    return os.open(path, os.O_RDONLY | getattr(os, "O_CLOEXEC", 0))


def get_initstate(mod: Module, sysfs: str = SYSFS_MODULES) -> InitState:
    """Return the state of ``mod`` in the kernel.

    Raises KmodError when the module is not in the kernel or the state
    cannot be read.
    """
    if mod.is_builtin():
        return InitState.BUILTIN

    moddir = f"{sysfs}/{mod.name}"
    path = f"{moddir}/initstate"
    try:
        fd = _open_read(path)
    except OSError as exc:
        mod.ctx.log(LOG_DEBUG, f"could not open '{path}': {exc.strerror}")
        try:
            if stat.S_ISDIR(os.stat(moddir).st_mode):
                return InitState.COMING
        except OSError:
            pass
        raise KmodError(exc.errno or errno.ENOENT) from exc

    try:
        text = read_str_safe(fd, 32)
    except OSError as exc:
        mod.ctx.log(LOG_ERR, f"could not read from '{path}': {exc.strerror}")
        raise KmodError(exc.errno or errno.EIO) from exc
    finally:
        os.close(fd)

    states = {
        "live\n": InitState.LIVE,
        "coming\n": InitState.COMING,
        "going\n": InitState.GOING,
    }
    state = states.get(text)
    if state is None:
        mod.ctx.log(LOG_ERR, f"unknown {path}: '{text}'")
        raise KmodError(errno.EINVAL)
    return state


def is_in_kernel(mod: Module, sysfs: str = SYSFS_MODULES) -> bool:
    """Tell whether ``mod`` is live in the kernel or built into it."""
    try:
        state = get_initstate(mod, sysfs)
    except KmodError:
        return False
    return state in (InitState.LIVE, InitState.BUILTIN)


def get_refcnt(mod: Module, sysfs: str = SYSFS_MODULES) -> int:
    """Return the kernel's reference count for ``mod``."""
    path = f"{sysfs}/{mod.name}/refcnt"
    try:
        fd = _open_read(path)
    except OSError as exc:
        mod.ctx.log(LOG_DEBUG, f"could not open '{path}': {exc.strerror}")
        raise KmodError(exc.errno or errno.ENOENT) from exc
    try:
        return read_str_long(fd, 10)
    except ValueError as exc:
        mod.ctx.log(LOG_ERR, f"could not read integer from '{path}'")
        raise KmodError(errno.EINVAL) from exc
    except OSError as exc:
        mod.ctx.log(LOG_ERR, f"could not read integer from '{path}': '{exc.strerror}'")
        raise KmodError(exc.errno or errno.EIO) from exc
    finally:
        os.close(fd)


def get_holders(mod: Module, sysfs: str = SYSFS_MODULES) -> list[Module]:
    """Return the modules holding ``mod``, in no particular order."""
    dname = f"{sysfs}/{mod.name}/holders"
    try:
        entries = os.listdir(dname)
    except OSError as exc:
        mod.ctx.log(LOG_ERR, f"could not open '{dname}': {exc.strerror}")
        raise KmodError(exc.errno or errno.ENOENT) from exc
    return [mod.ctx.module_from_name(entry) for entry in entries]


def get_sections(mod: Module, sysfs: str = SYSFS_MODULES) -> list[Section]:
    """Return the sections of ``mod`` with their load addresses."""
    dname = f"{sysfs}/{mod.name}/sections"
    try:
        entries = os.listdir(dname)
    except OSError as exc:
        mod.ctx.log(LOG_ERR, f"could not open '{dname}': {exc.strerror}")
        raise KmodError(exc.errno or errno.ENOENT) from exc

    sections: list[Section] = []
    for entry in entries:
        path = f"{dname}/{entry}"
        try:
            fd = _open_read(path)
        except OSError as exc:
            mod.ctx.log(LOG_ERR, f"could not open '{path}': {exc.strerror}")
            raise KmodError(exc.errno or errno.ENOENT) from exc
        try:
            address = read_str_ulong(fd, 16)
        except ValueError as exc:
            mod.ctx.log(LOG_ERR, f"could not read long from '{path}'")
            raise KmodError(errno.EINVAL) from exc
        except OSError as exc:
            mod.ctx.log(LOG_ERR, f"could not read long from '{path}': {exc.strerror}")
            raise KmodError(exc.errno or errno.EIO) from exc
        finally:
            os.close(fd)
        sections.append(Section(entry, address))
    return sections


def _size_from_proc(mod: Module, proc_modules: str) -> int:
    try:
        fp = open(proc_modules, encoding="utf-8", errors="surrogateescape")
    except OSError as exc:
        mod.ctx.log(LOG_ERR, f"could not open {proc_modules}: {exc.strerror}")
        raise KmodError(exc.errno or errno.ENOENT) from exc

    with fp:
        for lineno, line in enumerate(fp, start=1):
            tokens = _tokens(line)
            if not tokens or tokens[0] != mod.name:
                continue
            if len(tokens) < 2 or not _STRICT_LONG.fullmatch(tokens[1]):
                mod.ctx.log(LOG_ERR, f"invalid line format at {proc_modules}:{lineno}")
                raise KmodError(errno.ENOENT)
            return int(tokens[1])
    raise KmodError(errno.ENOENT)


def get_size(mod: Module, sysfs: str = SYSFS_MODULES,
             proc_modules: str = PROC_MODULES) -> int:
    """Return the size of ``mod`` in the kernel.

    Reads the coresize attribute and falls back on the list of loaded
    modules when it is missing.
    """
    moddir = f"{sysfs}/{mod.name}"
    try:
        os.stat(moddir)
    except OSError as exc:
        raise KmodError(exc.errno or errno.ENOENT) from exc

    try:
        fd = _open_read(f"{moddir}/coresize")
    except OSError:
        return _size_from_proc(mod, proc_modules)

    try:
        return read_str_long(fd, 10)
    except (ValueError, OSError) as exc:
        mod.ctx.log(LOG_ERR, f"failed to read coresize from {moddir}")
        raise KmodError(errno.ENOENT) from exc
    finally:
        os.close(fd)