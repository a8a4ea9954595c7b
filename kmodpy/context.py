"""The library context: configuration, indexes and the pool of known modules."""

from __future__ import annotations

import errno
import os
import re
import sys
from collections.abc import Callable, Mapping
from fnmatch import fnmatchcase
from typing import IO, Any, Protocol

from kmodpy.config import Config, IndexType, Resources
from kmodpy.hash import Hash
from kmodpy.module import KmodError, Module
from kmodpy.util import (
    PATH_MAX,
    alias_normalize,
    modname_normalize,
    path_make_absolute_cwd,
    path_to_modname,
    stat_mstamp,
)

LOG_ERR = 3
LOG_INFO = 6
LOG_DEBUG = 7

KMOD_HASH_SIZE = 256
DIRNAME_DEFAULT_PREFIX = "/lib/modules"

INDEX_FILES: dict[IndexType, tuple[str, str]] = {
    IndexType.MODULES_DEP: ("modules.dep", ""),
    IndexType.MODULES_ALIAS: ("modules.alias", "alias "),
    IndexType.MODULES_SYMBOL: ("modules.symbols", "alias "),
    IndexType.MODULES_BUILTIN: ("modules.builtin", ""),
}

_NUMBER = re.compile(r"[ \t\n\v\f\r]*([+-]?[0-9]+)")
_C_SPACE = " \t\n\v\f\r"


class _Index(Protocol):
    def search(self, key: str) -> str | None: ...

    def searchwild(self, key: str) -> list[str]: ...

    def dump(self, out: IO[str], prefix: str) -> None: ...


def parse_log_priority(priority: str) -> int:
    """Turn a KMOD_LOG value (a number, "err", "info" or "debug") into a priority."""
    match = _NUMBER.match(priority)
    if match:
        value, end = int(match.group(1)), match.end()
    else:
        value, end = 0, 0
    if end == len(priority) or priority[end] in _C_SPACE:
        return value
    if priority.startswith("err"):
        return LOG_ERR
    if priority.startswith("info"):
        return LOG_INFO
    if priority.startswith("debug"):
        return LOG_DEBUG
    return 0


def _default_log(priority: int, message: str) -> None:
    sys.stderr.write(f"libkmod: {message}\n")


def _kernel_dirname(dirname: str | None) -> str:
    if dirname is not None:
        return path_make_absolute_cwd(dirname)
    return f"{DIRNAME_DEFAULT_PREFIX}/{os.uname().release}"


def _is_cache_invalid(path: str, stamp: int) -> bool:
    try:
        st = os.stat(path)
    except OSError:
        return True
    return stamp != stat_mstamp(st)


class Context:
    """Holds the modules directory, the configuration and the known modules.

    ``indexes`` maps an IndexType to an object offering ``search``,
    ``searchwild`` and ``dump``; an index absent from it counts as one whose
    file cannot be opened.
    """

    def __init__(self, dirname: str | None = None, config: Config | None = None,
                 indexes: Mapping[IndexType, Any] | None = None) -> None:
        self.log_fn: Callable[[int, str], None] | None = _default_log
        self.log_priority = LOG_ERR
        self.userdata: Any = None
        self.dirname = _kernel_dirname(dirname)
        env = os.environ.get("KMOD_LOG")
        if env is not None:
            self.log_priority = parse_log_priority(env)
        self.config: Config | None = config if config is not None else Config()
        self.indexes: dict[IndexType, _Index] = dict(indexes or {})
        self._pool = Hash(KMOD_HASH_SIZE)
        self.log(LOG_INFO, f"ctx {id(self):#x} created")

    # logging -----------------------------------------------------------------

    def log(self, priority: int, message: str) -> None:
        """Pass ``message`` to the log function if ``priority`` is enabled."""
        if self.log_fn is not None and priority <= self.log_priority:
            self.log_fn(priority, message)

    # module pool --------------------------------------------------------------

    def pool_get(self, key: str) -> Module | None:
        """Return the module stored under ``key``, or None."""
        mod = self._pool.find(key)
        self.log(LOG_DEBUG, f"get module name='{key}' found={mod!r}")
        return mod

    def _pool_add(self, mod: Module) -> None:
        self.log(LOG_DEBUG, f"add {mod!r} key='{mod.hashkey}'")
        self._pool.add(mod.hashkey, mod)

    def pool_remove(self, key: str) -> None:
        """Forget the module stored under ``key``; KeyError if none is."""
        self.log(LOG_DEBUG, f"del key='{key}'")
        self._pool.delete(key)

    def modules(self) -> list[Module]:
        """Return every module the context knows of."""
        return [mod for _, mod in self._pool.items()]

    def module_from_name(self, name: str) -> Module:
        """Return the module called ``name`` (normalized), creating it if needed."""
        norm = modname_normalize(name)
        mod = self.pool_get(norm)
        if mod is None:
            mod = Module(self, norm)
            self._pool_add(mod)
        return mod

    def module_from_alias(self, alias: str, name: str) -> Module:
        """Return module ``name`` as reached through ``alias``."""
        if len(name) + len(alias) + 2 > PATH_MAX:
            raise KmodError(errno.ENAMETOOLONG)
        key = f"{name}\\{alias}"
        mod = self.pool_get(key)
        if mod is None:
            mod = Module(self, name, alias, key)
            self._pool_add(mod)
        return mod

    def module_from_path(self, path: str) -> Module:
        """Return the module whose file is at ``path``, which must exist."""
        abspath = path_make_absolute_cwd(path)
        try:
            os.stat(abspath)
        except OSError as exc:
            self.log(LOG_DEBUG, f"stat {path}: {exc.strerror}")
            raise KmodError(exc.errno or errno.ENOENT) from exc
        try:
            name = path_to_modname(path)
        except ValueError as exc:
            self.log(LOG_DEBUG, f"could not get modname from path {path}")
            raise KmodError(errno.ENOENT) from exc

        mod = self.pool_get(name)
        if mod is not None:
            if mod.known_path is None:
                mod.known_path = abspath
            elif mod.known_path != abspath:
                self.log(LOG_ERR, f"kmod_module '{name}' already exists with different path: "
                                  f"new-path='{abspath}' old-path='{mod.known_path}'")
                raise KmodError(errno.EEXIST)
            return mod

        mod = Module(self, name)
        self._pool_add(mod)
        mod.known_path = abspath
        return mod

    def set_modules_visited(self, visited: bool) -> None:
        """Set the visited mark on every known module."""
        for mod in self.modules():
            mod.visited = visited

    def set_modules_required(self, required: bool) -> None:
        """Set the required mark on every known module."""
        for mod in self.modules():
            mod.required = required

    # lookups ------------------------------------------------------------------

    def lookup(self, given_alias: str) -> list[Module]:
        """Find the modules an alias or module name stands for.

        Looks in the configured aliases, modules.dep, modules.symbols, the
        install and remove commands, modules.alias and modules.builtin, and
        stops at the first that gives a result.
        """
        try:
            alias = alias_normalize(given_alias)
        except ValueError as exc:
            self.log(LOG_DEBUG, f"invalid alias: {given_alias}")
            raise KmodError(errno.EINVAL) from exc
        self.log(LOG_DEBUG, f"input alias={given_alias}, normalized={alias}")

        for step in (self.lookup_alias_from_config,
                     self.lookup_alias_from_moddep_file,
                     self.lookup_alias_from_symbols_file,
                     self.lookup_alias_from_commands,
                     self.lookup_alias_from_aliases_file,
                     self.lookup_alias_from_builtin_file):
            found = step(alias)
            if found:
                return found
        return []

    def lookup_alias_from_config(self, name: str) -> list[Module]:
        """Return modules for every configured alias pattern matching ``name``."""
        return [
            self.module_from_alias(entry.name, entry.modname)
            for entry in self.config.aliases
            if fnmatchcase(name, entry.name)
        ]

    def search_moddep(self, name: str) -> str | None:
        """Return the modules.dep line for module ``name``, or None."""
        index = self.indexes.get(IndexType.MODULES_DEP)
        if index is None:
            self.log(LOG_DEBUG, f"could not open moddep index for {name}")
            return None
        return index.search(name)

    def lookup_alias_from_moddep_file(self, name: str) -> list[Module]:
        """Return the module called ``name`` if modules.dep lists it."""
        if ":" in name:
            return []
        line = self.search_moddep(name)
        if line is None:
            return []
        mod = self.module_from_name(name)
        try:
            mod.parse_depline(line)
        except KmodError as exc:
            self.log(LOG_ERR, f"could not parse dependencies of {name}: {exc}")
        return [mod]

    def _lookup_alias_from_index(self, index_type: IndexType, name: str) -> list[Module]:
        index = self.indexes.get(index_type)
        if index is None:
            raise KmodError(errno.ENOSYS, f"{INDEX_FILES[index_type][0]} index not available")
        return [self.module_from_alias(name, realname) for realname in index.searchwild(name)]

    def lookup_alias_from_symbols_file(self, name: str) -> list[Module]:
        """Return the modules exporting a ``symbol:`` alias."""
        if not name.startswith("symbol:"):
            return []
        return self._lookup_alias_from_index(IndexType.MODULES_SYMBOL, name)

    def lookup_alias_from_aliases_file(self, name: str) -> list[Module]:
        """Return the modules modules.alias maps ``name`` to."""
        return self._lookup_alias_from_index(IndexType.MODULES_ALIAS, name)

    def lookup_alias_from_commands(self, name: str) -> list[Module]:
        """Return the module named by the first install, else remove, command for ``name``."""
        for entry in self.config.install_commands:
            if entry.modname == name:
                mod = self.module_from_name(entry.modname)
                mod.set_install_commands(entry.command)
                return [mod]
        for entry in self.config.remove_commands:
            if entry.modname == name:
                mod = self.module_from_name(entry.modname)
                mod.set_remove_commands(entry.command)
                return [mod]
        return []

    def _lookup_builtin(self, name: str) -> str | None:
        index = self.indexes.get(IndexType.MODULES_BUILTIN)
        if index is None:
            self.log(LOG_DEBUG, f"could not open builtin index for {name}")
            return None
        return index.search(name)

    def lookup_alias_from_builtin_file(self, name: str) -> list[Module]:
        """Return module ``name``, marked builtin, if modules.builtin lists it."""
        if self._lookup_builtin(name) is None:
            return []
        mod = self.module_from_name(name)
        mod.set_builtin(True)
        return [mod]

    def lookup_alias_is_builtin(self, name: str) -> bool:
        """Tell whether modules.builtin lists ``name``."""
        return self._lookup_builtin(name) is not None

    # resources ----------------------------------------------------------------

    def validate_resources(self) -> Resources:
        """Tell whether configuration or indexes changed on disk."""
        if self.config is None:
            return Resources.MUST_RECREATE
        for cf in self.config.paths:
            if _is_cache_invalid(cf.path, cf.stamp):
                return Resources.MUST_RECREATE
        for index in self.indexes.values():
            path = getattr(index, "path", None)
            stamp = getattr(index, "stamp", None)
            if path is None or stamp is None:
                continue
            if _is_cache_invalid(path, stamp):
                return Resources.MUST_RELOAD
        return Resources.OK

    def dump_index(self, index_type: IndexType | int, out: IO[str]) -> None:
        """Write the contents of an index to ``out``."""
        try:
            kind = IndexType(index_type)
        except ValueError as exc:
            raise KmodError(errno.ENOENT) from exc
        index = self.indexes.get(kind)
        if index is None:
            raise KmodError(errno.ENOSYS, f"{INDEX_FILES[kind][0]} index not available")
        index.dump(out, INDEX_FILES[kind][1])