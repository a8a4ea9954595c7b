"""Flags, states and configuration records shared by the library."""

from __future__ import annotations

import enum
import os
from dataclasses import dataclass, field
from fnmatch import fnmatchcase


class RemoveFlags(enum.IntFlag):
    """Flags for removing a module."""

    FORCE = os.O_TRUNC
    NOWAIT = os.O_NONBLOCK


class InsertFlags(enum.IntFlag):
    """Flags for inserting a module."""

    FORCE_VERMAGIC = 0x1
    FORCE_MODVERSION = 0x2


class ProbeFlags(enum.IntFlag):
    """Flags for probing a module with its dependencies."""

    FORCE_VERMAGIC = 0x00001
    FORCE_MODVERSION = 0x00002
    IGNORE_COMMAND = 0x00004
    IGNORE_LOADED = 0x00008
    DRY_RUN = 0x00010
    FAIL_ON_LOADED = 0x00020
    APPLY_BLACKLIST_ALL = 0x10000
    APPLY_BLACKLIST = 0x20000
    APPLY_BLACKLIST_ALIAS_ONLY = 0x40000


class FilterFlags(enum.IntFlag):
    """Filters for a list of modules."""

    BLACKLIST = 0x00001
    BUILTIN = 0x00002


class InitState(enum.IntEnum):
    """A module's state in the kernel."""

    BUILTIN = 0
    LIVE = 1
    COMING = 2
    GOING = 3

    def label(self) -> str:
        """Return the state's name as the kernel spells it."""
        return self.name.lower()


class SymbolBind(enum.IntEnum):
    """Binding of a symbol a module depends on."""

    NONE = 0
    LOCAL = ord("L")
    GLOBAL = ord("G")
    WEAK = ord("W")
    UNDEF = ord("U")


class IndexType(enum.IntEnum):
    """The binary indexes kept in a modules directory."""

    MODULES_DEP = 0
    MODULES_ALIAS = 1
    MODULES_SYMBOL = 2
    MODULES_BUILTIN = 3


class Resources(enum.IntEnum):
    """Whether loaded resources are still valid."""

    OK = 0
    MUST_RELOAD = 1
    MUST_RECREATE = 2


@dataclass(frozen=True)
class Alias:
    """An ``alias`` line: a pattern and the module it names."""

    name: str
    modname: str


@dataclass(frozen=True)
class Option:
    """An ``options`` line for one module."""

    modname: str
    options: str


@dataclass(frozen=True)
class Command:
    """An ``install`` or ``remove`` line: module pattern and shell command."""

    modname: str
    command: str


@dataclass(frozen=True)
class SoftDep:
    """A ``softdep`` line: modules to load before and after a module."""

    name: str
    pre: tuple[str, ...] = ()
    post: tuple[str, ...] = ()


@dataclass
class ConfigPath:
    """A configuration file or directory and its modification stamp."""

    path: str
    stamp: int


@dataclass
class Config:
    """The module configuration in effect for a context."""

    aliases: list[Alias] = field(default_factory=list)
    blacklists: list[str] = field(default_factory=list)
    options: list[Option] = field(default_factory=list)
    install_commands: list[Command] = field(default_factory=list)
    remove_commands: list[Command] = field(default_factory=list)
    softdeps: list[SoftDep] = field(default_factory=list)
    paths: list[ConfigPath] = field(default_factory=list)

    def blacklisted(self, name: str) -> bool:
        """Tell whether module ``name`` is blacklisted."""
        return name in self.blacklists

    def options_for(self, name: str, alias: str | None = None) -> str | None:
        """Return the space-joined options for ``name`` or ``alias``, or None."""
        parts = [
            opt.options
            for opt in self.options
            if (opt.modname == name or (alias is not None and opt.modname == alias))
            and opt.options
        ]
        return " ".join(parts) if parts else None

    def first_command(self, commands: list[Command], name: str) -> str | None:
        """Return the first command whose pattern matches ``name``."""
        for cmd in commands:
            if fnmatchcase(name, cmd.modname):
                return cmd.command
        return None

    def first_softdep(self, name: str) -> SoftDep | None:
        """Return the first softdep whose pattern matches ``name``."""
        for dep in self.softdeps:
            if fnmatchcase(name, dep.name):
                return dep
        return None