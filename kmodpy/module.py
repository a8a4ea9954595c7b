"""Kernel modules as seen from a library context."""

from __future__ import annotations

import errno
import os
from typing import Any

from kmodpy.util import PATH_MAX

LOG_ERR = 3
LOG_DEBUG = 7


class KmodError(OSError):
    """An operation on a module failed; ``errno`` says why."""

    def __init__(self, code: int, message: str | None = None) -> None:
        super().__init__(code, message or os.strerror(code))


def options_concat(opt: str | None, xopt: str | None) -> str | None:
    """Join module options with extra options, separated by a space.

    Returns None when both are empty.
    """
    optlen = 0 if opt is None else len(opt)
    xoptlen = 0 if xopt is None else len(xopt)
    if optlen == 0 and xoptlen == 0:
        return None
    result = ""
    if opt is not None:
        result = opt + " "
    if xopt is not None:
        result += xopt
    return result


def _path_join(path: str, prefix: str) -> str | None:
    if path.startswith("/"):
        return path
    if len(prefix) + len(path) + 1 >= PATH_MAX:
        return None
    return prefix + path


class Module:
    """A kernel module known to a context, by name and possibly alias.

    The context supplies ``dirname``, ``config``, ``search_moddep``,
    ``lookup_alias_is_builtin``, ``module_from_path``, ``lookup`` and ``log``.
    """

    def __init__(self, ctx: Any, name: str, alias: str | None = None,
                 hashkey: str | None = None) -> None:
        self.ctx = ctx
        self.name = name
        self.alias = alias
        if hashkey is None:
            hashkey = name if alias is None else f"{name}\\{alias}"
        self.hashkey = hashkey
        self.known_path: str | None = None
        self.file: Any = None
        self.builtin: bool | None = None
        self.visited = False
        self.ignorecmd = False
        self.required = False
        self._dep: list[Module] = []
        self._n_dep = 0
        self._dep_init = False
        self._options: str | None = None
        self._options_init = False
        self._install_commands: str | None = None
        self._install_init = False
        self._remove_commands: str | None = None
        self._remove_init = False

    def __repr__(self) -> str:
        return f"Module(name={self.name!r}, alias={self.alias!r})"

    def parse_depline(self, line: str) -> int:
        """Read this module's path and dependencies from a modules.dep line.

        Returns the number of dependencies. The line is parsed only once.
        """
        if self._dep_init:
            return self._n_dep
        self._dep_init = True

        head, sep, rest = line.partition(":")
        if not sep:
            return 0

        dirname = self.ctx.dirname
        if len(dirname) + 2 >= PATH_MAX:
            return 0
        prefix = dirname + "/"

        if self.known_path is None:
            own = _path_join(head, prefix)
            if own is None:
                return 0
            self.known_path = own

        deps: list[Module] = []
        try:
            for token in rest.replace("\t", " ").split(" "):
                if not token:
                    continue
                path = _path_join(token, prefix)
                if path is None:
                    self.ctx.log(LOG_ERR, f"could not join path '{dirname}' and '{token}'.")
                    raise KmodError(errno.ENAMETOOLONG)
                depmod = self.ctx.module_from_path(path)
                self.ctx.log(LOG_DEBUG, f"add dep: {path}")
                deps.insert(0, depmod)
        except KmodError:
            self._dep_init = False
            raise

        self._dep = deps
        self._n_dep = len(deps)
        return self._n_dep

    def set_builtin(self, builtin: bool) -> None:
        """Record whether the module is built into the kernel."""
        self.builtin = bool(builtin)

    def is_builtin(self) -> bool:
        """Tell whether the module is listed in modules.builtin."""
        if self.builtin is None:
            self.set_builtin(self.ctx.lookup_alias_is_builtin(self.name))
        return bool(self.builtin)

    def _load_depline(self) -> None:
        line = self.ctx.search_moddep(self.name)
        if line is None:
            return
        try:
            self.parse_depline(line)
        except KmodError as exc:
            self.ctx.log(LOG_ERR, f"could not parse dependencies of {self.name}: {exc}")

    def path(self) -> str | None:
        """Return the module file's path, searching modules.dep if needed."""
        if self.known_path is not None:
            return self.known_path
        if self._dep_init:
            return None
        self._load_depline()
        return self.known_path

    def dependencies(self) -> list[Module]:
        """Return the modules this one depends on, per modules.dep."""
        if not self._dep_init:
            self._load_depline()
        return list(self._dep)

    def options(self) -> str | None:
        """Return the configured options for this module, space separated."""
        if not self._options_init:
            self._options = self.ctx.config.options_for(self.name, self.alias)
            self._options_init = True
        return self._options

    def install_commands(self) -> str | None:
        """Return the first configured install command matching this module."""
        if not self._install_init:
            config = self.ctx.config
            self._install_commands = config.first_command(config.install_commands, self.name)
            self._install_init = True
        return self._install_commands

    def remove_commands(self) -> str | None:
        """Return the first configured remove command matching this module."""
        if not self._remove_init:
            config = self.ctx.config
            self._remove_commands = config.first_command(config.remove_commands, self.name)
            self._remove_init = True
        return self._remove_commands

    def set_install_commands(self, cmd: str | None) -> None:
        """Fix the install command, bypassing the configuration."""
        self._install_init = True
        self._install_commands = cmd

    def set_remove_commands(self, cmd: str | None) -> None:
        """Fix the remove command, bypassing the configuration."""
        self._remove_init = True
        self._remove_commands = cmd

    def _lookup_softdep(self, names: tuple[str, ...]) -> list[Module]:
        found: list[Module] = []
        for depname in names:
            try:
                found.extend(self.ctx.lookup(depname))
            except KmodError:
                self.ctx.log(LOG_ERR, f"failed to lookup soft dependency '{depname}', continuing anyway.")
        return found

    def softdeps(self) -> tuple[list[Module], list[Module]]:
        """Return the modules to load before and after this one."""
        dep = self.ctx.config.first_softdep(self.name)
        if dep is None:
            return [], []
        return self._lookup_softdep(dep.pre), self._lookup_softdep(dep.post)