"""Loading a module together with its dependencies, soft dependencies and commands."""

from __future__ import annotations

import errno
import os
import subprocess
from collections.abc import Callable, Iterable
from typing import Any

from kmodpy.config import FilterFlags, InsertFlags, ProbeFlags
from kmodpy.loaded import SYSFS_MODULES, is_in_kernel
from kmodpy.module import KmodError, Module, options_concat

LOG_ERR = 3
LOG_DEBUG = 7

CMDLINE_OPTS_VAR = "$CMDLINE_OPTS"

RunInstall = Callable[[Module, str], Any]
PrintAction = Callable[[Module, bool, str], None]
Insert = Callable[[Module, InsertFlags, "str | None"], Any]


def is_blacklisted(mod: Module) -> bool:
    """Tell whether the configuration blacklists ``mod``."""
    return mod.ctx.config.blacklisted(mod.name)


def apply_filter(ctx: Any, filter_type: int, modules: Iterable[Module]) -> list[Module]:
    """Return ``modules`` without the blacklisted and/or builtin ones."""
    if ctx is None:
        raise KmodError(errno.ENOENT)
    filters = FilterFlags(filter_type)
    kept: list[Module] = []
    for mod in modules:
        if filters & FilterFlags.BLACKLIST and is_blacklisted(mod):
            continue
        if filters & FilterFlags.BUILTIN and mod.is_builtin():
            continue
        kept.append(mod)
    return kept


def expand_install_command(command: str, options: str | None) -> str:
    """Substitute every ``$CMDLINE_OPTS`` in ``command`` with ``options``."""
    return command.replace(CMDLINE_OPTS_VAR, options or "")


def run_command(mod: Module, kind: str, cmd: str) -> int:
    """Run ``cmd`` through the shell with MODPROBE_MODULE set to the module's name.

    Raises KmodError carrying the exit status when the command fails.
    """
    modname = mod.name
    mod.ctx.log(LOG_DEBUG, f"{kind} {cmd}")
    env = dict(os.environ)
    env["MODPROBE_MODULE"] = modname
    try:
        result = subprocess.run(cmd, shell=True, env=env, check=False)
    except OSError as exc:
        mod.ctx.log(LOG_ERR, f"Error running {kind} command for {modname}")
        raise KmodError(exc.errno or errno.EIO) from exc
    if result.returncode > 0:
        mod.ctx.log(LOG_ERR, f"Error running {kind} command for {modname}")
        raise KmodError(result.returncode, f"{kind} command for {modname} exited with {result.returncode}")
    return 0


def _do_install_commands(mod: Module, options: str | None,
                         run_install: RunInstall | None) -> None:
    command = mod.install_commands()
    if command is None:
        raise KmodError(errno.ENOENT)
    cmd = expand_install_command(command, options)
    if run_install is None:
        run_command(mod, "install", cmd)
        return
    result = run_install(mod, cmd)
    if isinstance(result, int) and result < 0:
        raise KmodError(-result)


def _fill_softdep(mod: Module, out: list[Module]) -> None:
    pre, post = mod.softdeps()
    for dep in pre:
        _collect(dep, False, False, out)
    out.append(mod)
    mod.ignorecmd = bool(pre or post)
    for dep in post:
        _collect(dep, False, False, out)


def _collect(mod: Module, required: bool, ignorecmd: bool, out: list[Module]) -> None:
    if mod.visited:
        mod.ctx.log(LOG_DEBUG, f"Ignore module '{mod.name}': already visited")
        return
    mod.visited = True

    deps = mod.dependencies()
    if required:
        mod.required = True
        for dep in deps:
            dep.required = True

    for dep in deps:
        _fill_softdep(dep, out)

    if ignorecmd:
        out.append(mod)
        mod.ignorecmd = True
    else:
        _fill_softdep(mod, out)


def get_probe_list(mod: Module, ignorecmd: bool = False) -> list[Module]:
    """Return the modules to load, in order, to load ``mod``.

    Dependencies come first, each surrounded by its soft dependencies; with
    ``ignorecmd`` the soft dependencies of ``mod`` itself are left out.
    """
    if mod is None:
        raise KmodError(errno.ENOENT)
    mod.ctx.set_modules_visited(False)
    mod.ctx.set_modules_required(False)
    out: list[Module] = []
    _collect(mod, True, bool(ignorecmd), out)
    return out


def _insert_step(m: Module, flags: ProbeFlags, options: str | None,
                 run_install: RunInstall | None, print_action: PrintAction | None,
                 insert: Insert | None) -> None:
    cmd = m.install_commands()
    if cmd is not None and not m.ignorecmd:
        if print_action is not None:
            print_action(m, True, options or "")
        if not flags & ProbeFlags.DRY_RUN:
            _do_install_commands(m, options, run_install)
        return

    if print_action is not None:
        print_action(m, False, options or "")
    if flags & ProbeFlags.DRY_RUN:
        return
    if insert is None:
        raise KmodError(errno.ENOSYS, f"no way to insert module '{m.name}'")
    result = insert(m, InsertFlags(int(flags) & int(InsertFlags.FORCE_VERMAGIC | InsertFlags.FORCE_MODVERSION)),
                    options)
    if isinstance(result, int) and result < 0:
        raise KmodError(-result)


def probe_insert_module(mod: Module, flags: int = 0, extra_options: str | None = None,
                        run_install: RunInstall | None = None,
                        print_action: PrintAction | None = None,
                        insert: Insert | None = None,
                        sysfs: str = SYSFS_MODULES) -> int:
    """Load ``mod`` with its dependencies, soft dependencies and install commands.

    ``insert(module, insert_flags, options)`` does the actual insertion.
    Returns 0 on success, or the blacklist flag that stopped the probe.
    Raises KmodError on failure.
    """
    if mod is None:
        raise KmodError(errno.ENOENT)
    flags = ProbeFlags(flags)

    if not flags & ProbeFlags.IGNORE_LOADED and is_in_kernel(mod, sysfs):
        if flags & ProbeFlags.FAIL_ON_LOADED:
            raise KmodError(errno.EEXIST)
        return 0

    reason = ProbeFlags(0)
    if mod.alias is not None and flags & ProbeFlags.APPLY_BLACKLIST_ALIAS_ONLY:
        reason = ProbeFlags.APPLY_BLACKLIST_ALIAS_ONLY
    elif flags & ProbeFlags.APPLY_BLACKLIST_ALL:
        reason = ProbeFlags.APPLY_BLACKLIST_ALL
    elif flags & ProbeFlags.APPLY_BLACKLIST:
        reason = ProbeFlags.APPLY_BLACKLIST
    if reason and is_blacklisted(mod):
        return reason

    modules = get_probe_list(mod, bool(flags & ProbeFlags.IGNORE_COMMAND))

    if flags & ProbeFlags.APPLY_BLACKLIST_ALL:
        modules = apply_filter(mod.ctx, FilterFlags.BLACKLIST, modules)
        if not modules:
            return ProbeFlags.APPLY_BLACKLIST_ALL

    for m in modules:
        error: KmodError | None = None
        try:
            if not flags & ProbeFlags.IGNORE_LOADED and is_in_kernel(m, sysfs):
                mod.ctx.log(LOG_DEBUG, f"Ignoring module '{m.name}': already loaded")
                raise KmodError(errno.EEXIST)
            options = options_concat(m.options(), extra_options if m is mod else None)
            _insert_step(m, flags, options, run_install, print_action, insert)
        except KmodError as exc:
            error = exc

        if error is None:
            continue
        already = error.errno == errno.EEXIST
        if already and m is mod and flags & ProbeFlags.FAIL_ON_LOADED:
            raise error
        if already or not m.required:
            continue
        raise error

    return 0