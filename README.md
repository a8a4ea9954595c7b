# kmodpy

A pure Python library for working with Linux kernel modules: normalising
module names and aliases, resolving an alias or name to modules, reading
dependency lines, applying module configuration (aliases, options, install
and remove commands, soft dependencies and blacklists), reading the state of
modules loaded in the running kernel from sysfs and `/proc/modules`, working
out the order in which a module and its dependencies must be loaded, and
reading the signature block appended to signed module files.

It has no third-party dependencies.

## What is inside

| Module | Purpose |
| --- | --- |
| `kmodpy.util` | Name and path helpers: `modname_normalize`, `alias_normalize`, `underscores`, `path_to_modname`, `path_ends_with_kmod_ext`, `read_wrapped_lines`, `read_str_long`, `mkdir_p`, `mkdir_parents`, `stat_mstamp` and others |
| `kmodpy.array` | `StepArray`, an ordered list of references whose `append_unique` judges by identity |
| `kmodpy.strbuf` | `StrBuf`, a string built and trimmed piece by piece, and `ScratchBuf`, a byte buffer that only grows |
| `kmodpy.hash` | `Hash`, a string-keyed map with a power-of-two number of sorted buckets, and `superfast_hash` |
| `kmodpy.signature` | `signature_info` and `SignatureInfo` for appended module signatures |
| `kmodpy.config` | Flag and state enums (`ProbeFlags`, `FilterFlags`, `InsertFlags`, `RemoveFlags`, `InitState`, `SymbolBind`, `IndexType`, `Resources`) and the `Config` model with `Alias`, `Option`, `Command`, `SoftDep`, `ConfigPath` |
| `kmodpy.module` | `Module` (path, dependencies, options, commands, soft dependencies), `KmodError`, `options_concat` |
| `kmodpy.context` | `Context`: the pool of known modules and the lookup chain; `parse_log_priority` |
| `kmodpy.loaded` | Live kernel state: `modules_from_loaded`, `get_initstate`, `get_refcnt`, `get_holders`, `get_sections`, `get_size`, `is_in_kernel`, `initstate_str` |
| `kmodpy.probe` | `get_probe_list`, `probe_insert_module`, `apply_filter`, `is_blacklisted`, `expand_install_command`, `run_command` |

Failures are raised as `KmodError`, a subclass of `OSError` whose `errno`
says what went wrong.

## Normalising names

```python
from kmodpy.util import alias_normalize, modname_normalize, path_to_modname

modname_normalize("snd-hda-intel")                        # "snd_hda_intel"
path_to_modname("/lib/modules/6.1/kernel/foo-bar.ko.xz")  # "foo_bar"
alias_normalize("pci:v*d*sv*sd*bc[0-9]*")                 # dashes inside [...] are kept
```

An alias with an unbalanced `[` or `]` raises `ValueError`.

## Reading a signature

```python
from pathlib import Path
from kmodpy.signature import signature_info

info = signature_info(Path("module.ko").read_bytes())
if info is not None:
    print(info.signer, info.algo, info.hash_algo, info.id_type, info.key_id_hex())
```

`signature_info` returns `None` when the data carries no valid signature block.

## Looking up modules

A `Context` is built from a module directory (by default
`/lib/modules/<running release>`), a `Config` and a mapping from `IndexType`
to index objects. An index object is anything with these three methods:

```python
class DictIndex:
    def __init__(self, entries):
        self.entries = entries          # key -> list of values

    def search(self, key):
        values = self.entries.get(key)
        return values[0] if values else None

    def searchwild(self, key):
        return list(self.entries.get(key, []))

    def dump(self, out, prefix):
        for key, values in self.entries.items():
            for value in values:
                out.write(f"{prefix}{key} {value}\n")
```

```python
from kmodpy.config import Alias, Config, IndexType, Option
from kmodpy.context import Context

config = Config(
    aliases=[Alias("eth*", "e1000")],
    options=[Option("e1000", "debug=1")],
    blacklists=["pcspkr"],
)
ctx = Context("/lib/modules/6.1.0", config, {
    IndexType.MODULES_ALIAS: DictIndex({}),
    IndexType.MODULES_DEP: DictIndex({}),
})

for mod in ctx.lookup("eth0"):
    print(mod.name, mod.alias, mod.options())
```

`lookup` normalises the alias and then tries, in order, the configured
aliases, `modules.dep`, `modules.symbols` (only for `symbol:` names), the
install and remove commands, `modules.alias` and `modules.builtin`, stopping
at the first that matches. When it reaches the `modules.alias` or
`modules.symbols` step and that index is missing from the mapping, it raises
`KmodError` with `ENOSYS`. Modules are pooled per context: asking twice for
the same name returns the same `Module` object.

A `modules.dep` line names dependency files relative to the module
directory; `Module.dependencies()` creates a module for each through
`Context.module_from_path`, which requires the file to exist.

Log messages go to standard error, prefixed `libkmod:`, when their priority
is at or below `Context.log_priority` (errors by default). The `KMOD_LOG`
environment variable sets the priority as a number or as `err`, `info` or
`debug`; replace `Context.log_fn` with your own `(priority, message)` callable
to redirect them.

## Live kernel state

```python
from kmodpy.loaded import get_initstate, get_refcnt, get_sections, modules_from_loaded

for mod in modules_from_loaded(ctx):
    print(mod.name, get_initstate(mod).label(), get_refcnt(mod))
```

Each function takes optional `sysfs` and `proc_modules` arguments, so they
can be pointed at a copy of those trees.

## Probing

`get_probe_list` returns the modules to load, in order: dependencies first,
each surrounded by its soft dependencies. `probe_insert_module` walks that
list honouring `ProbeFlags` (dry run, ignoring install commands, ignoring or
failing on already-loaded modules, the three blacklist modes). Install
commands have `$CMDLINE_OPTS` replaced by the module's options and run
through `run_install` if given, otherwise through the shell with
`MODPROBE_MODULE` set. Plain insertion is done by the `insert(module,
insert_flags, options)` callback you pass in.

```python
from kmodpy.config import ProbeFlags
from kmodpy.probe import probe_insert_module

def show(mod, install, options):
    print("install" if install else "insmod", mod.name, options)

probe_insert_module(mod, ProbeFlags.DRY_RUN, print_action=show)
```

It returns 0 on success, or the blacklist flag that stopped the probe.

## What this package does not do

- It does not read the binary module index files or parse configuration
  files from disk: you supply the index objects and build the `Config`
  yourself.
- It does not read ELF contents of module files (modinfo, symbol versions,
  symbols).
- It does not load modules into or remove them from the kernel by itself;
  insertion is left to the `insert` callback.
- It has no command-line tool.

## Running the tests

Install the `test` extra and run `pytest` from the project root.