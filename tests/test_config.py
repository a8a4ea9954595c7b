import os

from kmodpy.config import (
    Alias,
    Command,
    Config,
    FilterFlags,
    IndexType,
    InitState,
    InsertFlags,
    Option,
    ProbeFlags,
    RemoveFlags,
    Resources,
    SoftDep,
    SymbolBind,
)


def test_probe_flags_from_values():
    assert ProbeFlags(0x00001) is ProbeFlags.FORCE_VERMAGIC
    assert ProbeFlags(0x00020) is ProbeFlags.FAIL_ON_LOADED
    assert ProbeFlags(0x10000) is ProbeFlags.APPLY_BLACKLIST_ALL
    assert ProbeFlags(0x40000) is ProbeFlags.APPLY_BLACKLIST_ALIAS_ONLY


def test_other_flags_from_values():
    assert InsertFlags(0x2) is InsertFlags.FORCE_MODVERSION
    assert FilterFlags(0x00002) is FilterFlags.BUILTIN
    assert RemoveFlags(os.O_TRUNC) is RemoveFlags.FORCE
    assert RemoveFlags(os.O_NONBLOCK) is RemoveFlags.NOWAIT


def test_flags_combine():
    flags = ProbeFlags(0x10 | 0x08)
    assert flags == ProbeFlags.DRY_RUN | ProbeFlags.IGNORE_LOADED
    assert ProbeFlags.DRY_RUN in flags
    assert ProbeFlags.FAIL_ON_LOADED not in flags


def test_initstate_labels():
    labels = [InitState(value).label() for value in range(4)]
    assert labels == ["builtin", "live", "coming", "going"]


def test_enums_from_values():
    assert SymbolBind(ord("U")) is SymbolBind.UNDEF
    assert SymbolBind(0) is SymbolBind.NONE
    assert IndexType(3) is IndexType.MODULES_BUILTIN
    assert Resources(2) is Resources.MUST_RECREATE


def test_blacklisted():
    cfg = Config(blacklists=["pcspkr", "floppy"])
    assert cfg.blacklisted("floppy")
    assert not cfg.blacklisted("ext4")


def test_options_for_name_and_alias():
    cfg = Config(options=[
        Option("foo", "a=1"),
        Option("bar", "b=2"),
        Option("foo", ""),
        Option("myalias", "c=3"),
        Option("foo", "d=4"),
    ])
    assert cfg.options_for("foo") == "a=1 d=4"
    assert cfg.options_for("foo", "myalias") == "a=1 c=3 d=4"
    assert cfg.options_for("baz") is None


def test_first_command_uses_patterns_and_first_match():
    cfg = Config(install_commands=[
        Command("snd_*", "first"),
        Command("snd_hda", "second"),
    ])
    assert cfg.first_command(cfg.install_commands, "snd_hda") == "first"
    assert cfg.first_command(cfg.install_commands, "ext4") is None
    assert cfg.first_command(cfg.remove_commands, "snd_hda") is None


def test_first_softdep():
    a = SoftDep("foo", pre=("x",), post=("y",))
    b = SoftDep("f*", pre=("z",))
    cfg = Config(softdeps=[a, b])
    assert cfg.first_softdep("foo") is a
    assert cfg.first_softdep("fab") is b
    assert cfg.first_softdep("bar") is None


def test_config_defaults_are_independent():
    one = Config()
    two = Config()
    one.aliases.append(Alias("pci:*", "foo"))
    assert two.aliases == []
    assert one.aliases == [Alias("pci:*", "foo")]