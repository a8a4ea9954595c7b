import errno
import io
import os
import syslog
from fnmatch import fnmatchcase

import pytest

from kmodpy.config import Alias, Command, Config, ConfigPath, IndexType, Resources
from kmodpy.context import Context, parse_log_priority
from kmodpy.module import KmodError
from kmodpy.util import stat_mstamp


class FakeIndex:
    def __init__(self, exact=None, wild=None, path=None, stamp=None):
        self.exact = exact or {}
        self.wild = wild or {}
        self.path = path
        self.stamp = stamp

    def search(self, key):
        return self.exact.get(key)

    def searchwild(self, key):
        found = []
        for pattern, values in self.wild.items():
            if fnmatchcase(key, pattern):
                found.extend(values)
        return found

    def dump(self, out, prefix):
        for key, value in self.exact.items():
            out.write(f"{prefix}{key} {value}\n")


@pytest.fixture(autouse=True)
def _no_env_log(monkeypatch):
    monkeypatch.delenv("KMOD_LOG", raising=False)


def test_parse_log_priority_numbers_and_names():
    assert parse_log_priority("5") == 5
    assert parse_log_priority("5 ") == 5
    assert parse_log_priority("err") == syslog.LOG_ERR
    assert parse_log_priority("info") == syslog.LOG_INFO
    assert parse_log_priority("debug") == syslog.LOG_DEBUG
    assert parse_log_priority("5x") == 0


def test_env_sets_log_priority(monkeypatch, tmp_path):
    monkeypatch.setenv("KMOD_LOG", "debug")
    ctx = Context(str(tmp_path))
    assert ctx.log_priority == syslog.LOG_DEBUG


def test_default_log_priority(tmp_path):
    assert Context(str(tmp_path)).log_priority == syslog.LOG_ERR


def test_relative_dirname_made_absolute(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    ctx = Context("mods")
    assert ctx.dirname == f"{os.getcwd()}/mods"


def test_default_dirname_uses_release():
    ctx = Context()
    assert ctx.dirname == f"/lib/modules/{os.uname().release}"


def test_module_from_name_normalizes_and_pools(tmp_path):
    ctx = Context(str(tmp_path))
    a = ctx.module_from_name("foo-bar.ko")
    b = ctx.module_from_name("foo_bar")
    assert a is b
    assert a.name == "foo_bar"
    assert ctx.pool_get("foo_bar") is a


def test_module_from_alias_key(tmp_path):
    ctx = Context(str(tmp_path))
    mod = ctx.module_from_alias("pci:v1*", "snd")
    assert mod.name == "snd"
    assert mod.alias == "pci:v1*"
    assert mod.hashkey == "snd\\pci:v1*"
    assert ctx.module_from_alias("pci:v1*", "snd") is mod


def test_module_from_alias_too_long(tmp_path):
    ctx = Context(str(tmp_path))
    with pytest.raises(KmodError) as info:
        ctx.module_from_alias("a" * 5000, "snd")
    assert info.value.errno == errno.ENAMETOOLONG


def test_module_from_path(tmp_path):
    ko = tmp_path / "foo-x.ko"
    ko.write_bytes(b"")
    ctx = Context(str(tmp_path))
    mod = ctx.module_from_path(str(ko))
    assert mod.name == "foo_x"
    assert mod.path() == str(ko)
    assert ctx.module_from_path(str(ko)) is mod


def test_module_from_path_missing(tmp_path):
    ctx = Context(str(tmp_path))
    with pytest.raises(KmodError) as info:
        ctx.module_from_path(str(tmp_path / "nope.ko"))
    assert info.value.errno == errno.ENOENT


def test_module_from_path_conflict(tmp_path):
    (tmp_path / "a").mkdir()
    (tmp_path / "b").mkdir()
    (tmp_path / "a" / "foo.ko").write_bytes(b"")
    (tmp_path / "b" / "foo.ko").write_bytes(b"")
    ctx = Context(str(tmp_path))
    ctx.module_from_path(str(tmp_path / "a" / "foo.ko"))
    with pytest.raises(KmodError) as info:
        ctx.module_from_path(str(tmp_path / "b" / "foo.ko"))
    assert info.value.errno == errno.EEXIST


def test_pool_remove(tmp_path):
    ctx = Context(str(tmp_path))
    ctx.module_from_name("foo")
    ctx.pool_remove("foo")
    assert ctx.pool_get("foo") is None
    with pytest.raises(KeyError):
        ctx.pool_remove("foo")


def test_lookup_config_alias_wins(tmp_path):
    config = Config(aliases=[Alias("my*", "real")])
    dep = FakeIndex(exact={"mything": "kernel/mything.ko:"})
    ctx = Context(str(tmp_path), config, {IndexType.MODULES_DEP: dep})
    found = ctx.lookup("mything")
    assert [(m.name, m.alias) for m in found] == [("real", "my*")]


def test_lookup_moddep(tmp_path):
    (tmp_path / "kernel").mkdir()
    (tmp_path / "kernel" / "bar.ko").write_bytes(b"")
    dep = FakeIndex(exact={"foo": "kernel/foo.ko: kernel/bar.ko"})
    ctx = Context(str(tmp_path), Config(), {IndexType.MODULES_DEP: dep})
    found = ctx.lookup("foo")
    assert [m.name for m in found] == ["foo"]
    assert found[0].path() == f"{tmp_path}/kernel/foo.ko"
    assert [m.name for m in found[0].dependencies()] == ["bar"]


def test_moddep_skips_names_with_colon(tmp_path):
    dep = FakeIndex(exact={"a:b": "kernel/a.ko:"})
    ctx = Context(str(tmp_path), Config(), {IndexType.MODULES_DEP: dep})
    assert ctx.lookup_alias_from_moddep_file("a:b") == []


def test_lookup_symbols(tmp_path):
    sym = FakeIndex(wild={"symbol:foo_fn": ["foo"]})
    ctx = Context(str(tmp_path), Config(), {IndexType.MODULES_SYMBOL: sym})
    found = ctx.lookup("symbol:foo_fn")
    assert [(m.name, m.alias) for m in found] == [("foo", "symbol:foo_fn")]
    assert ctx.lookup_alias_from_symbols_file("foo_fn") == []


def test_lookup_commands(tmp_path):
    config = Config(install_commands=[Command("foo", "/bin/true")],
                    remove_commands=[Command("bar", "/bin/false")])
    ctx = Context(str(tmp_path), config)
    found = ctx.lookup("foo")
    assert found[0].install_commands() == "/bin/true"
    removed = ctx.lookup_alias_from_commands("bar")
    assert removed[0].remove_commands() == "/bin/false"


def test_lookup_aliases_index_missing_raises(tmp_path):
    ctx = Context(str(tmp_path), Config())
    with pytest.raises(KmodError) as info:
        ctx.lookup("pci:v00001234d*")
    assert info.value.errno == errno.ENOSYS


def test_lookup_aliases_index(tmp_path):
    aliases = FakeIndex(wild={"usb:v1*": ["usbthing", "other"]})
    ctx = Context(str(tmp_path), Config(), {IndexType.MODULES_ALIAS: aliases})
    found = ctx.lookup("usb:v1-x")
    assert [m.name for m in found] == ["usbthing", "other"]
    assert all(m.alias == "usb:v1_x" for m in found)


def test_lookup_builtin(tmp_path):
    indexes = {
        IndexType.MODULES_ALIAS: FakeIndex(),
        IndexType.MODULES_BUILTIN: FakeIndex(exact={"ext4": ""}),
    }
    ctx = Context(str(tmp_path), Config(), indexes)
    found = ctx.lookup("ext4")
    assert [m.name for m in found] == ["ext4"]
    assert found[0].is_builtin() is True
    assert ctx.lookup_alias_is_builtin("ext4") is True
    assert ctx.lookup_alias_is_builtin("xfs") is False
    assert ctx.lookup("xfs") == []


def test_lookup_invalid_alias(tmp_path):
    ctx = Context(str(tmp_path))
    with pytest.raises(KmodError) as info:
        ctx.lookup("foo]")
    assert info.value.errno == errno.EINVAL


def test_set_marks(tmp_path):
    ctx = Context(str(tmp_path))
    ctx.module_from_name("a")
    ctx.module_from_name("b")
    ctx.set_modules_visited(True)
    ctx.set_modules_required(True)
    assert all(m.visited and m.required for m in ctx.modules())
    ctx.set_modules_visited(False)
    assert not any(m.visited for m in ctx.modules())
    assert sorted(m.name for m in ctx.modules()) == ["a", "b"]


def test_validate_resources(tmp_path):
    conf = tmp_path / "x.conf"
    conf.write_text("")
    stamp = stat_mstamp(os.stat(conf))
    config = Config(paths=[ConfigPath(str(conf), stamp)])
    idx_file = tmp_path / "modules.dep.bin"
    idx_file.write_bytes(b"")
    idx = FakeIndex(path=str(idx_file), stamp=stat_mstamp(os.stat(idx_file)))
    ctx = Context(str(tmp_path), config, {IndexType.MODULES_DEP: idx})
    assert ctx.validate_resources() == Resources.OK
    idx.stamp -= 1
    assert ctx.validate_resources() == Resources.MUST_RELOAD
    config.paths[0].stamp -= 1
    assert ctx.validate_resources() == Resources.MUST_RECREATE
    ctx.config = None
    assert ctx.validate_resources() == Resources.MUST_RECREATE


def test_dump_index(tmp_path):
    idx = FakeIndex(exact={"pci:v1*": "snd"})
    ctx = Context(str(tmp_path), Config(), {IndexType.MODULES_ALIAS: idx})
    out = io.StringIO()
    ctx.dump_index(IndexType.MODULES_ALIAS, out)
    assert out.getvalue() == "alias pci:v1* snd\n"
    with pytest.raises(KmodError) as missing:
        ctx.dump_index(IndexType.MODULES_DEP, out)
    assert missing.value.errno == errno.ENOSYS
    with pytest.raises(KmodError) as bad:
        ctx.dump_index(9, out)
    assert bad.value.errno == errno.ENOENT


def test_log_filters_by_priority(tmp_path):
    ctx = Context(str(tmp_path))
    seen = []
    ctx.log_fn = lambda prio, msg: seen.append((prio, msg))
    ctx.log(syslog.LOG_ERR, "bad")
    ctx.log(syslog.LOG_DEBUG, "chatty")
    assert seen == [(syslog.LOG_ERR, "bad")]