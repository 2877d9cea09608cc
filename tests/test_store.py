import os
import time

from minirediskv.rdb import RdbEntry
from minirediskv.store import (
    EMPTY_RDB,
    MASTER_REPLID,
    Config,
    Store,
    ensure_rdb_file,
    now_ms,
)


def test_config_defaults():
    config = Config()
    assert config.full_path() == os.path.join("/tmp/redis-data", "dump.rdb")
    assert config.role() == "master"


def test_config_replica_role():
    assert Config(replicaof="localhost 6379").role() == "slave"


def test_empty_rdb_starts_with_header():
    assert EMPTY_RDB.startswith(b"REDIS0011")
    assert len(MASTER_REPLID) == 40


def test_set_get_round_trip():
    store = Store()
    store.set("foo", "bar")
    assert store.get("foo") == "bar"
    store.set("foo", "baz")
    assert store.get("foo") == "baz"


def test_get_missing_is_none():
    assert Store().get("nope") is None


def test_expiry_removes_key():
    store = Store()
    store.set("k", "v", px=100)
    assert store.get("k", now=now_ms()) == "v"
    assert store.get("k", now=now_ms() + 10_000) is None
    assert "k" not in store.keys()


def test_type_of():
    store = Store()
    store.set("a", "1", px=50)
    assert store.type_of("a", now=now_ms()) == "string"
    assert store.type_of("missing") == "none"
    assert store.type_of("a", now=now_ms() + 10_000) == "none"


def test_load_keeps_recorded_expiry():
    store = Store()
    store.load([RdbEntry("a", "1", expires_at=5), RdbEntry("b", "2")])
    assert store.keys() == ["a", "b"]
    assert store.get("a", now=5) == "1"
    assert store.get("b", now=10**15) == "2"
    assert store.get("a", now=6) is None
    assert store.keys() == ["b"]


def test_ensure_rdb_file_creates_directory_and_file(tmp_path):
    config = Config(directory=str(tmp_path / "data" / "nested"), dbfilename="x.rdb")
    ensure_rdb_file(config)
    assert os.path.isfile(config.full_path())
    assert os.path.getsize(config.full_path()) == 0


def test_ensure_rdb_file_keeps_existing(tmp_path):
    path = tmp_path / "dump.rdb"
    path.write_bytes(EMPTY_RDB)
    ensure_rdb_file(Config(directory=str(tmp_path)))
    assert path.read_bytes() == EMPTY_RDB


def test_now_ms_tracks_wall_clock():
    before = int(time.time() * 1000)
    value = now_ms()
    after = int(time.time() * 1000)
    assert before - 1 <= value <= after + 1