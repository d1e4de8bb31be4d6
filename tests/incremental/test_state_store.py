"""Tests for the state store implementations."""

import math

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from dqengine.core.config import Settings, get_settings
from dqengine.core.errors import StoreCorruptionError
from dqengine.incremental import (
    FileSystemStateStore,
    InMemoryStateStore,
    SQLStateStore,
    StateSnapshot,
)
from dqengine.metrics.codec import decode_state, encode_state
from dqengine.metrics.state import MeanState, MinMaxState

ENVELOPE = {"type": "size", "version": 1, "data": {"count": 3}}


@pytest.fixture(params=["memory", "filesystem", "sql"])
async def store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryStateStore()
    elif request.param == "filesystem":
        yield FileSystemStateStore(tmp_path / "states")
    else:
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'state.db'}")
        sql_store = SQLStateStore(engine)
        await sql_store.initialize()
        yield sql_store
        await engine.dispose()


class TestStateStoreContract:
    """Every store honors the same save/load/list/delete contract."""

    async def test_missing_key_loads_none(self, store):
        assert await store.load_state("series/s/cumulative") is None

    async def test_round_trip(self, store):
        snapshot = StateSnapshot(
            states={"size": ENVELOPE},
            metadata={"processed_partitions": ["2024-01-01"]},
        )
        await store.save_state("series/s/cumulative", snapshot)

        assert await store.load_state("series/s/cumulative") == snapshot

    async def test_unknown_envelopes_are_kept_verbatim(self, store):
        future = {"type": "future_sketch", "version": 7, "data": {"blob": [1, 2, 3]}}
        await store.save_state("k", StateSnapshot(states={"size": ENVELOPE, "x.y": future}))

        loaded = await store.load_state("k")
        assert loaded.states["x.y"] == future

    async def test_non_finite_states_round_trip(self, store):
        snapshot = StateSnapshot(
            states={
                "mean.v": encode_state(MeanState(total=math.nan, count=2)),
                "minimum.v": encode_state(MinMaxState(minimum=-math.inf, maximum=math.inf, count=2)),
            }
        )
        await store.save_state("k", snapshot)

        loaded = await store.load_state("k")
        mean = decode_state(loaded.states["mean.v"])
        assert math.isnan(mean.total)
        assert decode_state(loaded.states["minimum.v"]) == MinMaxState(
            minimum=-math.inf, maximum=math.inf, count=2
        )

    async def test_save_replaces(self, store):
        await store.save_state("k", StateSnapshot(states={"size": ENVELOPE}))
        await store.save_state("k", StateSnapshot(metadata={"v": 2}))

        loaded = await store.load_state("k")
        assert loaded.states == {}
        assert loaded.metadata == {"v": 2}

    async def test_list_partitions_sorted_by_prefix(self, store):
        for key in ["series/b/partition/2", "series/a/partition/1", "series/b/partition/1", "other"]:
            await store.save_state(key, StateSnapshot())

        assert await store.list_partitions("series/b/") == [
            "series/b/partition/1",
            "series/b/partition/2",
        ]
        assert len(await store.list_partitions()) == 4

    async def test_prefix_wildcards_are_literal(self, store):
        await store.save_state("series/a_b/cumulative", StateSnapshot())
        await store.save_state("series/axb/cumulative", StateSnapshot())

        assert await store.list_partitions("series/a_") == ["series/a_b/cumulative"]

    async def test_delete(self, store):
        await store.save_state("k", StateSnapshot())
        await store.delete_state("k")
        await store.delete_state("never-saved")

        assert await store.load_state("k") is None
        assert await store.list_partitions() == []

    async def test_locks_are_per_key(self, store):
        assert store.lock("a") is store.lock("a")
        assert store.lock("a") is not store.lock("b")


class TestFileSystemStateStore:
    async def test_keys_with_separators_are_encoded(self, tmp_path):
        store = FileSystemStateStore(tmp_path)
        await store.save_state("series/orders/partition/2024-01-01", StateSnapshot())

        files = [p.name for p in tmp_path.iterdir()]
        assert files == ["series%2Forders%2Fpartition%2F2024-01-01.json"]
        assert await store.list_partitions() == ["series/orders/partition/2024-01-01"]

    async def test_corrupt_file(self, tmp_path):
        store = FileSystemStateStore(tmp_path)
        (tmp_path / "k.json").write_text("{not json")

        with pytest.raises(StoreCorruptionError) as exc_info:
            await store.load_state("k")
        assert exc_info.value.partition_key == "k"

    async def test_no_temporary_files_left_behind(self, tmp_path):
        store = FileSystemStateStore(tmp_path)
        await store.save_state("k", StateSnapshot(states={"size": ENVELOPE}))

        assert [p.name for p in tmp_path.iterdir()] == ["k.json"]

    async def test_from_settings_uses_state_directory(self, tmp_path):
        settings = Settings(state_directory=tmp_path / "configured")

        store = FileSystemStateStore.from_settings(settings)
        await store.save_state("k", StateSnapshot(states={"size": ENVELOPE}))

        assert store.root == tmp_path / "configured"
        assert [p.name for p in (tmp_path / "configured").iterdir()] == ["k.json"]

    def test_from_settings_reads_the_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DQENGINE_STATE_DIRECTORY", str(tmp_path / "from-env"))
        get_settings.cache_clear()
        try:
            store = FileSystemStateStore.from_settings()
        finally:
            get_settings.cache_clear()

        assert store.root == tmp_path / "from-env"
        assert store.root.is_dir()


class TestSQLStateStore:
    async def test_persists_across_store_instances(self, engine):
        first = SQLStateStore(engine)
        await first.initialize()
        await first.save_state("k", StateSnapshot(states={"size": ENVELOPE}))

        second = SQLStateStore(engine)
        await second.initialize()

        loaded = await second.load_state("k")
        assert loaded.states == {"size": ENVELOPE}
