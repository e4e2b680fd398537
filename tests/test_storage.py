"""Unit tests for CounterStore component."""

import os
from pathlib import Path

import pytest

from zotbot.storage import INT64_MAX, CounterStore, normalize_key


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Path to a not-yet-existing store file."""
    return tmp_path / "zot.db"


@pytest.fixture
def store(db_path: Path) -> CounterStore:
    """Create a fresh CounterStore instance for each test."""
    return CounterStore.load(db_path)


class TestNormalizeKey:
    """キー正規化のテスト."""

    def test_separators_and_case_are_folded(self) -> None:
        assert normalize_key("Foo::Bar") == "foo.bar"
        assert normalize_key("foo.bar") == "foo.bar"
        assert normalize_key("FOO->BAR") == "foo.bar"

    def test_normalization_is_idempotent(self) -> None:
        for key in ["Foo::Bar->Baz", "a.B.c", "x"]:
            assert normalize_key(normalize_key(key)) == normalize_key(key)


class TestCounterStoreBasics:
    """Test counter operations."""

    def test_value_of_absent_key_is_zero(self, store: CounterStore) -> None:
        assert store.value("nonexistent") == 0
        assert store.dirty is False

    def test_increment_then_decrement(self, store: CounterStore) -> None:
        assert store.increment("foo") == 1
        assert store.decrement("foo") == 0

    def test_decrement_absent_key_starts_at_minus_one(self, store: CounterStore) -> None:
        assert store.decrement("bar") == -1

    def test_equivalent_keys_address_the_same_counter(self, store: CounterStore) -> None:
        assert store.increment("Foo::Bar") == 1
        assert store.decrement("Bar.foo") == -1
        assert store.value("Foo.BAR") == 1
        assert store.value("bar->foo") == -1
        assert store.value("Baz") == 0
        assert store.decrement("foo::bar") == 0
        assert store.increment("Foo::Bar") == 1

    def test_mutation_sets_dirty(self, store: CounterStore) -> None:
        store.increment("foo")
        assert store.dirty is True

    def test_value_does_not_set_dirty(self, store: CounterStore) -> None:
        store.value("foo")
        assert store.dirty is False

    def test_overflow_leaves_value_unchanged(self, db_path: Path) -> None:
        store = CounterStore(db_path, {"big": INT64_MAX})

        with pytest.raises(OverflowError):
            store.increment("big")

        assert store.value("big") == INT64_MAX
        assert store.dirty is False


class TestCounterStoreLoad:
    """ファイル読み込みのテスト."""

    def test_missing_file_gives_empty_store(self, db_path: Path) -> None:
        store = CounterStore.load(db_path)

        assert len(store) == 0
        assert store.dirty is False

    def test_load_reads_key_value_lines(self, db_path: Path) -> None:
        db_path.write_text("foo.bar:3\nbaz:-2\n")

        store = CounterStore.load(db_path)

        assert store.value("Foo::Bar") == 3
        assert store.value("baz") == -2
        assert store.dirty is False

    def test_malformed_lines_are_skipped(self, db_path: Path) -> None:
        db_path.write_text("good:1\nno separator\nbad:abc\n\nhuge:99999999999999999999\nalso.good:+2\n")

        store = CounterStore.load(db_path)

        assert sorted(store.items()) == [("also.good", 2), ("good", 1)]

    def test_value_may_contain_only_first_colon_split(self, db_path: Path) -> None:
        # 最初の `:` で分割するので、値側に `:` が残る行は不正
        db_path.write_text("a:b:1\n")

        store = CounterStore.load(db_path)

        assert len(store) == 0

    def test_unnormalized_keys_are_renormalized_and_merged(self, db_path: Path) -> None:
        db_path.write_text("Foo->Bar:2\nFOO.BAR:1\nfoo.bar:3\n")

        store = CounterStore.load(db_path)

        assert store.items() == [("foo.bar", 6)]
        assert store.dirty is True


class TestCounterStoreFlush:
    """フラッシュのテスト."""

    def test_flush_is_noop_when_clean(self, store: CounterStore, db_path: Path) -> None:
        assert store.flush() is False
        assert not db_path.exists()

    def test_flush_round_trip(self, store: CounterStore, db_path: Path) -> None:
        store.increment("Foo::Bar")
        store.decrement("baz")
        store.decrement("baz")

        assert store.flush() is True
        assert store.dirty is False

        reloaded = CounterStore.load(db_path)
        assert reloaded.value("foo.bar") == 1
        assert reloaded.value("baz") == -2

    def test_flush_writes_normalized_keys(self, store: CounterStore, db_path: Path) -> None:
        store.increment("Foo->Bar")
        store.flush()

        assert db_path.read_text() == "foo.bar:1\n"

    def test_flush_clears_dirty_even_if_content_is_unchanged(self, store: CounterStore) -> None:
        store.increment("foo")
        store.decrement("foo")

        assert store.flush() is True
        assert store.dirty is False

    def test_failed_flush_keeps_dirty_and_old_file(self, db_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        db_path.write_text("foo:1\n")
        store = CounterStore.load(db_path)
        store.increment("foo")

        def fail_replace(src, dst) -> None:
            raise PermissionError("read-only")

        monkeypatch.setattr(os, "replace", fail_replace)

        assert store.flush() is False
        assert store.dirty is True
        assert db_path.read_text() == "foo:1\n"
        assert not (db_path.parent / "zot.db.tmp").exists()

    def test_flush_into_missing_directory_fails(self, tmp_path: Path) -> None:
        store = CounterStore.load(tmp_path / "missing" / "zot.db")
        store.increment("foo")

        assert store.flush() is False
        assert store.dirty is True


class TestCounterStoreTeardown:
    """スコープ終了時のフラッシュのテスト."""

    def test_context_manager_flushes_on_exit(self, db_path: Path) -> None:
        with CounterStore.load(db_path) as store:
            store.increment("foo")

        assert CounterStore.load(db_path).value("foo") == 1

    def test_context_manager_flushes_on_exception(self, db_path: Path) -> None:
        with pytest.raises(RuntimeError):
            with CounterStore.load(db_path) as store:
                store.increment("foo")
                raise RuntimeError("boom")

        assert CounterStore.load(db_path).value("foo") == 1
