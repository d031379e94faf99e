#!/usr/bin/env python3
"""
Unit tests for the fingerprint-addressed counter store.
"""
import os
import sys
from collections import Counter
from pathlib import Path

import pytest

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from topphrases.counter_store import CounterEntry, CounterStore
from topphrases.errors import DigestCollisionError, InvalidArgumentError, StorageIOError
from topphrases.fingerprint import fingerprint, shard_parts


def _add(store: CounterStore, phrase: bytes):
    store.create_or_increment(fingerprint(phrase), phrase)


class TestCreateOrIncrement:
    """Counting into the directory tree."""

    def _store(self, tmp_path, **kwargs) -> CounterStore:
        return CounterStore(tmp_path / "store", **kwargs)

    def test_first_sight_creates_counter_one(self, tmp_path):
        store = self._store(tmp_path)
        _add(store, b"PGA")

        leaf = store.leaf_path(fingerprint(b"PGA"))
        assert os.listdir(leaf) == ["1"]
        assert (leaf / "1").read_bytes() == b"PGA"

    def test_leaf_path_follows_shards(self, tmp_path):
        store = self._store(tmp_path)
        fp = fingerprint(b"CNET")
        leaf = store.leaf_path(fp)
        assert leaf.relative_to(store.root).parts == tuple(shard_parts(fp))

    def test_increment_renames_counter(self, tmp_path):
        store = self._store(tmp_path)
        for _ in range(5):
            _add(store, b"Microsoft Bing")

        leaf = store.leaf_path(fingerprint(b"Microsoft Bing"))
        assert os.listdir(leaf) == ["5"]
        assert (leaf / "5").read_bytes() == b"Microsoft Bing"
        assert store.count_of(b"Microsoft Bing") == 5

    def test_increment_by_more_than_one(self, tmp_path):
        store = self._store(tmp_path)
        store.create_or_increment(fingerprint(b"x"), b"x", by=3)
        store.create_or_increment(fingerprint(b"x"), b"x", by=4)
        assert store.count_of(b"x") == 7

    def test_empty_phrase_is_counted(self, tmp_path):
        store = self._store(tmp_path)
        _add(store, b"")
        _add(store, b"")
        assert store.count_of(b"") == 2
        assert store.lookup(fingerprint(b"")).read_phrase() == b""

    def test_unknown_phrase_counts_zero(self, tmp_path):
        store = self._store(tmp_path)
        assert store.count_of(b"never seen") == 0
        assert store.lookup(fingerprint(b"never seen")) is None

    def test_wrong_fingerprint_size(self, tmp_path):
        store = self._store(tmp_path)
        with pytest.raises(InvalidArgumentError):
            store.create_or_increment(b"short", b"short")

    def test_spilled_phrase_is_moved_then_left_alone(self, tmp_path):
        store = self._store(tmp_path)
        phrase = b"a long phrase " * 100
        scratch = tmp_path / "scratch.bin"

        scratch.write_bytes(phrase)
        store.create_or_increment(fingerprint(phrase), scratch)
        assert not scratch.exists()

        scratch.write_bytes(phrase)
        store.create_or_increment(fingerprint(phrase), scratch)
        assert scratch.exists()

        entry = store.lookup(fingerprint(phrase))
        assert entry.count == 2
        assert entry.read_phrase() == phrase

    def test_lost_rename_race_is_retried(self, tmp_path, monkeypatch):
        store = self._store(tmp_path)
        _add(store, b"PGA")
        leaf = store.leaf_path(fingerprint(b"PGA"))
        real_rename = os.rename
        calls = []

        def racing_rename(src, dst):
            if not calls:
                # Another writer bumps the counter between our read and our rename
                calls.append(src)
                real_rename(leaf / "1", leaf / "2")
                raise FileNotFoundError(src)
            real_rename(src, dst)

        monkeypatch.setattr(os, "rename", racing_rename)
        _add(store, b"PGA")
        monkeypatch.undo()

        assert os.listdir(leaf) == ["3"]

    def test_unwritable_root_raises_storage_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        store = CounterStore(blocker / "store")
        with pytest.raises(StorageIOError):
            _add(store, b"PGA")


class TestCollisions:
    """Two phrases forced onto one fingerprint."""

    def test_length_mismatch_is_a_collision(self, tmp_path):
        store = CounterStore(tmp_path / "store")
        fp = fingerprint(b"abc")
        store.create_or_increment(fp, b"abc")
        with pytest.raises(DigestCollisionError):
            store.create_or_increment(fp, b"abcd")
        assert store.lookup(fp).count == 1

    def test_same_length_different_content(self, tmp_path):
        store = CounterStore(tmp_path / "store")
        fp = fingerprint(b"abc")
        store.create_or_increment(fp, b"abc")
        with pytest.raises(DigestCollisionError):
            store.create_or_increment(fp, b"xyz")

    def test_length_only_check_lets_equal_lengths_through(self, tmp_path):
        store = CounterStore(tmp_path / "store", verify_content=False)
        fp = fingerprint(b"abc")
        store.create_or_increment(fp, b"abc")
        store.create_or_increment(fp, b"xyz")
        assert store.lookup(fp).count == 2
        with pytest.raises(DigestCollisionError):
            store.create_or_increment(fp, b"wxyz")

    def test_spilled_phrase_content_is_compared(self, tmp_path):
        store = CounterStore(tmp_path / "store")
        fp = fingerprint(b"0123456789")
        store.create_or_increment(fp, b"0123456789")
        scratch = tmp_path / "scratch.bin"
        scratch.write_bytes(b"0123456780")
        with pytest.raises(DigestCollisionError):
            store.create_or_increment(fp, scratch)


class TestEnumerationAndMerge:
    """Walking, merging and dropping stores."""

    def test_iter_entries_reports_every_phrase(self, tmp_path):
        store = CounterStore(tmp_path / "store")
        phrases = [b"PGA", b"PGA", b"", b"CNET", b"PGA", b"", b"Xing"]
        for p in phrases:
            _add(store, p)

        expected = {fingerprint(p): n for p, n in Counter(phrases).items()}
        entries = list(store.iter_entries())
        assert {e.fingerprint: e.count for e in entries} == expected
        for e in entries:
            assert fingerprint(e.read_phrase()) == e.fingerprint

    def test_iter_entries_of_missing_store(self, tmp_path):
        assert list(CounterStore(tmp_path / "nothing").iter_entries()) == []

    def test_corrupt_leaf_is_reported(self, tmp_path):
        store = CounterStore(tmp_path / "store")
        _add(store, b"PGA")
        (store.leaf_path(fingerprint(b"PGA")) / "7").write_bytes(b"PGA")
        with pytest.raises(StorageIOError):
            list(store.iter_entries())

    def test_merge_sums_counts(self, tmp_path):
        left = CounterStore(tmp_path / "left")
        right = CounterStore(tmp_path / "right")
        for p in [b"a", b"a", b"b"]:
            _add(left, p)
        for p in [b"a", b"c", b"c", b"c"]:
            _add(right, p)

        merged = left.merge_from(right)

        assert merged == 2
        assert not right.root.exists()
        assert left.count_of(b"a") == 3
        assert left.count_of(b"b") == 1
        assert left.count_of(b"c") == 3
        assert left.lookup(fingerprint(b"c")).read_phrase() == b"c"

    def test_absorb_rejects_collisions(self, tmp_path):
        left = CounterStore(tmp_path / "left")
        fp = fingerprint(b"abc")
        left.create_or_increment(fp, b"abc")
        path = tmp_path / "other"
        path.write_bytes(b"abcdef")
        with pytest.raises(DigestCollisionError):
            left.absorb(CounterEntry(fp, 4, path))

    def test_drop_all_is_idempotent(self, tmp_path):
        store = CounterStore(tmp_path / "store")
        _add(store, b"PGA")
        store.drop_all()
        assert not store.root.exists()
        store.drop_all()
