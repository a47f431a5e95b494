"""Test the dedup cache"""

import dataclasses
import sqlite3
import threading

import pytest

from trackfetch.core.database import CompletionRecord, DedupCache, file_checksum, now_iso
from trackfetch.core.exceptions import CacheError


def make_record(fp: str, path, checksum: str = "abc") -> CompletionRecord:
    return CompletionRecord(
        fingerprint=fp,
        file_path=str(path),
        format="mp3",
        tagged_at=now_iso(),
        checksum=checksum,
    )


class TestDedupCache:

    def test_commit_then_lookup(self, cache, temp_dir):
        audio = temp_dir / "song.mp3"
        audio.write_bytes(b"audio")

        record = make_record("isrc:GBUM71029604", audio)
        cache.commit(record)

        assert cache.lookup("isrc:GBUM71029604") == record

    def test_unknown_fingerprint(self, cache):
        assert cache.lookup("isrc:NOPE") is None

    def test_missing_file_is_a_miss(self, cache, temp_dir):
        """A record whose file is gone is treated as absent"""
        cache.commit(make_record("meta:a|b|c", temp_dir / "gone.mp3"))

        assert cache.lookup("meta:a|b|c") is None
        # The record itself is kept
        assert cache.get("meta:a|b|c") is not None

    def test_commit_overwrites(self, cache, temp_dir):
        first = temp_dir / "first.mp3"
        second = temp_dir / "second.mp3"
        first.write_bytes(b"1")
        second.write_bytes(b"2")

        cache.commit(make_record("fp", first))
        cache.commit(make_record("fp", second))

        assert cache.lookup("fp").file_path == str(second)
        assert len(cache.all_records()) == 1

    def test_commit_keyed_by_record_fingerprint(self, cache, temp_dir):
        """Every field of the stored record is replaced, under the record's own key"""
        mp3 = temp_dir / "song.mp3"
        flac = temp_dir / "song.flac"
        mp3.write_bytes(b"1")
        flac.write_bytes(b"2")

        cache.commit(make_record("fp", mp3, checksum="one"))
        cache.commit(dataclasses.replace(make_record("fp", flac, checksum="two"), format="flac"))
        cache.commit(make_record("other", mp3))

        stored = cache.get("fp")
        assert (stored.file_path, stored.format, stored.checksum) == (str(flac), "flac", "two")
        assert cache.find_by_path(mp3).fingerprint == "other"

    def test_concurrent_commits_single_record(self, cache, temp_dir):
        """Parallel commits for one fingerprint leave exactly one record"""
        paths = []
        for i in range(8):
            path = temp_dir / f"copy{i}.mp3"
            path.write_bytes(b"x")
            paths.append(path)

        barrier = threading.Barrier(len(paths))

        def commit(path):
            barrier.wait()
            cache.commit(make_record("isrc:SAME", path))

        threads = [threading.Thread(target=commit, args=(p,)) for p in paths]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        records = cache.all_records()
        assert len(records) == 1
        assert records[0].file_path in {str(p) for p in paths}

    def test_persists_across_instances(self, temp_dir):
        audio = temp_dir / "song.mp3"
        audio.write_bytes(b"audio")

        with DedupCache(temp_dir / "store.db") as store:
            store.commit(make_record("fp", audio))

        with DedupCache(temp_dir / "store.db") as store:
            assert store.lookup("fp") is not None
            assert store.find_by_path(audio).fingerprint == "fp"

    def test_stats_and_prune(self, cache, temp_dir):
        present = temp_dir / "present.mp3"
        present.write_bytes(b"x")
        cache.commit(make_record("a", present))
        cache.commit(make_record("b", temp_dir / "missing1.mp3"))
        cache.commit(make_record("c", temp_dir / "missing2.mp3"))

        assert cache.stats() == {"total": 3, "present": 1, "missing": 2}

        removed, total = cache.prune_missing()
        assert (removed, total) == (2, 3)
        assert [r.fingerprint for r in cache.all_records()] == ["a"]

    def test_missing_parent_directory(self, temp_dir):
        with pytest.raises(CacheError, match="Parent directory"):
            DedupCache(temp_dir / "nope" / "cache.db")

    def test_version_mismatch(self, temp_dir):
        db_path = temp_dir / "old.db"
        conn = sqlite3.connect(db_path)
        conn.execute("CREATE TABLE schema_version (version INTEGER PRIMARY KEY)")
        conn.execute("INSERT INTO schema_version (version) VALUES (99)")
        conn.commit()
        conn.close()

        with pytest.raises(CacheError, match="version mismatch"):
            DedupCache(db_path)


class TestHelpers:

    def test_file_checksum(self, temp_dir):
        path = temp_dir / "data.bin"
        path.write_bytes(b"hello")
        assert file_checksum(path) == "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"

    def test_record_to_dict(self, temp_dir):
        record = make_record("fp", temp_dir / "x.mp3")
        assert record.to_dict()["fingerprint"] == "fp"
