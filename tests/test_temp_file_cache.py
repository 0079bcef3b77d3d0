"""Tests for the expiring cache and the temp file registry."""

import threading
import time

import pytest

from surfacestore.models.temp_file_cache import ExpiringCache, TempFileCache


def touch(path):
    path.write_bytes(b"data")
    return str(path)


def test_entry_expires_exactly_at_ttl(clock):
    expired = []
    cache = ExpiringCache(10, expired_callback=lambda k, v: expired.append((k, v)), clock=clock)
    cache.add("a", 1)

    clock.advance(9.999)
    assert cache.expire_due() == 0
    assert "a" in cache

    clock.advance(0.001)
    assert cache.expire_due() == 1
    assert expired == [("a", 1)]
    assert "a" not in cache


def test_re_adding_restarts_lifetime(clock):
    cache = ExpiringCache(10, clock=clock)
    cache.add("a", 1)
    clock.advance(8)
    cache.add("a", 2)
    clock.advance(8)

    assert cache.expire_due() == 0
    assert cache.get("a") == 2


def test_remove_does_not_call_callback(clock):
    expired = []
    cache = ExpiringCache(10, expired_callback=lambda k, v: expired.append(k), clock=clock)
    cache.add("a", 1)

    assert cache.remove("a")
    assert not cache.remove("a")
    clock.advance(20)
    cache.expire_due()

    assert expired == []


def test_callback_errors_are_logged_and_other_entries_still_expire(clock, caplog):
    seen = []

    def callback(key, value):
        seen.append(key)
        if key == "bad":
            raise RuntimeError("boom")

    cache = ExpiringCache(1, expired_callback=callback, clock=clock)
    cache.add("bad", 1)
    cache.add("good", 2)
    clock.advance(1)

    assert cache.expire_due() == 2
    assert sorted(seen) == ["bad", "good"]
    assert "boom" in caplog.text


def test_invalid_ttl_is_rejected():
    with pytest.raises(ValueError):
        ExpiringCache(0)


def test_concurrent_sweeps_expire_each_entry_once(clock):
    expired = []
    lock = threading.Lock()

    def callback(key, value):
        with lock:
            expired.append(key)

    cache = ExpiringCache(5, expired_callback=callback, clock=clock)
    for i in range(200):
        cache.add(i, i)
    clock.advance(5)

    threads = [threading.Thread(target=cache.expire_due) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(expired) == list(range(200))
    assert cache.get_statistics()['expired_count'] == 200


def test_temp_file_is_deleted_after_ttl(tmp_path, clock):
    cache = TempFileCache(ttl_seconds=36000, clock=clock)
    path = touch(tmp_path / "capture.png")
    cache.add(path)

    clock.advance(35999)
    cache.expire_due()
    assert (tmp_path / "capture.png").exists()

    clock.advance(1)
    cache.expire_due()
    assert not (tmp_path / "capture.png").exists()
    assert path not in cache


def test_expired_file_already_gone_is_fine(tmp_path, clock):
    cache = TempFileCache(ttl_seconds=60, clock=clock)
    cache.add(str(tmp_path / "never-written.png"))
    clock.advance(60)

    assert cache.expire_due() == 1
    assert len(cache) == 0


def test_remove_all_deletes_existing_files(tmp_path, tmp_file_cache):
    first = touch(tmp_path / "one.png")
    second = touch(tmp_path / "two.png")
    tmp_file_cache.add(first)
    tmp_file_cache.add(second)
    tmp_file_cache.add(str(tmp_path / "missing.png"))

    assert tmp_file_cache.remove_all() == 2
    assert len(tmp_file_cache) == 0
    assert not (tmp_path / "one.png").exists()
    assert not (tmp_path / "two.png").exists()


def test_tracked_paths_are_absolute(tmp_path, tmp_file_cache, monkeypatch):
    monkeypatch.chdir(tmp_path)

    tracked = tmp_file_cache.add("relative.png")

    assert tracked == str(tmp_path / "relative.png")
    assert "relative.png" in tmp_file_cache
    assert tmp_file_cache.paths == [tracked]


def test_background_sweep_deletes_expired_files(tmp_path):
    path = touch(tmp_path / "old.png")
    cache = TempFileCache(ttl_seconds=0.05, sweep_interval=0.01)
    cache.add(path)
    cache.start()
    try:
        deadline = time.monotonic() + 5
        while (tmp_path / "old.png").exists() and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        cache.shutdown()

    assert not (tmp_path / "old.png").exists()
