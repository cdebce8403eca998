"""Tests for temporary artifact lifecycle management."""

import asyncio
import errno
import os
import threading
import time
from unittest.mock import patch

import pytest

from images_transform.core.artifacts import (
    ArtifactStore,
    ArtifactSweeper,
    safe_filename,
    unique_token,
)
from images_transform.core.exceptions import ArtifactError, InvalidGeometryError


@pytest.fixture
def store(tmp_path):
    return ArtifactStore(tmp_path / "uploads", tmp_path / "outputs")


def _age(path, seconds):
    stamp = time.time() - seconds
    os.utime(path, (stamp, stamp))


class TestNaming:
    """Tests for unique_token and safe_filename."""

    def test_tokens_are_unique(self):
        tokens = {unique_token() for _ in range(500)}
        assert len(tokens) == 500

    def test_token_starts_with_timestamp(self):
        millis = int(unique_token().split("-")[0])
        assert abs(millis - time.time() * 1000) < 60_000

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("photo.jpg", "photo.jpg"),
            ("../../etc/passwd", "passwd"),
            ("my holiday pic.png", "my_holiday_pic.png"),
            ("", "upload"),
            ("...", "upload"),
        ],
    )
    def test_safe_filename(self, name, expected):
        assert safe_filename(name) == expected

    def test_safe_filename_truncates(self):
        assert len(safe_filename("a" * 500 + ".jpg")) == 100


class TestArtifactStore:
    """Tests for ArtifactStore."""

    def test_ensure_directories(self, store):
        store.ensure_directories()
        assert store.upload_dir.is_dir()
        assert store.output_dir.is_dir()

    def test_temp_input_removed_on_success(self, store):
        with store.temp_input(b"data", "photo.jpg") as path:
            assert path.parent == store.upload_dir
            assert path.name.endswith("-photo.jpg")
            assert path.read_bytes() == b"data"
        assert not path.exists()

    def test_temp_input_removed_on_failure(self, store):
        with pytest.raises(RuntimeError):
            with store.temp_input(b"data") as path:
                raise RuntimeError("pipeline failed")
        assert not path.exists()
        assert list(store.upload_dir.iterdir()) == []

    def test_temp_input_tolerates_early_delete(self, store):
        with store.temp_input(b"data") as path:
            path.unlink()
        assert not path.exists()

    def test_concurrent_inputs_get_distinct_paths(self, store):
        with store.temp_input(b"a", "same.jpg") as first, store.temp_input(b"b", "same.jpg") as second:
            assert first != second
            assert first.read_bytes() == b"a"
            assert second.read_bytes() == b"b"

    def test_temp_output_kept_on_success(self, store):
        with store.temp_output("png") as path:
            store.write(path, b"result")
        assert path.parent == store.output_dir
        assert path.name.startswith("processed-")
        assert path.suffix == ".png"
        assert path.read_bytes() == b"result"

    def test_temp_output_removed_on_failure(self, store):
        with pytest.raises(ValueError):
            with store.temp_output(".jpg") as path:
                store.write(path, b"partial")
                raise ValueError("encode failed")
        assert not path.exists()

    def test_write_never_overwrites(self, store):
        store.ensure_directories()
        path = store.output_dir / "taken.png"
        store.write(path, b"first")
        with pytest.raises(ArtifactError):
            store.write(path, b"second")
        assert path.read_bytes() == b"first"

    def test_read_missing_file(self, store):
        with pytest.raises(ArtifactError):
            store.read(store.upload_dir / "missing")

    def test_discard(self, store):
        store.ensure_directories()
        path = store.upload_dir / "file"
        path.write_bytes(b"x")
        assert store.discard(path) is True
        assert store.discard(path) is False

    def test_discard_failure_raises(self, store):
        with patch("images_transform.core.artifacts.os.unlink", side_effect=PermissionError("denied")):
            with pytest.raises(ArtifactError):
                store.discard(store.upload_dir / "file")

    def test_failed_write_leaves_no_partial_upload(self, store):
        real_open = open

        class FullDisk:
            def __init__(self, fh):
                self._fh = fh

            def __enter__(self):
                return self

            def __exit__(self, *exc_info):
                self._fh.close()
                return False

            def write(self, data):
                self._fh.write(data[:3])
                raise OSError(errno.ENOSPC, "No space left on device")

        def full_disk_open(path, mode="r", *args, **kwargs):
            return FullDisk(real_open(path, mode, *args, **kwargs))

        with patch("images_transform.core.artifacts.open", full_disk_open, create=True):
            with pytest.raises(ArtifactError):
                with store.temp_input(b"abcdefgh", "a.jpg"):
                    pass
        assert list(store.upload_dir.iterdir()) == []

    def test_discard_failure_keeps_original_input_error(self, store):
        with patch.object(store, "discard", side_effect=ArtifactError("denied")):
            with pytest.raises(InvalidGeometryError):
                with store.temp_input(b"data"):
                    raise InvalidGeometryError("resize", "output too large")

    def test_discard_failure_keeps_original_output_error(self, store):
        with patch.object(store, "discard", side_effect=ArtifactError("denied")):
            with pytest.raises(InvalidGeometryError):
                with store.temp_output("png"):
                    raise InvalidGeometryError("crop", "outside the image")

    def test_discard_failure_after_success_still_raises(self, store):
        with patch.object(store, "discard", side_effect=ArtifactError("denied")):
            with pytest.raises(ArtifactError):
                with store.temp_input(b"data"):
                    pass


class TestSweepExpired:
    """Tests for ArtifactStore.sweep_expired."""

    def test_sweeps_only_old_files(self, store):
        store.ensure_directories()
        old_upload = store.upload_dir / "old-upload"
        old_output = store.output_dir / "old-output"
        fresh = store.output_dir / "fresh"
        for path in (old_upload, old_output, fresh):
            path.write_bytes(b"x")
        _age(old_upload, 3600)
        _age(old_output, 3600)

        assert store.sweep_expired(max_age=1800) == 2
        assert not old_upload.exists()
        assert not old_output.exists()
        assert fresh.exists()

    def test_missing_directories(self, store):
        assert store.sweep_expired(max_age=0) == 0

    def test_skips_subdirectories(self, store):
        store.ensure_directories()
        nested = store.upload_dir / "nested"
        nested.mkdir()
        _age(nested, 3600)
        assert store.sweep_expired(max_age=1) == 0
        assert nested.is_dir()

    def test_explicit_now(self, store):
        store.ensure_directories()
        path = store.upload_dir / "file"
        path.write_bytes(b"x")
        assert store.sweep_expired(max_age=10, now=time.time() + 60) == 1

    def test_one_failure_does_not_stop_sweep(self, store):
        store.ensure_directories()
        for name in ("a", "b", "c"):
            path = store.upload_dir / name
            path.write_bytes(b"x")
            _age(path, 3600)

        real_unlink = os.unlink

        def flaky_unlink(path, *args, **kwargs):
            if str(path).endswith("b"):
                raise PermissionError("locked")
            return real_unlink(path, *args, **kwargs)

        with patch("images_transform.core.artifacts.os.unlink", side_effect=flaky_unlink):
            assert store.sweep_expired(max_age=60) == 2
        assert (store.upload_dir / "b").exists()


class TestArtifactSweeper:
    """Tests for the background ArtifactSweeper."""

    def test_start_and_stop(self, store):
        async def scenario():
            sweeper = ArtifactSweeper(store, interval=60, max_age=60)
            sweeper.start()
            assert sweeper.running
            await sweeper.stop()
            assert not sweeper.running

        asyncio.run(scenario())

    def test_periodic_sweep(self, store):
        store.ensure_directories()
        old = store.output_dir / "old"
        old.write_bytes(b"x")
        _age(old, 3600)

        async def scenario():
            sweeper = ArtifactSweeper(store, interval=0.01, max_age=60)
            sweeper.start()
            for _ in range(200):
                if not old.exists():
                    break
                await asyncio.sleep(0.01)
            await sweeper.stop()

        asyncio.run(scenario())
        assert not old.exists()

    def test_sweep_once(self, store):
        store.ensure_directories()
        old = store.upload_dir / "old"
        old.write_bytes(b"x")
        _age(old, 3600)

        async def scenario():
            return await ArtifactSweeper(store, interval=60, max_age=60).sweep_once()

        assert asyncio.run(scenario()) == 1

    def test_schedule_deletion_immediately(self, store):
        store.ensure_directories()
        path = store.output_dir / "delivered"
        path.write_bytes(b"x")

        async def scenario():
            sweeper = ArtifactSweeper(store, interval=60, max_age=60)
            sweeper.schedule_deletion(path, 0)
            return sweeper.pending_deletions

        assert asyncio.run(scenario()) == 0
        assert not path.exists()

    def test_schedule_deletion_after_delay(self, store):
        store.ensure_directories()
        path = store.output_dir / "delivered"
        path.write_bytes(b"x")

        async def scenario():
            sweeper = ArtifactSweeper(store, interval=60, max_age=60)
            sweeper.schedule_deletion(path, 0.05)
            assert sweeper.pending_deletions == 1
            assert path.exists()
            await asyncio.sleep(0.2)
            return sweeper.pending_deletions

        assert asyncio.run(scenario()) == 0
        assert not path.exists()

    def test_stop_flushes_pending_deletions(self, store):
        store.ensure_directories()
        path = store.output_dir / "delivered"
        path.write_bytes(b"x")

        async def scenario():
            sweeper = ArtifactSweeper(store, interval=60, max_age=60)
            sweeper.start()
            sweeper.schedule_deletion(path, 3600)
            await sweeper.stop()
            return sweeper.pending_deletions

        assert asyncio.run(scenario()) == 0
        assert not path.exists()

    def test_failed_delayed_deletion_is_logged_not_raised(self, store):
        async def scenario():
            sweeper = ArtifactSweeper(store, interval=60, max_age=60)
            with patch.object(store, "discard", side_effect=ArtifactError("denied")):
                sweeper.schedule_deletion(store.output_dir / "x", 0)

        asyncio.run(scenario())

    def test_failed_sweep_pass_keeps_sweeper_running(self, store):
        calls = []

        def flaky_sweep(max_age):
            calls.append(max_age)
            if len(calls) == 1:
                raise PermissionError(errno.EACCES, "Permission denied")
            return 0

        async def scenario():
            sweeper = ArtifactSweeper(store, interval=0.01, max_age=60)
            with patch.object(store, "sweep_expired", side_effect=flaky_sweep):
                sweeper.start()
                for _ in range(200):
                    if len(calls) >= 3:
                        break
                    await asyncio.sleep(0.01)
                still_running = sweeper.running
                await sweeper.stop()
            return still_running

        assert asyncio.run(scenario()) is True
        assert len(calls) >= 3

    def test_stop_deletes_off_the_event_loop(self, store):
        store.ensure_directories()
        path = store.output_dir / "delivered"
        path.write_bytes(b"x")
        threads = []
        real_discard = store.discard

        def recording_discard(target):
            threads.append(threading.get_ident())
            return real_discard(target)

        async def scenario():
            sweeper = ArtifactSweeper(store, interval=60, max_age=60)
            sweeper.schedule_deletion(path, 3600)
            with patch.object(store, "discard", side_effect=recording_discard):
                await sweeper.stop()
            return threading.get_ident()

        loop_thread = asyncio.run(scenario())
        assert threads and loop_thread not in threads
        assert not path.exists()

    def test_release_with_grace_is_deferred(self, store):
        store.ensure_directories()
        path = store.output_dir / "delivered"
        path.write_bytes(b"x")

        async def scenario():
            sweeper = ArtifactSweeper(store, interval=60, max_age=60)
            await sweeper.release(path, 3600)
            deferred = path.exists() and sweeper.pending_deletions == 1
            await sweeper.release(path, 0)
            return deferred, sweeper.pending_deletions

        assert asyncio.run(scenario()) == (True, 0)
        assert not path.exists()
