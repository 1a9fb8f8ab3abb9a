"""Unit tests for artifact naming and retention."""

import os
import time
import logging
import pytest
from pathlib import Path

from traceur.models.session import RecordingKind
from traceur.storage.file_manager import TEMP_TRACE_NAME, FileManager

DAY_S = 24 * 60 * 60


def make_artifact(file_manager, name, age_s):
    file_manager.ensure_directory()
    path = file_manager.get_output_file(name)
    path.write_bytes(b"trace")
    mtime = time.time() - age_s
    os.utime(path, (mtime, mtime))
    return path


def remaining(file_manager):
    return sorted(p.name for p in file_manager.trace_dir.iterdir())


@pytest.mark.unit
class TestNaming:

    def test_output_filename(self, file_manager):
        name = file_manager.get_output_filename(RecordingKind.TRACE)

        assert name == "trace-oriole-UQ1A.240105.004-2024-05-17-13-45-09.perfetto-trace"

    def test_stack_samples_filename(self, file_manager):
        name = file_manager.get_output_filename(RecordingKind.STACK_SAMPLES)

        assert name.startswith("stack-samples-oriole-")

    def test_recovered_filename(self, file_manager):
        assert file_manager.get_recovered_filename() == (
            "recovered-recording-oriole-UQ1A.240105.004-2024-05-17-13-45-09.perfetto-trace")

    def test_unique_output_file_adds_counter(self, file_manager):
        name = file_manager.get_recovered_filename()

        assert file_manager.get_unique_output_file(name) == file_manager.get_output_file(name)

        make_artifact(file_manager, name, 0)
        make_artifact(file_manager, name.replace(".perfetto-trace", "-1.perfetto-trace"), 0)

        assert file_manager.get_unique_output_file(name).name == (
            "recovered-recording-oriole-UQ1A.240105.004-2024-05-17-13-45-09-2.perfetto-trace")

    def test_output_file_lives_in_trace_dir(self, file_manager):
        path = file_manager.get_output_file("trace-a.perfetto-trace")

        assert path.parent == file_manager.trace_dir
        assert file_manager.temp_trace_path.name == TEMP_TRACE_NAME

    def test_directory_is_created_on_demand(self, file_manager):
        assert not file_manager.trace_dir.exists()
        file_manager.ensure_directory()
        file_manager.ensure_directory()
        assert file_manager.trace_dir.is_dir()


@pytest.mark.unit
class TestRetention:

    def test_keeps_newest_and_young_files(self, file_manager):
        make_artifact(file_manager, "trace-1.perfetto-trace", 40 * DAY_S)
        make_artifact(file_manager, "trace-2.perfetto-trace", 35 * DAY_S)
        make_artifact(file_manager, "trace-3.perfetto-trace", 30 * DAY_S)
        make_artifact(file_manager, "trace-4.perfetto-trace", 29 * DAY_S)
        make_artifact(file_manager, "trace-5.perfetto-trace", 1 * DAY_S)

        deleted = file_manager.delete_older_files(min_count=3, min_age_seconds=28 * DAY_S)

        assert deleted == 2
        assert remaining(file_manager) == [
            "trace-3.perfetto-trace", "trace-4.perfetto-trace", "trace-5.perfetto-trace"]

    def test_young_files_beyond_count_are_kept(self, file_manager):
        for i in range(6):
            make_artifact(file_manager, f"trace-{i}.perfetto-trace", i * DAY_S)

        assert file_manager.delete_older_files(min_count=3, min_age_seconds=28 * DAY_S) == 0
        assert len(remaining(file_manager)) == 6

    def test_unrelated_and_in_progress_files_are_ignored(self, file_manager):
        make_artifact(file_manager, TEMP_TRACE_NAME, 90 * DAY_S)
        make_artifact(file_manager, "notes.txt", 90 * DAY_S)
        make_artifact(file_manager, "recovered-recording-a.perfetto-trace", 90 * DAY_S)

        deleted = file_manager.delete_older_files(min_count=0, min_age_seconds=28 * DAY_S)

        assert deleted == 1
        assert remaining(file_manager) == [TEMP_TRACE_NAME, "notes.txt"]

    def test_failed_delete_does_not_stop_the_pass(self, file_manager, monkeypatch, caplog):
        make_artifact(file_manager, "trace-a.perfetto-trace", 102 * DAY_S)
        make_artifact(file_manager, "trace-b.perfetto-trace", 101 * DAY_S)
        make_artifact(file_manager, "trace-c.perfetto-trace", 100 * DAY_S)
        real_unlink = Path.unlink

        def flaky_unlink(path, *args, **kwargs):
            if path.name == "trace-c.perfetto-trace":
                raise FileNotFoundError(2, "No such file or directory", str(path))
            return real_unlink(path, *args, **kwargs)

        monkeypatch.setattr(Path, "unlink", flaky_unlink)

        with caplog.at_level(logging.ERROR):
            deleted = file_manager.delete_older_files(min_count=0, min_age_seconds=DAY_S)

        assert deleted == 2
        assert remaining(file_manager) == ["trace-c.perfetto-trace"]
        assert any("trace-c.perfetto-trace" in r.getMessage() for r in caplog.records)

    def test_background_cleanup_survives_failed_delete(self, file_manager, monkeypatch):
        make_artifact(file_manager, "trace-a.perfetto-trace", 100 * DAY_S)
        make_artifact(file_manager, "trace-b.perfetto-trace", 100 * DAY_S)
        real_unlink = Path.unlink

        def flaky_unlink(path, *args, **kwargs):
            if path.name == "trace-a.perfetto-trace":
                raise PermissionError(13, "Permission denied", str(path))
            return real_unlink(path, *args, **kwargs)

        monkeypatch.setattr(Path, "unlink", flaky_unlink)

        thread = file_manager.cleanup_older_files(min_count=0, min_age_seconds=DAY_S)
        thread.join(5)

        assert remaining(file_manager) == ["trace-a.perfetto-trace"]

    def test_missing_directory(self, file_manager):
        assert file_manager.list_artifacts() == []
        assert file_manager.delete_older_files(3, 0) == 0

    def test_background_cleanup(self, file_manager):
        make_artifact(file_manager, "trace-old.perfetto-trace", 60 * DAY_S)

        thread = file_manager.cleanup_older_files(min_count=0, min_age_seconds=DAY_S)
        thread.join(5)

        assert not thread.is_alive()
        assert thread.daemon
        assert remaining(file_manager) == []

    def test_list_artifacts_newest_first(self, file_manager):
        make_artifact(file_manager, "trace-old.perfetto-trace", 10)
        make_artifact(file_manager, "trace-new.perfetto-trace", 1)

        assert [p.name for p in file_manager.list_artifacts()] == [
            "trace-new.perfetto-trace", "trace-old.perfetto-trace"]


@pytest.mark.unit
def test_clear_saved_traces(file_manager):
    make_artifact(file_manager, "trace-a.perfetto-trace", 0)
    make_artifact(file_manager, "stack-samples-b.perfetto-trace", 0)
    make_artifact(file_manager, TEMP_TRACE_NAME, 0)

    assert file_manager.clear_saved_traces() == 2
    assert remaining(file_manager) == [TEMP_TRACE_NAME]


@pytest.mark.unit
def test_state_round_trip(file_manager):
    assert file_manager.read_state(".state") is None

    file_manager.write_state(".state", "recording_kind: TRACE\n")

    assert file_manager.read_state(".state") == "recording_kind: TRACE\n"
    assert remaining(file_manager) == [".state"]


@pytest.mark.unit
def test_default_clock_is_used(temp_data_dir):
    manager = FileManager(temp_data_dir, "board", "build", "perfetto-trace")

    assert manager.get_output_filename(RecordingKind.TRACE).startswith("trace-board-build-")
