"""Tests for the in-memory run store."""

import re
import threading
from datetime import timedelta

import pytest

from lakesync.services.sync.run_store import RunStore, SyncStatus, format_log

LOG_LINE = re.compile(r"^\[\d{4}-\d{2}-\d{2}T[^\]]+\] .+")


class TestCreateAndRead:
    def test_new_run_is_pending_with_one_log(self, store):
        run = store.create_run("r1")

        assert run.id == "r1"
        assert run.status == SyncStatus.PENDING
        assert run.external_run_id is None
        assert run.completed_at is None
        assert len(run.logs) == 1
        assert run.logs[0].endswith("] Run created")
        assert LOG_LINE.match(run.logs[0])

    def test_duplicate_create_keeps_original(self, store):
        store.create_run("r1")
        store.add_log("r1", "first")

        again = store.create_run("r1")

        assert len(again.logs) == 2
        assert len(store.list_runs()) == 1

    def test_get_unknown_returns_none(self, store):
        assert store.get_run("nope") is None

    def test_reads_are_snapshots(self, store):
        store.create_run("r1")
        snapshot = store.get_run("r1")
        snapshot.logs.append("tampered")
        snapshot.status = SyncStatus.COMPLETED

        fresh = store.get_run("r1")
        assert fresh.status == SyncStatus.PENDING
        assert "tampered" not in fresh.logs

    def test_snapshot_does_not_change_after_later_writes(self, store):
        store.create_run("r1")
        snapshot = store.get_run("r1")

        store.add_log("r1", "later")

        assert len(snapshot.logs) == 1

    def test_list_runs_newest_first(self, store):
        store.create_run("old")
        store.create_run("new")
        store._runs["old"].created_at -= timedelta(seconds=5)

        assert [r.id for r in store.list_runs()] == ["new", "old"]

    def test_list_runs_same_timestamp_prefers_later_insert(self, store):
        a = store.create_run("a")
        store.create_run("b")
        store._runs["b"].created_at = a.created_at

        assert [r.id for r in store.list_runs()] == ["b", "a"]

    def test_list_runs_empty(self, store):
        assert store.list_runs() == []


class TestStatusTransitions:
    def test_forward_path_to_completed(self, store):
        store.create_run("r1")

        assert store.update_status("r1", SyncStatus.EXPORTING)
        assert store.get_run("r1").completed_at is None
        assert store.update_status("r1", SyncStatus.IMPORTING)
        assert store.update_status("r1", SyncStatus.COMPLETED, "done")

        run = store.get_run("r1")
        assert run.status == SyncStatus.COMPLETED
        assert run.completed_at is not None
        assert run.completed_at >= run.created_at
        assert run.logs[-1].endswith("] done")

    @pytest.mark.parametrize(
        "path",
        [[], [SyncStatus.EXPORTING], [SyncStatus.EXPORTING, SyncStatus.IMPORTING]],
        ids=["pending", "exporting", "importing"],
    )
    def test_any_active_state_can_fail(self, store, path):
        store.create_run("r1")
        for status in path:
            store.update_status("r1", status)

        assert store.update_status("r1", SyncStatus.FAILED, "boom")
        assert store.get_run("r1").completed_at is not None

    def test_skipping_a_stage_is_refused(self, store):
        store.create_run("r1")

        assert store.update_status("r1", SyncStatus.IMPORTING) is False
        assert store.update_status("r1", SyncStatus.COMPLETED) is False
        assert store.get_run("r1").status == SyncStatus.PENDING

    def test_terminal_state_is_final(self, store):
        store.create_run("r1")
        store.update_status("r1", SyncStatus.FAILED, "first failure")
        completed_at = store.get_run("r1").completed_at

        assert store.update_status("r1", SyncStatus.FAILED, "second failure") is False
        assert store.update_status("r1", SyncStatus.EXPORTING) is False

        run = store.get_run("r1")
        assert run.status == SyncStatus.FAILED
        assert run.completed_at == completed_at
        assert run.logs[-1].endswith("] first failure")

    def test_refused_transition_does_not_log(self, store):
        store.create_run("r1")

        store.update_status("r1", SyncStatus.COMPLETED, "should not appear")

        assert len(store.get_run("r1").logs) == 1

    def test_status_without_message_adds_no_log(self, store):
        store.create_run("r1")
        store.update_status("r1", SyncStatus.EXPORTING)

        assert len(store.get_run("r1").logs) == 1


class TestUnknownIds:
    def test_mutators_are_noops(self, store):
        assert store.update_status("ghost", SyncStatus.EXPORTING) is False
        store.set_external_run_id("ghost", 1)
        store.add_log("ghost", "hello")

        assert store.get_run("ghost") is None
        assert store.list_runs() == []


class TestLogs:
    def test_logs_are_append_only_and_ordered(self, store):
        store.create_run("r1")
        for i in range(5):
            store.add_log("r1", f"step {i}")

        messages = [line.split("] ", 1)[1] for line in store.get_run("r1").logs]
        assert messages == ["Run created"] + [f"step {i}" for i in range(5)]

    def test_format_log_prefixes_iso_timestamp(self):
        assert LOG_LINE.match(format_log("hello"))
        assert format_log("hello").endswith("] hello")

    def test_external_run_id(self, store):
        store.create_run("r1")
        store.set_external_run_id("r1", 4242)

        assert store.get_run("r1").external_run_id == 4242

    def test_concurrent_appends_are_not_lost(self):
        store = RunStore()
        store.create_run("r1")

        def writer(n):
            for i in range(100):
                store.add_log("r1", f"w{n}-{i}")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(store.get_run("r1").logs) == 1 + 8 * 100


class TestSyncStatus:
    def test_terminal_states(self):
        assert SyncStatus.COMPLETED.is_terminal
        assert SyncStatus.FAILED.is_terminal
        assert not SyncStatus.PENDING.is_terminal
        assert not SyncStatus.EXPORTING.is_terminal
        assert not SyncStatus.IMPORTING.is_terminal

    def test_serializes_as_plain_string(self):
        assert SyncStatus.EXPORTING == "EXPORTING"
        assert SyncStatus("IMPORTING") is SyncStatus.IMPORTING
