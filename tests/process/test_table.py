"""Tests for the process table.

The table owns live processes: every transition persists the record and
notifies observers in registration order.  Killing cascades to children
depth-first, and a RUNNING record found at boot is reclassified as
CRASHED.
"""

import random

import pytest

from omni_os.errors import ConflictError, InvalidArgumentError, NotFoundError
from omni_os.logging import Logger, LogLevel
from omni_os.process.pcb import Process, ProcessStatus, ProcessType
from omni_os.process.table import ProcessEvent, ProcessTable
from omni_os.storage.store import Collection, EntityStore


def _store() -> EntityStore:
    """Create an opened store."""
    store = EntityStore()
    store.initialize()
    return store


def _table(store: EntityStore | None = None) -> ProcessTable:
    """Create a table with a seeded random source."""
    return ProcessTable(store or _store(), rng=random.Random(7))


class TestSpawn:
    """Verify spawning processes."""

    def test_spawn_scenario(self) -> None:
        """Spawn, pause, resume and kill a calculator process."""
        table = _table()
        process = table.spawn("calc", "app", {})
        assert process.status is ProcessStatus.RUNNING
        table.pause(process.pid)
        table.resume(process.pid)
        assert process.status is ProcessStatus.RUNNING
        table.kill(process.pid)
        assert process not in table.get_all_processes()

    def test_spawn_persists_record(self) -> None:
        """A spawned process is written to the store."""
        store = _store()
        process = _table(store).spawn("calc", ProcessType.APP)
        record = store.get(Collection.PROCESSES, process.pid)
        assert record is not None
        assert record["status"] == "running"

    def test_spawn_with_live_parent(self) -> None:
        """A child records its parent's pid."""
        table = _table()
        parent = table.spawn("shell", ProcessType.APP)
        child = table.spawn("ls", ProcessType.APP, parent_id=parent.pid)
        assert child.parent_id == parent.pid
        assert table.get_child_processes(parent.pid) == [child]

    def test_spawn_with_unknown_parent(self) -> None:
        """Naming a parent that is not live is NotFound."""
        with pytest.raises(NotFoundError, match="Process not found: ghost"):
            _table().spawn("orphan", ProcessType.APP, parent_id="ghost")

    def test_spawn_unknown_type(self) -> None:
        """An unknown process type is rejected."""
        with pytest.raises(InvalidArgumentError, match="Unknown process type: daemon"):
            _table().spawn("x", "daemon")

    def test_spawn_sets_simulated_usage(self) -> None:
        """Spawning gives the process an initial simulated usage."""
        process = _table().spawn("calc", ProcessType.APP)
        assert process.cpu_usage > 0
        assert process.memory_usage >= 50  # noqa: PLR2004


class TestKill:
    """Verify kill and its cascade."""

    def test_kill_cascades_to_descendants(self) -> None:
        """Killing a root removes every descendant."""
        table = _table()
        root = table.spawn("root", ProcessType.SERVICE)
        child = table.spawn("child", ProcessType.SERVICE, parent_id=root.pid)
        grandchild = table.spawn("grandchild", ProcessType.SERVICE, parent_id=child.pid)
        sibling = table.spawn("sibling", ProcessType.SERVICE)
        table.kill(root.pid)
        remaining = {p.pid for p in table.get_all_processes()}
        assert remaining == {sibling.pid}
        for process in (root, child, grandchild):
            assert process.status is ProcessStatus.STOPPED

    def test_kill_order_is_depth_first(self) -> None:
        """Children are killed before their parent."""
        table = _table()
        killed: list[str] = []
        table.subscribe(ProcessEvent.KILL, lambda p: killed.append(p.name))
        root = table.spawn("root", ProcessType.SERVICE)
        child = table.spawn("child", ProcessType.SERVICE, parent_id=root.pid)
        table.spawn("grandchild", ProcessType.SERVICE, parent_id=child.pid)
        table.kill(root.pid)
        assert killed == ["grandchild", "child", "root"]

    def test_kill_unknown_pid(self) -> None:
        """Killing a pid that is not live is NotFound."""
        with pytest.raises(NotFoundError):
            _table().kill("ghost")

    def test_kill_skips_children_removed_mid_cascade(self) -> None:
        """A child killed by an observer during the cascade is skipped."""
        table = _table()
        root = table.spawn("root", ProcessType.SERVICE)
        first = table.spawn("first", ProcessType.SERVICE, parent_id=root.pid)
        second = table.spawn("second", ProcessType.SERVICE, parent_id=root.pid)

        def kill_sibling(process: Process) -> None:
            if process.pid == first.pid and table.get_process(second.pid) is not None:
                table.kill(second.pid)

        table.subscribe(ProcessEvent.KILL, kill_sibling)
        table.kill(root.pid)
        assert len(table) == 0

    def test_killed_record_persists_as_stopped(self) -> None:
        """The store keeps the terminal record."""
        store = _store()
        table = _table(store)
        process = table.spawn("calc", ProcessType.APP)
        table.kill(process.pid, force=True)
        record = store.get(Collection.PROCESSES, process.pid)
        assert record is not None
        assert record["status"] == "stopped"
        assert record["metadata"]["extra"]["forced"] is True

    def test_kill_all(self) -> None:
        """kill_all empties the table."""
        table = _table()
        parent = table.spawn("a", ProcessType.APP)
        table.spawn("b", ProcessType.APP, parent_id=parent.pid)
        table.spawn("c", ProcessType.AGENT)
        table.kill_all()
        assert table.get_all_processes() == []


class TestTransitions:
    """Verify pause, resume, crash and priority through the table."""

    def test_pause_unknown(self) -> None:
        """Pausing an unknown pid is NotFound."""
        with pytest.raises(NotFoundError):
            _table().pause("ghost")

    def test_resume_running_conflicts(self) -> None:
        """Resuming a running process is a conflict."""
        table = _table()
        process = table.spawn("calc", ProcessType.APP)
        with pytest.raises(ConflictError):
            table.resume(process.pid)

    def test_crash_with_exception(self) -> None:
        """Crashing with an exception records its message and cause."""
        table = _table()
        process = table.spawn("calc", ProcessType.APP)
        try:
            try:
                _ = 1 / 0
            except ZeroDivisionError as inner:
                msg = "calculation failed"
                raise RuntimeError(msg) from inner
        except RuntimeError as error:
            table.crash(process.pid, error)
        info = process.metadata.crash_info
        assert process.status is ProcessStatus.CRASHED
        assert info is not None
        assert info.error == "calculation failed"
        assert info.cause is not None
        assert "ZeroDivisionError" in info.cause

    def test_crash_with_message(self) -> None:
        """Crashing with a string stores it as the error."""
        table = _table()
        process = table.spawn("calc", ProcessType.APP)
        table.crash(process.pid, "out of memory")
        assert process.metadata.crash_info is not None
        assert process.metadata.crash_info.error == "out of memory"

    def test_crashed_process_stays_listed(self) -> None:
        """A crashed process stays in the table until cleaned up."""
        table = _table()
        process = table.spawn("calc", ProcessType.APP)
        table.crash(process.pid)
        assert table.get_processes_by_status(ProcessStatus.CRASHED) == [process]

    def test_cleanup_crashed_processes(self) -> None:
        """Cleanup removes crashed processes from the table and the store."""
        store = _store()
        table = _table(store)
        crashed = table.spawn("bad", ProcessType.APP)
        healthy = table.spawn("good", ProcessType.APP)
        table.crash(crashed.pid)
        assert table.cleanup_crashed_processes() == 1
        assert table.get_all_processes() == [healthy]
        assert store.get(Collection.PROCESSES, crashed.pid) is None

    def test_set_priority_clamps_and_persists(self) -> None:
        """set_priority clamps to 0-10 and writes the record."""
        store = _store()
        table = _table(store)
        process = table.spawn("calc", ProcessType.APP)
        table.set_priority(process.pid, 99)
        record = store.get(Collection.PROCESSES, process.pid)
        assert record is not None
        assert record["priority"] == 10  # noqa: PLR2004


class TestObservers:
    """Verify event subscription."""

    def test_handlers_called_in_registration_order(self) -> None:
        """Handlers for one event run in the order they subscribed."""
        table = _table()
        calls: list[str] = []
        table.subscribe(ProcessEvent.SPAWN, lambda p: calls.append(f"first:{p.name}"))
        table.subscribe("spawn", lambda p: calls.append(f"second:{p.name}"))
        table.spawn("calc", ProcessType.APP)
        assert calls == ["first:calc", "second:calc"]

    def test_each_event_fires(self) -> None:
        """Pause, resume, crash and kill each notify their handlers."""
        table = _table()
        seen: list[ProcessEvent] = []
        for event in ProcessEvent:
            table.subscribe(event, lambda _p, e=event: seen.append(e))
        process = table.spawn("calc", ProcessType.APP)
        table.pause(process.pid)
        table.resume(process.pid)
        table.crash(process.pid)
        table.kill(process.pid)
        assert seen == [
            ProcessEvent.SPAWN,
            ProcessEvent.PAUSE,
            ProcessEvent.RESUME,
            ProcessEvent.CRASH,
            ProcessEvent.KILL,
        ]

    def test_unsubscribe(self) -> None:
        """An unsubscribed handler is no longer called."""
        table = _table()
        calls: list[str] = []

        def handler(process: Process) -> None:
            calls.append(process.name)

        table.subscribe(ProcessEvent.SPAWN, handler)
        table.unsubscribe(ProcessEvent.SPAWN, handler)
        table.unsubscribe(ProcessEvent.SPAWN, handler)
        table.spawn("calc", ProcessType.APP)
        assert calls == []

    def test_unknown_event_rejected(self) -> None:
        """Subscribing to an event that does not exist is an invalid argument."""
        table = _table()
        with pytest.raises(InvalidArgumentError, match="Unknown process event: reboot"):
            table.subscribe("reboot", lambda _p: None)
        with pytest.raises(InvalidArgumentError, match="Unknown process event: reboot"):
            table.unsubscribe("reboot", lambda _p: None)


class TestQueries:
    """Verify lookups and statistics."""

    def test_by_type_and_app_id(self) -> None:
        """Processes can be found by type and by owning app."""
        table = _table()
        app = table.spawn("calc", ProcessType.APP, {"app_id": "calc-app"})
        agent = table.spawn("helper", ProcessType.AGENT)
        assert table.get_processes_by_type(ProcessType.AGENT) == [agent]
        assert table.get_process_by_app_id("calc-app") is app

    def test_app_id_lookup_ignores_paused(self) -> None:
        """Only a running process counts for an app."""
        table = _table()
        app = table.spawn("calc", ProcessType.APP, {"app_id": "calc-app"})
        table.pause(app.pid)
        assert table.get_process_by_app_id("calc-app") is None

    def test_system_stats(self) -> None:
        """Stats count processes by status and sum simulated usage."""
        table = _table()
        a = table.spawn("a", ProcessType.APP)
        b = table.spawn("b", ProcessType.APP)
        table.spawn("c", ProcessType.APP)
        table.pause(a.pid)
        table.crash(b.pid)
        stats = table.get_system_stats()
        assert (stats.total, stats.running, stats.paused, stats.crashed) == (3, 1, 1, 1)
        expected_cpu = sum(p.cpu_usage for p in table.get_all_processes())
        assert stats.total_cpu == pytest.approx(expected_cpu)


class TestUsageRefresh:
    """Verify the simulated CPU and memory refresh."""

    def test_refresh_only_running(self) -> None:
        """Paused processes keep their old figures."""
        table = _table()
        running = table.spawn("a", ProcessType.APP)
        paused = table.spawn("b", ProcessType.APP)
        table.pause(paused.pid)
        paused_cpu = paused.cpu_usage
        assert table.refresh_usage() == 1
        assert paused.cpu_usage == paused_cpu
        assert running.cpu_usage > 0

    def test_refresh_within_bounds(self) -> None:
        """CPU is rand*20 + priority*2; memory is rand*100 + 50."""
        table = _table()
        process = table.spawn("a", ProcessType.APP)
        table.set_priority(process.pid, 10)
        table.refresh_usage(process.pid)
        assert 20 <= process.cpu_usage < 40  # noqa: PLR2004
        assert 50 <= process.memory_usage < 150  # noqa: PLR2004

    def test_refresh_gone_pid_is_silent(self) -> None:
        """Refreshing a pid that left the table does nothing."""
        table = _table()
        process = table.spawn("a", ProcessType.APP)
        table.kill(process.pid)
        assert table.refresh_usage(process.pid) == 0


class TestRestart:
    """Verify reclassification of processes lost in a restart."""

    def test_running_records_become_crashed(self) -> None:
        """A record left RUNNING is marked CRASHED by initialize()."""
        store = _store()
        before = _table(store)
        lost = before.spawn("editor", ProcessType.APP)
        paused = before.spawn("music", ProcessType.APP)
        before.pause(paused.pid)

        after = _table(store)
        reclassified = after.initialize()
        assert [p.pid for p in reclassified] == [lost.pid]
        record = store.get(Collection.PROCESSES, lost.pid)
        assert record is not None
        assert record["status"] == "crashed"
        assert record["metadata"]["crash_info"]["cause"] == "restart"
        paused_record = store.get(Collection.PROCESSES, paused.pid)
        assert paused_record is not None
        assert paused_record["status"] == "paused"

    def test_reclassified_records_are_not_live(self) -> None:
        """Reclassified records stay in the store only, not in the table."""
        store = _store()
        _table(store).spawn("editor", ProcessType.APP)
        after = _table(store)
        after.initialize()
        assert after.get_all_processes() == []

    def test_reclassification_is_logged(self) -> None:
        """Each lost process produces a warning."""
        store = _store()
        _table(store).spawn("editor", ProcessType.APP)
        logger = Logger()
        ProcessTable(store, logger=logger).initialize()
        warnings = logger.filter(min_level=LogLevel.WARNING, source="process")
        assert len(warnings) == 1
        assert "editor" in warnings[0].message
