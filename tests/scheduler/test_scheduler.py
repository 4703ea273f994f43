"""Tests for NightShiftScheduler: tick state machine, host events, persistence, loop."""

import asyncio
import threading
import time
import pytest
from datetime import datetime, timedelta, timezone

from nightshift.config.loader import load_config
from nightshift.scheduler.exceptions import (
    InvalidAgentIdError,
    TaskPaused,
    UnknownTimezoneError,
)
from nightshift.scheduler.executor import TaskOutcome
from nightshift.scheduler.models import Task
from nightshift.scheduler.scheduler import NightShiftScheduler
from nightshift.scheduler.store import InMemoryStateStore, JsonFileStateStore, StateStore


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class BrokenStore(StateStore):
    async def load(self, agent_id):
        raise OSError("disk on fire")

    async def save(self, agent_id, record):
        raise OSError("disk on fire")


def _at(hour: int, minute: int = 0, day: int = 10) -> datetime:
    return datetime(2025, 3, day, hour, minute, tzinfo=timezone.utc)


def _config(**overrides):
    base = {"schedule": {"defaultOfficeHours": {"timezone": "UTC"}}}
    for key, value in overrides.items():
        base[key] = {**base.get(key, {}), **value}
    return load_config(overrides=base)


@pytest.fixture
def clock():
    return FakeClock(_at(23, 0))


@pytest.fixture
def store():
    return InMemoryStateStore()


@pytest.fixture
def scheduler(clock, store):
    return NightShiftScheduler(_config(), store=store, clock=clock)


def _recorder(calls: list, fail: bool = False):
    async def run(task, ctx):
        calls.append(task.id)
        if fail:
            raise RuntimeError("runner exploded")

    return run


class TestTickGates:
    @pytest.mark.asyncio
    async def test_runs_highest_priority_first(self, scheduler):
        calls = []
        scheduler.register_task_runner("A", _recorder(calls))
        scheduler.register_task_runner("B", _recorder(calls))
        await scheduler.queue_task("main", {"id": "b", "type": "B", "priority": 10})
        await scheduler.queue_task("main", {"id": "a", "type": "A", "priority": 50})

        assert await scheduler.tick("main") == TaskOutcome.SUCCEEDED
        assert await scheduler.tick("main") == TaskOutcome.SUCCEEDED
        assert calls == ["a", "b"]

        state = await scheduler.get_agent_state("main")
        assert state.processed_tonight == {"A": 1, "B": 1}
        assert state.cycles_this_night == 2
        assert not state.is_processing
        assert state.current_task is None

    @pytest.mark.asyncio
    async def test_closed_window_runs_nothing(self, scheduler, clock):
        calls = []
        scheduler.register_task_runner("A", _recorder(calls))
        await scheduler.queue_task("main", {"type": "A"})
        clock.now = _at(12, 0)
        assert await scheduler.tick("main") is None
        assert calls == []

    @pytest.mark.asyncio
    async def test_user_active_blocks(self, scheduler, clock):
        calls = []
        scheduler.register_task_runner("A", _recorder(calls))
        await scheduler.queue_task("main", {"type": "A"})
        await scheduler.on_before_agent_start("main")

        clock.advance(minutes=4)
        assert await scheduler.tick("main") is None
        clock.advance(minutes=1)
        assert await scheduler.tick("main") == TaskOutcome.SUCCEEDED
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_max_cycles(self, clock, store):
        scheduler = NightShiftScheduler(
            _config(processing={"maxCyclesPerNight": 1}), store=store, clock=clock
        )
        calls = []
        scheduler.register_task_runner("A", _recorder(calls))
        await scheduler.queue_task("main", {"type": "A"})
        await scheduler.queue_task("main", {"type": "A"})

        assert await scheduler.tick("main") == TaskOutcome.SUCCEEDED
        assert await scheduler.tick("main") is None
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_per_type_cap_drops_task(self, clock, store):
        scheduler = NightShiftScheduler(
            _config(tasks={"A": {"maxPerNight": 1}}), store=store, clock=clock
        )
        calls = []
        scheduler.register_task_runner("A", _recorder(calls))
        await scheduler.queue_task("main", {"id": "first", "type": "A"})
        await scheduler.queue_task("main", {"id": "second", "type": "A"})

        assert await scheduler.tick("main") == TaskOutcome.SUCCEEDED
        assert await scheduler.tick("main") == TaskOutcome.DROPPED
        state = await scheduler.get_agent_state("main")
        assert calls == ["first"]
        assert len(state.task_queue) == 0
        assert state.cycles_this_night == 1

    @pytest.mark.asyncio
    async def test_disabled_scheduler_never_runs(self, clock, store):
        config = load_config(
            overrides={"enabled": False, "schedule": {"defaultOfficeHours": {"timezone": "UTC"}}}
        )
        scheduler = NightShiftScheduler(config, store=store, clock=clock)
        calls = []
        scheduler.register_task_runner("A", _recorder(calls))
        await scheduler.queue_task("main", {"type": "A"})
        assert await scheduler.tick("main") is None
        assert calls == []

    @pytest.mark.asyncio
    async def test_single_flight(self, scheduler):
        started = asyncio.Event()
        release = asyncio.Event()
        calls = []

        async def slow(task, ctx):
            calls.append(task.id)
            started.set()
            await release.wait()

        scheduler.register_task_runner("A", slow)
        await scheduler.queue_task("main", {"id": "one", "type": "A"})
        await scheduler.queue_task("main", {"id": "two", "type": "A"})

        first = asyncio.create_task(scheduler.tick("main"))
        await started.wait()
        assert await scheduler.tick("main") is None

        state = await scheduler.get_agent_state("main")
        assert state.is_processing
        assert state.current_task.id == "one"
        assert state.current_task not in state.task_queue

        release.set()
        assert await first == TaskOutcome.SUCCEEDED
        assert calls == ["one"]

    @pytest.mark.asyncio
    async def test_disabled_type_is_dropped(self, clock, store):
        scheduler = NightShiftScheduler(
            _config(tasks={"A": {"enabled": False}}), store=store, clock=clock
        )
        calls = []
        scheduler.register_task_runner("A", _recorder(calls))
        scheduler.register_task_runner("B", _recorder(calls))
        await scheduler.queue_task("main", {"id": "off", "type": "A", "priority": 5})
        await scheduler.queue_task("main", {"id": "on", "type": "B", "priority": 1})

        assert await scheduler.tick("main") == TaskOutcome.DROPPED
        state = await scheduler.get_agent_state("main")
        assert calls == []
        assert [t.id for t in state.task_queue] == ["on"]
        assert state.cycles_this_night == 0

        assert await scheduler.tick("main") == TaskOutcome.SUCCEEDED
        assert calls == ["on"]
        assert state.cycles_this_night == 1


class TestFailures:
    @pytest.mark.asyncio
    async def test_retry_then_abandon(self, scheduler):
        calls = []
        scheduler.register_task_runner("A", _recorder(calls, fail=True))
        task_id = await scheduler.queue_task("main", {"type": "A"})
        state = await scheduler.get_agent_state("main")

        assert await scheduler.tick("main") == TaskOutcome.FAILED
        queued = list(state.task_queue)
        assert [t.id for t in queued] == [task_id]
        assert queued[0].attempts == 1

        assert await scheduler.tick("main") == TaskOutcome.FAILED
        assert list(state.task_queue)[0].attempts == 2

        assert await scheduler.tick("main") == TaskOutcome.FAILED
        assert len(state.task_queue) == 0
        assert await scheduler.tick("main") is None
        assert calls == [task_id] * 3
        assert state.cycles_this_night == 3
        assert state.processed_tonight == {}

    @pytest.mark.asyncio
    async def test_failed_task_loses_priority(self, scheduler):
        calls = []
        failed_once = []

        async def flaky(task, ctx):
            calls.append(task.id)
            if task.id == "high" and not failed_once:
                failed_once.append(True)
                raise RuntimeError("first run fails")

        scheduler.register_task_runner("A", flaky)
        await scheduler.queue_task("main", {"id": "high", "type": "A", "priority": 50})
        await scheduler.queue_task("main", {"id": "low", "type": "A", "priority": 10})

        for _ in range(3):
            await scheduler.tick("main")
        assert calls == ["high", "low", "high"]

    @pytest.mark.asyncio
    async def test_missing_runner_consumes_task(self, scheduler):
        await scheduler.queue_task("main", {"type": "unregistered"})
        assert await scheduler.tick("main") == TaskOutcome.NO_RUNNER
        state = await scheduler.get_agent_state("main")
        assert len(state.task_queue) == 0
        assert state.cycles_this_night == 1

    @pytest.mark.asyncio
    async def test_sync_runner_supported(self, scheduler):
        calls = []

        def sync_runner(task, ctx):
            calls.append((task.id, ctx.agent_id))

        scheduler.register_task_runner("A", sync_runner)
        await scheduler.queue_task("helper", {"id": "t", "type": "A"})
        assert await scheduler.tick("helper") == TaskOutcome.SUCCEEDED
        assert calls == [("t", "helper")]


class TestPauseResume:
    @pytest.mark.asyncio
    async def test_interruption_flags_running_task(self, scheduler, clock):
        started = asyncio.Event()
        seen = {}

        async def cooperative(task, ctx):
            started.set()
            await ctx.pause_signal.wait()
            seen["paused"] = task.paused
            seen["paused_at"] = task.paused_at
            raise TaskPaused(task.id)

        scheduler.register_task_runner("A", cooperative)
        await scheduler.queue_task("main", {"id": "t1", "type": "A"})

        running = asyncio.create_task(scheduler.tick("main"))
        await started.wait()
        await scheduler.on_before_agent_start("main")

        assert await running == TaskOutcome.PAUSED
        assert seen == {"paused": True, "paused_at": clock.now}

        state = await scheduler.get_agent_state("main")
        assert state.last_user_activity == clock.now
        requeued = list(state.task_queue)
        assert [t.id for t in requeued] == ["t1"]
        assert requeued[0].attempts == 0
        assert state.processed_tonight == {}
        assert state.cycles_this_night == 1

    @pytest.mark.asyncio
    async def test_paused_task_resumes_unpaused(self, scheduler, clock):
        seen = []

        async def runner(task, ctx):
            seen.append(ctx.paused)

        scheduler.register_task_runner("A", runner)
        task = Task(id="t1", type="A")
        task.pause(clock.now)
        await scheduler.queue_task("main", task)

        assert await scheduler.tick("main") == TaskOutcome.SUCCEEDED
        assert seen == [False]
        assert not task.paused

    @pytest.mark.asyncio
    async def test_interruption_without_running_task(self, scheduler, clock):
        await scheduler.on_before_agent_start("main")
        state = await scheduler.get_agent_state("main")
        assert state.last_user_activity == clock.now
        assert state.current_task is None


    @pytest.mark.asyncio
    async def test_sync_runner_observes_pause_without_blocking_others(self, scheduler):
        started = threading.Event()
        outcomes = []
        other_calls = []

        def polling(task, ctx):
            started.set()
            for _ in range(200):
                if ctx.paused:
                    outcomes.append("paused")
                    raise TaskPaused(task.id)
                time.sleep(0.01)
            outcomes.append("ran_to_completion")

        scheduler.register_task_runner("slow", polling)
        scheduler.register_task_runner("quick", _recorder(other_calls))
        await scheduler.queue_task("main", {"id": "m", "type": "slow"})
        await scheduler.queue_task("other", {"id": "o", "type": "quick"})

        running = asyncio.create_task(scheduler.tick("main"))
        assert await asyncio.to_thread(started.wait, 2)

        outcome = await asyncio.wait_for(scheduler.tick("other"), timeout=1)
        assert outcome == TaskOutcome.SUCCEEDED
        assert other_calls == ["o"]

        await scheduler.on_before_agent_start("main")
        assert await asyncio.wait_for(running, timeout=3) == TaskOutcome.PAUSED
        assert outcomes == ["paused"]

        state = await scheduler.get_agent_state("main")
        assert [t.id for t in state.task_queue] == ["m"]


class TestHostEvents:
    @pytest.mark.asyncio
    async def test_good_night_opens_window_after_buffer(self, clock, store):
        scheduler = NightShiftScheduler(
            _config(schedule={"defaultOfficeHours": {"start": "23:30", "timezone": "UTC"}}),
            store=store,
            clock=clock,
        )
        clock.now = _at(22, 0)
        await scheduler.on_agent_end("main", [{"role": "user", "content": "Good night!"}])
        state = await scheduler.get_agent_state("main")
        assert state.good_night_time == _at(22, 0)

        clock.now = _at(22, 25)
        assert not await scheduler.is_in_office_hours("main")
        clock.now = _at(22, 31)
        assert await scheduler.is_in_office_hours("main")

    @pytest.mark.asyncio
    async def test_good_night_resets_counters(self, scheduler):
        state = await scheduler.get_agent_state("main")
        state.cycles_this_night = 7
        state.processed_tonight = {"A": 3}
        await scheduler.on_agent_end(
            "main",
            [{"role": "user", "content": [{"type": "text", "text": "going to bed"}]}],
        )
        assert state.cycles_this_night == 0
        assert state.processed_tonight == {}

    @pytest.mark.asyncio
    async def test_morning_clears_trigger(self, scheduler, clock):
        await scheduler.on_agent_end("main", [{"role": "user", "content": "good night"}])
        clock.advance(hours=1)
        await scheduler.on_agent_end("main", [{"role": "user", "content": "Good morning"}])
        state = await scheduler.get_agent_state("main")
        assert state.good_night_time is None
        assert state.last_morning_greeting == clock.now
        assert state.last_user_activity == clock.now

    @pytest.mark.asyncio
    async def test_on_agent_end_persists(self, scheduler, store, clock):
        await scheduler.on_agent_end("main", [{"role": "user", "content": "hello"}])
        record = await store.load("main")
        assert record["lastUserActivity"] == clock.now.isoformat()
        assert record["goodNightTime"] is None
        assert record["savedAt"] == clock.now.isoformat()

    @pytest.mark.asyncio
    async def test_heartbeat_is_tick(self, scheduler):
        calls = []
        scheduler.register_task_runner("A", _recorder(calls))
        await scheduler.queue_task("main", {"id": "t", "type": "A"})
        assert await scheduler.on_heartbeat("main") == TaskOutcome.SUCCEEDED
        assert calls == ["t"]


class TestStateAndQueries:
    @pytest.mark.asyncio
    async def test_lazy_creation_and_default_id(self, scheduler):
        state = await scheduler.get_agent_state(None)
        assert state.agent_id == "main"
        assert await scheduler.get_agent_state("main") is state
        assert scheduler.agent_ids() == ["main"]

    @pytest.mark.asyncio
    async def test_invalid_agent_id(self, scheduler):
        with pytest.raises(InvalidAgentIdError):
            await scheduler.queue_task("../escape", {"type": "A"})

    @pytest.mark.asyncio
    async def test_queue_task_uses_configured_priority(self, scheduler):
        await scheduler.queue_task("main", {"id": "m", "type": "metabolism"})
        await scheduler.queue_task("main", {"id": "c", "type": "contemplation"})
        state = await scheduler.get_agent_state("main")
        assert [(t.id, t.priority) for t in state.task_queue] == [("c", 50), ("m", 10)]

    @pytest.mark.asyncio
    async def test_set_timezone(self, scheduler, store):
        assert await scheduler.set_timezone("main", "Europe/Berlin") == "Europe/Berlin"
        assert (await store.load("main"))["timezone"] == "Europe/Berlin"
        assert await scheduler.set_timezone("main", None) == "UTC"
        with pytest.raises(UnknownTimezoneError):
            await scheduler.set_timezone("main", "Nowhere/Special")

    @pytest.mark.asyncio
    async def test_snapshot(self, scheduler):
        await scheduler.queue_task("main", {"type": "contemplation", "secret": "x" * 100})
        snap = await scheduler.snapshot("main")
        assert snap["agent_id"] == "main"
        assert snap["is_in_office_hours"] is True
        assert snap["is_user_active"] is False
        assert snap["queued_tasks"] == 1
        assert snap["current_task"] is None
        assert snap["timezone"] == "UTC"


    @pytest.mark.asyncio
    async def test_snapshot_reports_running_task_without_payload(self, scheduler):
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow(task, ctx):
            started.set()
            await release.wait()

        scheduler.register_task_runner("contemplation", slow)
        await scheduler.queue_task("main", {"id": "t1", "type": "contemplation", "secret": "x"})
        running = asyncio.create_task(scheduler.tick("main"))
        await started.wait()

        snap = await scheduler.snapshot("main")
        assert snap["is_processing"] is True
        assert snap["current_task"]["id"] == "t1"
        assert snap["current_task"]["priority"] == 50
        assert "secret" not in snap["current_task"]

        release.set()
        assert await running == TaskOutcome.SUCCEEDED

    @pytest.mark.asyncio
    async def test_slow_load_does_not_delay_other_agents(self, clock):
        release = asyncio.Event()

        class SlowStore(InMemoryStateStore):
            async def load(self, agent_id):
                if agent_id == "slow":
                    await release.wait()
                return await super().load(agent_id)

        scheduler = NightShiftScheduler(_config(), store=SlowStore(), clock=clock)
        first = asyncio.create_task(scheduler.get_agent_state("slow"))
        second = asyncio.create_task(scheduler.get_agent_state("slow"))
        await asyncio.sleep(0)

        fast = await asyncio.wait_for(scheduler.get_agent_state("fast"), timeout=1)
        assert fast.agent_id == "fast"
        assert not first.done()

        release.set()
        assert await first is await second
        assert sorted(scheduler.agent_ids()) == ["fast", "slow"]


class TestPersistence:
    @pytest.mark.asyncio
    async def test_state_survives_restart(self, clock, store):
        first = NightShiftScheduler(_config(), store=store, clock=clock)
        await first.on_agent_end("main", [{"role": "user", "content": "good night"}])
        await first.queue_task("main", {"type": "A"})

        second = NightShiftScheduler(_config(), store=store, clock=clock)
        state = await second.get_agent_state("main")
        assert state.good_night_time == clock.now
        assert state.last_user_activity == clock.now
        assert len(state.task_queue) == 0

    @pytest.mark.asyncio
    async def test_corrupted_json_falls_back_to_defaults(self, tmp_path, clock):
        (tmp_path / "state.json").write_text("{definitely not json", encoding="utf-8")
        scheduler = NightShiftScheduler(
            _config(), store=JsonFileStateStore(tmp_path), clock=clock
        )
        state = await scheduler.get_agent_state("main")
        assert state.good_night_time is None
        assert state.last_user_activity is None
        assert state.last_morning_greeting is None
        assert state.processed_tonight == {}
        assert state.timezone == "UTC"

    @pytest.mark.asyncio
    async def test_non_object_record_falls_back(self, tmp_path, clock):
        (tmp_path / "state.json").write_text("[1, 2, 3]", encoding="utf-8")
        scheduler = NightShiftScheduler(
            _config(), store=JsonFileStateStore(tmp_path), clock=clock
        )
        state = await scheduler.get_agent_state("main")
        assert state.processed_tonight == {}

    @pytest.mark.asyncio
    async def test_store_failures_never_raise(self, clock):
        scheduler = NightShiftScheduler(_config(), store=BrokenStore(), clock=clock)
        calls = []
        scheduler.register_task_runner("A", _recorder(calls))
        await scheduler.queue_task("main", {"type": "A"})
        await scheduler.on_agent_end("main", [{"role": "user", "content": "hi"}])
        clock.advance(minutes=10)
        assert await scheduler.tick("main") == TaskOutcome.SUCCEEDED
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_legacy_epoch_millis_record(self, clock, store):
        await store.save(
            "main",
            {"goodNightTime": int(_at(22, 0).timestamp() * 1000), "timezone": "UTC"},
        )
        scheduler = NightShiftScheduler(_config(), store=store, clock=clock)
        state = await scheduler.get_agent_state("main")
        assert state.good_night_time == _at(22, 0)


class TestLoop:
    @pytest.mark.asyncio
    async def test_loop_ticks_known_agents(self, clock, store):
        scheduler = NightShiftScheduler(
            _config(processing={"tickIntervalSeconds": 0.01}), store=store, clock=clock
        )
        done = asyncio.Event()
        calls = []

        async def runner(task, ctx):
            calls.append((ctx.agent_id, task.id))
            if len(calls) == 2:
                done.set()

        scheduler.register_task_runner("A", runner)
        await scheduler.queue_task("main", {"id": "m", "type": "A"})
        await scheduler.queue_task("helper", {"id": "h", "type": "A"})

        async with scheduler:
            assert scheduler.is_running
            await asyncio.wait_for(done.wait(), timeout=2)

        assert not scheduler.is_running
        assert sorted(calls) == [("helper", "h"), ("main", "m")]

    @pytest.mark.asyncio
    async def test_stop_cancels_after_grace(self, clock, store):
        scheduler = NightShiftScheduler(
            _config(processing={"tickIntervalSeconds": 0.01, "shutdownGraceSeconds": 0.05}),
            store=store,
            clock=clock,
        )
        started = asyncio.Event()
        cancelled = []

        async def stuck(task, ctx):
            started.set()
            try:
                await asyncio.sleep(60)
            except asyncio.CancelledError:
                cancelled.append(task.id)
                raise

        scheduler.register_task_runner("A", stuck)
        await scheduler.queue_task("main", {"id": "stuck", "type": "A"})
        await scheduler.start()
        await asyncio.wait_for(started.wait(), timeout=2)
        await scheduler.stop()

        assert cancelled == ["stuck"]
        state = await scheduler.get_agent_state("main")
        assert not state.is_processing
