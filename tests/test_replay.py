"""Tests for timed replay."""

import asyncio
import time

import pytest

from input_engine.config import EngineConfig
from input_engine.engine import InputEngine
from input_engine.errors import EngineError, ErrorType
from input_engine.events import EventDraft
from input_engine.filters import InputFilter
from input_engine.replay import ReplayStatus, clamp_speed
from input_engine.services import InMemoryTerminal


def make_engine(terminal=None):
    engine = InputEngine(terminal=terminal)
    engine.sessions.create("s1")
    engine.sessions.create("s2")
    return engine


def record(engine, keys, spacing=0.1, start=1000.0):
    rec = engine.recordings.start_recording("s1")
    for i, key in enumerate(keys):
        engine.ingress.enqueue(EventDraft(
            type="keyboard", payload={"key": key}, timestamp=start + i * spacing, session_id="s1",
        ))
    return engine.recordings.stop_recording(rec.id)


class TestReplayTiming:
    def test_replay_at_double_speed(self):
        async def run():
            engine = make_engine()
            rec = record(engine, "abc")

            arrivals = []
            engine.ingress.subscribe(
                lambda e: arrivals.append((time.monotonic(), e)) if e.session_id == "s2" else None
            )
            handle = engine.replays.replay(rec.id, "s2", speed=2.0)
            status = await handle.wait(timeout=5)
            return engine, handle, status, arrivals

        engine, handle, status, arrivals = asyncio.run(run())

        assert status == ReplayStatus.COMPLETED
        assert handle.schedule == pytest.approx([0.0, 0.05, 0.1])
        assert handle.events_emitted == 3
        assert [e.payload["key"] for _, e in arrivals] == ["a", "b", "c"]
        assert engine.terminal.written("s2") == b"abc"

        gaps = [b[0] - a[0] for a, b in zip(arrivals, arrivals[1:])]
        assert all(0.03 <= g <= 0.2 for g in gaps)

    def test_replayed_events_get_new_identity(self):
        async def run():
            engine = make_engine()
            rec = record(engine, "a")
            handle = engine.replays.replay(rec.id, "s2")
            await handle.wait(timeout=5)
            return engine, rec

        engine, rec = asyncio.run(run())
        history = engine.ingress.get_event_history()
        original, replayed = history[0], history[-1]
        assert replayed.session_id == "s2"
        assert replayed.id != original.id
        assert replayed.sequence > original.sequence
        assert rec.events[0].event.id == original.id

    def test_speed_is_clamped(self):
        assert clamp_speed(50) == 10.0
        assert clamp_speed(0.01) == 0.1
        assert clamp_speed(3) == 3.0

        async def run():
            engine = make_engine()
            rec = record(engine, "ab", spacing=1.0)
            handle = engine.replays.replay(rec.id, "s2", speed=50)
            await handle.wait(timeout=5)
            return handle

        handle = asyncio.run(run())
        assert handle.speed == 10.0
        assert handle.schedule == pytest.approx([0.0, 0.1])

    def test_empty_recording_completes(self):
        async def run():
            engine = make_engine()
            rec = record(engine, "")
            handle = engine.replays.replay(rec.id, "s2")
            return await handle.wait(timeout=5), handle

        status, handle = asyncio.run(run())
        assert status == ReplayStatus.COMPLETED
        assert handle.events_emitted == 0


class TestReplayFiltering:
    def replay_into_s2(self, engine, rec, speed=10.0):
        async def run():
            seen = []
            engine.ingress.subscribe(lambda e: seen.append(e) if e.session_id == "s2" else None)
            handle = engine.replays.replay(rec.id, "s2", speed=speed)
            return handle, await handle.wait(timeout=5), seen

        return asyncio.run(run())

    def test_block_filter_added_after_recording(self):
        engine = make_engine()
        rec = record(engine, "ab")
        engine.filters.add_filter(InputFilter.from_dict(
            {"id": "no_keys", "kind": "block", "condition": {"event_type": "keyboard"}}
        ))

        handle, status, seen = self.replay_into_s2(engine, rec)
        assert status == ReplayStatus.COMPLETED
        assert handle.events_emitted == 2
        assert seen == []
        assert engine.terminal.written("s2") == b""
        assert engine.ingress.get_analytics()["filtered_by"] == {"no_keys": 2}

    def test_rate_limited_events_never_reach_terminal(self):
        engine = make_engine()
        rec = record(engine, "abc")
        engine.filters.add_filter(InputFilter.from_dict(
            {"id": "slow", "kind": "rate_limit", "max_rate": 1, "condition": {"event_type": "keyboard"}}
        ))

        _, status, seen = self.replay_into_s2(engine, rec)
        assert status == ReplayStatus.COMPLETED
        assert [e.payload["key"] for e in seen] == ["a"]
        assert engine.terminal.written("s2") == b"a"

    def test_terminal_gets_modified_payload(self):
        engine = make_engine()
        rec = record(engine, "ab")
        engine.filters.add_filter(InputFilter.from_dict({
            "id": "remap", "kind": "modify",
            "condition": {"event_type": "keyboard"},
            "patch": {"set": {"key": "z"}},
        }))

        self.replay_into_s2(engine, rec)
        assert engine.terminal.written("s2") == b"zz"

    def test_loaded_recording_passes_security_filter(self, tmp_path):
        source = InputEngine(EngineConfig(default_filters=False))
        source.sessions.create("s1")
        rec = source.recordings.start_recording("s1")
        for key, modifiers in [("q", ["cmd"]), ("q", ["ctrl"])]:
            source.ingress.enqueue(EventDraft(
                type="keyboard", payload={"key": key, "modifiers": modifiers}, session_id="s1",
            ))
        source.recordings.stop_recording(rec.id)
        path = source.recordings.save(rec.id, tmp_path / "keys.json")

        engine = make_engine()
        loaded = engine.recordings.load(path)
        _, status, seen = self.replay_into_s2(engine, loaded)
        assert status == ReplayStatus.COMPLETED
        assert len(seen) == 1
        assert engine.terminal.written("s2") == b"\x11"
        assert engine.ingress.get_analytics()["filtered_by"] == {"security_filter": 1}


class TestReplayErrors:
    def test_open_recording(self):
        async def run():
            engine = make_engine()
            rec = engine.recordings.start_recording("s1")
            engine.replays.replay(rec.id, "s2")

        with pytest.raises(EngineError) as exc:
            asyncio.run(run())
        assert exc.value.type == ErrorType.RESOURCE_ERROR

    def test_unknown_recording(self):
        async def run():
            make_engine().replays.replay("rec_missing", "s2")

        with pytest.raises(EngineError) as exc:
            asyncio.run(run())
        assert exc.value.type == ErrorType.RESOURCE_ERROR

    def test_unknown_target_session(self):
        async def run():
            engine = make_engine()
            rec = record(engine, "a")
            engine.replays.replay(rec.id, "ghost")

        with pytest.raises(EngineError) as exc:
            asyncio.run(run())
        assert exc.value.type == ErrorType.SESSION_NOT_FOUND

    def test_terminal_failure_lands_on_handle(self):
        class BrokenTerminal(InMemoryTerminal):
            async def send_synthesized_input(self, session_id, data):
                raise RuntimeError("pty closed")

        async def run():
            engine = make_engine(BrokenTerminal())
            rec = record(engine, "ab")
            finished = []
            handle = engine.replays.replay(rec.id, "s2")
            handle.add_listener(finished.append)
            status = await handle.wait(timeout=5)
            return engine, handle, status, finished

        engine, handle, status, finished = asyncio.run(run())
        assert status == ReplayStatus.FAILED
        assert handle.error.type == ErrorType.COMMAND_FAILED
        assert "pty closed" in handle.error.message
        assert finished == [handle]
        assert engine.metrics.analytics()["replays"] == {"failed": 1}

    def test_wait_timeout(self):
        async def run():
            engine = make_engine()
            rec = record(engine, "ab", spacing=5.0)
            handle = engine.replays.replay(rec.id, "s2")
            try:
                await handle.wait(timeout=0.05)
            finally:
                engine.replays.cancel(handle.id)
                await handle.wait()

        with pytest.raises(EngineError) as exc:
            asyncio.run(run())
        assert exc.value.type == ErrorType.TIMEOUT_ERROR


class TestCancellation:
    def test_cancel_in_flight(self):
        async def run():
            engine = make_engine()
            rec = record(engine, "ab", spacing=1.0)
            handle = engine.replays.replay(rec.id, "s2")
            await asyncio.sleep(0.05)
            assert engine.replays.cancel(handle.id)
            status = await handle.wait(timeout=5)
            return engine, handle, status

        engine, handle, status = asyncio.run(run())
        assert status == ReplayStatus.CANCELLED
        assert handle.events_emitted == 1
        assert handle.finished_at is not None
        assert not engine.replays.cancel(handle.id)

    def test_cancel_before_start(self):
        async def run():
            engine = make_engine()
            rec = record(engine, "ab")
            handle = engine.replays.replay(rec.id, "s2")
            engine.replays.cancel(handle.id)
            return engine, handle, await handle.wait(timeout=5)

        engine, handle, status = asyncio.run(run())
        assert status == ReplayStatus.CANCELLED
        assert handle.events_emitted == 0
        assert engine.metrics.analytics()["replays"] == {"cancelled": 1}

    def test_clear_and_shutdown(self):
        async def run():
            engine = make_engine()
            rec = record(engine, "ab", spacing=2.0)
            handles = [engine.replays.replay(rec.id, "s2") for _ in range(2)]
            await asyncio.sleep(0)
            await engine.shutdown()
            return handles

        handles = asyncio.run(run())
        assert [h.status for h in handles] == [ReplayStatus.CANCELLED] * 2

    def test_unknown_replay_id(self):
        engine = make_engine()
        with pytest.raises(EngineError) as exc:
            engine.replays.cancel("replay_missing")
        assert exc.value.type == ErrorType.RESOURCE_ERROR
        assert engine.replays.get_status("replay_missing") is None


class TestReplayHistory:
    def test_finished_replays_are_evicted_in_batches(self):
        async def run():
            engine = InputEngine(EngineConfig(replay_history_limit=4))
            engine.sessions.create("s1")
            engine.sessions.create("s2")
            rec = record(engine, "")
            handles = []
            for _ in range(5):
                handle = engine.replays.replay(rec.id, "s2")
                handles.append(handle)
                await handle.wait(timeout=5)
            return engine, handles

        engine, handles = asyncio.run(run())
        kept = [h.id for h in engine.replays.list_replays()]
        assert kept == [h.id for h in handles[2:]]
        assert engine.replays.get_status(handles[0].id) is None

    def test_running_replays_are_never_evicted(self):
        async def run():
            engine = InputEngine(EngineConfig(replay_history_limit=1))
            engine.sessions.create("s1")
            engine.sessions.create("s2")
            rec = record(engine, "ab", spacing=2.0)
            handles = [engine.replays.replay(rec.id, "s2") for _ in range(3)]
            kept = [h.id for h in engine.replays.list_replays()]
            await engine.shutdown()
            return handles, kept

        handles, kept = asyncio.run(run())
        assert kept == [h.id for h in handles]

    def test_invalid_limit(self):
        with pytest.raises(EngineError) as exc:
            InputEngine(EngineConfig(replay_history_limit=0))
        assert exc.value.type == ErrorType.PARSING_ERROR
