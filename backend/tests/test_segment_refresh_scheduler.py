import asyncio
from types import SimpleNamespace

from segment_engine.services import segment_refresh_scheduler as scheduler
from segment_engine.services.segment_repository import SegmentRepository


def make_app():
    return SimpleNamespace(state=SimpleNamespace())


def test_seconds_until_is_within_a_day():
    seconds = scheduler._seconds_until(3, 0)

    assert 0 < seconds <= 24 * 3600


def test_env_bool(monkeypatch):
    monkeypatch.setenv("SEGMENTS_REFRESH_NIGHTLY_ENABLED", "Yes")
    assert scheduler._env_bool("SEGMENTS_REFRESH_NIGHTLY_ENABLED") is True

    monkeypatch.setenv("SEGMENTS_REFRESH_NIGHTLY_ENABLED", "off")
    assert scheduler._env_bool("SEGMENTS_REFRESH_NIGHTLY_ENABLED") is False


async def test_scheduler_disabled_by_default(monkeypatch):
    monkeypatch.delenv("SEGMENTS_REFRESH_NIGHTLY_ENABLED", raising=False)
    app = make_app()

    await scheduler.start_nightly_segment_refresh_scheduler(app)

    assert not hasattr(app.state, "nightly_segment_refresh_task")
    await scheduler.stop_nightly_segment_refresh_scheduler(app)


async def test_scheduler_start_and_stop(monkeypatch):
    monkeypatch.setenv("SEGMENTS_REFRESH_NIGHTLY_ENABLED", "true")
    app = make_app()

    await scheduler.start_nightly_segment_refresh_scheduler(app)
    task = app.state.nightly_segment_refresh_task
    assert not task.done()

    await scheduler.stop_nightly_segment_refresh_scheduler(app)
    assert task.done()


async def test_nightly_refresh_recomputes_active_segments(session_factory, add_customer):
    await add_customer("cus_a", ltv=1500, health=80)
    async with session_factory() as session:
        segment = await SegmentRepository(session).create(name="High LTV", criteria={"ltv_min": 1000})

    await scheduler.run_nightly_segment_refresh(session_factory)

    async with session_factory() as session:
        repo = SegmentRepository(session)
        assert await repo.list_member_ids(segment.id) == ["cus_a"]
        assert len(await repo.list_analytics(segment.id)) == 1


async def test_loop_runs_refresh_with_given_session_factory(monkeypatch):
    stop_event = asyncio.Event()
    calls = []

    async def fake_refresh(session_factory=None):
        calls.append(session_factory)
        stop_event.set()

    monkeypatch.setattr(scheduler, "MIN_WAIT_SECONDS", 0)
    monkeypatch.setattr(scheduler, "_seconds_until", lambda hour, minute: 0.01)
    monkeypatch.setattr(scheduler, "run_nightly_segment_refresh", fake_refresh)
    factory = object()

    await asyncio.wait_for(scheduler.nightly_segment_refresh_loop(stop_event, factory), timeout=5)

    assert calls == [factory]


async def test_loop_survives_failed_refresh(monkeypatch):
    stop_event = asyncio.Event()
    calls = []

    async def failing_refresh(session_factory=None):
        calls.append(session_factory)
        if len(calls) == 1:
            raise RuntimeError("database is down")
        stop_event.set()

    monkeypatch.setattr(scheduler, "MIN_WAIT_SECONDS", 0)
    monkeypatch.setattr(scheduler, "_seconds_until", lambda hour, minute: 0.01)
    monkeypatch.setattr(scheduler, "run_nightly_segment_refresh", failing_refresh)

    await asyncio.wait_for(scheduler.nightly_segment_refresh_loop(stop_event), timeout=5)

    assert len(calls) == 2


async def test_scheduler_uses_configured_time(monkeypatch):
    monkeypatch.setenv("SEGMENTS_REFRESH_NIGHTLY_ENABLED", "true")
    monkeypatch.setenv("SEGMENTS_REFRESH_NIGHTLY_HOUR", "4")
    monkeypatch.setenv("SEGMENTS_REFRESH_NIGHTLY_MINUTE", "30")
    requested = []

    def fake_seconds_until(hour, minute):
        requested.append((hour, minute))
        return 3600

    monkeypatch.setattr(scheduler, "_seconds_until", fake_seconds_until)
    app = make_app()

    await scheduler.start_nightly_segment_refresh_scheduler(app)
    await asyncio.sleep(0)
    await scheduler.stop_nightly_segment_refresh_scheduler(app)

    assert requested == [(4, 30)]
