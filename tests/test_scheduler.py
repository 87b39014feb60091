from __future__ import annotations

import asyncio

import numpy as np
import pytest

from fakes import FakeCamera, FakeService, ManualTicker, make_frame, open_gate, settle
from live_composite.errors import MaskUnavailable
from live_composite.readiness import Readiness
from live_composite.scheduler import FrameScheduler, IntervalTicker


def _build(service=None, camera=None, timeout_s=1.0, sink=None):
    readiness = Readiness()
    ticker = ManualTicker()
    drawn = []
    scheduler = FrameScheduler(
        readiness=readiness,
        service=service or FakeService(),
        camera=camera or FakeCamera(make_frame()),
        sink=sink or drawn.append,
        ticker=ticker,
        inference_timeout_s=timeout_s,
    )
    return readiness, ticker, scheduler, drawn


@pytest.mark.asyncio
async def test_open_gate_draws_one_frame_per_tick():
    frame = make_frame()
    readiness, ticker, scheduler, drawn = _build(camera=FakeCamera(frame))
    open_gate(readiness)
    assert scheduler.running
    ticker.tick()
    await settle()
    await scheduler.wait_idle()
    assert len(drawn) == 1
    # all-foreground mask, no enhancement: output is the frame itself
    np.testing.assert_array_equal(drawn[0], frame)
    assert scheduler.last_output is drawn[0]
    assert scheduler.stats.frames_drawn == 1
    assert scheduler.stats.last_timings is not None

    ticker.tick()
    await settle()
    assert len(drawn) == 2
    await scheduler.close()


@pytest.mark.asyncio
async def test_closed_gate_runs_nothing():
    service = FakeService()
    readiness, ticker, scheduler, drawn = _build(service=service)
    readiness.begin_model_load()
    readiness.model_ready()
    readiness.camera_started()
    ticker.tick(3)
    await settle()
    assert not scheduler.running
    assert service.calls == 0
    assert drawn == []
    await scheduler.close()


@pytest.mark.asyncio
async def test_arms_on_construction_when_gate_already_open():
    readiness = Readiness()
    open_gate(readiness)
    ticker = ManualTicker()
    drawn = []
    scheduler = FrameScheduler(readiness, FakeService(), FakeCamera(make_frame()), drawn.append, ticker=ticker)
    assert scheduler.running
    ticker.tick()
    await settle()
    assert len(drawn) == 1
    await scheduler.close()


@pytest.mark.asyncio
async def test_unavailable_mask_skips_frame_and_keeps_last_output():
    service = FakeService(script=[np.ones((3, 4), dtype=np.float32), MaskUnavailable("no person")])
    readiness, ticker, scheduler, drawn = _build(service=service)
    open_gate(readiness)
    ticker.tick()
    await settle()
    first = scheduler.last_output
    assert first is not None

    ticker.tick()
    await settle()
    assert len(drawn) == 1
    assert scheduler.last_output is first
    assert scheduler.stats.cycles_skipped == 1
    assert scheduler.running

    ticker.tick()
    await settle()
    assert len(drawn) == 2
    await scheduler.close()


@pytest.mark.asyncio
async def test_result_dropped_when_gate_closes_mid_flight():
    pending = asyncio.get_running_loop().create_future()
    service = FakeService(script=[pending])
    readiness, ticker, scheduler, drawn = _build(service=service)
    open_gate(readiness)
    ticker.tick()
    await settle()
    assert service.calls == 1

    readiness.set_run_requested(False)
    pending.set_result(np.ones((6, 8), dtype=np.float32))
    await settle()
    assert drawn == []
    assert scheduler.stats.results_dropped == 1

    # reopening starts a fresh generation that draws again
    readiness.set_run_requested(True)
    ticker.tick()
    await settle()
    assert len(drawn) == 1
    await scheduler.close()


@pytest.mark.asyncio
async def test_result_from_previous_run_dropped_after_quick_reopen():
    pending = asyncio.get_running_loop().create_future()
    service = FakeService(script=[pending])
    readiness, ticker, scheduler, drawn = _build(service=service)
    open_gate(readiness)
    ticker.tick()
    await settle()
    gen = scheduler.generation

    readiness.set_run_requested(False)
    readiness.set_run_requested(True)
    assert scheduler.generation == gen + 2
    pending.set_result(np.ones((6, 8), dtype=np.float32))
    await settle()
    assert drawn == []
    assert scheduler.stats.results_dropped == 1
    await scheduler.close()


@pytest.mark.asyncio
async def test_single_flight_skips_busy_ticks():
    pending = asyncio.get_running_loop().create_future()
    service = FakeService(script=[pending])
    readiness, ticker, scheduler, drawn = _build(service=service)
    open_gate(readiness)
    ticker.tick(3)
    await settle()
    assert service.calls == 1
    assert scheduler.stats.busy_ticks == 2

    pending.set_result(np.ones((6, 8), dtype=np.float32))
    await settle()
    assert len(drawn) == 1
    await scheduler.close()


@pytest.mark.asyncio
async def test_inference_timeout_skips_frame_and_exits_scope():
    never = asyncio.get_running_loop().create_future()
    service = FakeService(script=[never])
    readiness, ticker, scheduler, drawn = _build(service=service, timeout_s=0.05)
    open_gate(readiness)
    ticker.tick()
    await settle()
    await asyncio.wait_for(scheduler.wait_idle(), timeout=2.0)
    assert drawn == []
    assert scheduler.stats.cycles_skipped == 1
    assert service.scope_enters == service.scope_exits == 1

    ticker.tick()
    await settle()
    assert len(drawn) == 1
    await scheduler.close()


@pytest.mark.asyncio
async def test_unexpected_error_is_contained():
    service = FakeService(script=[RuntimeError("boom")])
    readiness, ticker, scheduler, drawn = _build(service=service)
    open_gate(readiness)
    ticker.tick()
    await settle()
    assert drawn == []
    assert scheduler.stats.cycles_skipped == 1
    assert scheduler.running
    await scheduler.close()


@pytest.mark.asyncio
async def test_sink_failure_keeps_loop_alive():
    calls = []

    def flaky_sink(out):
        calls.append(out)
        if len(calls) == 1:
            raise RuntimeError("window gone")

    readiness, ticker, scheduler, _ = _build(sink=flaky_sink)
    open_gate(readiness)
    ticker.tick()
    await settle()
    assert scheduler.last_output is None
    ticker.tick()
    await settle()
    assert len(calls) == 2
    assert scheduler.last_output is calls[1]
    await scheduler.close()


@pytest.mark.asyncio
async def test_missing_camera_frame_is_skipped():
    service = FakeService()
    readiness, ticker, scheduler, drawn = _build(service=service, camera=FakeCamera(None))
    open_gate(readiness)
    ticker.tick()
    await settle()
    assert service.calls == 0
    assert scheduler.stats.cycles_skipped == 1
    await scheduler.close()


@pytest.mark.asyncio
async def test_close_releases_once_and_drops_in_flight_result():
    pending = asyncio.get_running_loop().create_future()
    service = FakeService(script=[pending])
    camera = FakeCamera(make_frame())
    readiness, ticker, scheduler, drawn = _build(service=service, camera=camera)
    open_gate(readiness)
    ticker.tick()
    await settle()

    await scheduler.close()
    await scheduler.close()
    assert scheduler.closed
    assert camera.stop_calls == 1
    assert service.dispose_calls == 1
    assert service.scope_exits == 1

    # later readiness changes do not restart anything
    readiness.set_run_requested(False)
    readiness.set_run_requested(True)
    ticker.tick()
    await settle()
    assert not scheduler.running
    assert drawn == []


@pytest.mark.asyncio
async def test_interval_ticker_waits_one_interval():
    ticker = IntervalTicker(hz=50.0)
    loop = asyncio.get_running_loop()
    t0 = loop.time()
    await ticker()
    await ticker()
    assert loop.time() - t0 >= 0.035


@pytest.mark.asyncio
async def test_interval_ticker_fires_overdue_tick_immediately():
    ticker = IntervalTicker(hz=10.0)
    loop = asyncio.get_running_loop()
    await ticker()
    # overrun by three intervals
    await asyncio.sleep(0.3)

    t0 = loop.time()
    await ticker()
    assert loop.time() - t0 < 0.05

    # the schedule restarts from the late tick
    t1 = loop.time()
    await ticker()
    assert loop.time() - t1 >= 0.08
