"""
Tests for the scan loop: FFC gating, per-tick processing, error handling
and fixed-cadence scheduling.
"""
import asyncio

import numpy as np
import pytest

from conftest import FakeCamera, make_frame, metadata
from screening.controller import ScanLoop, needs_ffc_wait
from screening.mapper import Classification
from screening.source import AcquisitionError, FrameDecodeError
from screening.state import CalibrationState, Mode


class TestFfcGate:

    def test_settled_camera(self):
        assert not needs_ffc_wait(metadata("complete", 70_000_000_000, 0))

    def test_recent_ffc(self):
        assert needs_ffc_wait(metadata("complete", 50_000_000_000, 0))

    @pytest.mark.parametrize("time_on", [0, 70_000_000_000, 10**15])
    def test_ffc_in_progress(self, time_on):
        assert needs_ffc_wait(metadata("pending", time_on, 0))

    def test_custom_cooldown(self):
        assert not needs_ffc_wait(metadata("complete", 50_000_000_000, 0), cooldown_ns=30_000_000_000)


def test_process_calibrate_then_scan():
    state = CalibrationState()
    state.startup()
    loop = ScanLoop(FakeCamera(), state)

    cal = loop.process(make_frame(900, 1000))
    assert state.reference_raw_value == 1000
    assert cal.temperature_text is None
    assert cal.classification is None

    state.set_calibrate_temperature(36.0)
    state.start_scan()
    scan = loop.process(make_frame(900, 1300))
    assert scan.mapping.temperature_c == pytest.approx(39.0)
    assert scan.classification is Classification.CHECK
    assert scan.temperature_text == "39.0° C"
    assert state.reference_raw_value == 1000
    # hottest pixel sits between check (1200) and fever (1400) thresholds
    assert tuple(scan.rgba[-1, -1, :2]) == (192, 192)


def test_tick_success():
    camera = FakeCamera(meta=metadata("complete", 50_000_000_000, 0))
    state = CalibrationState(mode=Mode.CALIBRATE)
    loop = ScanLoop(camera, state)
    result = asyncio.run(loop.tick())
    assert result is loop.latest
    assert result.ffc_wait is True
    assert loop.ffc_wait is True
    assert state.reference_raw_value == 2000


@pytest.mark.parametrize("error", [AcquisitionError("down"), FrameDecodeError("bad png"), RuntimeError("boom")])
def test_tick_failure_skips_cycle(error):
    loop = ScanLoop(FakeCamera(error=error), CalibrationState(mode=Mode.SCAN))
    assert asyncio.run(loop.tick()) is None
    assert loop.latest is None
    assert loop.failures == 1
    assert loop.ticks == 1


def test_tick_calls_consumer_and_survives_its_failure():
    seen = []

    async def consumer(result):
        seen.append(result)
        raise RuntimeError("display gone")

    loop = ScanLoop(FakeCamera(), CalibrationState(mode=Mode.CALIBRATE), on_frame=consumer)
    result = asyncio.run(loop.tick())
    assert seen == [result]
    assert loop.failures == 0


def test_ticks_overlap_when_camera_is_slow():
    class SlowCamera(FakeCamera):
        def __init__(self):
            super().__init__()
            self.started = 0
            self.release = None

        async def fetch(self):
            self.started += 1
            await self.release.wait()
            return await super().fetch()

    async def run():
        camera = SlowCamera()
        camera.release = asyncio.Event()
        loop = ScanLoop(camera, CalibrationState(mode=Mode.CALIBRATE), interval_ms=10)
        loop.start()
        await asyncio.sleep(0.1)
        in_flight = camera.started
        assert loop.latest is None
        camera.release.set()
        await asyncio.sleep(0.05)
        await loop.stop()
        return in_flight, loop

    in_flight, loop = asyncio.run(run())
    assert in_flight >= 2
    assert loop.latest is not None
    assert not loop.running


def test_loop_keeps_running_after_failures():
    async def run():
        camera = FakeCamera(error=AcquisitionError("down"))
        loop = ScanLoop(camera, CalibrationState(mode=Mode.SCAN), interval_ms=5)
        loop.start()
        await asyncio.sleep(0.06)
        running = loop.running
        await loop.stop()
        return camera, loop, running

    camera, loop, running = asyncio.run(run())
    assert running
    assert camera.calls >= 2
    assert loop.failures == camera.calls


def test_screen_result_event():
    loop = ScanLoop(FakeCamera(), CalibrationState(mode=Mode.SCAN, reference_raw_value=1000))
    result = loop.process(make_frame(1000, 1500))
    event = result.to_event("scan")
    assert event.event == "frame.screened"
    assert event.hot_value == 1500
    assert event.classification == "fever"
    assert isinstance(event.model_dump(mode="json")["temperature_c"], float)
