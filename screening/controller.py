from __future__ import annotations
import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Protocol, Set

import numpy as np

from common.logging import get_logger
from common.schemas import FrameMetadata, FrameScreened
from screening.encoder import encode_rgba
from screening.mapper import (
    CHECK_THRESHOLD_C, FEVER_THRESHOLD_C, Classification, MappingResult,
    classify, format_temperature, map_frame,
)
from screening.source import Acquisition
from screening.state import CalibrationState

log = get_logger("scan_loop")

FFC_COOLDOWN_NS = 60 * 1000 * 1000 * 1000
DEFAULT_INTERVAL_MS = 500

class FrameSource(Protocol):
    async def fetch(self) -> Acquisition: ...

def needs_ffc_wait(metadata: FrameMetadata, cooldown_ns: int = FFC_COOLDOWN_NS) -> bool:
    """Readings are unreliable while a flat-field correction runs or shortly after one."""
    return (not metadata.ffc_complete) or (metadata.time_on - metadata.last_ffc_time < cooldown_ns)

@dataclass
class ScreenResult:
    rgba: np.ndarray
    mapping: MappingResult
    classification: Optional[Classification]
    temperature_text: Optional[str]
    ffc_wait: bool = False

    def to_event(self, mode: str) -> FrameScreened:
        return FrameScreened(
            ts=datetime.now(timezone.utc).isoformat(),
            mode=mode,
            dark_value=self.mapping.dark_value,
            hot_value=self.mapping.hot_value,
            temperature_c=self.mapping.temperature_c,
            classification=self.classification.value if self.classification else None,
            ffc_wait=self.ffc_wait,
        )

FrameCallback = Callable[[ScreenResult], Awaitable[None]]

class ScanLoop:
    """
    Fixed-cadence acquisition loop.

    Every interval a new tick task is spawned without waiting for the
    previous one, so a slow camera never stretches the period. Ticks may
    overlap; all of them run on the one event loop that owns the state.
    """

    def __init__(self, source: FrameSource, state: CalibrationState,
                 interval_ms: int = DEFAULT_INTERVAL_MS,
                 fever_c: float = FEVER_THRESHOLD_C, check_c: float = CHECK_THRESHOLD_C,
                 cooldown_ns: int = FFC_COOLDOWN_NS,
                 on_frame: Optional[FrameCallback] = None):
        self.source = source
        self.state = state
        self.interval = interval_ms / 1000.0
        self.fever_c = fever_c
        self.check_c = check_c
        self.cooldown_ns = cooldown_ns
        self.on_frame = on_frame
        self.latest: Optional[ScreenResult] = None
        self.ffc_wait = False
        self.ticks = 0
        self.failures = 0
        self._ticker: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

    # ---------------- frame processing ----------------

    def process(self, frame: np.ndarray) -> ScreenResult:
        mapping = map_frame(frame, self.state, self.fever_c, self.check_c)
        classification = None
        text = None
        if mapping.temperature_c is not None:
            classification = classify(mapping.temperature_c, self.fever_c, self.check_c)
            text = format_temperature(mapping.temperature_c)
        rgba = encode_rgba(frame, mapping.dark_value, mapping.hot_value,
                           mapping.fever_raw_threshold, mapping.check_raw_threshold)
        return ScreenResult(rgba=rgba, mapping=mapping, classification=classification,
                            temperature_text=text)

    async def tick(self) -> Optional[ScreenResult]:
        self.ticks += 1
        try:
            acq = await self.source.fetch()
            self.ffc_wait = needs_ffc_wait(acq.metadata, self.cooldown_ns)
            if self.ffc_wait:
                log.info("Recent FFC. please wait")
            result = self.process(acq.frame)
            result.ffc_wait = self.ffc_wait
        except Exception as e:
            self.failures += 1
            log.error(f"[tick] skipped cycle: {e!r}")
            return None

        self.latest = result
        if self.on_frame is not None:
            try:
                await self.on_frame(result)
            except Exception as e:
                log.warning(f"[tick] frame consumer failed: {e!r}")
        return result

    # ---------------- scheduling ----------------

    def _spawn_tick(self):
        task = asyncio.create_task(self.tick())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _run(self):
        log.info(f"scan loop started interval={self.interval:.3f}s")
        while True:
            self._spawn_tick()
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        if self._ticker is None or self._ticker.done():
            self._ticker = asyncio.create_task(self._run())
        return self._ticker

    @property
    def running(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    async def stop(self):
        tasks = list(self._inflight)
        if self._ticker is not None:
            tasks.append(self._ticker)
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._ticker = None
        log.info(f"scan loop stopped ticks={self.ticks} failures={self.failures}")
