"""
Shared fixtures for the screening tests. No camera or Redis needed: the
camera is faked in-process and HTTP goes through httpx.MockTransport.
"""
import io
import os
import tempfile

# loggers are configured at import time; keep their files out of the repo
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "fever-screen-test-logs"))

import numpy as np
import pytest
from PIL import Image

from common.schemas import FrameMetadata
from screening.source import Acquisition


def make_frame(low: int = 1000, high: int = 2000) -> np.ndarray:
    """160x120 uint16 ramp from low (first pixel) to high (last pixel)."""
    return np.linspace(low, high, 160 * 120).round().astype(np.uint16).reshape(120, 160)


def png16(frame: np.ndarray) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(frame.astype(np.uint16)).save(buf, format="PNG")
    return buf.getvalue()


def metadata(ffc_state="complete", time_on=70_000_000_000, last_ffc_time=0) -> FrameMetadata:
    return FrameMetadata(FFCState=ffc_state, TimeOn=time_on, LastFFCTime=last_ffc_time)


class FakeCamera:
    """Frame source that replays a fixed frame, or raises when told to."""

    def __init__(self, frame=None, meta=None, error=None):
        self.frame = make_frame() if frame is None else frame
        self.meta = meta or metadata()
        self.error = error
        self.calls = 0

    async def fetch(self) -> Acquisition:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return Acquisition(metadata=self.meta, frame=self.frame)


@pytest.fixture
def frame():
    return make_frame()


@pytest.fixture
def camera():
    return FakeCamera()
