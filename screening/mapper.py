"""
Raw thermal counts -> calibrated temperature.

The camera gives uncalibrated 16-bit counts. A single reference pair
(operator-declared temperature, hottest raw count seen while calibrating)
anchors a fixed linear slope; everything here is the forward map and its
inverse.
"""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

from screening.state import CalibrationState, Mode

SLOPE = 0.01                 # degC per raw count
FEVER_THRESHOLD_C = 40.0
CHECK_THRESHOLD_C = 38.0
ERROR_THRESHOLD_C = 45.0
NORMAL_THRESHOLD_C = 35.5

# above any 16-bit sample: nothing is tinted outside scan mode
FEVER_RAW_SENTINEL = 65535
CHECK_RAW_SENTINEL = 65534

FRAME_WIDTH = 160
FRAME_HEIGHT = 120
FRAME_PIXELS = FRAME_WIDTH * FRAME_HEIGHT

class Classification(Enum):
    NORMAL = "normal"
    CHECK = "check"
    FEVER = "fever"
    ERROR = "error"

    @property
    def thumb(self) -> str:
        """Indicator the display highlights for this state."""
        if self in (Classification.ERROR, Classification.FEVER):
            return "hot"
        if self is Classification.CHECK:
            return "question"
        return "normal"

@dataclass(frozen=True)
class MappingResult:
    dark_value: int
    hot_value: int
    fever_raw_threshold: float
    check_raw_threshold: float
    temperature_c: Optional[float] = None

def estimate_temperature(hot_value: float, state: CalibrationState) -> float:
    return state.reference_temperature_c + (hot_value - state.reference_raw_value) * SLOPE

def raw_threshold(threshold_c: float, state: CalibrationState) -> float:
    return (threshold_c - state.reference_temperature_c) / SLOPE + state.reference_raw_value

def map_frame(frame: np.ndarray, state: CalibrationState,
              fever_c: float = FEVER_THRESHOLD_C, check_c: float = CHECK_THRESHOLD_C) -> MappingResult:
    """
    Find the frame's extremes and, depending on mode, either capture the
    calibration reference (CALIBRATE) or estimate a temperature and the raw
    tint thresholds (SCAN).
    """
    frame = np.asarray(frame)
    if frame.size == 0:
        raise ValueError("empty thermal frame")
    dark_value = int(frame.min())
    hot_value = int(frame.max())
    state.record_hot_value(hot_value)

    if state.mode is Mode.SCAN:
        return MappingResult(
            dark_value=dark_value,
            hot_value=hot_value,
            fever_raw_threshold=raw_threshold(fever_c, state),
            check_raw_threshold=raw_threshold(check_c, state),
            temperature_c=estimate_temperature(hot_value, state),
        )
    if state.mode in (Mode.CALIBRATE, Mode.INIT):
        return MappingResult(dark_value, hot_value, FEVER_RAW_SENTINEL, CHECK_RAW_SENTINEL)
    raise ValueError(f"unknown mode: {state.mode!r}")

def classify(temperature_c: float, fever_c: float = FEVER_THRESHOLD_C,
             check_c: float = CHECK_THRESHOLD_C) -> Optional[Classification]:
    """None means below the normal band: leave the display as it was."""
    if temperature_c > ERROR_THRESHOLD_C:
        return Classification.ERROR
    if temperature_c > fever_c:
        return Classification.FEVER
    if temperature_c > check_c:
        return Classification.CHECK
    if temperature_c > NORMAL_THRESHOLD_C:
        return Classification.NORMAL
    return None

def format_temperature(temperature_c: float) -> str:
    return f"{temperature_c:.1f}° C"
