from __future__ import annotations
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from common.logging import get_logger

log = get_logger("screening")

# ---------------- constants ----------------

MIN_CALIBRATE_C = 10.0
MAX_CALIBRATE_C = 90.0
SAFE_DEFAULT_C = 35.6
STEP_C = 0.1

DEFAULT_REFERENCE_C = 35.5
DEFAULT_REFERENCE_RAW = 10

class Mode(Enum):
    INIT = "init"
    CALIBRATE = "calibrate"
    SCAN = "scan"

@dataclass(frozen=True)
class ModeView:
    """What the operator page shows for a mode."""
    title: str
    calibrate_enabled: bool
    scan_enabled: bool
    show_scan_settings: bool

def view_for(mode: Mode) -> ModeView:
    if mode is Mode.CALIBRATE:
        return ModeView("Calibrate", calibrate_enabled=False, scan_enabled=True, show_scan_settings=False)
    if mode is Mode.SCAN:
        return ModeView("Scanning...", calibrate_enabled=True, scan_enabled=False, show_scan_settings=True)
    if mode is Mode.INIT:
        return ModeView("", calibrate_enabled=True, scan_enabled=True, show_scan_settings=False)
    raise ValueError(f"unknown mode: {mode!r}")

def _as_temperature(value: Any) -> float:
    if isinstance(value, bool):
        return math.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan

def is_unreasonable_calibrate_temperature(value: Any) -> bool:
    t = _as_temperature(value)
    if math.isnan(t):
        return True
    return t < MIN_CALIBRATE_C or t > MAX_CALIBRATE_C

# ---------------- state ----------------

@dataclass
class CalibrationState:
    """
    Operating mode plus the calibration reference pair.

    reference_temperature_c is the operator-declared temperature of the
    calibration target; reference_raw_value is the hottest raw sample seen
    while calibrating. Only the methods below mutate it.
    """
    mode: Mode = Mode.INIT
    reference_temperature_c: float = DEFAULT_REFERENCE_C
    reference_raw_value: int = DEFAULT_REFERENCE_RAW
    current_hot_value: int = DEFAULT_REFERENCE_RAW
    keep_awake: Optional[Callable[[], None]] = field(default=None, repr=False, compare=False)
    keep_awake_requested: bool = False

    # ---- mode transitions ----

    def start_calibration(self, initial: bool = False) -> ModeView:
        self.mode = Mode.CALIBRATE
        log.info(f"[mode] calibrate initial={initial} reference={self.reference_temperature_c:.1f}C")
        if not initial:
            self._request_keep_awake()
        return view_for(self.mode)

    def start_scan(self, initial: bool = False) -> ModeView:
        self.mode = Mode.SCAN
        log.info(f"[mode] scan initial={initial} reference={self.reference_temperature_c:.1f}C "
                 f"raw={self.reference_raw_value}")
        if not initial:
            self._request_keep_awake()
        return view_for(self.mode)

    def startup(self) -> ModeView:
        if self.mode is Mode.INIT or not self.has_been_calibrated_recently():
            return self.start_calibration(initial=True)
        return self.start_scan(initial=True)

    def has_been_calibrated_recently(self) -> bool:
        # no calibration expiry is tracked; a session always starts by calibrating from INIT
        return True

    def _request_keep_awake(self):
        self.keep_awake_requested = True
        if self.keep_awake is not None:
            self.keep_awake()

    @property
    def view(self) -> ModeView:
        return view_for(self.mode)

    # ---- calibration input ----

    def set_calibrate_temperature(self, value: Any) -> bool:
        """Store value if it is a number within [10, 90]; otherwise keep the old one."""
        if is_unreasonable_calibrate_temperature(value):
            log.debug(f"[calibrate] rejected temperature input {value!r}")
            return False
        self.reference_temperature_c = _as_temperature(value)
        return True

    def set_calibrate_temperature_safe(self, value: Any) -> bool:
        if is_unreasonable_calibrate_temperature(value):
            value = SAFE_DEFAULT_C
        return self.set_calibrate_temperature(value)

    def warmer(self) -> float:
        self.set_calibrate_temperature_safe(self.reference_temperature_c + STEP_C)
        return self.reference_temperature_c

    def cooler(self) -> float:
        self.set_calibrate_temperature_safe(self.reference_temperature_c - STEP_C)
        return self.reference_temperature_c

    def format_input(self) -> str:
        return f"{self.reference_temperature_c:.1f}"

    # ---- frame driven ----

    def record_hot_value(self, hot_value: int):
        self.current_hot_value = int(hot_value)
        if self.mode is Mode.CALIBRATE:
            self.reference_raw_value = self.current_hot_value
