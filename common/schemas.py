from __future__ import annotations
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

FFC_COMPLETE = "complete"

class FrameMetadata(BaseModel):
    """Camera telemetry served next to each raw frame. Times are nanoseconds."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    ffc_state: str = Field(alias="FFCState")
    time_on: int = Field(alias="TimeOn")
    last_ffc_time: int = Field(alias="LastFFCTime")

    @property
    def ffc_complete(self) -> bool:
        return self.ffc_state == FFC_COMPLETE

class FrameScreened(BaseModel):
    event: str = "frame.screened"
    ts: str                   # ISO8601 UTC
    mode: str
    dark_value: int
    hot_value: int
    temperature_c: Optional[float] = None
    classification: Optional[str] = None
    ffc_wait: bool

class CalibrationView(BaseModel):
    mode: str
    title: str
    calibrate_enabled: bool
    scan_enabled: bool
    show_scan_settings: bool
    reference_temperature_c: float
    reference_temperature_text: str
    reference_raw_value: int
    keep_awake: bool

class TemperatureInput(BaseModel):
    # kept loose so non-numeric text is rejected by the state, not by validation
    value: Union[float, str, None] = None
