from __future__ import annotations
import io

import numpy as np
from PIL import Image

from screening.mapper import FRAME_HEIGHT, FRAME_WIDTH

CHECK_TINT_RG = 192
FEVER_TINT_R = 255

def _to_grid(frame: np.ndarray) -> np.ndarray:
    arr = np.asarray(frame)
    if arr.ndim == 1:
        arr = arr.reshape(FRAME_HEIGHT, FRAME_WIDTH)
    return arr.astype(np.float64)

def encode_rgba(frame: np.ndarray, dark_value: int, hot_value: int,
                fever_raw_threshold: float, check_raw_threshold: float) -> np.ndarray:
    """
    Stretch raw counts to grayscale [0, 255] between dark and hot, then tint
    pixels above the check threshold amber and above the fever threshold red.

    Returns uint8 (H, W, 4), alpha always 255. A uniform frame (hot == dark)
    has no range to stretch and renders black.
    """
    raw = _to_grid(frame)
    span = float(hot_value) - float(dark_value)
    if span > 0:
        v = (raw - dark_value) * (255.0 / span)
    else:
        v = np.zeros_like(raw)

    r = v.copy()
    g = v.copy()
    b = v.copy()

    fever = raw > fever_raw_threshold
    check = ~fever & (raw > check_raw_threshold)

    r[fever] = FEVER_TINT_R
    g[fever] *= 0.5
    b[fever] *= 0.5

    r[check] = CHECK_TINT_RG
    g[check] = CHECK_TINT_RG
    b[check] *= 0.5

    out = np.empty(raw.shape + (4,), dtype=np.uint8)
    # canvas pixel buffers round to nearest and clamp
    out[..., 0] = np.clip(np.rint(r), 0, 255)
    out[..., 1] = np.clip(np.rint(g), 0, 255)
    out[..., 2] = np.clip(np.rint(b), 0, 255)
    out[..., 3] = 255
    return out

def to_png(rgba: np.ndarray) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(np.ascontiguousarray(rgba, dtype=np.uint8)).save(buf, format="PNG")
    return buf.getvalue()
