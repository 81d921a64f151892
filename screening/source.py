from __future__ import annotations
import asyncio, io, time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import httpx
import numpy as np
from PIL import Image, UnidentifiedImageError
from pydantic import ValidationError

from common.logging import get_logger
from common.schemas import FrameMetadata
from screening.mapper import FRAME_HEIGHT, FRAME_PIXELS, FRAME_WIDTH

log = get_logger("camera_source")

DEFAULT_METADATA_PATH = "/api/camera/metadata"
DEFAULT_RAW_PATH = "/camera/snapshot-raw"
DEFAULT_BASE_URL = "http://127.0.0.1"   # the camera serves its API on the same host

class AcquisitionError(Exception):
    """Transport failure or non-2xx answer from the camera."""

class FrameDecodeError(Exception):
    """Payload could not be turned into a 160x120 grid of 16-bit samples."""

# ---------------- decode ----------------

def pair_be16(data: bytes | np.ndarray, count: int = FRAME_PIXELS) -> np.ndarray:
    """Pair consecutive bytes into big-endian 16-bit samples (hi << 8 | lo)."""
    if isinstance(data, (bytes, bytearray)):
        raw = np.frombuffer(data, dtype=np.uint8)
    else:
        raw = np.ascontiguousarray(data, dtype=np.uint8).reshape(-1)
    if raw.size < count * 2:
        raise FrameDecodeError(f"need {count * 2} bytes, got {raw.size}")
    return raw[: count * 2].view(">u2").astype(np.uint16)

def decode_frame(payload: bytes) -> np.ndarray:
    """
    PNG payload -> uint16 array shaped (120, 160), row-major.

    16-bit grayscale PNGs decode straight to sample values. 8-bit images are
    read as a byte stream and paired big-endian, two bytes per sample.
    """
    try:
        with Image.open(io.BytesIO(payload)) as img:
            img.load()
            arr = np.asarray(img)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise FrameDecodeError(f"undecodable frame payload: {e}") from e

    if arr.dtype == np.uint8:
        frame = pair_be16(np.ascontiguousarray(arr))
    else:
        flat = arr.reshape(-1)
        if flat.size != FRAME_PIXELS:
            raise FrameDecodeError(f"expected {FRAME_PIXELS} samples, got {flat.size}")
        frame = flat.astype(np.uint16)
    return frame.reshape(FRAME_HEIGHT, FRAME_WIDTH)

# ---------------- client ----------------

@dataclass
class Acquisition:
    metadata: FrameMetadata
    frame: np.ndarray

class CameraClient:
    """
    Polls the thermal camera's HTTP API. Credentials come from config and go
    out as basic auth on every request.
    """

    def __init__(self, base_url: str, username: str = "", password: str = "",
                 metadata_path: str = DEFAULT_METADATA_PATH, raw_path: str = DEFAULT_RAW_PATH,
                 timeout_sec: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url
        self.metadata_path = metadata_path
        self.raw_path = raw_path
        auth = httpx.BasicAuth(username, password) if username else None
        self._client = httpx.AsyncClient(base_url=base_url, auth=auth,
                                         timeout=timeout_sec, transport=transport)

    @classmethod
    def from_config(cls, camera_cfg: Dict[str, Any], transport: Optional[httpx.AsyncBaseTransport] = None) -> "CameraClient":
        timeout = camera_cfg.get("timeout_sec")
        return cls(
            base_url=camera_cfg.get("base_url") or DEFAULT_BASE_URL,
            username=camera_cfg.get("username", ""),
            password=camera_cfg.get("password", ""),
            metadata_path=camera_cfg.get("metadata_path", DEFAULT_METADATA_PATH),
            raw_path=camera_cfg.get("raw_path", DEFAULT_RAW_PATH),
            timeout_sec=float(timeout) if timeout is not None else None,
            transport=transport,
        )

    def _raw_url(self) -> str:
        # millisecond cache-buster, same shape the camera's own page uses
        return f"{self.raw_path}?{int(time.time() * 1000)}"

    async def _get(self, url: str) -> httpx.Response:
        try:
            resp = await self._client.get(url)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise AcquisitionError(f"GET {url} failed: {e}") from e
        return resp

    async def _decode_metadata(self, resp: httpx.Response) -> FrameMetadata:
        try:
            return FrameMetadata.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise FrameDecodeError(f"bad metadata payload: {e}") from e

    async def fetch(self) -> Acquisition:
        """One metadata + raw frame pair; both requests and both decodes run concurrently."""
        meta_resp, raw_resp = await asyncio.gather(
            self._get(self.metadata_path),
            self._get(self._raw_url()),
        )
        metadata, frame = await asyncio.gather(
            self._decode_metadata(meta_resp),
            asyncio.to_thread(decode_frame, raw_resp.content),
        )
        log.debug(f"[acquire] ffc={metadata.ffc_state} time_on={metadata.time_on} bytes={len(raw_resp.content)}")
        return Acquisition(metadata=metadata, frame=frame)

    async def aclose(self):
        await self._client.aclose()
