"""
Tests for frame decoding and the camera HTTP client (mock transport).
"""
import asyncio
import base64
import io

import httpx
import numpy as np
import pytest
from PIL import Image

from conftest import make_frame, png16
from screening.source import (
    AcquisitionError, CameraClient, FrameDecodeError, decode_frame, pair_be16,
)

AUTH = "Basic " + base64.b64encode(b"admin:feathers").decode()
META = {"FFCState": "complete", "TimeOn": 90_000_000_000, "LastFFCTime": 10_000_000_000, "Extra": 1}


def test_pair_be16():
    assert pair_be16(bytes([1, 2, 3, 4]), count=2).tolist() == [258, 772]


def test_pair_be16_short_input():
    with pytest.raises(FrameDecodeError):
        pair_be16(bytes(10), count=6)


def test_decode_16bit_png():
    frame = make_frame(1000, 30000)
    decoded = decode_frame(png16(frame))
    assert decoded.dtype == np.uint16
    assert decoded.shape == (120, 160)
    assert np.array_equal(decoded, frame)


def test_decode_8bit_pairs_big_endian():
    frame = make_frame(256, 40000)
    hi_lo = np.stack([frame >> 8, frame & 0xFF], axis=-1).astype(np.uint8)
    buf = io.BytesIO()
    Image.fromarray(hi_lo).save(buf, format="PNG")  # LA image, two bytes per sample
    assert np.array_equal(decode_frame(buf.getvalue()), frame)


def test_decode_garbage():
    with pytest.raises(FrameDecodeError):
        decode_frame(b"not a png")


def test_decode_wrong_size():
    with pytest.raises(FrameDecodeError):
        decode_frame(png16(np.zeros((10, 10), dtype=np.uint16)))


def _client(handler):
    return CameraClient.from_config(
        {"base_url": "http://camera.local", "username": "admin", "password": "feathers"},
        transport=httpx.MockTransport(handler),
    )


def _fetch(client):
    async def run():
        try:
            return await client.fetch()
        finally:
            await client.aclose()
    return asyncio.run(run())


def test_fetch_pair():
    frame = make_frame()
    seen = []

    def handler(request: httpx.Request):
        seen.append(request)
        assert request.headers["Authorization"] == AUTH
        if request.url.path == "/api/camera/metadata":
            return httpx.Response(200, json=META)
        if request.url.path == "/camera/snapshot-raw":
            return httpx.Response(200, content=png16(frame))
        return httpx.Response(404)

    acq = _fetch(_client(handler))
    assert acq.metadata.ffc_complete
    assert acq.metadata.time_on == 90_000_000_000
    assert np.array_equal(acq.frame, frame)
    raw_req = next(r for r in seen if r.url.path == "/camera/snapshot-raw")
    assert raw_req.url.query.decode().isdigit()


def test_fetch_http_error():
    def handler(request):
        if request.url.path.endswith("metadata"):
            return httpx.Response(200, json=META)
        return httpx.Response(500)

    with pytest.raises(AcquisitionError):
        _fetch(_client(handler))


def test_fetch_transport_error():
    def handler(request):
        raise httpx.ConnectError("camera unreachable", request=request)

    with pytest.raises(AcquisitionError):
        _fetch(_client(handler))


def test_fetch_bad_metadata():
    def handler(request):
        if request.url.path.endswith("metadata"):
            return httpx.Response(200, json={"FFCState": "complete"})
        return httpx.Response(200, content=png16(make_frame()))

    with pytest.raises(FrameDecodeError):
        _fetch(_client(handler))


def test_no_auth_without_username():
    def handler(request):
        assert "Authorization" not in request.headers
        if request.url.path.endswith("metadata"):
            return httpx.Response(200, json=META)
        return httpx.Response(200, content=png16(make_frame()))

    client = CameraClient("http://camera.local", transport=httpx.MockTransport(handler))
    assert _fetch(client).frame.shape == (120, 160)


@pytest.mark.parametrize("camera_cfg", [{}, {"base_url": ""}])
def test_default_base_url_is_local_camera(camera_cfg):
    seen = []

    def handler(request):
        seen.append(request.url.host)
        if request.url.path.endswith("metadata"):
            return httpx.Response(200, json=META)
        return httpx.Response(200, content=png16(make_frame()))

    client = CameraClient.from_config(camera_cfg, transport=httpx.MockTransport(handler))
    assert client.base_url == "http://127.0.0.1"
    _fetch(client)
    assert seen == ["127.0.0.1", "127.0.0.1"]
