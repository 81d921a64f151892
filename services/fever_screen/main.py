# services/fever_screen/main.py
from __future__ import annotations
import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, Optional

import uvicorn
import yaml
from fastapi import FastAPI, Response
from fastapi.responses import HTMLResponse, JSONResponse

from common.bus import EventBus
from common.logging import configure_logging, get_logger
from common.schemas import CalibrationView, TemperatureInput
from screening.controller import DEFAULT_INTERVAL_MS, FFC_COOLDOWN_NS, FrameSource, ScanLoop, ScreenResult
from screening.encoder import to_png
from screening.mapper import CHECK_THRESHOLD_C, FEVER_THRESHOLD_C
from screening.source import DEFAULT_BASE_URL, CameraClient
from screening.state import DEFAULT_REFERENCE_C, DEFAULT_REFERENCE_RAW, CalibrationState

log = get_logger("fever_screen")

ROOT = Path(__file__).resolve().parents[2]
CFG_PATH = ROOT / "config" / "config.yaml"

# ----------------------- config -----------------------
def load_config(path: Path | str = CFG_PATH) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        log.warning(f"config {p} not found, using defaults")
        return {}
    return yaml.safe_load(p.read_text(encoding="utf-8")) or {}

# ----------------------- helpers -----------------------
def calibration_view(state: CalibrationState) -> CalibrationView:
    v = state.view
    return CalibrationView(
        mode=state.mode.value,
        title=v.title,
        calibrate_enabled=v.calibrate_enabled,
        scan_enabled=v.scan_enabled,
        show_scan_settings=v.show_scan_settings,
        reference_temperature_c=state.reference_temperature_c,
        reference_temperature_text=state.format_input(),
        reference_raw_value=state.reference_raw_value,
        keep_awake=state.keep_awake_requested,
    )

def _status(state: CalibrationState, loop: ScanLoop) -> Dict[str, Any]:
    out: Dict[str, Any] = calibration_view(state).model_dump()
    latest = loop.latest
    out.update({
        "ffc_wait": loop.ffc_wait,
        "temperature_c": latest.mapping.temperature_c if latest else None,
        "temperature_text": latest.temperature_text if latest else None,
        "classification": latest.classification.value if latest and latest.classification else None,
        "thumb": latest.classification.thumb if latest and latest.classification else None,
        "ticks": loop.ticks,
        "failures": loop.failures,
    })
    return out

# ----------------------- app -----------------------
def create_app(cfg: Optional[Dict[str, Any]] = None,
               source: Optional[FrameSource] = None,
               bus: Optional[EventBus] = None,
               autostart: bool = True) -> FastAPI:
    """
    Build the screening service: one CalibrationState owned by this process,
    one ScanLoop feeding it, and the operator endpoints that mutate it.
    """
    cfg = cfg or {}
    camera_cfg = cfg.get("camera", {}) or {}
    sc = cfg.get("screening", {}) or {}
    rt = cfg.get("runtime", {}) or {}
    if rt.get("log_dir") or rt.get("log_level"):
        configure_logging(rt.get("log_dir"), rt.get("log_level"))

    fever_c = float(sc.get("fever_threshold_c", FEVER_THRESHOLD_C))
    check_c = float(sc.get("check_threshold_c", CHECK_THRESHOLD_C))
    stream_screened = rt.get("stream_screened", "frames.screened")
    redis_url = rt.get("redis_url")

    state = CalibrationState(
        reference_temperature_c=float(sc.get("initial_reference_c", DEFAULT_REFERENCE_C)),
        reference_raw_value=int(sc.get("initial_reference_raw", DEFAULT_REFERENCE_RAW)),
    )
    owns_source = source is None
    if source is None:
        source = CameraClient.from_config(camera_cfg)
    if bus is None and redis_url:
        bus = EventBus(redis_url)

    async def publish(result: ScreenResult):
        if bus is None or not bus.connected:
            return
        try:
            await bus.publish(stream_screened, result.to_event(state.mode.value))
        except Exception as e:
            log.warning(f"[publish] stream={stream_screened} failed: {e}")

    loop = ScanLoop(
        source, state,
        interval_ms=int(sc.get("poll_interval_ms", DEFAULT_INTERVAL_MS)),
        fever_c=fever_c, check_c=check_c,
        cooldown_ns=int(float(sc.get("ffc_cooldown_sec", FFC_COOLDOWN_NS / 1e9)) * 1e9),
        on_frame=publish,
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        state.startup()
        if bus is not None:
            try:
                await bus.connect()
            except Exception as e:
                log.warning(f"event bus unavailable, screening without publishing: {e}")
        if autostart:
            loop.start()
        yield
        await loop.stop()
        if bus is not None:
            await bus.close()
        if owns_source and isinstance(source, CameraClient):
            await source.aclose()

    app = FastAPI(title="Fever Screen", lifespan=lifespan)
    app.state.calibration = state
    app.state.scan_loop = loop

    @app.get("/", response_class=HTMLResponse)
    async def home():
        return _PAGE

    @app.get("/status", response_class=JSONResponse)
    async def status():
        return JSONResponse(_status(state, loop))

    @app.get("/frame.png")
    async def frame_png():
        latest = loop.latest
        if latest is None:
            return JSONResponse({"error": "no frame yet"}, status_code=404)
        png = await asyncio.to_thread(to_png, latest.rgba)
        return Response(content=png, media_type="image/png", headers={"Cache-Control": "no-store"})

    @app.post("/calibrate", response_model=CalibrationView)
    async def calibrate():
        state.start_calibration()
        return calibration_view(state)

    @app.post("/scan", response_model=CalibrationView)
    async def scan():
        state.start_scan()
        return calibration_view(state)

    @app.post("/temperature/warmer", response_model=CalibrationView)
    async def warmer():
        state.warmer()
        return calibration_view(state)

    @app.post("/temperature/cooler", response_model=CalibrationView)
    async def cooler():
        state.cooler()
        return calibration_view(state)

    @app.put("/temperature")
    async def set_temperature(body: TemperatureInput):
        accepted = state.set_calibrate_temperature(body.value)
        if not accepted:
            log.info(f"[calibrate] kept {state.format_input()}C, ignored input {body.value!r}")
        out = calibration_view(state).model_dump()
        out["accepted"] = accepted
        return JSONResponse(out)

    return app

# ----------------------- page -----------------------
_PAGE = """<!doctype html>
<html>
<head>
  <meta charset="utf-8"/>
  <title>Fever Screen</title>
  <style>
    body { background:#111; color:#eee; font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,sans-serif; margin:24px; }
    img { image-rendering: pixelated; width: 640px; height: 480px; }
    #overlay { display:none; color:#ffb300; }
    #overlay.show { display:block; }
    #settings { display:none; }
    #settings.show-scan { display:block; }
    .thumb { opacity:0.3; }
    .thumb.selected { opacity:1; }
  </style>
</head>
<body>
  <h1 id="title"></h1>
  <div id="overlay">Recent FFC. please wait</div>
  <img id="frame" alt="thermal frame"/>
  <div id="settings">
    <div id="temperature"></div>
    <span id="thumb_hot" class="thumb">hot</span>
    <span id="thumb_question" class="thumb">check</span>
    <span id="thumb_normal" class="thumb">normal</span>
  </div>
  <div>
    <button id="calibration_button">Calibrate</button>
    <button id="scan_button">Scan</button>
    <button id="cooler">-</button>
    <input id="temperature_input" type="number" step="0.1"/>
    <button id="warmer">+</button>
  </div>
<script>
const $ = id => document.getElementById(id);
let wakeLock = null;
async function keepAwake() {
  if (wakeLock !== null || !("wakeLock" in navigator)) return;
  try {
    wakeLock = await navigator.wakeLock.request("screen");
    wakeLock.addEventListener("release", () => { wakeLock = null; });
  } catch (e) {
    console.log("wake lock:", e);
  }
}
function render(s) {
  $('title').innerText = s.title;
  $('calibration_button').disabled = !s.calibrate_enabled;
  $('scan_button').disabled = !s.scan_enabled;
  if (document.activeElement !== $('temperature_input')) $('temperature_input').value = s.reference_temperature_text;
  if (s.ffc_wait !== undefined) $('overlay').classList.toggle('show', s.ffc_wait);
  if (s.temperature_text) $('temperature').innerText = s.temperature_text + (s.classification ? ' (' + s.classification + ')' : '');
  $("settings").classList.toggle("show-scan", s.show_scan_settings);
  if (s.thumb !== undefined) {
    for (const t of ["hot", "question", "normal"]) $("thumb_" + t).classList.toggle("selected", s.thumb === t);
  }
  if (s.keep_awake) keepAwake();
}
async function call(method, path, body) {
  const res = await fetch(path, {method, headers: {'Content-Type': 'application/json'}, body: body && JSON.stringify(body)});
  render(await res.json());
}
$('calibration_button').onclick = () => call('POST', '/calibrate');
$('scan_button').onclick = () => call('POST', '/scan');
$('warmer').onclick = () => call('POST', '/temperature/warmer');
$('cooler').onclick = () => call('POST', '/temperature/cooler');
$('temperature_input').oninput = e => call('PUT', '/temperature', {value: e.target.value});
async function refresh() {
  try {
    render(await (await fetch('/status')).json());
    $('frame').src = '/frame.png?' + new Date().getTime();
  } catch (e) {
    console.log('error:', e);
  }
}
setInterval(refresh, 500);
refresh();
</script>
</body>
</html>"""

# ----------------------- main -----------------------
def main(config_path: str = str(CFG_PATH)):
    cfg = load_config(config_path)
    rt = cfg.get("runtime", {}) or {}
    srv = cfg.get("server", {}) or {}
    host = srv.get("host", "0.0.0.0")
    port = int(srv.get("port", 8080))
    log_level = rt.get("log_level", "INFO")
    app = create_app(cfg)
    log.info("Fever screen starting on %s:%d (camera=%s)", host, port,
             (cfg.get("camera", {}) or {}).get("base_url") or DEFAULT_BASE_URL)
    uvicorn.run(app, host=host, port=port, reload=False, log_level=log_level.lower())

if __name__ == "__main__":
    main()
