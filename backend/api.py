"""FastAPI backend for the smart capture scanner."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, WebSocket
from fastapi.responses import FileResponse
from pydantic import ValidationError
from starlette.websockets import WebSocketDisconnect

from common.config import SCANNER_AUTOSTART, SCANNER_LOG_LEVEL, load_scanner_config
from scanner import ScanController, ScannerConfig
from scanner.types import PipelineState
from schemas import ScannerStatus
from streaming.status import (
    CompositeStatusReporter,
    LoggingStatusReporter,
    StatusBroadcaster,
    status_payload,
)

logger = logging.getLogger(__name__)

controller: ScanController | None = None
broadcaster = StatusBroadcaster()


def build_controller(config: ScannerConfig, broadcaster: StatusBroadcaster) -> ScanController:
    """Wire the camera, detectors and capture sink into a controller."""
    # Heavy imports (torch, ultralytics) stay out of module import time.
    from cv.detectors import get_marker_detector, get_object_detector
    from streaming.capture_sink import CameraCaptureSink
    from streaming.frame_source import CameraFrameSource

    frame_source = CameraFrameSource(
        source=config.source,
        pixel_format=config.pixel_format,
        sensor_orientation=config.sensor_orientation,
        width=config.frame_width,
        height=config.frame_height,
        loop=config.loop_source,
    )
    capture_sink = CameraCaptureSink(
        source=config.source,
        output_dir=config.capture_dir,
        width=config.capture_width,
        height=config.capture_height,
        jpeg_quality=config.jpeg_quality,
        frame_source=frame_source,
    )
    object_detector = get_object_detector(
        confidence=config.confidence,
        model_path=config.model_path,
        classify_objects=config.classify_objects,
        multiple_objects=config.multiple_objects,
    )
    reporter = CompositeStatusReporter([LoggingStatusReporter(), broadcaster])
    return ScanController.from_config(
        config,
        frame_source=frame_source,
        object_detector=object_detector,
        marker_detector=get_marker_detector(),
        capture_sink=capture_sink,
        status_reporter=reporter,
    )


@asynccontextmanager
async def lifespan(_: FastAPI):
    global controller

    try:
        config = load_scanner_config()
    except (ValidationError, ValueError) as exc:
        logger.error("Invalid scanner configuration: %s", exc)
        raise

    controller = build_controller(config, broadcaster)
    if SCANNER_AUTOSTART:
        # Camera open can block; keep it off the event loop.
        started = await asyncio.to_thread(controller.start)
        if not started:
            logger.error("Scanner did not start; waiting for a manual rescan")

    yield

    if controller:
        await asyncio.to_thread(controller.shutdown)
        controller = None


app = FastAPI(
    title="Smart Capture API",
    description="Status and captures for the object + QR capture scanner",
    version="0.1.0",
    lifespan=lifespan,
)


def _require_controller() -> ScanController:
    if not controller:
        raise HTTPException(status_code=503, detail="Scanner unavailable")
    return controller


@app.get("/")
def read_root():
    return {
        "status": "ok",
        "message": "Smart Capture API is running",
        "endpoints": {
            "status": "/api/scanner/status",
            "capture": "/api/scanner/capture",
            "rescan": "/api/scanner/rescan",
            "status_ws": "/api/scanner/ws",
            "health": "/health",
        },
    }


@app.get("/health")
def health_check():
    if not controller:
        return {"status": "starting", "scanner": None}
    snapshot = controller.snapshot()
    return {
        "status": "ok" if snapshot.state is not PipelineState.STOPPED else "degraded",
        "scanner": snapshot.state.value,
    }


@app.get("/api/scanner/status", response_model=ScannerStatus)
def get_scanner_status() -> ScannerStatus:
    return ScannerStatus.from_snapshot(_require_controller().snapshot())


@app.get("/api/scanner/capture")
def get_latest_capture():
    artifact = _require_controller().snapshot().last_artifact
    if artifact is None:
        raise HTTPException(status_code=404, detail="No capture yet")
    if not artifact.path.exists():
        raise HTTPException(status_code=404, detail=f"Capture file missing: {artifact.path.name}")
    return FileResponse(artifact.path, media_type="image/jpeg")


@app.post("/api/scanner/rescan", response_model=ScannerStatus)
async def rescan() -> ScannerStatus:
    scanner = _require_controller()
    if scanner.snapshot().state is not PipelineState.STOPPED:
        raise HTTPException(status_code=409, detail="Scanner is already running")

    started = await asyncio.to_thread(scanner.rescan)
    if not started:
        status = scanner.snapshot()
        if status.state is PipelineState.STOPPED:
            raise HTTPException(status_code=503, detail=f"Rescan failed: {status.status}")
    return ScannerStatus.from_snapshot(scanner.snapshot())


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@app.websocket("/api/scanner/ws")
async def scanner_status_ws(websocket: WebSocket) -> None:
    await websocket.accept()
    queue = broadcaster.subscribe(asyncio.get_running_loop())
    disconnected = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        latest = broadcaster.latest
        if latest is None and controller:
            latest = status_payload(controller.snapshot().status)
        if latest is not None:
            await websocket.send_json(latest)

        # Clients only listen; a disconnect must end the handler even when no status arrives.
        while not disconnected.done():
            next_payload = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait(
                {next_payload, disconnected}, return_when=asyncio.FIRST_COMPLETED,
            )
            if next_payload in done:
                await websocket.send_json(next_payload.result())
            else:
                next_payload.cancel()
    except WebSocketDisconnect:
        logger.debug("Status websocket disconnected")
    finally:
        disconnected.cancel()
        broadcaster.unsubscribe(queue)


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=getattr(logging, SCANNER_LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host="0.0.0.0", port=8000, workers=1, loop="asyncio")
