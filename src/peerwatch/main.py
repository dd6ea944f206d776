"""
PeerWatch Main Application
==========================

FastAPI entry point for the session relay and detection pipeline.

Relay: room registry + per-connection relay sessions + telemetry sink
Pipeline: frame ingestion -> FrameSlot -> AdaptiveScheduler -> displays

Endpoints:
    GET  /               - Service information
    GET  /health         - Liveness check (is process alive?)
    GET  /ready          - Readiness check (relay + pipeline initialized?)
    GET  /metrics        - Relay, pipeline and telemetry counters
    WS   /ws             - Session relay control channel
    WS   /ws/frames      - Capture clients push frame messages
    WS   /ws/detections  - Displays receive detection events and summaries
"""

import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Union

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from peerwatch.config import settings
from peerwatch.models.output import DetectionEvent
from peerwatch.observability import EventBroadcaster
from peerwatch.pipeline import (
    AdaptiveScheduler,
    DetectionEngine,
    DetectorAdapter,
    FrameSlot,
    MetricsAggregator,
    MockDetectionEngine,
    OnnxDetectionEngine,
)
from peerwatch.relay import RelayMetrics, RelaySession, RoomRegistry
from peerwatch.stream import FrameConsumer, FrameIngestor
from peerwatch.telemetry import JsonLinesTelemetrySink, TelemetrySink


logger = logging.getLogger(__name__)


# =============================================================================
# Global State
# =============================================================================

# Shutdown flag
_shutdown_flag: bool = False

# Relay
_registry: Optional[RoomRegistry] = None
_relay_metrics: Optional[RelayMetrics] = None
_telemetry_sink: Optional[TelemetrySink] = None

# Pipeline
_frame_slot: Optional[FrameSlot] = None
_ingestor: Optional[FrameIngestor] = None
_scheduler: Optional[AdaptiveScheduler] = None
_broadcaster: Optional[EventBroadcaster] = None
_summary_task: Optional[asyncio.Task] = None

# Optional pull-based capture source
_frame_consumer: Optional[FrameConsumer] = None
_consumer_task: Optional[asyncio.Task] = None

_startup_time: float = 0.0
_is_ready: bool = False


# =============================================================================
# Getters
# =============================================================================

def get_registry() -> Optional[RoomRegistry]:
    return _registry

def get_scheduler() -> Optional[AdaptiveScheduler]:
    return _scheduler

def get_frame_slot() -> Optional[FrameSlot]:
    return _frame_slot

def get_broadcaster() -> Optional[EventBroadcaster]:
    return _broadcaster

def get_telemetry_sink() -> Optional[TelemetrySink]:
    return _telemetry_sink

def is_ready() -> bool:
    return _is_ready


# =============================================================================
# Factories
# =============================================================================

def create_detection_engine() -> DetectionEngine:
    """
    Create detection engine based on config.

    Fails fast if the onnx backend is requested but unavailable.
    """
    backend = settings.detector.backend

    if backend == "mock":
        logger.info("Using MockDetectionEngine")
        return MockDetectionEngine(
            latency_ms=settings.detector.mock.latency_ms,
            label=settings.detector.mock.label,
            score=settings.detector.mock.score,
        )

    elif backend == "onnx":
        try:
            return OnnxDetectionEngine(model_path=settings.detector.model_path)
        except ImportError as e:
            raise RuntimeError(
                "ONNX backend requested but onnxruntime not installed. "
                "Install with: pip install onnxruntime"
            ) from e

    else:
        raise ValueError(f"Unknown detector backend: {backend}")


def create_telemetry_sink() -> Optional[TelemetrySink]:
    """Create the telemetry sink, or None when persistence is disabled."""
    if not settings.telemetry.enabled:
        logger.info("Telemetry persistence disabled")
        return None
    return JsonLinesTelemetrySink(settings.telemetry.path)


def _publish_result(event: DetectionEvent) -> None:
    if _broadcaster is not None:
        _broadcaster.publish(event.to_message())


async def publish_summaries() -> None:
    """Periodically send the pipeline performance summary to displays."""
    interval = settings.pipeline.summary_interval_seconds
    while not _shutdown_flag:
        try:
            await asyncio.sleep(interval)
            if _scheduler is not None and _broadcaster is not None and _scheduler.is_running:
                _broadcaster.publish(_scheduler.summary().to_message())
        except asyncio.CancelledError:
            break


# =============================================================================
# Lifespan Management
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager with graceful shutdown.

    uvicorn owns SIGINT/SIGTERM and runs the shutdown half on either.
    """
    global _registry, _relay_metrics, _telemetry_sink
    global _frame_slot, _ingestor, _scheduler, _broadcaster, _summary_task
    global _frame_consumer, _consumer_task
    global _startup_time, _is_ready, _shutdown_flag

    _startup_time = time.time()
    _shutdown_flag = False
    _scheduler = None
    _summary_task = None
    _frame_consumer = None
    _consumer_task = None
    logger.info(f"Starting {settings.app.name} {settings.app.version}")

    # Relay
    _registry = RoomRegistry()
    _relay_metrics = RelayMetrics()
    _telemetry_sink = create_telemetry_sink()

    # Pipeline
    _frame_slot = FrameSlot()
    _ingestor = FrameIngestor(_frame_slot)
    _broadcaster = EventBroadcaster(queue_size=settings.pipeline.subscriber_queue_size)

    if settings.pipeline.enabled:
        adapter = DetectorAdapter(
            engine=create_detection_engine(),
            input_width=settings.pipeline.input_width,
            input_height=settings.pipeline.input_height,
            score_threshold=settings.pipeline.score_threshold,
            timeout=settings.pipeline.inference_timeout_seconds,
        )
        _scheduler = AdaptiveScheduler(
            slot=_frame_slot,
            adapter=adapter,
            on_result=_publish_result,
            metrics=MetricsAggregator(max_samples=settings.pipeline.max_latency_samples),
            target_fps=settings.pipeline.target_fps,
            min_fps=settings.pipeline.min_fps,
            fps_step=settings.pipeline.fps_step,
        )
        _scheduler.start()
        _summary_task = asyncio.create_task(publish_summaries(), name="summary_publisher")
    else:
        logger.info("Detection pipeline disabled")

    if settings.capture.url:
        _frame_consumer = FrameConsumer(
            url=settings.capture.url,
            ingestor=_ingestor,
            reconnect_backoff_ms=settings.capture.reconnect_backoff_ms,
            max_reconnect_attempts=settings.capture.max_reconnect_attempts,
        )
        _consumer_task = asyncio.create_task(_frame_consumer.run(), name="frame_consumer")

    _is_ready = True
    logger.info("All components started")

    yield

    # Shutdown
    logger.info("Shutting down gracefully...")
    _shutdown_flag = True
    _is_ready = False

    if _frame_consumer:
        await _frame_consumer.stop()

    if _consumer_task:
        try:
            await asyncio.wait_for(_consumer_task, timeout=5.0)
        except asyncio.TimeoutError:
            _consumer_task.cancel()
            try:
                await _consumer_task
            except asyncio.CancelledError:
                pass

    if _summary_task:
        _summary_task.cancel()
        try:
            await _summary_task
        except asyncio.CancelledError:
            pass

    if _scheduler:
        _scheduler.stop()
        await _scheduler.wait_stopped(timeout=5.0)

    logger.info("Shutdown complete")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="PeerWatch",
    description="Two-party session relay with adaptive object detection",
    version=settings.app.version,
    lifespan=lifespan,
)


# =============================================================================
# HTTP Endpoints
# =============================================================================

@app.get("/")
async def root() -> JSONResponse:
    """Service information endpoint."""
    return JSONResponse({
        "service": "PeerWatch",
        "version": settings.app.version,
        "name": settings.app.name,
        "status": "running",
        "detector_backend": settings.detector.backend,
        "pipeline_enabled": settings.pipeline.enabled,
    })


@app.get("/health")
async def health() -> JSONResponse:
    """
    Liveness check - is the process alive?

    Always returns 200 if the service is running.
    """
    return JSONResponse({
        "status": "healthy",
        "uptime_seconds": round(time.time() - _startup_time, 1),
    })


@app.get("/ready")
async def ready() -> JSONResponse:
    """
    Readiness check - is the service ready to handle requests?

    Returns 200 once the relay is up and, if enabled, the pipeline runs.
    Returns 503 otherwise.
    """
    relay_ready = _is_ready and _registry is not None
    pipeline_ready = (not settings.pipeline.enabled) or (
        _scheduler is not None and _scheduler.is_running
    )

    body = {
        "relay_ready": relay_ready,
        "pipeline_running": _scheduler is not None and _scheduler.is_running,
    }
    if relay_ready and pipeline_ready:
        return JSONResponse({"status": "ready", **body})
    return JSONResponse({"status": "not_ready", **body}, status_code=503)


@app.get("/metrics")
async def metrics() -> JSONResponse:
    """Detailed metrics for observability."""
    relay_metrics = {}
    if _registry is not None and _relay_metrics is not None:
        relay_metrics = {**_registry.metrics(), **_relay_metrics.to_dict()}

    pipeline_metrics = {}
    if _scheduler is not None:
        pipeline_metrics = {
            **_scheduler.get_metrics(),
            **_scheduler.summary().model_dump(),
        }
    if _frame_slot is not None:
        pipeline_metrics["slot"] = _frame_slot.metrics()
    if _ingestor is not None:
        pipeline_metrics["ingest"] = _ingestor.metrics.to_dict()
    if _frame_consumer is not None:
        pipeline_metrics["capture_connected"] = _frame_consumer.connected

    telemetry_metrics = {}
    if isinstance(_telemetry_sink, JsonLinesTelemetrySink):
        telemetry_metrics = _telemetry_sink.metrics()

    return JSONResponse({
        "uptime_seconds": round(time.time() - _startup_time, 1),
        "relay": relay_metrics,
        "pipeline": pipeline_metrics,
        "displays": _broadcaster.metrics() if _broadcaster is not None else {},
        "telemetry": telemetry_metrics,
    })


# =============================================================================
# WebSocket Endpoints
# =============================================================================

async def _receive_data(websocket: WebSocket) -> Optional[Union[str, bytes]]:
    """Next text or binary payload, or None once the client disconnected."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return None
        data = message.get("text")
        if data is None:
            data = message.get("bytes")
        if data is not None:
            return data


async def _wait_disconnect(websocket: WebSocket) -> None:
    """Discard anything a display sends until it disconnects."""
    while await _receive_data(websocket) is not None:
        pass


@app.websocket("/ws")
async def relay_endpoint(websocket: WebSocket) -> None:
    """Session relay control channel (one RelaySession per connection)."""
    await websocket.accept()
    session = RelaySession(
        websocket,
        _registry,
        telemetry=_telemetry_sink,
        metrics=_relay_metrics,
        send_timeout=settings.relay.send_timeout_seconds,
    )

    try:
        while True:
            data = await _receive_data(websocket)
            if data is None:
                break
            await session.handle_text(data)
    except WebSocketDisconnect:
        pass
    finally:
        await session.close()


@app.websocket("/ws/frames")
async def frames_endpoint(websocket: WebSocket) -> None:
    """Capture clients push frame messages into the FrameSlot."""
    await websocket.accept()
    logger.info("Capture client connected to /ws/frames")

    try:
        while True:
            data = await _receive_data(websocket)
            if data is None:
                break
            _ingestor.ingest(data)
    except WebSocketDisconnect:
        pass
    finally:
        logger.info("Capture client disconnected from /ws/frames")


@app.websocket("/ws/detections")
async def detections_endpoint(websocket: WebSocket) -> None:
    """Displays receive detection events and performance summaries."""
    await websocket.accept()
    subscription = _broadcaster.subscribe()
    disconnected = asyncio.create_task(_wait_disconnect(websocket))

    try:
        while not _shutdown_flag:
            next_event = asyncio.ensure_future(subscription.get(timeout=1.0))
            done, _ = await asyncio.wait(
                {next_event, disconnected},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if disconnected in done:
                next_event.cancel()
                break
            event = next_event.result()
            if event is not None:
                await websocket.send_json(event)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.warning(f"WebSocket error: {e}")
    finally:
        disconnected.cancel()
        _broadcaster.unsubscribe(subscription)


# =============================================================================
# Main Entry Point
# =============================================================================

def run() -> None:
    """
    Run the service with uvicorn.

    Failing to bind the listener is fatal: uvicorn logs the error and the
    process exits non-zero.
    """
    import uvicorn

    # Cloud Run uses PORT env var
    port = int(os.environ.get("PORT", settings.server.port))

    uvicorn.run(
        "peerwatch.main:app",
        host=settings.server.host,
        port=port,
        reload=False,
    )


if __name__ == "__main__":
    run()
