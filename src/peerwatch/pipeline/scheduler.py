"""
Adaptive Pipeline Scheduler
===========================

Self-throttling control loop that drains the FrameSlot into the detector.

Each iteration:
    1. Take the latest frame from the slot (if any)
    2. Run inference; failures yield an empty detection list
    3. Record capture-to-completion latency and emit a DetectionEvent
    4. Update the loop-duration EMA and lower target_fps when over budget
    5. Wait max(0, 1000/target_fps - elapsed) ms before the next iteration

Rate Adaptation:
    avg_loop_ms = elapsed                          (first iteration)
    avg_loop_ms = 0.8 * avg_loop_ms + 0.2 * elapsed (afterwards)
    if avg_loop_ms > 1000 / target_fps:
        target_fps = max(min_fps, target_fps - fps_step)

    Every iteration feeds the controller, including idle ones with an empty
    slot. Their near-zero duration pulls the EMA down while the budget check
    can still lower an over-budget rate.

Generations:
    Every start() increments a generation counter. A loop iteration only
    publishes its result if its generation is still current and the
    scheduler is running, so an inference that was in flight across
    stop()/start() is discarded instead of being reported as current.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from peerwatch.models.output import DetectionEvent, PerformanceSummary
from peerwatch.pipeline.detector import DetectorAdapter
from peerwatch.pipeline.metrics import MetricsAggregator
from peerwatch.pipeline.slot import FrameItem, FrameSlot


logger = logging.getLogger(__name__)


ResultCallback = Callable[[DetectionEvent], Union[None, Awaitable[None]]]


@dataclass
class PipelineState:
    """
    Scheduler state, mutated only by the scheduler.

    Attributes:
        target_fps: Current desired inference rate
        avg_loop_ms: EMA of loop-iteration duration (None until the first iteration)
        is_running: Whether the loop is active
        generation: Incremented on every start()
    """

    target_fps: int
    avg_loop_ms: Optional[float] = None
    is_running: bool = False
    generation: int = 0

    def to_dict(self) -> dict:
        return {
            "target_fps": self.target_fps,
            "avg_loop_ms": round(self.avg_loop_ms, 2) if self.avg_loop_ms is not None else None,
            "is_running": self.is_running,
            "generation": self.generation,
        }


class AdaptiveScheduler:
    """
    Drains a FrameSlot at a self-tuned cadence.

    Attributes:
        slot: Source of frames
        adapter: Detector used for each frame
        metrics: Latency/rate aggregator, reset on every start()
        frames_processed: Frames that produced a published event
        inference_errors: Frames whose inference raised or timed out
        stale_results: Results discarded because their generation ended

    Example:
        scheduler = AdaptiveScheduler(slot, adapter, on_result=publish)
        scheduler.start()
        ...
        scheduler.stop()
        await scheduler.wait_stopped()
    """

    def __init__(
        self,
        slot: FrameSlot,
        adapter: DetectorAdapter,
        on_result: Optional[ResultCallback] = None,
        metrics: Optional[MetricsAggregator] = None,
        target_fps: int = 12,
        min_fps: int = 6,
        fps_step: int = 2,
        wall_clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize scheduler.

        Args:
            slot: FrameSlot to drain
            adapter: Detector adapter to run per frame
            on_result: Sync or async callback receiving each DetectionEvent
            metrics: Aggregator to record into (created if omitted)
            target_fps: Initial rate, restored on every start()
            min_fps: Floor for the adaptive rate
            fps_step: Decrement applied when over budget
            wall_clock: Epoch seconds source for event timestamps
            monotonic: Monotonic seconds source for loop timing
        """
        if target_fps < 1:
            raise ValueError("target_fps must be >= 1")
        if not 1 <= min_fps <= target_fps:
            raise ValueError("min_fps must be in [1, target_fps]")
        if fps_step < 1:
            raise ValueError("fps_step must be >= 1")

        self.slot = slot
        self.adapter = adapter
        self.on_result = on_result
        self.metrics = metrics if metrics is not None else MetricsAggregator(clock=wall_clock)
        self.initial_fps = target_fps
        self.min_fps = min_fps
        self.fps_step = fps_step
        self._wall_clock = wall_clock
        self._monotonic = monotonic

        self._state = PipelineState(target_fps=target_fps)
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

        self.frames_processed: int = 0
        self.inference_errors: int = 0
        self.stale_results: int = 0

        logger.info(
            f"AdaptiveScheduler initialized: target_fps={target_fps}, "
            f"min_fps={min_fps}, step={fps_step}"
        )

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def target_fps(self) -> int:
        return self._state.target_fps

    @property
    def is_running(self) -> bool:
        return self._state.is_running

    @property
    def generation(self) -> int:
        return self._state.generation

    def summary(self) -> PerformanceSummary:
        return self.metrics.summary()

    def _is_current(self, generation: int) -> bool:
        return self._state.is_running and generation == self._state.generation

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """
        Start (or restart) the loop. Must be called from a running event loop.

        Resets the adaptive rate and the metrics window.
        """
        if self._state.is_running:
            self.stop()

        self._state.generation += 1
        self._state.target_fps = self.initial_fps
        self._state.avg_loop_ms = None
        self._state.is_running = True
        self.metrics.reset()

        generation = self._state.generation
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(
            self._run(generation, self._stop_event),
            name=f"pipeline_scheduler_{generation}",
        )
        logger.info(f"Pipeline started (generation {generation})")

    def stop(self) -> None:
        """
        Stop the loop.

        Wakes any pending inter-iteration delay and releases the frame
        waiting in the slot. An inference already in flight runs to
        completion, but its result is discarded.
        """
        if self._state.is_running:
            self._state.is_running = False
            if self._stop_event is not None:
                self._stop_event.set()
            logger.info(f"Pipeline stopped (generation {self._state.generation})")
        self.slot.clear()

    async def wait_stopped(self, timeout: Optional[float] = None) -> None:
        """Wait for the most recent loop task to exit."""
        task = self._task
        if task is None or task.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Pipeline loop did not exit in time, cancelling")
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # -------------------------------------------------------------------------
    # Rate adaptation
    # -------------------------------------------------------------------------

    def adapt(self, elapsed_ms: float) -> float:
        """
        Fold one processing-iteration duration into the rate controller.

        Args:
            elapsed_ms: Duration of the iteration, with or without a frame

        Returns:
            Delay in ms before the next iteration, at the (possibly lowered)
            target rate.
        """
        state = self._state
        if state.avg_loop_ms is None:
            state.avg_loop_ms = elapsed_ms
        else:
            state.avg_loop_ms = state.avg_loop_ms * 0.8 + elapsed_ms * 0.2

        frame_budget_ms = 1000.0 / state.target_fps
        if state.avg_loop_ms > frame_budget_ms:
            lowered = max(self.min_fps, state.target_fps - self.fps_step)
            if lowered != state.target_fps:
                logger.info(
                    f"Inference over budget (avg={state.avg_loop_ms:.1f}ms > "
                    f"{frame_budget_ms:.1f}ms), target_fps {state.target_fps} -> {lowered}"
                )
                state.target_fps = lowered

        return self.next_delay_ms(elapsed_ms)

    def next_delay_ms(self, elapsed_ms: float) -> float:
        return max(0.0, 1000.0 / self._state.target_fps - elapsed_ms)

    # -------------------------------------------------------------------------
    # Loop
    # -------------------------------------------------------------------------

    async def _run(self, generation: int, stop_event: asyncio.Event) -> None:
        while self._is_current(generation):
            loop_start = self._monotonic()

            item = self.slot.take_and_clear()
            if item is not None:
                await self._process(item, generation)
                if not self._is_current(generation):
                    break

            elapsed_ms = (self._monotonic() - loop_start) * 1000.0
            delay_ms = self.adapt(elapsed_ms)

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay_ms / 1000.0)
                break
            except asyncio.TimeoutError:
                pass

        logger.debug(f"Pipeline loop exited (generation {generation})")

    async def _process(self, item: FrameItem, generation: int) -> None:
        recv_ts = self._wall_clock() * 1000.0
        try:
            detections = await self.adapter.infer(item)
        except asyncio.CancelledError:
            item.release()
            raise
        except Exception as e:
            self.inference_errors += 1
            logger.error(f"Inference error (frame={item.frame_id}): {e}")
            detections = []
        inference_ts = self._wall_clock() * 1000.0
        item.release()

        if not self._is_current(generation):
            self.stale_results += 1
            logger.debug(
                f"Discarding result for frame {item.frame_id} from "
                f"generation {generation} (current {self._state.generation})"
            )
            return

        self.metrics.record(inference_ts - item.capture_ts)
        self.frames_processed += 1

        event = DetectionEvent(
            frame_id=item.frame_id,
            capture_ts=item.capture_ts,
            recv_ts=recv_ts,
            inference_ts=inference_ts,
            input_width=self.adapter.input_width,
            input_height=self.adapter.input_height,
            detections=detections,
        )
        await self._emit(event)

    async def _emit(self, event: DetectionEvent) -> None:
        if self.on_result is None:
            return
        try:
            result = self.on_result(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Result callback failed (frame={event.frame_id}): {e}")

    def get_metrics(self) -> dict:
        """Scheduler counters for observability."""
        return {
            **self._state.to_dict(),
            "frames_processed": self.frames_processed,
            "inference_errors": self.inference_errors,
            "stale_results": self.stale_results,
        }
