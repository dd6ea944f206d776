"""
Detector Adapter
================

Wraps an external inference capability and normalizes its outputs.

The engine is a black box exposing `run(input_tensor) -> {name: tensor}`.
This module owns everything around it:
    - Image decode + letterbox + tensor conversion (pre-processing)
    - Running the engine off the event loop, with an optional timeout
    - Normalizing two output layouts into a flat Detection list

Supported Output Layouts:
    A) SSD-style paired tensors
       boxes  [1, P, 4]  (ymin, xmin, ymax, xmax) per prior
       scores [1, C, P]  class scores per prior, class 0 = background
    B) Flattened detection tensor
       [1, 1, N, 7]      (image_id, label, score, xmin, ymin, xmax, ymax)

Anything else yields an empty list.
"""

import asyncio
import logging
import time
from typing import Dict, List, Mapping, Optional, Protocol, Sequence

import numpy as np

from peerwatch.models.output import Detection
from peerwatch.pipeline.preprocess import letterbox, to_input_tensor
from peerwatch.pipeline.slot import FrameItem
from peerwatch.stream.image_decoder import decode_image


logger = logging.getLogger(__name__)


class InferenceTimeoutError(Exception):
    """Raised when the engine does not answer within the configured timeout."""
    pass


# =============================================================================
# Output normalization
# =============================================================================

def _find_key(keys: Sequence[str], fragment: str) -> Optional[str]:
    for key in keys:
        if fragment in key.lower():
            return key
    return None


def _format_label(value: float) -> str:
    value = float(value)
    return str(int(value)) if value.is_integer() else str(value)


def _normalize_paired(
    boxes: np.ndarray,
    scores: np.ndarray,
    threshold: float,
) -> List[Detection]:
    """Layout A: best non-background class per prior."""
    boxes = np.asarray(boxes, dtype=np.float32)
    scores = np.asarray(scores, dtype=np.float32)

    if boxes.ndim == 3:
        boxes = boxes[0]
    if scores.ndim == 3:
        scores = scores[0]
    if boxes.ndim != 2 or boxes.shape[-1] != 4 or scores.ndim != 2:
        return []

    num_classes = scores.shape[0]
    priors = min(boxes.shape[0], scores.shape[1])
    if num_classes < 2 or priors == 0:
        return []

    foreground = scores[1:, :priors]
    best = np.argmax(foreground, axis=0)
    best_scores = foreground[best, np.arange(priors)]

    detections: List[Detection] = []
    for i in range(priors):
        score = float(best_scores[i])
        label = int(best[i]) + 1
        if score <= 0:
            # No positive foreground score: report background
            score, label = 0.0, 0
        if score < threshold:
            continue
        ymin, xmin, ymax, xmax = (float(v) for v in boxes[i])
        detections.append(Detection(
            label=str(label),
            score=score,
            xmin=xmin,
            ymin=ymin,
            xmax=xmax,
            ymax=ymax,
        ))
    return detections


def _normalize_flat(output: np.ndarray, threshold: float) -> List[Detection]:
    """Layout B: rows of (image_id, label, score, xmin, ymin, xmax, ymax)."""
    data = np.asarray(output, dtype=np.float32)
    if data.ndim != 4 or data.shape[3] != 7 or data.shape[2] == 0:
        return []

    detections: List[Detection] = []
    for row in data.reshape(-1, 7):
        _, label, score, xmin, ymin, xmax, ymax = (float(v) for v in row)
        if score < threshold:
            continue
        detections.append(Detection(
            label=_format_label(label),
            score=score,
            xmin=xmin,
            ymin=ymin,
            xmax=xmax,
            ymax=ymax,
        ))
    return detections


def normalize_outputs(
    outputs: Mapping[str, np.ndarray],
    threshold: float = 0.4,
) -> List[Detection]:
    """
    Convert raw engine outputs into a Detection list.

    Layout A is used when both a "box" and a "score" output are present
    (matched case-insensitively by name); otherwise the first output is
    tried as layout B.

    Args:
        outputs: Named output tensors from the engine
        threshold: Minimum score to keep a detection

    Returns:
        Detections in model-input coordinates; empty if no layout matches.
    """
    if not outputs:
        return []

    keys = list(outputs.keys())
    boxes_key = _find_key(keys, "box")
    scores_key = _find_key(keys, "score")

    if boxes_key and scores_key:
        return _normalize_paired(outputs[boxes_key], outputs[scores_key], threshold)

    return _normalize_flat(outputs[keys[0]], threshold)


# =============================================================================
# Engines
# =============================================================================

class DetectionEngine(Protocol):
    """
    Protocol for inference backends.

    `run` is synchronous and may be slow; the adapter calls it from a
    worker thread.
    """

    def run(self, input_tensor: np.ndarray) -> Dict[str, np.ndarray]:
        """
        Run the model on a (1, 3, H, W) float32 tensor in [0, 1].

        Returns:
            Output tensors keyed by output name
        """
        ...


class MockDetectionEngine:
    """
    Deterministic engine for testing and demos.

    Sleeps for `latency_ms`, then reports one centered box in layout B.
    """

    def __init__(
        self,
        latency_ms: float = 15.0,
        label: int = 1,
        score: float = 0.9,
    ) -> None:
        self.latency_ms = latency_ms
        self.label = label
        self.score = score
        self.calls: int = 0

        logger.info(
            f"MockDetectionEngine initialized: latency={latency_ms}ms, "
            f"label={label}, score={score}"
        )

    def run(self, input_tensor: np.ndarray) -> Dict[str, np.ndarray]:
        self.calls += 1
        if self.latency_ms > 0:
            time.sleep(self.latency_ms / 1000.0)

        height, width = input_tensor.shape[2], input_tensor.shape[3]
        row = [
            0.0, float(self.label), self.score,
            width * 0.25, height * 0.25, width * 0.75, height * 0.75,
        ]
        return {"detection_out": np.array(row, dtype=np.float32).reshape(1, 1, 1, 7)}


class OnnxDetectionEngine:
    """
    ONNX Runtime engine (CPU).

    onnxruntime is imported lazily so that it stays an optional dependency.

    Attributes:
        model_path: Path to the .onnx model
        input_name: Name of the model's first input
        output_names: Names of the model's outputs, in order
    """

    def __init__(
        self,
        model_path: str,
        providers: Optional[List[str]] = None,
    ) -> None:
        try:
            import onnxruntime as ort
        except ImportError:
            raise ImportError(
                "onnxruntime is required for OnnxDetectionEngine. "
                "Install with: pip install onnxruntime"
            )

        self.model_path = model_path
        self._session = ort.InferenceSession(
            model_path,
            providers=providers or ["CPUExecutionProvider"],
        )
        model_input = self._session.get_inputs()[0]
        self.input_name: str = model_input.name
        self._input_type: str = model_input.type
        self._input_shape = list(model_input.shape)
        self.output_names: List[str] = [o.name for o in self._session.get_outputs()]

        logger.info(
            f"OnnxDetectionEngine initialized: model={model_path}, "
            f"input={self.input_name}{self._input_shape} ({self._input_type}), "
            f"outputs={self.output_names}"
        )

    def _conform(self, tensor: np.ndarray) -> np.ndarray:
        """Match the model's declared layout and dtype."""
        if len(self._input_shape) == 4 and self._input_shape[-1] == 3:
            tensor = tensor.transpose(0, 2, 3, 1)
        if self._input_type == "tensor(uint8)":
            tensor = np.clip(tensor * 255.0, 0, 255).astype(np.uint8)
        return np.ascontiguousarray(tensor)

    def run(self, input_tensor: np.ndarray) -> Dict[str, np.ndarray]:
        results = self._session.run(None, {self.input_name: self._conform(input_tensor)})
        return dict(zip(self.output_names, results))


# =============================================================================
# Adapter
# =============================================================================

def _retrieve_exception(future: asyncio.Future) -> None:
    # Failures of abandoned work are reported by the caller, not the loop
    if not future.cancelled():
        future.exception()


class DetectorAdapter:
    """
    Frame-in, detections-out wrapper around a DetectionEngine.

    Attributes:
        engine: Inference backend
        input_width: Model input width (letterbox canvas)
        input_height: Model input height (letterbox canvas)
        score_threshold: Minimum score for kept detections
        timeout: Seconds to wait for one inference (None = no limit)

    Example:
        adapter = DetectorAdapter(MockDetectionEngine(), score_threshold=0.4)
        detections = await adapter.infer(item)
    """

    def __init__(
        self,
        engine: DetectionEngine,
        input_width: int = 320,
        input_height: int = 240,
        score_threshold: float = 0.4,
        timeout: Optional[float] = None,
    ) -> None:
        self.engine = engine
        self.input_width = input_width
        self.input_height = input_height
        self.score_threshold = score_threshold
        self.timeout = timeout

    def _run_sync(self, image) -> Dict[str, np.ndarray]:
        bgr = decode_image(image)
        canvas, _ = letterbox(bgr, self.input_width, self.input_height)
        return self.engine.run(to_input_tensor(canvas))

    async def infer(self, item: FrameItem) -> List[Detection]:
        """
        Run detection on one frame.

        Raises:
            ImageDecodeError: If the frame's image cannot be decoded
            InferenceTimeoutError: If the engine exceeds the timeout
            Exception: Whatever the engine raises
        """
        loop = asyncio.get_running_loop()
        work = loop.run_in_executor(None, self._run_sync, item.image)
        # The worker keeps reading the image after a timeout or cancellation
        item.release_after(work)
        work.add_done_callback(_retrieve_exception)

        try:
            outputs = await asyncio.wait_for(asyncio.shield(work), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise InferenceTimeoutError(
                f"Inference exceeded {self.timeout:.2f}s (frame={item.frame_id})"
            )

        return normalize_outputs(outputs, self.score_threshold)
