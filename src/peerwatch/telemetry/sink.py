"""
Telemetry Sink
==============

Durable, append-only store of periodic session-quality samples.

Samples arrive from peers as "metrics" control messages and are appended
in arrival order. Nothing is deduplicated or rewritten.

Design Rules:
    - append() is the only write operation
    - Each sample is one JSON line written with a single write() call
    - A lock serializes writers in this process; O_APPEND keeps
      line-sized records whole across processes
    - Write failures are logged and never propagate to the relay
"""

import asyncio
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field


logger = logging.getLogger(__name__)


class TelemetrySample(BaseModel):
    """
    One session-quality report.

    Attributes:
        timestamp: Server arrival time, ISO-8601 UTC
        room: Room the reporting peer belongs to
        role: Role of the reporting peer
        bitrate: Sender bitrate in kbps
        fps: Frames per second observed by the sender
        latency_ms: Round-trip time in milliseconds
    """

    model_config = ConfigDict(populate_by_name=True)

    timestamp: str
    room: Optional[str] = None
    role: Optional[str] = None
    bitrate: float = 0
    fps: float = 0
    latency_ms: float = Field(default=0, alias="latencyMs")

    @classmethod
    def now(cls, **fields) -> "TelemetrySample":
        """Build a sample stamped with the current UTC time."""
        stamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
        return cls(timestamp=stamp, **fields)

    def to_record(self) -> dict:
        """Serialized form (wire field names)."""
        return self.model_dump(mode="json", by_alias=True)


class TelemetrySink(Protocol):
    """
    Protocol for telemetry persistence.

    Implementations decide the storage format; the relay only appends.
    """

    async def append(self, sample: TelemetrySample) -> None:
        ...


class MemoryTelemetrySink:
    """In-process sink. Useful for tests and for disabled persistence."""

    def __init__(self) -> None:
        self.samples: List[TelemetrySample] = []

    async def append(self, sample: TelemetrySample) -> None:
        self.samples.append(sample)

    def __len__(self) -> int:
        return len(self.samples)


class JsonLinesTelemetrySink:
    """
    Append-only JSON Lines file sink.

    File I/O runs in a worker thread so the event loop never blocks on
    disk.

    Example:
        sink = JsonLinesTelemetrySink("metrics.jsonl")
        await sink.append(TelemetrySample.now(room="abc", role="capture"))
    """

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._written: int = 0
        self._write_errors: int = 0

        logger.info(f"JsonLinesTelemetrySink initialized: path={self.path}")

    @property
    def written(self) -> int:
        """Samples successfully written by this instance."""
        return self._written

    @property
    def write_errors(self) -> int:
        return self._write_errors

    async def append(self, sample: TelemetrySample) -> None:
        """Append one sample. Errors are logged, not raised."""
        line = json.dumps(sample.to_record(), separators=(",", ":")) + "\n"
        try:
            await asyncio.to_thread(self._write_line, line)
            self._written += 1
        except OSError as e:
            self._write_errors += 1
            logger.warning(f"Telemetry write failed ({self.path}): {e}")

    def _write_line(self, line: str) -> None:
        with self._lock:
            if self.path.parent and not self.path.parent.exists():
                self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line)

    def read_all(self) -> List[TelemetrySample]:
        """
        Load every stored sample in arrival order.

        Lines that are not valid JSON (e.g. a torn final line) are skipped.
        """
        if not self.path.exists():
            return []

        samples: List[TelemetrySample] = []
        with self._lock, open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    samples.append(TelemetrySample.model_validate(json.loads(line)))
                except ValueError:
                    logger.warning("Skipping unreadable telemetry line")
        return samples

    def metrics(self) -> dict:
        return {
            "path": str(self.path),
            "written": self._written,
            "write_errors": self._write_errors,
        }
