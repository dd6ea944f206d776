"""
Telemetry Sampler
=================

Turns raw sender statistics into the "metrics" payload a peer reports.

Peers poll their media transport every couple of seconds. The transport
exposes cumulative byte counters, a frame rate and an optional round-trip
time; this module derives bitrate from successive byte counters and shapes
the report the relay stores.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional

from peerwatch.relay.registry import Role


@dataclass(frozen=True, slots=True)
class SenderStats:
    """
    One reading of outbound video statistics.

    Attributes:
        bytes_sent: Cumulative bytes sent on the video stream
        frames_per_second: Current send frame rate
        bitrate_mean: Mean bitrate in bps, when the transport reports it
        round_trip_time: Round-trip time in seconds, when known
    """

    bytes_sent: Optional[int] = None
    frames_per_second: Optional[float] = None
    bitrate_mean: Optional[float] = None
    round_trip_time: Optional[float] = None


class StatsSampler:
    """
    Stateful converter from SenderStats readings to metrics messages.

    Bitrate falls back to the byte-counter delta between two readings,
    so the first reading without `bitrate_mean` reports 0 kbps.

    Example:
        sampler = StatsSampler(room="abc", role=Role.CAPTURE)
        ws.send(json.dumps(sampler.sample(stats)))
    """

    def __init__(
        self,
        room: str,
        role: Role,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.room = room
        self.role = role
        self._clock = clock
        self._last_bytes_sent: int = 0
        self._last_ts_ms: float = 0.0

    def reset(self) -> None:
        self._last_bytes_sent = 0
        self._last_ts_ms = 0.0

    def bitrate_kbps(self, stats: SenderStats, now_ms: float) -> int:
        if stats.bitrate_mean is not None:
            return round(stats.bitrate_mean / 1000)
        if stats.bytes_sent is None:
            return 0

        kbps = 0
        if self._last_ts_ms and self._last_bytes_sent:
            delta_bytes = stats.bytes_sent - self._last_bytes_sent
            delta_ms = max(1.0, now_ms - self._last_ts_ms)
            kbps = round((delta_bytes * 8) / delta_ms)
        self._last_bytes_sent = stats.bytes_sent
        self._last_ts_ms = now_ms
        return kbps

    def sample(self, stats: SenderStats) -> dict:
        """
        Build a metrics control message from one reading.

        Returns:
            {"type": "metrics", "room", "role", "bitrate", "fps", "latencyMs"}
        """
        now_ms = self._clock() * 1000.0
        latency_ms = (
            round(stats.round_trip_time * 1000)
            if stats.round_trip_time is not None
            else 0
        )
        return {
            "type": "metrics",
            "room": self.room,
            "role": self.role.value,
            "bitrate": self.bitrate_kbps(stats, now_ms),
            "fps": round(stats.frames_per_second or 0),
            "latencyMs": latency_ms,
        }
