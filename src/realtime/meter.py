"""Microphone level meter.

Samples the most recent captured frame at a fixed interval and reports a
0..1 level suitable for a UI meter. Metering is best-effort: failures are
logged and never affect the connection.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Final

import numpy as np

from src.realtime.config import MeterConfig
from src.realtime.transport.base import MicMeter, MicrophoneStream

logger = logging.getLogger(__name__)

INT16_FULL_SCALE: Final[float] = 32768.0


def calculate_level(samples: np.ndarray, gain: float) -> float:
    """Map audio samples to a 0..1 meter level.

    Args:
        samples: int16 PCM or float samples in [-1, 1]
        gain: Scale applied to RMS before clamping

    Returns:
        Level in [0, 1]
    """
    if samples.size == 0:
        return 0.0

    if np.issubdtype(samples.dtype, np.integer):
        normalized = samples.astype(np.float32) / INT16_FULL_SCALE
    else:
        normalized = samples.astype(np.float32)

    rms = float(np.sqrt(np.mean(normalized**2)))
    return max(0.0, min(1.0, rms * gain))


class RmsMicMeter(MicMeter):
    """Periodic RMS meter over a microphone stream."""

    def __init__(self, config: MeterConfig | None = None) -> None:
        self.config = config or MeterConfig()
        self._task: asyncio.Task[None] | None = None
        self._on_level: Callable[[float], None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, stream: MicrophoneStream, on_level: Callable[[float], None]) -> None:
        """Begin metering ``stream``, replacing any running meter."""
        self.stop()
        if not self.config.enabled:
            return
        self._on_level = on_level
        self._task = asyncio.create_task(self._run(stream, on_level))

    def stop(self) -> None:
        """Stop metering and report a calm level."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

        on_level, self._on_level = self._on_level, None
        if on_level is not None:
            on_level(0.0)

    async def _run(self, stream: MicrophoneStream, on_level: Callable[[float], None]) -> None:
        interval_s = self.config.interval_ms / 1000.0
        try:
            while True:
                samples = await stream.read_samples()
                if samples is None:
                    break
                on_level(calculate_level(samples, self.config.gain))
                await asyncio.sleep(interval_s)
        except Exception as e:
            logger.warning("Mic meter stopped", extra={"error": str(e)})
