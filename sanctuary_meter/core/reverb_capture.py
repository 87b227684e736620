"""
RT60 Capture Workflow

Drives one clap measurement from incoming sample chunks:

    IDLE → MEASURING_NOISE_FLOOR → LISTENING_FOR_IMPULSE → RECORDING_DECAY
         → PROCESSING → RESULT | FAILED

Time is counted in samples fed, so the workflow runs the same on a live
stream and on a file cut into chunks.
"""

from __future__ import annotations
from enum import Enum
import logging
from typing import Optional

import numpy as np

from .reverb import IMPULSE_THRESHOLD_DB, RT60Measurement, measure_rt60, noise_floor


logger = logging.getLogger(__name__)

NO_CLAP_MESSAGE = "No clap detected. Try clapping louder or moving closer to the microphone."
TIMEOUT_MESSAGE = "Recording timed out."
NO_RESULT_MESSAGE = (
    "Could not calculate RT60. The decay may have been too short or the room too noisy."
)


class CapturePhase(Enum):
    IDLE = "idle"
    MEASURING_NOISE_FLOOR = "measuring_noise_floor"
    LISTENING_FOR_IMPULSE = "listening_for_impulse"
    RECORDING_DECAY = "recording_decay"
    PROCESSING = "processing"
    RESULT = "result"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self not in (CapturePhase.IDLE, CapturePhase.RESULT, CapturePhase.FAILED)


class RT60CaptureSession:
    """
    Phase machine for a clap-based RT60 capture.

    Usage:
        session = RT60CaptureSession(sample_rate=48000)
        session.start()
        while session.phase.is_active:
            session.feed(next_chunk())
        if session.phase is CapturePhase.RESULT:
            print(session.result.rt60_seconds)
        else:
            print(session.failure_reason)

    Args:
        sample_rate: Sample rate of the fed chunks in Hz
        noise_floor_seconds: Ambient pre-roll before listening
        listen_timeout_seconds: Give up if no clap within this time after the pre-roll
        decay_seconds: Recording length after the clap
        max_seconds: Hard limit for the whole capture
    """

    def __init__(
        self,
        sample_rate: float,
        noise_floor_seconds: float = 1.5,
        listen_timeout_seconds: float = 6.0,
        decay_seconds: float = 4.0,
        max_seconds: float = 10.0,
    ):
        if sample_rate <= 0:
            raise ValueError("Sample rate must be positive")

        self.sample_rate = float(sample_rate)
        self.noise_floor_seconds = noise_floor_seconds
        self.listen_timeout_seconds = listen_timeout_seconds
        self.decay_seconds = decay_seconds
        self.max_seconds = max_seconds

        self.phase = CapturePhase.IDLE
        self.result: Optional[RT60Measurement] = None
        self.failure_reason: Optional[str] = None
        self.noise_floor_db: Optional[float] = None
        self.measurements: list[RT60Measurement] = []

        self._noise_chunks: list[np.ndarray] = []
        self._recording_chunks: list[np.ndarray] = []
        self._samples_fed = 0
        self._impulse_at: Optional[int] = None

    @property
    def elapsed_seconds(self) -> float:
        return self._samples_fed / self.sample_rate

    def start(self) -> None:
        """Begin a capture. Ignored while one is running."""
        if self.phase.is_active:
            return
        self._clear_buffers()
        self.result = None
        self.failure_reason = None
        self.noise_floor_db = None
        self.phase = CapturePhase.MEASURING_NOISE_FLOOR
        logger.info("RT60 capture started")

    def cancel(self) -> None:
        """Abort a running capture."""
        if self.phase.is_active:
            logger.info("RT60 capture cancelled")
        self._clear_buffers()
        self.phase = CapturePhase.IDLE

    def reset(self) -> None:
        """Back to IDLE after a result or failure."""
        self._clear_buffers()
        self.result = None
        self.failure_reason = None
        self.phase = CapturePhase.IDLE

    def delete_measurement(self, measurement_id: str) -> None:
        self.measurements = [m for m in self.measurements if m.id != measurement_id]

    def feed(self, chunk: np.ndarray) -> CapturePhase:
        """
        Hand the next chunk of mono samples to the workflow.

        Returns:
            Phase after the chunk was consumed
        """
        if not self.phase.is_active:
            return self.phase

        samples = np.asarray(chunk, dtype=np.float64).ravel()
        self._samples_fed += samples.size
        elapsed = self.elapsed_seconds

        if self.phase is CapturePhase.MEASURING_NOISE_FLOOR:
            samples = self._collect_noise(samples)

        if self.phase is CapturePhase.LISTENING_FOR_IMPULSE and samples.size:
            self._recording_chunks.append(samples)
            threshold = 10 ** ((self.noise_floor_db + IMPULSE_THRESHOLD_DB) / 20)
            if np.max(np.abs(samples)) > threshold:
                self._impulse_at = self._samples_fed
                self.phase = CapturePhase.RECORDING_DECAY
                logger.debug("Impulse detected at %.2f s", elapsed)
            elif elapsed > self.noise_floor_seconds + self.listen_timeout_seconds:
                self._fail(NO_CLAP_MESSAGE)

        elif self.phase is CapturePhase.RECORDING_DECAY:
            self._recording_chunks.append(samples)
            decay_elapsed = (self._samples_fed - self._impulse_at) / self.sample_rate
            if decay_elapsed >= self.decay_seconds:
                self._process()

        if self.phase.is_active and elapsed > self.max_seconds:
            self._fail(TIMEOUT_MESSAGE)

        return self.phase

    def _collect_noise(self, samples: np.ndarray) -> np.ndarray:
        """
        Add samples to the pre-roll up to its exact length.

        Returns:
            The part of the chunk after the pre-roll (empty while measuring)
        """
        target = int(round(self.noise_floor_seconds * self.sample_rate))
        collected = sum(chunk.size for chunk in self._noise_chunks)
        split = max(target - collected, 0)
        self._noise_chunks.append(samples[:split])
        if collected + samples[:split].size < target:
            return samples[:0]

        self.noise_floor_db = noise_floor(np.concatenate(self._noise_chunks))
        logger.debug("Noise floor %.1f dBFS", self.noise_floor_db)
        self._recording_chunks = []
        self.phase = CapturePhase.LISTENING_FOR_IMPULSE
        return samples[split:]

    def _process(self) -> None:
        self.phase = CapturePhase.PROCESSING
        noise = np.concatenate(self._noise_chunks) if self._noise_chunks else np.zeros(0)
        recording = np.concatenate([noise] + self._recording_chunks)

        measurement = measure_rt60(recording, noise.size, self.sample_rate)
        self._clear_buffers()
        if measurement is None:
            self._fail(NO_RESULT_MESSAGE)
            return

        self.result = measurement
        self.measurements.insert(0, measurement)
        self.phase = CapturePhase.RESULT

    def _fail(self, reason: str) -> None:
        logger.warning("RT60 capture failed: %s", reason)
        self._clear_buffers()
        self.failure_reason = reason
        self.phase = CapturePhase.FAILED

    def _clear_buffers(self) -> None:
        self._noise_chunks = []
        self._recording_chunks = []
        self._samples_fed = 0
        self._impulse_at = None
