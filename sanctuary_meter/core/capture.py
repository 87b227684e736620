"""
Live Capture

Microphone → bounded queue → one consumer thread → metering pipeline.

Technical assumptions:
- The sounddevice callback only copies the block into the queue; it never
  analyzes, blocks or raises
- The queue holds at most `maxsize` blocks; on overflow the OLDEST block is
  dropped so the meters always show recent audio
- Exactly one consumer owns the SpectrumAnalyzer, PeakHoldTracker and
  SPLAlertMeter, so blocks are analyzed one at a time in arrival order
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
import logging
import threading
from typing import Callable, Iterator, Optional

import numpy as np

from .peak_hold import PeakHoldTracker
from .spectral import SpectrumAnalyzer, SpectrumConfig, SpectrumSnapshot
from .spl_meter import SPLAlertMeter


logger = logging.getLogger(__name__)

# Default label of a saved spectrum snapshot
SNAPSHOT_NAME_FORMAT = "Capture — %b %d, %I:%M:%S %p"


@dataclass(frozen=True)
class AudioBlock:
    """One mono block as delivered by the capture callback."""
    samples: np.ndarray
    sample_rate: float
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def duration_seconds(self) -> float:
        return len(self.samples) / self.sample_rate


class BlockQueue:
    """
    Bounded hand-off queue with drop-oldest overflow.

    put() never blocks, so it is safe to call from the audio callback.
    """

    def __init__(self, maxsize: int = 2):
        if maxsize < 1:
            raise ValueError("Queue size must be at least 1")
        self.maxsize = maxsize
        self.dropped = 0
        self._blocks: deque = deque()
        self._cond = threading.Condition()

    def __len__(self) -> int:
        with self._cond:
            return len(self._blocks)

    def put(self, block: AudioBlock) -> None:
        with self._cond:
            if len(self._blocks) >= self.maxsize:
                self._blocks.popleft()
                self.dropped += 1
            self._blocks.append(block)
            self._cond.notify()

    def get(self, timeout: Optional[float] = None) -> Optional[AudioBlock]:
        """Oldest queued block, or None if nothing arrived within timeout."""
        with self._cond:
            if not self._blocks:
                self._cond.wait(timeout)
            if not self._blocks:
                return None
            return self._blocks.popleft()

    def clear(self) -> None:
        with self._cond:
            self._blocks.clear()


class MeteringPipeline:
    """
    Single owner of the per-block meters.

    Every block feeds the SPL meter. Samples are also collected until a full
    spectrum block is available, which is then analyzed and run through the
    peak-hold tracker.
    """

    def __init__(
        self,
        sample_rate: float,
        spectrum_config: Optional[SpectrumConfig] = None,
        meter: Optional[SPLAlertMeter] = None,
        peak_decay_db: float = 0.5,
    ):
        self.sample_rate = float(sample_rate)
        self.analyzer = SpectrumAnalyzer(sample_rate, spectrum_config)
        self.meter = meter or SPLAlertMeter()
        self.peaks = PeakHoldTracker(decay_rate_db=peak_decay_db)
        self.latest: Optional[SpectrumSnapshot] = None
        self.saved_snapshots: list[SpectrumSnapshot] = []
        self._pending = np.zeros(0, dtype=np.float64)

    @property
    def block_size(self) -> int:
        return self.analyzer.config.block_size

    def process_block(self, block: AudioBlock) -> Optional[SpectrumSnapshot]:
        """
        Meter one block.

        Returns:
            A snapshot with peak levels when a spectrum block completed,
            otherwise None
        """
        samples = np.asarray(block.samples, dtype=np.float64).ravel()
        self.meter.process_block(samples, block.timestamp)

        self._pending = np.concatenate([self._pending, samples])
        if self._pending.size < self.block_size:
            return None

        # only the newest full block is analyzed, older samples are dropped
        full = self._pending.size // self.block_size * self.block_size
        frame = self._pending[full - self.block_size:full]
        self._pending = self._pending[full:]

        snapshot = self.analyzer.analyze(frame, block.timestamp)
        if snapshot is None:
            return None

        self.peaks = self.peaks.update(snapshot.band_levels_db)
        self.latest = SpectrumSnapshot(
            band_levels_db=snapshot.band_levels_db,
            timestamp=snapshot.timestamp,
            peak_levels_db=self.peaks.peaks_db,
        )
        return self.latest

    def capture_snapshot(
        self,
        name: str = "",
        now: Optional[datetime] = None,
    ) -> Optional[SpectrumSnapshot]:
        """
        Save the current spectrum and peaks under a name.

        Without a name the capture is labelled with its time, e.g.
        "Capture — Mar 01, 10:32:15 AM".

        Returns:
            The saved snapshot, or None before the first analyzed block
        """
        if self.latest is None:
            return None

        now = now or datetime.now()
        snapshot = SpectrumSnapshot(
            band_levels_db=self.latest.band_levels_db,
            timestamp=now,
            peak_levels_db=self.latest.peak_levels_db,
            name=name or now.strftime(SNAPSHOT_NAME_FORMAT),
        )
        self.saved_snapshots.append(snapshot)
        logger.info("Saved spectrum snapshot \"%s\"", snapshot.name)
        return snapshot

    def delete_snapshot(self, snapshot_id: str) -> None:
        self.saved_snapshots = [s for s in self.saved_snapshots if s.id != snapshot_id]

    def reset_peaks(self) -> None:
        self.peaks = self.peaks.reset()
        self.meter.reset_peak()

    def reset(self) -> None:
        self.analyzer.reset()
        self.reset_peaks()
        self.latest = None
        self._pending = np.zeros(0, dtype=np.float64)


class LiveCapture:
    """
    Microphone input driving a MeteringPipeline.

    Usage:
        capture = LiveCapture(MeteringPipeline(48000), block_size=1024)
        capture.start()
        ...
        capture.stop()
        report = capture.pipeline.meter.generate_session_report(mode)

    Args:
        pipeline: Pipeline that receives every block
        block_size: Frames per callback
        device: sounddevice input device (None = default)
        queue_depth: Blocks buffered between callback and consumer
        on_snapshot: Called from the consumer thread with each new snapshot
    """

    def __init__(
        self,
        pipeline: MeteringPipeline,
        block_size: int = 1024,
        device: Optional[int | str] = None,
        queue_depth: int = 2,
        on_snapshot: Optional[Callable[[SpectrumSnapshot], None]] = None,
    ):
        self.pipeline = pipeline
        self.block_size = block_size
        self.device = device
        self.on_snapshot = on_snapshot
        self.queue = BlockQueue(queue_depth)

        self._stream = None
        self._consumer: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @property
    def sample_rate(self) -> float:
        return self.pipeline.sample_rate

    @property
    def running(self) -> bool:
        return self._stream is not None

    def start(self) -> None:
        """Open the input stream and start metering. Idempotent."""
        if self.running:
            return

        import sounddevice as sd

        self._stop_event.clear()
        self.queue.clear()
        self.pipeline.meter.start()

        self._consumer = threading.Thread(
            target=self._consume, name="metering-consumer", daemon=True
        )
        self._consumer.start()

        try:
            stream = sd.InputStream(
                device=self.device,
                channels=1,
                samplerate=self.sample_rate,
                blocksize=self.block_size,
                dtype="float32",
                callback=self._callback,
            )
            stream.start()
        except Exception:
            self._shutdown_consumer()
            self.pipeline.meter.stop()
            raise

        self._stream = stream
        logger.info(
            "Live capture started (%d Hz, %d frames/block)", self.sample_rate, self.block_size
        )

    def stop(self) -> None:
        """Close the stream, drain the consumer, then stop the meter. Idempotent."""
        if not self.running:
            return

        stream, self._stream = self._stream, None
        try:
            stream.stop()
        finally:
            stream.close()

        self._shutdown_consumer()
        self.pipeline.meter.stop()

        if self.queue.dropped:
            logger.warning("Dropped %d block(s) during capture", self.queue.dropped)
        logger.info("Live capture stopped")

    def _callback(self, indata, frames, time_info, status) -> None:
        if status:
            logger.warning("Input stream status: %s", status)
        self.queue.put(AudioBlock(
            samples=indata[:, 0].astype(np.float64),
            sample_rate=self.sample_rate,
        ))

    def _consume(self) -> None:
        while not self._stop_event.is_set():
            block = self.queue.get(timeout=0.1)
            if block is None:
                continue
            self.handle_block(block)

    def handle_block(self, block: AudioBlock) -> Optional[SpectrumSnapshot]:
        """Run one block through the pipeline and notify the listener."""
        snapshot = self.pipeline.process_block(block)
        if snapshot is not None and self.on_snapshot is not None:
            self.on_snapshot(snapshot)
        return snapshot

    def _shutdown_consumer(self) -> None:
        self._stop_event.set()
        if self._consumer is not None:
            self._consumer.join(timeout=2.0)
            self._consumer = None


def record_capture(
    seconds: float,
    sample_rate: int,
    device: Optional[int | str] = None,
) -> np.ndarray:
    """
    Blocking mono recording, e.g. for a clap measurement.

    Returns:
        float64 samples, Shape: (samples,)
    """
    import sounddevice as sd

    frames = int(seconds * sample_rate)
    logger.info("Recording %.1f s from input device %s", seconds, device)
    data = sd.rec(frames, samplerate=sample_rate, channels=1, dtype="float32", device=device)
    sd.wait()
    return data[:, 0].astype(np.float64)


def iter_input_chunks(
    frames: int,
    sample_rate: int,
    device: Optional[int | str] = None,
) -> Iterator[np.ndarray]:
    """
    Blocking reads from the input device, one mono chunk at a time.

    The stream stays open until the generator is closed.
    """
    import sounddevice as sd

    with sd.InputStream(
        device=device,
        channels=1,
        samplerate=sample_rate,
        blocksize=frames,
        dtype="float32",
    ) as stream:
        while True:
            data, overflowed = stream.read(frames)
            if overflowed:
                logger.warning("Input overflow, samples were lost")
            yield data[:, 0].astype(np.float64)
