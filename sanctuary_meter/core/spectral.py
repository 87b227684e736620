"""
Spectral Analysis Module

Turns a block of audio samples into 31 third-octave band levels for the RTA.

Technical assumptions:
- One FFT per block, block length must be a power of two
- Periodic Hann window (scipy), applied before the FFT by default
- Magnitudes are scaled by 1/N, only the first N/2 bins are kept
- Band level = RMS of the bin magnitudes inside [lower, upper), in dB
- Every level is clamped to NOISE_FLOOR_DB, silence never yields -inf
"""

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Optional
import uuid

import numpy as np
from scipy import signal

from .third_octave import BAND_CENTER_FREQUENCIES, BAND_COUNT, lower_edge, upper_edge


logger = logging.getLogger(__name__)

# Minimum valid level in dB
NOISE_FLOOR_DB = -80.0

# 4096 samples at 44.1 kHz → ~10.77 Hz resolution, ~93 ms latency
RECOMMENDED_BLOCK_SIZE = 4096


@dataclass
class SpectrumConfig:
    """
    Configuration of the block analyzer.

    Attributes:
        block_size: FFT size (power of 2)
        smoothing_factor: Exponential moving average factor (0-1).
            Higher = more responsive, lower = smoother. 1.0 disables smoothing.
        apply_hann: Window each block before the FFT
    """
    block_size: int = RECOMMENDED_BLOCK_SIZE
    smoothing_factor: float = 0.3
    apply_hann: bool = True

    def __post_init__(self):
        if not is_power_of_two(self.block_size):
            raise ValueError("Block size must be a power of 2")
        if not 0.0 < self.smoothing_factor <= 1.0:
            raise ValueError("Smoothing factor must be in (0, 1]")

    def frequency_resolution(self, sample_rate: float) -> float:
        """Frequency resolution in Hz."""
        return sample_rate / self.block_size

    def latency(self, sample_rate: float) -> float:
        """Block duration in seconds."""
        return self.block_size / sample_rate


@dataclass(frozen=True)
class SpectrumSnapshot:
    """
    Frozen capture of the spectrum at a point in time.

    Attributes:
        band_levels_db: 31 band levels in dB
        timestamp: Time the block was analyzed
        peak_levels_db: 31 peak-hold levels in dB, if a tracker was attached
        name: Optional user label for saved captures
        id: Unique id, used to delete a saved capture
    """
    band_levels_db: tuple
    timestamp: datetime
    peak_levels_db: Optional[tuple] = None
    name: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "band_levels_db": list(self.band_levels_db),
            "peak_levels_db": (
                list(self.peak_levels_db) if self.peak_levels_db is not None else None
            ),
            "timestamp": self.timestamp.isoformat(),
            "name": self.name,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SpectrumSnapshot":
        peaks = data.get("peak_levels_db")
        return cls(
            band_levels_db=tuple(float(v) for v in data["band_levels_db"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            peak_levels_db=tuple(float(v) for v in peaks) if peaks is not None else None,
            name=data.get("name", ""),
            id=data.get("id") or str(uuid.uuid4()),
        )


def is_power_of_two(n: int) -> bool:
    """True for 1, 2, 4, 8, ..."""
    return n > 0 and (n & (n - 1)) == 0


def hann_window(length: int) -> np.ndarray:
    """
    Generate a periodic Hann window.

    Edges are ~0, the maximum (1.0) sits on the middle sample.
    """
    return signal.windows.hann(length, sym=False).astype(np.float64)


def apply_window(data: np.ndarray, window: np.ndarray) -> np.ndarray:
    """
    Multiply a signal by a window in place.

    Args:
        data: Float signal (array or list), modified in place
        window: Window coefficients (same length as data)

    Returns:
        The same array, for chaining

    Raises:
        ValueError: Lengths differ
    """
    if len(data) != len(window):
        raise ValueError(
            f"Signal and window must have equal length ({len(data)} != {len(window)})"
        )
    data[:] = np.multiply(data, window)
    return data


def magnitude_spectrum(samples: np.ndarray, apply_hann: bool = True) -> np.ndarray:
    """
    Compute the linear magnitude spectrum of a real signal.

    Args:
        samples: Time-domain block (length must be a power of 2)
        apply_hann: Window the block before the FFT

    Returns:
        N/2 magnitudes (|X| / N), or an empty array if the length is invalid
    """
    data = np.array(samples, dtype=np.float64).ravel()
    n = len(data)
    if not is_power_of_two(n):
        return np.zeros(0, dtype=np.float64)

    if apply_hann:
        apply_window(data, hann_window(n))

    spectrum = np.fft.rfft(data)
    return np.abs(spectrum[: n // 2]) / n


def magnitudes_to_db(magnitudes: np.ndarray) -> np.ndarray:
    """
    Convert linear magnitudes to dB.

    20·log10(m), clamped to NOISE_FLOOR_DB; zeros map to the floor.
    """
    mag = np.asarray(magnitudes, dtype=np.float64)
    db = np.full(mag.shape, NOISE_FLOOR_DB)
    positive = mag > 0
    db[positive] = 20 * np.log10(mag[positive])
    return np.maximum(db, NOISE_FLOOR_DB)


def map_to_bands(magnitudes: np.ndarray, sample_rate: float) -> np.ndarray:
    """
    Fold FFT bins into the 31 third-octave bands.

    Bin k lies at k · sample_rate / N with N = 2 · len(magnitudes).
    Bands without any bin (low bands at coarse resolution) report the floor.

    Args:
        magnitudes: Linear magnitude spectrum (first N/2 bins)
        sample_rate: Sample rate in Hz

    Returns:
        31 band levels in dB
    """
    mag = np.asarray(magnitudes, dtype=np.float64)
    levels = np.full(BAND_COUNT, NOISE_FLOOR_DB)
    if mag.size == 0 or sample_rate <= 0:
        return levels

    resolution = sample_rate / (2 * mag.size)
    freqs = np.arange(mag.size) * resolution

    for i, fc in enumerate(BAND_CENTER_FREQUENCIES):
        mask = (freqs >= lower_edge(fc)) & (freqs < upper_edge(fc))
        if not np.any(mask):
            continue
        rms = np.sqrt(np.mean(mag[mask] ** 2))
        if rms > 0:
            levels[i] = max(20 * np.log10(rms), NOISE_FLOOR_DB)

    return levels


class SpectrumAnalyzer:
    """
    Stateful block analyzer for one RTA instance.

    Blocks must be fed in arrival order by a single owner; exponential
    smoothing carries state from one block to the next.

    Usage:
        analyzer = SpectrumAnalyzer(sample_rate=44100)
        snapshot = analyzer.analyze(block)
        if snapshot is not None:
            print(snapshot.band_levels_db)
    """

    def __init__(self, sample_rate: float, config: Optional[SpectrumConfig] = None):
        self.sample_rate = float(sample_rate)
        self.config = config or SpectrumConfig()
        self._smoothed = np.full(BAND_COUNT, NOISE_FLOOR_DB)

    @property
    def smoothed_levels(self) -> np.ndarray:
        return self._smoothed.copy()

    def reset(self) -> None:
        """Drop smoothing history."""
        self._smoothed = np.full(BAND_COUNT, NOISE_FLOOR_DB)

    def band_levels(self, samples: np.ndarray) -> Optional[np.ndarray]:
        """Unsmoothed band levels of one block, or None if it cannot be analyzed."""
        magnitudes = magnitude_spectrum(samples, apply_hann=self.config.apply_hann)
        if magnitudes.size == 0:
            logger.debug("Skipping block of %d samples (not a power of 2)", len(samples))
            return None
        return map_to_bands(magnitudes, self.sample_rate)

    def analyze(
        self,
        samples: np.ndarray,
        timestamp: Optional[datetime] = None,
    ) -> Optional[SpectrumSnapshot]:
        """
        Analyze one block and update the smoothed levels.

        Blocks longer than the configured size are truncated to it.

        Returns:
            SpectrumSnapshot, or None if the block cannot be analyzed
        """
        data = np.asarray(samples, dtype=np.float64).ravel()
        if len(data) > self.config.block_size:
            data = data[: self.config.block_size]

        levels = self.band_levels(data)
        if levels is None:
            return None

        alpha = self.config.smoothing_factor
        self._smoothed = alpha * levels + (1 - alpha) * self._smoothed

        return SpectrumSnapshot(
            band_levels_db=tuple(float(v) for v in self._smoothed),
            timestamp=timestamp or datetime.now(),
        )
