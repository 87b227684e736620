"""
Peak-hold tracking for the RTA meter.

Peaks rise instantly and fall by a fixed amount per update, but never below
the live level.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from .spectral import NOISE_FLOOR_DB
from .third_octave import BAND_COUNT


@dataclass(frozen=True)
class PeakHoldTracker:
    """
    Immutable per-band peak-hold state.

    update() and reset() return new trackers, so a tracker can be handed to
    a display without copying.

    Attributes:
        band_count: Number of bands
        decay_rate_db: dB the peak falls per update (positive).
            0.5 dB at ~10 updates/s holds a 20 dB peak for ~4 s.
        peaks_db: Current peak values in dB
    """
    band_count: int = BAND_COUNT
    decay_rate_db: float = 0.5
    peaks_db: Optional[tuple] = None

    def __post_init__(self):
        if self.decay_rate_db < 0:
            raise ValueError("Decay rate must be positive")
        if self.peaks_db is None:
            object.__setattr__(self, "peaks_db", (NOISE_FLOOR_DB,) * self.band_count)
        elif len(self.peaks_db) != self.band_count:
            raise ValueError("Peak count must match band count")

    def update(self, levels: Sequence[float]) -> "PeakHoldTracker":
        """
        Feed one set of band levels.

        Args:
            levels: Current band levels in dB (band_count values)

        Returns:
            New tracker with updated peaks

        Raises:
            ValueError: Level count differs from band count
        """
        if len(levels) != self.band_count:
            raise ValueError(
                f"Level count must match band count ({len(levels)} != {self.band_count})"
            )

        new_peaks = []
        for peak, level in zip(self.peaks_db, levels):
            level = float(level)
            if level > peak:
                new_peaks.append(level)
            else:
                new_peaks.append(max(peak - self.decay_rate_db, level))

        return PeakHoldTracker(
            band_count=self.band_count,
            decay_rate_db=self.decay_rate_db,
            peaks_db=tuple(new_peaks),
        )

    def reset(self) -> "PeakHoldTracker":
        """New tracker with every peak at the noise floor."""
        return PeakHoldTracker(band_count=self.band_count, decay_rate_db=self.decay_rate_db)

    def to_dict(self) -> dict:
        return {
            "peaks_db": list(self.peaks_db),
            "decay_rate_db": self.decay_rate_db,
        }
