"""
ISO Third-Octave Band Table

Static definition of the 31-band 1/3-octave grid used by the RTA display.

Technical specification:
- Nominal ISO 266 center frequencies from 20 Hz to 20 kHz
- Band limits: fm / 2^(1/6) and fm × 2^(1/6)
- Bandwidth: fm × (2^(1/6) - 2^(-1/6)) ≈ 0.2316 × fm

Documented limitations:
- Centers are the rounded nominal values, not the exact base-10 series.
  Adjacent bands therefore overlap or leave gaps of a few percent.
- The table is pure data; band folding of FFT bins lives in spectral.py
"""

from dataclasses import dataclass
import numpy as np


# ISO 266 nominal 1/3-octave center frequencies (in Hz)
BAND_CENTER_FREQUENCIES = np.array([
    # Bass range
    20, 25, 31.5, 40, 50, 63, 80, 100, 125, 160,
    # Mid range
    200, 250, 315, 400, 500, 630, 800, 1000, 1250, 1600,
    # High frequencies
    2000, 2500, 3150, 4000, 5000, 6300, 8000, 10000, 12500, 16000,
    20000,
], dtype=np.float64)
BAND_CENTER_FREQUENCIES.flags.writeable = False

BAND_COUNT = len(BAND_CENTER_FREQUENCIES)

# Short labels for axis rendering
BAND_LABELS = (
    "20", "25", "31", "40", "50", "63", "80", "100", "125", "160",
    "200", "250", "315", "400", "500", "630", "800", "1k", "1.25k", "1.6k",
    "2k", "2.5k", "3.15k", "4k", "5k", "6.3k", "8k", "10k", "12.5k", "16k",
    "20k",
)

# Labels shown on the axis; the others are hidden to prevent clutter
MAJOR_TICK_INDICES = frozenset({
    0, 2, 4, 6, 8, 10, 12, 14, 16, 18, 20, 23, 26, 29, 30,
})

_HALF_BAND_FACTOR = 2 ** (1 / 6)  # ≈ 1.1225


@dataclass(frozen=True)
class FrequencyBand:
    """
    A single 1/3-octave band.

    The center is the geometric mean of the edges and
    upper_frequency / lower_frequency == 2^(1/3).
    """
    center_frequency: float  # Hz
    lower_frequency: float   # Hz
    upper_frequency: float   # Hz
    label: str

    @property
    def bandwidth(self) -> float:
        """Bandwidth in Hz."""
        return self.upper_frequency - self.lower_frequency

    @property
    def quality_factor(self) -> float:
        """Q-factor of the band."""
        return self.center_frequency / self.bandwidth

    def contains(self, frequency: float) -> bool:
        """True if frequency lies in [lower, upper)."""
        return self.lower_frequency <= frequency < self.upper_frequency

    def to_dict(self) -> dict:
        return {
            "center_hz": self.center_frequency,
            "lower_hz": self.lower_frequency,
            "upper_hz": self.upper_frequency,
            "label": self.label,
        }


def band_centers() -> np.ndarray:
    """Return a copy of the 31 center frequencies in ascending order."""
    return BAND_CENTER_FREQUENCIES.copy()


def lower_edge(center_frequency: float) -> float:
    """Lower edge of a 1/3-octave band: fc / 2^(1/6)."""
    return float(center_frequency) / _HALF_BAND_FACTOR


def upper_edge(center_frequency: float) -> float:
    """Upper edge of a 1/3-octave band: fc × 2^(1/6)."""
    return float(center_frequency) * _HALF_BAND_FACTOR


def frequency_bands() -> list[FrequencyBand]:
    """Build FrequencyBand objects for the whole table."""
    return [
        FrequencyBand(
            center_frequency=float(fc),
            lower_frequency=lower_edge(fc),
            upper_frequency=upper_edge(fc),
            label=label,
        )
        for fc, label in zip(BAND_CENTER_FREQUENCIES, BAND_LABELS)
    ]


def band_index(center_frequency: float) -> int:
    """
    Index of a center frequency in the table.

    Raises:
        ValueError: Frequency is not a table center
    """
    matches = np.flatnonzero(np.isclose(BAND_CENTER_FREQUENCIES, center_frequency))
    if matches.size == 0:
        raise ValueError(f"Frequency {center_frequency} Hz is not a band center")
    return int(matches[0])
