"""
Room Reverberation - RT60 from a recorded clap.

Schroeder backward integration of the squared impulse response, a straight
line fitted to the -5 dB ... -35 dB part of the decay (T30 range) and an
extrapolation to -60 dB.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import logging
from typing import Optional, Sequence
import uuid

import numpy as np

from .spectral import NOISE_FLOOR_DB


__all__ = [
    "RoomClass",
    "RegressionResult",
    "RT60Measurement",
    "MINIMUM_RELIABLE_SNR_DB",
    "FIT_RANGE_UPPER_DB",
    "FIT_RANGE_LOWER_DB",
    "IMPULSE_THRESHOLD_DB",
    "noise_floor",
    "find_impulse",
    "signal_to_noise_ratio",
    "linear_regression",
    "energy_decay_curve",
    "extract_rt60",
    "classify",
    "advice",
    "measure_rt60",
]

logger = logging.getLogger(__name__)

# Minimum SNR (dB) for a reliable measurement
MINIMUM_RELIABLE_SNR_DB = 30.0

# Fit window on the EDC: skips direct sound (0 to -5 dB) and the noise tail
FIT_RANGE_UPPER_DB = -5.0
FIT_RANGE_LOWER_DB = -35.0
MIN_FIT_POINTS = 10

# A clap must clear the noise floor by this much
IMPULSE_THRESHOLD_DB = 20.0

# Plausible RT60 for a real room, in seconds
RT60_MIN_S = 0.1
RT60_MAX_S = 10.0

# Minimum slope (dB/s) that still counts as a decay
_MIN_DECAY_SLOPE = -0.1


# ============================================================
# DATA STRUCTURES
# ============================================================

class RoomClass(Enum):
    """Room character derived from RT60."""
    VERY_DRY = "Very Dry"
    DRY = "Dry"
    MODERATE = "Moderate"
    REVERBERANT = "Reverberant"
    VERY_REVERBERANT = "Very Reverberant"

    @property
    def label(self) -> str:
        return self.value


@dataclass(frozen=True)
class RegressionResult:
    """Least-squares line y = slope * x + intercept."""
    slope: float
    intercept: float


@dataclass(frozen=True)
class RT60Measurement:
    """
    Result of one RT60 capture.

    is_reliable is False when the clap did not clear the noise floor by
    MINIMUM_RELIABLE_SNR_DB; such a value must not be shown as a clean result.
    """
    rt60_seconds: float
    noise_floor_db: float
    snr_db: float
    is_reliable: bool
    classification: RoomClass
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    measured_at: datetime = field(default_factory=datetime.now)

    @property
    def advice(self) -> str:
        return advice(self.rt60_seconds)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "measured_at": self.measured_at.isoformat(),
            "rt60_seconds": self.rt60_seconds,
            "noise_floor_db": self.noise_floor_db,
            "snr_db": self.snr_db,
            "is_reliable": self.is_reliable,
            "classification": self.classification.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> RT60Measurement:
        return cls(
            rt60_seconds=float(data["rt60_seconds"]),
            noise_floor_db=float(data["noise_floor_db"]),
            snr_db=float(data["snr_db"]),
            is_reliable=bool(data["is_reliable"]),
            classification=RoomClass(data["classification"]),
            id=data["id"],
            measured_at=datetime.fromisoformat(data["measured_at"]),
        )


# ============================================================
# CORE ALGORITHM (SIGNAL PROCESSING)
# ============================================================

def noise_floor(samples: np.ndarray) -> float:
    """
    RMS level of an ambient (pre-clap) segment in dBFS.

    Silence or an empty segment returns NOISE_FLOOR_DB.
    """
    data = np.asarray(samples, dtype=np.float64)
    if data.size == 0:
        return NOISE_FLOOR_DB
    rms = np.sqrt(np.mean(data ** 2))
    if rms <= 0:
        return NOISE_FLOOR_DB
    return float(20 * np.log10(rms))


def find_impulse(
    samples: np.ndarray,
    noise_floor_db: float,
    threshold_db: float = IMPULSE_THRESHOLD_DB,
) -> Optional[int]:
    """
    Index of the first sample louder than noise floor + threshold.

    Returns:
        Sample index, or None if nothing clears the threshold
    """
    data = np.asarray(samples, dtype=np.float64)
    threshold_linear = 10 ** ((noise_floor_db + threshold_db) / 20)
    hits = np.flatnonzero(np.abs(data) > threshold_linear)
    if hits.size == 0:
        return None
    return int(hits[0])


def signal_to_noise_ratio(peak_db: float, noise_floor_db: float) -> float:
    """SNR in dB."""
    return peak_db - noise_floor_db


def linear_regression(
    xs: Sequence[float],
    ys: Sequence[float],
) -> Optional[RegressionResult]:
    """
    Ordinary least squares.

    Returns:
        RegressionResult, or None for fewer than 2 points, mismatched lengths
        or constant x
    """
    x = np.asarray(xs, dtype=np.float64)
    y = np.asarray(ys, dtype=np.float64)
    n = x.size
    if n < 2 or n != y.size:
        return None

    sum_x = np.sum(x)
    sum_y = np.sum(y)
    denominator = n * np.sum(x * x) - sum_x * sum_x
    if abs(denominator) <= 1e-10:
        return None

    slope = (n * np.sum(x * y) - sum_x * sum_y) / denominator
    intercept = (sum_y - slope * sum_x) / n
    return RegressionResult(slope=float(slope), intercept=float(intercept))


def energy_decay_curve(impulse_response: np.ndarray) -> np.ndarray:
    """
    Schroeder backward integration, in dB relative to the total energy.

    EDC(t) = sum of h²(τ) for τ >= t, so EDC[0] = 0 dB and the curve never
    rises. Samples with zero remaining energy report NOISE_FLOOR_DB.
    """
    ir = np.asarray(impulse_response, dtype=np.float64)
    if ir.size == 0:
        return np.zeros(0, dtype=np.float64)

    edc = np.cumsum((ir ** 2)[::-1])[::-1]

    max_energy = edc[0]
    if max_energy <= 0:
        return np.full(ir.size, NOISE_FLOOR_DB)

    edc_db = np.full(ir.size, NOISE_FLOOR_DB)
    positive = edc > 0
    edc_db[positive] = 10 * np.log10(edc[positive] / max_energy)
    return edc_db


def extract_rt60(edc_db: np.ndarray, sample_rate: float) -> Optional[float]:
    """
    Fit the -5 dB ... -35 dB part of the EDC and extrapolate to -60 dB.

    Args:
        edc_db: Energy decay curve in dB (EDC[0] = 0 dB)
        sample_rate: Sample rate in Hz

    Returns:
        RT60 in seconds, or None if the curve is too short, too flat or
        gives an implausible value
    """
    edc = np.asarray(edc_db, dtype=np.float64)
    if edc.size == 0 or sample_rate <= 0:
        return None

    mask = (edc <= FIT_RANGE_UPPER_DB) & (edc >= FIT_RANGE_LOWER_DB)
    if np.count_nonzero(mask) < MIN_FIT_POINTS:
        return None

    t = np.flatnonzero(mask) / sample_rate
    regression = linear_regression(t, edc[mask])
    if regression is None:
        return None

    # slope in dB/s, negative for a decay
    if regression.slope >= _MIN_DECAY_SLOPE:
        return None

    rt60 = -60.0 / regression.slope
    if not RT60_MIN_S <= rt60 <= RT60_MAX_S:
        return None
    return float(rt60)


def classify(rt60: float) -> RoomClass:
    """Classify a room from its RT60 in seconds."""
    if rt60 < 0.5:
        return RoomClass.VERY_DRY
    if rt60 < 0.8:
        return RoomClass.DRY
    if rt60 < 1.3:
        return RoomClass.MODERATE
    if rt60 < 2.0:
        return RoomClass.REVERBERANT
    return RoomClass.VERY_REVERBERANT


_ADVICE = {
    RoomClass.VERY_DRY: (
        "Your room is very controlled. Great for speech clarity. "
        "You can use longer reverb effects if desired."
    ),
    RoomClass.DRY: (
        "Excellent for worship. Speech is clear and music has natural warmth "
        "without excessive buildup."
    ),
    RoomClass.MODERATE: (
        "Good balance. Watch for low-mid buildup around 200-400 Hz. "
        "Consider subtle HPF on vocals."
    ),
    RoomClass.REVERBERANT: (
        "Reverberant room. Use tighter EQ cuts in the low-mids. "
        "Keep effects reverb short to avoid wash."
    ),
    RoomClass.VERY_REVERBERANT: (
        "Very reverberant. Prioritize speech clarity. "
        "Use aggressive HPF, tight compression, and minimal effects."
    ),
}


def advice(rt60: float) -> str:
    """Short mixing advice for the volunteer."""
    return _ADVICE[classify(rt60)]


# ============================================================
# COMPLETE MEASUREMENT
# ============================================================

def measure_rt60(
    recording: np.ndarray,
    pre_noise_samples: int,
    sample_rate: float,
) -> Optional[RT60Measurement]:
    """
    Full RT60 measurement from one capture.

    The capture holds an ambient pre-roll of pre_noise_samples, then the
    clap and its decay.

    Pipeline:
    1) Noise floor from the pre-roll
    2) First sample after the pre-roll that clears the floor by 20 dB
    3) Decay segment from the impulse to the end
    4) Peak level and SNR
    5) Schroeder EDC and T30 regression

    Returns:
        RT60Measurement, or None if no usable decay was found
    """
    rec = np.asarray(recording, dtype=np.float64).ravel()
    if pre_noise_samples < 0 or rec.size <= pre_noise_samples + 1000:
        logger.info("Capture too short for RT60 (%d samples)", rec.size)
        return None

    noise_db = noise_floor(rec[:pre_noise_samples])

    offset = find_impulse(rec[pre_noise_samples:], noise_db)
    if offset is None:
        logger.info("No impulse above %.1f dB noise floor", noise_db)
        return None
    impulse_index = pre_noise_samples + offset

    if impulse_index >= rec.size - 100:
        logger.info("Impulse too close to the end of the capture")
        return None
    decay = rec[impulse_index:]

    peak = float(np.max(np.abs(decay)))
    peak_db = 20 * np.log10(peak) if peak > 0 else NOISE_FLOOR_DB
    snr = signal_to_noise_ratio(peak_db, noise_db)

    rt60 = extract_rt60(energy_decay_curve(decay), sample_rate)
    if rt60 is None:
        logger.info("Decay curve did not yield an RT60")
        return None

    measurement = RT60Measurement(
        rt60_seconds=rt60,
        noise_floor_db=noise_db,
        snr_db=snr,
        is_reliable=snr >= MINIMUM_RELIABLE_SNR_DB,
        classification=classify(rt60),
    )
    logger.info(
        "RT60 %.2f s (%s), SNR %.1f dB%s",
        rt60,
        measurement.classification.value,
        snr,
        "" if measurement.is_reliable else " - unreliable",
    )
    return measurement
