"""
General Signal Processing

Level helpers shared by the SPL meter, the RT60 capture and file analysis.
All functions are EXPLICIT - no automatic conversions.

Technical assumptions:
- Levels are relative to full scale (1.0 = 0 dBFS)
- Silence maps to DBFS_FLOOR, never -inf
- Resampling uses scipy.signal.resample_poly for anti-aliasing
- Downmix is performed as arithmetic mean (no energy compensation)
- All operations work on copies, original data remains unchanged
"""

import numpy as np
from scipy import signal
from typing import Literal


# Level reported for a digitally silent block
DBFS_FLOOR = -160.0

# Nominal anchor of an uncalibrated microphone: 0 dBFS ≈ 90 dB SPL
REFERENCE_OFFSET_DB = 90.0


def resample_audio(
    data: np.ndarray,
    original_sr: int,
    target_sr: int,
) -> np.ndarray:
    """
    Resample audio data to new sample rate.

    Polyphase resampling (scipy.signal.resample_poly) with a Kaiser FIR
    anti-aliasing filter.

    Args:
        data: Audio data (1D or 2D)
        original_sr: Original sample rate
        target_sr: Target sample rate

    Returns:
        Resampled audio data (same dimensionality)
    """
    if original_sr == target_sr:
        return data.copy()

    gcd = np.gcd(original_sr, target_sr)
    up = target_sr // gcd
    down = original_sr // gcd

    if data.ndim == 1:
        return signal.resample_poly(data, up, down).astype(data.dtype)

    channels = [signal.resample_poly(data[:, ch], up, down) for ch in range(data.shape[1])]
    return np.stack(channels, axis=1).astype(data.dtype)


def downmix_to_mono(
    data: np.ndarray,
    method: Literal["average", "left", "right"] = "average",
) -> np.ndarray:
    """
    Convert multi-channel audio to mono.

    Methods:
    - average: Mean over all channels, no energy compensation
    - left: First channel only
    - right: Second channel only

    Args:
        data: Audio data, Shape: (samples,) or (samples, channels)
        method: Downmix method

    Returns:
        Mono audio data, Shape: (samples,)
    """
    if data.ndim == 1:
        return data.copy()

    if method == "average":
        return np.mean(data, axis=1)
    elif method == "left":
        return data[:, 0].copy()
    elif method == "right":
        if data.shape[1] < 2:
            raise ValueError(f"Expected at least 2 channels, got: {data.shape[1]}")
        return data[:, 1].copy()
    else:
        raise ValueError(f"Unknown method: {method}")


def compute_rms(data: np.ndarray, as_db: bool = False) -> float:
    """
    Compute RMS (Root Mean Square) of the signal.

    Args:
        data: Audio data
        as_db: If True, return dBFS (floored at DBFS_FLOOR)

    Returns:
        RMS value (linear or dB)
    """
    samples = np.asarray(data, dtype=np.float64)
    if samples.size == 0:
        return DBFS_FLOOR if as_db else 0.0

    rms = float(np.sqrt(np.mean(samples ** 2)))
    if as_db:
        return to_dbfs(rms)
    return rms


def compute_peak(data: np.ndarray, as_db: bool = False) -> float:
    """
    Compute peak value (absolute maximum) of the signal.

    Args:
        data: Audio data
        as_db: If True, return dBFS (floored at DBFS_FLOOR)

    Returns:
        Peak value (linear or dB)
    """
    samples = np.asarray(data, dtype=np.float64)
    if samples.size == 0:
        return DBFS_FLOOR if as_db else 0.0

    peak = float(np.max(np.abs(samples)))
    if as_db:
        return to_dbfs(peak)
    return peak


def to_dbfs(amplitude: float) -> float:
    """Linear amplitude to dBFS; zero and negative values map to DBFS_FLOOR."""
    if amplitude <= 0:
        return DBFS_FLOOR
    return max(float(20 * np.log10(amplitude)), DBFS_FLOOR)


def dbfs_to_spl(dbfs: float, offset_db: float = REFERENCE_OFFSET_DB) -> float:
    """
    Approximate SPL from a dBFS level.

    SPL = dBFS + offset, never below 0 dB.
    """
    return max(dbfs + offset_db, 0.0)


def remove_dc_offset(data: np.ndarray) -> np.ndarray:
    """
    Remove DC offset from signal.

    Subtracts the mean from all samples. Cheap USB interfaces often add a
    small offset that would otherwise raise the measured noise floor.

    Returns:
        Signal without DC offset
    """
    return data - np.mean(data, axis=0)
