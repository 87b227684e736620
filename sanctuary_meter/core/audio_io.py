"""
Audio I/O Module

Loads and saves WAV captures (clap recordings, room noise, service snippets)
for offline RT60 and spectrum analysis.

Technical assumptions:
- WAV files are loaded with soundfile (high precision, no conversion)
- All audio data is returned as float64 numpy arrays (range -1.0 to 1.0)
- Multi-channel data is (samples, channels); analysis uses a mono downmix
"""

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Literal, Optional
import warnings

import numpy as np
import soundfile as sf

from .signal_processing import downmix_to_mono, resample_audio


logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".wav",)


@dataclass
class AudioCapture:
    """
    A loaded capture with its metadata.

    Attributes:
        data: Audio data, Shape: (samples,) or (samples, channels)
        sample_rate: Sample rate of the file
        channels: Number of channels
        file_path: Path to source file
        format_info: Format information (Subtype, Endianness)
    """
    data: np.ndarray
    sample_rate: int
    channels: int
    file_path: Path
    format_info: dict = field(default_factory=dict)

    def __post_init__(self):
        if self.data.ndim == 1:
            if self.channels != 1:
                raise ValueError("1D array must be mono")
        elif self.data.ndim == 2:
            if self.data.shape[1] != self.channels:
                raise ValueError("Channel count mismatch")
        else:
            raise ValueError("Audio array must be 1D or 2D")

    @property
    def num_samples(self) -> int:
        return self.data.shape[0]

    @property
    def duration_seconds(self) -> float:
        return self.num_samples / self.sample_rate

    def mono(self) -> np.ndarray:
        """Mono downmix (average of all channels)."""
        return downmix_to_mono(self.data)


def load_audio(file_path: str | Path) -> AudioCapture:
    """
    Load a WAV file without implicit conversion.

    Raises:
        FileNotFoundError: File does not exist
        ValueError: Unsupported format
    """
    path = Path(file_path)

    if not path.exists():
        raise FileNotFoundError(f"Audio file not found: {path}")

    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise ValueError(f"Unsupported format: {suffix}")

    data, sample_rate = sf.read(path, dtype="float64", always_2d=False)
    info = sf.info(path)
    channels = 1 if data.ndim == 1 else data.shape[1]

    logger.debug("Loaded %s: %d Hz, %d ch, %s", path.name, sample_rate, channels, info.subtype)

    return AudioCapture(
        data=data,
        sample_rate=sample_rate,
        channels=channels,
        file_path=path,
        format_info={
            "format": info.format,
            "subtype": info.subtype,
            "endian": info.endian,
        },
    )


def load_capture(
    file_path: str | Path,
    target_sr: Optional[int] = None,
) -> tuple[np.ndarray, int]:
    """
    Load a WAV file as a mono float64 signal ready for analysis.

    Args:
        file_path: Path to WAV file
        target_sr: Resample to this rate if given and different

    Returns:
        Tuple of (mono samples, sample rate)
    """
    capture = load_audio(file_path)
    samples = capture.mono()
    sample_rate = capture.sample_rate

    if target_sr is not None and target_sr != sample_rate:
        samples = resample_audio(samples, sample_rate, target_sr)
        sample_rate = target_sr

    return samples, sample_rate


def save_audio(
    data: np.ndarray,
    file_path: str | Path,
    sample_rate: int,
    subtype: Literal["PCM_16", "PCM_24", "PCM_32", "FLOAT"] = "PCM_24",
) -> None:
    """
    Save audio data as WAV file.

    Args:
        data: Audio data as numpy array (float, range -1.0 to 1.0)
        file_path: Target path
        sample_rate: Sample rate
        subtype: WAV subtype for quantization

    Raises:
        ValueError: Invalid data or parameters
    """
    path = Path(file_path)

    if data.ndim > 2:
        raise ValueError("Audio must be 1D or 2D")

    if not np.issubdtype(data.dtype, np.floating):
        raise ValueError("Audio data must be float")

    if np.any(np.abs(data) > 1.0):
        warnings.warn(
            "Audio data exceeds [-1.0, 1.0]. Clipping will be applied.",
            UserWarning,
        )
        data = np.clip(data, -1.0, 1.0)

    sf.write(path, data, sample_rate, subtype=subtype)
    logger.debug("Saved %s (%d samples)", path.name, data.shape[0])
