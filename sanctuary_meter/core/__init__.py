"""
Core measurement module - fully testable without audio hardware.

This module contains all measurement logic:
- ISO third-octave band table
- Block spectrum analysis with peak hold (RTA)
- RT60 estimation from a clap (Schroeder integration)
- Debounced SPL alert meter with session reports
- WAV I/O and live capture plumbing
"""

from .audio_io import AudioCapture, load_audio, load_capture, save_audio
from .capture import (
    AudioBlock,
    BlockQueue,
    LiveCapture,
    MeteringPipeline,
    iter_input_chunks,
    record_capture,
)
from .peak_hold import PeakHoldTracker
from .reverb import RoomClass, RT60Measurement, measure_rt60
from .reverb_capture import CapturePhase, RT60CaptureSession
from .signal_processing import compute_peak, compute_rms, downmix_to_mono, to_dbfs
from .spectral import (
    NOISE_FLOOR_DB,
    RECOMMENDED_BLOCK_SIZE,
    SpectrumAnalyzer,
    SpectrumConfig,
    SpectrumSnapshot,
)
from .spl_meter import (
    AlertLevel,
    AlertState,
    FlaggingMode,
    SessionGrade,
    SPLAlertMeter,
    SPLBreachEvent,
    SPLPreference,
    SPLReading,
    SPLSessionReport,
)
from .third_octave import BAND_CENTER_FREQUENCIES, BAND_COUNT, FrequencyBand, frequency_bands

__all__ = [
    "AudioCapture",
    "load_audio",
    "load_capture",
    "save_audio",
    "AudioBlock",
    "BlockQueue",
    "LiveCapture",
    "MeteringPipeline",
    "iter_input_chunks",
    "record_capture",
    "PeakHoldTracker",
    "RoomClass",
    "RT60Measurement",
    "measure_rt60",
    "CapturePhase",
    "RT60CaptureSession",
    "compute_peak",
    "compute_rms",
    "downmix_to_mono",
    "to_dbfs",
    "NOISE_FLOOR_DB",
    "RECOMMENDED_BLOCK_SIZE",
    "SpectrumAnalyzer",
    "SpectrumConfig",
    "SpectrumSnapshot",
    "AlertLevel",
    "AlertState",
    "FlaggingMode",
    "SessionGrade",
    "SPLAlertMeter",
    "SPLBreachEvent",
    "SPLPreference",
    "SPLReading",
    "SPLSessionReport",
    "BAND_CENTER_FREQUENCIES",
    "BAND_COUNT",
    "FrequencyBand",
    "frequency_bands",
]
