"""
Gemeinsame Fixtures und Signalgeneratoren für die Tests.
"""

from datetime import datetime

import numpy as np
import pytest


SAMPLE_RATE = 48000


def sine(freq: float, n: int, sample_rate: int = SAMPLE_RATE, amplitude: float = 0.5) -> np.ndarray:
    """Sinuston mit n Samples."""
    t = np.arange(n) / sample_rate
    return amplitude * np.sin(2 * np.pi * freq * t)


def decaying_noise(
    rt60: float,
    seconds: float,
    sample_rate: int = SAMPLE_RATE,
    amplitude: float = 0.25,
    seed: int = 1,
) -> np.ndarray:
    """Weißes Rauschen mit exponentiellem Abfall von 60 dB in rt60 Sekunden."""
    rng = np.random.default_rng(seed)
    t = np.arange(int(seconds * sample_rate)) / sample_rate
    envelope = np.exp(-np.log(1000.0) * t / rt60)
    return amplitude * rng.standard_normal(t.size) * envelope


def clap_recording(
    rt60: float,
    pre_roll: float = 1.5,
    decay: float = 4.0,
    noise_rms: float = 1e-4,
    sample_rate: int = SAMPLE_RATE,
    seed: int = 1,
) -> np.ndarray:
    """Umgebungsrauschen, dann Klatschen mit Nachhall, Rauschen durchgehend."""
    rng = np.random.default_rng(seed + 100)
    tail = decaying_noise(rt60, decay, sample_rate, seed=seed)
    silence = np.zeros(int(pre_roll * sample_rate))
    recording = np.concatenate([silence, tail])
    return recording + noise_rms * rng.standard_normal(recording.size)


@pytest.fixture
def t0() -> datetime:
    return datetime(2026, 3, 1, 10, 0, 0)
