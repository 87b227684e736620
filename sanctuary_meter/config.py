"""Application configuration."""

from typing import Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Meter settings with env var overrides (SANCTUARY_METER_*)."""

    # Audio
    sample_rate: int = 48000
    block_size: int = 4096  # spectrum FFT size
    spl_block_size: int = 1024  # frames per capture callback / SPL reading
    queue_depth: int = 2
    input_device: Optional[str] = None

    # RTA display
    peak_decay_db: float = 0.5
    smoothing_factor: float = 0.3

    # SPL alerts
    target_db: float = 90.0
    flagging_mode: Literal["Strict", "Balanced", "Variable"] = "Balanced"
    calibration_offset_db: Optional[float] = None

    log_level: str = "INFO"

    model_config = {"env_prefix": "SANCTUARY_METER_"}
