"""
SPL Alert Meter

Turns a stream of block levels into calibrated SPL readings, a debounced
Safe / Warning / Alert state and a per-service session report.

Technical assumptions:
- SPL ≈ dBFS + calibration offset; the uncalibrated anchor is 0 dBFS = 90 dB
- Warning threshold = target, alert threshold = target + flagging margin
- Entering Warning/Alert needs BREACH_DEBOUNCE_S of sustained breach,
  returning to Safe needs SAFE_DEBOUNCE_S of sustained compliance
- Breach events are logged independently of the alert debounce: from the
  first reading over target to the first reading back at or under it,
  kept when they last at least MIN_BREACH_EVENT_S
- Every public method holds one re-entrant lock, so the capture consumer
  and the controlling thread never interleave

Documented limitations:
- Absolute accuracy of an uncalibrated phone/laptop mic is roughly ±3 dB
- No frequency weighting (Z-weighted RMS per block)
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import logging
import threading
from typing import Callable, Optional, Sequence
import uuid

import numpy as np

from .signal_processing import REFERENCE_OFFSET_DB, compute_rms, dbfs_to_spl


logger = logging.getLogger(__name__)

# Breach must persist this long (s) before Warning/Alert is committed
BREACH_DEBOUNCE_S = 1.5

# Compliance must persist this long (s) before Safe is committed
SAFE_DEBOUNCE_S = 3.0

# Breach events shorter than this are not logged
MIN_BREACH_EVENT_S = 1.0

# Rolling average window (~2 s at 50 readings/s)
ROLLING_WINDOW = 100


# ============================================================
# CONFIGURATION
# ============================================================

class FlaggingMode(Enum):
    """How far over target the meter tolerates before it raises an alert."""
    STRICT = "Strict"
    BALANCED = "Balanced"
    VARIABLE = "Variable"

    @property
    def threshold_db(self) -> float:
        """Margin above target in dB."""
        return _MODE_MARGINS[self]

    @property
    def description(self) -> str:
        return f"Flag at +{self.threshold_db:.0f} dB over target"


_MODE_MARGINS = {
    FlaggingMode.STRICT: 2.0,
    FlaggingMode.BALANCED: 5.0,
    FlaggingMode.VARIABLE: 8.0,
}


@dataclass
class SPLPreference:
    """
    User SPL configuration.

    Attributes:
        target_db: Target level in dB SPL (40-130 is plausible)
        flagging_mode: Margin above target before an alert
        calibration_offset_db: dBFS to SPL offset from calibration,
            None for the nominal 90 dB anchor
    """
    target_db: float = 90.0
    flagging_mode: FlaggingMode = FlaggingMode.BALANCED
    calibration_offset_db: Optional[float] = None

    @property
    def flag_threshold_db(self) -> float:
        return self.flagging_mode.threshold_db

    def to_dict(self) -> dict:
        return {
            "target_db": self.target_db,
            "flagging_mode": self.flagging_mode.value,
            "calibration_offset_db": self.calibration_offset_db,
        }


# ============================================================
# ALERT STATE
# ============================================================

class AlertLevel(Enum):
    SAFE = "safe"
    WARNING = "warning"
    ALERT = "alert"


@dataclass(frozen=True)
class AlertState:
    """
    Current alert level.

    current_db and over_by_db are whole dB (truncated) and are 0 for SAFE.
    """
    level: AlertLevel = AlertLevel.SAFE
    current_db: int = 0
    over_by_db: int = 0

    @classmethod
    def safe(cls) -> AlertState:
        return cls()

    @classmethod
    def warning(cls, current_db: float, over_by_db: float) -> AlertState:
        return cls(AlertLevel.WARNING, int(current_db), int(over_by_db))

    @classmethod
    def alert(cls, current_db: float, over_by_db: float) -> AlertState:
        return cls(AlertLevel.ALERT, int(current_db), int(over_by_db))

    @property
    def is_active(self) -> bool:
        return self.level is not AlertLevel.SAFE

    @property
    def is_danger(self) -> bool:
        return self.level is AlertLevel.ALERT

    def to_dict(self) -> dict:
        return {
            "level": self.level.value,
            "current_db": self.current_db,
            "over_by_db": self.over_by_db,
        }


# ============================================================
# SESSION RECORDS
# ============================================================

@dataclass(frozen=True)
class SPLBreachEvent:
    """
    One logged stretch over target (at least MIN_BREACH_EVENT_S long).

    Attributes:
        start_time: First over-target reading of the breach
        end_time: First reading back at or under target, or the session stop
        peak_db: Highest SPL during the breach
        target_db: Target at the time of the breach
        threshold_db: Flagging margin above target at the time of the breach
    """
    start_time: datetime
    end_time: datetime
    peak_db: float
    target_db: float
    threshold_db: float
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def duration_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    @property
    def over_target_db(self) -> float:
        return self.peak_db - self.target_db

    @property
    def was_danger(self) -> bool:
        return self.peak_db > self.target_db + self.threshold_db

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "peak_db": self.peak_db,
            "target_db": self.target_db,
            "threshold_db": self.threshold_db,
        }

    @classmethod
    def from_dict(cls, data: dict) -> SPLBreachEvent:
        return cls(
            start_time=datetime.fromisoformat(data["start_time"]),
            end_time=datetime.fromisoformat(data["end_time"]),
            peak_db=float(data["peak_db"]),
            target_db=float(data["target_db"]),
            threshold_db=float(data["threshold_db"]),
            id=data["id"],
        )


class SessionGrade(Enum):
    CLEAN_SERVICE = "Clean Service"
    GOOD_CONTROL = "Good Control"
    NEEDS_ATTENTION = "Needs Attention"
    OVER_TARGET = "Over Target"


@dataclass(frozen=True)
class SPLSessionReport:
    """
    Summary of one monitoring session (one service).

    Everything below the stored fields is derived on access.
    """
    session_start: datetime
    session_end: datetime
    target_db: float
    flagging_mode: FlaggingMode
    breach_events: tuple
    overall_peak_db: float
    overall_average_db: float
    total_monitoring_seconds: float
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    date: datetime = field(default_factory=datetime.now)

    @property
    def breach_count(self) -> int:
        return len(self.breach_events)

    @property
    def danger_count(self) -> int:
        return sum(1 for event in self.breach_events if event.was_danger)

    @property
    def total_breach_seconds(self) -> float:
        return sum(event.duration_seconds for event in self.breach_events)

    @property
    def breach_percentage(self) -> float:
        """Percent of monitoring time spent over target (0-100)."""
        if self.total_monitoring_seconds <= 0:
            return 0.0
        return self.total_breach_seconds / self.total_monitoring_seconds * 100

    @property
    def longest_breach_seconds(self) -> float:
        return max((event.duration_seconds for event in self.breach_events), default=0.0)

    @property
    def grade(self) -> SessionGrade:
        if self.breach_count == 0:
            return SessionGrade.CLEAN_SERVICE
        if self.danger_count == 0 and self.breach_percentage < 10:
            return SessionGrade.GOOD_CONTROL
        if self.breach_percentage < 20:
            return SessionGrade.NEEDS_ATTENTION
        return SessionGrade.OVER_TARGET

    @property
    def grade_summary(self) -> str:
        """One-sentence summary of the session result."""
        if self.breach_count == 0:
            return "SPL stayed within target for the entire session."
        plural = "" if self.breach_count == 1 else "es"
        return (
            f"{self.breach_count} breach{plural} over {int(self.target_db)} dB target. "
            f"Over target {self.breach_percentage:.0f}% of the time."
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "session_start": self.session_start.isoformat(),
            "session_end": self.session_end.isoformat(),
            "target_db": self.target_db,
            "flagging_mode": self.flagging_mode.value,
            "breach_events": [event.to_dict() for event in self.breach_events],
            "overall_peak_db": self.overall_peak_db,
            "overall_average_db": self.overall_average_db,
            "total_monitoring_seconds": self.total_monitoring_seconds,
            "breach_count": self.breach_count,
            "danger_count": self.danger_count,
            "breach_percentage": self.breach_percentage,
            "grade": self.grade.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> SPLSessionReport:
        # derived keys in the mapping are ignored
        return cls(
            session_start=datetime.fromisoformat(data["session_start"]),
            session_end=datetime.fromisoformat(data["session_end"]),
            target_db=float(data["target_db"]),
            flagging_mode=FlaggingMode(data["flagging_mode"]),
            breach_events=tuple(SPLBreachEvent.from_dict(e) for e in data["breach_events"]),
            overall_peak_db=float(data["overall_peak_db"]),
            overall_average_db=float(data["overall_average_db"]),
            total_monitoring_seconds=float(data["total_monitoring_seconds"]),
            id=data["id"],
            date=datetime.fromisoformat(data["date"]),
        )


@dataclass(frozen=True)
class SPLReading:
    """Flat meter snapshot for a companion display."""
    current_db: float
    peak_db: float
    average_db: float
    alert_state: AlertState
    is_running: bool
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "current_db": self.current_db,
            "peak_db": self.peak_db,
            "average_db": self.average_db,
            "alert_state": self.alert_state.to_dict(),
            "is_running": self.is_running,
            "timestamp": self.timestamp.isoformat(),
        }


# ============================================================
# METER
# ============================================================

class SPLAlertMeter:
    """
    Calibrated SPL meter with a debounced alert machine.

    Usage:
        meter = SPLAlertMeter()
        meter.update_alert_thresholds(SPLPreference(target_db=92))
        meter.start()
        for block in blocks:
            state = meter.process_block(block)
        meter.stop()
        report = meter.generate_session_report(FlaggingMode.BALANCED)

    Every method that takes `now` falls back to the meter's clock.
    """

    def __init__(
        self,
        preference: Optional[SPLPreference] = None,
        breach_debounce_s: float = BREACH_DEBOUNCE_S,
        safe_debounce_s: float = SAFE_DEBOUNCE_S,
        clock: Callable[[], datetime] = datetime.now,
    ):
        if breach_debounce_s < 0 or safe_debounce_s < 0:
            raise ValueError("Debounce windows must not be negative")

        self.breach_debounce_s = breach_debounce_s
        self.safe_debounce_s = safe_debounce_s
        self._clock = clock
        self._lock = threading.RLock()

        self._target_db = 90.0
        self._flag_threshold_db = FlaggingMode.BALANCED.threshold_db
        self._calibration_offset_db: Optional[float] = None

        # live readings
        self._current_db = 0.0
        self._peak_db = 0.0
        self._recent: deque = deque(maxlen=ROLLING_WINDOW)
        self._alert_state = AlertState.safe()

        # debounce timers, None until observed
        self._breach_start: Optional[datetime] = None
        self._safe_start: Optional[datetime] = None

        # session
        self._running = False
        self._session_start: Optional[datetime] = None
        self._session_end: Optional[datetime] = None
        self._session_sum = 0.0
        self._session_count = 0
        self._session_peak = 0.0
        self._breach_events: list[SPLBreachEvent] = []
        self._open_breach_start: Optional[datetime] = None
        self._breach_peak = 0.0

        self.update_alert_thresholds(preference or SPLPreference())

    # --------------------------------------------------------
    # Properties
    # --------------------------------------------------------

    @property
    def alert_state(self) -> AlertState:
        with self._lock:
            return self._alert_state

    @property
    def warning_threshold_db(self) -> float:
        with self._lock:
            return self._target_db

    @property
    def alert_threshold_db(self) -> float:
        with self._lock:
            return self._target_db + self._flag_threshold_db

    @property
    def calibration_offset_db(self) -> float:
        """Offset applied to dBFS readings."""
        with self._lock:
            return self._applied_offset()

    @property
    def current_db(self) -> float:
        with self._lock:
            return self._current_db

    @property
    def peak_db(self) -> float:
        with self._lock:
            return self._peak_db

    @property
    def average_db(self) -> float:
        with self._lock:
            if not self._recent:
                return 0.0
            return sum(self._recent) / len(self._recent)

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def breach_events(self) -> tuple:
        with self._lock:
            return tuple(self._breach_events)

    # --------------------------------------------------------
    # Configuration
    # --------------------------------------------------------

    def update_alert_thresholds(self, preference: SPLPreference) -> None:
        """Re-derive thresholds (and adopt the calibration) from a preference."""
        with self._lock:
            self._target_db = float(preference.target_db)
            self._flag_threshold_db = preference.flag_threshold_db
            self._calibration_offset_db = preference.calibration_offset_db
            logger.debug(
                "Thresholds: warning %.1f dB, alert %.1f dB",
                self._target_db,
                self._target_db + self._flag_threshold_db,
            )

    def calibration_offset(self, known_spl: float) -> float:
        """
        Offset that makes the latest reading equal a reference meter.

        While uncalibrated this is known_spl - (current_db - 90). Store the
        result in SPLPreference.calibration_offset_db.
        """
        with self._lock:
            raw = self._current_db - self._applied_offset()
            return known_spl - raw

    def _applied_offset(self) -> float:
        if self._calibration_offset_db is None:
            return REFERENCE_OFFSET_DB
        return self._calibration_offset_db

    # --------------------------------------------------------
    # Session lifecycle
    # --------------------------------------------------------

    def start(self, now: Optional[datetime] = None) -> None:
        """Begin a new monitoring session; clears the previous one."""
        with self._lock:
            now = now or self._clock()
            self._running = True
            self._session_start = now
            self._session_end = None
            self._session_sum = 0.0
            self._session_count = 0
            self._session_peak = 0.0
            self._breach_events = []
            self._open_breach_start = None
            self._breach_peak = 0.0
            self._breach_start = None
            self._safe_start = None
            self._alert_state = AlertState.safe()
            self._peak_db = 0.0
            self._recent.clear()
            logger.info("SPL session started (target %.1f dB)", self._target_db)

    def stop(self, now: Optional[datetime] = None) -> None:
        """Close any open breach and freeze the session. Idempotent."""
        with self._lock:
            if not self._running:
                return
            now = now or self._clock()
            if self._open_breach_start is not None:
                self._close_breach(now)
            self._running = False
            self._session_end = now
            logger.info(
                "SPL session stopped after %d readings, %d breach(es)",
                self._session_count,
                len(self._breach_events),
            )

    def reset_peak(self) -> None:
        """Reset displayed peak and rolling average."""
        with self._lock:
            self._peak_db = 0.0
            self._recent.clear()

    # --------------------------------------------------------
    # Reading path
    # --------------------------------------------------------

    def process_block(
        self,
        samples: Sequence[float],
        now: Optional[datetime] = None,
    ) -> AlertState:
        """Measure one block of samples (RMS, dBFS) and evaluate it."""
        dbfs = compute_rms(np.asarray(samples, dtype=np.float64), as_db=True)
        return self.process_dbfs(dbfs, now)

    def process_dbfs(self, dbfs: float, now: Optional[datetime] = None) -> AlertState:
        """Apply calibration to a dBFS level and evaluate the SPL."""
        with self._lock:
            spl = dbfs_to_spl(dbfs, self._applied_offset())
            return self.evaluate(spl, now)

    def evaluate(self, spl: float, now: Optional[datetime] = None) -> AlertState:
        """
        Record one SPL reading and advance the alert machine.

        Returns:
            The alert state after this reading
        """
        with self._lock:
            now = now or self._clock()
            self._record(spl)

            over_target = spl - self._target_db
            over_threshold = spl - (self._target_db + self._flag_threshold_db)

            if over_target > 0:
                self._safe_start = None
                if self._breach_start is None:
                    self._breach_start = now

                if self._running:
                    if self._open_breach_start is None:
                        self._open_breach_start = now
                    self._breach_peak = max(self._breach_peak, spl)

                if self._elapsed(self._breach_start, now) >= self.breach_debounce_s:
                    if over_threshold > 0:
                        self._set_state(AlertState.alert(spl, over_target))
                    else:
                        self._set_state(AlertState.warning(spl, over_target))
            else:
                self._breach_start = None
                if self._open_breach_start is not None:
                    self._close_breach(now)

                if self._alert_state.is_active:
                    if self._safe_start is None:
                        self._safe_start = now
                    if self._elapsed(self._safe_start, now) >= self.safe_debounce_s:
                        self._set_state(AlertState.safe())
                        self._safe_start = None
                else:
                    self._safe_start = None

            return self._alert_state

    def reading(self, now: Optional[datetime] = None) -> SPLReading:
        with self._lock:
            return SPLReading(
                current_db=self._current_db,
                peak_db=self._peak_db,
                average_db=self.average_db,
                alert_state=self._alert_state,
                is_running=self._running,
                timestamp=now or self._clock(),
            )

    def _record(self, spl: float) -> None:
        self._current_db = spl
        self._peak_db = max(self._peak_db, spl)
        self._recent.append(spl)
        if self._running:
            self._session_sum += spl
            self._session_count += 1
            self._session_peak = max(self._session_peak, spl)

    def _set_state(self, state: AlertState) -> None:
        if state.level is not self._alert_state.level:
            logger.info("Alert %s -> %s at %d dB", self._alert_state.level.value,
                        state.level.value, state.current_db)
        self._alert_state = state

    def _close_breach(self, end_time: datetime) -> None:
        event = SPLBreachEvent(
            start_time=self._open_breach_start,
            end_time=end_time,
            peak_db=self._breach_peak,
            target_db=self._target_db,
            threshold_db=self._flag_threshold_db,
        )
        self._open_breach_start = None
        self._breach_peak = 0.0
        if event.duration_seconds < MIN_BREACH_EVENT_S:
            logger.debug("Ignoring %.2f s breach", event.duration_seconds)
            return

        self._breach_events.append(event)
        logger.info(
            "Breach logged: %.1f s, peak %.1f dB%s",
            event.duration_seconds,
            event.peak_db,
            " (danger)" if event.was_danger else "",
        )

    @staticmethod
    def _elapsed(since: Optional[datetime], now: datetime) -> float:
        if since is None:
            return 0.0
        return (now - since).total_seconds()

    # --------------------------------------------------------
    # Report
    # --------------------------------------------------------

    def generate_session_report(
        self,
        flagging_mode: FlaggingMode,
        now: Optional[datetime] = None,
    ) -> Optional[SPLSessionReport]:
        """
        Summarize the current or last session.

        Returns:
            SPLSessionReport, or None if no session ran or no reading arrived
        """
        with self._lock:
            if self._session_start is None or self._session_count == 0:
                return None

            end = self._session_end or now or self._clock()
            return SPLSessionReport(
                session_start=self._session_start,
                session_end=end,
                target_db=self._target_db,
                flagging_mode=flagging_mode,
                breach_events=tuple(self._breach_events),
                overall_peak_db=self._session_peak,
                overall_average_db=self._session_sum / self._session_count,
                total_monitoring_seconds=(end - self._session_start).total_seconds(),
                date=end,
            )
