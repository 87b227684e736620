"""
Tests für den SPL-Alarm-Meter.

Alle Zeiten werden explizit übergeben, die Tests hängen nie von der Uhr ab.
"""

from datetime import datetime, timedelta
import threading

import pytest
import numpy as np

from sanctuary_meter.core.spl_meter import (
    BREACH_DEBOUNCE_S,
    SAFE_DEBOUNCE_S,
    AlertLevel,
    AlertState,
    FlaggingMode,
    SessionGrade,
    SPLAlertMeter,
    SPLBreachEvent,
    SPLPreference,
    SPLSessionReport,
)


def at(t0: datetime, seconds: float) -> datetime:
    return t0 + timedelta(seconds=seconds)


def feed(meter, t0, start, stop, spl, step=0.1):
    """Konstanten Pegel von start bis stop (exklusive) einspeisen."""
    state = None
    for t in np.arange(start, stop, step):
        state = meter.evaluate(spl, at(t0, float(t)))
    return state


class TestFlaggingMode:
    """Tests für die Flagging-Modi."""

    def test_margins(self):
        assert FlaggingMode.STRICT.threshold_db == 2.0
        assert FlaggingMode.BALANCED.threshold_db == 5.0
        assert FlaggingMode.VARIABLE.threshold_db == 8.0

    def test_description(self):
        assert FlaggingMode.BALANCED.description == "Flag at +5 dB over target"

    def test_preference_defaults(self):
        pref = SPLPreference()
        assert pref.target_db == 90.0
        assert pref.flagging_mode is FlaggingMode.BALANCED
        assert pref.calibration_offset_db is None
        assert pref.flag_threshold_db == 5.0


class TestAlertState:
    """Tests für den Alarmzustand."""

    def test_safe(self):
        state = AlertState.safe()
        assert not state.is_active
        assert not state.is_danger

    def test_warning(self):
        state = AlertState.warning(93.7, 3.7)
        assert state.is_active and not state.is_danger
        assert state.current_db == 93
        assert state.over_by_db == 3

    def test_alert(self):
        state = AlertState.alert(97.0, 7.0)
        assert state.is_active and state.is_danger

    def test_to_dict(self):
        assert AlertState.alert(97.0, 7.0).to_dict() == {
            "level": "alert", "current_db": 97, "over_by_db": 7,
        }


class TestThresholds:
    """Tests für die Schwellenableitung."""

    def test_defaults(self):
        meter = SPLAlertMeter()
        assert meter.warning_threshold_db == 90.0
        assert meter.alert_threshold_db == 95.0

    @pytest.mark.parametrize("mode,alert", [
        (FlaggingMode.STRICT, 87.0),
        (FlaggingMode.BALANCED, 90.0),
        (FlaggingMode.VARIABLE, 93.0),
    ])
    def test_update(self, mode, alert):
        meter = SPLAlertMeter()
        meter.update_alert_thresholds(SPLPreference(target_db=85.0, flagging_mode=mode))
        assert meter.warning_threshold_db == 85.0
        assert meter.alert_threshold_db == alert

    def test_negative_debounce_rejected(self):
        with pytest.raises(ValueError):
            SPLAlertMeter(breach_debounce_s=-1.0)


class TestCalibration:
    """Tests für die Kalibrierung."""

    def test_reference_anchor(self):
        """0 dBFS ≈ 90 dB SPL ohne Kalibrierung."""
        meter = SPLAlertMeter()
        meter.process_dbfs(-20.0)
        assert meter.current_db == pytest.approx(70.0)

    def test_offset_formula(self):
        """offset = known - (current - 90)."""
        meter = SPLAlertMeter()
        meter.process_dbfs(-20.0)
        assert meter.calibration_offset(94.0) == pytest.approx(114.0)

    def test_offset_is_linear(self):
        """known + Δ → offset + Δ."""
        meter = SPLAlertMeter()
        meter.process_dbfs(-31.3)
        base = meter.calibration_offset(80.0)
        for delta in (0.5, 1.0, 12.0):
            assert meter.calibration_offset(80.0 + delta) == pytest.approx(base + delta)

    def test_applied_offset(self):
        """Gespeicherter Offset macht die Messung gleich dem Referenzwert."""
        meter = SPLAlertMeter()
        meter.process_dbfs(-20.0)
        offset = meter.calibration_offset(94.0)

        meter.update_alert_thresholds(SPLPreference(calibration_offset_db=offset))
        meter.process_dbfs(-20.0)
        assert meter.current_db == pytest.approx(94.0)
        # erneute Kalibrierung auf denselben Wert ändert nichts
        assert meter.calibration_offset(94.0) == pytest.approx(offset)

    def test_clamped_at_zero(self):
        meter = SPLAlertMeter()
        meter.process_dbfs(-160.0)
        assert meter.current_db == 0.0

    def test_process_block(self):
        """Block-RMS → dBFS → SPL."""
        meter = SPLAlertMeter()
        meter.process_block(np.full(1024, 0.1))
        assert meter.current_db == pytest.approx(70.0)

    def test_silent_block(self):
        meter = SPLAlertMeter()
        meter.process_block(np.zeros(1024))
        assert meter.current_db == 0.0


class TestDebounce:
    """Tests für die entprellte Zustandsmaschine."""

    def test_single_spike_does_not_alert(self, t0):
        """Ein einzelner lauter Wert kippt den Zustand nicht."""
        meter = SPLAlertMeter()
        assert not meter.evaluate(110.0, t0).is_active
        assert not meter.evaluate(80.0, at(t0, 0.1)).is_active

    def test_sustained_breach_warns(self, t0):
        meter = SPLAlertMeter()
        meter.evaluate(93.0, t0)
        assert not meter.evaluate(93.0, at(t0, 1.4)).is_active

        state = meter.evaluate(93.0, at(t0, BREACH_DEBOUNCE_S))
        assert state.level is AlertLevel.WARNING
        assert state.over_by_db == 3

    def test_sustained_breach_over_margin_alerts(self, t0):
        meter = SPLAlertMeter()
        state = feed(meter, t0, 0.0, 1.6, 97.0)
        assert state.level is AlertLevel.ALERT
        assert state.is_danger

    def test_active_state_follows_level(self, t0):
        """Nach der Entprellung wechseln Warning und Alert sofort."""
        meter = SPLAlertMeter()
        feed(meter, t0, 0.0, 1.6, 93.0)
        assert meter.evaluate(98.0, at(t0, 1.6)).level is AlertLevel.ALERT
        assert meter.evaluate(92.0, at(t0, 1.7)).level is AlertLevel.WARNING

    def test_interrupted_breach_restarts_timer(self, t0):
        """Ein Wert unter Ziel setzt den Breach-Timer zurück."""
        meter = SPLAlertMeter()
        feed(meter, t0, 0.0, 1.0, 93.0)
        meter.evaluate(85.0, at(t0, 1.0))
        assert not meter.evaluate(93.0, at(t0, 1.6)).is_active
        assert meter.evaluate(93.0, at(t0, 3.1)).is_active

    def test_safe_needs_sustained_compliance(self, t0):
        meter = SPLAlertMeter()
        feed(meter, t0, 0.0, 2.0, 97.0)

        meter.evaluate(80.0, at(t0, 2.0))
        assert meter.evaluate(80.0, at(t0, 4.9)).is_active
        state = meter.evaluate(80.0, at(t0, 2.0 + SAFE_DEBOUNCE_S))
        assert state.level is AlertLevel.SAFE

    def test_short_dip_keeps_alert(self, t0):
        """Kurzes Absinken beendet den Alarm nicht."""
        meter = SPLAlertMeter()
        feed(meter, t0, 0.0, 2.0, 97.0)
        feed(meter, t0, 2.0, 3.0, 80.0)
        assert meter.evaluate(97.0, at(t0, 3.0)).is_active
        assert meter.evaluate(80.0, at(t0, 5.5)).is_active

    def test_exactly_target_is_safe(self, t0):
        meter = SPLAlertMeter()
        assert not feed(meter, t0, 0.0, 3.0, 90.0).is_active


class TestReadings:
    """Tests für Peak, Mittelwert und Snapshot."""

    def test_peak_and_average(self, t0):
        meter = SPLAlertMeter()
        for i, spl in enumerate([70.0, 80.0, 75.0]):
            meter.evaluate(spl, at(t0, i * 0.1))
        assert meter.peak_db == 80.0
        assert meter.average_db == pytest.approx(75.0)

    def test_rolling_window(self, t0):
        """Mittelwert über die letzten 100 Werte."""
        meter = SPLAlertMeter()
        feed(meter, t0, 0.0, 10.0, 60.0)
        feed(meter, t0, 10.0, 20.0, 80.0)
        assert meter.average_db == pytest.approx(80.0)

    def test_reset_peak(self, t0):
        meter = SPLAlertMeter()
        meter.evaluate(88.0, t0)
        meter.reset_peak()
        assert meter.peak_db == 0.0
        assert meter.average_db == 0.0

    def test_reading_snapshot(self, t0):
        meter = SPLAlertMeter()
        meter.start(now=t0)
        meter.evaluate(72.0, at(t0, 0.1))
        data = meter.reading(now=at(t0, 0.1)).to_dict()

        assert data["current_db"] == 72.0
        assert data["is_running"] is True
        assert data["alert_state"]["level"] == "safe"
        assert data["timestamp"] == "2026-03-01T10:00:00.100000"


class TestBreachLogging:
    """Tests für das Breach-Protokoll."""

    def test_event_spans_breach(self, t0):
        """Start beim ersten Wert über Ziel, Ende beim ersten Wert darunter."""
        meter = SPLAlertMeter()
        meter.start(now=t0)
        feed(meter, t0, 10.0, 12.0, 93.0)
        meter.evaluate(96.5, at(t0, 12.0))
        feed(meter, t0, 12.5, 16.0, 80.0)

        (event,) = meter.breach_events
        assert event.start_time == at(t0, 10.0)
        assert event.end_time == at(t0, 12.5)
        assert event.peak_db == 96.5
        assert event.target_db == 90.0
        assert event.threshold_db == 5.0
        assert event.was_danger

    def test_short_spike_not_logged(self, t0):
        """Unter einer Sekunde wird kein Event protokolliert."""
        meter = SPLAlertMeter()
        meter.start(now=t0)
        feed(meter, t0, 1.0, 1.5, 99.0)
        feed(meter, t0, 1.5, 8.0, 80.0)
        assert meter.breach_events == ()

    def test_event_logged_without_alert(self, t0):
        """Eine Sekunde über Ziel wird protokolliert, auch ohne Alarm."""
        meter = SPLAlertMeter()
        meter.start(now=t0)
        for i in range(11):
            meter.evaluate(93.0, at(t0, i / 10))
        assert not meter.alert_state.is_active
        meter.evaluate(80.0, at(t0, 1.1))

        (event,) = meter.breach_events
        assert event.duration_seconds == pytest.approx(1.1)
        assert event.peak_db == 93.0
        assert not meter.alert_state.is_active

    def test_event_logged_before_alert_clears(self, t0):
        """Das Event endet beim Unterschreiten, Safe folgt erst nach dem Debounce."""
        meter = SPLAlertMeter()
        meter.start(now=t0)
        feed(meter, t0, 0.0, 2.0, 93.0)
        feed(meter, t0, 2.0, 4.0, 80.0)

        (event,) = meter.breach_events
        assert event.end_time == at(t0, 2.0)
        assert meter.alert_state.is_active

    def test_separate_breaches_are_separate_events(self, t0):
        meter = SPLAlertMeter()
        meter.start(now=t0)
        feed(meter, t0, 0.0, 2.0, 93.0)
        feed(meter, t0, 2.0, 2.5, 80.0)
        feed(meter, t0, 2.5, 4.5, 97.0)
        feed(meter, t0, 4.5, 10.0, 80.0)

        first, second = meter.breach_events
        assert first.peak_db == 93.0
        assert not first.was_danger
        assert second.start_time == at(t0, 2.5)
        assert second.peak_db == 97.0
        assert second.was_danger

    def test_stop_closes_open_event(self, t0):
        meter = SPLAlertMeter()
        meter.start(now=t0)
        feed(meter, t0, 0.0, 2.0, 93.0)
        meter.stop(now=at(t0, 5.0))

        (event,) = meter.breach_events
        assert event.end_time == at(t0, 5.0)
        assert not meter.is_running

    def test_stop_after_drop_keeps_drop_time(self, t0):
        meter = SPLAlertMeter()
        meter.start(now=t0)
        feed(meter, t0, 0.0, 2.0, 93.0)
        feed(meter, t0, 2.0, 3.0, 80.0)
        meter.stop(now=at(t0, 3.0))

        (event,) = meter.breach_events
        assert event.end_time == at(t0, 2.0)

    def test_no_events_without_session(self, t0):
        meter = SPLAlertMeter()
        feed(meter, t0, 0.0, 2.0, 93.0)
        feed(meter, t0, 2.0, 6.0, 80.0)
        assert meter.breach_events == ()

    def test_stop_is_idempotent(self, t0):
        meter = SPLAlertMeter()
        meter.start(now=t0)
        meter.stop(now=at(t0, 1.0))
        meter.stop(now=at(t0, 2.0))
        assert not meter.is_running


class TestBreachEvent:
    """Tests für abgeleitete Felder eines Events."""

    def test_derived_fields(self, t0):
        event = SPLBreachEvent(t0, at(t0, 4.5), peak_db=94.0, target_db=90.0, threshold_db=5.0)
        assert event.duration_seconds == 4.5
        assert event.over_target_db == 4.0
        assert not event.was_danger

    def test_danger_is_strictly_above_margin(self, t0):
        event = SPLBreachEvent(t0, at(t0, 1.0), peak_db=95.0, target_db=90.0, threshold_db=5.0)
        assert not event.was_danger

    def test_round_trip(self, t0):
        event = SPLBreachEvent(t0, at(t0, 2.0), 96.0, 90.0, 5.0)
        assert SPLBreachEvent.from_dict(event.to_dict()) == event


def make_report(t0, events, seconds=7200.0, target=90.0):
    return SPLSessionReport(
        session_start=t0,
        session_end=at(t0, seconds),
        target_db=target,
        flagging_mode=FlaggingMode.BALANCED,
        breach_events=tuple(events),
        overall_peak_db=95.0,
        overall_average_db=84.0,
        total_monitoring_seconds=seconds,
    )


def breach(t0, start, duration, peak=93.0):
    return SPLBreachEvent(at(t0, start), at(t0, start + duration), peak, 90.0, 5.0)


class TestSessionReport:
    """Tests für Bericht und Bewertung."""

    def test_clean_service(self, t0):
        report = make_report(t0, [])
        assert report.grade is SessionGrade.CLEAN_SERVICE
        assert report.breach_percentage == 0.0
        assert report.longest_breach_seconds == 0.0
        assert report.grade_summary == "SPL stayed within target for the entire session."

    def test_two_hour_service_with_one_short_breach(self, t0):
        """2 Stunden, ein Breach von ca. 1 s → Good Control."""
        report = make_report(t0, [breach(t0, 3600.0, 1.0)])

        assert report.breach_count == 1
        assert 0 < report.breach_percentage < 1
        assert report.grade is SessionGrade.GOOD_CONTROL

    def test_danger_breach_needs_attention(self, t0):
        report = make_report(t0, [breach(t0, 100.0, 10.0, peak=99.0)])
        assert report.danger_count == 1
        assert report.grade is SessionGrade.NEEDS_ATTENTION

    def test_long_breaches_over_target(self, t0):
        """≥ 20 % der Zeit über Ziel → Over Target."""
        report = make_report(t0, [breach(t0, 0.0, 1500.0)], seconds=7200.0)
        assert report.breach_percentage == pytest.approx(20.833, abs=0.01)
        assert report.grade is SessionGrade.OVER_TARGET

    def test_between_10_and_20_percent(self, t0):
        report = make_report(t0, [breach(t0, 0.0, 1000.0)], seconds=7200.0)
        assert report.grade is SessionGrade.NEEDS_ATTENTION

    def test_aggregates(self, t0):
        report = make_report(t0, [breach(t0, 0.0, 30.0), breach(t0, 100.0, 90.0, peak=97.0)])
        assert report.breach_count == 2
        assert report.danger_count == 1
        assert report.total_breach_seconds == 120.0
        assert report.longest_breach_seconds == 90.0

    def test_grade_summary(self, t0):
        report = make_report(t0, [breach(t0, 0.0, 360.0), breach(t0, 1000.0, 360.0)])
        assert report.grade_summary == (
            "2 breaches over 90 dB target. Over target 10% of the time."
        )

    def test_zero_duration_session(self, t0):
        report = make_report(t0, [], seconds=0.0)
        assert report.breach_percentage == 0.0

    def test_round_trip(self, t0):
        report = make_report(t0, [breach(t0, 10.0, 2.0)])
        data = report.to_dict()

        assert data["grade"] == "Good Control"
        assert data["flagging_mode"] == "Balanced"
        assert SPLSessionReport.from_dict(data) == report


class TestSessionLifecycle:
    """Tests für Start, Stopp und Berichtserzeugung am Meter."""

    def test_no_report_without_session(self):
        assert SPLAlertMeter().generate_session_report(FlaggingMode.BALANCED) is None

    def test_no_report_without_readings(self, t0):
        meter = SPLAlertMeter()
        meter.start(now=t0)
        meter.stop(now=at(t0, 10.0))
        assert meter.generate_session_report(FlaggingMode.BALANCED) is None

    def test_report_statistics(self, t0):
        meter = SPLAlertMeter()
        meter.start(now=t0)
        meter.evaluate(80.0, at(t0, 1.0))
        meter.evaluate(84.0, at(t0, 2.0))
        meter.stop(now=at(t0, 60.0))

        report = meter.generate_session_report(FlaggingMode.STRICT)
        assert report.session_start == t0
        assert report.session_end == at(t0, 60.0)
        assert report.total_monitoring_seconds == 60.0
        assert report.overall_peak_db == 84.0
        assert report.overall_average_db == pytest.approx(82.0)
        assert report.flagging_mode is FlaggingMode.STRICT

    def test_readings_after_stop_not_counted(self, t0):
        meter = SPLAlertMeter()
        meter.start(now=t0)
        meter.evaluate(80.0, at(t0, 1.0))
        meter.stop(now=at(t0, 2.0))
        meter.evaluate(100.0, at(t0, 3.0))

        report = meter.generate_session_report(FlaggingMode.BALANCED)
        assert report.overall_peak_db == 80.0

    def test_restart_clears_session(self, t0):
        meter = SPLAlertMeter()
        meter.start(now=t0)
        feed(meter, t0, 0.0, 2.0, 93.0)
        meter.stop(now=at(t0, 3.0))

        meter.start(now=at(t0, 10.0))
        assert meter.breach_events == ()
        assert not meter.alert_state.is_active

    def test_two_hour_service_end_to_end(self, t0):
        """Simulierter Gottesdienst: 2 h bei 85 dB, einmal 2 s bei 93 dB."""
        meter = SPLAlertMeter()
        meter.start(now=t0)
        for i in range(int(7200 / 0.5)):
            t = i * 0.5
            spl = 93.0 if 3600.0 <= t < 3602.0 else 85.0
            meter.evaluate(spl, at(t0, t))
        meter.stop(now=at(t0, 7200.0))

        report = meter.generate_session_report(FlaggingMode.BALANCED)
        assert report.breach_count == 1
        assert report.breach_events[0].duration_seconds == pytest.approx(2.0)
        assert 0 < report.breach_percentage < 1
        assert report.grade is SessionGrade.GOOD_CONTROL

    def test_two_hour_service_with_one_second_breach(self, t0):
        """2 h bei 85 dB mit einer gut einsekündigen Spitze bei 93 dB."""
        meter = SPLAlertMeter()
        meter.start(now=t0)
        states = set()
        for i in range(72000):
            t = i / 10
            spl = 93.0 if 3600.0 <= t < 3601.1 else 85.0
            states.add(meter.evaluate(spl, at(t0, t)).level)
        meter.stop(now=at(t0, 7200.0))

        report = meter.generate_session_report(FlaggingMode.BALANCED)
        assert states == {AlertLevel.SAFE}
        assert report.breach_count == 1
        assert report.danger_count == 0
        assert report.breach_events[0].duration_seconds == pytest.approx(1.1)
        assert 0 < report.breach_percentage < 0.1
        assert report.grade is SessionGrade.GOOD_CONTROL

    def test_concurrent_evaluation_and_stop(self, t0):
        """Stopp aus einem anderen Thread hinterlässt einen konsistenten Zustand."""
        meter = SPLAlertMeter()
        meter.start(now=t0)

        def produce():
            for i in range(2000):
                meter.evaluate(93.0 if i % 400 < 200 else 80.0, at(t0, i * 0.05))

        worker = threading.Thread(target=produce)
        worker.start()
        meter.stop(now=at(t0, 50.0))
        worker.join()

        report = meter.generate_session_report(FlaggingMode.BALANCED)
        if report is not None:
            assert all(e.end_time >= e.start_time for e in report.breach_events)
