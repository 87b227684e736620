"""
Formatierungsfunktionen für Anzeige.

Konvertiert Messwerte und Session-Zeiten in lesbare Strings.
"""

from datetime import datetime


# e.g. "Sunday, Feb 08 · 10:30 AM"
SESSION_DATE_FORMAT = "%A, %b %d · %I:%M %p"

# e.g. "10:32:15 AM"
CLOCK_TIME_FORMAT = "%I:%M:%S %p"


def format_duration(seconds: float) -> str:
    """
    Formatiere Dauer kompakt.

    Args:
        seconds: Dauer in Sekunden (Nachkommastellen werden abgeschnitten)

    Returns:
        Formatierter String (z.B. "45s", "3m 12s", "1h 5m")
    """
    secs = int(seconds)
    if secs < 60:
        return f"{secs}s"
    minutes, remaining_secs = divmod(secs, 60)
    if minutes < 60:
        return f"{minutes}m {remaining_secs}s"
    hours, remaining_mins = divmod(minutes, 60)
    return f"{hours}h {remaining_mins}m"


def format_session_date(moment: datetime, fmt: str = SESSION_DATE_FORMAT) -> str:
    """Formatiere den Session-Beginn mit explizitem strftime-Format."""
    return moment.strftime(fmt)


def format_clock_time(moment: datetime, fmt: str = CLOCK_TIME_FORMAT) -> str:
    """Formatiere eine Uhrzeit (z.B. Beginn eines Breach-Events)."""
    return moment.strftime(fmt)


def format_db(db: float, precision: int = 1) -> str:
    """
    Formatiere dB-Wert.

    Returns:
        Formatierter String (z.B. "-12.3 dB")
    """
    if db == float('-inf'):
        return "-∞ dB"
    return f"{db:.{precision}f} dB"


def format_frequency(hz: float) -> str:
    """
    Formatiere Frequenz in lesbares Format.

    Returns:
        Formatierter String (z.B. "1.5 kHz" oder "250 Hz")
    """
    if hz >= 1000:
        return f"{hz/1000:.1f} kHz"
    return f"{hz:.0f} Hz"


def format_rt60(seconds: float) -> str:
    """RT60 mit zwei Nachkommastellen (z.B. "0.85 s")."""
    return f"{seconds:.2f} s"
