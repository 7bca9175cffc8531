# app/api/deps.py

from app.core.business import Clock, system_clock


def get_clock() -> Clock:
    """Overridden in tests with a FixedClock."""
    return system_clock
