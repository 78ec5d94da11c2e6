"""Ultrasonic distance sensor driver and fill-level conversion."""
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)

# Speed of sound, centimetres per microsecond
SOUND_CM_PER_US = 0.0343


def fill_percent(distance_cm: float, capacity_cm: float) -> int:
    """Fill level for a distance measured from the lid down to the contents.

    ``round((capacity - distance) / capacity * 100)`` clamped to [0, 100].
    """
    if capacity_cm <= 0:
        raise ValueError("capacity must be positive")
    percent = round((capacity_cm - distance_cm) / capacity_cm * 100)
    return max(0, min(100, percent))


class DistanceSensor:
    """HC-SR04 style ranger.

    ``pulse_reader(timeout_us)`` triggers a ping and returns the echo pulse
    width in microseconds, or a negative value / None when no echo arrived
    within ``timeout_us``. The wait is therefore bounded by the timeout.
    """

    def __init__(
        self,
        pulse_reader: Callable[[int], Optional[int]],
        timeout_us: int = 30000,
        min_cm: float = 2.0,
        max_cm: float = 400.0,
        name: str = "distance",
    ):
        self._pulse_reader = pulse_reader
        self.timeout_us = timeout_us
        self.min_cm = min_cm
        self.max_cm = max_cm
        self.name = name

    @staticmethod
    def pulse_to_cm(duration_us: float) -> float:
        # Round trip, so halve it
        return duration_us * SOUND_CM_PER_US / 2

    def read_cm(self) -> Optional[float]:
        """Distance in cm, or None on timeout or an out-of-range echo."""
        duration = self._pulse_reader(self.timeout_us)
        if duration is None or duration < 0 or duration > self.timeout_us:
            logger.debug(f"{self.name}: echo timeout")
            return None

        distance = self.pulse_to_cm(duration)
        if not self.min_cm <= distance <= self.max_cm:
            logger.debug(f"{self.name}: rejecting out-of-range echo {distance:.1f}cm")
            return None
        return round(distance, 1)
