"""Stand-ins for the bin hardware, used by the simulator script and tests."""
import logging
import queue
from typing import List, Optional

from device.sensors import SOUND_CM_PER_US

logger = logging.getLogger(__name__)


class SimulatedEcho:
    """Pulse reader for ``DistanceSensor`` backed by a settable distance.

    ``distance_cm = None`` models a lost echo.
    """

    def __init__(self, distance_cm: Optional[float] = None):
        self.distance_cm = distance_cm

    def __call__(self, timeout_us: int) -> int:
        if self.distance_cm is None:
            return -1
        duration = int(round(self.distance_cm * 2 / SOUND_CM_PER_US))
        return duration if duration <= timeout_us else -1


class SimulatedServo:
    """Records angles written; ``fail_attach`` makes the next attaches fail."""

    def __init__(self):
        self.attached = False
        self.fail_attach = False
        self.angles: List[int] = []

    def attach(self) -> None:
        if self.fail_attach:
            raise OSError("servo not responding")
        self.attached = True

    def write_angle(self, angle: int) -> None:
        if not self.attached:
            raise RuntimeError("servo written while detached")
        self.angles.append(angle)

    def detach(self) -> None:
        self.attached = False


class SimulatedLed:
    def __init__(self):
        self.on = False

    def set(self, on: bool) -> None:
        if on != self.on:
            logger.info(f"Error LED {'ON' if on else 'OFF'}")
        self.on = on


class SimulatedRfidReader:
    """Returns queued card UIDs one per poll, then None."""

    def __init__(self):
        self._cards: "queue.Queue[str]" = queue.Queue()

    def present(self, uid: str) -> None:
        self._cards.put(uid)

    def __call__(self) -> Optional[str]:
        try:
            return self._cards.get_nowait()
        except queue.Empty:
            return None
