"""Servo-driven lid actuator."""
import enum
import logging
import time
from typing import Callable, Optional, Protocol

from error_handler import ActuatorAttachError

logger = logging.getLogger(__name__)


class LidPosition(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


class ServoDriver(Protocol):
    """Minimal servo interface (PWM pin on real hardware)."""

    def attach(self) -> None: ...

    def write_angle(self, angle: int) -> None: ...

    def detach(self) -> None: ...


class LidActuator:
    """Drives the lid between two positions.

    The servo is attached only for the duration of a move and detached right
    after the settle delay so it neither jitters nor draws idle current.
    """

    def __init__(
        self,
        driver: ServoDriver,
        open_angle: int = 90,
        closed_angle: int = 0,
        settle_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.driver = driver
        self.angles = {LidPosition.OPEN: open_angle, LidPosition.CLOSED: closed_angle}
        self.settle_seconds = settle_seconds
        self._sleep = sleep
        self.position: Optional[LidPosition] = None

    def move_to(self, position: LidPosition) -> None:
        """Move and block for the settle delay.

        Raises:
            ActuatorAttachError: the servo could not be attached; the lid
                did not move.
        """
        try:
            self.driver.attach()
        except (OSError, RuntimeError) as e:
            raise ActuatorAttachError(f"Servo attach failed: {e}") from e

        try:
            self.driver.write_angle(self.angles[position])
            self._sleep(self.settle_seconds)
            self.position = position
        finally:
            self.driver.detach()
        logger.info(f"Lid {position.value}")
