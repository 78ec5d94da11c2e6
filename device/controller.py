"""Lid/access state machine for a single bin.

All timers are explicit deadlines on ``DeviceContext`` compared against the
monotonic ``now`` handed in by the agent, read once per loop tick.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import topics
from device.actuator import LidActuator, LidPosition
from device.sensors import fill_percent
from error_handler import ActuatorAttachError, MalformedPayloadError
from validators import payload_validator

logger = logging.getLogger(__name__)


class LidState(str, enum.Enum):
    CLOSED = "CLOSED"
    OPENING = "OPENING"
    OPEN = "OPEN"
    CLOSING = "CLOSING"


class Mode(str, enum.Enum):
    AUTO = "AUTO"
    AUTH = "AUTH"


@dataclass(frozen=True)
class Timings:
    debounce_seconds: float = 2.0
    auto_close_seconds: float = 5.0
    telemetry_interval_seconds: float = 10.0


@dataclass
class DeviceContext:
    """Everything the device knows about itself between ticks."""

    bin_id: str
    mode: Mode = Mode.AUTO
    threshold_cm: float = 50.0
    capacity_cm: float = 200.0
    lid: LidState = LidState.CLOSED
    close_deadline: Optional[float] = None
    last_trigger_at: Optional[float] = None
    next_telemetry_at: float = 0.0
    fault: bool = False
    last_error: Optional[str] = None
    config_received: bool = False


# (message_class, payload) -> None
Emitter = Callable[[str, Dict[str, Any]], Any]


class AccessController:
    """Drives lid transitions from proximity, commands, config and the clock.

    ``CLOSED -> OPENING -> OPEN`` on a debounced proximity trigger (AUTO only)
    or an open command; ``OPEN -> CLOSING -> CLOSED`` when the auto-close
    deadline passes or on a close command. A failed actuator attach aborts the
    transition, raises the error indicator and leaves the lid in its prior
    terminal state.
    """

    def __init__(
        self,
        actuator: LidActuator,
        timings: Optional[Timings] = None,
        emit: Optional[Emitter] = None,
        indicator: Optional[Callable[[bool], None]] = None,
    ):
        self.actuator = actuator
        self.timings = timings or Timings()
        self.emit = emit or (lambda message_class, payload: None)
        self.indicator = indicator

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def on_proximity(self, ctx: DeviceContext, distance_cm: Optional[float], now: float) -> bool:
        """Evaluate one proximity reading. Returns True if the lid opened."""
        if ctx.mode != Mode.AUTO or ctx.lid != LidState.CLOSED:
            return False
        if distance_cm is None or distance_cm > ctx.threshold_cm:
            return False
        if ctx.last_trigger_at is not None and now - ctx.last_trigger_at < self.timings.debounce_seconds:
            return False

        ctx.last_trigger_at = now
        logger.info(f"{ctx.bin_id}: proximity trigger at {distance_cm}cm")
        return self._open(ctx, now, "proximity")

    def on_command(self, ctx: DeviceContext, payload: Dict[str, Any], now: float) -> bool:
        """Apply an inbound ``cmd`` message. Returns True if the lid moved.

        Raises:
            MalformedPayloadError: unknown or missing action.
        """
        is_valid, error = payload_validator.validate_payload(topics.COMMAND, payload)
        if not is_valid:
            raise MalformedPayloadError(f"Invalid command: {error}")

        action = payload["action"]
        reason = payload.get("reason", "")
        if payload.get("user"):
            logger.info(f"{ctx.bin_id}: {action} requested for {payload['user']} ({reason})")

        if action == "open":
            if ctx.lid != LidState.CLOSED:
                return False
            return self._open(ctx, now, reason or "command")

        if ctx.lid != LidState.OPEN:
            return False
        return self._close(ctx, now, reason or "command")

    def on_config(self, ctx: DeviceContext, payload: Dict[str, Any]) -> DeviceContext:
        """Apply a retained ``config`` message to subsequent evaluations.

        Raises:
            MalformedPayloadError: invalid mode or non-positive threshold.
        """
        is_valid, error = payload_validator.validate_payload(topics.CONFIG, payload)
        if not is_valid:
            raise MalformedPayloadError(f"Invalid config: {error}")

        if "mode" in payload:
            ctx.mode = Mode(payload["mode"])
        if "threshold" in payload:
            ctx.threshold_cm = float(payload["threshold"])
        ctx.config_received = True
        logger.info(f"{ctx.bin_id}: config applied (mode={ctx.mode.value}, threshold={ctx.threshold_cm}cm)")
        return ctx

    def on_credential_scan(self, ctx: DeviceContext, uid: Optional[str]) -> Optional[Dict[str, Any]]:
        """Forward a scanned credential to the backend for a decision.

        The device never decides access itself; an authorized scan comes back
        as an ``open`` command.
        """
        uid = (uid or "").strip()
        if not uid:
            return None
        payload = {"uid": uid, "ts": topics.utc_timestamp()}
        self.emit(topics.RFID_CHECK, payload)
        logger.info(f"{ctx.bin_id}: RFID {uid} sent for authorization")
        return payload

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def tick(self, ctx: DeviceContext, now: float) -> bool:
        """Close the lid once its auto-close deadline has passed."""
        if ctx.lid != LidState.OPEN or ctx.close_deadline is None:
            return False
        if now < ctx.close_deadline:
            return False
        return self._close(ctx, now, "auto_close")

    def telemetry_due(self, ctx: DeviceContext, now: float) -> bool:
        return now >= ctx.next_telemetry_at

    def publish_telemetry(self, ctx: DeviceContext, distance_cm: Optional[float], now: float) -> Optional[Dict[str, Any]]:
        """Emit one level reading and schedule the next one.

        Readings outside [0, capacity] are discarded at the source.
        """
        ctx.next_telemetry_at = now + self.timings.telemetry_interval_seconds

        if distance_cm is None or not 0 <= distance_cm <= ctx.capacity_cm:
            logger.warning(f"{ctx.bin_id}: discarding level reading {distance_cm}")
            return None

        payload = {
            "level": fill_percent(distance_cm, ctx.capacity_cm),
            "cm": distance_cm,
            "ts": topics.utc_timestamp(),
        }
        self.emit(topics.LEVEL, payload)
        return payload

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _open(self, ctx: DeviceContext, now: float, reason: str) -> bool:
        ctx.lid = LidState.OPENING
        try:
            self.actuator.move_to(LidPosition.OPEN)
        except ActuatorAttachError as e:
            ctx.lid = LidState.CLOSED
            self._set_fault(ctx, str(e))
            return False

        ctx.lid = LidState.OPEN
        ctx.close_deadline = now + self.timings.auto_close_seconds
        self._clear_fault(ctx)
        logger.info(f"{ctx.bin_id}: lid OPEN ({reason})")
        return True

    def _close(self, ctx: DeviceContext, now: float, reason: str) -> bool:
        ctx.lid = LidState.CLOSING
        try:
            self.actuator.move_to(LidPosition.CLOSED)
        except ActuatorAttachError as e:
            # Still open: try again after another full interval
            ctx.lid = LidState.OPEN
            ctx.close_deadline = now + self.timings.auto_close_seconds
            self._set_fault(ctx, str(e))
            return False

        ctx.lid = LidState.CLOSED
        ctx.close_deadline = None
        self._clear_fault(ctx)
        logger.info(f"{ctx.bin_id}: lid CLOSED ({reason})")
        return True

    def _set_fault(self, ctx: DeviceContext, error: str) -> None:
        ctx.fault = True
        ctx.last_error = error
        logger.error(f"{ctx.bin_id}: {error}; lid stays {ctx.lid.value}")
        if self.indicator:
            self.indicator(True)

    def _clear_fault(self, ctx: DeviceContext) -> None:
        if ctx.fault:
            ctx.fault = False
            if self.indicator:
                self.indicator(False)
