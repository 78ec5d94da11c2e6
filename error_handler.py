"""Error taxonomy and retry logic shared by the backend and the device agent."""
import logging
import time
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SmartBinError(Exception):
    """Base class for all control-plane errors."""


class MalformedPayloadError(SmartBinError):
    """Payload could not be parsed or failed schema validation."""


class UnknownTopicError(SmartBinError):
    """Topic has too few segments, a foreign namespace or an unknown class."""


class UnknownBinError(SmartBinError):
    """Referenced bin identity is absent from the store."""

    def __init__(self, bin_id: str):
        super().__init__(f"Bin not found: {bin_id}")
        self.bin_id = bin_id


class OutOfRangeReadingError(SmartBinError):
    """Sensor reading outside the physically valid range."""


class ActuatorAttachError(SmartBinError):
    """The lid actuator could not be (re)attached."""


class ConfigRejectedError(SmartBinError):
    """Configuration update was refused before touching the store."""


class TransportError(SmartBinError):
    """Broker connection could not be established or was lost."""


class StoreUnavailableError(SmartBinError):
    """Record store could not be reached. Fatal at startup."""


class RetryHandler:
    """
    Retries transient transport failures on a fixed interval.
    """

    def __init__(self, max_retries: int = 5, retry_delay: float = 1.0, sleep: Callable[[float], None] = time.sleep):
        """
        Initialize retry handler.

        Args:
            max_retries: Maximum number of attempts (0 means retry forever)
            retry_delay: Fixed delay between attempts in seconds
            sleep: Sleep function, replaceable in tests
        """
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._sleep = sleep

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """
        Determine if an error should be retried.

        Args:
            error: The exception that occurred
            attempt: Current attempt number (1-indexed)

        Returns:
            True if should retry, False otherwise
        """
        if self.max_retries and attempt >= self.max_retries:
            return False

        retryable_errors = (
            TransportError,
            ConnectionError,
            TimeoutError,
            OSError,
        )
        return isinstance(error, retryable_errors)

    def get_retry_delay(self, attempt: int) -> float:
        """Delay before the next attempt; fixed, independent of attempt."""
        return self.retry_delay

    def run(self, operation: Callable[[], T], description: str = "operation") -> T:
        """Run ``operation`` until it succeeds or retries are exhausted."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return operation()
            except Exception as e:
                if not self.should_retry(e, attempt):
                    logger.error(f"{description} failed after {attempt} attempt(s): {e}")
                    raise
                delay = self.get_retry_delay(attempt)
                logger.warning(f"{description} failed (attempt {attempt}): {e}. Retrying in {delay}s")
                self._sleep(delay)
