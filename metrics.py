"""Metrics for the message dispatch pipeline."""
import threading
import time
from collections import defaultdict
from typing import Any, Dict
import logging

logger = logging.getLogger(__name__)


class MetricsCollector:
    """
    Collects in-process counters for the dispatch pipeline.
    Tracks message counts, drops by reason, and published commands/alerts.
    """

    def __init__(self):
        """Initialize metrics collector."""
        self._lock = threading.Lock()
        self.reset()

    def reset(self):
        """Clear all counters."""
        with self._lock:
            # Message counters
            self.messages_received = defaultdict(int)  # {bin_id: count}
            self.messages_handled = defaultdict(int)  # {bin_id: count}
            self.messages_dropped = defaultdict(int)  # {reason: count}

            # Outbound
            self.commands_published = defaultdict(int)  # {bin_id: count}
            self.alerts_published = defaultdict(int)  # {alert_type: count}
            self.configs_published = defaultdict(int)  # {bin_id: count}

            # Errors
            self.handler_errors = defaultdict(int)  # {message_class: count}

            # Bin status
            self.bin_last_seen = {}  # {bin_id: timestamp}

            self.start_time = time.time()

    def record_message_received(self, bin_id: str):
        """Record that a message was received."""
        with self._lock:
            self.messages_received[bin_id] += 1
            self.bin_last_seen[bin_id] = time.time()

    def record_message_handled(self, bin_id: str):
        with self._lock:
            self.messages_handled[bin_id] += 1

    def record_message_dropped(self, reason: str, bin_id: str = "unknown"):
        """Record that a message was dropped."""
        with self._lock:
            self.messages_dropped[reason] += 1
        logger.debug(f"Message dropped for bin {bin_id}: {reason}")

    def record_handler_error(self, message_class: str):
        with self._lock:
            self.handler_errors[message_class] += 1

    def record_command(self, bin_id: str):
        with self._lock:
            self.commands_published[bin_id] += 1

    def record_alert(self, alert_type: str):
        with self._lock:
            self.alerts_published[alert_type] += 1

    def record_config(self, bin_id: str):
        with self._lock:
            self.configs_published[bin_id] += 1

    def get_summary(self) -> Dict[str, Any]:
        """Snapshot of all counters."""
        with self._lock:
            return {
                "uptime_seconds": round(time.time() - self.start_time, 1),
                "messages_received": sum(self.messages_received.values()),
                "messages_handled": sum(self.messages_handled.values()),
                "messages_dropped": dict(self.messages_dropped),
                "handler_errors": dict(self.handler_errors),
                "commands_published": sum(self.commands_published.values()),
                "alerts_published": dict(self.alerts_published),
                "configs_published": sum(self.configs_published.values()),
                "bins_seen": len(self.bin_last_seen),
            }


# Global metrics instance
metrics = MetricsCollector()
