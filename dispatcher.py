"""Topic router and dispatcher for inbound bin messages.

The MQTT network thread only calls :meth:`MessageDispatcher.submit`, which
never blocks. Messages are handed to a pool of worker threads; each bin is
pinned to one worker by a stable hash of its id, so messages of one bin are
handled in arrival order while different bins proceed in parallel.
"""
import json
import logging
import queue
import threading
import zlib
from dataclasses import dataclass
from typing import List, Optional

import topics
from alert_engine import AlertEngine, alert_engine
from config import settings
from error_handler import (
    MalformedPayloadError,
    OutOfRangeReadingError,
    UnknownBinError,
    UnknownTopicError,
)
from metrics import metrics
from presence_tracker import PresenceTracker, presence_tracker
from rfid_auth import AuthorizationResolver, authorization_resolver

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass(frozen=True)
class InboundMessage:
    """Message as delivered by the broker. Lives only for one dispatch."""
    topic: str
    payload: bytes
    qos: int = 0


class MessageDispatcher:
    """Routes inbound messages to the authorization, telemetry and presence handlers."""

    def __init__(
        self,
        resolver: Optional[AuthorizationResolver] = None,
        engine: Optional[AlertEngine] = None,
        tracker: Optional[PresenceTracker] = None,
        namespace: Optional[str] = None,
        workers: Optional[int] = None,
        queue_size: Optional[int] = None,
    ):
        self.resolver = resolver or authorization_resolver
        self.engine = engine or alert_engine
        self.tracker = tracker or presence_tracker
        self.namespace = namespace or settings.mqtt_namespace
        self.worker_count = max(1, workers or settings.dispatcher_workers)
        self.queue_size = queue_size or settings.dispatcher_queue_size

        self._queues: List[queue.Queue] = []
        self._threads: List[threading.Thread] = []
        self._running = False
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self):
        """Start the worker threads."""
        with self._lock:
            if self._running:
                logger.warning("Dispatcher is already running")
                return
            self._queues = [queue.Queue(maxsize=self.queue_size) for _ in range(self.worker_count)]
            self._threads = [
                threading.Thread(
                    target=self._worker_loop,
                    args=(q,),
                    name=f"dispatcher-{i}",
                    daemon=True,
                )
                for i, q in enumerate(self._queues)
            ]
            self._running = True
            for thread in self._threads:
                thread.start()
        logger.info(f"Dispatcher started with {self.worker_count} worker(s)")

    def stop(self, timeout: float = 5.0):
        """Stop the workers after they finish the message in hand."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            for q in self._queues:
                # Sentinel must get through even if the queue is full
                q.put(_STOP)
            threads, self._threads = self._threads, []
        for thread in threads:
            thread.join(timeout=timeout)
        logger.info("Dispatcher stopped")

    def drain(self):
        """Block until every queued message has been handled."""
        for q in list(self._queues):
            q.join()

    def _worker_for(self, bin_id: str) -> queue.Queue:
        return self._queues[zlib.crc32(bin_id.encode("utf-8")) % len(self._queues)]

    def submit(self, message: InboundMessage) -> bool:
        """Queue a message for its bin's worker. Never blocks."""
        try:
            parts = topics.parse(message.topic, self.namespace)
        except UnknownTopicError as e:
            logger.warning(str(e))
            metrics.record_message_dropped("invalid_topic")
            return False

        if not self._running:
            logger.warning(f"Dispatcher not running, dropping message on {message.topic}")
            metrics.record_message_dropped("dispatcher_stopped", parts.bin_id)
            return False

        try:
            self._worker_for(parts.bin_id).put_nowait(message)
        except queue.Full:
            logger.warning(f"Dispatch queue full, dropping message on {message.topic}")
            metrics.record_message_dropped("queue_full", parts.bin_id)
            return False
        return True

    def _worker_loop(self, q: queue.Queue):
        while True:
            message = q.get()
            try:
                if message is _STOP:
                    return
                self.route(message)
            finally:
                q.task_done()

    def route(self, message: InboundMessage) -> bool:
        """Classify and handle one message synchronously.

        Returns:
            True if a handler accepted the message, False if it was dropped.
            Never raises.
        """
        bin_id = "unknown"
        try:
            parts = topics.parse(message.topic, self.namespace)
            bin_id = parts.bin_id
            metrics.record_message_received(bin_id)
            message_class = parts.message_class

            if message_class == topics.STATUS:
                self.tracker.handle(bin_id, message.payload)
            elif message_class == topics.LEVEL:
                self.engine.process_telemetry(bin_id, self._parse_json(message))
            elif message_class == topics.RFID_CHECK:
                self.resolver.handle(bin_id, self._parse_json(message))
            else:
                raise UnknownTopicError(f"Unknown message type: {message_class} ({message.topic})")

            metrics.record_message_handled(bin_id)
            return True

        except UnknownTopicError as e:
            logger.warning(str(e))
            metrics.record_message_dropped("unknown_topic", bin_id)
        except MalformedPayloadError as e:
            logger.warning(f"Dropping message on {message.topic}: {e}")
            metrics.record_message_dropped("malformed_payload", bin_id)
        except OutOfRangeReadingError as e:
            logger.warning(str(e))
            metrics.record_message_dropped("out_of_range", bin_id)
        except UnknownBinError as e:
            logger.error(str(e))
            metrics.record_message_dropped("unknown_bin", bin_id)
        except Exception as e:
            logger.error(f"Error handling message on {message.topic}: {e}", exc_info=True)
            metrics.record_handler_error(message.topic)
        return False

    @staticmethod
    def _parse_json(message: InboundMessage):
        try:
            payload = json.loads(message.payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MalformedPayloadError(f"Invalid JSON payload: {message.payload!r}") from e
        logger.debug(f"Received [{message.topic}]: {payload}")
        return payload


# Global dispatcher instance
dispatcher = MessageDispatcher()
