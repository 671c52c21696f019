import logging
import threading
from enum import Enum
from typing import Callable

import pika
from pika.exceptions import AMQPError

from broker.config import (
    HEARTBEAT_S,
    PUBLISH_TIMEOUT_S,
    RABBITMQ_HOST,
    RABBITMQ_PASSWORD,
    RABBITMQ_PORT,
    RABBITMQ_USER,
    RABBITMQ_VHOST,
    RECONNECT_DELAY_S,
)
from broker.topology import declare_topology
from common.errors import QueueUnavailable, TransportError

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"


def default_parameters() -> pika.ConnectionParameters:
    credentials = pika.PlainCredentials(RABBITMQ_USER, RABBITMQ_PASSWORD)
    return pika.ConnectionParameters(
        host=RABBITMQ_HOST, port=RABBITMQ_PORT,
        virtual_host=RABBITMQ_VHOST, credentials=credentials,
        heartbeat=HEARTBEAT_S,
    )


class ConnectionSupervisor:
    """Owns the process-wide RabbitMQ connection.

    A single supervising thread connects, declares both queues, registers
    the consumer callbacks and pumps I/O. Any transport failure is logged
    and followed by a fixed delay and a reconnect, until ``stop()``.

    Producers never touch the connection directly: ``publish()`` fails fast
    with ``QueueUnavailable`` unless the handle is READY, and hands the
    actual publish to the supervising thread because pika connections are
    not thread-safe.
    """

    def __init__(
        self,
        consumers: dict[str, Callable] | None = None,
        retry_delay_s: float = RECONNECT_DELAY_S,
        publish_timeout_s: float = PUBLISH_TIMEOUT_S,
        parameters: pika.ConnectionParameters | None = None,
    ):
        self._consumers = dict(consumers or {})
        self.retry_delay_s = retry_delay_s
        self.publish_timeout_s = publish_timeout_s
        self._parameters = parameters or default_parameters()

        self._lock = threading.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._stop = threading.Event()
        self._connection = None
        self._channel = None
        self._thread: threading.Thread | None = None
        self._thread_ident: int | None = None

    # ── State ──────────────────────────────────────────────────────────
    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is ConnectionState.READY

    def _set_state(self, state: ConnectionState) -> None:
        with self._lock:
            self._state = state

    # ── Connect / reconnect ────────────────────────────────────────────
    def _open(self):
        connection = None
        try:
            connection = pika.BlockingConnection(self._parameters)
            channel = connection.channel()
            channel.confirm_delivery()
            declare_topology(channel)
            if self._consumers:
                channel.basic_qos(prefetch_count=1)
                for queue, callback in self._consumers.items():
                    channel.basic_consume(queue=queue, on_message_callback=callback, auto_ack=False)
        except AMQPError as exc:
            if connection is not None:
                self._close_quietly(connection)
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc
        return connection, channel

    def connect_with_retry(self):
        """Block until connected or stopped; return the connection or None."""
        attempt = 0
        while not self._stop.is_set():
            attempt += 1
            self._set_state(ConnectionState.CONNECTING)
            try:
                connection, channel = self._open()
            except TransportError as exc:
                self._set_state(ConnectionState.DISCONNECTED)
                logger.warning(
                    "RabbitMQ not ready (attempt %d): %s; retrying in %.1fs",
                    attempt, exc, self.retry_delay_s,
                )
                self._stop.wait(self.retry_delay_s)
                continue
            with self._lock:
                self._connection = connection
                self._channel = channel
            self._set_state(ConnectionState.READY)
            logger.info("Connected to RabbitMQ after %d attempt(s); consuming %s",
                        attempt, list(self._consumers) or "nothing")
            return connection
        return None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="broker-supervisor", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        self._drop()

    def _run(self) -> None:
        self._thread_ident = threading.get_ident()
        while not self._stop.is_set():
            connection = self.connect_with_retry()
            if connection is None:
                break
            try:
                while not self._stop.is_set():
                    connection.process_data_events(time_limit=1)
            except (AMQPError, TransportError) as exc:
                logger.warning("RabbitMQ connection lost: %s; reconnecting in %.1fs",
                               exc, self.retry_delay_s)
            except Exception:
                # Unacked deliveries are redelivered once the connection is recycled.
                logger.exception("Consumer loop crashed; recycling connection")
            else:
                break
            self._drop()
            self._stop.wait(self.retry_delay_s)
        self._drop()
        logger.info("Broker supervisor stopped")

    def _drop(self) -> None:
        with self._lock:
            connection = self._connection
            self._connection = None
            self._channel = None
        self._set_state(ConnectionState.DISCONNECTED)
        if connection is not None:
            self._close_quietly(connection)

    @staticmethod
    def _close_quietly(connection) -> None:
        try:
            if connection.is_open:
                connection.close()
        except AMQPError as exc:
            logger.debug("Ignoring error while closing connection: %s", exc)

    # ── Producer ───────────────────────────────────────────────────────
    def _basic_publish(self, queue: str, body: str) -> None:
        self._channel.basic_publish(
            exchange="",
            routing_key=queue,
            body=body.encode("utf-8") if isinstance(body, str) else body,
            properties=pika.BasicProperties(
                delivery_mode=2,
                content_type="application/json",
            ),
            mandatory=True,
        )

    def publish(self, queue: str, body: str) -> None:
        """Publish a persistent message, or raise ``QueueUnavailable``."""
        if threading.get_ident() == self._thread_ident:
            # Inside a consumer callback: we already own the connection, and
            # a failure must reach the supervisor so the delivery stays unacked.
            self._basic_publish(queue, body)
            return

        with self._lock:
            connection = self._connection if self._state is ConnectionState.READY else None
        if connection is None:
            raise QueueUnavailable("broker connection is not ready")

        done = threading.Event()
        guard = threading.Lock()
        outcome = {"started": False, "cancelled": False, "failure": None}

        def _do_publish():
            with guard:
                if outcome["cancelled"]:
                    return
                outcome["started"] = True
            try:
                self._basic_publish(queue, body)
            except Exception as exc:
                outcome["failure"] = exc
            finally:
                done.set()

        try:
            connection.add_callback_threadsafe(_do_publish)
        except AMQPError as exc:
            raise QueueUnavailable(f"broker connection closed: {exc}") from exc
        if not done.wait(self.publish_timeout_s):
            with guard:
                if not outcome["started"]:
                    # The callback stays queued on the connection; make it a no-op.
                    outcome["cancelled"] = True
            if outcome["cancelled"]:
                raise QueueUnavailable(f"publish to '{queue}' timed out")
            done.wait()
        failure = outcome["failure"]
        if failure is not None:
            raise QueueUnavailable(f"publish to '{queue}' failed: {failure}") from failure
