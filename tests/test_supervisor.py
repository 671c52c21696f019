"""Tests for the broker connection supervisor, with pika mocked out."""

import threading
import time
from unittest.mock import Mock

import pytest
from pika.exceptions import AMQPConnectionError, StreamLostError, UnroutableError

import broker.supervisor as supervisor_module
from broker.config import COMPLETION_EVENTS_QUEUE, DLQ_QUEUE, PENDING_WORK_QUEUE
from broker.supervisor import ConnectionState, ConnectionSupervisor
from common.errors import QueueUnavailable


def fake_connection():
    conn = Mock()
    conn.is_open = True
    conn.process_data_events.side_effect = lambda time_limit=None: time.sleep(0.01)
    conn.add_callback_threadsafe.side_effect = lambda cb: cb()
    return conn


def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def connection_factory(monkeypatch):
    factory = Mock()
    monkeypatch.setattr(supervisor_module.pika, "BlockingConnection", factory)
    return factory


class TestConnect:
    def test_retries_until_broker_is_up(self, connection_factory):
        conn = fake_connection()
        connection_factory.side_effect = [AMQPConnectionError("down"), AMQPConnectionError("down"), conn]
        callback = Mock()
        sup = ConnectionSupervisor(consumers={PENDING_WORK_QUEUE: callback}, retry_delay_s=0)

        assert sup.connect_with_retry() is conn
        assert connection_factory.call_count == 3
        assert sup.state is ConnectionState.READY

        channel = conn.channel.return_value
        declared = {c.kwargs["queue"] for c in channel.queue_declare.call_args_list}
        assert declared == {PENDING_WORK_QUEUE, COMPLETION_EVENTS_QUEUE, DLQ_QUEUE}
        channel.basic_qos.assert_called_once_with(prefetch_count=1)
        channel.basic_consume.assert_called_once_with(
            queue=PENDING_WORK_QUEUE, on_message_callback=callback, auto_ack=False
        )

    def test_producer_only_registers_no_consumers(self, connection_factory):
        conn = fake_connection()
        connection_factory.return_value = conn

        ConnectionSupervisor(retry_delay_s=0).connect_with_retry()

        conn.channel.return_value.basic_consume.assert_not_called()

    def test_stop_ends_retry_loop(self, connection_factory):
        connection_factory.side_effect = AMQPConnectionError("down")
        sup = ConnectionSupervisor(retry_delay_s=0.01)
        sup.start()
        assert wait_for(lambda: connection_factory.call_count >= 2)

        sup.stop()

        assert sup.state is ConnectionState.DISCONNECTED
        assert not sup.is_ready


class TestSupervisedLoop:
    def test_reconnects_after_connection_loss(self, connection_factory):
        first, second = fake_connection(), fake_connection()
        first.process_data_events.side_effect = StreamLostError("connection reset")
        connection_factory.side_effect = [first, second]
        sup = ConnectionSupervisor(retry_delay_s=0.01)

        sup.start()
        try:
            assert wait_for(lambda: connection_factory.call_count == 2 and sup.is_ready)
        finally:
            sup.stop()

        first.close.assert_called()
        second.close.assert_called()
        assert sup.state is ConnectionState.DISCONNECTED

    def test_becomes_ready_in_background(self, connection_factory):
        connection_factory.return_value = fake_connection()
        sup = ConnectionSupervisor(retry_delay_s=0.01)
        sup.start()
        try:
            assert wait_for(lambda: sup.is_ready)
        finally:
            sup.stop()


class TestPublish:
    def test_fails_fast_before_connection(self):
        sup = ConnectionSupervisor()
        with pytest.raises(QueueUnavailable):
            sup.publish(PENDING_WORK_QUEUE, "{}")

    def test_publishes_persistent_message(self, connection_factory):
        conn = fake_connection()
        connection_factory.return_value = conn
        sup = ConnectionSupervisor(retry_delay_s=0)
        sup.connect_with_retry()

        sup.publish(PENDING_WORK_QUEUE, '{"order_id": "ord_1"}')

        kwargs = conn.channel.return_value.basic_publish.call_args.kwargs
        assert kwargs["routing_key"] == PENDING_WORK_QUEUE
        assert kwargs["body"] == b'{"order_id": "ord_1"}'
        assert kwargs["properties"].delivery_mode == 2

    def test_broker_rejection_is_queue_unavailable(self, connection_factory):
        conn = fake_connection()
        conn.channel.return_value.basic_publish.side_effect = UnroutableError([])
        connection_factory.return_value = conn
        sup = ConnectionSupervisor(retry_delay_s=0)
        sup.connect_with_retry()

        with pytest.raises(QueueUnavailable):
            sup.publish(PENDING_WORK_QUEUE, "{}")

    def test_times_out_when_connection_thread_is_stuck(self, connection_factory):
        conn = fake_connection()
        conn.add_callback_threadsafe.side_effect = None
        connection_factory.return_value = conn
        sup = ConnectionSupervisor(retry_delay_s=0, publish_timeout_s=0.05)
        sup.connect_with_retry()

        with pytest.raises(QueueUnavailable):
            sup.publish(PENDING_WORK_QUEUE, "{}")

    def test_publish_from_consumer_thread_goes_direct(self, connection_factory):
        conn = fake_connection()
        connection_factory.return_value = conn
        sup = ConnectionSupervisor(retry_delay_s=0)
        sup.connect_with_retry()
        sup._thread_ident = threading.get_ident()

        sup.publish(COMPLETION_EVENTS_QUEUE, "{}")

        conn.add_callback_threadsafe.assert_not_called()
        conn.channel.return_value.basic_publish.assert_called_once()

    def test_timed_out_publish_is_never_sent(self, connection_factory):
        conn = fake_connection()
        deferred = []
        conn.add_callback_threadsafe.side_effect = deferred.append
        connection_factory.return_value = conn
        sup = ConnectionSupervisor(retry_delay_s=0, publish_timeout_s=0.05)
        sup.connect_with_retry()

        with pytest.raises(QueueUnavailable, match="timed out"):
            sup.publish(PENDING_WORK_QUEUE, "{}")
        # The connection thread catches up after the caller gave up.
        for callback in deferred:
            callback()

        conn.channel.return_value.basic_publish.assert_not_called()

    def test_publish_started_before_timeout_reports_real_result(self, connection_factory):
        conn = fake_connection()
        started = threading.Event()

        def slow_publish(**kwargs):
            started.set()
            time.sleep(0.2)

        conn.channel.return_value.basic_publish.side_effect = slow_publish
        conn.add_callback_threadsafe.side_effect = (
            lambda cb: threading.Thread(target=cb, daemon=True).start()
        )
        connection_factory.return_value = conn
        sup = ConnectionSupervisor(retry_delay_s=0, publish_timeout_s=0.05)
        sup.connect_with_retry()

        sup.publish(PENDING_WORK_QUEUE, "{}")

        assert started.is_set()
        conn.channel.return_value.basic_publish.assert_called_once()

    def test_unexpected_publish_error_is_queue_unavailable(self, connection_factory):
        conn = fake_connection()
        connection_factory.return_value = conn
        sup = ConnectionSupervisor(retry_delay_s=0)
        sup.connect_with_retry()
        # Channel torn down between the readiness check and the callback.
        sup._channel = None

        with pytest.raises(QueueUnavailable, match="failed"):
            sup.publish(PENDING_WORK_QUEUE, "{}")
