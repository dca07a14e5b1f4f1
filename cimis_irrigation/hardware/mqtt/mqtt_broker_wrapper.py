"""
    This module provides a wrapper class for the MQTT channel between the
    irrigation controller and the relay controllers in the garden.
    It includes methods for connecting (with retry), disconnecting, publishing
    and subscribing, with appropriate logging for each operation.

    Unlike a long-running service, a daily irrigation run cannot continue
    without the broker, so connection and publish failures raise.
"""

import logging
import os
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Callable

import paho.mqtt.client as mqtt

from cimis_irrigation.domain.exceptions import TransportConnectError, TransportError
from cimis_irrigation.hardware.mqtt.client_factory import create_mqtt_client
from cimis_irrigation.utils.time import utc_now

# Rotating log for MQTT traffic so a Raspberry Pi's SD card never fills up
_mqtt_logger = logging.getLogger("cimis_irrigation.mqtt")
if not _mqtt_logger.handlers:
    os.makedirs("logs", exist_ok=True)
    _mqtt_handler = RotatingFileHandler(
        "logs/devices_mqtt.log",
        maxBytes=10 * 1024 * 1024,  # 10MB max per file
        backupCount=3,
        encoding="utf-8",
    )
    _mqtt_handler.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(message)s"))
    _mqtt_logger.addHandler(_mqtt_handler)
    _mqtt_logger.setLevel(logging.INFO)
    _mqtt_logger.propagate = False  # Don't duplicate to root logger

MessageHandler = Callable[[mqtt.Client, object, mqtt.MQTTMessage], None]

# CONNACK return codes that retrying cannot fix
_AUTH_FAILURE_CODES = {4, 5}


@dataclass
class HealthStatus:
    """
    Tracks the health of the MQTT connection over one irrigation run.
    """

    is_connected: bool = False
    last_error: str | None = None
    last_error_time: datetime | None = None
    connection_attempts: int = 0
    successful_publishes: int = 0
    failed_publishes: int = 0
    active_subscriptions: int = 0

    @property
    def success_rate(self) -> float:
        """Calculate publish success rate percentage"""
        total_publishes = self.successful_publishes + self.failed_publishes
        if total_publishes == 0:
            return 0.0
        return (self.successful_publishes / total_publishes) * 100

    def mark_connected(self):
        self.is_connected = True
        self.last_error = None
        self.last_error_time = None

    def mark_disconnected(self):
        self.is_connected = False

    def record_error(self, error: Exception):
        self.last_error = str(error)
        self.last_error_time = utc_now()

    def to_dict(self):
        """Return health status as a dictionary."""
        return {
            "is_connected": self.is_connected,
            "last_error": self.last_error,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
            "connection_attempts": self.connection_attempts,
            "successful_publishes": self.successful_publishes,
            "failed_publishes": self.failed_publishes,
            "active_subscriptions": self.active_subscriptions,
            "publish_success_rate": round(self.success_rate, 2),
        }


class MQTTClientWrapper:
    """
    Wrapper class for the controller's MQTT channel.

    The paho network loop runs in its own thread (``loop_start``); inbound
    messages are fanned out to every handler whose subscription matches.
    """

    def __init__(
        self,
        broker: str,
        port: int,
        client_id: str = "",
        username: str | None = None,
        password: str | None = None,
        connect_retries: int = 3,
        backoff_seconds: float = 2.0,
        connect_timeout: float = 10.0,
        keepalive: int = 60,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initializes the MQTT client wrapper. Nothing touches the network until
        :meth:`connect` is called.

        Args:
            broker (str): The MQTT broker address.
            port (int): The MQTT broker port.
            client_id (str, optional): The MQTT client ID.
            username (str, optional): Broker user.
            password (str, optional): Broker password.
            connect_retries (int): Connection attempts before giving up.
            backoff_seconds (float): First retry delay, doubled on each retry.
            connect_timeout (float): Seconds to wait for the broker's CONNACK.
            keepalive (int): MQTT keepalive interval in seconds.
        """
        self.broker = broker
        self.port = port
        self.client_id = client_id
        self.connect_retries = max(1, connect_retries)
        self.backoff_seconds = backoff_seconds
        self.connect_timeout = connect_timeout
        self.keepalive = keepalive
        self._sleep = sleep
        self.client = create_mqtt_client(client_id=client_id, username=username, password=password)
        self.connected = False
        self.subscribe_count = 0
        self._callback_lock = threading.Lock()
        self._callbacks: list[tuple[str, MessageHandler]] = []
        self._connack = threading.Event()
        self._connack_rc: int | None = None
        # Always dispatch through our fan-out handler so multiple subscribers can coexist
        self.client.on_message = self._dispatch_message
        self.client.on_connect = self._on_connect
        self.health_status = HealthStatus()

    def _on_connect(self, client, userdata, flags, rc, properties=None):
        self._connack_rc = int(rc)
        self._connack.set()

    def connect(self) -> None:
        """
        Connects to the MQTT broker, retrying with exponential backoff.

        Raises:
            TransportConnectError: the broker stayed unreachable or refused the credentials
        """
        delay = self.backoff_seconds
        last_error: Exception | None = None
        for attempt in range(1, self.connect_retries + 1):
            self.health_status.connection_attempts += 1
            try:
                self._connect_once()
                self.connected = True
                self.health_status.mark_connected()
                _mqtt_logger.info("Connected to MQTT broker %s:%s", self.broker, self.port)
                return
            except TransportConnectError as e:
                last_error = e
                self.health_status.record_error(e)
                if e.detail.get("rc") in _AUTH_FAILURE_CODES:
                    break
            except (OSError, ValueError) as e:
                last_error = e
                self.health_status.record_error(e)
                _mqtt_logger.error("Error connecting to MQTT broker (attempt %s): %s", attempt, e)

            if attempt < self.connect_retries:
                self._sleep(delay)
                delay *= 2

        raise TransportConnectError(
            f"Unable to connect to MQTT broker {self.broker}:{self.port}: {last_error}",
            detail={
                "broker": self.broker,
                "port": self.port,
                "attempts": self.health_status.connection_attempts,
                "rc": self._connack_rc,
            },
        )

    def _connect_once(self) -> None:
        self._connack.clear()
        self._connack_rc = None
        self.client.connect(self.broker, self.port, self.keepalive)
        self.client.loop_start()  # Start the MQTT loop in a separate thread
        if not self._connack.wait(self.connect_timeout) or self._connack_rc != 0:
            rc = self._connack_rc
            self.client.loop_stop()
            reason = "no CONNACK from broker" if rc is None else mqtt.connack_string(rc)
            _mqtt_logger.error("MQTT broker refused connection: %s", reason)
            raise TransportConnectError(f"MQTT broker refused connection: {reason}", detail={"rc": rc})

    def disconnect(self):
        """
        Disconnects from the MQTT broker.
        """
        if self.connected:
            try:
                self.client.disconnect()
                self.client.loop_stop()
                _mqtt_logger.info("Disconnected from MQTT broker.")
            except (OSError, RuntimeError) as e:
                _mqtt_logger.error("Error disconnecting from MQTT broker: %s", e)
                self.health_status.record_error(e)
            finally:
                self.connected = False
                self.health_status.mark_disconnected()
                with self._callback_lock:
                    self._callbacks.clear()

    def publish(self, topic: str, payload: str) -> None:
        """
        Publishes a message to the MQTT broker.

        Args:
            topic (str): The MQTT topic to publish to.
            payload (str): The message payload.

        Raises:
            TransportError: the client is offline or paho rejected the message
        """
        if not self.connected:
            raise TransportError(f"MQTT client not connected. Cannot publish to {topic}.")
        try:
            msg_info = self.client.publish(topic, payload)
        except (OSError, ValueError) as e:
            self.health_status.failed_publishes += 1
            self.health_status.record_error(e)
            raise TransportError(f"Error publishing to {topic}: {e}") from e

        if msg_info.rc != mqtt.MQTT_ERR_SUCCESS:
            self.health_status.failed_publishes += 1
            _mqtt_logger.error("Failed to publish to %s: %s. MQTT result code: %s", topic, payload, msg_info.rc)
            raise TransportError(f"Failed to publish to {topic}: result code {msg_info.rc}", detail={"rc": msg_info.rc})

        self.health_status.successful_publishes += 1
        _mqtt_logger.info("Published to %s: %s", topic, payload)

    def subscribe(self, topic: str, callback: MessageHandler) -> None:
        """
        Subscribes to a topic and registers a handler for its messages.

        Args:
            topic (str): The MQTT topic to subscribe to.
            callback (Callable): Handler called as ``callback(client, userdata, msg)``.

        Raises:
            TransportError: the client is offline or the broker rejected the subscription
        """
        if not self.connected:
            raise TransportError(f"MQTT client not connected. Cannot subscribe to {topic}.")
        try:
            result, _mid = self.client.subscribe(topic)
        except (OSError, ValueError) as e:
            self.health_status.record_error(e)
            raise TransportError(f"Error subscribing to MQTT topic {topic}: {e}") from e

        if result != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(f"Failed to subscribe to topic {topic}: result code {result}", detail={"rc": result})

        self._register_callback(topic, callback)
        self.subscribe_count += 1
        self.health_status.active_subscriptions = self.subscribe_count
        _mqtt_logger.info("Subscribed to topic %s with callback %s", topic, getattr(callback, "__name__", callback))

    def _register_callback(self, topic: str, callback: MessageHandler) -> None:
        """Register a message handler without clobbering existing subscribers."""
        with self._callback_lock:
            self._callbacks.append((topic, callback))

    def _dispatch_message(self, client, userdata, msg) -> None:
        """
        Fan out MQTT messages to all registered callbacks that match the topic
        using MQTT wildcard semantics.
        """
        with self._callback_lock:
            callbacks = list(self._callbacks)

        handled = False
        for sub, callback in callbacks:
            try:
                if mqtt.topic_matches_sub(sub, msg.topic):
                    handled = True
                    callback(client, userdata, msg)
            except Exception as e:
                # Runs on paho's network thread; an escaping exception would kill the loop.
                _mqtt_logger.error("Error in MQTT callback for topic %s: %s", sub, e, exc_info=True)

        if not handled:
            _mqtt_logger.warning(
                "MQTT message on %s had no registered handlers (subscriptions: %s)",
                msg.topic,
                [s[0] for s in callbacks],
            )

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.disconnect()
