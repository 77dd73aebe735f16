"""paho-mqtt implementation of IPubSubClient."""

import asyncio
import threading
import uuid

import paho.mqtt.client as mqtt

from ..logging_config import get_logger
from .client import MessageHandler, subscription_filters

logger = get_logger(__name__)


class PahoClient:
    """MQTT client backed by paho-mqtt's network thread.

    Reconnection after a lost connection is paho's own policy; existing
    subscriptions are restored on every successful (re)connect.
    """

    def __init__(
        self,
        host: str,
        port: int = 1883,
        client_id: str | None = None,
        username: str | None = None,
        password: str | None = None,
        keepalive: int = 60,
        connect_timeout: float = 10.0,
    ):
        self._host = host
        self._port = port
        self._keepalive = keepalive
        self._connect_timeout = connect_timeout
        self._client_id = client_id or f"mqtrace-{uuid.uuid4().hex[:12]}"

        self._client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self._client_id,
            protocol=mqtt.MQTTv311,
        )
        if username:
            self._client.username_pw_set(username, password)
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

        self._loop: asyncio.AbstractEventLoop | None = None
        self._connected: asyncio.Future | None = None
        self._lock = threading.Lock()
        self._filters: list[str] = []
        self._handler: MessageHandler | None = None

    @property
    def client_id(self) -> str:
        return self._client_id

    async def connect(self) -> None:
        """Connect and wait for the broker's CONNACK."""
        self._loop = asyncio.get_running_loop()
        self._connected = self._loop.create_future()

        logger.info(f"Connecting to MQTT broker {self._host}:{self._port}")
        await asyncio.to_thread(
            self._client.connect, self._host, self._port, self._keepalive
        )
        self._client.loop_start()
        try:
            await asyncio.wait_for(self._connected, timeout=self._connect_timeout)
        except BaseException:
            self._client.loop_stop()
            raise
        logger.info(f"MQTT connected: {self._host}:{self._port} as {self._client_id}")

    async def publish(
        self, topic: str, qos: int, retained: bool, payload: bytes | str
    ) -> None:
        info = self._client.publish(topic, payload, qos=qos, retain=retained)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise ConnectionError(f"Publish to {topic} failed: {mqtt.error_string(info.rc)}")
        if qos > 0:
            await asyncio.to_thread(info.wait_for_publish, self._connect_timeout)

    async def subscribe(self, patterns: list[str], on_message: MessageHandler) -> None:
        filters = subscription_filters(patterns)
        with self._lock:
            self._handler = on_message
            self._filters = filters
        result, _ = self._client.subscribe([(f, 0) for f in filters])
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise ConnectionError(f"Subscribe failed: {mqtt.error_string(result)}")
        logger.info(f"Subscribed to {filters}")

    async def unsubscribe(self, patterns: list[str]) -> None:
        filters = subscription_filters(patterns)
        with self._lock:
            self._filters = [f for f in self._filters if f not in filters]
            if not self._filters:
                self._handler = None
        self._client.unsubscribe(filters)

    async def disconnect(self) -> None:
        self._client.disconnect()
        await asyncio.to_thread(self._client.loop_stop)
        logger.info(f"Disconnected from MQTT broker {self._host}:{self._port}")

    # paho network thread callbacks
    def _on_connect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            logger.error(f"MQTT connection refused: {reason_code}")
            self._resolve_connect(ConnectionError(f"Connection refused: {reason_code}"))
            return

        with self._lock:
            filters = list(self._filters)
        if filters:
            logger.info(f"Reconnected, restoring subscriptions {filters}")
            client.subscribe([(f, 0) for f in filters])
        self._resolve_connect(None)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            logger.warning(f"MQTT connection lost: {reason_code}")
        else:
            logger.debug("MQTT disconnected")

    def _on_message(self, client, userdata, message: mqtt.MQTTMessage):
        with self._lock:
            handler = self._handler
        if handler is None:
            return
        try:
            handler(message.topic, bytes(message.payload), bool(message.retain))
        except Exception as e:
            logger.error(f"Error in message handler for {message.topic}: {e}")

    def _resolve_connect(self, error: Exception | None) -> None:
        loop, future = self._loop, self._connected
        if loop is None or future is None or loop.is_closed():
            return

        def resolve():
            if future.done():
                return
            if error is None:
                future.set_result(None)
            else:
                future.set_exception(error)

        loop.call_soon_threadsafe(resolve)
