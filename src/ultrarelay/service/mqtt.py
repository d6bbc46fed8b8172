import asyncio
import json
import logging
from typing import Any, Callable, Optional

from gmqtt import Client

from ultrarelay.service.cfg import MqttConfig
from ultrarelay.service.err import ConnectionLost, PublishFailed

logger = logging.getLogger(__name__)

UNLIMITED_RECONNECTS = -1
KEEPALIVE = 60


class MqttChannel:
    """
    Broker connection used both as the command channel and as the publisher.

    Messages from the control topic are handed to `on_command` as text. The connection is retried in
    the background with a fixed delay, so an unreachable broker only means no remote commands and no
    published data until it comes back.
    """

    def __init__(self, config: MqttConfig, on_command: Callable[[str], None]):
        self.config = config
        self._on_command = on_command
        self._closed = False
        self._connect_task: Optional[asyncio.Task] = None

        self._client = Client(client_id=config.client_id)
        # After the first successful connect gmqtt reconnects by itself
        self._client.set_config({'reconnect_retries': UNLIMITED_RECONNECTS, 'reconnect_delay': config.reconnect_delay})
        if config.username:
            self._client.set_auth_credentials(config.username, config.password)

        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

    @property
    def connected(self) -> bool:
        return bool(self._client.is_connected)

    def start(self):
        self._connect_task = asyncio.create_task(self._connect_loop(), name='mqtt_connect')

    async def _connect_loop(self):
        while not self._closed:
            try:
                await self.connect()
                return
            except ConnectionLost as e:
                logger.warning(f"[mqtt_connection_failed] host=[{self.config.host}] reason=[{e}] "
                               f"retry_in=[{self.config.reconnect_delay}s]")
                await asyncio.sleep(self.config.reconnect_delay)

    async def connect(self):
        """
        :raises ConnectionLost: when the broker cannot be reached or rejects the connection
        """
        logger.info(f"[mqtt_connecting] host=[{self.config.host}] port=[{self.config.port}]")
        try:
            await self._client.connect(self.config.host, port=self.config.port, keepalive=KEEPALIVE)
        except Exception as e:  # any failure to connect is retried by the caller
            raise ConnectionLost(f"{type(e).__name__}: {e}") from e

    def _on_connect(self, client, flags, rc, properties):
        logger.info(f"[mqtt_connected] host=[{self.config.host}] client_id=[{self.config.client_id}]")
        client.subscribe(self.config.control_topic, qos=self.config.qos)
        logger.info(f"[mqtt_subscribed] topic=[{self.config.control_topic}]")

    def _on_disconnect(self, client, packet, exc=None):
        if self._closed:
            logger.info(f"[mqtt_disconnected] host=[{self.config.host}]")
        else:
            logger.warning(f"[mqtt_connection_lost] host=[{self.config.host}] detail=[{exc}] "
                           f"result=[local_control_only]")

    def _on_message(self, client, topic, payload, qos, properties):
        payload_str = payload.decode('utf-8', errors='replace') if isinstance(payload, bytes) else str(payload)
        logger.debug(f"[mqtt_message_received] topic=[{topic}] payload=[{payload_str}]")

        if topic == self.config.control_topic:
            try:
                self._on_command(payload_str)
            except Exception:
                logger.exception(f"[mqtt_handler_error] topic=[{topic}] payload=[{payload_str}]")

        return 0  # PUBACK success reason code

    def publish(self, topic: str, payload: Any):
        """
        :raises PublishFailed: when not connected or the client rejects the message
        """
        if not self.connected:
            raise PublishFailed(topic, 'not connected to broker')

        message = payload if isinstance(payload, str) else json.dumps(payload)
        try:
            self._client.publish(topic, message, qos=self.config.qos)
        except Exception as e:
            raise PublishFailed(topic, str(e)) from e

        logger.debug(f"[mqtt_message_published] topic=[{topic}] payload=[{message}]")

    async def close(self):
        self._closed = True

        if self._connect_task and not self._connect_task.done():
            self._connect_task.cancel()
            try:
                await self._connect_task
            except asyncio.CancelledError:
                pass

        if self.connected:
            self._client.unsubscribe(self.config.control_topic)
            logger.info(f"[disconnecting_mqtt] host=[{self.config.host}]")
            await self._client.disconnect()
