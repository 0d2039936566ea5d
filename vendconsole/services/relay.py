import asyncio
from typing import Callable, Optional

import paho.mqtt.client as mqtt
import websockets
from websockets.exceptions import ConnectionClosedOK, WebSocketException

from ..models import Machine
from ..utils import TransportError
from ..utils import relay_logger as logger

CONNECT_TIMEOUT = 10.0


class RelayTransport:
    """
    Message-oriented connection to the dispense relay.

    recv() returns the next text frame, None once the relay closed the
    connection cleanly, and raises TransportError when the link fails.
    """

    async def connect(self):
        raise NotImplementedError

    async def send(self, frame: str):
        raise NotImplementedError

    async def recv(self) -> Optional[str]:
        raise NotImplementedError

    async def close(self):
        raise NotImplementedError


class WebSocketRelay(RelayTransport):
    def __init__(self, url: str, timeout: float = CONNECT_TIMEOUT):
        self.url = url
        self.timeout = timeout
        self.socket = None

    async def connect(self):
        try:
            self.socket = await asyncio.wait_for(
                websockets.connect(self.url), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            raise TransportError(f"Timed out connecting to relay {self.url}")
        except (OSError, WebSocketException) as e:
            raise TransportError(f"Relay connection failed: {e}") from e
        logger.info(f"Connected to relay at {self.url}")

    async def send(self, frame: str):
        if not self.socket:
            raise TransportError("Relay socket is not open")
        try:
            await self.socket.send(frame)
        except (OSError, WebSocketException) as e:
            raise TransportError(f"Relay send failed: {e}") from e

    async def recv(self) -> Optional[str]:
        if not self.socket:
            return None
        try:
            return await self.socket.recv()
        except ConnectionClosedOK:
            return None
        except (OSError, WebSocketException) as e:
            raise TransportError(f"Relay connection lost: {e}") from e

    async def close(self):
        socket, self.socket = self.socket, None
        if socket:
            try:
                await socket.close()
            except (OSError, WebSocketException) as e:
                logger.warning(f"Error closing relay socket: {e}")


class MQTTRelay(RelayTransport):
    """
    Relay bridged onto the machine broker.
    Requests go to vmc/<code>/dispense, replies come on vmc/<code>/dispense_status.
    """

    def __init__(self, host: str, port: int, machine_code: str, timeout: float = CONNECT_TIMEOUT):
        self.host = host
        self.port = port
        self.machine_code = machine_code
        self.timeout = timeout
        self.request_topic = f"vmc/{machine_code}/dispense"
        self.status_topic = f"vmc/{machine_code}/dispense_status"

        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self.client.on_connect = self._on_connect
        self.client.on_message = self._on_message
        self.client.on_disconnect = self._on_disconnect

        self.loop = None
        self.message_queue = None
        self.connected = False
        self._connect_result = None
        self._closing = False

    def _post(self, item):
        # paho callbacks run on the network thread
        asyncio.run_coroutine_threadsafe(self.message_queue.put(item), self.loop)

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            self.connected = False
            logger.error(f"Failed to connect to MQTT broker, return code {reason_code}")
        else:
            self.connected = True
            client.subscribe(self.status_topic)
            logger.info(f"Connected to MQTT broker {self.host}, listening on {self.status_topic}")
        self.loop.call_soon_threadsafe(self._resolve_connect, not reason_code.is_failure)

    def _resolve_connect(self, accepted: bool):
        if not self._connect_result.done():
            self._connect_result.set_result(accepted)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):
        self.connected = False
        if self._closing:
            logger.info("Disconnected from MQTT broker")
            self._post(None)
        else:
            logger.warning(f"Unexpected disconnection from MQTT broker, code: {reason_code}")
            self._post(TransportError(f"MQTT broker disconnected ({reason_code})"))

    def _on_message(self, client, userdata, msg):
        try:
            self._post(msg.payload.decode("utf-8"))
        except UnicodeDecodeError:
            logger.warning(f"Dropping undecodable payload on {msg.topic}")

    async def connect(self):
        self.loop = asyncio.get_running_loop()
        self.message_queue = asyncio.Queue()
        self._connect_result = self.loop.create_future()
        self._closing = False
        try:
            await self.loop.run_in_executor(None, self.client.connect, self.host, self.port, 60)
        except OSError as e:
            raise TransportError(f"Failed to connect to MQTT broker: {e}") from e

        self.client.loop_start()
        try:
            accepted = await asyncio.wait_for(self._connect_result, timeout=self.timeout)
        except asyncio.TimeoutError:
            await self.close()
            raise TransportError("Timed out waiting for MQTT broker")
        if not accepted:
            await self.close()
            raise TransportError("MQTT broker refused the connection")

    async def send(self, frame: str):
        if not self.connected:
            raise TransportError("MQTT broker is not connected")
        info = self.client.publish(self.request_topic, frame)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(f"MQTT publish failed ({mqtt.error_string(info.rc)})")

    async def recv(self) -> Optional[str]:
        item = await self.message_queue.get()
        if isinstance(item, TransportError):
            raise item
        return item

    async def close(self):
        self._closing = True
        self.connected = False
        self.client.disconnect()
        self.client.loop_stop()


RelayFactory = Callable[[Machine], RelayTransport]


def relay_factory(config) -> RelayFactory:
    """Build transports for the configured relay kind."""
    transport = str(config.get("relay_transport") or "websocket").lower()

    if transport == "mqtt":
        def make(machine: Machine) -> RelayTransport:
            return MQTTRelay(config.get("broker_host"), config.get("broker_port"), machine.code)
    elif transport == "websocket":
        def make(machine: Machine) -> RelayTransport:
            return WebSocketRelay(config.get("relay_url"))
    else:
        raise ValueError(f"Unknown relay transport {transport!r}")

    return make
