from AWSIoTPythonSDK.MQTTLib import AWSIoTMQTTShadowClient
import json
import logging
import threading
from typing import Any, Callable, Dict, List

from config import IoTConfig


logger = logging.getLogger("shadow_service")

EVENTS = ("connect", "close", "error", "delta", "timeout")
RETRY_INTERVAL = 5  # seconds between two attempts at the first connection
SHADOW_GET_TIMEOUT = 5  # seconds before an unanswered shadow get times out


class ShadowService:
    """ A class to handle the connection to an aws IoT device shadow.

    The SDK's callbacks (online, offline, shadow delta, shadow operation
    responses) and the exceptions raised by its blocking calls are turned into
    five named events that other objects subscribe to with `on`:

        connect     ()
        close       ()
        error       (exception)
        delta       (thing_name, state_document)
        timeout     (thing_name, client_token)
    """

    def __init__(self, config: IoTConfig, debug: bool = False):
        # Create and configure a shadow client.
        self.myAWSIoTMQTTShadowClient = AWSIoTMQTTShadowClient(config.client_id)
        self.myAWSIoTMQTTShadowClient.configureEndpoint(config.host, config.port)
        self.myAWSIoTMQTTShadowClient.configureCredentials(
            config.ca_cert, config.private_key, config.client_cert,
        )
        # AWSIoTMQTTShadowClient connection configuration
        self.myAWSIoTMQTTShadowClient.configureAutoReconnectBackoffTime(1, 32, 20)
        self.myAWSIoTMQTTShadowClient.configureConnectDisconnectTimeout(10)
        self.myAWSIoTMQTTShadowClient.configureMQTTOperationTimeout(5)

        # set up callbacks for online and offline situation
        self.myAWSIoTMQTTShadowClient.onOnline = self.my_online_callback
        self.myAWSIoTMQTTShadowClient.onOffline = self.my_offline_callback

        if debug:
            logging.getLogger("AWSIoTPythonSDK.core").setLevel(logging.DEBUG)

        # Persistent param
        self.CLIENT_ID = config.client_id
        self.THING_NAME = config.thing_name
        self.REGION = config.region

        self.shadow_handler = None
        self._callbacks: Dict[str, List[Callable[..., None]]] = {
            event: [] for event in EVENTS
        }
        self._stopped = threading.Event()

        # flags
        self.online = False

    def on(self, event: str, callback: Callable[..., None]) -> None:
        """
        Subscribe `callback` to `event`.

        Raises:
            ValueError if `event` is not one of EVENTS.
        """
        if event not in self._callbacks:
            raise ValueError(f"Unknown event {event!r}. Expected one of {EVENTS}")
        self._callbacks[event].append(callback)

    def emit(self, event: str, *args: Any) -> None:
        """ Call every subscriber of `event`. A failing subscriber does not stop the others. """
        for callback in self._callbacks[event]:
            try:
                callback(*args)
            except Exception:
                logger.exception(f"Error! Subscriber of '{event}' failed.")

    def connect(self) -> bool:
        """
        Connect the shadow client and create the shadow handler. The SDK only
        reconnects by itself after a first successful connection, so the first
        one is retried every RETRY_INTERVAL seconds until it works or `stop`
        is called.

        Returns:
            True once connected, False if stopped before connecting.
        """
        while not self._stopped.is_set():
            try:
                logger.info(
                    f"{self.CLIENT_ID} connecting to {self.THING_NAME} shadow ({self.REGION})"
                )
                if self.myAWSIoTMQTTShadowClient.connect():
                    break
                logger.error("Connection to aws IoT refused.")
            except Exception as e:
                logger.error(f"Error! Cannot connect to aws IoT: {e}")
                self.emit("error", e)
            logger.info(f"Retry connection in {RETRY_INTERVAL} seconds")
            self._stopped.wait(RETRY_INTERVAL)
        else:
            return False

        try:
            self.shadow_handler = self.myAWSIoTMQTTShadowClient.createShadowHandlerWithName(
                self.THING_NAME, True
            )
            self.shadow_handler.shadowRegisterDeltaCallback(self.my_delta_callback)
            self.shadow_handler.shadowGet(self.my_get_callback, SHADOW_GET_TIMEOUT)
        except Exception as e:
            logger.error(f"Error! Cannot set up shadow handler: {e}")
            self.emit("error", e)
        return True

    def publish(self, topic: str, payload: str) -> None:
        """ Fire and forget publish. A failure is reported as an error event. """
        try:
            self.myAWSIoTMQTTShadowClient.getMQTTConnection().publish(topic, payload, 0)
        except Exception as e:
            logger.error(f"Error in sending MQTT: {e}")
            self.emit("error", e)

    def stop(self) -> None:
        """ Abort a pending connection retry loop """
        self._stopped.set()

    def disconnect(self) -> None:
        """ disconnect shadow client """
        self.stop()
        try:
            if self.shadow_handler is not None:
                self.shadow_handler.shadowUnregisterDeltaCallback()
                self.shadow_handler = None
            if self.online:
                self.myAWSIoTMQTTShadowClient.disconnect()
        except Exception as e:
            logger.error(f"Error! Cannot disconnect cleanly: {e}")
            self.emit("error", e)

    def my_online_callback(self):
        logger.info(f"{self.CLIENT_ID} ONLINE.")
        self.online = True
        self.emit("connect")

    def my_offline_callback(self):
        logger.info(f"{self.CLIENT_ID} OFFLINE.")
        self.online = False
        self.emit("close")

    def my_delta_callback(self, payload: str, responseStatus: str, token: str):
        try:
            document = json.loads(payload)
        except ValueError as e:
            logger.error(f"Malformed delta document: {payload}")
            self.emit("error", e)
            return
        self.emit("delta", self.THING_NAME, document)

    def my_get_callback(self, payload: str, responseStatus: str, token: str):
        if responseStatus == "timeout":
            self.emit("timeout", self.THING_NAME, token)
        elif responseStatus == "rejected":
            logger.warning(f"Shadow get {token} rejected: {payload}")
        else:
            logger.debug(f"Shadow of {self.THING_NAME}: {payload}")
