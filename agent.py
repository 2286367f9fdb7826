import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, Optional

from config import IoTConfig
from utility import (
    RepeatingTimer,
    cpu_usage_fraction,
    free_memory_fraction,
    to_payload,
)


logger = logging.getLogger("agent")

REPORT_PERIOD = 1.0  # seconds between two metric reports
CPU_SAMPLE_WINDOW = 0.1  # seconds spent measuring cpu usage in each tick


class State(Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class TelemetryAgent:
    """
    Announce the device on connect and report host cpu and memory usage
    every REPORT_PERIOD seconds while connected.

    The agent never talks to aws IoT by itself. It is driven by the events of
    a shadow service (connect, close, error, delta, timeout) and publishes
    through the `publish` callable it is given.
    """

    def __init__(
        self,
        config: IoTConfig,
        publish: Callable[[str, str], None],
        period: float = REPORT_PERIOD,
        cpu_window: float = CPU_SAMPLE_WINDOW,
        timer_factory=RepeatingTimer,
        free_memory: Callable[[], float] = free_memory_fraction,
        cpu_usage: Callable[[float], float] = cpu_usage_fraction,
    ):
        self.config = config
        self.publish = publish
        self.period = period
        self.cpu_window = cpu_window
        self.timer_factory = timer_factory
        self.free_memory = free_memory
        self.cpu_usage = cpu_usage

        # computed once, never changed afterwards
        self.HELLO_TOPIC = config.hello_topic
        self.REPORT_TOPIC = config.report_topic

        # SDK callbacks and timer ticks run on different threads
        self._lock = threading.Lock()
        self._timer: Optional[RepeatingTimer] = None
        # bumped whenever the timer is replaced or dropped
        self._generation = 0

    @property
    def state(self) -> State:
        with self._lock:
            return State.DISCONNECTED if self._timer is None else State.CONNECTED

    def bind(self, service) -> None:
        """ Subscribe to all lifecycle events raised by `service` """
        service.on("connect", self.on_connect)
        service.on("close", self.on_close)
        service.on("error", self.on_error)
        service.on("delta", self.on_delta)
        service.on("timeout", self.on_timeout)

    def on_connect(self) -> None:
        """ Say hello, then start the metric loop """
        name = self.config.thing_name
        logger.info(f"{name} connected to https://{self.config.host}:{self.config.port}")

        self.publish(self.HELLO_TOPIC, to_payload({"Name": name}))
        logger.info(f"{name} published its name to '{self.HELLO_TOPIC}'")

        with self._lock:
            self._generation += 1
            generation = self._generation
            timer = self.timer_factory(
                self.period,
                lambda: self.tick(generation),
                on_error=self.on_error,
                name="metric-loop",
            )
            previous, self._timer = self._timer, timer
        if previous is not None:
            previous.cancel()
        timer.start()

    def on_close(self) -> None:
        """ Stop the metric loop. Does nothing if the loop is not running. """
        with self._lock:
            timer, self._timer = self._timer, None
            self._generation += 1
        if timer is None:
            return
        logger.info("Stopping metric loop")
        timer.cancel()

    def on_error(self, error: Exception) -> None:
        logger.error(f"error {error!r}")

    def on_delta(self, thing_name: str, state: Dict[str, Any]) -> None:
        logger.info(f"received delta on {thing_name}:{to_payload(state)}")

    def on_timeout(self, thing_name: str, client_token: str) -> None:
        logger.warning(f"timeout: {thing_name}, clientToken={client_token}")

    def sample(self) -> Dict[str, float]:
        """
        Read host metrics. The cpu reading blocks for `cpu_window` seconds.

        Returns:
            {"cpu": percentage, "mem": free memory percentage}
        """
        mem = self.free_memory() * 100
        cpu = self.cpu_usage(self.cpu_window) * 100
        return {"cpu": cpu, "mem": mem}

    def tick(self, generation: Optional[int] = None) -> None:
        """
        Publish one metric report. Errors are not handled here; the timer
        hands them to on_error. No acknowledgement is awaited.

        Args:
            generation:     Generation of the timer driving this tick. The
                            report is dropped unless that timer is still the
                            active one. None means any active timer.
        """
        report = to_payload(self.sample())
        # the timer may have been cancelled or replaced while cpu usage was
        # being measured. Holding the lock keeps close/connect out until the
        # publish call returns.
        with self._lock:
            if self._timer is None:
                return
            if generation is not None and generation != self._generation:
                return
            self.publish(self.REPORT_TOPIC, report)
        logger.debug(f"{self.config.thing_name} published {report} to '{self.REPORT_TOPIC}'")
