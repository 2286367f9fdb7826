import json
import logging
import logging.config
import os
import threading
from time import monotonic
from typing import Any, Callable, Dict, Optional

import psutil
import yaml


logger = logging.getLogger("utility")

LOGGER_CONFIG_ENV = "IOT_LOGGER_CONFIG"
DEFAULT_LOGGER_CONFIG = "logger_config.yaml"


def setup_logging(path: Optional[str] = None) -> None:
    """
    Configure logging from a yaml dictConfig file. Falls back to a plain
    console handler when the file does not exist, so that the agent still
    reports what it is doing.

    Args:
        path:   Location of the yaml file. Defaults to $IOT_LOGGER_CONFIG,
                then ./logger_config.yaml
    Returns:
        None
    Raises:
        yaml.YAMLError or ValueError if the file exists but is not a valid
        logging config.
    """
    path = path or os.environ.get(LOGGER_CONFIG_ENV) or DEFAULT_LOGGER_CONFIG
    if not os.path.isfile(path):
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )
        logger.warning(f"Logger config {path} not found. Using basic config.")
        return
    with open(path, "r") as f:
        config = yaml.safe_load(f.read())
        logging.config.dictConfig(config)


def free_memory_fraction() -> float:
    """ Fraction (0-1) of physical memory available to new processes """
    mem = psutil.virtual_memory()
    return mem.available / mem.total


def cpu_usage_fraction(window: float) -> float:
    """
    CPU utilization (0-1) across all cores, measured over `window` seconds.
    Blocks the caller for the duration of the window.
    """
    return psutil.cpu_percent(interval=window) / 100


def to_payload(obj: Dict[str, Any]) -> str:
    """ Serialize `obj` to compact JSON, the format consumers of the topics expect """
    return json.dumps(obj, separators=(",", ":"))


class RepeatingTimer(threading.Thread):
    """
    Call `function` every `period` seconds on a daemon thread until cancelled.

    Calls never overlap: they run one after another on this thread. If a call
    takes longer than `period`, the slots it overran are skipped and the next
    call lands on the following period boundary.
    """

    def __init__(
        self,
        period: float,
        function: Callable[[], None],
        on_error: Optional[Callable[[Exception], None]] = None,
        name: str = "repeating-timer",
    ):
        super().__init__(name=name, daemon=True)
        self.period = period
        self.function = function
        self.on_error = on_error
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """ Stop the timer. A call already in progress is allowed to finish. """
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def run(self) -> None:
        next_run = monotonic() + self.period
        while not self._cancelled.wait(max(0.0, next_run - monotonic())):
            try:
                self.function()
            except Exception as e:
                if self.on_error is None:
                    logger.exception(f"Error in {self.name}")
                else:
                    self.on_error(e)
            next_run += self.period
            now = monotonic()
            if next_run <= now:
                skipped = int((now - next_run) // self.period) + 1
                next_run += skipped * self.period
                logger.warning(f"{self.name} overran its period, skipped {skipped} tick(s)")
