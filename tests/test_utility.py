import logging
import threading
from collections import namedtuple

import pytest

import utility
from utility import RepeatingTimer, to_payload

_VirtualMemory = namedtuple("_VirtualMemory", ["total", "available"])


def test_to_payload_is_compact():
    assert to_payload({"Name": "rpi-01"}) == '{"Name":"rpi-01"}'
    assert to_payload({"cpu": 12.5, "mem": 35.0}) == '{"cpu":12.5,"mem":35.0}'


def test_free_memory_fraction(monkeypatch):
    monkeypatch.setattr(
        utility.psutil, "virtual_memory", lambda: _VirtualMemory(total=800, available=200)
    )

    assert utility.free_memory_fraction() == pytest.approx(0.25)


def test_cpu_usage_fraction_uses_sampling_window(monkeypatch):
    windows = []

    def cpu_percent(interval=None):
        windows.append(interval)
        return 42.0

    monkeypatch.setattr(utility.psutil, "cpu_percent", cpu_percent)

    assert utility.cpu_usage_fraction(0.1) == pytest.approx(0.42)
    assert windows == [0.1]


def test_real_host_metrics_are_fractions():
    assert 0 <= utility.free_memory_fraction() <= 1
    assert 0 <= utility.cpu_usage_fraction(0.01) <= 1


def test_setup_logging_without_file(tmp_path, caplog):
    with caplog.at_level(logging.WARNING, logger="utility"):
        utility.setup_logging(str(tmp_path / "missing.yaml"))

    assert "not found" in caplog.text


def test_setup_logging_from_yaml(tmp_path):
    path = tmp_path / "logger_config.yaml"
    path.write_text(
        "version: 1\n"
        "disable_existing_loggers: false\n"
        "loggers:\n"
        "  agent-test:\n"
        "    level: ERROR\n"
    )

    utility.setup_logging(str(path))

    assert logging.getLogger("agent-test").level == logging.ERROR


def test_repeating_timer_calls_until_cancelled():
    calls = []
    done = threading.Event()

    def function():
        calls.append(1)
        if len(calls) == 3:
            done.set()

    timer = RepeatingTimer(0.01, function)
    timer.start()
    assert done.wait(2)
    timer.cancel()
    timer.join(1)

    assert not timer.is_alive()
    assert timer.cancelled
    assert len(calls) >= 3


def test_repeating_timer_routes_errors_and_keeps_going():
    errors = []
    done = threading.Event()

    def function():
        raise ValueError("bad sample")

    def on_error(e):
        errors.append(e)
        if len(errors) == 2:
            done.set()

    timer = RepeatingTimer(0.01, function, on_error=on_error)
    timer.start()
    assert done.wait(2)
    timer.cancel()
    timer.join(1)

    assert all(isinstance(e, ValueError) for e in errors)


def test_repeating_timer_cancelled_before_first_period():
    calls = []
    timer = RepeatingTimer(0.5, lambda: calls.append(1))
    timer.start()
    timer.cancel()
    timer.join(1)

    assert calls == []
