import queue
import subprocess
import threading
from unittest import mock

import pytest

from rockpiquad.button import EventType
from rockpiquad.cli import button_action, dispatch_action, main
from rockpiquad.config import Config


class FakeFan:
    def __init__(self):
        self.toggles = 0

    def toggle_fan(self):
        self.toggles += 1


def make_config():
    cfg = Config()
    cfg.key.click = "slider"
    cfg.key.twice = "switch"
    cfg.key.press = "poweroff"
    return cfg


@pytest.mark.parametrize(
    "event, expected",
    [
        (EventType.CLICK, "slider"),
        (EventType.DOUBLE_CLICK, "switch"),
        (EventType.LONG_PRESS, "poweroff"),
        ("bogus", "none"),
    ],
)
def test_button_action(event, expected):
    assert button_action(make_config(), event) == expected


def test_button_action_uses_configured_command():
    cfg = make_config()
    cfg.key.twice = "echo hi"
    assert button_action(cfg, EventType.DOUBLE_CLICK) == "echo hi"


def test_dispatch_slider_queues_page_change():
    slider_queue = queue.Queue(maxsize=10)
    fan = FakeFan()
    stop = threading.Event()
    assert dispatch_action("slider", slider_queue, fan, stop) is None
    assert slider_queue.qsize() == 1
    assert fan.toggles == 0


def test_dispatch_slider_drops_when_queue_full():
    slider_queue = queue.Queue(maxsize=10)
    for _ in range(12):
        dispatch_action("slider", slider_queue, FakeFan(), threading.Event())
    assert slider_queue.qsize() == 10


def test_dispatch_switch_toggles_fan():
    fan = FakeFan()
    stop = threading.Event()
    dispatch_action("switch", queue.Queue(), fan, stop)
    assert fan.toggles == 1
    assert not stop.is_set()


def test_dispatch_none_does_nothing():
    slider_queue = queue.Queue()
    fan = FakeFan()
    stop = threading.Event()
    assert dispatch_action("none", slider_queue, fan, stop) is None
    assert slider_queue.empty()
    assert fan.toggles == 0
    assert not stop.is_set()


@pytest.mark.parametrize("action", ["poweroff", "reboot"])
def test_dispatch_power_actions_stop_and_run_command(action):
    stop = threading.Event()
    with mock.patch("subprocess.run") as run:
        thread = dispatch_action(action, queue.Queue(), FakeFan(), stop)
        thread.join(5)
    assert stop.is_set()
    run.assert_called_once_with([action], check=True)


def test_dispatch_custom_command_runs_in_shell():
    stop = threading.Event()
    with mock.patch("subprocess.run") as run:
        thread = dispatch_action("echo hi", queue.Queue(), FakeFan(), stop)
        thread.join(5)
    run.assert_called_once_with(["sh", "-c", "echo hi"], check=True)
    assert not stop.is_set()


def test_dispatch_custom_command_failure_is_logged(capsys):
    failure = subprocess.CalledProcessError(1, ["sh", "-c", "false"])
    with mock.patch("subprocess.run", side_effect=failure):
        thread = dispatch_action("false", queue.Queue(), FakeFan(), threading.Event())
        thread.join(5)
    assert "Failed to execute command 'false'" in capsys.readouterr().err


def test_main_exits_when_config_missing(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc_info:
        main(["--config", str(tmp_path / "missing.conf")])
    assert exc_info.value.code == 1
    assert "Failed to load config" in capsys.readouterr().err