"""Service entry point: fan control, button handling and OLED status pages."""

from __future__ import annotations

import argparse
import contextlib
import queue
import signal
import subprocess
import threading
import time

from rockpiquad import logger
from rockpiquad.button import ButtonController, ButtonError, EventType
from rockpiquad.config import Config, ConfigError, load
from rockpiquad.disk import enable_sata_controller
from rockpiquad.fan import FanController
from rockpiquad.gpio import GPIOError
from rockpiquad.oled import OledController
from rockpiquad.pwm import PWMError

DEFAULT_CONFIG_PATH = "/etc/rockpi-quad.conf"

_COMMAND_DELAY = 1.0
_BUTTON_START_DELAY = 0.5
_SHUTDOWN_TIMEOUT = 5.0
_SLIDER_QUEUE_SIZE = 10


def button_action(cfg: Config, event) -> str:
    """The configured action for a button event; "none" for anything else."""
    actions = {
        EventType.CLICK: cfg.key.click,
        EventType.DOUBLE_CLICK: cfg.key.twice,
        EventType.LONG_PRESS: cfg.key.press,
    }
    return actions.get(event, "none")


def _start(target, *args) -> threading.Thread:
    thread = threading.Thread(target=target, args=args, daemon=True)
    thread.start()
    return thread


def _run_system_command(name: str) -> None:
    time.sleep(_COMMAND_DELAY)
    try:
        subprocess.run([name], check=True)
    except (OSError, subprocess.CalledProcessError) as exc:
        logger.error("Failed to execute %s: %s", name, exc)


def _run_custom_command(action: str) -> None:
    try:
        subprocess.run(["sh", "-c", action], check=True)
    except (OSError, subprocess.CalledProcessError) as exc:
        logger.error("Failed to execute command '%s': %s", action, exc)
    else:
        logger.info("Command '%s' executed successfully", action)


def dispatch_action(
    action: str,
    slider_queue: queue.Queue,
    fan_ctrl,
    stop_event: threading.Event,
) -> threading.Thread | None:
    """Carry out *action*; returns the thread started for a command, if any."""
    if action == "slider":
        with contextlib.suppress(queue.Full):
            slider_queue.put_nowait(None)
        return None
    if action == "switch":
        fan_ctrl.toggle_fan()
        return None
    if action in ("poweroff", "reboot"):
        logger.info("%s requested via button press", action.capitalize())
        thread = _start(_run_system_command, action)
        stop_event.set()
        return thread
    if action == "none":
        return None
    logger.info("Executing custom command: %s", action)
    return _start(_run_custom_command, action)


def _forward_button_events(cfg, button_ctrl, oled_ctrl, slider_queue, fan_ctrl, stop_event):
    time.sleep(_BUTTON_START_DELAY)
    while True:
        event = button_ctrl.press_queue.get()
        action = button_action(cfg, event)
        logger.info("Button event: %s (action: %s)", event, action)
        oled_ctrl.notify_button_press()
        dispatch_action(action, slider_queue, fan_ctrl, stop_event)


def _oled_worker(cfg, oled_ctrl, button_ctrl, fan_ctrl, stop_event):
    slider_queue: queue.Queue = queue.Queue(maxsize=_SLIDER_QUEUE_SIZE)
    if button_ctrl is not None:
        _start(
            _forward_button_events,
            cfg, button_ctrl, oled_ctrl, slider_queue, fan_ctrl, stop_event,
        )
    try:
        oled_ctrl.run(stop_event, slider_queue)
    except (OSError, ValueError) as exc:
        logger.error("OLED controller error: %s", exc)


def main(argv=None) -> int:
    """Run the service until SIGINT or SIGTERM."""
    parser = argparse.ArgumentParser(
        prog="rockpi-quad", description="Fan, button and OLED service for the quad SATA HAT."
    )
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="configuration file")
    args = parser.parse_args(argv)

    try:
        cfg = load(args.config)
    except ConfigError as exc:
        logger.fatal("Failed to load config: %s", exc)

    logger.set_verbose(cfg.fan.syslog)
    enable_sata_controller(cfg.env.sata_chip, cfg.env.sata_line1, cfg.env.sata_line2)

    stop_event = threading.Event()
    signalled = threading.Event()

    def on_signal(signum, frame):
        signalled.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, on_signal)

    with contextlib.ExitStack() as stack:
        try:
            fan_ctrl = FanController.create(cfg)
        except PWMError as exc:
            logger.fatal("Failed to create fan controller: %s", exc)
        stack.callback(fan_ctrl.close)
        workers = [_start(fan_ctrl.run, stop_event)]

        if cfg.oled.enabled:
            button_ctrl = None
            try:
                button_ctrl = ButtonController.create(cfg)
            except ButtonError as exc:
                logger.error("Failed to create button controller: %s", exc)
            else:
                stack.callback(button_ctrl.close)
                workers.append(_start(button_ctrl.run, stop_event))

            try:
                oled_ctrl = OledController.create(cfg, fan_ctrl)
            except (OSError, GPIOError) as exc:
                logger.error("Failed to create OLED controller: %s", exc)
            else:
                stack.callback(oled_ctrl.close)
                workers.append(
                    _start(_oled_worker, cfg, oled_ctrl, button_ctrl, fan_ctrl, stop_event)
                )

        while not signalled.wait(0.5):
            pass
        logger.info("Shutting down...")
        stop_event.set()

        deadline = time.monotonic() + _SHUTDOWN_TIMEOUT
        for worker in workers:
            worker.join(max(0.0, deadline - time.monotonic()))
        if any(worker.is_alive() for worker in workers):
            logger.info("Shutdown timeout")
        else:
            logger.info("Shutdown complete")
    return 0