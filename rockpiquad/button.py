"""Button monitoring that turns GPIO edges into click, double-click and long-press events."""

from __future__ import annotations

import enum
import queue
import threading
import time

from rockpiquad import logger
from rockpiquad.config import Config
from rockpiquad.gpio import (
    Edge,
    GPIOError,
    Line,
    normalize_chip_path,
    parse_line_number,
    request_input_line,
)

_IDLE_POLL = 0.2
_HOLD_POLL = 0.05
_SETTLE_SECONDS = 0.1
_QUEUE_SIZE = 10


class EventType(str, enum.Enum):
    CLICK = "click"
    DOUBLE_CLICK = "twice"
    LONG_PRESS = "press"

    def __str__(self) -> str:
        return self.value


class ButtonError(Exception):
    """Raised when button monitoring cannot be set up."""


class ButtonController:
    """Classifies presses of a button wired to a pulled-up GPIO input."""

    def __init__(self, cfg: Config, line: Line | None) -> None:
        self.cfg = cfg
        self.line = line
        self.twice_window = cfg.time.twice
        self.press_time = cfg.time.press
        self.press_queue: queue.Queue[EventType] = queue.Queue(maxsize=_QUEUE_SIZE)

    @classmethod
    def create(cls, cfg: Config) -> ButtonController:
        """Request the button line named by the environment settings in *cfg*."""
        line_text = cfg.env.button_line
        if not line_text:
            logger.info("Button monitoring disabled - no pin configured")
            raise ButtonError("Button monitoring disabled - no pin configured")

        chip = normalize_chip_path(cfg.env.button_chip)
        try:
            offset = parse_line_number(line_text)
        except GPIOError as exc:
            logger.error("Invalid GPIO line number: %s", line_text)
            raise ButtonError(f"Invalid GPIO line number: {line_text}") from exc

        try:
            line = request_input_line(chip, offset)
        except GPIOError as exc:
            logger.error("Failed to request button line: %s", exc)
            raise ButtonError(f"Failed to request button line: {exc}") from exc

        ctrl = cls(cfg, line)
        time.sleep(_SETTLE_SECONDS)
        ctrl._drain()
        logger.info("Button monitoring enabled on %s line %s", chip, line_text)
        return ctrl

    def run(self, stop_event: threading.Event) -> None:
        """Queue detected events until *stop_event* is set."""
        if self.line is None:
            stop_event.wait()
            return
        while not stop_event.is_set():
            event = self.detect_event(stop_event)
            if event is None:
                continue
            try:
                self.press_queue.put_nowait(event)
            except queue.Full:
                continue
            logger.info("Button event: %s", event)

    def _read(self, timeout: float):
        return self.line.read_event(timeout)

    def detect_event(self, stop_event: threading.Event) -> EventType | None:
        """Wait briefly for a press and classify it; None when nothing happened."""
        # Wait for the press (falling edge).
        while True:
            if stop_event.is_set():
                return None
            event = self._read(_IDLE_POLL)
            if event is None:
                return None
            if event.edge is Edge.FALLING:
                press_start = time.monotonic()
                break

        # Wait for the release, or report a long press once held long enough.
        while True:
            if stop_event.is_set():
                return None
            event = self._read(_HOLD_POLL)
            if event is not None:
                if event.edge is Edge.RISING:
                    break
                continue
            if time.monotonic() - press_start >= self.press_time:
                while True:
                    if stop_event.is_set():
                        return EventType.LONG_PRESS
                    event = self._read(_HOLD_POLL)
                    if event is not None and event.edge is Edge.RISING:
                        return EventType.LONG_PRESS

        # A second press within the window makes a double click.
        deadline = time.monotonic() + self.twice_window
        while (remaining := deadline - time.monotonic()) > 0:
            if stop_event.is_set():
                return EventType.CLICK
            event = self._read(remaining)
            if event is None:
                return EventType.CLICK
            if event.edge is Edge.FALLING:
                while True:
                    if stop_event.is_set():
                        return EventType.DOUBLE_CLICK
                    event = self._read(_HOLD_POLL)
                    if event is not None and event.edge is Edge.RISING:
                        self._drain()
                        return EventType.DOUBLE_CLICK
        return EventType.CLICK

    def _drain(self) -> None:
        while self.line.read_event(0) is not None:
            pass

    def close(self) -> None:
        """Release the GPIO line."""
        if self.line is not None:
            self.line.close()

    def __enter__(self) -> ButtonController:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()