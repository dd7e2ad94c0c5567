"""GPIO lines through the Linux GPIO character device (uAPI v2)."""

from __future__ import annotations

import enum
import fcntl
import os
import re
import select
import struct
from dataclasses import dataclass

_CONSUMER = b"rockpiquad"
_MAX_LINES = 64
_MAX_ATTRS = 10

_FLAG_ACTIVE_LOW = 1 << 1
_FLAG_INPUT = 1 << 2
_FLAG_OUTPUT = 1 << 3
_FLAG_EDGE_RISING = 1 << 4
_FLAG_EDGE_FALLING = 1 << 5
_FLAG_BIAS_PULL_UP = 1 << 8

_ATTR_ID_OUTPUT_VALUES = 2

# struct gpio_v2_line_request: offsets, consumer, config (flags, num_attrs,
# padding, attrs), num_lines, event_buffer_size, padding, fd.
_REQUEST_FORMAT = (
    f"={_MAX_LINES}I32sQI5I" + "IIQQ" * _MAX_ATTRS + "II5Ii"
)
_REQUEST_SIZE = struct.calcsize(_REQUEST_FORMAT)
_VALUES_FORMAT = "=QQ"
_EVENT_FORMAT = "=QIIII6I"
_EVENT_SIZE = struct.calcsize(_EVENT_FORMAT)


def _iowr(number: int, size: int) -> int:
    return (3 << 30) | (size << 16) | (0xB4 << 8) | number


_GET_LINE_IOCTL = _iowr(0x07, _REQUEST_SIZE)
_SET_VALUES_IOCTL = _iowr(0x0F, struct.calcsize(_VALUES_FORMAT))

_LEADING_INT = re.compile(r"\s*([+-]?[0-9]+)")


class GPIOError(Exception):
    """Raised when a GPIO line cannot be requested or used."""


class Edge(enum.IntEnum):
    RISING = 1
    FALLING = 2


@dataclass(frozen=True)
class LineEvent:
    edge: Edge
    timestamp_ns: int
    offset: int
    seqno: int
    line_seqno: int


def normalize_chip_path(chip: str) -> str:
    """Turn a chip name or number into a /dev path."""
    if not chip:
        chip = "gpiochip0"
    if _LEADING_INT.match(chip):
        chip = "gpiochip" + chip
    if not chip.startswith("/dev/"):
        chip = "/dev/" + chip
    return chip


def parse_line_number(text: str) -> int:
    """Parse the leading integer of a line number setting."""
    match = _LEADING_INT.match(text)
    if match is None:
        raise GPIOError(f"invalid GPIO line number: {text!r}")
    return int(match.group(1))


class Line:
    """A requested GPIO line, owning its file descriptor."""

    def __init__(self, chip: str, offset: int, fd: int) -> None:
        self.chip = chip
        self.offset = offset
        self._fd: int | None = fd

    @property
    def closed(self) -> bool:
        return self._fd is None

    def _require_fd(self) -> int:
        if self._fd is None:
            raise GPIOError(f"line {self.offset} on {self.chip} is closed")
        return self._fd

    def set_value(self, value: bool | int) -> None:
        """Drive an output line high (truthy) or low."""
        fd = self._require_fd()
        data = bytearray(struct.pack(_VALUES_FORMAT, 1 if value else 0, 1))
        try:
            fcntl.ioctl(fd, _SET_VALUES_IOCTL, data, True)
        except OSError as exc:
            raise GPIOError(f"cannot set line {self.offset}: {exc.strerror}") from exc

    def read_event(self, timeout: float | None = None) -> LineEvent | None:
        """Wait up to *timeout* seconds for an edge event; None on timeout."""
        fd = self._require_fd()
        wait = None if timeout is None else max(0.0, timeout)
        ready, _, _ = select.select([fd], [], [], wait)
        if not ready:
            return None
        try:
            data = os.read(fd, _EVENT_SIZE)
        except OSError as exc:
            raise GPIOError(f"cannot read line event: {exc.strerror}") from exc
        if len(data) < _EVENT_SIZE:
            raise GPIOError(f"short line event read: {len(data)} bytes")
        timestamp, ident, offset, seqno, line_seqno, *_ = struct.unpack(_EVENT_FORMAT, data)
        try:
            edge = Edge(ident)
        except ValueError as exc:
            raise GPIOError(f"unknown line event id {ident}") from exc
        return LineEvent(edge, timestamp, offset, seqno, line_seqno)

    def close(self) -> None:
        """Release the line."""
        if self._fd is not None:
            fd, self._fd = self._fd, None
            os.close(fd)

    def __enter__(self) -> Line:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _request_line(
    chip: str, offset: int, flags: int, attrs: list[tuple[int, int, int]]
) -> Line:
    path = normalize_chip_path(chip)
    if not 0 <= offset <= 0xFFFFFFFF:
        raise GPIOError(f"invalid GPIO line offset: {offset}")

    attr_fields: list[int] = []
    for attr_id, value, mask in attrs:
        attr_fields += [attr_id, 0, value, mask]
    attr_fields += [0] * (4 * (_MAX_ATTRS - len(attrs)))

    request = bytearray(
        struct.pack(
            _REQUEST_FORMAT,
            offset,
            *[0] * (_MAX_LINES - 1),
            _CONSUMER,
            flags,
            len(attrs),
            *[0] * 5,
            *attr_fields,
            1,
            0,
            *[0] * 5,
            0,
        )
    )

    try:
        chip_fd = os.open(path, os.O_RDWR | os.O_CLOEXEC)
    except OSError as exc:
        raise GPIOError(f"cannot open {path}: {exc.strerror}") from exc
    try:
        fcntl.ioctl(chip_fd, _GET_LINE_IOCTL, request, True)
    except OSError as exc:
        raise GPIOError(f"cannot request line {offset} on {path}: {exc.strerror}") from exc
    finally:
        os.close(chip_fd)

    (line_fd,) = struct.unpack_from("=i", request, _REQUEST_SIZE - 4)
    return Line(path, offset, line_fd)


def request_output_line(chip: str, offset: int, value: bool | int) -> Line:
    """Request *offset* on *chip* as an output driven to *value*."""
    return _request_line(
        chip, offset, _FLAG_OUTPUT, [(_ATTR_ID_OUTPUT_VALUES, 1 if value else 0, 1)]
    )


def request_input_line(chip: str, offset: int) -> Line:
    """Request *offset* on *chip* as a pulled-up input reporting both edges."""
    flags = _FLAG_INPUT | _FLAG_BIAS_PULL_UP | _FLAG_EDGE_RISING | _FLAG_EDGE_FALLING
    return _request_line(chip, offset, flags, [])