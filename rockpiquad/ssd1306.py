"""Driver for SSD1306 monochrome OLED displays attached over I2C."""

from __future__ import annotations

import fcntl
import os
import time
from typing import Protocol

from PIL import Image

from rockpiquad import logger
from rockpiquad.gpio import GPIOError, request_output_line

SET_CONTRAST = 0x81
DISPLAY_ALL_ON_RESUME = 0xA4
DISPLAY_ALL_ON = 0xA5
NORMAL_DISPLAY = 0xA6
INVERT_DISPLAY = 0xA7
DISPLAY_OFF = 0xAE
DISPLAY_ON = 0xAF
SET_DISPLAY_OFFSET = 0xD3
SET_COM_PINS = 0xDA
SET_VCOM_DETECT = 0xDB
SET_DISPLAY_CLOCK_DIV = 0xD5
SET_PRECHARGE = 0xD9
SET_MULTIPLEX = 0xA8
SET_LOW_COLUMN = 0x00
SET_HIGH_COLUMN = 0x10
SET_START_LINE = 0x40
MEMORY_MODE = 0x20
COLUMN_ADDR = 0x21
PAGE_ADDR = 0x22
COM_SCAN_INC = 0xC0
COM_SCAN_DEC = 0xC8
SEG_REMAP = 0xA0
CHARGE_PUMP = 0x8D
DEACTIVATE_SCROLL = 0x2E
EXTERNAL_VCC = 0x01
SWITCH_CAP_VCC = 0x02

I2C_ADDRESS = 0x3C
I2C_BUS = 1

_I2C_SLAVE_IOCTL = 0x0703
_COMMAND_PREFIX = 0x00
_DATA_PREFIX = 0x40
_PAGE_START = 0xB0
_RESET_PULSE = 0.01


class _Bus(Protocol):
    def write(self, data: bytes) -> int: ...

    def close(self) -> None: ...


class I2CBus:
    """A Linux i2c-dev bus bound to one device address."""

    def __init__(self, address: int, bus: int) -> None:
        self.address = address
        self.path = f"/dev/i2c-{bus}"
        fd = os.open(self.path, os.O_RDWR | os.O_CLOEXEC)
        try:
            fcntl.ioctl(fd, _I2C_SLAVE_IOCTL, address)
        except OSError:
            os.close(fd)
            raise
        self._fd: int | None = fd

    def write(self, data: bytes) -> int:
        """Send *data* to the device in one transfer."""
        if self._fd is None:
            raise OSError(f"{self.path} is closed")
        payload = bytes(data)
        written = os.write(self._fd, payload)
        if written != len(payload):
            raise OSError(f"short I2C write: {written} of {len(payload)} bytes")
        return written

    def close(self) -> None:
        """Release the bus."""
        if self._fd is not None:
            fd, self._fd = self._fd, None
            os.close(fd)


def init_commands(height: int) -> list[int]:
    """Command bytes that configure the panel, before it is switched on."""
    commands = [
        DISPLAY_OFF,
        MEMORY_MODE, 0x00,
        SET_DISPLAY_CLOCK_DIV, 0x80,
        SET_MULTIPLEX, (height - 1) & 0xFF,
        SET_DISPLAY_OFFSET, 0x00,
        SET_START_LINE | 0x00,
        SEG_REMAP | 0x01,
        COM_SCAN_DEC,
    ]
    if height == 32:
        commands += [SET_COM_PINS, 0x02]
    elif height == 64:
        commands += [SET_COM_PINS, 0x12]
    commands += [
        SET_PRECHARGE, 0xF1,
        SET_VCOM_DETECT, 0x40,
        SET_CONTRAST, 0x8F,
        DISPLAY_ALL_ON_RESUME,
        NORMAL_DISPLAY,
        DEACTIVATE_SCROLL,
        CHARGE_PUMP, 0x14,
    ]
    return commands


def pack_image(image: Image.Image, width: int, height: int) -> bytes:
    """Pack a greyscale image into page-ordered display memory.

    Pixels brighter than 128 are lit; pixels outside the image are dark.
    """
    gray = image if image.mode == "L" else image.convert("L")
    pixels = gray.load()
    image_width, image_height = gray.size

    def lit(x: int, y: int) -> bool:
        return x < image_width and y < image_height and pixels[x, y] > 128

    return bytes(
        sum(1 << bit for bit in range(8) if lit(x, page * 8 + bit))
        for page in range(height // 8)
        for x in range(width)
    )


def reset_display(pin: str) -> None:
    """Pulse the reset pin (e.g. "D23") low then high; nothing when *pin* is empty."""
    if not pin:
        return
    number = pin.lower()
    if number.startswith("d"):
        number = number[1:]
    try:
        offset = int(number)
    except ValueError as exc:
        raise GPIOError(f"invalid OLED_RESET pin: {pin!r}") from exc

    with request_output_line("gpiochip0", offset, 0) as line:
        time.sleep(_RESET_PULSE)
        line.set_value(1)
        time.sleep(_RESET_PULSE)


class SSD1306:
    """An SSD1306 panel driven through a bus object with write() and close()."""

    def __init__(self, width: int, height: int, bus: _Bus) -> None:
        self.width = width
        self.height = height
        self.bus = bus
        self.buffer = bytearray(width * height // 8)
        logger.info(
            "[SSD1306] Initialized %dx%d display, buffer size: %d bytes",
            width,
            height,
            len(self.buffer),
        )

    @classmethod
    def open(cls, width: int, height: int) -> SSD1306:
        """Open the panel on the default I2C bus, reset it and initialise it."""
        try:
            bus = I2CBus(I2C_ADDRESS, I2C_BUS)
        except OSError as exc:
            raise OSError(f"failed to open I2C: {exc}") from exc
        device = cls(width, height, bus)
        try:
            try:
                reset_display(os.environ.get("OLED_RESET", ""))
            except GPIOError as exc:
                raise GPIOError(f"failed to reset SSD1306: {exc}") from exc
            try:
                device.initialize()
            except OSError as exc:
                raise OSError(f"failed to initialize SSD1306: {exc}") from exc
        except BaseException:
            bus.close()
            raise
        return device

    def _command(self, command: int) -> None:
        self.bus.write(bytes((_COMMAND_PREFIX, command & 0xFF)))

    def _select_page(self, page: int) -> None:
        self._command(_PAGE_START | page)
        self._command(SET_LOW_COLUMN | 0x00)
        self._command(SET_HIGH_COLUMN | 0x00)

    def _pages(self) -> range:
        return range(self.height // 8)

    def initialize(self) -> None:
        """Configure the panel, switch it on and blank it."""
        for command in init_commands(self.height):
            self._command(command)
        self._command(DISPLAY_ON)
        self.clear()

    def display(self, image: Image.Image) -> None:
        """Show *image* on the panel."""
        self.buffer[:] = pack_image(image, self.width, self.height)
        for page in self._pages():
            self._select_page(page)
            start = page * self.width
            self.bus.write(bytes((_DATA_PREFIX,)) + bytes(self.buffer[start:start + self.width]))

    def clear(self) -> None:
        """Turn every pixel off."""
        self.buffer[:] = bytes(len(self.buffer))
        zero_page = bytes((_DATA_PREFIX,)) + bytes(self.width)
        for page in self._pages():
            self._select_page(page)
            self.bus.write(zero_page)

    def set_contrast(self, contrast: int) -> None:
        """Set the contrast, 0 to 255."""
        self._command(SET_CONTRAST)
        self._command(contrast)

    def set_display_on(self, on: bool) -> None:
        """Switch the panel on or off."""
        self._command(DISPLAY_ON if on else DISPLAY_OFF)

    def close(self) -> None:
        """Switch the panel off and release the bus."""
        try:
            self.set_display_on(False)
        except OSError:
            pass
        self.bus.close()

    def __enter__(self) -> SSD1306:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()