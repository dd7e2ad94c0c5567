"""Status pages shown on the OLED display of the quad SATA HAT."""

from __future__ import annotations

import contextlib
import os
import queue
import threading
import time
from collections.abc import Iterable, Mapping

from PIL import Image, ImageDraw, ImageFont

from rockpiquad import logger
from rockpiquad.config import Config
from rockpiquad.gpio import GPIOError
from rockpiquad.pages import SystemInfo, generate_pages
from rockpiquad.ssd1306 import SSD1306

DISPLAY_WIDTH = 128
DISPLAY_HEIGHT = 32
FONT_PATH = "fonts/DejaVuSansMono-Bold.ttf"
FONT_SIZES = (10, 11, 12, 14)

_DEFAULT_FONT_SIZE = 11
_POLL_INTERVAL = 0.1


def rotate_image_180(image: Image.Image) -> Image.Image:
    """Return a copy of *image* turned upside down."""
    return image.transpose(Image.Transpose.ROTATE_180)


def load_fonts(path: str | os.PathLike[str], sizes: Iterable[int]) -> dict[int, ImageFont.FreeTypeFont]:
    """Load the TrueType font at *path* once for each pixel size in *sizes*."""
    fonts = {}
    for size in sizes:
        try:
            fonts[size] = ImageFont.truetype(str(path), size)
        except OSError as exc:
            raise OSError(f"failed to load font size {size}: {exc}") from exc
    return fonts


class OledController:
    """Draws the status pages and cycles through them."""

    pause_seconds = 2.0

    def __init__(self, cfg: Config, device, fonts: Mapping[int, object], info) -> None:
        self.cfg = cfg
        self.device = device
        self.fonts = dict(fonts)
        self.info = info
        self.image = Image.new("L", (DISPLAY_WIDTH, DISPLAY_HEIGHT), 0)
        self.pages: list = []
        self.page_index = 0
        self.timer_duration = float(cfg.slider.time)
        self._next_tick: float | None = None
        self._lock = threading.Lock()

    @classmethod
    def create(cls, cfg: Config, fan_ctrl=None) -> OledController:
        """Open the display, load the fonts and show the welcome screen."""
        try:
            device = SSD1306.open(DISPLAY_WIDTH, DISPLAY_HEIGHT)
        except (OSError, GPIOError) as exc:
            raise OSError(f"failed to create SSD1306 display: {exc}") from exc
        try:
            fonts = load_fonts(FONT_PATH, FONT_SIZES)
        except OSError:
            device.close()
            raise

        info = SystemInfo(cfg, fan_ctrl)
        ctrl = cls(cfg, device, fonts, info)
        info.update_network_stats()
        info.update_disk_stats()
        info.init_temp_disks()
        ctrl.show_welcome()
        return ctrl

    def clear_image(self) -> None:
        """Turn every pixel of the drawing surface off."""
        self.image.paste(0, (0, 0, self.image.width, self.image.height))

    def draw_text(self, x: int, y: int, text: str, font_size: int) -> None:
        """Draw *text* with its top (ascent line) at *y*."""
        font = self.fonts.get(font_size)
        if font is None:
            font = self.fonts[_DEFAULT_FONT_SIZE]
        ImageDraw.Draw(self.image).text((x, y), text, fill=255, font=font)

    def render(self) -> None:
        """Send the drawing surface to the display, rotated if configured."""
        image = rotate_image_180(self.image) if self.cfg.oled.rotate else self.image
        self.device.display(image)

    def _render_quietly(self) -> None:
        with contextlib.suppress(OSError):
            self.render()

    def show_welcome(self) -> None:
        with self._lock:
            self.clear_image()
            self.draw_text(0, 0, "ROCKPi QUAD HAT", 14)
            self.draw_text(32, 16, "Loading...", 12)
            self._render_quietly()
            time.sleep(self.pause_seconds)

    def show_goodbye(self) -> None:
        with self._lock:
            self.clear_image()
            self.draw_text(32, 8, "Good Bye ~", 14)
            self._render_quietly()
            time.sleep(self.pause_seconds)
            self.clear_image()
            self._render_quietly()

    def next_page(self) -> None:
        """Show the next page; before the slide timer starts, show the first."""
        if not self.pages:
            return
        with self._lock:
            if self._next_tick is not None:
                self.page_index = (self.page_index + 1) % len(self.pages)
            page = self.pages[self.page_index]
            self.clear_image()
            for item in page.text():
                self.draw_text(item.x, item.y, item.text, item.font_size)
            self._render_quietly()

    def notify_button_press(self) -> None:
        """Restart the slide timer so a page stays up after a button press."""
        with self._lock:
            if self._next_tick is not None:
                self._next_tick = time.monotonic() + self.timer_duration

    def run(self, stop_event: threading.Event, button_queue: queue.Queue) -> None:
        """Cycle pages on the timer or on items from *button_queue* until stopped."""
        self.pages = generate_pages(self.info)
        if not self.pages:
            logger.info("No OLED pages configured, display disabled")
            stop_event.wait()
            return
        if self.timer_duration <= 0:
            raise ValueError("slider time must be positive")

        self.next_page()
        with self._lock:
            self._next_tick = time.monotonic() + self.timer_duration

        while not stop_event.is_set():
            with self._lock:
                remaining = self._next_tick - time.monotonic()
            try:
                button_queue.get(timeout=max(0.0, min(remaining, _POLL_INTERVAL)))
            except queue.Empty:
                pass
            else:
                self.next_page()
                continue

            with self._lock:
                now = time.monotonic()
                due = now >= self._next_tick
                if due:
                    self._next_tick = now + self.timer_duration
            if due and self.cfg.slider.auto:
                self.next_page()

        self.show_goodbye()

    def close(self) -> None:
        """Blank the display and release it."""
        with self._lock:
            self.clear_image()
            with contextlib.suppress(OSError):
                self.device.display(self.image)
            self.device.close()

    def __enter__(self) -> OledController:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()