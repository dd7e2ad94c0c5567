import queue
import threading
import time

import pytest
from PIL import Image, ImageFont

from rockpiquad.config import Config
from rockpiquad.oled import (
    DISPLAY_HEIGHT,
    DISPLAY_WIDTH,
    OledController,
    load_fonts,
    rotate_image_180,
)
from rockpiquad.pages import TextItem


class FakeDevice:
    def __init__(self):
        self.images = []
        self.closed = False

    def display(self, image):
        self.images.append(image.copy())

    def close(self):
        self.closed = True


class FakeInfo:
    def __init__(self, cfg):
        self.cfg = cfg

    def network_interfaces(self):
        return []

    def disk_name_from_mount(self, mount):
        return ""

    def uptime(self):
        return "Up: 1 min"

    def cpu_temp(self):
        return "CPU: 40.0°C"

    def ip_address(self):
        return "IP: 192.0.2.1"

    def fan_speeds(self):
        return 0.0, 0.0

    def cpu_load(self):
        return "CPU: 0.10"

    def memory_usage(self):
        return "Mem: 100/1000MB"


class StaticPage:
    def __init__(self, text):
        self._text = text

    def text(self):
        return [TextItem(0, 0, self._text)]


def make_controller(**slider):
    cfg = Config()
    cfg.slider.time = slider.get("time", 60)
    cfg.slider.auto = slider.get("auto", True)
    font = ImageFont.load_default()
    device = FakeDevice()
    ctrl = OledController(cfg, device, {11: font}, FakeInfo(cfg))
    ctrl.pause_seconds = 0
    return ctrl, device


def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_clear_image():
    ctrl, _ = make_controller()
    ctrl.image.paste(255, (0, 0, 128, 32))
    assert ctrl.image.getextrema() == (255, 255)
    ctrl.clear_image()
    assert ctrl.image.getextrema() == (0, 0)


def test_rotate_image_180():
    src = Image.new("L", (4, 4), 0)
    src.putpixel((0, 0), 255)
    src.putpixel((3, 3), 200)
    dst = rotate_image_180(src)
    assert dst.getpixel((3, 3)) == 255
    assert dst.getpixel((0, 0)) == 200
    assert dst.size == (4, 4)


def test_image_has_display_size():
    ctrl, _ = make_controller()
    assert ctrl.image.size == (DISPLAY_WIDTH, DISPLAY_HEIGHT) == (128, 32)


def test_draw_text_lights_pixels_near_position():
    ctrl, _ = make_controller()
    ctrl.draw_text(0, 0, "XX", 11)
    bbox = ctrl.image.getbbox()
    assert bbox is not None
    assert bbox[0] < 20


def test_unknown_font_size_falls_back_to_default():
    ctrl, _ = make_controller()
    ctrl.draw_text(5, 5, "Hello", 11)
    expected = ctrl.image.tobytes()
    ctrl.clear_image()
    ctrl.draw_text(5, 5, "Hello", 99)
    assert ctrl.image.tobytes() == expected


def test_render_rotates_when_configured():
    ctrl, device = make_controller()
    ctrl.cfg.oled.rotate = True
    ctrl.image.putpixel((0, 0), 255)
    ctrl.render()
    shown = device.images[-1]
    assert shown.getpixel((127, 31)) == 255
    assert shown.getpixel((0, 0)) == 0


def test_render_without_rotation_sends_image_as_is():
    ctrl, device = make_controller()
    ctrl.image.putpixel((0, 0), 255)
    ctrl.render()
    assert device.images[-1].getpixel((0, 0)) == 255


def test_next_page_before_timer_stays_on_first_page():
    ctrl, device = make_controller()
    ctrl.pages = [StaticPage("A"), StaticPage("B")]
    ctrl.next_page()
    ctrl.next_page()
    assert ctrl.page_index == 0
    assert len(device.images) == 2
    assert device.images[0].tobytes() == device.images[1].tobytes()


def test_next_page_without_pages_draws_nothing():
    ctrl, device = make_controller()
    ctrl.next_page()
    assert device.images == []


def test_show_goodbye_ends_blank():
    ctrl, device = make_controller()
    ctrl.show_goodbye()
    assert len(device.images) == 2
    assert device.images[0].getextrema()[1] > 0
    assert device.images[1].getextrema() == (0, 0)


def test_show_welcome_draws_text():
    ctrl, device = make_controller()
    ctrl.show_welcome()
    assert len(device.images) == 1
    assert device.images[0].getextrema()[1] > 0


def test_close_blanks_and_closes_device():
    ctrl, device = make_controller()
    ctrl.image.paste(255, (0, 0, 10, 10))
    ctrl.close()
    assert device.closed is True
    assert device.images[-1].getextrema() == (0, 0)


def test_run_advances_on_button_and_says_goodbye():
    ctrl, device = make_controller(time=60)
    button_queue = queue.Queue()
    button_queue.put(object())
    stop = threading.Event()
    worker = threading.Thread(target=ctrl.run, args=(stop, button_queue))
    worker.start()
    assert wait_for(lambda: len(device.images) >= 2)
    stop.set()
    worker.join(3)
    assert not worker.is_alive()
    assert len(ctrl.pages) == 2
    assert ctrl.page_index == 1
    assert len(device.images) == 4
    assert device.images[-1].getextrema() == (0, 0)


def test_run_advances_on_timer_when_auto():
    ctrl, device = make_controller(time=1, auto=True)
    stop = threading.Event()
    worker = threading.Thread(target=ctrl.run, args=(stop, queue.Queue()))
    worker.start()
    assert wait_for(lambda: len(device.images) >= 2, timeout=4.0)
    stop.set()
    worker.join(3)
    assert ctrl.page_index == 1


def test_run_rejects_non_positive_slider_time():
    ctrl, _ = make_controller(time=0)
    with pytest.raises(ValueError):
        ctrl.run(threading.Event(), queue.Queue())


def test_load_fonts_missing_file(tmp_path):
    with pytest.raises(OSError, match="failed to load font size 10"):
        load_fonts(tmp_path / "missing.ttf", (10, 11))