import pytest
from PIL import Image

from rockpiquad.gpio import GPIOError
from rockpiquad.ssd1306 import SSD1306, init_commands, pack_image, reset_display


class FakeBus:
    def __init__(self, fail=False):
        self.writes = []
        self.closed = False
        self.fail = fail

    def write(self, data):
        if self.fail:
            raise OSError("bus error")
        self.writes.append(bytes(data))
        return len(data)

    def close(self):
        self.closed = True


def _contains_run(seq, run):
    return any(seq[i:i + len(run)] == run for i in range(len(seq) - len(run) + 1))


def test_init_commands_for_32_rows():
    commands = init_commands(32)
    assert commands[0] == 0xAE
    assert _contains_run(commands, [0xDA, 0x02])
    assert _contains_run(commands, [0xA8, 32 - 1])
    assert _contains_run(commands, [0x8D, 0x14])
    assert 0xAF not in commands


def test_init_commands_for_64_rows():
    commands = init_commands(64)
    assert commands[0] == 0xAE
    assert commands[commands.index(0xDA) + 1] == 0x12
    assert commands[commands.index(0xA8) + 1] == 63


def test_init_commands_other_height_has_no_com_pins():
    assert 0xDA not in init_commands(48)


def test_pack_black_image_is_all_zero():
    data = pack_image(Image.new("L", (128, 32), 0), 128, 32)
    assert data == bytes(128 * 32 // 8)


def test_pack_white_image_is_all_set():
    data = pack_image(Image.new("L", (128, 32), 255), 128, 32)
    assert data == b"\xff" * (128 * 32 // 8)


def test_pack_threshold_is_strictly_above_128():
    assert set(pack_image(Image.new("L", (16, 8), 128), 16, 8)) == {0}
    assert set(pack_image(Image.new("L", (16, 8), 129), 16, 8)) == {0xFF}


def test_pack_single_pixel_position():
    image = Image.new("L", (128, 32), 0)
    image.putpixel((5, 9), 255)
    data = pack_image(image, 128, 32)
    assert data[128 + 5] == 2
    assert sum(1 for b in data if b) == 1


def test_pack_converts_other_modes():
    image = Image.new("1", (8, 8), 1)
    assert pack_image(image, 8, 8) == b"\xff" * 8


def test_display_writes_each_page():
    bus = FakeBus()
    device = SSD1306(128, 32, bus)
    image = Image.new("L", (128, 32), 255)
    device.display(image)
    assert len(bus.writes) == 4 * 4
    for page in range(4):
        chunk = bus.writes[page * 4:(page + 1) * 4]
        assert chunk[0] == bytes([0x00, 0xB0 | page])
        assert chunk[1] == bytes([0x00, 0x00])
        assert chunk[2] == bytes([0x00, 0x10])
        assert chunk[3][0] == 0x40
        assert len(chunk[3]) == 128 + 1
        assert set(chunk[3][1:]) == {0xFF}
    assert bytes(device.buffer) == b"\xff" * len(device.buffer)


def test_clear_zeroes_buffer_and_panel():
    bus = FakeBus()
    device = SSD1306(128, 32, bus)
    device.buffer[:] = b"\xff" * len(device.buffer)
    device.clear()
    assert set(device.buffer) == {0}
    data_writes = [w for w in bus.writes if w[0] == 0x40]
    assert len(data_writes) == 4
    assert all(set(w[1:]) == {0} for w in data_writes)


def test_initialize_sends_setup_then_on_then_clear():
    bus = FakeBus()
    device = SSD1306(128, 32, bus)
    device.initialize()
    commands = [w[1] for w in bus.writes if len(w) == 2]
    expected = init_commands(32) + [0xAF]
    assert commands[: len(expected)] == expected
    assert bus.writes[len(expected)] == bytes([0x00, 0xB0])
    assert len([w for w in bus.writes if w[0] == 0x40]) == 4


def test_set_contrast_and_display_on():
    bus = FakeBus()
    device = SSD1306(128, 32, bus)
    device.set_contrast(0x8F)
    device.set_display_on(True)
    assert bus.writes == [bytes([0x00, 0x81]), bytes([0x00, 0x8F]), bytes([0x00, 0xAF])]


def test_close_turns_display_off_and_closes_bus():
    bus = FakeBus()
    SSD1306(128, 32, bus).close()
    assert bus.writes == [bytes([0x00, 0xAE])]
    assert bus.closed


def test_close_ignores_write_errors():
    bus = FakeBus(fail=True)
    SSD1306(128, 32, bus).close()
    assert bus.closed


def test_display_propagates_bus_errors():
    device = SSD1306(128, 32, FakeBus(fail=True))
    with pytest.raises(OSError):
        device.display(Image.new("L", (128, 32), 0))


@pytest.mark.parametrize("pin", ["Dxyz", "pin", "D"])
def test_reset_display_rejects_bad_pin(pin):
    with pytest.raises(GPIOError):
        reset_display(pin)