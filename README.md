# rockpiquad

A small service for the ROCK Pi Quad SATA HAT. It runs on the board and does three jobs:

- **Fan control**: it reads the CPU temperature. If you turn it on, it also reads the SATA
  disk temperatures through `smartctl`. From those readings it sets the duty cycle of the
  CPU fan and the top-board fan through the sysfs PWM interface. The duty cycle either
  follows fixed steps (0, 25, 50, 75 and 100 %) or is interpolated linearly between the
  levels.
- **Button handling**: it tells a click, a double click and a long press on the HAT's
  button apart. Each one maps to an action: show the next display page, switch the fans
  between automatic control and full speed, power off, reboot, or run any shell command.
- **OLED display**: it shows pages on the 128x32 SSD1306 screen over I2C. The pages cover:
  - uptime, CPU temperature and IP address
  - fan speeds, load and memory
  - disk space usage
  - network and disk I/O rates
  - disk temperatures

When no SATA disks are visible at start-up, the service also powers up the SATA controller.
It does this by driving the controller's GPIO lines high for two seconds.

## Installation

```
pip install .
```

The only library it depends on is Pillow.

It needs Linux with the GPIO character device (`/dev/gpiochipN`), `/dev/i2c-1` and the
sysfs PWM interface (`/sys/class/pwm`).

It runs these programs, so they must be on the path:

- `lsblk`
- `smartctl`
- `df`
- `free`
- `uptime`
- `hostname`

The display font is `fonts/DejaVuSansMono-Bold.ttf`. The service looks it up relative to
the working directory.

## Running

```
rockpiquad
rockpiquad --config /path/to/rockpi-quad.conf
```

By default the service reads `/etc/rockpi-quad.conf`. It runs until it receives SIGINT or
SIGTERM. When it stops:

1. It shows a goodbye screen and blanks the display.
2. It sets both fans to a duty cycle of 0.
3. It waits up to five seconds for its worker threads to finish.

A configuration file that cannot be read ends the service with exit status 1. So does a
PWM channel that cannot be set up. If the button or the display cannot be set up, the
service logs an error and carries on without that part.

## Configuration file

The configuration is an INI file. Every key is optional, and the values below are the
defaults. Key names are case sensitive.

```
[fan]
lv0 = 35
lv1 = 40
lv2 = 45
lv3 = 50
max_cpu_temp = 80
max_disk_temp = 70
linear = false
temp_disks = false
syslog = false

[oled]
rotate = false
f-temp = false

[disk]
space_usage_mnt_points =
io_usage_mnt_points =
disks_temp = false

[network]
interfaces =
skip_page = false

[key]
click = slider
twice = switch
press = poweroff

[time]
twice = 0.7
press = 1.8

[slider]
auto = true
time = 5
```

### `[fan]`

- `lv0c` … `lv3c` set the levels of the CPU fan, and `lv0f` … `lv3f` set the levels of the
  disk fan. Each one falls back to the plain `lvN` value.
- With `linear = true`, the duty cycle is interpolated from the levels up to
  `max_cpu_temp` or `max_disk_temp`.
- `temp_disks = true` makes the disk fan follow the hottest SATA disk. The disks are read
  at most every ten seconds.
- Messages are written to standard error. With `syslog = true`, informational messages are
  written as well as errors.

### `[oled]`

- `rotate` turns the picture upside down.
- `f-temp` shows the CPU temperature in Fahrenheit.

### `[disk]` and `[network]`

- The two `*_mnt_points` keys take mount points separated by `|`.
- `interfaces` takes interface names separated by `,`. When it is empty, the service uses
  whichever of `eth0`, `wlan0` and `enp0s3` exist.
- `skip_page` leaves out the network pages.
- `disks_temp` adds a page with the disk temperatures.

### `[key]`, `[time]` and `[slider]`

- Button actions are `slider`, `switch`, `poweroff`, `reboot`, `none`, or any other text,
  which is run with `sh -c`.
- `poweroff` and `reboot` stop the service and run the command of the same name one second
  later.
- `[time]` sets two values:
  - `twice`: the window for a second click, in seconds.
  - `press`: how long a press must be held to count as a long press, in seconds.
- `[slider]` sets two values:
  - `time`: the seconds between page changes.
  - `auto`: whether the pages change on their own.
- A button press restarts the page timer.

## Environment

The service takes the hardware wiring from environment variables:

| Variable | Meaning |
|----------|---------|
| `BUTTON_CHIP`, `BUTTON_LINE` | GPIO chip (name or number, default `gpiochip0`) and line of the button |
| `OLED_RESET` | reset pin of the display on `gpiochip0`, such as `D23` |
| `PWM_CHIP` | PWM chip of the fans (default `pwmchip0`) |
| `PWM_CPU_FAN`, `PWM_TB_FAN` | PWM channels of the CPU fan and the top-board fan |
| `POLARITY` | set to `inversed` for fans with inverted PWM |
| `SATA_CHIP`, `SATA_LINE_1`, `SATA_LINE_2` | GPIO lines that power the SATA controller |

When `PWM_TB_FAN` is unset or equals `PWM_CPU_FAN`, only one fan channel is driven.

## Using the pieces from Python

The modules are:

| Module | What it holds |
|--------|---------------|
| `rockpiquad.config` | `load` and the config dataclasses |
| `rockpiquad.fan` | `FanController` and `linear_interpolate` |
| `rockpiquad.pwm` | `PWM` |
| `rockpiquad.gpio` | GPIO line requests |
| `rockpiquad.button` | `ButtonController` and `EventType` |
| `rockpiquad.disk` | disk listing, `smartctl` temperatures and SATA power-up |
| `rockpiquad.ssd1306` | the display driver and `pack_image` |
| `rockpiquad.pages` | `SystemInfo` and the display pages |
| `rockpiquad.oled` | `OledController` |
| `rockpiquad.cli` | `main` |

A short example:

```python
from rockpiquad.config import load
from rockpiquad.fan import FanController, linear_interpolate

cfg = load("/etc/rockpi-quad.conf", environ={"PWM_CPU_FAN": "0"})
print(linear_interpolate(42.5, 35, 40, 45, 50, 80))

fan = FanController.create(cfg)
fan.update()
print(fan.fan_speeds())  # (cpu percent, disk percent)
fan.close()
```

## Tests

```
pip install .[test]
pytest
```