"""Temperature-driven fan control for the CPU and disk fans."""

from __future__ import annotations

import threading
import time
from itertools import pairwise
from pathlib import Path

from rockpiquad import disk, logger
from rockpiquad.config import Config
from rockpiquad.pwm import PWM, PWMError

MIN_DUTY_CYCLE = 0.05
THERMAL_ZONE_PATH = "/sys/class/thermal/thermal_zone0/temp"

_DISK_TEMP_INTERVAL = 10.0
_LEVEL_DUTY_CYCLES = (0.01, 0.25, 0.50, 0.75, 1.0)


def linear_interpolate(
    temp: float, lv0: float, lv1: float, lv2: float, lv3: float, max_temp: float
) -> float:
    """Interpolate a duty cycle between the configured temperature levels."""
    if temp < lv0:
        return 0.0
    levels = (lv0, lv1, lv2, lv3, max_temp)
    for (low, high), (dc_low, dc_high) in zip(
        pairwise(levels), pairwise(_LEVEL_DUTY_CYCLES)
    ):
        if low <= temp < high:
            ratio = (temp - low) / (high - low)
            return dc_low + ratio * (dc_high - dc_low)
    return 1.0


def read_cpu_temperature(path: str = THERMAL_ZONE_PATH) -> float:
    """Return the CPU temperature in degrees Celsius, or 0 if unreadable."""
    try:
        return float(Path(path).read_text().strip()) / 1000.0
    except (OSError, ValueError):
        return 0.0


class FanController:
    """Sets fan duty cycles from CPU and disk temperatures."""

    thermal_path = THERMAL_ZONE_PATH

    def __init__(self, cfg: Config, cpu_pwm: PWM, disk_pwm: PWM | None = None) -> None:
        self.cfg = cfg
        self.cpu_pwm = cpu_pwm
        self.disk_pwm = disk_pwm
        self.last_cpu_dc = 0.0
        self.last_disk_dc = 0.0
        self.last_disk_temp = 0.0
        self.enabled = True
        self._disk_checked_at: float | None = None
        self._lock = threading.Lock()

    @classmethod
    def create(cls, cfg: Config) -> FanController:
        """Open the PWM channels named in *cfg*."""
        fan = cfg.fan
        inversed = fan.polarity == "inversed"
        try:
            cpu_pwm = PWM(fan.cpu_pwm_chip, fan.cpu_pwm_channel)
        except PWMError as exc:
            raise PWMError(f"failed to init CPU PWM: {exc}") from exc
        if inversed:
            cpu_pwm.set_inversed(True)

        disk_pwm = None
        if fan.tb_pwm_channel != fan.cpu_pwm_channel:
            try:
                disk_pwm = PWM(fan.tb_pwm_chip, fan.tb_pwm_channel)
            except PWMError as exc:
                cpu_pwm.close()
                raise PWMError(f"failed to init disk PWM: {exc}") from exc
            if inversed:
                disk_pwm.set_inversed(True)
        return cls(cfg, cpu_pwm, disk_pwm)

    def toggle_fan(self) -> None:
        """Switch between temperature control and fans at full speed."""
        with self._lock:
            self.enabled = not self.enabled
            if self.enabled:
                logger.info("Fan control enabled - temperature-based control resumed")
                return

            full_speed = 0.0 if self.cfg.fan.polarity == "inversed" else 100.0
            logger.info(
                "Fan control disabled - setting fans to full speed (DC: %.0f%%)",
                full_speed,
            )
            if self.cpu_pwm is not None:
                self._write_ignoring_errors(self.cpu_pwm, full_speed)
                self.last_cpu_dc = full_speed
            if self.disk_pwm is not None:
                self._write_ignoring_errors(self.disk_pwm, full_speed)
                self.last_disk_dc = full_speed

    @staticmethod
    def _write_ignoring_errors(pwm: PWM, duty_cycle: float) -> None:
        try:
            pwm.set_duty_cycle(duty_cycle)
        except PWMError:
            pass

    def run(self, stop_event: threading.Event) -> None:
        """Update the fans once a second until *stop_event* is set."""
        while not stop_event.wait(1.0):
            try:
                self.update()
            except PWMError as exc:
                logger.error("Fan update error: %s", exc)

    def update(self) -> None:
        """Read temperatures and write new duty cycles where they changed."""
        with self._lock:
            if not self.enabled:
                return

            cpu_temp, disk_temp = self._temperatures()
            cpu_dc = self.calculate_duty_cycle(cpu_temp, "c")
            disk_dc = self.calculate_duty_cycle(disk_temp, "f")
            if 0 < cpu_dc < MIN_DUTY_CYCLE:
                cpu_dc = MIN_DUTY_CYCLE
            if 0 < disk_dc < MIN_DUTY_CYCLE:
                disk_dc = MIN_DUTY_CYCLE

            if cpu_dc != self.last_cpu_dc:
                self.cpu_pwm.set_duty_cycle(cpu_dc)
                self.last_cpu_dc = cpu_dc

            if self.disk_pwm is not None and disk_dc != self.last_disk_dc:
                self.disk_pwm.set_duty_cycle(disk_dc)
                self.last_disk_dc = disk_dc

            logger.info(
                "cpu_temp: %.2f, cpu_dc: %.2f, disk_temp: %.2f, disk_dc: %.2f, run: %s",
                cpu_temp,
                cpu_dc * 100,
                disk_temp,
                disk_dc * 100,
                str(self.enabled).lower(),
            )

    def _temperatures(self) -> tuple[float, float]:
        cpu = read_cpu_temperature(self.thermal_path)
        now = time.monotonic()
        due = (
            self._disk_checked_at is None
            or now - self._disk_checked_at > _DISK_TEMP_INTERVAL
        )
        if self.cfg.fan.temp_disks and due:
            self.last_disk_temp = self._max_disk_temperature()
            self._disk_checked_at = now
        return cpu, self.last_disk_temp

    @staticmethod
    def _max_disk_temperature() -> float:
        hottest = 0.0
        for device in disk.get_sata_disks():
            try:
                hottest = max(hottest, disk.get_temperature(device))
            except disk.DiskError:
                continue
        return hottest

    def calculate_duty_cycle(self, temp: float, key: str) -> float:
        """Duty cycle for *temp*; key "c" uses CPU levels, anything else disk levels."""
        fan = self.cfg.fan
        if key == "c":
            levels = (fan.lv0c, fan.lv1c, fan.lv2c, fan.lv3c)
            max_temp = fan.max_cpu_temp
        else:
            levels = (fan.lv0f, fan.lv1f, fan.lv2f, fan.lv3f)
            max_temp = fan.max_disk_temp

        if fan.linear:
            return linear_interpolate(temp, *levels, max_temp)

        for level, duty in zip(levels, (0.0, 0.25, 0.50, 0.75)):
            if temp < level:
                return duty
        return 1.0

    def fan_speeds(self) -> tuple[float, float]:
        """Current CPU and disk duty cycles as percentages."""
        with self._lock:
            return self.last_cpu_dc * 100, self.last_disk_dc * 100

    def close(self) -> None:
        """Stop both fans and release the PWM channels."""
        for pwm in (self.cpu_pwm, self.disk_pwm):
            if pwm is not None:
                self._write_ignoring_errors(pwm, 0)
                pwm.close()

    def __enter__(self) -> FanController:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()